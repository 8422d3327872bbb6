import queue
import threading
import time

import pytest

from vehicle_dash.someip import (
    ANY_INSTANCE,
    ANY_METHOD,
    ANY_SERVICE,
    Application,
    Message,
    MessageType,
    SomeIpError,
)

S, I, E, G = 0x1234, 0x5678, 0x8778, 0x4465


@pytest.fixture
def network():
    apps, threads = [], []

    def launch(name, peer=None):
        app = Application(name, ("127.0.0.1", 0), peer)
        thread = threading.Thread(target=app.start, daemon=True)
        thread.start()
        apps.append(app)
        threads.append(thread)
        return app

    yield launch
    for app in apps:
        app.stop()
    for thread in threads:
        thread.join(timeout=5)


def _offering_server(network):
    server = network("Server")
    server.offer_service(S, I)
    server.offer_event(S, I, E, {G})
    return server


def _notify_until(server, received, payload, timeout=5.0):
    deadline = time.monotonic() + timeout
    while received.empty() and time.monotonic() < deadline:
        server.notify(S, I, E, payload)
        time.sleep(0.05)
    return received.get(timeout=1)


def test_encode_header_layout():
    message = Message(service=S, method=E, payload=b"\x00\x05", session=1)
    assert message.encode() == bytes.fromhex("12348778" "0000000a" "00000001" "01000200" "0005")


@pytest.mark.parametrize("kind", list(MessageType))
def test_round_trip(kind):
    message = Message(service=S, method=E, payload=b"hello", client=7,
                      session=42, message_type=kind, interface_version=3,
                      return_code=1)
    assert Message.decode(message.encode()) == message


def test_instance_is_not_on_the_wire():
    message = Message(service=S, method=E, payload=b"x", instance=I)
    decoded = Message.decode(message.encode())
    assert decoded.instance == 0
    assert decoded.payload == b"x"


def test_decode_rejects_short_data():
    with pytest.raises(SomeIpError):
        Message.decode(b"\x12\x34")


def test_decode_rejects_bad_protocol_version():
    data = bytearray(Message(service=S, method=E).encode())
    data[12] = 0x02
    with pytest.raises(SomeIpError):
        Message.decode(bytes(data))


def test_decode_rejects_length_mismatch():
    data = Message(service=S, method=E, payload=b"ab").encode()
    with pytest.raises(SomeIpError):
        Message.decode(data + b"c")


def test_decode_rejects_unknown_message_type():
    data = bytearray(Message(service=S, method=E).encode())
    data[14] = 0x55
    with pytest.raises(SomeIpError):
        Message.decode(bytes(data))


def test_encode_rejects_out_of_range_field():
    with pytest.raises(SomeIpError):
        Message(service=0x10000, method=E).encode()


def test_local_offer_makes_service_available():
    app = Application("Local", ("127.0.0.1", 0), None)
    try:
        assert app.is_available(S, I) is False
        app.offer_service(S, I)
        assert app.is_available(S, I) is True
    finally:
        app.stop()


def test_notify_unoffered_event_raises():
    app = Application("Local", ("127.0.0.1", 0), None)
    try:
        app.offer_service(S, I)
        with pytest.raises(SomeIpError):
            app.notify(S, I, E, b"\x00\x01")
    finally:
        app.stop()


def test_start_after_stop_raises():
    app = Application("Local", ("127.0.0.1", 0), None)
    app.stop()
    with pytest.raises(SomeIpError):
        app.start()


def test_notification_reaches_subscriber(network):
    server = _offering_server(network)
    client = network("Client", server.address)
    available = queue.Queue()
    received = queue.Queue()
    client.register_availability_handler(S, I, lambda s, i, a: available.put((s, i, a)))
    client.register_message_handler(S, I, E, received.put)
    client.request_service(S, I)
    assert available.get(timeout=5) == (S, I, True)
    assert client.is_available(S, I) is True

    client.request_event(S, I, E, {G})
    client.subscribe(S, I, G)
    message = _notify_until(server, received, b"\x01\x02")
    assert message.payload == b"\x01\x02"
    assert (message.service, message.instance, message.method) == (S, I, E)
    assert message.message_type is MessageType.NOTIFICATION


def test_field_value_sent_on_subscribe(network):
    server = _offering_server(network)
    server.notify(S, I, E, b"\x03\x07")
    client = network("Client", server.address)
    available = threading.Event()
    received = queue.Queue()
    client.register_availability_handler(S, I, lambda s, i, a: a and available.set())
    client.register_message_handler(S, I, E, received.put)
    client.request_service(S, I)
    assert available.wait(5)
    client.request_event(S, I, E, {G})
    client.subscribe(S, I, G)
    assert received.get(timeout=5).payload == b"\x03\x07"


def test_wildcard_handler_receives(network):
    server = _offering_server(network)
    client = network("Client", server.address)
    received = queue.Queue()
    client.register_message_handler(ANY_SERVICE, ANY_INSTANCE, ANY_METHOD, received.put)
    client.request_service(S, I)
    client.request_event(S, I, E, {G})
    client.subscribe(S, I, G)
    message = _notify_until(server, received, b"\x00\x09")
    assert (message.service, message.method, message.payload) == (S, E, b"\x00\x09")


def test_stop_offer_reports_unavailable(network):
    server = _offering_server(network)
    client = network("Client", server.address)
    states = queue.Queue()
    client.register_availability_handler(S, I, lambda s, i, a: states.put(a))
    client.request_service(S, I)
    assert states.get(timeout=5) is True
    server.stop()
    assert states.get(timeout=5) is False
    assert client.is_available(S, I) is False