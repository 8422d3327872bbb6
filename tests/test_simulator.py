import io
import sys
import threading

import pytest

from vehicle_dash.protocol import (
    SAMPLE_EVENT_ID,
    SAMPLE_EVENTGROUP_ID,
    SAMPLE_INSTANCE_ID,
    SAMPLE_METHOD_ID,
    SAMPLE_SERVICE_ID,
    DataType,
    VehicleData,
)
from vehicle_dash.simulator import (
    SimulatorService,
    VehicleSimulator,
    describe_request,
    main,
)
from vehicle_dash.someip import Application, Message, MessageType


class FakeApp:
    def __init__(self):
        self.offered = []
        self.events = []
        self.handlers = []
        self.notified = []
        self.started = 0
        self.stopped = 0

    def offer_service(self, service, instance):
        self.offered.append((service, instance))

    def offer_event(self, service, instance, event, eventgroups):
        self.events.append((service, instance, event, frozenset(eventgroups)))

    def register_message_handler(self, service, instance, method, handler):
        self.handlers.append(((service, instance, method), handler))

    def notify(self, service, instance, event, payload):
        self.notified.append((service, instance, event, bytes(payload)))

    def start(self):
        self.started += 1

    def stop(self):
        self.stopped += 1


@pytest.fixture
def recorded():
    sent = []
    return sent, VehicleSimulator(sent.append)


@pytest.mark.parametrize(
    "method, kind",
    [
        ("set_speed", DataType.SPEED),
        ("set_rpm", DataType.RPM),
        ("set_temp", DataType.TEMP),
        ("set_fuel", DataType.FUEL),
    ],
)
def test_slider_sends_reading_of_its_type(recorded, method, kind):
    sent, simulator = recorded
    returned = getattr(simulator, method)(42)
    assert sent == [VehicleData(kind, 42)]
    assert returned == sent[0]


def test_left_indicator_toggles(recorded):
    sent, simulator = recorded
    simulator.press_left()
    simulator.press_left()
    simulator.press_left()
    assert sent == [
        VehicleData(DataType.LI, 1),
        VehicleData(DataType.LI, 0),
        VehicleData(DataType.LI, 1),
    ]
    assert simulator.left_on is True


def test_right_indicator_toggles(recorded):
    sent, simulator = recorded
    simulator.press_right()
    simulator.press_right()
    assert sent == [VehicleData(DataType.RI, 1), VehicleData(DataType.RI, 0)]
    assert simulator.right_on is False


def test_indicators_are_independent(recorded):
    sent, simulator = recorded
    simulator.press_left()
    simulator.press_right()
    assert sent == [VehicleData(DataType.LI, 1), VehicleData(DataType.RI, 1)]
    assert simulator.left_on and simulator.right_on


def test_failed_send_does_not_toggle():
    attempts = []

    def flaky(data):
        attempts.append(data)
        if len(attempts) == 1:
            raise RuntimeError("link down")

    simulator = VehicleSimulator(flaky)
    with pytest.raises(RuntimeError):
        simulator.press_left()
    assert simulator.left_on is False
    assert simulator.press_left() == VehicleData(DataType.LI, 1)


def test_service_offers_service_and_event():
    app = FakeApp()
    service = SimulatorService(app)
    assert app.offered == [(SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID)]
    assert app.events == [
        (SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID, SAMPLE_EVENT_ID,
         frozenset({SAMPLE_EVENTGROUP_ID}))
    ]
    assert app.handlers == [
        ((SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID, SAMPLE_METHOD_ID),
         service.handle_message)
    ]


def test_send_data_notifies_encoded_reading():
    app = FakeApp()
    service = SimulatorService(app)
    service.send_data(VehicleData(DataType.RPM, 10))
    assert app.notified == [
        (SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID, SAMPLE_EVENT_ID, b"\x01\x0a")
    ]


def test_simulator_drives_service():
    app = FakeApp()
    service = SimulatorService(app)
    simulator = VehicleSimulator(service.send_data)
    simulator.set_fuel(7)
    simulator.press_right()
    payloads = [entry[3] for entry in app.notified]
    assert payloads == [
        VehicleData(DataType.FUEL, 7).encode(),
        VehicleData(DataType.RI, 1).encode(),
    ]


def test_start_and_stop_delegate_to_app():
    app = FakeApp()
    service = SimulatorService(app)
    service.start()
    service.stop()
    assert (app.started, app.stopped) == (1, 1)


def test_describe_request():
    message = Message(service=SAMPLE_SERVICE_ID, method=SAMPLE_METHOD_ID,
                      payload=b"\x01\xff", client=0x12, session=3,
                      message_type=MessageType.REQUEST)
    assert describe_request(message) == (
        "Service: Received message with Client/Session [0012/0003] 01 ff "
    )


def test_describe_request_empty_payload():
    message = Message(service=SAMPLE_SERVICE_ID, method=SAMPLE_METHOD_ID,
                      client=0xABCD, session=0x0102)
    assert describe_request(message).endswith("[abcd/0102] ")


def test_handle_message_prints_description(capsys):
    service = SimulatorService(FakeApp())
    message = Message(service=SAMPLE_SERVICE_ID, method=SAMPLE_METHOD_ID,
                      payload=b"\x00", client=1, session=2)
    service.handle_message(message)
    assert capsys.readouterr().out == describe_request(message) + "\n"


def test_reading_reaches_subscriber_over_udp():
    server_app = Application("ECU", ("127.0.0.1", 0))
    service = SimulatorService(server_app)
    service.send_data(VehicleData(DataType.FUEL, 42))

    client = Application("HelloClient", ("127.0.0.1", 0), server_app.address)
    received = []
    arrived = threading.Event()

    def on_message(message):
        received.append(message.payload)
        arrived.set()

    client.request_service(SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID)
    client.request_event(SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID, SAMPLE_EVENT_ID,
                         {SAMPLE_EVENTGROUP_ID})
    client.subscribe(SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID, SAMPLE_EVENTGROUP_ID)
    client.register_message_handler(SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID,
                                    SAMPLE_EVENT_ID, on_message)

    threads = [threading.Thread(target=service.start, daemon=True),
               threading.Thread(target=client.start, daemon=True)]
    for thread in threads:
        thread.start()
    try:
        assert arrived.wait(5.0)
    finally:
        client.stop()
        service.stop()
        for thread in threads:
            thread.join(5.0)
    assert received[0] == VehicleData(DataType.FUEL, 42).encode()


def test_main_reads_commands(monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO("speed 10\nleft\nfly\nquit\n"))
    assert main(["--bind", "127.0.0.1:0"]) == 0
    assert "unknown command: 'fly'" in capsys.readouterr().err


def test_main_rejects_non_integer_value(monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO("rpm fast\n"))
    assert main(["--bind", "127.0.0.1:0"]) == 0
    assert "invalid value: 'fast'" in capsys.readouterr().err


def test_main_rejects_bad_address():
    with pytest.raises(SystemExit):
        main(["--bind", "nowhere"])