"""Hello-world event publisher and subscriber."""

from __future__ import annotations

import argparse
import sys
import threading
from typing import Optional, Sequence

from vehicle_dash.protocol import (
    SAMPLE_EVENT_ID as EVENT_ID,
    SAMPLE_EVENTGROUP_ID as EVENTGROUP_ID,
    SAMPLE_INSTANCE_ID as INSTANCE_ID,
    SAMPLE_SERVICE_ID as SERVICE_ID,
)
from vehicle_dash.someip import Application, Message


def hello_message(counter: int) -> str:
    """Return the greeting sent with the given counter value."""
    return f"Hello World {counter}"


def run_server(app: Application, stop_event: threading.Event,
               interval: float = 1.0) -> int:
    """Publish a numbered greeting every ``interval`` seconds until stopped.

    The counter is a byte and wraps to 0 after 255. It advances even when
    the service is not available. Returns the number of greetings sent.
    """
    counter = 0
    sent = 0
    while not stop_event.is_set():
        counter = (counter + 1) & 0xFF
        text = hello_message(counter)
        if not app.is_available(SERVICE_ID, INSTANCE_ID):
            print("Service not available, retrying...", file=sys.stderr, flush=True)
            stop_event.wait(interval)
            continue
        app.notify(SERVICE_ID, INSTANCE_ID, EVENT_ID, text.encode("utf-8"))
        sent += 1
        print(f"Sent: {text}", flush=True)
        stop_event.wait(interval)
    return sent


def run_client(app: Application) -> None:
    """Subscribe to the greeting once available and print each one; blocks."""
    subscribed = False
    lock = threading.Lock()

    def on_availability(service: int, instance: int, available: bool) -> None:
        nonlocal subscribed
        with lock:
            if not available or subscribed:
                return
            subscribed = True
        app.request_event(SERVICE_ID, INSTANCE_ID, EVENT_ID, {EVENTGROUP_ID})
        app.subscribe(SERVICE_ID, INSTANCE_ID, EVENTGROUP_ID)
        print("Subscribed to event group.", flush=True)

    def on_message(message: Message) -> None:
        text = message.payload.decode("utf-8", errors="replace")
        print(f"Received: {text}", flush=True)

    app.register_availability_handler(SERVICE_ID, INSTANCE_ID, on_availability)
    app.request_service(SERVICE_ID, INSTANCE_ID)
    app.register_message_handler(SERVICE_ID, INSTANCE_ID, EVENT_ID, on_message)
    app.start()


def _address(text: str) -> tuple:
    host, sep, port = text.rpartition(":")
    if not sep or not host:
        raise argparse.ArgumentTypeError(f"expected HOST:PORT, got {text!r}")
    try:
        number = int(port)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port in {text!r}") from None
    if not 0 <= number <= 0xFFFF:
        raise argparse.ArgumentTypeError(f"port out of range in {text!r}")
    return host, number


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vehicle-dash-hello",
        description="Publish or receive a greeting event.",
    )
    roles = parser.add_subparsers(dest="role", required=True)

    server = roles.add_parser("server", help="offer the service and publish greetings")
    server.add_argument("--bind", type=_address, default=("0.0.0.0", 30509))
    server.add_argument("--peer", type=_address, default=None)
    server.add_argument("--interval", type=float, default=1.0)

    client = roles.add_parser("client", help="subscribe and print greetings")
    client.add_argument("--bind", type=_address, default=("0.0.0.0", 30510))
    client.add_argument("--peer", type=_address, default=("127.0.0.1", 30509))
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the greeting server or client."""
    args = _parser().parse_args(argv)
    if args.role == "server":
        app = Application("HelloServer", args.bind, args.peer)
        app.offer_service(SERVICE_ID, INSTANCE_ID)
        app.offer_event(SERVICE_ID, INSTANCE_ID, EVENT_ID, {EVENTGROUP_ID})
        stop_event = threading.Event()
        sender = threading.Thread(
            target=run_server, args=(app, stop_event, args.interval), daemon=True
        )
        sender.start()
        try:
            app.start()
        except KeyboardInterrupt:
            pass
        finally:
            stop_event.set()
            app.stop()
            sender.join()
    else:
        app = Application("HelloClient", args.bind, args.peer)
        try:
            run_client(app)
        except KeyboardInterrupt:
            pass
        finally:
            app.stop()
    return 0