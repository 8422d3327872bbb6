"""Dashboard client: subscribes to vehicle readings and drives the cluster."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
import time
from typing import Any, Optional, Sequence

from vehicle_dash.cluster import Cluster
from vehicle_dash.protocol import (
    SAMPLE_EVENT_ID,
    SAMPLE_EVENTGROUP_ID,
    SAMPLE_INSTANCE_ID,
    SAMPLE_SERVICE_ID,
    DataType,
    PayloadTooShortError,
    VehicleData,
    format_payload,
)
from vehicle_dash.someip import (
    ANY_INSTANCE,
    ANY_METHOD,
    ANY_SERVICE,
    Application,
    Message,
)

_GAUGE_FOR_TYPE = {
    DataType.SPEED: "speed",
    DataType.RPM: "rpm",
    DataType.FUEL: "fuel",
    DataType.TEMP: "temp",
    DataType.LI: "l_value",
    DataType.RI: "r_value",
}

_DISPLAYED_GAUGES = ("speed", "rpm", "fuel", "temp", "l_value", "r_value", "total_distance")


def describe_notification(message: Message) -> str:
    """Return the log line printed for a received notification."""
    return (
        "CLIENT: received a notification for event ["
        f"{message.service:04x}.{message.instance:04x}.{message.method:04x}"
        f"] to Client/Session [{message.client:04x}/{message.session:04x}] = "
        f"({len(message.payload)}) {format_payload(message.payload)}"
    )


def apply_vehicle_data(cluster: Cluster, data: VehicleData) -> None:
    """Store a reading in the matching cluster gauge.

    Readings of type ``UN`` are ignored; any other unknown type raises
    :class:`ValueError`.
    """
    if data.type == DataType.UN:
        return
    try:
        gauge = _GAUGE_FOR_TYPE[DataType(data.type)]
    except (ValueError, KeyError):
        raise ValueError(f"unknown data type {data.type}") from None
    setattr(cluster, gauge, data.message)


class DashboardClient:
    """Consumes the vehicle service and forwards its readings to a cluster."""

    def __init__(self, cluster: Cluster, app: Application) -> None:
        self.cluster = cluster
        self.app = app
        self._condition = threading.Condition()
        self._available = False
        self._stopped = False
        self._waiter: Optional[threading.Thread] = None

    def handle_message(self, message: Message) -> Optional[VehicleData]:
        """Print and apply one notification; return the reading applied, if any."""
        print(describe_notification(message), flush=True)
        try:
            data = VehicleData.decode(message.payload)
        except PayloadTooShortError:
            print("Received payload is too short!", file=sys.stderr, flush=True)
            return None
        try:
            apply_vehicle_data(self.cluster, data)
        except ValueError:
            print("Unknown data type received!", file=sys.stderr, flush=True)
            return None
        return data

    def on_availability(self, service: int, instance: int, available: bool) -> None:
        """Record availability; when available, request the event and subscribe."""
        state = "available." if available else "NOT available."
        print(f"CLIENT: Service [{service:x}.{instance:x}] is {state}", flush=True)
        with self._condition:
            self._available = available
            self._condition.notify_all()
        if available:
            self._subscribe()

    def start(self) -> None:
        """Zero the gauges, register with the application and run it; blocks."""
        self.cluster.speed = 0
        self.cluster.rpm = 0
        self.cluster.temp = 0
        self.cluster.fuel = 0

        self.app.register_availability_handler(
            SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID, self.on_availability
        )
        self.app.request_service(SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID)
        self.app.register_message_handler(
            ANY_SERVICE, ANY_INSTANCE, ANY_METHOD, self.handle_message
        )

        waiter = threading.Thread(
            target=self._await_service, daemon=True, name="dashboard-subscriber"
        )
        with self._condition:
            self._waiter = waiter
        waiter.start()
        self.app.start()

    def stop(self) -> None:
        """Stop waiting for the service and stop the application."""
        with self._condition:
            self._stopped = True
            self._condition.notify_all()
            waiter = self._waiter
            self._waiter = None
        self.app.stop()
        if waiter is not None and waiter is not threading.current_thread():
            waiter.join()

    def _subscribe(self) -> None:
        self.app.request_event(
            SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID, SAMPLE_EVENT_ID,
            {SAMPLE_EVENTGROUP_ID},
        )
        self.app.subscribe(SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID, SAMPLE_EVENTGROUP_ID)

    def _await_service(self) -> None:
        with self._condition:
            self._condition.wait_for(lambda: self._available or self._stopped)
            if self._stopped:
                return
        self._subscribe()
        print("CLIENT: Event requested and subscribed successfully.", flush=True)


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
        prog="vehicle-dash-dashboard",
        description="Show vehicle readings received from the simulator.",
    )
    parser.add_argument("--bind", type=_address, default=("0.0.0.0", 30510))
    parser.add_argument("--peer", type=_address, default=("127.0.0.1", 30509))
    parser.add_argument("--startup-delay", type=float, default=2.0,
                        help="seconds to wait before connecting")
    parser.add_argument("--verbose", action="store_true",
                        help="log every gauge assignment")
    return parser


def _printer(name: str):
    def show(value: Any) -> None:
        print(f"{name}: {value}", flush=True)
    return show


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the dashboard until interrupted."""
    args = _parser().parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    cluster = Cluster.instance()
    for name in _DISPLAYED_GAUGES:
        cluster.connect(name, _printer(name))
    cluster.speed = 280
    cluster.rpm = 8
    cluster.temp = 10
    cluster.fuel = 10

    app = Application("HelloClient", args.bind, args.peer)
    client = DashboardClient(cluster, app)
    try:
        if args.startup_delay > 0:
            time.sleep(args.startup_delay)
        client.start()
    except KeyboardInterrupt:
        pass
    finally:
        client.stop()
        Cluster.finalize()
    return 0