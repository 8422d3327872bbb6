"""Vehicle simulator: turns control input into readings published to the dashboard."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from typing import Callable, Iterable, Optional, Sequence

from vehicle_dash.protocol import (
    SAMPLE_EVENT_ID,
    SAMPLE_EVENTGROUP_ID,
    SAMPLE_INSTANCE_ID,
    SAMPLE_METHOD_ID,
    SAMPLE_SERVICE_ID,
    DataType,
    VehicleData,
    format_payload,
)
from vehicle_dash.someip import Application, Message, SomeIpError

log = logging.getLogger(__name__)

Sender = Callable[[VehicleData], None]


def describe_request(message: Message) -> str:
    """Return the log line printed for a message received by the service."""
    return (
        "Service: Received message with Client/Session "
        f"[{message.client:04x}/{message.session:04x}] "
        f"{format_payload(message.payload)}"
    )


class VehicleSimulator:
    """The simulator's controls: sliders for gauges and two indicator buttons.

    Every control produces a :class:`VehicleData` reading, hands it to
    ``send`` and returns it. Each indicator button toggles its own state,
    sending 1 when it switches on and 0 when it switches off.
    """

    def __init__(self, send: Sender) -> None:
        self._send = send
        self._left_on = False
        self._right_on = False

    @property
    def left_on(self) -> bool:
        """Whether the left indicator is currently on."""
        return self._left_on

    @property
    def right_on(self) -> bool:
        """Whether the right indicator is currently on."""
        return self._right_on

    def _emit(self, kind: DataType, value: int) -> VehicleData:
        data = VehicleData(type=kind, message=value)
        self._send(data)
        return data

    def set_speed(self, value: int) -> VehicleData:
        """Send a speed reading."""
        log.debug("Speed : %s", value)
        return self._emit(DataType.SPEED, value)

    def set_rpm(self, value: int) -> VehicleData:
        """Send an engine speed reading."""
        log.debug("RPM : %s", value)
        return self._emit(DataType.RPM, value)

    def set_temp(self, value: int) -> VehicleData:
        """Send a temperature reading."""
        log.debug("TEMP : %s", value)
        return self._emit(DataType.TEMP, value)

    def set_fuel(self, value: int) -> VehicleData:
        """Send a fuel level reading."""
        log.debug("Fuel : %s", value)
        return self._emit(DataType.FUEL, value)

    def press_left(self) -> VehicleData:
        """Toggle the left indicator and send its new state."""
        log.debug("Left Pressed:")
        switched_on = not self._left_on
        data = self._emit(DataType.LI, int(switched_on))
        self._left_on = switched_on
        return data

    def press_right(self) -> VehicleData:
        """Toggle the right indicator and send its new state."""
        log.debug("Right Pressed:")
        switched_on = not self._right_on
        data = self._emit(DataType.RI, int(switched_on))
        self._right_on = switched_on
        return data


class SimulatorService:
    """Offers the vehicle service and publishes readings as field events.

    The service and its event are offered as soon as the object is built,
    so readings can be sent before :meth:`start` runs the application.
    """

    def __init__(self, app: Application) -> None:
        self.app = app
        app.register_message_handler(
            SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID, SAMPLE_METHOD_ID, self.handle_message
        )
        app.offer_service(SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID)
        app.offer_event(
            SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID, SAMPLE_EVENT_ID, {SAMPLE_EVENTGROUP_ID}
        )

    def send_data(self, data: VehicleData) -> None:
        """Publish one reading to every subscriber."""
        self.app.notify(
            SAMPLE_SERVICE_ID, SAMPLE_INSTANCE_ID, SAMPLE_EVENT_ID, data.encode()
        )

    def handle_message(self, message: Message) -> None:
        """Print a request sent to the service."""
        print(describe_request(message), flush=True)

    def start(self) -> None:
        """Run the application; blocks until :meth:`stop`."""
        self.app.start()

    def stop(self) -> None:
        """Stop the application."""
        self.app.stop()


_SLIDERS = {
    "speed": "set_speed",
    "rpm": "set_rpm",
    "temp": "set_temp",
    "fuel": "set_fuel",
}
_BUTTONS = {
    "left": "press_left",
    "right": "press_right",
}


def _run_commands(simulator: VehicleSimulator, lines: Iterable[str]) -> None:
    for line in lines:
        words = line.split()
        if not words:
            continue
        command = words[0].lower()
        if command in ("quit", "exit"):
            return
        if command in _BUTTONS and len(words) == 1:
            getattr(simulator, _BUTTONS[command])()
        elif command in _SLIDERS and len(words) == 2:
            try:
                value = int(words[1])
            except ValueError:
                print(f"invalid value: {words[1]!r}", file=sys.stderr, flush=True)
                continue
            getattr(simulator, _SLIDERS[command])(value)
        else:
            print(f"unknown command: {line.strip()!r}", file=sys.stderr, flush=True)


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
        prog="vehicle-dash-simulator",
        description=(
            "Publish vehicle readings. Commands are read from standard input: "
            "'speed N', 'rpm N', 'temp N', 'fuel N', 'left', 'right', 'quit'."
        ),
    )
    parser.add_argument("--bind", type=_address, default=("0.0.0.0", 30509))
    parser.add_argument("--peer", type=_address, default=None)
    parser.add_argument("--verbose", action="store_true",
                        help="log every control change")
    return parser


def _serve(service: SimulatorService) -> None:
    try:
        service.start()
    except SomeIpError as exc:
        log.debug("simulator service did not run: %s", exc)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the simulator service and read control commands until end of input."""
    args = _parser().parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    app = Application("ECU", args.bind, args.peer)
    service = SimulatorService(app)
    simulator = VehicleSimulator(service.send_data)
    worker = threading.Thread(target=_serve, args=(service,), daemon=True,
                              name="simulator-service")
    worker.start()
    try:
        _run_commands(simulator, sys.stdin)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
        worker.join()
    return 0