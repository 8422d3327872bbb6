"""Instrument cluster model: observable gauge values and an odometer."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, ClassVar, Optional

log = logging.getLogger(__name__)

_INITIAL_ODOMETER_METRES = 23567 * 1000
_ODOMETER_MODULUS = 2**32


def format_distance(metres: int) -> str:
    """Format a distance in metres as whole kilometres with English grouping."""
    return f"{metres // 1000:,} km"


def _to_int(value: Any) -> int:
    """Loose integer conversion; anything unconvertible counts as zero."""
    if value is None:
        return 0
    if isinstance(value, (bool, int)):
        return int(value)
    if isinstance(value, float):
        return round(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


def _truncating_div(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator >= 0) else -quotient


class _Gauge:
    """An observable cluster value; assignment notifies listeners."""

    def __init__(self, label: Optional[str] = None) -> None:
        self.label = label
        self.name = ""

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name
        owner._properties = getattr(owner, "_properties", frozenset()) | {name}

    def __get__(self, obj: Any, objtype: Optional[type] = None) -> Any:
        if obj is None:
            return self
        with obj._lock:
            return obj._values.get(self.name)

    def __set__(self, obj: Any, value: Any) -> None:
        obj._store(self.name, value, self.label)


class Cluster:
    """Values shown on the dashboard.

    Each gauge is an attribute; assigning to it logs the new value and calls
    every callback connected to that attribute with the value.
    """

    _properties: ClassVar[frozenset] = frozenset()
    _instance: ClassVar[Optional["Cluster"]] = None
    _instance_lock: ClassVar[threading.Lock] = threading.Lock()

    speed = _Gauge("Speed")
    rpm = _Gauge("RPM")
    fuel = _Gauge("fuel")
    total_distance = _Gauge()
    temp = _Gauge("Temp")
    r_value = _Gauge("r_value")
    l_value = _Gauge("l_value")

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._values: dict[str, Any] = {}
        self._listeners: dict[str, list[Callable[[Any], None]]] = defaultdict(list)
        self._odometer = _INITIAL_ODOMETER_METRES
        self._timer_stop: Optional[threading.Event] = None
        self._timer_thread: Optional[threading.Thread] = None

    @classmethod
    def instance(cls) -> "Cluster":
        """Return the shared cluster, creating, resetting and starting it once."""
        with cls._instance_lock:
            if cls._instance is None:
                cluster = cls()
                cluster.reset()
                cluster.start_odometer(1.0)
                cls._instance = cluster
            return cls._instance

    @classmethod
    def finalize(cls) -> None:
        """Stop and drop the shared cluster, if there is one."""
        with cls._instance_lock:
            if cls._instance is not None:
                cls._instance.stop_odometer()
                cls._instance = None

    def reset(self) -> None:
        """Put the gauges back to their start-up readings."""
        self.speed = 0
        self.rpm = 0
        self.fuel = 0
        self.total_distance = format_distance(_INITIAL_ODOMETER_METRES)

    def connect(self, prop: str, callback: Callable[[Any], None]) -> None:
        """Call ``callback(value)`` whenever ``prop`` is assigned."""
        if prop not in self._properties:
            raise ValueError(f"unknown cluster property: {prop!r}")
        with self._lock:
            self._listeners[prop].append(callback)

    def tick(self) -> None:
        """Advance the odometer by one second of travel at the current speed."""
        with self._lock:
            speed = _to_int(self._values.get("speed"))
            move = _truncating_div(speed * 1000, 60 * 60)
            self._odometer = (self._odometer + move) % _ODOMETER_MODULUS
            metres = self._odometer
        self.total_distance = format_distance(metres)

    def start_odometer(self, interval: float = 1.0) -> None:
        """Call :meth:`tick` every ``interval`` seconds in a background thread."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        with self._lock:
            if self._timer_thread is not None:
                raise RuntimeError("odometer is already running")
            stop = threading.Event()
            thread = threading.Thread(
                target=self._run_timer, args=(stop, interval), daemon=True,
                name="cluster-odometer",
            )
            self._timer_stop = stop
            self._timer_thread = thread
        thread.start()

    def stop_odometer(self) -> None:
        """Stop the background odometer; does nothing if it is not running."""
        with self._lock:
            stop, thread = self._timer_stop, self._timer_thread
            self._timer_stop = None
            self._timer_thread = None
        if stop is not None:
            stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _run_timer(self, stop: threading.Event, interval: float) -> None:
        while not stop.wait(interval):
            self.tick()

    def _store(self, name: str, value: Any, label: Optional[str]) -> None:
        with self._lock:
            self._values[name] = value
            listeners = list(self._listeners.get(name, ()))
        if label is not None:
            log.debug("Setting %s: %r", label, value)
        for callback in listeners:
            callback(value)