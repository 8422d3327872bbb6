"""A small SOME/IP style messaging layer over UDP.

Messages use the SOME/IP header layout. Service discovery is a reduced
control protocol carried on service ``0xFFFF``. It has find, offer, stop
offer, subscribe and unsubscribe, so that applications can announce
services, discover them and subscribe to event groups.
"""

from __future__ import annotations

import logging
import socket
import struct
import threading
import time
import zlib
from collections import defaultdict
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Callable, Iterable, Optional

log = logging.getLogger(__name__)

Address = tuple

ANY_SERVICE = 0xFFFF
ANY_INSTANCE = 0xFFFF
ANY_METHOD = 0xFFFF

PROTOCOL_VERSION = 0x01
HEADER_SIZE = 16

_HEADER = struct.Struct(">HHIHHBBBB")
_SD_SERVICE = 0xFFFF
_MAX_DATAGRAM = 65535


class MessageType(IntEnum):
    """SOME/IP message types."""

    REQUEST = 0x00
    REQUEST_NO_RETURN = 0x01
    NOTIFICATION = 0x02
    RESPONSE = 0x80
    ERROR = 0x81


class _Control(IntEnum):
    FIND = 0x0001
    OFFER = 0x0002
    STOP_OFFER = 0x0003
    SUBSCRIBE = 0x0004
    UNSUBSCRIBE = 0x0005


class SomeIpError(Exception):
    """Raised for malformed messages and misuse of an application."""


@dataclass(frozen=True)
class Message:
    """One SOME/IP message.

    ``instance`` is not part of the wire format. The receiving application
    fills it in from the service offer the message belongs to.
    """

    service: int
    method: int
    payload: bytes = b""
    client: int = 0
    session: int = 0
    message_type: MessageType = MessageType.NOTIFICATION
    interface_version: int = 0
    return_code: int = 0
    instance: int = field(default=0, compare=False)

    def encode(self) -> bytes:
        """Return the header followed by the payload."""
        payload = bytes(self.payload)
        try:
            header = _HEADER.pack(
                self.service,
                self.method,
                8 + len(payload),
                self.client,
                self.session,
                PROTOCOL_VERSION,
                self.interface_version,
                int(self.message_type),
                self.return_code,
            )
        except struct.error as exc:
            raise SomeIpError(f"cannot encode message: {exc}") from exc
        return header + payload

    @classmethod
    def decode(cls, data: bytes) -> "Message":
        """Parse one message that fills ``data`` exactly."""
        data = bytes(data)
        if len(data) < HEADER_SIZE:
            raise SomeIpError(
                f"message of {len(data)} byte(s) is shorter than the header"
            )
        (service, method, length, client, session, protocol,
         interface, kind, return_code) = _HEADER.unpack_from(data)
        if protocol != PROTOCOL_VERSION:
            raise SomeIpError(f"unsupported protocol version {protocol:#04x}")
        if length != len(data) - 8:
            raise SomeIpError(
                f"length field {length} does not match {len(data) - 8} byte(s)"
            )
        try:
            message_type = MessageType(kind)
        except ValueError as exc:
            raise SomeIpError(f"unknown message type {kind:#04x}") from exc
        return cls(
            service=service,
            method=method,
            payload=data[HEADER_SIZE:],
            client=client,
            session=session,
            message_type=message_type,
            interface_version=interface,
            return_code=return_code,
        )


MessageHandler = Callable[[Message], None]
AvailabilityHandler = Callable[[int, int, bool], None]


def _matches(registered: int, actual: int) -> bool:
    return registered == 0xFFFF or registered == actual


class Application:
    """An endpoint that offers and consumes services over one UDP socket.

    ``bind`` is the local ``(host, port)``. ``peer`` is the ``(host, port)``
    that offers and find requests are sent to, or ``None``. The socket is
    bound at construction. :meth:`start` runs the receive loop until
    :meth:`stop` is called.
    """

    OFFER_INTERVAL = 1.0
    _POLL_INTERVAL = 0.1

    def __init__(self, name: str, bind: Address = ("0.0.0.0", 0),
                 peer: Optional[Address] = None) -> None:
        self.name = name
        self.client_id = (zlib.crc32(name.encode("utf-8")) & 0xFFFF) or 1
        self._peer = tuple(peer) if peer is not None else None
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            self._sock.bind(tuple(bind))
        except OSError:
            self._sock.close()
            raise
        self._sock.settimeout(self._POLL_INTERVAL)
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._running = False
        self._session = 0

        self._offered: set[tuple[int, int]] = set()
        self._offered_events: dict[tuple[int, int, int], frozenset[int]] = {}
        self._field_values: dict[tuple[int, int, int], bytes] = {}
        self._subscribers: dict[tuple[int, int, int], set[Address]] = defaultdict(set)
        self._clients: set[Address] = set()

        self._requested: set[tuple[int, int]] = set()
        self._requested_events: dict[tuple[int, int, int], frozenset[int]] = {}
        self._subscriptions: set[tuple[int, int, int]] = set()
        self._remote: dict[tuple[int, int], Address] = {}

        self._message_handlers: list[tuple[tuple[int, int, int], MessageHandler]] = []
        self._availability_handlers: dict[
            tuple[int, int], list[AvailabilityHandler]
        ] = defaultdict(list)

    @property
    def address(self) -> Address:
        """The local ``(host, port)`` the socket is bound to."""
        return self._sock.getsockname()

    # Provider side

    def offer_service(self, service: int, instance: int) -> None:
        """Offer a service instance and announce it to the peer."""
        with self._lock:
            self._offered.add((service, instance))
        self._send_control(_Control.OFFER, (service, instance), self._peer)

    def offer_event(self, service: int, instance: int, event: int,
                    eventgroups: Iterable[int]) -> None:
        """Declare a field event of an offered service and its event groups."""
        with self._lock:
            self._offered_events[(service, instance, event)] = frozenset(eventgroups)

    def notify(self, service: int, instance: int, event: int, payload: bytes) -> None:
        """Store the field value and send it to every subscriber."""
        key = (service, instance, event)
        data = bytes(payload)
        with self._lock:
            groups = self._offered_events.get(key)
            if groups is None:
                raise SomeIpError(
                    f"event {service:04x}.{instance:04x}.{event:04x} is not offered"
                )
            self._field_values[key] = data
            targets = set()
            for group in groups:
                targets |= self._subscribers.get((service, instance, group), set())
        for target in targets:
            self._send(self._notification(service, event, data), target)

    # Consumer side

    def request_service(self, service: int, instance: int) -> None:
        """Ask to be told when a service instance becomes available."""
        with self._lock:
            self._requested.add((service, instance))
        self._send_control(_Control.FIND, (service, instance), self._peer)

    def request_event(self, service: int, instance: int, event: int,
                      eventgroups: Iterable[int]) -> None:
        """Accept notifications of ``event``, which belongs to ``eventgroups``."""
        with self._lock:
            self._requested_events[(service, instance, event)] = frozenset(eventgroups)

    def subscribe(self, service: int, instance: int, eventgroup: int) -> None:
        """Subscribe to an event group now, or as soon as it is available."""
        with self._lock:
            self._subscriptions.add((service, instance, eventgroup))
            remote = self._remote.get((service, instance))
        if remote is not None:
            self._send_control(_Control.SUBSCRIBE, (service, instance, eventgroup), remote)

    def is_available(self, service: int, instance: int) -> bool:
        """Whether the instance is offered here or has been seen offered remotely."""
        key = (service, instance)
        with self._lock:
            return key in self._offered or key in self._remote

    def register_message_handler(self, service: int, instance: int, method: int,
                                 handler: MessageHandler) -> None:
        """Call ``handler(message)`` for matching messages; 0xFFFF matches any."""
        with self._lock:
            self._message_handlers.append(((service, instance, method), handler))

    def register_availability_handler(self, service: int, instance: int,
                                      handler: AvailabilityHandler) -> None:
        """Call ``handler(service, instance, available)`` on availability changes."""
        with self._lock:
            self._availability_handlers[(service, instance)].append(handler)
            available = self.is_available(service, instance)
        if available:
            self._call(handler, service, instance, True)

    # Lifecycle

    def start(self) -> None:
        """Run the receive loop until :meth:`stop` is called."""
        if self._stop.is_set():
            raise SomeIpError("application has been stopped")
        with self._lock:
            if self._running:
                raise SomeIpError("application is already running")
            self._running = True
        try:
            self._announce()
            next_announce = time.monotonic() + self.OFFER_INTERVAL
            while not self._stop.is_set():
                now = time.monotonic()
                if now >= next_announce:
                    self._announce()
                    next_announce = now + self.OFFER_INTERVAL
                try:
                    data, sender = self._sock.recvfrom(_MAX_DATAGRAM)
                except socket.timeout:
                    continue
                except OSError:
                    if self._stop.is_set():
                        break
                    raise
                self._handle(data, sender)
        finally:
            with self._lock:
                self._running = False

    def stop(self) -> None:
        """Withdraw offers and subscriptions, end the loop and close the socket."""
        if self._stop.is_set():
            return
        self._stop.set()
        with self._lock:
            offered = list(self._offered)
            targets = set(self._clients)
            if self._peer is not None:
                targets.add(self._peer)
            subscriptions = [
                (key, self._remote[key[:2]])
                for key in self._subscriptions
                if key[:2] in self._remote
            ]
        for service, instance in offered:
            for target in targets:
                self._send_control(_Control.STOP_OFFER, (service, instance), target)
        for key, remote in subscriptions:
            self._send_control(_Control.UNSUBSCRIBE, key, remote)
        self._sock.close()

    # Internals

    def _next_session(self) -> int:
        with self._lock:
            self._session = self._session % 0xFFFF + 1
            return self._session

    def _notification(self, service: int, event: int, payload: bytes) -> Message:
        return Message(service=service, method=event, payload=payload,
                       session=self._next_session(),
                       message_type=MessageType.NOTIFICATION)

    def _send(self, message: Message, target: Optional[Address]) -> None:
        if target is None:
            return
        try:
            self._sock.sendto(message.encode(), target)
        except OSError as exc:
            log.debug("%s: sending to %s failed: %s", self.name, target, exc)

    def _send_control(self, kind: _Control, fields: tuple, target: Optional[Address]) -> None:
        if target is None:
            return
        payload = struct.pack(">" + "H" * len(fields), *fields)
        message = Message(service=_SD_SERVICE, method=kind, payload=payload,
                          client=self.client_id, session=self._next_session(),
                          message_type=MessageType.REQUEST_NO_RETURN)
        self._send(message, target)

    def _announce(self) -> None:
        with self._lock:
            offered = list(self._offered)
            missing = [key for key in self._requested if key not in self._remote]
        for key in offered:
            self._send_control(_Control.OFFER, key, self._peer)
        for key in missing:
            self._send_control(_Control.FIND, key, self._peer)

    def _call(self, handler: Callable, *args) -> None:
        try:
            handler(*args)
        except Exception:
            log.exception("%s: handler %r failed", self.name, handler)

    def _handle(self, data: bytes, sender: Address) -> None:
        try:
            message = Message.decode(data)
        except SomeIpError as exc:
            log.warning("%s: dropping datagram from %s: %s", self.name, sender, exc)
            return
        if message.service == _SD_SERVICE:
            self._handle_control(message, sender)
        else:
            self._dispatch(message, sender)

    def _handle_control(self, message: Message, sender: Address) -> None:
        try:
            kind = _Control(message.method)
        except ValueError:
            log.debug("%s: unknown control method %#06x", self.name, message.method)
            return
        width = 6 if kind in (_Control.SUBSCRIBE, _Control.UNSUBSCRIBE) else 4
        if len(message.payload) != width:
            log.debug("%s: malformed %s from %s", self.name, kind.name, sender)
            return
        fields = struct.unpack(">" + "H" * (width // 2), message.payload)
        if kind is _Control.FIND:
            self._on_find(*fields, sender)
        elif kind is _Control.OFFER:
            self._on_offer(*fields, sender)
        elif kind is _Control.STOP_OFFER:
            self._on_stop_offer(*fields, sender)
        elif kind is _Control.SUBSCRIBE:
            self._on_subscribe(*fields, sender)
        else:
            self._on_unsubscribe(*fields, sender)

    def _on_find(self, service: int, instance: int, sender: Address) -> None:
        with self._lock:
            matches = [
                key for key in self._offered
                if key[0] == service and instance in (key[1], ANY_INSTANCE)
            ]
            if matches:
                self._clients.add(sender)
        for key in matches:
            self._send_control(_Control.OFFER, key, sender)

    def _availability_listeners(self, key: tuple[int, int]) -> list[AvailabilityHandler]:
        return (list(self._availability_handlers.get(key, ()))
                + list(self._availability_handlers.get((key[0], ANY_INSTANCE), ())))

    def _on_offer(self, service: int, instance: int, sender: Address) -> None:
        key = (service, instance)
        with self._lock:
            if key not in self._requested and (service, ANY_INSTANCE) not in self._requested:
                return
            previous = self._remote.get(key)
            if previous == sender:
                return
            self._remote[key] = sender
            groups = [g for (s, i, g) in self._subscriptions if (s, i) == key]
            listeners = self._availability_listeners(key) if previous is None else []
        for group in groups:
            self._send_control(_Control.SUBSCRIBE, (service, instance, group), sender)
        for handler in listeners:
            self._call(handler, service, instance, True)

    def _on_stop_offer(self, service: int, instance: int, sender: Address) -> None:
        key = (service, instance)
        with self._lock:
            if self._remote.get(key) != sender:
                return
            del self._remote[key]
            listeners = self._availability_listeners(key)
        for handler in listeners:
            self._call(handler, service, instance, False)

    def _on_subscribe(self, service: int, instance: int, group: int,
                      sender: Address) -> None:
        with self._lock:
            if (service, instance) not in self._offered:
                return
            self._subscribers[(service, instance, group)].add(sender)
            self._clients.add(sender)
            initial = [
                (event, self._field_values[key])
                for key, groups in self._offered_events.items()
                for event in (key[2],)
                if key[:2] == (service, instance) and group in groups
                and key in self._field_values
            ]
        for event, payload in initial:
            self._send(self._notification(service, event, payload), sender)

    def _on_unsubscribe(self, service: int, instance: int, group: int,
                        sender: Address) -> None:
        with self._lock:
            self._subscribers.get((service, instance, group), set()).discard(sender)

    def _resolve_instance(self, service: int, sender: Address) -> Optional[int]:
        for (s, i), address in self._remote.items():
            if s == service and address == sender:
                return i
        return next((i for s, i in self._offered if s == service), None)

    def _dispatch(self, message: Message, sender: Address) -> None:
        with self._lock:
            instance = self._resolve_instance(message.service, sender)
            if instance is None:
                return
            if (message.message_type is MessageType.NOTIFICATION
                    and (message.service, instance, message.method)
                    not in self._requested_events):
                return
            handlers = [
                handler
                for (service, inst, method), handler in self._message_handlers
                if _matches(service, message.service)
                and _matches(inst, instance)
                and _matches(method, message.method)
            ]
        message = replace(message, instance=instance)
        for handler in handlers:
            self._call(handler, message)