"""Wire format shared by the vehicle simulator and the dashboard."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

SAMPLE_SERVICE_ID = 0x1234
SAMPLE_INSTANCE_ID = 0x5678
SAMPLE_METHOD_ID = 0x0421

SAMPLE_EVENT_ID = 0x8778
SAMPLE_GET_METHOD_ID = 0x0001
SAMPLE_SET_METHOD_ID = 0x0002

SAMPLE_EVENTGROUP_ID = 0x4465

OTHER_SAMPLE_SERVICE_ID = 0x0248
OTHER_SAMPLE_INSTANCE_ID = 0x5422
OTHER_SAMPLE_METHOD_ID = 0x1421


class DataType(IntEnum):
    """Kind of reading carried in the first byte of a payload."""

    SPEED = 0
    RPM = 1
    FUEL = 2
    TEMP = 3
    LI = 4
    RI = 5
    UN = 6


class PayloadTooShortError(ValueError):
    """Raised when a payload holds fewer than the two bytes a reading needs."""


@dataclass(frozen=True)
class VehicleData:
    """One reading: a type byte followed by a value byte.

    ``type`` is kept as a plain integer so that readings of an unknown kind
    survive decoding; compare it with :class:`DataType` members.
    """

    type: int
    message: int

    def encode(self) -> bytes:
        """Return the two-byte payload; both fields are truncated to a byte."""
        return bytes((int(self.type) & 0xFF, int(self.message) & 0xFF))

    @classmethod
    def decode(cls, payload: bytes) -> "VehicleData":
        """Read a reading from the first two bytes of ``payload``."""
        if len(payload) < 2:
            raise PayloadTooShortError(
                f"payload of {len(payload)} byte(s) is too short, need 2"
            )
        return cls(type=payload[0], message=payload[1])


def format_payload(payload: bytes) -> str:
    """Render bytes as two-digit hex, each followed by a space."""
    return "".join(f"{byte:02x} " for byte in payload)