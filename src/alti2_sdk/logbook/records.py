"""
Logbook Records
===============

One logbook entry describes a single jump or dive. The instrument
stores every entry in a 20-byte little-endian body:

    Offset  Size  Field
    ------  ----  -----------------------------------------------
    0       1     Event kind (1 = jump, 2 = dive)
    1       2     Event number
    3       4     Timestamp, seconds since 2000-01-01 00:00 UTC
    7       2     Exit altitude in feet (jump) / max depth in cm (dive)
    9       2     Deployment altitude in feet (jump only)
    11      2     Freefall time (jump) / dive time (dive), seconds
    13      2     Canopy time (jump) / surface interval (dive), seconds
    15      2     Maximum speed, 0.1 mph
    17      2     Average speed, 0.1 mph
    19      1     Checksum, 8-bit sum of bytes 0-18

Bodies longer than 20 bytes carry fields added by newer firmware; the
extra bytes are ignored.
"""

import struct
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Any, Final, Optional

from alti2_sdk.comms.checksum import checksum
from alti2_sdk.errors import DecodeError

# =============================================================================
# Constants
# =============================================================================

RECORD_STRUCT: Final[struct.Struct] = struct.Struct("<BHIHHHHHHB")
RECORD_SIZE: Final[int] = RECORD_STRUCT.size

# Device clock epoch
DEVICE_EPOCH: Final[datetime] = datetime(2000, 1, 1, tzinfo=timezone.utc)

# Timestamps of erased or never-written entries
ERASED_TIMESTAMPS: Final[frozenset[int]] = frozenset({0x00000000, 0xFFFFFFFF})

FEET_TO_METRES: Final[float] = 0.3048
CENTIMETRES_TO_METRES: Final[float] = 0.01
MPH_TO_MS: Final[float] = 0.44704

# Speeds are stored in tenths of a mile per hour
SPEED_SCALE: Final[float] = 0.1


class EventKind(IntEnum):
    """Type of logged event."""

    JUMP = 1
    DIVE = 2


# =============================================================================
# Record
# =============================================================================

@dataclass(frozen=True)
class LogbookRecord:
    """
    A validated logbook entry in SI units.

    Jumps fill ``altitude_m`` and ``deploy_altitude_m``; dives fill
    ``depth_m``. For a jump ``duration_s`` is the freefall time and
    ``secondary_duration_s`` the canopy time; for a dive they are the
    dive time and the preceding surface interval.

    Attributes:
        index: Position of the record within the dump
        number: Event number assigned by the instrument
        timestamp: Event time (UTC)
        kind: JUMP or DIVE
        raw: The raw record body the values were decoded from
    """

    index: int
    number: int
    timestamp: datetime
    kind: EventKind
    altitude_m: Optional[float]
    depth_m: Optional[float]
    deploy_altitude_m: Optional[float]
    duration_s: int
    secondary_duration_s: int
    max_speed_ms: float
    avg_speed_ms: float
    raw: bytes = field(default=b"", repr=False, compare=False)

    @classmethod
    def from_bytes(cls, index: int, raw: bytes) -> "LogbookRecord":
        """
        Decode and validate one record body.

        Args:
            index: Record index within the dump (for error reporting).
            raw: Record body, at least RECORD_SIZE bytes.

        Raises:
            DecodeError: If any validation check fails.
        """
        raw = bytes(raw)
        if len(raw) < RECORD_SIZE:
            raise DecodeError(index, raw, f"record too short: {len(raw)} bytes, need {RECORD_SIZE}")

        (
            kind_code, number, seconds, altitude, deploy,
            duration, secondary, max_speed, avg_speed, stored_sum,
        ) = RECORD_STRUCT.unpack_from(raw)

        calculated = checksum(raw[:RECORD_SIZE - 1])
        if calculated != stored_sum:
            raise DecodeError(
                index, raw,
                f"checksum mismatch: stored {stored_sum:02X}, calculated {calculated:02X}",
            )

        try:
            kind = EventKind(kind_code)
        except ValueError:
            raise DecodeError(index, raw, f"unknown event kind {kind_code}") from None

        if seconds in ERASED_TIMESTAMPS:
            raise DecodeError(index, raw, f"erased timestamp 0x{seconds:08X}")

        if kind is EventKind.JUMP:
            if deploy > altitude:
                raise DecodeError(
                    index, raw,
                    f"deployment altitude {deploy} ft above exit altitude {altitude} ft",
                )
            altitude_m = round(altitude * FEET_TO_METRES, 2)
            deploy_m: Optional[float] = round(deploy * FEET_TO_METRES, 2)
            depth_m = None
        else:
            altitude_m = None
            deploy_m = None
            depth_m = round(altitude * CENTIMETRES_TO_METRES, 2)

        return cls(
            index=index,
            number=number,
            timestamp=DEVICE_EPOCH + timedelta(seconds=seconds),
            kind=kind,
            altitude_m=altitude_m,
            depth_m=depth_m,
            deploy_altitude_m=deploy_m,
            duration_s=duration,
            secondary_duration_s=secondary,
            max_speed_ms=round(max_speed * SPEED_SCALE * MPH_TO_MS, 2),
            avg_speed_ms=round(avg_speed * SPEED_SCALE * MPH_TO_MS, 2),
            raw=raw,
        )

    def to_dict(self) -> dict[str, Any]:
        """Export shape: JSON-compatible values, ISO-8601 timestamp, no raw bytes."""
        return {
            "index": self.index,
            "number": self.number,
            "kind": self.kind.name.lower(),
            "timestamp": self.timestamp.isoformat(),
            "altitude_m": self.altitude_m,
            "depth_m": self.depth_m,
            "deploy_altitude_m": self.deploy_altitude_m,
            "duration_s": self.duration_s,
            "secondary_duration_s": self.secondary_duration_s,
            "max_speed_ms": self.max_speed_ms,
            "avg_speed_ms": self.avg_speed_ms,
        }

    def __str__(self) -> str:
        when = self.timestamp.strftime("%Y-%m-%d %H:%M")
        if self.kind is EventKind.JUMP:
            return (
                f"Jump #{self.number} {when}: exit {self.altitude_m:.0f} m, "
                f"deploy {self.deploy_altitude_m:.0f} m, freefall {self.duration_s}s"
            )
        return f"Dive #{self.number} {when}: depth {self.depth_m:.1f} m, time {self.duration_s}s"


def encode_record(
    kind: int,
    number: int,
    seconds: int,
    altitude: int,
    deploy: int = 0,
    duration: int = 0,
    secondary: int = 0,
    max_speed: int = 0,
    avg_speed: int = 0,
) -> bytes:
    """
    Build a raw record body in device units, with a valid checksum.

    Used to produce logbook images for simulators and tests.
    """
    body = RECORD_STRUCT.pack(
        kind, number, seconds, altitude, deploy,
        duration, secondary, max_speed, avg_speed, 0,
    )
    return body[:-1] + bytes([checksum(body[:-1])])
