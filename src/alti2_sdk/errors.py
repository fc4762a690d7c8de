"""
Alti-2 SDK Error Hierarchy
==========================

This module defines the exception hierarchy for the entire Alti-2 SDK.
All exceptions inherit from Alti2Error, allowing callers to catch all
SDK-related errors with a single except clause if desired.

Exception Hierarchy
-------------------
Alti2Error (base)
├── CommsError (serial communication)
│   ├── TransportError - the byte channel failed (fatal, reconnect)
│   ├── TimeoutError - no response within the transaction deadline
│   ├── PayloadTooLarge - frame body exceeds the one-byte length field
│   └── ProtocolError - malformed frame, unexpected message, bad state
│       ├── DeviceError - the device answered with an error frame
│       ├── IllegalTransition - handshake transition not in the table
│       ├── TransactionBusy - a transaction is already outstanding
│       └── UnsupportedDevice - product type has no capability entry
├── SessionError (failure of a whole session phase)
│   ├── ConnectionError - handshake phase failed
│   ├── ExtractionError - logbook extraction phase failed
│   └── SessionStateError - operation not allowed in the current state
└── DecodeError (logbook record failed validation)
    └── DumpFormatError - the dump framing itself is unrecoverable

Design Philosophy
-----------------
Protocol errors are always surfaced, never corrected: an unexpected
message means either a corrupted link or a protocol misunderstanding.
Session-level errors name the phase that failed (handshake or
extraction) and chain the underlying comms error as ``__cause__``.
Decode errors carry the record index and the raw record bytes so the
dump can be contributed to protocol analysis later.
"""

from enum import Enum
from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class Alti2Error(Exception):
    """
    Base exception for all Alti-2 SDK errors.

    All exceptions in the SDK inherit from this class, allowing callers
    to catch all SDK-related errors with a single except clause:

        try:
            session.connect()
        except Alti2Error as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Communication Exceptions
# =============================================================================

class CommsError(Alti2Error):
    """Base exception for serial communication errors."""
    pass


class TransportError(CommsError):
    """
    The byte channel failed.

    Raised when:
    - The serial port disappears (cable pulled, adapter reset)
    - A write or read on the port raises an OS-level error
    - The channel has already been closed

    A transport error is fatal for the session: the channel must be
    reopened and the handshake repeated.
    """
    pass


class TimeoutError(CommsError):
    """
    Communication timeout error.

    Raised when a transaction exhausts its retry budget without
    receiving a matching response from the device. This could indicate:
    - Device not switched on or not in PC-link mode
    - Cable disconnected
    - Incorrect baud rate or flow control settings

    Note:
        This is an Alti-2-specific TimeoutError, distinct from the
        Python builtin TimeoutError. It inherits from CommsError
        for consistent error handling in the comms module.
    """

    def __init__(self, message: str, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class PayloadTooLarge(CommsError):
    """
    Frame payload exceeds the maximum frame size.

    The frame length field is a single byte covering the message kind
    and the payload, so at most 254 payload bytes fit in one frame.
    """

    def __init__(self, size: int, maximum: int):
        self.size = size
        self.maximum = maximum
        super().__init__(
            f"Payload too large: {size} bytes, maximum {maximum}"
        )


class ProtocolError(CommsError):
    """
    Link protocol error.

    Raised when the device sends an unexpected response or the
    protocol state machine enters an invalid state.
    """
    pass


class DeviceError(ProtocolError):
    """
    Error reported by the device itself.

    Raised when the device answers a request with a DEVICE_ERROR frame.
    The error code is kept verbatim; its meaning is not documented.
    """

    def __init__(self, code: Optional[int], message: str = ""):
        self.code = code
        if not message:
            if code is None:
                message = "Device reported an error (no error code)"
            else:
                message = f"Device reported error code 0x{code:02X}"
        super().__init__(message)


class IllegalTransition(ProtocolError):
    """
    Handshake state machine received an event not legal in its state.

    The transition table is explicit: any (state, event) pair that is
    not listed is rejected with this error.
    """

    def __init__(self, state: str, event: str):
        self.state = state
        self.event = event
        super().__init__(f"Illegal transition: {event} in state {state}")


class TransactionBusy(ProtocolError):
    """
    A second transaction was started while one is still outstanding.

    The device has no request multiplexing.
    """
    pass


class UnsupportedDevice(ProtocolError):
    """
    The device identified itself as a product with no capability entry.

    Raised during capability negotiation.
    """
    pass


# =============================================================================
# Session Exceptions
# =============================================================================

class Phase(str, Enum):
    """Session phase in which a failure occurred."""

    HANDSHAKE = "handshake"
    EXTRACTION = "extraction"


class SessionError(Alti2Error):
    """
    Base exception for session-level failures.

    Attributes:
        phase: The session phase that failed (None when not phase-bound)
    """

    def __init__(self, message: str, phase: Optional[Phase] = None):
        self.phase = phase
        if phase is not None:
            message = f"{phase.value} failed: {message}"
        super().__init__(message)


class ConnectionError(SessionError):
    """
    Cannot establish an authenticated session with the device.

    Raised by Session.connect() when the handshake fails for any reason
    (timeout, protocol violation, device error, unsupported product).
    The session is left in the FAULTED state; the caller is responsible
    for retrying the whole connection attempt.
    """

    def __init__(self, message: str):
        super().__init__(message, phase=Phase.HANDSHAKE)


class ExtractionError(SessionError):
    """
    Logbook extraction failed after the session was authenticated.

    The underlying comms error is available as ``__cause__``.
    """

    def __init__(self, message: str):
        super().__init__(message, phase=Phase.EXTRACTION)


class SessionStateError(SessionError):
    """
    Operation not permitted in the current session state.

    For example, reading the logbook before the handshake completed.
    """
    pass


# =============================================================================
# Logbook Decode Exceptions
# =============================================================================

class DecodeError(Alti2Error):
    """
    A logbook record failed validation.

    Decode errors are normally yielded alongside decoded records rather
    than raised, so one bad record does not hide the good ones.

    Attributes:
        index: Record index within the dump (None for dump-level errors)
        raw: The raw bytes of the offending record
        reason: Short description of the failed check
    """

    def __init__(self, index: Optional[int], raw: bytes, reason: str):
        self.index = index
        self.raw = bytes(raw)
        self.reason = reason
        where = "dump" if index is None else f"record {index}"
        super().__init__(f"{where}: {reason} (raw: {self.raw.hex(' ') or 'empty'})")


class DumpFormatError(DecodeError):
    """
    The logbook dump framing is unrecoverable.

    Raised when record boundaries can no longer be found, for example a
    truncated header or a length prefix that runs past the end of the
    dump. Records decoded before this point remain valid.
    """
    pass
