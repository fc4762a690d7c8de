"""
Alti-2 Frame Codec
==================

This module implements framing for the Alti-2 serial protocol. It
handles:

- Frame encoding (length, message kind, payload, checksum)
- Hex-ASCII rendering for both directions of the link
- Streaming decode with partial-read and corruption tolerance
- Resynchronization after garbled bytes

Frame Overview
--------------
Every frame has the same binary form:

    ┌────────┬────────┬──────────────┬──────────┐
    │ Length │  Kind  │   Payload    │ Checksum │
    │  1 B   │  1 B   │ 0-254 bytes  │   1 B    │
    └────────┴────────┴──────────────┴──────────┘

- Length counts kind + payload (so it is never zero)
- Checksum is the 8-bit sum of kind + payload

The binary form never travels as-is. Each direction renders it as
hex ASCII, described by a FrameLayout table:

    Host → device:  "018080"                    (compact, uppercase)
    Device → host:  "01 80 80 \\r\\n"             (spaced, CRLF ended)

Everything that is specific to the wire format lives in the layout
and message tables in this module. A new protocol variant is added by
defining new tables, without touching the transaction engine or the
handshake state machine.

Streaming Decode
----------------
FrameCodec.decode() looks at the bytes at a cursor and answers one of:

- Frame: a complete, checksum-verified frame
- NeedMoreData: the bytes so far are a valid prefix of a frame
- Invalid: the bytes cannot start a frame here; skip and retry

Any structural break visible in the bytes already received (a non-hex
digit, a missing separator, a missing terminator) is reported as
Invalid immediately, even if the declared length is not yet reached.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Final, Iterator, Mapping, Union

from alti2_sdk.comms.checksum import checksum
from alti2_sdk.errors import PayloadTooLarge

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Protocol Constants
# =============================================================================

# Largest kind + payload that the one-byte length field can describe
MAX_BODY_SIZE: Final[int] = 0xFF

# Largest payload in one frame (body minus the kind byte)
MAX_PAYLOAD_SIZE: Final[int] = MAX_BODY_SIZE - 1

# ASCII hex digits accepted on input (device sends uppercase)
HEX_DIGITS: Final[frozenset[int]] = frozenset(b"0123456789ABCDEFabcdef")


# =============================================================================
# Message Kinds
# =============================================================================

class MessageKind(IntEnum):
    """
    Documented Alti-2 message kinds.

    Host requests have the high bit set; the device answers with the
    same kind with the high bit cleared.
    """

    # Device identification, the first handshake response
    TYPE0 = 0x00

    # One page of the logbook dump
    LOGBOOK_PAGE = 0x02

    # Device-side failure; payload is a one-byte error code
    DEVICE_ERROR = 0x7F

    # Request device identification (opens the session)
    GET_INFO = 0x80

    # Request one logbook page; payload is the page index
    READ_LOGBOOK = 0x82

    @classmethod
    def describe(cls, kind: int) -> str:
        """Get a printable name for any kind byte, documented or not."""
        try:
            return cls(kind).name
        except ValueError:
            return f"UNKNOWN(0x{kind:02X})"


# Number of leading payload bytes that form the correlation tag. The
# device echoes the page index of READ_LOGBOOK in LOGBOOK_PAGE.
ALTI2_TAG_LENGTHS: Final[Mapping[int, int]] = {
    MessageKind.READ_LOGBOOK: 2,
    MessageKind.LOGBOOK_PAGE: 2,
}


# =============================================================================
# Layout Tables
# =============================================================================

@dataclass(frozen=True)
class FrameLayout:
    """
    Wire rendering of the binary frame form.

    Each binary byte is written as two hex digits followed by
    ``separator``; the whole frame is followed by ``terminator``.

    Attributes:
        name: Layout identifier used in log messages
        separator: Bytes written after every hex pair
        terminator: Bytes written after the last pair
        known_kinds: Message kinds documented for this variant
        tag_lengths: Correlation tag length per message kind
    """

    name: str
    separator: bytes
    terminator: bytes
    known_kinds: frozenset[int] = field(
        default_factory=lambda: frozenset(int(k) for k in MessageKind)
    )
    tag_lengths: Mapping[int, int] = field(
        default_factory=lambda: dict(ALTI2_TAG_LENGTHS), hash=False
    )

    @property
    def pair_width(self) -> int:
        """Wire bytes used by one binary byte."""
        return 2 + len(self.separator)

    def wire_length(self, body_length: int) -> int:
        """Wire size of a frame whose kind + payload is ``body_length``."""
        return (body_length + 2) * self.pair_width + len(self.terminator)

    def render(self, binary: bytes) -> bytes:
        """Render a binary frame as wire bytes."""
        return b"".join(b"%02X" % byte + self.separator for byte in binary) + self.terminator


# Host → device: compact uppercase hex, no terminator ("018080")
HOST_LAYOUT: Final[FrameLayout] = FrameLayout(
    name="alti2-host", separator=b"", terminator=b""
)

# Device → host: "XX " per byte, CRLF at the end
DEVICE_LAYOUT: Final[FrameLayout] = FrameLayout(
    name="alti2-device", separator=b" ", terminator=b"\r\n"
)


# =============================================================================
# Decode Results
# =============================================================================

@dataclass(frozen=True)
class Frame:
    """
    A checksum-verified protocol frame.

    Attributes:
        kind: Message kind byte
        payload: Payload bytes after the kind byte
        checksum: Transmitted (and verified) checksum
        tag: Correlation tag, the leading payload bytes for tagged kinds
        known: True if the kind belongs to the documented message set
        raw: The exact wire bytes of the frame
    """

    kind: int
    payload: bytes
    checksum: int
    tag: bytes = b""
    known: bool = True
    raw: bytes = field(default=b"", repr=False, compare=False)

    @property
    def kind_name(self) -> str:
        return MessageKind.describe(self.kind)

    @property
    def binary(self) -> bytes:
        """Binary frame form: length, kind, payload, checksum."""
        body = bytes([self.kind]) + self.payload
        return bytes([len(body)]) + body + bytes([self.checksum])

    def __repr__(self) -> str:
        data_repr = (
            self.payload[:20].hex() + "..."
            if len(self.payload) > 20
            else self.payload.hex()
        )
        return f"Frame(kind={self.kind_name}, payload[{len(self.payload)}]={data_repr})"


@dataclass(frozen=True)
class NeedMoreData:
    """The bytes at the cursor are a valid frame prefix; ``needed`` more are required."""

    needed: int


@dataclass(frozen=True)
class Invalid:
    """No frame starts at the cursor; skip ``skip`` bytes and retry."""

    skip: int
    reason: str


DecodeResult = Union[Frame, NeedMoreData, Invalid]


# =============================================================================
# Codec
# =============================================================================

class FrameCodec:
    """
    Encoder/decoder for one direction of the link.

    Example:
        codec = FrameCodec(HOST_LAYOUT)
        codec.encode(MessageKind.GET_INFO)      # b'018080'

        reply = FrameCodec(DEVICE_LAYOUT)
        result = reply.decode(buffer)
        if isinstance(result, Frame):
            ...
    """

    def __init__(self, layout: FrameLayout):
        self.layout = layout

    def encode(self, kind: int, payload: bytes = b"") -> bytes:
        """
        Serialize one frame for transmission.

        Args:
            kind: Message kind byte (0-255).
            payload: Message payload.

        Returns:
            Wire bytes ready to write to the channel.

        Raises:
            PayloadTooLarge: If the payload does not fit the length field.
            ValueError: If kind is not a byte value.
        """
        if not 0 <= kind <= 0xFF:
            raise ValueError(f"Message kind must be 0-255, got {kind}")
        body = bytes([kind]) + bytes(payload)
        if len(body) > MAX_BODY_SIZE:
            raise PayloadTooLarge(len(payload), MAX_PAYLOAD_SIZE)

        binary = bytes([len(body)]) + body + bytes([checksum(body)])
        wire = self.layout.render(binary)

        logger.debug(
            "Encoded frame: kind=%s payload_len=%d wire_len=%d layout=%s",
            MessageKind.describe(kind), len(payload), len(wire), self.layout.name
        )
        return wire

    def make(self, kind: int, payload: bytes = b"") -> Frame:
        """Build a Frame object (with its wire bytes) for sending."""
        wire = self.encode(kind, payload)
        body = bytes([kind]) + bytes(payload)
        return self._frame(kind, bytes(payload), checksum(body), wire)

    def decode(self, buffer: Union[bytes, bytearray], offset: int = 0) -> DecodeResult:
        """
        Try to parse one frame starting at ``offset``.

        Never raises on truncated or garbled input: truncation yields
        NeedMoreData and garbage yields Invalid with a skip of one
        byte, so the caller can search for the next frame start.

        Args:
            buffer: Received bytes.
            offset: Cursor position within buffer.

        Returns:
            Frame, NeedMoreData or Invalid.
        """
        layout = self.layout
        end = len(buffer)
        available = end - offset

        # Length pair decides how much to expect
        for pos in range(offset, min(offset + 2, end)):
            if buffer[pos] not in HEX_DIGITS:
                return Invalid(1, f"not a frame start: 0x{buffer[pos]:02X}")
        if available < 2:
            return NeedMoreData(2 - available)

        length = int(bytes(buffer[offset:offset + 2]), 16)
        if length == 0:
            return Invalid(1, "zero frame length")

        pairs = length + 2
        wire_len = layout.wire_length(length)
        pair_width = layout.pair_width
        binary = bytearray()

        for index in range(pairs):
            start = offset + index * pair_width
            for pos in (start, start + 1):
                if pos >= end:
                    return NeedMoreData(wire_len - available)
                if buffer[pos] not in HEX_DIGITS:
                    return Invalid(1, f"non-hex byte at +{pos - offset}")
            for i, expected in enumerate(layout.separator):
                pos = start + 2 + i
                if pos >= end:
                    return NeedMoreData(wire_len - available)
                if buffer[pos] != expected:
                    return Invalid(1, f"missing separator at +{pos - offset}")
            binary.append(int(bytes(buffer[start:start + 2]), 16))

        term_start = offset + pairs * pair_width
        for i, expected in enumerate(layout.terminator):
            pos = term_start + i
            if pos >= end:
                return NeedMoreData(wire_len - available)
            if buffer[pos] != expected:
                return Invalid(1, f"missing terminator at +{pos - offset}")

        body = bytes(binary[1:-1])
        received = binary[-1]
        calculated = checksum(body)
        if received != calculated:
            return Invalid(
                1,
                f"checksum mismatch: received {received:02X}, calculated {calculated:02X}",
            )

        raw = bytes(buffer[offset:offset + wire_len])
        frame = self._frame(body[0], body[1:], received, raw)
        logger.debug("Decoded frame: %r", frame)
        return frame

    def _frame(self, kind: int, payload: bytes, check: int, raw: bytes) -> Frame:
        tag_len = self.layout.tag_lengths.get(kind, 0)
        return Frame(
            kind=kind,
            payload=payload,
            checksum=check,
            tag=payload[:tag_len],
            known=kind in self.layout.known_kinds,
            raw=raw,
        )


# =============================================================================
# Streaming Reader
# =============================================================================

class FrameReader:
    """
    Reassembles frames from an arbitrary byte stream.

    Bytes are fed in whatever chunks the channel delivers. frames()
    yields every complete frame in arrival order. When the bytes at the
    head of the buffer cannot start a frame, the reader advances one
    byte at a time until a plausible frame start is found.

    The layout must end frames with a terminator. Layouts without one,
    such as HOST_LAYOUT, are decoded a whole buffer at a time with
    FrameCodec.decode().

    Usage:
        reader = FrameReader(FrameCodec(DEVICE_LAYOUT))
        reader.feed(chunk)
        for frame in reader.frames():
            handle(frame)
    """

    def __init__(self, codec: FrameCodec):
        if not codec.layout.terminator:
            raise ValueError(
                f"Layout {codec.layout.name!r} has no terminator and cannot be streamed"
            )
        self.codec = codec
        self._buffer = bytearray()
        self.discarded = 0

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet consumed."""
        return len(self._buffer)

    def feed(self, data: bytes) -> None:
        """Append received bytes to the buffer."""
        self._buffer.extend(data)

    def frames(self) -> Iterator[Frame]:
        """Yield all complete frames currently in the buffer."""
        skipped = 0
        while self._buffer:
            result = self.codec.decode(self._buffer)
            if isinstance(result, Frame):
                if skipped:
                    logger.debug("Resynchronized after %d bytes", skipped)
                    skipped = 0
                del self._buffer[:len(result.raw)]
                yield result
            elif isinstance(result, Invalid):
                if not skipped:
                    logger.debug("Invalid frame start (%s), resynchronizing", result.reason)
                del self._buffer[:result.skip]
                self.discarded += result.skip
                skipped += result.skip
            else:
                break
        if skipped:
            logger.debug("Discarded %d bytes while searching for a frame", skipped)

    def clear(self) -> int:
        """Drop all buffered bytes; returns how many were dropped."""
        dropped = len(self._buffer)
        self._buffer.clear()
        self.discarded += dropped
        return dropped
