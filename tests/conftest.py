"""
Alti-2 SDK - Test Configuration
===============================

Shared fixtures for the link and session tests.

It provides:
- FakeClock: virtual monotonic clock with a matching sleep()
- ScriptedChannel: in-memory ByteChannel driven by a responder callable
- FakeAlti2Device: responder that behaves like an instrument (Type0
  identification and an encrypted, paged logbook)
"""

import struct
from collections import deque
from typing import Callable, Optional

import pytest

from alti2_sdk.comms.channel import ByteChannel
from alti2_sdk.comms.checksum import checksum
from alti2_sdk.comms.cipher import SessionCipher
from alti2_sdk.comms.framing import (
    DEVICE_LAYOUT,
    HOST_LAYOUT,
    Frame,
    FrameCodec,
    MessageKind,
)
from alti2_sdk.comms.handshake import LogbookFormat, ProductType
from alti2_sdk.config import SessionConfig
from alti2_sdk.errors import TransportError
from alti2_sdk.logbook.decoder import build_dump
from alti2_sdk.logbook.records import EventKind, encode_record


# ═══════════════════════════════════════════════════════════════════════════════
# REFERENCE DATA
# ═══════════════════════════════════════════════════════════════════════════════

# Type0 response captured from an Atlas (S/N Y183641, S/W 1.0.3, rev. 2)
TYPE0_BINARY = bytes.fromhex(
    "1E 00 05 10 03 59 31 38 33 36 34 31 20 20 02 07"
    "01 00 20 01 00 00 00 00 00 00 00 20 05 00 00 38"
)

# The same response as the device sends it
TYPE0_WIRE = DEVICE_LAYOUT.render(TYPE0_BINARY)

# 2021-03-04 05:06:07 UTC
JUMP_SECONDS = 668149567


def make_type0(product_code: int = ProductType.ATLAS) -> bytes:
    """Reference Type0 frame with a different product code."""
    body = bytearray(TYPE0_BINARY[1:-1])
    body[14] = product_code
    return bytes([len(body)]) + bytes(body) + bytes([checksum(body)])


def jump(number: int, altitude: int = 13500, deploy: int = 3000) -> bytes:
    return encode_record(
        EventKind.JUMP, number, JUMP_SECONDS + number * 3600, altitude, deploy,
        duration=60, secondary=240, max_speed=1250, avg_speed=1100,
    )


def dive(number: int, depth_cm: int = 1850) -> bytes:
    return encode_record(
        EventKind.DIVE, number, JUMP_SECONDS + number * 3600, depth_cm,
        duration=2400, secondary=3600,
    )


def corrupt(record: bytes) -> bytes:
    """Flip one data bit without fixing the checksum."""
    damaged = bytearray(record)
    damaged[5] ^= 0x01
    return bytes(damaged)


# ═══════════════════════════════════════════════════════════════════════════════
# FAKES
# ═══════════════════════════════════════════════════════════════════════════════

class FakeClock:
    """Virtual monotonic clock. sleep() advances it instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedChannel(ByteChannel):
    """
    In-memory ByteChannel.

    Every write is passed to ``responder``, which returns the chunks the
    "device" sends back. A read with nothing queued advances the clock
    by the full timeout and returns b"".
    """

    def __init__(
        self,
        clock: FakeClock,
        responder: Optional[Callable[[bytes], list[bytes]]] = None,
    ):
        self.clock = clock
        self.responder = responder
        self.inbox: deque[bytes] = deque()
        self.writes: list[bytes] = []
        self.fail_on_write: Optional[int] = None
        self.close_calls = 0
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def queue(self, *chunks: bytes) -> None:
        self.inbox.extend(chunks)

    def write(self, data: bytes) -> None:
        if not self._open:
            raise TransportError("channel closed")
        if self.fail_on_write is not None and len(self.writes) >= self.fail_on_write:
            raise TransportError("cable unplugged")
        self.writes.append(bytes(data))
        if self.responder is not None:
            self.inbox.extend(self.responder(bytes(data)))

    def read_available(self, max_bytes: int, timeout: float) -> bytes:
        if not self._open:
            raise TransportError("channel closed")
        if self.inbox:
            chunk = self.inbox.popleft()
            if len(chunk) > max_bytes:
                self.inbox.appendleft(chunk[max_bytes:])
                chunk = chunk[:max_bytes]
            return chunk
        self.clock.now += max(timeout, 0.0)
        return b""

    def close(self) -> None:
        self.close_calls += 1
        self._open = False


class FakeAlti2Device:
    """
    Responder that plays the instrument side of the protocol.

    Attributes:
        requests: Decoded host frames, in order
        prefix: Chunks sent before every reply (garbage, unknown frames, ...)
        silent_kinds: Request kinds that get no answer
        silent_pages: Logbook pages that get no answer
        chunk_size: Split every reply into chunks of this size (0: whole)
    """

    def __init__(
        self,
        type0: bytes = TYPE0_BINARY,
        records: Optional[list[bytes]] = None,
        logbook_format: LogbookFormat = LogbookFormat.LENGTH_PREFIXED,
        page_size: int = 64,
        dump: Optional[bytes] = None,
    ):
        self.type0 = type0
        self.host = FrameCodec(HOST_LAYOUT)
        self.device = FrameCodec(DEVICE_LAYOUT)
        self.requests: list[Frame] = []
        self.prefix: list[bytes] = []
        self.silent_kinds: set[int] = set()
        self.silent_pages: set[int] = set()
        self.chunk_size = 0

        if dump is None:
            dump = build_dump(records or [], logbook_format)
        encrypted = SessionCipher.from_type0(type0).encrypt(dump)
        self.pages = [
            encrypted[i:i + page_size] for i in range(0, len(encrypted), page_size)
        ]

    def __call__(self, data: bytes) -> list[bytes]:
        request = self.host.decode(data)
        if not isinstance(request, Frame):
            return []
        self.requests.append(request)
        if request.kind in self.silent_kinds:
            return []

        if request.kind == MessageKind.GET_INFO:
            reply = DEVICE_LAYOUT.render(self.type0)
        elif request.kind == MessageKind.READ_LOGBOOK:
            (page,) = struct.unpack("<H", request.payload[:2])
            if page in self.silent_pages:
                return []
            reply = self.page_frame(page)
        else:
            reply = self.device.encode(MessageKind.DEVICE_ERROR, bytes([0x01]))

        return self.prefix + self._split(reply)

    def page_frame(self, page: int) -> bytes:
        if page >= len(self.pages):
            return self.device.encode(MessageKind.DEVICE_ERROR, bytes([0x02]))
        flags = 0x01 if page == len(self.pages) - 1 else 0x00
        payload = struct.pack("<H", page) + bytes([flags]) + self.pages[page]
        return self.device.encode(MessageKind.LOGBOOK_PAGE, payload)

    def _split(self, reply: bytes) -> list[bytes]:
        if not self.chunk_size:
            return [reply]
        return [reply[i:i + self.chunk_size] for i in range(0, len(reply), self.chunk_size)]


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> SessionConfig:
    """Fast configuration: no settle pause, short deadlines."""
    return SessionConfig(
        timeout=2.0,
        max_retries=3,
        retry_delay=0.1,
        response_delay=0.0,
        settle_time=0.0,
    )


@pytest.fixture
def device() -> FakeAlti2Device:
    return FakeAlti2Device(records=[jump(1), jump(2), jump(3)])


@pytest.fixture
def channel(clock, device) -> ScriptedChannel:
    return ScriptedChannel(clock, device)
