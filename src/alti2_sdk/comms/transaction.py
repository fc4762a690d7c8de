"""
Transaction Engine
==================

The Alti-2 link is strictly half-duplex: the host sends one request and
the device answers it. The device has no request identifiers, so the
engine enforces that at most one request is outstanding at any time.

Transaction Lifecycle
---------------------
1. Drain: bytes already waiting on the channel belong to an abandoned
   transaction and are discarded.
2. Send: the request frame is written (identical bytes on every retry,
   requests are idempotent).
3. Wait: received bytes are reassembled into frames until a matching
   response arrives or the deadline passes.
4. Retry: on timeout the request is re-sent, up to ``max_retries``
   send attempts in total.

Response Classification
-----------------------
- Expected kind, matching correlation tag: the response
- Expected kind, different tag: stale reply to an earlier request,
  discarded and logged
- DEVICE_ERROR: raised as DeviceError
- Other documented kind: raised as ProtocolError
- Undocumented kind: recorded as UnknownMessage, logged, not fatal
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from alti2_sdk.comms.channel import ByteChannel
from alti2_sdk.comms.framing import (
    DEVICE_LAYOUT,
    HOST_LAYOUT,
    Frame,
    FrameCodec,
    FrameReader,
    MessageKind,
)
from alti2_sdk.config import SessionConfig
from alti2_sdk.errors import (
    DeviceError,
    ProtocolError,
    TimeoutError,
    TransactionBusy,
    TransportError,
)

# Configure module logger
logger = logging.getLogger(__name__)

# Upper bound on reads while draining stale input before a request
MAX_DRAIN_READS = 64


@dataclass
class Transaction:
    """
    One request/response pairing.

    Attributes:
        request: The frame sent to the device
        expected_kinds: Message kinds accepted as the response
        attempts: Send attempts made so far
        deadline: Clock value after which the current attempt times out
    """

    request: Frame
    expected_kinds: frozenset[int]
    attempts: int = 0
    deadline: float = 0.0


@dataclass(frozen=True)
class UnknownMessage:
    """A well-framed message whose kind is not in the documented set."""

    frame: Frame
    during: str

    def __str__(self) -> str:
        return f"{self.frame.kind_name} during {self.during}: {self.frame.payload.hex()}"


class TransactionEngine:
    """
    Sends requests and correlates responses over a ByteChannel.

    Usage:
        engine = TransactionEngine(channel, SessionConfig(timeout=5.0))
        request = engine.request(MessageKind.GET_INFO)
        response = engine.execute(request, {MessageKind.TYPE0})

    The engine is not thread-safe. Host applications that share a device
    between threads must serialize all calls themselves.
    """

    def __init__(
        self,
        channel: ByteChannel,
        config: Optional[SessionConfig] = None,
        request_codec: Optional[FrameCodec] = None,
        response_codec: Optional[FrameCodec] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.channel = channel
        self.config = config or SessionConfig()
        self.request_codec = request_codec or FrameCodec(HOST_LAYOUT)
        self.reader = FrameReader(response_codec or FrameCodec(DEVICE_LAYOUT))
        self._clock = clock
        self._sleep = sleep
        self._outstanding: Optional[Transaction] = None
        self.unknown_messages: list[UnknownMessage] = []
        self.stale_frames = 0

    @property
    def busy(self) -> bool:
        """Return True while a transaction is outstanding."""
        return self._outstanding is not None

    def request(self, kind: int, payload: bytes = b"") -> Frame:
        """Build a request frame with the host-side codec."""
        return self.request_codec.make(kind, payload)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def execute(
        self,
        request: Frame,
        expected_kinds: Iterable[int],
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> Frame:
        """
        Send ``request`` and wait for its response.

        Args:
            request: Frame built with request().
            expected_kinds: Message kinds that may answer this request.
            timeout: Seconds to wait per attempt (default: config.timeout).
            max_retries: Total send attempts (default: config.max_retries).

        Returns:
            The response frame.

        Raises:
            TransactionBusy: If another transaction is outstanding.
            TimeoutError: If no response arrives within any attempt.
            DeviceError: If the device answers with an error frame.
            ProtocolError: If the device answers with an unexpected kind.
            TransportError: If the channel fails.
        """
        if self._outstanding is not None:
            raise TransactionBusy(
                f"Cannot send {request.kind_name}: "
                f"{self._outstanding.request.kind_name} is still outstanding"
            )

        if timeout is None:
            timeout = self.config.timeout
        if max_retries is None:
            max_retries = self.config.max_retries
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")

        txn = Transaction(request, frozenset(int(k) for k in expected_kinds))
        self._outstanding = txn

        try:
            while txn.attempts < max_retries:
                txn.attempts += 1
                self._drain()

                logger.debug(
                    "Sending %s: attempt=%d/%d",
                    request.kind_name, txn.attempts, max_retries
                )
                self._write(request.raw)
                if self.config.response_delay > 0:
                    self._sleep(self.config.response_delay)

                txn.deadline = self._clock() + timeout
                response = self._await_response(txn)
                if response is not None:
                    logger.debug(
                        "Transaction complete: %s -> %s (attempt %d)",
                        request.kind_name, response.kind_name, txn.attempts
                    )
                    return response

                logger.debug("Timeout waiting for response to %s", request.kind_name)
                if txn.attempts < max_retries and self.config.retry_delay > 0:
                    self._sleep(self.config.retry_delay)

            raise TimeoutError(
                f"No response to {request.kind_name} after {txn.attempts} attempts "
                f"({timeout}s each)",
                attempts=txn.attempts,
            )

        finally:
            self._outstanding = None

    # -------------------------------------------------------------------------
    # Response Handling
    # -------------------------------------------------------------------------

    def _await_response(self, txn: Transaction) -> Optional[Frame]:
        """Read until a matching frame arrives; None once the deadline passes."""
        while True:
            for frame in self.reader.frames():
                response = self._classify(txn, frame)
                if response is not None:
                    return response

            remaining = txn.deadline - self._clock()
            if remaining <= 0:
                return None

            chunk = self._read(remaining)
            if chunk:
                self.reader.feed(chunk)

    def _classify(self, txn: Transaction, frame: Frame) -> Optional[Frame]:
        """Accept, discard, or reject one received frame."""
        if not frame.known:
            unknown = UnknownMessage(frame, during=txn.request.kind_name)
            self.unknown_messages.append(unknown)
            logger.warning("Ignoring unknown message %s", unknown)
            return None

        if frame.kind == MessageKind.DEVICE_ERROR:
            code = frame.payload[0] if frame.payload else None
            raise DeviceError(code)

        if frame.kind not in txn.expected_kinds:
            expected = ", ".join(sorted(MessageKind.describe(k) for k in txn.expected_kinds))
            raise ProtocolError(
                f"Unexpected {frame.kind_name} in response to "
                f"{txn.request.kind_name} (expected {expected})"
            )

        if frame.tag != txn.request.tag:
            self.stale_frames += 1
            logger.warning(
                "Discarding stale %s: tag %s, expected %s",
                frame.kind_name, frame.tag.hex() or "-", txn.request.tag.hex() or "-"
            )
            return None

        return frame

    # -------------------------------------------------------------------------
    # Channel I/O
    # -------------------------------------------------------------------------

    def _drain(self) -> None:
        """Discard input left over from abandoned transactions."""
        dropped = self.reader.clear()
        for _ in range(MAX_DRAIN_READS):
            chunk = self._read(0.0)
            if not chunk:
                break
            dropped += len(chunk)
        if dropped:
            logger.warning("Discarded %d stale bytes before sending", dropped)

    def _write(self, data: bytes) -> None:
        try:
            self.channel.write(data)
        except OSError as e:
            raise TransportError(f"Channel write failed: {e}") from e

    def _read(self, timeout: float) -> bytes:
        try:
            return self.channel.read_available(self.config.read_chunk_size, timeout)
        except OSError as e:
            raise TransportError(f"Channel read failed: {e}") from e
