"""
Alti-2 Session
==============

High-level entry point: connect to an instrument, read its logbook,
and export the decoded records.

    from alti2_sdk import Session, JsonLinesSink

    with Session.open('/dev/ttyUSB0') as session:
        info = session.connect()
        print(info)
        report = session.export_logbook(JsonLinesSink(sys.stdout))
        print(f"{report.records} records, {len(report.errors)} errors")

Logbook Transfer
----------------
The logbook is read page by page. Each READ_LOGBOOK request carries the
page index, which the device echoes at the start of LOGBOOK_PAGE:

    LOGBOOK_PAGE payload:
        [0:2]  page index (u16 LE, the correlation tag)
        [2]    flags (bit 0: last page)
        [3:]   encrypted data, a multiple of 8 bytes

The pages are joined, decrypted with the session cipher, and handed to
the logbook decoder. Decoding starts after the whole dump has been
read.

Failure Handling
----------------
- Handshake failures leave the session FAULTED and raise ConnectionError.
- A transport failure during extraction closes the channel and returns
  the session to DISCONNECTED.
- A timeout or protocol failure during extraction leaves the session
  AUTHENTICATED so the read can be retried.
"""

import logging
import struct
import time
from dataclasses import dataclass, field
from typing import Callable, Final, Optional

from alti2_sdk.comms.channel import ByteChannel, find_alti2_port, open_serial_channel
from alti2_sdk.comms.framing import MessageKind
from alti2_sdk.comms.handshake import (
    Capabilities,
    DeviceInfo,
    HandshakeStateMachine,
    SessionState,
)
from alti2_sdk.comms.transaction import TransactionEngine, UnknownMessage
from alti2_sdk.config import SessionConfig
from alti2_sdk.errors import (
    CommsError,
    ConnectionError,
    DecodeError,
    DumpFormatError,
    ExtractionError,
    ProtocolError,
    SessionStateError,
    TransportError,
)
from alti2_sdk.logbook.decoder import LogbookDecoding, decode_logbook
from alti2_sdk.logbook.sinks import SinkLike, as_sink_callable

# Configure module logger
logger = logging.getLogger(__name__)

# Page index (2) + flags (1)
PAGE_HEADER_SIZE: Final[int] = 3

# Flags bit marking the final page of the dump
LAST_PAGE: Final[int] = 0x01

# Encrypted page data is made of whole cipher blocks
CIPHER_BLOCK: Final[int] = 8

# Called after each page with (pages read, bytes read)
ProgressCallback = Callable[[int, int], None]


@dataclass
class LogbookReport:
    """
    Outcome of a logbook export.

    Attributes:
        records: Number of records delivered to the sink
        errors: Decode errors, in dump order
    """

    records: int = 0
    errors: list[DecodeError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class Session:
    """
    One connection to an Alti-2 instrument.

    The session owns the channel: disconnect() (or leaving a ``with``
    block) always closes it.

    Usage:
        session = Session(channel, SessionConfig(timeout=5.0))
        try:
            session.connect()
            dump = session.read_logbook_dump()
        finally:
            session.disconnect()
    """

    def __init__(
        self,
        channel: ByteChannel,
        config: Optional[SessionConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.channel = channel
        self.config = config or SessionConfig()
        self.engine = TransactionEngine(channel, self.config, clock=clock, sleep=sleep)
        self.handshake = HandshakeStateMachine(self.engine)

    @classmethod
    def open(
        cls,
        port: Optional[str] = None,
        config: Optional[SessionConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "Session":
        """
        Open a serial port and wait for the device to settle.

        Args:
            port: Device path; falls back to config.port, then auto-detection.
            config: Session configuration (default: from environment).
            sleep: Sleep function, replaceable for testing.

        Raises:
            ConnectionError: If no port is found or it cannot be opened.
        """
        config = config or SessionConfig.from_env()
        device = port or config.port or find_alti2_port()
        if device is None:
            raise ConnectionError(
                "No serial port specified and none detected. "
                "Use 'altilink ports' to list available ports."
            )

        try:
            channel = open_serial_channel(device, config.baud_rate)
        except TransportError as e:
            raise ConnectionError(str(e)) from e

        if config.settle_time > 0:
            logger.info("Waiting %.1fs for the device to settle", config.settle_time)
            sleep(config.settle_time)

        return cls(channel, config, sleep=sleep)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self.handshake.state

    @property
    def device_info(self) -> Optional[DeviceInfo]:
        return self.handshake.device_info

    @property
    def capabilities(self) -> Optional[Capabilities]:
        return self.handshake.capabilities

    @property
    def unknown_messages(self) -> list[UnknownMessage]:
        """Well-framed messages of undocumented kinds received so far."""
        return self.engine.unknown_messages

    def is_authenticated(self) -> bool:
        return self.handshake.state is SessionState.AUTHENTICATED

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    def connect(self) -> DeviceInfo:
        """
        Run the handshake and authenticate the session.

        Calling connect() on an authenticated session returns the known
        device info without talking to the device. A FAULTED session is
        reset and the handshake runs again.

        Returns:
            The identified device.

        Raises:
            ConnectionError: If the handshake fails (session is FAULTED).
            SessionStateError: If a handshake is already in progress.
        """
        state = self.handshake.state
        if state is SessionState.AUTHENTICATED:
            return self.handshake.device_info
        if state.is_handshaking:
            raise SessionStateError(f"Cannot connect: session is {state.value}")
        if state is SessionState.FAULTED:
            logger.info("Resetting faulted session before reconnecting")
            self.handshake.reset()

        logger.info("Connecting to Alti-2 device...")
        try:
            self.handshake.run()
        except CommsError as e:
            raise ConnectionError(str(e)) from e

        logger.info("Session authenticated: %s", self.handshake.device_info)
        return self.handshake.device_info

    def disconnect(self) -> None:
        """Close the channel and return to DISCONNECTED. Safe in any state."""
        try:
            self.channel.close()
        finally:
            self.handshake.reset()
        logger.info("Disconnected")

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    # -------------------------------------------------------------------------
    # Logbook
    # -------------------------------------------------------------------------

    def read_logbook_dump(self, progress: Optional[ProgressCallback] = None) -> bytes:
        """
        Read and decrypt the complete logbook dump.

        Args:
            progress: Optional callback called after each page.

        Returns:
            Decrypted dump bytes (cipher padding may follow the records).

        Raises:
            SessionStateError: If the session is not authenticated.
            ExtractionError: If the transfer fails.
        """
        capabilities = self._require_authenticated("read the logbook")
        encrypted = bytearray()

        try:
            for page in range(self.config.max_pages):
                data, last = self._read_page(page)
                encrypted += data
                if progress:
                    progress(page + 1, len(encrypted))
                if last:
                    break
            else:
                raise ProtocolError(
                    f"No last page after {self.config.max_pages} pages"
                )

        except TransportError as e:
            logger.error("Transport failed during extraction: %s", e)
            self._release()
            raise ExtractionError(str(e)) from e
        except CommsError as e:
            raise ExtractionError(str(e)) from e

        logger.info("Logbook read: %d pages, %d bytes", page + 1, len(encrypted))
        if capabilities.cipher is None:
            return bytes(encrypted)
        return capabilities.cipher.decrypt(bytes(encrypted))[:len(encrypted)]

    def iter_logbook(self, progress: Optional[ProgressCallback] = None) -> LogbookDecoding:
        """Read the dump and return its lazy decoding."""
        dump = self.read_logbook_dump(progress)
        return decode_logbook(dump, self.handshake.capabilities)

    def export_logbook(
        self, sink: SinkLike, progress: Optional[ProgressCallback] = None
    ) -> LogbookReport:
        """
        Read the logbook and deliver every valid record to ``sink``.

        Records reach the sink in dump order. Decode errors, including
        an unrecoverable dump format, are collected in the report.
        """
        deliver = as_sink_callable(sink)
        report = LogbookReport()

        try:
            for item in self.iter_logbook(progress):
                if isinstance(item, DecodeError):
                    report.errors.append(item)
                else:
                    deliver(item)
                    report.records += 1
        except DumpFormatError as e:
            logger.error("Logbook dump is unreadable: %s", e)
            report.errors.append(e)

        logger.info(
            "Export complete: %d records, %d errors", report.records, len(report.errors)
        )
        return report

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_authenticated(self, action: str) -> Capabilities:
        if not self.is_authenticated():
            raise SessionStateError(
                f"Cannot {action}: session is {self.handshake.state.value}"
            )
        return self.handshake.capabilities

    def _read_page(self, page: int) -> tuple[bytes, bool]:
        request = self.engine.request(MessageKind.READ_LOGBOOK, struct.pack("<H", page))
        response = self.engine.execute(request, {MessageKind.LOGBOOK_PAGE})

        payload = response.payload
        if len(payload) < PAGE_HEADER_SIZE:
            raise ProtocolError(f"Logbook page {page} too short: {len(payload)} bytes")
        flags = payload[2]
        data = payload[PAGE_HEADER_SIZE:]
        if len(data) % CIPHER_BLOCK:
            raise ProtocolError(
                f"Logbook page {page} data is {len(data)} bytes, "
                f"not a multiple of {CIPHER_BLOCK}"
            )

        logger.debug("Page %d: %d bytes, flags=0x%02X", page, len(data), flags)
        return data, bool(flags & LAST_PAGE)

    def _release(self) -> None:
        try:
            self.channel.close()
        finally:
            self.handshake.reset()
