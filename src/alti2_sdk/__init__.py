"""
Alti-2 SDK - Host Driver for Alti-2 Altimeters and Dive Computers
=================================================================

This package talks to Alti-2 instruments (Neptune, Wave, Tracker, N3,
Atlas and relatives) over their serial PC cable, identifies the device,
and downloads and decodes its jump/dive logbook.

Main Components
---------------
- **comms**: Link layer
    Frame codec, transaction engine, handshake state machine, cipher
    and serial channel

- **logbook**: Logbook decoding
    Record validation, unit conversion and export sinks

- **session**: Session facade
    Connect, read, export and disconnect in one object

- **cli**: Command-line tool (altilink)

Quick Start
-----------
Identify a device and export its logbook:
    >>> from alti2_sdk import Session, ListSink
    >>> with Session.open('/dev/ttyUSB0') as session:
    ...     print(session.connect())
    ...     sink = ListSink()
    ...     report = session.export_logbook(sink)

Or use the command-line tool:
    $ altilink ports
    $ altilink --port /dev/ttyUSB0 info
    $ altilink --port /dev/ttyUSB0 dump logbook.jsonl

Version History
---------------
0.1.0 - Initial release: handshake, logbook extraction and export
"""

__version__ = "0.1.0"

# =============================================================================
# Public API Exports
# =============================================================================

from alti2_sdk.config import SessionConfig
from alti2_sdk.errors import (
    Alti2Error,
    CommsError,
    TransportError,
    TimeoutError,
    PayloadTooLarge,
    ProtocolError,
    DeviceError,
    IllegalTransition,
    TransactionBusy,
    UnsupportedDevice,
    Phase,
    SessionError,
    ConnectionError,
    ExtractionError,
    SessionStateError,
    DecodeError,
    DumpFormatError,
)
from alti2_sdk.comms import (
    Capabilities,
    DeviceInfo,
    LogbookFormat,
    ProductType,
    SessionState,
)
from alti2_sdk.logbook import (
    EventKind,
    JsonLinesSink,
    ListSink,
    LogbookRecord,
)
from alti2_sdk.session import LogbookReport, Session

__all__ = [
    "__version__",
    # Configuration
    "SessionConfig",
    # Errors
    "Alti2Error",
    "CommsError",
    "TransportError",
    "TimeoutError",
    "PayloadTooLarge",
    "ProtocolError",
    "DeviceError",
    "IllegalTransition",
    "TransactionBusy",
    "UnsupportedDevice",
    "Phase",
    "SessionError",
    "ConnectionError",
    "ExtractionError",
    "SessionStateError",
    "DecodeError",
    "DumpFormatError",
    # Device and session
    "Capabilities",
    "DeviceInfo",
    "LogbookFormat",
    "ProductType",
    "SessionState",
    "Session",
    "LogbookReport",
    # Logbook
    "EventKind",
    "LogbookRecord",
    "ListSink",
    "JsonLinesSink",
]
