"""
Alti-2 Logbook Module
=====================

Decoding and export of the jump/dive logbook read from an instrument.

- **records**: the LogbookRecord type and per-record validation
- **decoder**: dump framing (fixed or length-prefixed records)
- **sinks**: export destinations (in-memory list, JSON Lines)

Example:
    from alti2_sdk.logbook import LogbookDecoding, LogbookFormat

    records, errors = LogbookDecoding(dump, LogbookFormat.FIXED).split()
"""

from alti2_sdk.comms.handshake import LogbookFormat
from alti2_sdk.logbook.decoder import (
    DUMP_HEADER,
    LogbookDecoding,
    build_dump,
    decode_logbook,
)
from alti2_sdk.logbook.records import (
    RECORD_SIZE,
    EventKind,
    LogbookRecord,
    encode_record,
)
from alti2_sdk.logbook.sinks import (
    JsonLinesSink,
    ListSink,
    LogbookSink,
    as_sink_callable,
)

__all__ = [
    "DUMP_HEADER",
    "RECORD_SIZE",
    "EventKind",
    "JsonLinesSink",
    "ListSink",
    "LogbookDecoding",
    "LogbookFormat",
    "LogbookRecord",
    "LogbookSink",
    "as_sink_callable",
    "build_dump",
    "decode_logbook",
    "encode_record",
]
