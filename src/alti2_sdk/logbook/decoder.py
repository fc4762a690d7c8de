"""
Logbook Decoder
===============

Turns a decrypted logbook dump into LogbookRecord objects.

Dump Layout
-----------
    ┌──────────────┬────────┬─────────────┬─────────────────────┐
    │ Record count │ Format │ Record size │ Records ...         │
    │  2 B (LE)    │  1 B   │    1 B      │                     │
    └──────────────┴────────┴─────────────┴─────────────────────┘

Format 1 (fixed): every record is exactly ``record size`` bytes.
Format 2 (length-prefixed): every record is ``[length:1][body]`` and
the record size byte is informational only.

Bytes after the last record are cipher padding and are ignored. An
empty dump, or a record count of zero, is an empty logbook.

Error Handling
--------------
A record that fails validation is yielded as a DecodeError in its
place and decoding continues with the next record. When the framing
itself breaks (truncated header, format mismatch, a record running
past the end of the dump) no later boundary can be trusted, so
DumpFormatError is raised at that point. Records yielded before it
remain valid.
"""

import logging
import struct
from typing import Final, Iterator, Union

from alti2_sdk.comms.handshake import Capabilities, LogbookFormat
from alti2_sdk.errors import DecodeError, DumpFormatError
from alti2_sdk.logbook.records import LogbookRecord

# Configure module logger
logger = logging.getLogger(__name__)

DUMP_HEADER: Final[struct.Struct] = struct.Struct("<HBB")

DecodedItem = Union[LogbookRecord, DecodeError]


class LogbookDecoding:
    """
    Lazy, restartable decoding of one logbook dump.

    Each iteration decodes the dump from the start, so iterating twice
    yields equal results.

    Usage:
        for item in LogbookDecoding(dump, LogbookFormat.LENGTH_PREFIXED):
            if isinstance(item, DecodeError):
                report(item)
            else:
                store(item)
    """

    def __init__(self, dump: bytes, logbook_format: LogbookFormat):
        self.dump = bytes(dump)
        self.logbook_format = LogbookFormat(logbook_format)

    def __iter__(self) -> Iterator[DecodedItem]:
        return self._decode()

    @property
    def record_count(self) -> int:
        """Record count declared by the dump header (0 for an empty dump)."""
        if len(self.dump) < DUMP_HEADER.size:
            return 0
        return DUMP_HEADER.unpack_from(self.dump)[0]

    def split(self) -> tuple[list[LogbookRecord], list[DecodeError]]:
        """
        Decode everything and separate records from errors.

        A DumpFormatError ends decoding and is returned as the last error.
        """
        records: list[LogbookRecord] = []
        errors: list[DecodeError] = []
        try:
            for item in self:
                if isinstance(item, DecodeError):
                    errors.append(item)
                else:
                    records.append(item)
        except DumpFormatError as e:
            errors.append(e)
        return records, errors

    def _decode(self) -> Iterator[DecodedItem]:
        dump = self.dump
        if not dump:
            return
        if len(dump) < DUMP_HEADER.size:
            raise DumpFormatError(None, dump, f"truncated header: {len(dump)} bytes")

        count, format_code, record_size = DUMP_HEADER.unpack_from(dump)
        if count == 0:
            logger.debug("Logbook is empty")
            return

        try:
            dump_format = LogbookFormat(format_code)
        except ValueError:
            raise DumpFormatError(
                None, dump[:DUMP_HEADER.size], f"unknown logbook format {format_code}"
            ) from None
        if dump_format is not self.logbook_format:
            raise DumpFormatError(
                None, dump[:DUMP_HEADER.size],
                f"format mismatch: dump is {dump_format.name}, "
                f"device reported {self.logbook_format.name}",
            )
        if dump_format is LogbookFormat.FIXED and record_size == 0:
            raise DumpFormatError(None, dump[:DUMP_HEADER.size], "zero record size")

        logger.debug(
            "Decoding %d records (format=%s, size=%d)", count, dump_format.name, record_size
        )

        offset = DUMP_HEADER.size
        for index in range(count):
            if dump_format is LogbookFormat.FIXED:
                start, end = offset, offset + record_size
            else:
                if offset >= len(dump):
                    raise DumpFormatError(index, b"", "missing length prefix")
                start = offset + 1
                end = start + dump[offset]

            if end > len(dump):
                raise DumpFormatError(
                    index, dump[start:],
                    f"record runs past end of dump ({end} > {len(dump)})",
                )

            raw = dump[start:end]
            offset = end
            try:
                yield LogbookRecord.from_bytes(index, raw)
            except DecodeError as e:
                logger.warning("Skipping invalid logbook record: %s", e)
                yield e


def decode_logbook(dump: bytes, capabilities: Capabilities) -> LogbookDecoding:
    """Decode ``dump`` using the logbook format negotiated for the session."""
    return LogbookDecoding(dump, capabilities.logbook_format)


def build_dump(records: list[bytes], logbook_format: LogbookFormat) -> bytes:
    """
    Assemble a dump image from raw record bodies.

    Inverse of the decoder framing; used by simulators and tests.
    """
    logbook_format = LogbookFormat(logbook_format)
    if logbook_format is LogbookFormat.FIXED:
        record_size = len(records[0]) if records else 0
        if any(len(r) != record_size for r in records):
            raise ValueError("fixed-format records must all have the same size")
        body = b"".join(records)
    else:
        record_size = max((len(r) for r in records), default=0)
        body = b"".join(bytes([len(r)]) + r for r in records)
    return DUMP_HEADER.pack(len(records), logbook_format, record_size) + body
