"""
Logbook Sinks
=============

Destinations for exported logbook records. A sink is either a plain
callable taking one LogbookRecord, or an object with an ``accept``
method.
"""

import json
import logging
from typing import Callable, Protocol, TextIO, Union, runtime_checkable

from alti2_sdk.logbook.records import LogbookRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class LogbookSink(Protocol):
    def accept(self, record: LogbookRecord) -> None:
        ...


SinkLike = Union[LogbookSink, Callable[[LogbookRecord], None]]


def as_sink_callable(sink: SinkLike) -> Callable[[LogbookRecord], None]:
    """Normalize a sink object or callable to a callable."""
    if isinstance(sink, LogbookSink):
        return sink.accept
    if callable(sink):
        return sink
    raise TypeError(f"Not a logbook sink: {sink!r}")


class ListSink:
    """Collects records in memory."""

    def __init__(self):
        self.records: list[LogbookRecord] = []

    def accept(self, record: LogbookRecord) -> None:
        self.records.append(record)

    def __len__(self) -> int:
        return len(self.records)


class JsonLinesSink:
    """
    Writes one JSON object per record to a text stream.

    The stream is flushed after every record and never closed here;
    the caller owns it.
    """

    def __init__(self, stream: TextIO):
        self.stream = stream
        self.count = 0

    def accept(self, record: LogbookRecord) -> None:
        self.stream.write(json.dumps(record.to_dict(), sort_keys=True) + "\n")
        self.stream.flush()
        self.count += 1
        logger.debug("Wrote record %d (#%d)", record.index, record.number)
