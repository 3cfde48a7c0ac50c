from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterator, Mapping

from ..debug_log import NULL_TRACE, DecodeTrace
from .catalog import EventCatalog
from .errors import DecodeError, TruncatedStream, UnknownEventKind
from .types import EventCode

EventHandler = Callable[["EventRecord", memoryview], None]


@dataclass(frozen=True, slots=True)
class EventRecord:
    """One framed event: its code byte sits at `offset`, its payload spans `[start, end)`."""

    code: int
    offset: int
    end: int

    @property
    def start(self) -> int:
        return self.offset + 1

    @property
    def payload_size(self) -> int:
        return self.end - self.start


@dataclass(slots=True)
class EventIndex:
    stream: memoryview
    catalog: EventCatalog
    records: list[EventRecord] = field(default_factory=list)
    error: DecodeError | None = None
    stop_offset: int = 0

    def __iter__(self) -> Iterator[EventRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def payload(self, record: EventRecord) -> memoryview:
        return self.stream[record.start : record.end]

    def first(self, code: int) -> EventRecord | None:
        code = int(code)
        for record in self.records:
            if record.code == code:
                return record
        return None

    def codes(self) -> set[int]:
        return {record.code for record in self.records}


def scan_events(
    stream: memoryview | bytes,
    catalog: EventCatalog,
    end: int | None = None,
    *,
    trace: DecodeTrace = NULL_TRACE,
) -> EventIndex:
    """Frame the event stream into records without decoding payloads.

    The scan stops at the first code missing from the catalog (`UnknownEventKind`)
    or at a record running past `end` (`TruncatedStream`). Either error is stored on
    the index; records framed before it are kept.
    """

    view = memoryview(stream)
    end = len(view) if end is None else min(int(end), len(view))
    index = EventIndex(stream=view, catalog=catalog)
    sizes = catalog.sizes
    records = index.records
    offset = catalog.byte_length
    if offset > end:
        index.error = TruncatedStream("event stream ends inside the catalog", offset=end)
        index.stop_offset = end
        return index

    while offset < end:
        code = view[offset]
        size = sizes.get(code)
        if size is None:
            index.error = UnknownEventKind(code, offset=offset)
            break
        record_end = offset + 1 + size
        if record_end > end:
            index.error = TruncatedStream(
                f"event 0x{code:02x} at offset {offset} needs {size} payload bytes, "
                f"only {end - offset - 1} remain",
                offset=offset,
            )
            break
        records.append(EventRecord(code=code, offset=offset, end=record_end))
        offset = record_end

    index.stop_offset = offset
    if index.error is not None:
        trace.info("scan_stopped", offset=offset, error=index.error, records=len(records))
    else:
        trace.detail("scan_done", records=len(records), bytes=offset)
    return index


def dispatch(
    index: EventIndex,
    handlers: Mapping[int, EventHandler],
    *,
    trace: DecodeTrace = NULL_TRACE,
) -> int:
    """Call each record's handler in stream order; records without one are skipped.

    Returns the number of records handled.
    """

    handled = 0
    skipped: dict[int, int] = {}
    stream = index.stream
    for record in index.records:
        handler = handlers.get(record.code)
        if handler is None:
            skipped[record.code] = skipped.get(record.code, 0) + 1
            continue
        handler(record, stream[record.start : record.end])
        handled += 1
    for code, count in sorted(skipped.items()):
        try:
            name = EventCode(code).name.lower()
        except ValueError:
            name = "unknown"
        trace.detail("events_skipped", code=f"0x{code:02x}", kind=name, count=count)
    return handled
