from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Final

from ..config import DecodeConfig
from ..debug_log import DecodeTrace
from .builder import ReplayBuilder
from .catalog import resolve_catalog
from .container import unwrap_container
from .errors import DecodeError, TruncatedStream, VersionPolicyViolation
from .events import FRAME_LAYOUTS, EventPlan, decode_game_start, read_version
from .types import FIRST_FRAME, ITEM_POOL_SIZE, EventCode, Replay
from .versioning import FieldResolver, warn_on_unknown_format_version
from .walker import EventHandler, EventIndex, EventRecord, dispatch, scan_events

FRAME_EVENT_CODES: Final[frozenset[int]] = frozenset(
    int(code)
    for code in (
        EventCode.PRE_FRAME,
        EventCode.POST_FRAME,
        EventCode.GAME_END,
        EventCode.FRAME_START,
        EventCode.ITEM_UPDATE,
        EventCode.FRAME_BOOKEND,
        EventCode.FOD_PLATFORM,
    )
)

# Preferred source of the frame range, most reliable first.
FRAME_ADVANCE_CODES: Final[tuple[int, ...]] = (
    int(EventCode.FRAME_BOOKEND),
    int(EventCode.FRAME_START),
    int(EventCode.POST_FRAME),
)


@dataclass(frozen=True, slots=True)
class DecodeResult:
    """A decoded replay plus the error that cut the decode short, if any."""

    replay: Replay
    error: DecodeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> Replay:
        if self.error is not None:
            raise self.error
        return self.replay


def _frame_number(index: EventIndex, record: EventRecord) -> int:
    return int.from_bytes(index.stream[record.start : record.start + 4], "big", signed=True)


def frame_range(index: EventIndex, *, trace: DecodeTrace | None = None) -> tuple[int, int, int]:
    """First and last frame numbers carried by the capture's frame-advance events.

    The third value is the number of distinct frame numbers seen. It falls short
    of `last - first + 1` when the capture skips frames.
    Returns `(FIRST_FRAME, FIRST_FRAME - 1, 0)` when the capture has none.
    """

    catalog = index.catalog
    code = next((code for code in FRAME_ADVANCE_CODES if code in catalog), None)
    if code is None:
        return FIRST_FRAME, FIRST_FRAME - 1, 0
    frames = {_frame_number(index, record) for record in index.records if record.code == code}
    if not frames:
        return FIRST_FRAME, FIRST_FRAME - 1, 0
    first, last = min(frames), max(frames)
    missing = (last - first + 1) - len(frames)
    if missing and trace is not None:
        trace.info("frame_gaps", source=f"0x{code:02x}", first=first, last=last, missing=missing)
    return first, last, len(frames)


def _check_game_start_order(index: EventIndex) -> EventRecord | None:
    for record in index.records:
        if record.code == EventCode.GAME_START:
            return record
        if record.code in FRAME_EVENT_CODES:
            raise VersionPolicyViolation(
                f"frame event 0x{record.code:02x} at offset {record.offset} precedes game start",
                offset=record.offset,
            )
    return None


def _decode(data: bytes | bytearray | memoryview, config: DecodeConfig, trace: DecodeTrace) -> DecodeResult:
    container = unwrap_container(data, trace=trace)
    catalog = resolve_catalog(container.stream)
    trace.detail("catalog", kinds=",".join(f"0x{code:02x}" for code in sorted(catalog)), bytes=catalog.byte_length)
    index = scan_events(container.stream, catalog, trace=trace)

    builder = ReplayBuilder(item_pool_size=config.item_pool_size or ITEM_POOL_SIZE, trace=trace)
    start_record = _check_game_start_order(index)
    if start_record is None:
        error = index.error or TruncatedStream("stream ended before game start", offset=index.stop_offset)
        replay = builder.finish(None, error)
        return DecodeResult(replay=replay, error=error)

    payload = index.payload(start_record)
    resolver = FieldResolver(read_version(payload))
    warn_on_unknown_format_version(resolver.version)
    game_start = decode_game_start(payload, resolver)

    plans: dict[int, EventPlan] = {
        code: layout.plan(resolver, size)
        for code, layout in FRAME_LAYOUTS.items()
        if (size := catalog.payload_size(code)) is not None
    }

    builder.start(game_start, container.metadata)
    first, last, seen = frame_range(index, trace=trace)
    builder.allocate(first, last)

    game_end: list[dict[str, object]] = []

    def on_game_start(record: EventRecord, _payload: memoryview) -> None:
        if record is not start_record:
            trace.info("game_start_repeated", offset=record.offset)

    def writer(code: int, write: Callable[[dict[str, object]], None]) -> EventHandler:
        plan = plans[code]

        def handle(_record: EventRecord, payload: memoryview) -> None:
            write(plan.decode(payload))

        return handle

    # Frame start and bookend only bound the frame range; their plans still check the catalog sizes.
    handlers: dict[int, EventHandler] = {int(EventCode.GAME_START): on_game_start}
    if EventCode.PRE_FRAME in plans:
        handlers[int(EventCode.PRE_FRAME)] = writer(EventCode.PRE_FRAME, builder.write_pre_frame)
    if EventCode.POST_FRAME in plans:
        handlers[int(EventCode.POST_FRAME)] = writer(EventCode.POST_FRAME, builder.write_post_frame)
    if EventCode.ITEM_UPDATE in plans:
        handlers[int(EventCode.ITEM_UPDATE)] = writer(EventCode.ITEM_UPDATE, builder.write_item)
    if EventCode.FOD_PLATFORM in plans:
        handlers[int(EventCode.FOD_PLATFORM)] = writer(EventCode.FOD_PLATFORM, builder.write_platform)
    if EventCode.GAME_END in plans:
        handlers[int(EventCode.GAME_END)] = writer(EventCode.GAME_END, game_end.append)

    dispatch(index, handlers, trace=trace)

    replay = builder.replay
    error = index.error
    end_values = game_end[-1] if game_end else None
    if error is None and seen < last - first + 1:
        error = TruncatedStream(
            f"capture skips {last - first + 1 - seen} frame(s) between {first} and {last}",
            offset=index.stop_offset,
        )
    if error is None and end_values is None:
        error = TruncatedStream("stream ended before game end", offset=index.stop_offset)
    if error is None and container.metadata.last_frame is not None and last < container.metadata.last_frame:
        error = TruncatedStream(
            f"last frame {last} is short of the {container.metadata.last_frame} the metadata declares",
            offset=index.stop_offset,
        )
    builder.finish(end_values, error)
    return DecodeResult(replay=replay, error=error)


def load_replay(data: bytes | bytearray | memoryview, *, config: DecodeConfig | None = None) -> DecodeResult:
    """Decode a whole capture.

    Malformed envelopes, missing catalogs and version policy violations raise.
    Truncated streams and unknown event kinds return the best-effort replay with
    `result.error` set.
    """

    config = DecodeConfig.from_env() if config is None else config
    return _decode(data, config, config.trace())


def load_replay_file(path: Path | str, *, config: DecodeConfig | None = None) -> DecodeResult:
    path = Path(path)
    config = DecodeConfig.from_env() if config is None else config
    trace = config.trace(file=path.name)
    trace.info("decode_file", path=path)
    return _decode(path.read_bytes(), config, trace)
