from __future__ import annotations

from enum import Enum
from pathlib import Path
import sys
from typing import Iterable, Iterator

import msgspec

from ..replay.types import PLAYER_FRAME_FIELDS, PlayerFrame, PlayerSlot, Replay

STDOUT_PATH = "-"


class FrameMode(str, Enum):
    NONE = "none"
    FULL = "full"
    DELTA = "delta"


class MatchSettings(msgspec.Struct, forbid_unknown_fields=True):
    match_id: str = ""
    slp_file_name: str = ""
    slippi_version: str = ""
    timer: int = 0
    frame_count: int = 0
    winner_id: int = -1
    stage: int = 0
    end_type: int = 0
    complete: bool = False


class PlayerSettings(msgspec.Struct, forbid_unknown_fields=True):
    match_id: str = ""
    port: int = 0
    slippi_code: str = ""
    player_tag: str = ""
    player_type: int = 0
    player_index: int = 0
    ext_char: int = 0
    # Unset when frames were not requested.
    frames: list[dict[str, object]] | msgspec.UnsetType = msgspec.UNSET


class ItemSummary(msgspec.Struct, forbid_unknown_fields=True):
    match_id: str = ""
    spawn_id: int = 0
    item_type: int = 0
    frame_count: int = 0


class ReplayDocument(msgspec.Struct, forbid_unknown_fields=True):
    match: MatchSettings
    players: list[PlayerSettings] = msgspec.field(default_factory=list)
    items: list[ItemSummary] = msgspec.field(default_factory=list)


def match_settings(replay: Replay, *, slp_file_name: str = "") -> MatchSettings:
    return MatchSettings(
        match_id=replay.start_time,
        slp_file_name=str(slp_file_name),
        slippi_version=replay.slippi_version,
        timer=int(replay.timer),
        frame_count=int(replay.frame_count),
        winner_id=int(replay.winner_id),
        stage=int(replay.stage),
        end_type=int(replay.end_type),
        complete=bool(replay.complete),
    )


def _frame_dict(frame: PlayerFrame) -> dict[str, object]:
    return {name: getattr(frame, name) for name in PLAYER_FRAME_FIELDS}


def iter_frame_records(slot: PlayerSlot, *, delta: bool = False) -> Iterator[dict[str, object]]:
    """Yield one record per frame index.

    With `delta`, a record holds only the fields that changed since the previous
    frame; the first record is always complete.
    """

    previous: dict[str, object] | None = None
    for index, frame in enumerate(slot.frames or ()):
        current = _frame_dict(frame)
        if delta and previous is not None:
            record = {name: value for name, value in current.items() if previous[name] != value}
        else:
            record = dict(current)
        record["frame"] = index
        previous = current
        yield record


def apply_frame_deltas(records: Iterable[dict[str, object]]) -> list[dict[str, object]]:
    """Expand delta records back into complete frame records."""

    out: list[dict[str, object]] = []
    state: dict[str, object] = {}
    for record in records:
        state = {**state, **record}
        out.append(state)
    return out


def player_settings(replay: Replay, *, frames: FrameMode = FrameMode.NONE) -> list[PlayerSettings]:
    mode = FrameMode(frames)
    out: list[PlayerSettings] = []
    for slot in replay.ports():
        records: list[dict[str, object]] | msgspec.UnsetType = msgspec.UNSET
        if mode is not FrameMode.NONE:
            records = list(iter_frame_records(slot, delta=mode is FrameMode.DELTA))
        out.append(
            PlayerSettings(
                match_id=replay.start_time,
                port=slot.port + 1,
                slippi_code=slot.tag_code,
                player_tag=slot.tag,
                player_type=int(slot.player_type),
                player_index=slot.index,
                ext_char=int(slot.character),
                frames=records,
            )
        )
    return out


def item_summaries(replay: Replay) -> list[ItemSummary]:
    return [
        ItemSummary(
            match_id=replay.start_time,
            spawn_id=int(slot.spawn_id),
            item_type=int(slot.type),
            frame_count=slot.num_frames,
        )
        for slot in replay.items.live_items()
    ]


def build_document(
    replay: Replay,
    *,
    slp_file_name: str = "",
    frames: FrameMode = FrameMode.NONE,
) -> ReplayDocument:
    return ReplayDocument(
        match=match_settings(replay, slp_file_name=slp_file_name),
        players=player_settings(replay, frames=frames),
        items=item_summaries(replay),
    )


def dumps_document(document: ReplayDocument) -> bytes:
    return msgspec.json.format(msgspec.json.encode(document), indent=2) + b"\n"


def loads_document(data: bytes | str) -> ReplayDocument:
    return msgspec.json.decode(data, type=ReplayDocument)


def dumps_jsonl(records: Iterable[msgspec.Struct]) -> bytes:
    encoder = msgspec.json.Encoder()
    buffer = bytearray()
    for record in records:
        encoder.encode_into(record, buffer, len(buffer))
        buffer += b"\n"
    return bytes(buffer)


def settings_jsonl(replay: Replay, *, slp_file_name: str = "") -> bytes:
    """Match settings then one player-settings record per active port, one per line."""

    return dumps_jsonl([match_settings(replay, slp_file_name=slp_file_name), *player_settings(replay)])


def _write_bytes(payload: bytes, path: Path | str) -> None:
    if str(path) == STDOUT_PATH:
        sys.stdout.buffer.write(payload)
        sys.stdout.buffer.flush()
        return
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)


def write_json(
    replay: Replay,
    path: Path | str,
    *,
    slp_file_name: str = "",
    frames: FrameMode = FrameMode.NONE,
) -> None:
    """Write the replay document to `path`, or to stdout when `path` is `-`."""

    _write_bytes(dumps_document(build_document(replay, slp_file_name=slp_file_name, frames=frames)), path)


def write_jsonl(replay: Replay, path: Path | str, *, slp_file_name: str = "") -> None:
    _write_bytes(settings_jsonl(replay, slp_file_name=slp_file_name), path)


__all__ = [
    "STDOUT_PATH",
    "FrameMode",
    "ItemSummary",
    "MatchSettings",
    "PlayerSettings",
    "ReplayDocument",
    "apply_frame_deltas",
    "build_document",
    "dumps_document",
    "dumps_jsonl",
    "item_summaries",
    "iter_frame_records",
    "loads_document",
    "match_settings",
    "player_settings",
    "settings_jsonl",
    "write_json",
    "write_jsonl",
]
