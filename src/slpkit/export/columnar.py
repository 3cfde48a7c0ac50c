from __future__ import annotations

from pathlib import Path
from typing import Final

import pyarrow as pa
import pyarrow.parquet as pq

from ..replay.types import Replay

FRAMES_FILE: Final[str] = "frames.parquet"
ITEMS_FILE: Final[str] = "items.parquet"
PLATFORMS_FILE: Final[str] = "platforms.parquet"

DEFAULT_COMPRESSION: Final[str] = "snappy"

# Column name -> PlayerFrame attribute, in file order after the key columns.
_FRAME_COLUMNS: Final[tuple[tuple[str, str, pa.DataType], ...]] = (
    ("char_id", "char_id", pa.uint8()),
    ("follower", "follower", pa.bool_()),
    ("seed", "seed", pa.uint32()),
    ("ucf_x", "ucf_x", pa.int8()),
    ("stocks", "stocks", pa.uint8()),
    ("alive", "alive", pa.bool_()),
    ("anim_index", "anim_index", pa.uint32()),
    ("pos_x_pre", "pos_x_pre", pa.float32()),
    ("pos_y_pre", "pos_y_pre", pa.float32()),
    ("pos_x_post", "pos_x_post", pa.float32()),
    ("pos_y_post", "pos_y_post", pa.float32()),
    ("joy_x", "joy_x", pa.float32()),
    ("joy_y", "joy_y", pa.float32()),
    ("c_x", "c_x", pa.float32()),
    ("c_y", "c_y", pa.float32()),
    ("trigger", "trigger", pa.float32()),
    ("buttons", "buttons", pa.uint32()),
    ("phys_buttons", "phys_buttons", pa.uint16()),
    ("phys_l", "phys_l", pa.float32()),
    ("phys_r", "phys_r", pa.float32()),
    ("shield", "shield", pa.float32()),
    ("hit_with", "hit_with", pa.uint8()),
    ("combo", "combo", pa.uint8()),
    ("hurt_by", "hurt_by", pa.uint8()),
    ("percent_pre", "percent_pre", pa.float32()),
    ("percent_post", "percent_post", pa.float32()),
    ("action_pre", "action_pre", pa.uint16()),
    ("action_post", "action_post", pa.uint16()),
    ("action_fc", "action_fc", pa.float32()),
    ("face_dir_pre", "face_dir_pre", pa.float32()),
    ("face_dir_post", "face_dir_post", pa.float32()),
    ("hitstun", "hitstun", pa.float32()),
    ("airborne", "airborne", pa.bool_()),
    ("ground_id", "ground_id", pa.uint16()),
    ("jumps", "jumps", pa.uint8()),
    ("l_cancel", "l_cancel", pa.uint8()),
    ("hurtbox", "hurtbox", pa.uint8()),
    ("hitlag", "hitlag", pa.float32()),
    ("self_air_x", "self_air_x", pa.float32()),
    ("self_air_y", "self_air_y", pa.float32()),
    ("attack_x", "attack_x", pa.float32()),
    ("attack_y", "attack_y", pa.float32()),
    ("self_grd_x", "self_grd_x", pa.float32()),
)

FRAMES_SCHEMA: Final[pa.Schema] = pa.schema(
    [
        pa.field("match_id", pa.utf8()),
        pa.field("player_id", pa.utf8()),
        pa.field("player_index", pa.uint8()),
        pa.field("frame_number", pa.uint32()),
        *(pa.field(column, dtype) for column, _attr, dtype in _FRAME_COLUMNS),
    ]
)

# Column name -> ItemFrame attribute.
_ITEM_COLUMNS: Final[tuple[tuple[str, str, pa.DataType], ...]] = (
    ("state", "state", pa.uint8()),
    ("face_dir", "face_dir", pa.float32()),
    ("xvel", "xvel", pa.float32()),
    ("yvel", "yvel", pa.float32()),
    ("xpos", "xpos", pa.float32()),
    ("ypos", "ypos", pa.float32()),
    ("damage", "damage", pa.uint16()),
    ("expire", "expire", pa.float32()),
    ("missile_type", "flags_1", pa.uint16()),
    ("turnip_face", "flags_2", pa.uint16()),
    ("is_launched", "flags_3", pa.uint16()),
    ("charged_power", "flags_4", pa.uint16()),
    ("owner", "owner", pa.int8()),
)

ITEMS_SCHEMA: Final[pa.Schema] = pa.schema(
    [
        pa.field("match_id", pa.utf8()),
        pa.field("spawn_id", pa.uint32()),
        pa.field("item_type", pa.uint16()),
        pa.field("frame", pa.int32()),
        *(pa.field(column, dtype) for column, _attr, dtype in _ITEM_COLUMNS),
    ]
)

PLATFORMS_SCHEMA: Final[pa.Schema] = pa.schema(
    [
        pa.field("match_id", pa.utf8()),
        pa.field("frame", pa.int32()),
        pa.field("left_height", pa.float32()),
        pa.field("right_height", pa.float32()),
    ]
)


def frames_table(replay: Replay) -> pa.Table:
    """One row per allocated player slot per frame index."""

    columns: dict[str, list[object]] = {field.name: [] for field in FRAMES_SCHEMA}
    for slot in replay.active_players():
        player_id = replay.players[slot.port].tag_code
        for index, frame in enumerate(slot.frames or ()):
            columns["match_id"].append(replay.start_time)
            columns["player_id"].append(player_id)
            columns["player_index"].append(slot.index)
            columns["frame_number"].append(index)
            for column, attr, _dtype in _FRAME_COLUMNS:
                columns[column].append(getattr(frame, attr))
    return pa.Table.from_pydict(columns, schema=FRAMES_SCHEMA)


def items_table(replay: Replay) -> pa.Table:
    """One row per recorded frame of each live item.

    Items whose spawn ids collide in the pool (`spawn_id % capacity`) keep only
    the later lifetime.
    """

    columns: dict[str, list[object]] = {field.name: [] for field in ITEMS_SCHEMA}
    for slot in replay.items.live_items():
        for frame in slot.frames:
            columns["match_id"].append(replay.start_time)
            columns["spawn_id"].append(slot.spawn_id)
            columns["item_type"].append(slot.type)
            columns["frame"].append(replay.frame_index(frame.frame))
            for column, attr, _dtype in _ITEM_COLUMNS:
                columns[column].append(getattr(frame, attr))
    return pa.Table.from_pydict(columns, schema=ITEMS_SCHEMA)


def platforms_table(replay: Replay) -> pa.Table:
    frames = replay.platform_frames
    return pa.Table.from_pydict(
        {
            "match_id": [replay.start_time] * len(frames),
            "frame": [replay.frame_index(entry.frame) for entry in frames],
            "left_height": [entry.left_height for entry in frames],
            "right_height": [entry.right_height for entry in frames],
        },
        schema=PLATFORMS_SCHEMA,
    )


def write_parquet(replay: Replay, out_dir: Path | str, *, compression: str = DEFAULT_COMPRESSION) -> list[Path]:
    """Write the frame, item and (Fountain of Dreams only) platform tables.

    Returns the paths written. `platforms.parquet` is skipped when the replay has
    no platform frames.
    """

    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    tables = [(FRAMES_FILE, frames_table(replay)), (ITEMS_FILE, items_table(replay))]
    if replay.platform_frames:
        tables.append((PLATFORMS_FILE, platforms_table(replay)))
    for name, table in tables:
        path = out_dir / name
        pq.write_table(table, path, compression=compression)
        written.append(path)
    return written


__all__ = [
    "FRAMES_FILE",
    "FRAMES_SCHEMA",
    "ITEMS_FILE",
    "ITEMS_SCHEMA",
    "PLATFORMS_FILE",
    "PLATFORMS_SCHEMA",
    "frames_table",
    "items_table",
    "platforms_table",
    "write_parquet",
]
