from __future__ import annotations

from pathlib import Path

import pyarrow.parquet as pq
import pytest

from slpkit.export.columnar import (
    FRAMES_FILE,
    FRAMES_SCHEMA,
    ITEMS_FILE,
    ITEMS_SCHEMA,
    PLATFORMS_FILE,
    PLATFORMS_SCHEMA,
    frames_table,
    items_table,
    write_parquet,
)
from slpkit.replay import load_replay

from slp_capture import HUMAN_FOX, CaptureBuilder, two_player_capture


@pytest.mark.parametrize("version", [(1, 0, 0), (2, 0, 0), (3, 14, 0)])
def test_frame_schema_is_the_same_for_every_version(version: tuple[int, int, int]) -> None:
    replay = load_replay(two_player_capture(version).build()).replay

    table = frames_table(replay)

    assert table.schema == FRAMES_SCHEMA
    assert table.num_rows == 6
    assert table.column("player_index").to_pylist() == [0, 0, 0, 1, 1, 1]
    assert table.column("frame_number").to_pylist() == [0, 1, 2, 0, 1, 2]
    assert table.column("pos_x_post").to_pylist() == [0.0, 1.0, 2.0, 0.0, -1.0, -2.0]


def test_frames_table_keys_rows_by_match_and_player() -> None:
    replay = load_replay(two_player_capture().build()).replay

    rows = frames_table(replay).to_pylist()

    assert {row["match_id"] for row in rows} == {"mode.unranked-2024-01-01T00:00:00.00-0"}
    assert [row["player_id"] for row in rows[::3]] == ["FOX#123", "BIRD#45"]
    assert rows[-1]["stocks"] == 3
    assert rows[-1]["percent_post"] == 12.5


def test_frames_table_keeps_processed_and_physical_buttons() -> None:
    builder = CaptureBuilder()
    builder.game_start(players=(HUMAN_FOX,))
    builder.frame_start(-123)
    builder.pre(-123, 0, buttons=0x80000100, phys_buttons=0x0100)
    builder.post(-123, 0)
    builder.bookend(-123)
    builder.game_end(end_type=2, placement_0=0)
    replay = load_replay(builder.build()).replay

    row = frames_table(replay).to_pylist()[0]

    assert row["buttons"] == 0x80000100
    assert row["phys_buttons"] == 0x0100


def test_items_table_uses_frame_indices() -> None:
    builder = CaptureBuilder()
    builder.game_start(players=(HUMAN_FOX,))
    builder.frame(-123, {0: {}})
    builder.frame(-122, {0: {}})
    builder.item(-122, 9, type=0x63, xpos=4.0, owner=0, flags_1=2)
    builder.game_end(end_type=2, placement_0=0)
    replay = load_replay(builder.build()).replay

    table = items_table(replay)

    assert table.schema == ITEMS_SCHEMA
    assert table.to_pylist() == [
        {
            "match_id": "",
            "spawn_id": 9,
            "item_type": 0x63,
            "frame": 1,
            "state": 0,
            "face_dir": 0.0,
            "xvel": 0.0,
            "yvel": 0.0,
            "xpos": 4.0,
            "ypos": 0.0,
            "damage": 0,
            "expire": 0.0,
            "missile_type": 2,
            "turnip_face": 0,
            "is_launched": 0,
            "charged_power": 0,
            "owner": 0,
        }
    ]


def test_write_parquet_skips_platforms_off_fountain(tmp_path: Path) -> None:
    replay = load_replay(two_player_capture().build()).replay

    written = write_parquet(replay, tmp_path / "game")

    assert [path.name for path in written] == [FRAMES_FILE, ITEMS_FILE]
    frames = pq.read_table(written[0])
    assert frames.schema.names == FRAMES_SCHEMA.names
    assert frames.num_rows == 6
    assert pq.read_table(written[1]).num_rows == 0
    assert pq.ParquetFile(written[0]).metadata.row_group(0).column(0).compression == "SNAPPY"


def test_write_parquet_writes_platforms_on_fountain(tmp_path: Path) -> None:
    builder = CaptureBuilder(fod=True)
    builder.game_start(players=(HUMAN_FOX,), stage=2)
    builder.frame(-123, {0: {}})
    builder.platform(-123, 0, 27.5)
    builder.game_end(end_type=2, placement_0=0)
    replay = load_replay(builder.build()).replay

    written = write_parquet(replay, tmp_path)

    assert [path.name for path in written] == [FRAMES_FILE, ITEMS_FILE, PLATFORMS_FILE]
    platforms = pq.read_table(written[2])
    assert platforms.schema.names == PLATFORMS_SCHEMA.names
    assert platforms.to_pylist() == [{"match_id": "", "frame": 0, "left_height": 20.0, "right_height": 27.5}]
