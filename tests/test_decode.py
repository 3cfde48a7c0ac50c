from __future__ import annotations

import struct
from pathlib import Path

import pytest

from slpkit.config import DecodeConfig
from slpkit.replay import (
    DecodeError,
    MissingCatalog,
    PlayerFrame,
    PlayerType,
    Replay,
    TruncatedStream,
    UnknownEventKind,
    VersionPolicyViolation,
    load_replay,
    load_replay_file,
    resolve_winner,
)

from slp_capture import (
    CPU_ICE_CLIMBERS,
    FRAME_START,
    GECKO_LIST,
    HUMAN_FALCO,
    HUMAN_FOX,
    POST_FRAME,
    RAW_PREFIX,
    CaptureBuilder,
    payload_sizes,
    two_player_capture,
)


def _wrap(raw: bytes) -> bytes:
    return RAW_PREFIX + struct.pack(">I", len(raw)) + raw + b"}"


def test_two_player_capture_decodes() -> None:
    result = load_replay(two_player_capture().build())

    assert result.ok
    replay = result.replay
    assert replay.complete is True
    assert replay.slippi_version == "3.14.0"
    assert replay.first_frame == -123
    assert replay.last_frame == -121
    assert replay.frame_count == 3
    assert replay.stage == 31
    assert replay.winner_id == 0
    assert replay.placements == (0, 1, -1, -1)
    assert replay.end_type == 2
    assert replay.lras_initiator == -1
    assert replay.match_id == "mode.unranked-2024-01-01T00:00:00.00-0"
    assert replay.start_time == replay.match_id

    fox, falco = replay.players[0], replay.players[1]
    assert fox.player_type == PlayerType.HUMAN
    assert fox.character == 2
    assert fox.nametag == "FOX"
    assert fox.tag_code == "FOX#123"
    assert falco.tag_code == "BIRD#45"
    assert falco.costume == 1
    assert [slot.index for slot in replay.active_players()] == [0, 1]
    assert all(slot.frames is None for slot in replay.players[2:])

    assert len(fox.frames) == 3
    assert fox.frames[2].pos_x_post == 2.0
    assert fox.frames[2].pos_x_pre == 2.0
    assert fox.frames[0].pos_y_post == 0.5
    assert fox.frames[0].alive is True
    assert fox.frames[0].char_id == 1
    assert falco.frames[1].pos_x_post == -1.0
    assert falco.frames[1].percent_post == 12.5
    assert falco.frames[2].stocks == 3


def test_decode_is_deterministic() -> None:
    data = two_player_capture().build(metadata={"startAt": "2024-01-01T00:00:00Z"})

    first = load_replay(data).replay
    second = load_replay(bytearray(data)).replay

    assert first == second


def test_metadata_fills_start_time_and_netplay_names() -> None:
    metadata = {
        "startAt": "2024-01-01T00:00:00Z",
        "playedOn": "dolphin",
        "players": {"0": {"names": {"netplay": "Fox Main"}}},
    }

    replay = load_replay(two_player_capture().build(metadata=metadata)).replay

    assert replay.start_time == "2024-01-01T00:00:00Z"
    assert replay.played_on == "dolphin"
    assert replay.players[0].netplay_name == "Fox Main"
    assert replay.players[1].netplay_name == ""


def test_load_replay_file(tmp_path: Path) -> None:
    path = tmp_path / "game.slp"
    path.write_bytes(two_player_capture().build())

    result = load_replay_file(path, config=DecodeConfig(item_pool_size=16))

    assert result.ok
    assert result.replay.frame_count == 3
    assert result.replay.items.capacity == 16


def test_stream_cut_after_catalog_is_truncated() -> None:
    builder = two_player_capture()
    raw = builder.stream()
    catalog_end = 2 + 3 * len(builder.sizes)

    result = load_replay(_wrap(raw[:catalog_end]))

    assert isinstance(result.error, TruncatedStream)
    assert result.replay.complete is False
    assert result.replay.frame_count == 0
    with pytest.raises(TruncatedStream):
        result.raise_for_error()


def test_stream_cut_mid_record_keeps_decoded_frames() -> None:
    raw = two_player_capture().stream()

    result = load_replay(_wrap(raw[:-3]))

    assert isinstance(result.error, TruncatedStream)
    assert isinstance(result.error, DecodeError)
    assert result.error.offset is not None
    replay = result.replay
    assert replay.complete is False
    assert replay.frame_count == 3
    assert replay.players[0].frames[2].pos_x_post == 2.0
    # Game end never arrived.
    assert replay.winner_id == -1
    assert replay.placements == (-1, -1, -1, -1)


def test_stream_without_game_end_is_truncated() -> None:
    builder = CaptureBuilder()
    builder.game_start(players=(HUMAN_FOX, HUMAN_FALCO))
    builder.frame(-123, {0: {"stocks": 4}, 1: {"stocks": 4}})

    result = load_replay(builder.build())

    assert isinstance(result.error, TruncatedStream)
    assert result.replay.frame_count == 1
    assert result.replay.complete is False


def test_skipped_frame_numbers_mark_capture_truncated() -> None:
    builder = CaptureBuilder()
    builder.game_start(players=(HUMAN_FOX, HUMAN_FALCO))
    builder.frame(-123, {0: {"stocks": 4}, 1: {"stocks": 4}})
    builder.frame(-121, {0: {"stocks": 4}, 1: {"stocks": 4}})
    builder.game_end(end_type=2, placement_0=0, placement_1=1)

    result = load_replay(builder.build())

    assert isinstance(result.error, TruncatedStream)
    assert "skips 1 frame" in str(result.error)
    assert result.replay.frame_count == 3
    assert result.replay.complete is False


def test_unknown_event_kind_returns_partial_replay() -> None:
    builder = CaptureBuilder()
    builder.game_start(players=(HUMAN_FOX, HUMAN_FALCO))
    builder.frame(-123, {0: {"pos_x_post": 1.0}, 1: {}})
    builder.frame(-122, {0: {"pos_x_post": 2.0}, 1: {}})
    builder.raw(0x50, b"\x00\x00")
    builder.frame(-121, {0: {"pos_x_post": 3.0}, 1: {}})
    builder.game_end(end_type=2, placement_0=0, placement_1=1)

    result = load_replay(builder.build())

    assert isinstance(result.error, UnknownEventKind)
    assert result.error.code == 0x50
    assert result.replay.last_frame == -122
    assert result.replay.players[0].frames[-1].pos_x_post == 2.0
    assert result.replay.complete is False


def test_cataloged_kinds_without_handlers_are_skipped() -> None:
    sizes = payload_sizes((3, 14, 0))
    sizes[GECKO_LIST] = 10
    builder = CaptureBuilder(sizes=sizes)
    builder.game_start(players=(HUMAN_FOX, HUMAN_FALCO))
    builder.raw(GECKO_LIST, b"\xff" * 10)
    builder.frame(-123, {0: {"stocks": 4}, 1: {"stocks": 3}})
    builder.game_end(end_type=2, placement_0=-1, placement_1=-1, placement_2=-1, placement_3=-1)

    result = load_replay(builder.build())

    assert result.ok
    assert result.replay.complete is True
    assert result.replay.winner_id == 0


def test_missing_catalog_raises() -> None:
    raw = two_player_capture().stream()

    with pytest.raises(MissingCatalog):
        load_replay(_wrap(raw[2:]))


def test_catalog_shorter_than_version_requires_raises() -> None:
    sizes = payload_sizes((3, 8, 0))
    sizes[POST_FRAME] = 72
    builder = CaptureBuilder((3, 8, 0), sizes=sizes)
    builder.game_start(players=(HUMAN_FOX,))
    builder.frame(-123, {0: {}})
    builder.game_end(end_type=2)

    with pytest.raises(VersionPolicyViolation, match="hitlag"):
        load_replay(builder.build())


def test_frame_start_without_scene_frame_raises_at_3_10() -> None:
    sizes = payload_sizes((3, 10, 0))
    sizes[FRAME_START] = 8
    builder = CaptureBuilder((3, 10, 0), sizes=sizes)
    builder.game_start(players=(HUMAN_FOX,))
    builder.frame(-123, {0: {}})
    builder.game_end(end_type=2)

    with pytest.raises(VersionPolicyViolation, match="scene_frame"):
        load_replay(builder.build())


def test_frame_event_before_game_start_raises() -> None:
    builder = CaptureBuilder()
    builder.pre(-123, 0)
    builder.game_start(players=(HUMAN_FOX,))

    with pytest.raises(VersionPolicyViolation, match="precedes game start"):
        load_replay(builder.build())


def test_older_versions_decode_missing_fields_to_defaults() -> None:
    new = load_replay(two_player_capture((3, 14, 0)).build()).replay
    old = load_replay(two_player_capture((2, 0, 0)).build()).replay

    assert old.slippi_version == "2.0.0"
    assert old.frame_count == new.frame_count == 3
    for port in (0, 1):
        for old_frame, new_frame in zip(old.players[port].frames, new.players[port].frames):
            assert old_frame.pos_x_post == new_frame.pos_x_post
            assert old_frame.stocks == new_frame.stocks
            assert old_frame.alive is True
            assert old_frame.hurtbox == 0
            assert old_frame.hitlag == 0.0
            assert old_frame.anim_index == 0
    assert old.players[0].nametag == "FOX"
    assert old.players[0].tag_code == ""
    assert old.match_id == ""
    # Placements arrived in 3.13; the winner falls back to stocks.
    assert old.placements == (-1, -1, -1, -1)
    assert old.winner_id == 0


def test_oldest_capture_decodes() -> None:
    replay = load_replay(two_player_capture((0, 1, 0)).build()).replay

    assert replay.complete is True
    assert replay.frame_count == 3
    frame = replay.players[0].frames[0]
    assert frame.alive is False
    assert frame.action_fc == 0.0
    assert replay.players[0].nametag == ""
    assert replay.lras_initiator == -1


def test_winner_by_stocks_without_placements() -> None:
    replay = load_replay(two_player_capture((3, 12, 0), placements=None, stocks=(2, 3)).build()).replay

    assert replay.placements == (-1, -1, -1, -1)
    assert replay.winner_id == 1


def test_winner_tie_is_undetermined() -> None:
    replay = Replay()
    for port in (0, 1):
        slot = replay.players[port]
        slot.player_type = PlayerType.HUMAN
        slot.frames = [PlayerFrame(stocks=2, percent_post=40.0)]

    assert resolve_winner(replay) == -1

    replay.players[1].frames[-1].percent_post = 41.0
    assert resolve_winner(replay) == 0


def test_metadata_last_frame_past_stream_is_truncated() -> None:
    result = load_replay(two_player_capture().build(metadata={"lastFrame": -100}))

    assert isinstance(result.error, TruncatedStream)
    assert result.replay.metadata_last_frame == -100
    assert result.replay.complete is False
    assert result.replay.winner_id == 0


def _ice_climbers_capture() -> CaptureBuilder:
    builder = CaptureBuilder()
    builder.game_start(players=(HUMAN_FOX, CPU_ICE_CLIMBERS))
    for i in range(2):
        frame = -123 + i
        builder.frame_start(frame)
        builder.pre(frame, 0).pre(frame, 1).pre(frame, 1, follower=1)
        builder.post(frame, 0, char_id=1, pos_x_post=5.0)
        builder.post(frame, 1, char_id=14, pos_x_post=10.0 + i)
        builder.post(frame, 1, follower=1, char_id=15, pos_x_post=20.0 + i)
        # Fox has no partner; this one must not land anywhere.
        builder.post(frame, 0, follower=1, char_id=1, pos_x_post=99.0)
        builder.bookend(frame)
    return builder.game_end(end_type=2, placement_0=1, placement_1=0)


def test_ice_climbers_partner_gets_its_own_slot() -> None:
    replay = load_replay(_ice_climbers_capture().build()).replay

    nana = replay.players[5]
    assert nana.is_partner
    assert nana.port == 1
    assert nana.character == 14
    assert nana.player_type == PlayerType.CPU
    assert nana.start_stocks == 4
    assert [frame.pos_x_post for frame in nana.frames] == [20.0, 21.0]
    assert all(frame.follower for frame in nana.frames)
    assert [frame.pos_x_post for frame in replay.players[1].frames] == [10.0, 11.0]
    assert [slot.index for slot in replay.active_players()] == [0, 1, 5]
    assert replay.winner_id == 1


def test_follower_updates_for_other_characters_are_dropped() -> None:
    replay = load_replay(_ice_climbers_capture().build()).replay

    assert replay.players[4].frames is None
    assert replay.players[4].active is False
    assert [frame.pos_x_post for frame in replay.players[0].frames] == [5.0, 5.0]
    assert not any(frame.follower for frame in replay.players[0].frames)
