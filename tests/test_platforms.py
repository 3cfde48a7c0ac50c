from __future__ import annotations

from slpkit.replay import PlatformFrame, ReplayBuilder, load_replay

from slp_capture import HUMAN_FOX, CaptureBuilder

FOUNTAIN_OF_DREAMS = 2


def _fod_capture(stage: int = FOUNTAIN_OF_DREAMS) -> CaptureBuilder:
    builder = CaptureBuilder(fod=True)
    builder.game_start(players=(HUMAN_FOX,), stage=stage)
    builder.frame(-123, {0: {}})
    builder.platform(-123, 1, 21.0)
    builder.frame(-122, {0: {}})
    builder.platform(-122, 0, 27.5)
    builder.platform(-122, 1, 22.0)
    builder.frame(-121, {0: {}})
    builder.platform(-121, 0, 27.0)
    builder.platform(-121, 1, 22.5)
    return builder.game_end(end_type=2, placement_0=0)


def test_platform_heights_carry_the_other_side() -> None:
    replay = load_replay(_fod_capture().build()).replay

    assert replay.platform_frames == [
        PlatformFrame(frame=-123, left_height=21.0, right_height=28.0),
        PlatformFrame(frame=-122, left_height=22.0, right_height=27.5),
        PlatformFrame(frame=-121, left_height=22.5, right_height=27.0),
    ]


def test_platform_updates_ignored_off_fountain_of_dreams() -> None:
    replay = load_replay(_fod_capture(stage=31).build()).replay

    assert replay.complete is True
    assert replay.platform_frames == []


def test_platform_rollback_discards_later_frames() -> None:
    builder = ReplayBuilder()
    builder.replay.stage = FOUNTAIN_OF_DREAMS

    builder.write_platform({"frame": 10, "platform": 0, "height": 27.0})
    builder.write_platform({"frame": 11, "platform": 1, "height": 21.0})
    builder.write_platform({"frame": 12, "platform": 1, "height": 22.0})
    builder.write_platform({"frame": 11, "platform": 0, "height": 26.0})

    assert builder.replay.platform_frames == [
        PlatformFrame(frame=10, left_height=20.0, right_height=27.0),
        PlatformFrame(frame=11, left_height=21.0, right_height=26.0),
    ]


def test_unknown_platform_index_is_dropped() -> None:
    builder = ReplayBuilder()
    builder.replay.stage = FOUNTAIN_OF_DREAMS

    builder.write_platform({"frame": 10, "platform": 2, "height": 27.0})

    assert builder.replay.platform_frames == []
    assert builder.dropped == {"platform": 1}
