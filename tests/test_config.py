from __future__ import annotations

import io

import pytest

from slpkit.config import DecodeConfig
from slpkit.debug_log import NULL_TRACE, TRACE_DETAIL, TRACE_INFO, DecodeTrace, format_trace_line


def test_from_env_reads_debug_and_pool_size() -> None:
    config = DecodeConfig.from_env({"SLPKIT_DEBUG": "2", "SLPKIT_ITEM_POOL_SIZE": "64"})

    assert config.debug_level == 2
    assert config.item_pool_size == 64


@pytest.mark.parametrize(
    ("env", "debug_level", "item_pool_size"),
    [
        pytest.param({}, 0, None, id="unset"),
        pytest.param({"SLPKIT_DEBUG": "loud", "SLPKIT_ITEM_POOL_SIZE": "many"}, 0, None, id="not-numbers"),
        pytest.param({"SLPKIT_DEBUG": "-3", "SLPKIT_ITEM_POOL_SIZE": "0"}, 0, 1, id="clamped"),
    ],
)
def test_from_env_tolerates_bad_values(env: dict[str, str], debug_level: int, item_pool_size: int | None) -> None:
    config = DecodeConfig.from_env(env)

    assert config.debug_level == debug_level
    assert config.item_pool_size == item_pool_size


def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SLPKIT_DEBUG", "3")

    config = DecodeConfig.from_env(debug_level=1)

    assert config.debug_level == 1


def test_trace_writes_lines_at_or_below_level() -> None:
    sink = io.StringIO()
    trace = DecodeConfig(debug_level=TRACE_INFO, trace_sink=sink).trace(file="a.slp")

    trace.info("game_start", stage=31)
    trace.detail("catalog", kinds=3)

    lines = sink.getvalue().splitlines()
    assert len(lines) == 1
    assert lines[0].endswith("event=game_start file=a.slp stage=31")


def test_bound_trace_keeps_level_and_merges_context() -> None:
    sink = io.StringIO()
    trace = DecodeTrace(TRACE_DETAIL, sink, timestamps=False, file="a.slp").bind(port=1)

    trace.detail("frame", value="a\nb")

    assert sink.getvalue() == "event=frame file=a.slp port=1 value=a\\nb\n"


def test_null_trace_is_silent() -> None:
    assert not NULL_TRACE.enabled(TRACE_INFO)
    NULL_TRACE.info("game_start", stage=31)
    NULL_TRACE.bind(port=1).event("frame")
    assert format_trace_line("x", {}) == "event=x\n"
