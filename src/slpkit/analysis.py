from __future__ import annotations

from pathlib import Path

import msgspec

from .replay.types import PlayerSlot, Replay

# Post-frame l-cancel status: 0 none, 1 successful, 2 missed.
L_CANCEL_HIT = 1
L_CANCEL_MISS = 2


class PortAnalysis(msgspec.Struct, forbid_unknown_fields=True):
    port: int
    character: int
    tag: str = ""
    start_stocks: int = 0
    final_stocks: int = 0
    stocks_lost: int = 0
    damage_taken: float = 0.0
    l_cancels_hit: int = 0
    l_cancels_missed: int = 0
    frames_recorded: int = 0

    @property
    def l_cancel_rate(self) -> float | None:
        total = self.l_cancels_hit + self.l_cancels_missed
        if total == 0:
            return None
        return self.l_cancels_hit / total


class Analysis(msgspec.Struct, forbid_unknown_fields=True):
    success: bool
    match_id: str = ""
    slippi_version: str = ""
    frame_count: int = 0
    winner_id: int = -1
    complete: bool = False
    players: list[PortAnalysis] = msgspec.field(default_factory=list)

    def as_json(self) -> bytes:
        return msgspec.json.format(msgspec.json.encode(self), indent=2) + b"\n"

    def port(self, port: int) -> PortAnalysis | None:
        for entry in self.players:
            if entry.port == int(port):
                return entry
        return None


def analyze_port(slot: PlayerSlot) -> PortAnalysis:
    frames = slot.frames or []
    stats = PortAnalysis(
        port=slot.port,
        character=int(slot.character),
        tag=slot.tag,
        start_stocks=int(slot.start_stocks),
        frames_recorded=len(frames),
    )
    prev_percent = 0.0
    prev_stocks: int | None = None
    prev_l_cancel = 0
    for frame in frames:
        stocks = int(frame.stocks)
        percent = float(frame.percent_post)
        if prev_stocks is not None and stocks < prev_stocks:
            stats.stocks_lost += prev_stocks - stocks
            prev_percent = 0.0
        if percent > prev_percent:
            stats.damage_taken += percent - prev_percent
        prev_percent = percent
        prev_stocks = stocks

        # The status holds for several frames after landing; count its onset.
        l_cancel = int(frame.l_cancel)
        if l_cancel != prev_l_cancel:
            if l_cancel == L_CANCEL_HIT:
                stats.l_cancels_hit += 1
            elif l_cancel == L_CANCEL_MISS:
                stats.l_cancels_missed += 1
        prev_l_cancel = l_cancel

    if frames:
        stats.final_stocks = int(frames[-1].stocks)
    return stats


def analyze(replay: Replay) -> Analysis:
    """Summarize each active port of a decoded replay.

    `success` is False when no active player has frame storage, e.g. when the
    capture stopped before its first frame.
    """

    players = [analyze_port(slot) for slot in replay.ports() if slot.allocated]
    return Analysis(
        success=bool(players),
        match_id=replay.start_time,
        slippi_version=replay.slippi_version,
        frame_count=replay.frame_count,
        winner_id=replay.winner_id,
        complete=replay.complete,
        players=players,
    )


def write_analysis(analysis: Analysis, path: Path | str) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(analysis.as_json())
