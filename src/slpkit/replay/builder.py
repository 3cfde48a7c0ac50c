from __future__ import annotations

from typing import Final, Mapping

from ..debug_log import NULL_TRACE, DecodeTrace
from .container import CaptureMetadata
from .errors import DecodeError
from .events import GameStart
from .types import (
    FOD_LEFT_INITIAL_HEIGHT,
    FOD_RIGHT_INITIAL_HEIGHT,
    FOUNTAIN_OF_DREAMS_STAGE_ID,
    ICE_CLIMBERS_EXT_ID,
    ITEM_POOL_SIZE,
    PORT_COUNT,
    ItemFrame,
    ItemPool,
    PlatformFrame,
    PlayerFrame,
    PlayerSlot,
    PlayerType,
    Replay,
)

PRE_FRAME_FIELDS: Final[tuple[str, ...]] = (
    "seed",
    "action_pre",
    "pos_x_pre",
    "pos_y_pre",
    "face_dir_pre",
    "joy_x",
    "joy_y",
    "c_x",
    "c_y",
    "trigger",
    "buttons",
    "phys_buttons",
    "phys_l",
    "phys_r",
    "ucf_x",
    "percent_pre",
    "ucf_y",
)

POST_FRAME_FIELDS: Final[tuple[str, ...]] = (
    "char_id",
    "action_post",
    "pos_x_post",
    "pos_y_post",
    "face_dir_post",
    "percent_post",
    "shield",
    "hit_with",
    "combo",
    "hurt_by",
    "stocks",
    "action_fc",
    "flags_1",
    "flags_2",
    "flags_3",
    "flags_4",
    "flags_5",
    "hitstun",
    "ground_id",
    "jumps",
    "l_cancel",
    "hurtbox",
    "self_air_x",
    "self_air_y",
    "attack_x",
    "attack_y",
    "self_grd_x",
    "hitlag",
    "anim_index",
)

# Platform 0 is the right-hand platform, 1 the left.
FOD_RIGHT_PLATFORM: Final[int] = 0
FOD_LEFT_PLATFORM: Final[int] = 1


def _player_type(raw: int) -> PlayerType:
    try:
        return PlayerType(int(raw))
    except ValueError:
        return PlayerType.EMPTY


def resolve_winner(replay: Replay) -> int:
    """Winning port, or -1 when it cannot be told apart.

    Placements decide when the capture has them. Otherwise the port with the most
    stocks on its last recorded frame wins, lower percent breaking ties.
    """

    placements = tuple(replay.placements)
    for slot in replay.ports():
        if placements[slot.port] == 0:
            return slot.port

    standings: list[tuple[int, float, int]] = []
    for slot in replay.ports():
        if not slot.frames:
            continue
        last = slot.frames[-1]
        standings.append((-int(last.stocks), float(last.percent_post), slot.port))
    if not standings:
        return -1
    standings.sort()
    if len(standings) > 1 and standings[0][:2] == standings[1][:2]:
        return -1
    return standings[0][2]


class ReplayBuilder:
    """Fills a `Replay` from decoded events.

    Frame storage is allocated once, after the frame range is known. Writes that
    land outside the allocated storage are dropped and counted.
    """

    def __init__(self, *, item_pool_size: int = ITEM_POOL_SIZE, trace: DecodeTrace = NULL_TRACE) -> None:
        self.replay = Replay(items=ItemPool(item_pool_size))
        self.trace = trace
        self.dropped: dict[str, int] = {}
        self._allocated = False

    def _drop(self, kind: str, **fields: object) -> None:
        self.dropped[kind] = self.dropped.get(kind, 0) + 1
        self.trace.event("write_dropped", kind=kind, **fields)

    def start(self, game_start: GameStart, metadata: CaptureMetadata | None = None) -> Replay:
        metadata = CaptureMetadata() if metadata is None else metadata
        replay = self.replay
        replay.format_version = game_start.version
        replay.start_time = metadata.start_at or game_start.match_id
        replay.played_on = metadata.played_on
        replay.metadata_last_frame = metadata.last_frame
        replay.stage = int(game_start.stage)
        replay.timer = int(game_start.timer)
        replay.seed = int(game_start.seed)
        replay.is_teams = bool(game_start.is_teams)
        replay.is_pal = bool(game_start.pal)
        replay.frozen_stadium = bool(game_start.frozen_stadium)
        replay.scene_minor = int(game_start.scene_minor)
        replay.scene_major = int(game_start.scene_major)
        replay.language = int(game_start.language)
        replay.match_id = game_start.match_id
        replay.game_number = int(game_start.game_number)
        replay.tiebreak_number = int(game_start.tiebreak_number)

        for port, info in enumerate(game_start.players[:PORT_COUNT]):
            slot = replay.players[port]
            slot.player_type = _player_type(info.player_type)
            slot.character = int(info.character)
            slot.costume = int(info.costume)
            slot.team = int(info.team)
            slot.start_stocks = int(info.stocks)
            slot.dashback = int(info.dashback)
            slot.shield_drop = int(info.shield_drop)
            slot.nametag = info.nametag
            slot.display_name = info.display_name
            slot.tag_code = info.connect_code
            slot.uid = info.uid
            slot.netplay_name = metadata.netplay_names[port] if port < len(metadata.netplay_names) else ""
            if slot.active and slot.character == ICE_CLIMBERS_EXT_ID:
                self._mirror_partner(slot)

        self.trace.info(
            "game_start",
            version=replay.format_version.text,
            stage=replay.stage,
            players=",".join(str(slot.port) for slot in replay.ports()),
            start_time=replay.start_time,
        )
        return replay

    def _mirror_partner(self, primary: PlayerSlot) -> None:
        partner = self.replay.players[primary.index + PORT_COUNT]
        for name in (
            "player_type",
            "character",
            "costume",
            "team",
            "start_stocks",
            "dashback",
            "shield_drop",
            "nametag",
            "display_name",
            "tag_code",
            "uid",
            "netplay_name",
        ):
            setattr(partner, name, getattr(primary, name))

    def allocate(self, first_frame: int, last_frame: int) -> None:
        if self._allocated:
            raise RuntimeError("frame storage is already allocated")
        replay = self.replay
        replay.first_frame = int(first_frame)
        replay.last_frame = max(int(last_frame), int(first_frame) - 1)
        count = replay.frame_count
        for slot in replay.players:
            if not slot.active:
                continue
            if slot.is_partner:
                primary = replay.players[slot.port]
                if not (primary.active and primary.character == ICE_CLIMBERS_EXT_ID):
                    continue
            slot.frames = [PlayerFrame() for _ in range(count)]
        self._allocated = True
        self.trace.detail(
            "frames_allocated",
            first_frame=replay.first_frame,
            last_frame=replay.last_frame,
            frame_count=count,
            slots=",".join(str(slot.index) for slot in replay.active_players()),
        )

    def _player_frame(self, kind: str, values: Mapping[str, object]) -> PlayerFrame | None:
        replay = self.replay
        port = int(values["port"])
        frame = int(values["frame"])
        if port >= PORT_COUNT:
            self._drop(kind, reason="port", port=port, frame=frame)
            return None
        slot = replay.players[port + (PORT_COUNT if values["follower"] else 0)]
        if slot.frames is None:
            self._drop(kind, reason="unallocated", slot=slot.index, frame=frame)
            return None
        index = frame - replay.first_frame
        if not 0 <= index < len(slot.frames):
            self._drop(kind, reason="frame_range", slot=slot.index, frame=frame)
            return None
        return slot.frames[index]

    def write_pre_frame(self, values: Mapping[str, object]) -> None:
        target = self._player_frame("pre_frame", values)
        if target is None:
            return
        for name in PRE_FRAME_FIELDS:
            setattr(target, name, values[name])

    def write_post_frame(self, values: Mapping[str, object]) -> None:
        target = self._player_frame("post_frame", values)
        if target is None:
            return
        for name in POST_FRAME_FIELDS:
            setattr(target, name, values[name])
        target.follower = bool(values["follower"])
        target.airborne = bool(values["airborne"])
        target.alive = bool(values["alive"])

    def write_item(self, values: Mapping[str, object]) -> None:
        items = self.replay.items
        spawn_id = int(values["spawn_id"])
        frame = int(values["frame"])
        previous = items.slot(items.slot_index(spawn_id))
        previous_id = previous.spawn_id
        had_frames = previous.num_frames > 0
        slot, started = items.observe(spawn_id, int(values["type"]))
        if started:
            if had_frames and previous_id != spawn_id:
                self.trace.detail("item_slot_reused", spawn_id=spawn_id, evicted=previous_id, frame=frame)
            else:
                self.trace.event("item_spawned", spawn_id=spawn_id, type=slot.type, frame=frame)
        else:
            frames = slot.frames
            while frames and frames[-1].frame >= frame:
                frames.pop()
        slot.frames.append(
            ItemFrame(
                frame=frame,
                state=int(values["state"]),
                face_dir=float(values["face_dir"]),
                xvel=float(values["xvel"]),
                yvel=float(values["yvel"]),
                xpos=float(values["xpos"]),
                ypos=float(values["ypos"]),
                damage=int(values["damage"]),
                expire=float(values["expire"]),
                flags_1=int(values["flags_1"]),
                flags_2=int(values["flags_2"]),
                flags_3=int(values["flags_3"]),
                flags_4=int(values["flags_4"]),
                owner=int(values["owner"]),
            )
        )

    def write_platform(self, values: Mapping[str, object]) -> None:
        replay = self.replay
        frame = int(values["frame"])
        if replay.stage != FOUNTAIN_OF_DREAMS_STAGE_ID:
            self._drop("platform", reason="stage", stage=replay.stage, frame=frame)
            return
        frames = replay.platform_frames
        while frames and frames[-1].frame > frame:
            frames.pop()
        if frames:
            left, right = frames[-1].left_height, frames[-1].right_height
        else:
            left, right = FOD_LEFT_INITIAL_HEIGHT, FOD_RIGHT_INITIAL_HEIGHT
        platform = int(values["platform"])
        height = float(values["height"])
        if platform == FOD_LEFT_PLATFORM:
            left = height
        elif platform == FOD_RIGHT_PLATFORM:
            right = height
        else:
            self._drop("platform", reason="platform", platform=platform, frame=frame)
            return
        entry = PlatformFrame(frame=frame, left_height=left, right_height=right)
        if frames and frames[-1].frame == frame:
            frames[-1] = entry
        else:
            frames.append(entry)

    def finish(self, game_end: Mapping[str, object] | None, error: DecodeError | None = None) -> Replay:
        replay = self.replay
        if game_end is not None:
            replay.end_type = int(game_end["end_type"])
            replay.lras_initiator = int(game_end["lras_initiator"])
            replay.placements = tuple(int(game_end[f"placement_{i}"]) for i in range(PORT_COUNT))
            replay.winner_id = resolve_winner(replay)
        replay.complete = game_end is not None and error is None
        if self.dropped:
            self.trace.detail("writes_dropped", **self.dropped)
        self.trace.info(
            "game_end" if game_end is not None else "game_unfinished",
            end_type=replay.end_type,
            winner=replay.winner_id,
            frames=replay.frame_count,
            items=len(replay.items),
            complete=replay.complete,
            error=error,
        )
        return replay
