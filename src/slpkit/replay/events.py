from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final, Mapping

from construct import Array, Bytes, Construct, ConstructError, Float32b, Int8sb, Int8ub, Int16ub, Int32sb, Int32ub
from construct import Padding, Struct

from .errors import TruncatedStream, VersionPolicyViolation
from .types import PORT_COUNT, EventCode, FormatVersion
from .versioning import Field, FieldResolver


@dataclass(frozen=True, slots=True)
class FieldRange:
    """Payload bytes `[start, end)` carrying a revision-gated field.

    `names` are the decoded keys the field fills. A range with `start == end`
    carries no bytes; `value` is what its names hold when the field is present.
    """

    field: Field
    start: int
    end: int
    names: tuple[str, ...] = ()
    value: object = None


@dataclass(frozen=True, slots=True)
class EventLayout:
    code: int
    name: str
    struct: Construct
    size: int
    base_size: int
    names: tuple[str, ...]
    ranges: tuple[FieldRange, ...] = ()

    def plan(self, resolver: FieldResolver, payload_size: int) -> EventPlan:
        """Check the cataloged payload size against the version policy.

        Raises `VersionPolicyViolation` when the catalog is too short for the base
        layout or for a field the capture's version says is present.
        """

        payload_size = int(payload_size)
        version = resolver.version.text
        if payload_size < self.base_size:
            raise VersionPolicyViolation(
                f"{self.name} payload is {payload_size} bytes, below the {self.base_size}-byte base layout"
            )
        defaults: dict[str, object] = {}
        for entry in self.ranges:
            if resolver.present(entry.field):
                if entry.end > payload_size:
                    raise VersionPolicyViolation(
                        f"{self.name} payload is {payload_size} bytes but version {version} "
                        f"places {entry.field.value} at bytes {entry.start}..{entry.end}"
                    )
                if entry.start == entry.end:
                    for name in entry.names:
                        defaults[name] = entry.value
            else:
                default = resolver.default(entry.field)
                for name in entry.names:
                    defaults[name] = default
        return EventPlan(layout=self, payload_size=payload_size, defaults=defaults)


@dataclass(frozen=True, slots=True)
class EventPlan:
    """A layout bound to one capture's version and catalog."""

    layout: EventLayout
    payload_size: int
    defaults: Mapping[str, object] = field(default_factory=dict)

    def decode(self, payload: bytes | memoryview) -> dict[str, object]:
        layout = self.layout
        size = layout.size
        raw = bytes(payload[:size])
        if len(raw) < size:
            raw = raw.ljust(size, b"\x00")
        try:
            parsed = layout.struct.parse(raw)
        except ConstructError as exc:
            raise TruncatedStream(f"{layout.name}: {exc}") from exc
        out = {name: parsed[name] for name in layout.names}
        if self.defaults:
            out.update(self.defaults)
        return out


def _names(struct: Struct) -> tuple[str, ...]:
    return tuple(sub.name for sub in struct.subcons if sub.name and not sub.name.startswith("_"))


def _layout(code: EventCode, struct: Struct, base_size: int, ranges: tuple[FieldRange, ...] = ()) -> EventLayout:
    return EventLayout(
        code=int(code),
        name=code.name.lower(),
        struct=struct,
        size=int(struct.sizeof()),
        base_size=int(base_size),
        names=_names(struct),
        ranges=ranges,
    )


_PRE_FRAME = Struct(
    "frame" / Int32sb,
    "port" / Int8ub,
    "follower" / Int8ub,
    "seed" / Int32ub,
    "action_pre" / Int16ub,
    "pos_x_pre" / Float32b,
    "pos_y_pre" / Float32b,
    "face_dir_pre" / Float32b,
    "joy_x" / Float32b,
    "joy_y" / Float32b,
    "c_x" / Float32b,
    "c_y" / Float32b,
    "trigger" / Float32b,
    "buttons" / Int32ub,
    "phys_buttons" / Int16ub,
    "phys_l" / Float32b,
    "phys_r" / Float32b,
    "ucf_x" / Int8sb,
    "percent_pre" / Float32b,
    "ucf_y" / Int8sb,
)

_POST_FRAME = Struct(
    "frame" / Int32sb,
    "port" / Int8ub,
    "follower" / Int8ub,
    "char_id" / Int8ub,
    "action_post" / Int16ub,
    "pos_x_post" / Float32b,
    "pos_y_post" / Float32b,
    "face_dir_post" / Float32b,
    "percent_post" / Float32b,
    "shield" / Float32b,
    "hit_with" / Int8ub,
    "combo" / Int8ub,
    "hurt_by" / Int8ub,
    "stocks" / Int8ub,
    "action_fc" / Float32b,
    "flags_1" / Int8ub,
    "flags_2" / Int8ub,
    "flags_3" / Int8ub,
    "flags_4" / Int8ub,
    "flags_5" / Int8ub,
    "hitstun" / Float32b,
    "airborne" / Int8ub,
    "ground_id" / Int16ub,
    "jumps" / Int8ub,
    "l_cancel" / Int8ub,
    "hurtbox" / Int8ub,
    "self_air_x" / Float32b,
    "self_air_y" / Float32b,
    "attack_x" / Float32b,
    "attack_y" / Float32b,
    "self_grd_x" / Float32b,
    "hitlag" / Float32b,
    "anim_index" / Int32ub,
)

_ITEM_UPDATE = Struct(
    "frame" / Int32sb,
    "type" / Int16ub,
    "state" / Int8ub,
    "face_dir" / Float32b,
    "xvel" / Float32b,
    "yvel" / Float32b,
    "xpos" / Float32b,
    "ypos" / Float32b,
    "damage" / Int16ub,
    "expire" / Float32b,
    "spawn_id" / Int32ub,
    "flags_1" / Int8ub,
    "flags_2" / Int8ub,
    "flags_3" / Int8ub,
    "flags_4" / Int8ub,
    "owner" / Int8sb,
)

_GAME_END = Struct(
    "end_type" / Int8ub,
    "lras_initiator" / Int8sb,
    "placement_0" / Int8sb,
    "placement_1" / Int8sb,
    "placement_2" / Int8sb,
    "placement_3" / Int8sb,
)

_FRAME_START = Struct(
    "frame" / Int32sb,
    "seed" / Int32ub,
    "scene_frame" / Int32ub,
)

_FRAME_BOOKEND = Struct(
    "frame" / Int32sb,
)

_FOD_PLATFORM = Struct(
    "frame" / Int32sb,
    "platform" / Int8ub,
    "height" / Float32b,
)

PRE_FRAME: Final[EventLayout] = _layout(
    EventCode.PRE_FRAME,
    _PRE_FRAME,
    58,
    (
        FieldRange(Field.RAW_STICK_X, 58, 59, ("ucf_x",)),
        FieldRange(Field.PRE_PERCENT, 59, 63, ("percent_pre",)),
        FieldRange(Field.RAW_STICK_Y, 63, 64, ("ucf_y",)),
    ),
)

POST_FRAME: Final[EventLayout] = _layout(
    EventCode.POST_FRAME,
    _POST_FRAME,
    33,
    (
        FieldRange(Field.ACTION_FRAME_COUNTER, 33, 37, ("action_fc",)),
        FieldRange(Field.STATE_FLAGS, 37, 42, ("flags_1", "flags_2", "flags_3", "flags_4", "flags_5")),
        FieldRange(Field.HITSTUN, 42, 46, ("hitstun",)),
        FieldRange(Field.AIRBORNE, 46, 47, ("airborne",)),
        FieldRange(Field.GROUND_ID, 47, 49, ("ground_id",)),
        FieldRange(Field.JUMPS, 49, 50, ("jumps",)),
        FieldRange(Field.L_CANCEL, 50, 51, ("l_cancel",)),
        # No bytes of its own: a post-frame update from 2.0.0 on means the character is in play.
        FieldRange(Field.ALIVE, 51, 51, ("alive",), True),
        FieldRange(Field.HURTBOX, 51, 52, ("hurtbox",)),
        FieldRange(Field.SELF_VELOCITY, 52, 72, ("self_air_x", "self_air_y", "attack_x", "attack_y", "self_grd_x")),
        FieldRange(Field.HITLAG, 72, 76, ("hitlag",)),
        FieldRange(Field.ANIMATION_INDEX, 76, 80, ("anim_index",)),
    ),
)

ITEM_UPDATE: Final[EventLayout] = _layout(
    EventCode.ITEM_UPDATE,
    _ITEM_UPDATE,
    37,
    (
        FieldRange(Field.ITEM_FLAGS, 37, 41, ("flags_1", "flags_2", "flags_3", "flags_4")),
        FieldRange(Field.ITEM_OWNER, 41, 42, ("owner",)),
    ),
)

GAME_END: Final[EventLayout] = _layout(
    EventCode.GAME_END,
    _GAME_END,
    1,
    (
        FieldRange(Field.LRAS, 1, 2, ("lras_initiator",)),
        FieldRange(Field.PLACEMENTS, 2, 6, ("placement_0", "placement_1", "placement_2", "placement_3")),
    ),
)

FRAME_START: Final[EventLayout] = _layout(
    EventCode.FRAME_START,
    _FRAME_START,
    4,
    (
        FieldRange(Field.FRAME_SEED, 4, 8, ("seed",)),
        FieldRange(Field.SCENE_FRAME, 8, 12, ("scene_frame",)),
    ),
)

FRAME_BOOKEND: Final[EventLayout] = _layout(EventCode.FRAME_BOOKEND, _FRAME_BOOKEND, 4)

FOD_PLATFORM: Final[EventLayout] = _layout(EventCode.FOD_PLATFORM, _FOD_PLATFORM, 9)

FRAME_LAYOUTS: Final[Mapping[int, EventLayout]] = {
    layout.code: layout
    for layout in (PRE_FRAME, POST_FRAME, ITEM_UPDATE, GAME_END, FRAME_START, FRAME_BOOKEND, FOD_PLATFORM)
}


_GAME_START_PLAYER = Struct(
    "character" / Int8ub,
    "player_type" / Int8ub,
    "stocks" / Int8ub,
    "costume" / Int8ub,
    Padding(5),
    "team" / Int8ub,
    Padding(26),
)

_UCF_TOGGLES = Struct(
    "dashback" / Int32ub,
    "shield_drop" / Int32ub,
)

_GAME_START = Struct(
    "version" / Array(4, Int8ub),
    Padding(8),
    "is_teams" / Int8ub,
    Padding(5),
    "stage" / Int16ub,
    "timer" / Int32ub,
    Padding(76),
    "players" / Array(PORT_COUNT, _GAME_START_PLAYER),
    Padding(72),
    "seed" / Int32ub,
    "ucf" / Array(PORT_COUNT, _UCF_TOGGLES),
    "nametags" / Array(PORT_COUNT, Bytes(16)),
    "pal" / Int8ub,
    "frozen_stadium" / Int8ub,
    "scene_minor" / Int8ub,
    "scene_major" / Int8ub,
    "display_names" / Array(PORT_COUNT, Bytes(31)),
    "connect_codes" / Array(PORT_COUNT, Bytes(10)),
    "uids" / Array(PORT_COUNT, Bytes(29)),
    "language" / Int8ub,
    "match_id" / Bytes(51),
    "game_number" / Int32ub,
    "tiebreak_number" / Int32ub,
)

_GAME_START_BASE_SIZE: Final[int] = 320

GAME_START: Final[EventLayout] = _layout(
    EventCode.GAME_START,
    _GAME_START,
    _GAME_START_BASE_SIZE,
    (
        FieldRange(Field.UCF_TOGGLES, 320, 352),
        FieldRange(Field.NAMETAGS, 352, 416),
        FieldRange(Field.PAL, 416, 417),
        FieldRange(Field.FROZEN_STADIUM, 417, 418),
        FieldRange(Field.SCENE, 418, 420),
        FieldRange(Field.DISPLAY_NAMES, 420, 544),
        FieldRange(Field.CONNECT_CODES, 544, 584),
        FieldRange(Field.SLIPPI_UIDS, 584, 700),
        FieldRange(Field.LANGUAGE, 700, 701),
        FieldRange(Field.MATCH_INFO, 701, 760),
    ),
)


@dataclass(frozen=True, slots=True)
class GameStartPlayer:
    character: int
    player_type: int
    stocks: int
    costume: int
    team: int
    dashback: int
    shield_drop: int
    nametag: str
    display_name: str
    connect_code: str
    uid: str


@dataclass(frozen=True, slots=True)
class GameStart:
    version: FormatVersion
    is_teams: bool
    stage: int
    timer: int
    seed: int
    players: tuple[GameStartPlayer, ...]
    pal: bool
    frozen_stadium: bool
    scene_minor: int
    scene_major: int
    language: int
    match_id: str
    game_number: int
    tiebreak_number: int


def decode_cstring(raw: bytes, encoding: str = "shift_jis") -> str:
    """Decode a NUL-terminated fixed-width string field."""

    raw = bytes(raw).split(b"\x00", 1)[0]
    text = raw.decode(encoding, errors="replace")
    # Connect codes use the full-width number sign.
    return text.replace("＃", "#")


def read_version(payload: bytes | memoryview) -> FormatVersion:
    raw = bytes(payload[:4])
    if len(raw) < 4:
        raise VersionPolicyViolation(f"game start payload is {len(raw)} bytes, too short for a version")
    return FormatVersion(raw[0], raw[1], raw[2], raw[3])


def decode_game_start(payload: bytes | memoryview, resolver: FieldResolver) -> GameStart:
    GAME_START.plan(resolver, len(payload))
    size = GAME_START.size
    raw = bytes(payload[:size]).ljust(size, b"\x00")
    try:
        parsed = _GAME_START.parse(raw)
    except ConstructError as exc:
        raise TruncatedStream(f"game_start: {exc}") from exc

    def gated(name: Field, value: object) -> object:
        return value if resolver.present(name) else resolver.default(name)

    players: list[GameStartPlayer] = []
    for i, entry in enumerate(parsed["players"]):
        ucf = parsed["ucf"][i]
        players.append(
            GameStartPlayer(
                character=int(entry["character"]),
                player_type=int(entry["player_type"]),
                stocks=int(entry["stocks"]),
                costume=int(entry["costume"]),
                team=int(entry["team"]),
                dashback=int(gated(Field.UCF_TOGGLES, int(ucf["dashback"]))),
                shield_drop=int(gated(Field.UCF_TOGGLES, int(ucf["shield_drop"]))),
                nametag=str(gated(Field.NAMETAGS, decode_cstring(parsed["nametags"][i]))),
                display_name=str(gated(Field.DISPLAY_NAMES, decode_cstring(parsed["display_names"][i]))),
                connect_code=str(gated(Field.CONNECT_CODES, decode_cstring(parsed["connect_codes"][i]))),
                uid=str(gated(Field.SLIPPI_UIDS, decode_cstring(parsed["uids"][i], "ascii"))),
            )
        )

    match_present = resolver.present(Field.MATCH_INFO)
    return GameStart(
        version=resolver.version,
        is_teams=bool(parsed["is_teams"]),
        stage=int(parsed["stage"]),
        timer=int(parsed["timer"]),
        seed=int(parsed["seed"]),
        players=tuple(players),
        pal=bool(gated(Field.PAL, bool(parsed["pal"]))),
        frozen_stadium=bool(gated(Field.FROZEN_STADIUM, bool(parsed["frozen_stadium"]))),
        scene_minor=int(gated(Field.SCENE, int(parsed["scene_minor"]))),
        scene_major=int(gated(Field.SCENE, int(parsed["scene_major"]))),
        language=int(gated(Field.LANGUAGE, int(parsed["language"]))),
        match_id=decode_cstring(parsed["match_id"], "ascii") if match_present else "",
        game_number=int(parsed["game_number"]) if match_present else 0,
        tiebreak_number=int(parsed["tiebreak_number"]) if match_present else 0,
    )
