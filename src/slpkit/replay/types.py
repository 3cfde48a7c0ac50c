from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import IntEnum
from typing import Final, Iterator

# Frame -123 is the first frame the game records; frame 0 is when "GO" appears.
FIRST_FRAME: Final[int] = -123

PORT_COUNT: Final[int] = 4
PLAYER_SLOT_COUNT: Final[int] = 8
ITEM_POOL_SIZE: Final[int] = 1024

ICE_CLIMBERS_EXT_ID: Final[int] = 14
FOUNTAIN_OF_DREAMS_STAGE_ID: Final[int] = 2

FOD_LEFT_INITIAL_HEIGHT: Final[float] = 20.0
FOD_RIGHT_INITIAL_HEIGHT: Final[float] = 28.0


class EventCode(IntEnum):
    MESSAGE_SPLITTER = 0x10
    EVENT_PAYLOADS = 0x35
    GAME_START = 0x36
    PRE_FRAME = 0x37
    POST_FRAME = 0x38
    GAME_END = 0x39
    FRAME_START = 0x3A
    ITEM_UPDATE = 0x3B
    FRAME_BOOKEND = 0x3C
    GECKO_LIST = 0x3D
    FOD_PLATFORM = 0x3F
    WHISPY = 0x40
    STADIUM_TRANSFORMATION = 0x41


class PlayerType(IntEnum):
    HUMAN = 0
    CPU = 1
    DEMO = 2
    EMPTY = 3


@dataclass(frozen=True, slots=True, order=True)
class FormatVersion:
    major: int = 0
    minor: int = 0
    revision: int = 0
    build: int = 0

    @classmethod
    def from_raw(cls, raw: int) -> FormatVersion:
        raw = int(raw) & 0xFFFF_FFFF
        return cls((raw >> 24) & 0xFF, (raw >> 16) & 0xFF, (raw >> 8) & 0xFF, raw & 0xFF)

    @property
    def raw(self) -> int:
        return (
            (int(self.major) & 0xFF) << 24
            | (int(self.minor) & 0xFF) << 16
            | (int(self.revision) & 0xFF) << 8
            | (int(self.build) & 0xFF)
        )

    @property
    def triple(self) -> tuple[int, int, int]:
        return (int(self.major), int(self.minor), int(self.revision))

    @property
    def text(self) -> str:
        return f"{self.major}.{self.minor}.{self.revision}"

    def at_least(self, major: int, minor: int = 0, revision: int = 0) -> bool:
        return self.triple >= (int(major), int(minor), int(revision))

    def __str__(self) -> str:
        return self.text


@dataclass(slots=True)
class PlayerFrame:
    # Pre-frame update.
    seed: int = 0
    action_pre: int = 0
    pos_x_pre: float = 0.0
    pos_y_pre: float = 0.0
    face_dir_pre: float = 0.0
    joy_x: float = 0.0
    joy_y: float = 0.0
    c_x: float = 0.0
    c_y: float = 0.0
    trigger: float = 0.0
    buttons: int = 0
    phys_buttons: int = 0
    phys_l: float = 0.0
    phys_r: float = 0.0
    ucf_x: int = 0
    percent_pre: float = 0.0
    ucf_y: int = 0
    # Post-frame update.
    char_id: int = 0
    follower: bool = False
    action_post: int = 0
    pos_x_post: float = 0.0
    pos_y_post: float = 0.0
    face_dir_post: float = 0.0
    percent_post: float = 0.0
    shield: float = 0.0
    hit_with: int = 0
    combo: int = 0
    hurt_by: int = 0
    stocks: int = 0
    action_fc: float = 0.0
    flags_1: int = 0
    flags_2: int = 0
    flags_3: int = 0
    flags_4: int = 0
    flags_5: int = 0
    hitstun: float = 0.0
    airborne: bool = False
    ground_id: int = 0
    jumps: int = 0
    l_cancel: int = 0
    alive: bool = False
    hurtbox: int = 0
    self_air_x: float = 0.0
    self_air_y: float = 0.0
    attack_x: float = 0.0
    attack_y: float = 0.0
    self_grd_x: float = 0.0
    hitlag: float = 0.0
    anim_index: int = 0


PLAYER_FRAME_FIELDS: Final[tuple[str, ...]] = tuple(f.name for f in fields(PlayerFrame))


@dataclass(slots=True)
class PlayerSlot:
    index: int
    player_type: PlayerType = PlayerType.EMPTY
    character: int = 0
    costume: int = 0
    team: int = 0
    start_stocks: int = 0
    dashback: int = 0
    shield_drop: int = 0
    nametag: str = ""
    display_name: str = ""
    tag_code: str = ""
    uid: str = ""
    netplay_name: str = ""
    frames: list[PlayerFrame] | None = None

    @property
    def port(self) -> int:
        return int(self.index) % PORT_COUNT

    @property
    def is_partner(self) -> bool:
        return int(self.index) >= PORT_COUNT

    @property
    def active(self) -> bool:
        return self.player_type != PlayerType.EMPTY

    @property
    def allocated(self) -> bool:
        return self.frames is not None

    @property
    def tag(self) -> str:
        return self.display_name or self.nametag or self.netplay_name


@dataclass(slots=True)
class ItemFrame:
    frame: int
    state: int = 0
    face_dir: float = 0.0
    xvel: float = 0.0
    yvel: float = 0.0
    xpos: float = 0.0
    ypos: float = 0.0
    damage: int = 0
    expire: float = 0.0
    flags_1: int = 0
    flags_2: int = 0
    flags_3: int = 0
    flags_4: int = 0
    owner: int = -1


ITEM_FRAME_FIELDS: Final[tuple[str, ...]] = tuple(f.name for f in fields(ItemFrame))


@dataclass(slots=True)
class ItemSlot:
    spawn_id: int = -1
    type: int = 0
    frames: list[ItemFrame] = field(default_factory=list)

    @property
    def num_frames(self) -> int:
        return len(self.frames)


class ItemPool:
    """Fixed-capacity arena of item slots addressed by `spawn_id % capacity`.

    Spawn ids are recycled through the arena: a slot is live only while the id
    it holds maps back to the slot's index and it has recorded at least one frame.
    Two live items whose ids differ by a multiple of the capacity share a slot;
    the later one discards the earlier one's frames.
    """

    __slots__ = ("_slots",)

    def __init__(self, capacity: int = ITEM_POOL_SIZE) -> None:
        capacity = int(capacity)
        if capacity <= 0:
            raise ValueError(f"item pool capacity must be positive, got {capacity}")
        self._slots = [ItemSlot() for _ in range(capacity)]

    @property
    def capacity(self) -> int:
        return len(self._slots)

    def slot_index(self, spawn_id: int) -> int:
        return int(spawn_id) % len(self._slots)

    def slot(self, index: int) -> ItemSlot:
        return self._slots[int(index)]

    def is_live(self, index: int) -> bool:
        slot = self._slots[int(index)]
        if slot.spawn_id < 0 or self.slot_index(slot.spawn_id) != int(index):
            return False
        return slot.num_frames > 0

    def get(self, spawn_id: int) -> ItemSlot | None:
        index = self.slot_index(spawn_id)
        slot = self._slots[index]
        if slot.spawn_id != int(spawn_id) or not self.is_live(index):
            return None
        return slot

    def observe(self, spawn_id: int, item_type: int) -> tuple[ItemSlot, bool]:
        """Return the slot for `spawn_id`, starting a new lifetime when needed.

        Returns `(slot, started)`. A slot holding another id is overwritten and its
        frames are discarded.
        """

        index = self.slot_index(spawn_id)
        slot = self._slots[index]
        if slot.spawn_id == int(spawn_id) and slot.num_frames > 0:
            return slot, False
        slot.spawn_id = int(spawn_id)
        slot.type = int(item_type)
        slot.frames = []
        return slot, True

    def live_items(self) -> Iterator[ItemSlot]:
        for index, slot in enumerate(self._slots):
            if self.is_live(index):
                yield slot

    def __len__(self) -> int:
        return sum(1 for _ in self.live_items())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ItemPool):
            return NotImplemented
        return self._slots == other._slots

    __hash__ = None  # type: ignore[assignment]


@dataclass(frozen=True, slots=True)
class PlatformFrame:
    frame: int
    left_height: float
    right_height: float


def _default_players() -> list[PlayerSlot]:
    return [PlayerSlot(index=i) for i in range(PLAYER_SLOT_COUNT)]


@dataclass(slots=True)
class Replay:
    start_time: str = ""
    format_version: FormatVersion = field(default_factory=FormatVersion)
    stage: int = 0
    timer: int = 0
    winner_id: int = -1
    end_type: int = 0
    lras_initiator: int = -1
    placements: tuple[int, ...] = (-1, -1, -1, -1)
    seed: int = 0
    is_teams: bool = False
    is_pal: bool = False
    frozen_stadium: bool = False
    scene_minor: int = 0
    scene_major: int = 0
    language: int = 0
    match_id: str = ""
    game_number: int = 0
    tiebreak_number: int = 0
    played_on: str = ""
    metadata_last_frame: int | None = None
    first_frame: int = FIRST_FRAME
    last_frame: int = FIRST_FRAME - 1
    players: list[PlayerSlot] = field(default_factory=_default_players)
    items: ItemPool = field(default_factory=ItemPool)
    platform_frames: list[PlatformFrame] = field(default_factory=list)
    complete: bool = False

    @property
    def frame_count(self) -> int:
        return max(0, int(self.last_frame) - int(self.first_frame) + 1)

    @property
    def slippi_version(self) -> str:
        return self.format_version.text

    def frame_index(self, frame: int) -> int:
        return int(frame) - int(self.first_frame)

    def active_players(self) -> Iterator[PlayerSlot]:
        """Yield every slot with frame storage, primaries and partners alike."""
        for slot in self.players:
            if slot.allocated:
                yield slot

    def ports(self) -> Iterator[PlayerSlot]:
        for slot in self.players[:PORT_COUNT]:
            if slot.active:
                yield slot
