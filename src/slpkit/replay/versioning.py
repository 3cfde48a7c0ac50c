from __future__ import annotations

import warnings
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Final, Mapping

from .errors import VersionPolicyViolation
from .types import FormatVersion

OLDEST_FORMAT_VERSION: Final[FormatVersion] = FormatVersion(0, 1, 0)


class ReplayFormatVersionWarning(UserWarning):
    """Warnings related to the capture's recorded format version."""


class Field(Enum):
    # Game start.
    UCF_TOGGLES = "ucf_toggles"
    NAMETAGS = "nametags"
    PAL = "pal"
    FROZEN_STADIUM = "frozen_stadium"
    SCENE = "scene"
    DISPLAY_NAMES = "display_names"
    CONNECT_CODES = "connect_codes"
    SLIPPI_UIDS = "slippi_uids"
    LANGUAGE = "language"
    MATCH_INFO = "match_info"
    # Pre-frame update.
    RAW_STICK_X = "raw_stick_x"
    PRE_PERCENT = "pre_percent"
    RAW_STICK_Y = "raw_stick_y"
    # Post-frame update.
    ACTION_FRAME_COUNTER = "action_frame_counter"
    STATE_FLAGS = "state_flags"
    HITSTUN = "hitstun"
    AIRBORNE = "airborne"
    GROUND_ID = "ground_id"
    JUMPS = "jumps"
    L_CANCEL = "l_cancel"
    ALIVE = "alive"
    HURTBOX = "hurtbox"
    SELF_VELOCITY = "self_velocity"
    HITLAG = "hitlag"
    ANIMATION_INDEX = "animation_index"
    # Item update.
    ITEM_FLAGS = "item_flags"
    ITEM_OWNER = "item_owner"
    # Game end.
    LRAS = "lras"
    PLACEMENTS = "placements"
    # Frame start.
    FRAME_SEED = "frame_seed"
    SCENE_FRAME = "scene_frame"


@dataclass(frozen=True, slots=True)
class FieldPolicy:
    since: tuple[int, int, int]
    default: object


FIELD_POLICY: Final[Mapping[Field, FieldPolicy]] = MappingProxyType(
    {
        Field.UCF_TOGGLES: FieldPolicy((1, 0, 0), 0),
        Field.NAMETAGS: FieldPolicy((1, 3, 0), ""),
        Field.PAL: FieldPolicy((1, 5, 0), False),
        Field.FROZEN_STADIUM: FieldPolicy((2, 0, 0), False),
        Field.SCENE: FieldPolicy((3, 7, 0), 0),
        Field.DISPLAY_NAMES: FieldPolicy((3, 9, 0), ""),
        Field.CONNECT_CODES: FieldPolicy((3, 9, 0), ""),
        Field.SLIPPI_UIDS: FieldPolicy((3, 11, 0), ""),
        Field.LANGUAGE: FieldPolicy((3, 12, 0), 0),
        Field.MATCH_INFO: FieldPolicy((3, 14, 0), ""),
        Field.RAW_STICK_X: FieldPolicy((1, 2, 0), 0),
        Field.PRE_PERCENT: FieldPolicy((1, 4, 0), 0.0),
        Field.RAW_STICK_Y: FieldPolicy((3, 15, 0), 0),
        Field.ACTION_FRAME_COUNTER: FieldPolicy((0, 2, 0), 0.0),
        Field.STATE_FLAGS: FieldPolicy((2, 0, 0), 0),
        Field.HITSTUN: FieldPolicy((2, 0, 0), 0.0),
        Field.AIRBORNE: FieldPolicy((2, 0, 0), False),
        Field.GROUND_ID: FieldPolicy((2, 0, 0), 0),
        Field.JUMPS: FieldPolicy((2, 0, 0), 0),
        Field.L_CANCEL: FieldPolicy((2, 0, 0), 0),
        Field.ALIVE: FieldPolicy((2, 0, 0), False),
        Field.HURTBOX: FieldPolicy((2, 1, 0), 0),
        Field.SELF_VELOCITY: FieldPolicy((3, 5, 0), 0.0),
        Field.HITLAG: FieldPolicy((3, 8, 0), 0.0),
        Field.ANIMATION_INDEX: FieldPolicy((3, 11, 0), 0),
        Field.ITEM_FLAGS: FieldPolicy((3, 2, 0), 0),
        Field.ITEM_OWNER: FieldPolicy((3, 6, 0), -1),
        Field.LRAS: FieldPolicy((2, 0, 0), -1),
        Field.PLACEMENTS: FieldPolicy((3, 13, 0), -1),
        Field.FRAME_SEED: FieldPolicy((2, 2, 0), 0),
        Field.SCENE_FRAME: FieldPolicy((3, 10, 0), 0),
    }
)

NEWEST_KNOWN_FORMAT_VERSION: Final[FormatVersion] = FormatVersion(
    *max(policy.since for policy in FIELD_POLICY.values())
)


def _policy(field: Field) -> FieldPolicy:
    try:
        return FIELD_POLICY[field]
    except (KeyError, TypeError):
        raise VersionPolicyViolation(f"no version policy for field {field!r}") from None


class FieldResolver:
    """Answers which revision-gated fields a capture's payloads carry.

    The answer depends only on the field and the capture's format version, never on
    payload bytes, so two captures that differ only in declared version decode the
    missing fields to the same defaults.
    """

    __slots__ = ("_version", "_present")

    def __init__(self, version: FormatVersion) -> None:
        if version.triple < OLDEST_FORMAT_VERSION.triple:
            raise VersionPolicyViolation(
                f"format version {version.text} predates the oldest known revision {OLDEST_FORMAT_VERSION.text}"
            )
        self._version = version
        self._present = frozenset(field for field, policy in FIELD_POLICY.items() if version.triple >= policy.since)

    @property
    def version(self) -> FormatVersion:
        return self._version

    def present(self, field: Field) -> bool:
        _policy(field)
        return field in self._present

    def default(self, field: Field) -> object:
        return _policy(field).default


def warn_on_unknown_format_version(version: FormatVersion) -> bool:
    """Warn if `version` is newer than every revision the policy table knows about.

    Returns True if a warning was emitted. Newer captures still decode; fields the
    table does not know are ignored.
    """

    if version.triple <= NEWEST_KNOWN_FORMAT_VERSION.triple:
        return False
    warnings.warn(
        f"Capture format {version.text} is newer than the newest known revision "
        f"{NEWEST_KNOWN_FORMAT_VERSION.text}; unknown fields are ignored.",
        category=ReplayFormatVersionWarning,
        stacklevel=2,
    )
    return True
