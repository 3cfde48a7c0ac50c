from __future__ import annotations

from .builder import ReplayBuilder, resolve_winner
from .catalog import EventCatalog, resolve_catalog
from .codec import DecodeResult, frame_range, load_replay, load_replay_file
from .container import CaptureMetadata, Container, unwrap_container
from .errors import (
    DecodeError,
    MalformedContainer,
    MissingCatalog,
    TruncatedStream,
    UnknownEventKind,
    VersionPolicyViolation,
)
from .types import (
    FIRST_FRAME,
    ICE_CLIMBERS_EXT_ID,
    ITEM_POOL_SIZE,
    PLAYER_FRAME_FIELDS,
    EventCode,
    FormatVersion,
    ItemFrame,
    ItemPool,
    ItemSlot,
    PlatformFrame,
    PlayerFrame,
    PlayerSlot,
    PlayerType,
    Replay,
)
from .versioning import Field, FieldResolver, ReplayFormatVersionWarning, warn_on_unknown_format_version
from .walker import EventIndex, EventRecord, dispatch, scan_events

__all__ = [
    "FIRST_FRAME",
    "ICE_CLIMBERS_EXT_ID",
    "ITEM_POOL_SIZE",
    "PLAYER_FRAME_FIELDS",
    "CaptureMetadata",
    "Container",
    "DecodeError",
    "DecodeResult",
    "EventCatalog",
    "EventCode",
    "EventIndex",
    "EventRecord",
    "Field",
    "FieldResolver",
    "FormatVersion",
    "ItemFrame",
    "ItemPool",
    "ItemSlot",
    "MalformedContainer",
    "MissingCatalog",
    "PlatformFrame",
    "PlayerFrame",
    "PlayerSlot",
    "PlayerType",
    "Replay",
    "ReplayBuilder",
    "ReplayFormatVersionWarning",
    "TruncatedStream",
    "UnknownEventKind",
    "VersionPolicyViolation",
    "dispatch",
    "frame_range",
    "load_replay",
    "load_replay_file",
    "resolve_catalog",
    "resolve_winner",
    "scan_events",
    "unwrap_container",
    "warn_on_unknown_format_version",
]
