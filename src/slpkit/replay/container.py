from __future__ import annotations

from dataclasses import dataclass, field
import io
from typing import Final

from construct import Bytes, Const, ConstError, ConstructError, Float32b, Float64b, Int8sb, Int8ub, Int16sb
from construct import Int32sb, Int32ub, Int64sb, StreamError, Struct

from ..debug_log import NULL_TRACE, DecodeTrace
from .errors import MalformedContainer

RAW_PREFIX: Final[bytes] = b"{U\x03raw[$U#l"
RAW_OFFSET: Final[int] = len(RAW_PREFIX) + 4
METADATA_MARKER: Final[bytes] = b"U\x08metadata"

_ENVELOPE = Struct(
    "prefix" / Const(RAW_PREFIX),
    "raw_length" / Int32ub,
)


class MetadataError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class CaptureMetadata:
    start_at: str = ""
    last_frame: int | None = None
    played_on: str = ""
    netplay_names: tuple[str, ...] = ("", "", "", "")
    connect_codes: tuple[str, ...] = ("", "", "", "")
    raw: dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Container:
    stream: memoryview
    declared_length: int
    metadata: CaptureMetadata = field(default_factory=CaptureMetadata)

    @property
    def unsized(self) -> bool:
        return int(self.declared_length) == 0


# UBJSON (draft 12) value reader, just enough for the metadata object Slippi writes.

_SCALARS = {
    b"i": Int8sb,
    b"U": Int8ub,
    b"I": Int16sb,
    b"l": Int32sb,
    b"L": Int64sb,
    b"d": Float32b,
    b"D": Float64b,
}

_MAX_DEPTH: Final[int] = 32


def _read_marker(stream: io.BytesIO) -> bytes:
    marker = stream.read(1)
    if not marker:
        raise MetadataError("unexpected EOF")
    return marker


def _read_length(stream: io.BytesIO) -> int:
    marker = _read_marker(stream)
    if marker not in _SCALARS or marker in (b"d", b"D"):
        raise MetadataError(f"invalid length marker {marker!r}")
    length = int(_SCALARS[marker].parse_stream(stream))
    if length < 0:
        raise MetadataError(f"negative length {length}")
    return length


def _read_text(stream: io.BytesIO) -> str:
    length = _read_length(stream)
    return bytes(Bytes(length).parse_stream(stream)).decode("utf-8", errors="replace")


def _read_typed(stream: io.BytesIO, marker: bytes, depth: int) -> object:
    if marker in _SCALARS:
        return _SCALARS[marker].parse_stream(stream)
    if marker in (b"S", b"H"):
        return _read_text(stream)
    if marker == b"C":
        return bytes(Bytes(1).parse_stream(stream)).decode("latin-1")
    if marker == b"T":
        return True
    if marker == b"F":
        return False
    if marker == b"Z":
        return None
    if marker == b"{":
        return _read_object(stream, depth + 1)
    if marker == b"[":
        return _read_array(stream, depth + 1)
    raise MetadataError(f"unsupported UBJSON marker {marker!r}")


def _read_value(stream: io.BytesIO, depth: int = 0) -> object:
    marker = _read_marker(stream)
    while marker == b"N":
        marker = _read_marker(stream)
    return _read_typed(stream, marker, depth)


def _read_container_header(stream: io.BytesIO) -> tuple[bytes | None, int | None]:
    """Read the optional `$type` / `#count` header of an optimized container."""

    start = stream.tell()
    marker = stream.read(1)
    value_type: bytes | None = None
    if marker == b"$":
        value_type = _read_marker(stream)
        marker = stream.read(1)
        if marker != b"#":
            raise MetadataError("typed container without a count")
    if marker == b"#":
        return value_type, _read_length(stream)
    stream.seek(start)
    return None, None


def _read_object(stream: io.BytesIO, depth: int) -> dict[str, object]:
    if depth > _MAX_DEPTH:
        raise MetadataError("metadata nested too deeply")
    value_type, count = _read_container_header(stream)
    out: dict[str, object] = {}
    if count is not None:
        for _ in range(count):
            key = _read_text(stream)
            out[key] = _read_typed(stream, value_type, depth) if value_type else _read_value(stream, depth)
        return out
    while True:
        start = stream.tell()
        if _read_marker(stream) == b"}":
            return out
        stream.seek(start)
        key = _read_text(stream)
        out[key] = _read_value(stream, depth)


def _read_array(stream: io.BytesIO, depth: int) -> list[object]:
    if depth > _MAX_DEPTH:
        raise MetadataError("metadata nested too deeply")
    value_type, count = _read_container_header(stream)
    if count is not None:
        return [
            _read_typed(stream, value_type, depth) if value_type else _read_value(stream, depth) for _ in range(count)
        ]
    out: list[object] = []
    while True:
        start = stream.tell()
        marker = _read_marker(stream)
        if marker == b"]":
            return out
        if marker == b"N":
            continue
        stream.seek(start)
        out.append(_read_value(stream, depth))


def parse_ubjson(data: bytes) -> object:
    stream = io.BytesIO(bytes(data))
    try:
        return _read_value(stream)
    except StreamError as exc:
        raise MetadataError("unexpected EOF") from exc
    except ConstructError as exc:
        raise MetadataError(str(exc)) from exc


def _player_names(players: object, key: str) -> tuple[str, ...]:
    names = ["", "", "", ""]
    if not isinstance(players, dict):
        return tuple(names)
    for port_key, entry in players.items():
        try:
            port = int(port_key)
        except ValueError:
            continue
        if not 0 <= port < 4 or not isinstance(entry, dict):
            continue
        player_names = entry.get("names")
        if isinstance(player_names, dict):
            value = player_names.get(key)
            if isinstance(value, str):
                names[port] = value
    return tuple(names)


def metadata_from_object(obj: object) -> CaptureMetadata:
    if not isinstance(obj, dict):
        raise MetadataError(f"metadata is {type(obj).__name__}, expected an object")
    last_frame = obj.get("lastFrame")
    start_at = obj.get("startAt")
    played_on = obj.get("playedOn")
    players = obj.get("players")
    return CaptureMetadata(
        start_at=start_at if isinstance(start_at, str) else "",
        last_frame=int(last_frame) if isinstance(last_frame, int) and not isinstance(last_frame, bool) else None,
        played_on=played_on if isinstance(played_on, str) else "",
        netplay_names=_player_names(players, "netplay"),
        connect_codes=_player_names(players, "code"),
        raw=obj,
    )


def read_metadata(data: bytes | memoryview, offset: int, *, trace: DecodeTrace = NULL_TRACE) -> CaptureMetadata:
    """Read the metadata object following the raw array, if any.

    Metadata never fails a decode: problems are traced and an empty
    `CaptureMetadata` is returned.
    """

    view = memoryview(data)
    if bytes(view[offset : offset + len(METADATA_MARKER)]) != METADATA_MARKER:
        trace.detail("metadata_missing", offset=offset)
        return CaptureMetadata()
    try:
        obj = parse_ubjson(bytes(view[offset + len(METADATA_MARKER) :]))
        metadata = metadata_from_object(obj)
    except MetadataError as exc:
        trace.info("metadata_ignored", offset=offset, error=exc)
        return CaptureMetadata()
    trace.detail("metadata", start_at=metadata.start_at, last_frame=metadata.last_frame)
    return metadata


def unwrap_container(data: bytes | bytearray | memoryview, *, trace: DecodeTrace = NULL_TRACE) -> Container:
    """Locate the raw event stream inside a capture's UBJSON envelope."""

    view = memoryview(data).cast("B") if isinstance(data, memoryview) else memoryview(data)
    if len(view) < RAW_OFFSET:
        raise MalformedContainer(f"capture is {len(view)} bytes, shorter than the {RAW_OFFSET}-byte envelope")
    try:
        envelope = _ENVELOPE.parse(bytes(view[:RAW_OFFSET]))
    except ConstError as exc:
        raise MalformedContainer("missing raw envelope prefix", offset=0) from exc
    except ConstructError as exc:
        raise MalformedContainer(str(exc), offset=0) from exc

    declared = int(envelope["raw_length"])
    if declared == 0:
        marker = bytes(view).rfind(b"U\x08metadata{", RAW_OFFSET)
        end = marker if marker >= 0 else len(view)
        trace.info("container_unsized", stream_length=end - RAW_OFFSET)
    else:
        end = RAW_OFFSET + declared
        if end > len(view):
            raise MalformedContainer(
                f"declared raw length {declared} exceeds the {len(view) - RAW_OFFSET} available bytes",
                offset=RAW_OFFSET,
            )

    metadata = read_metadata(view, end, trace=trace)
    return Container(stream=view[RAW_OFFSET:end], declared_length=declared, metadata=metadata)
