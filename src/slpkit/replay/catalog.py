from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Final, Iterator, Mapping

from construct import Array, ConstructError, Int8ub, Int16ub, StreamError, Struct

from .errors import MissingCatalog
from .types import EventCode

_HEADER = Struct(
    "code" / Int8ub,
    "size" / Int8ub,
)

_ENTRY = Struct(
    "code" / Int8ub,
    "size" / Int16ub,
)

_ENTRY_SIZE: Final[int] = 3


def _table(count: int) -> Struct:
    return Struct("entries" / Array(count, _ENTRY))


@dataclass(frozen=True, slots=True)
class EventCatalog:
    """Payload length per event code, as declared by the capture itself.

    The payload length excludes the one-byte code. The catalog event's own entry
    (`0x35 -> N`) is included.
    """

    sizes: Mapping[int, int]

    @property
    def byte_length(self) -> int:
        return 1 + int(self.sizes[EventCode.EVENT_PAYLOADS])

    def payload_size(self, code: int) -> int | None:
        return self.sizes.get(int(code))

    def __contains__(self, code: object) -> bool:
        return code in self.sizes

    def __iter__(self) -> Iterator[int]:
        return iter(self.sizes)

    def __len__(self) -> int:
        return len(self.sizes)


def resolve_catalog(stream: bytes | memoryview) -> EventCatalog:
    view = memoryview(stream)
    try:
        header = _HEADER.parse(bytes(view[:2]))
    except StreamError as exc:
        raise MissingCatalog("event stream is too short to hold a catalog", offset=0) from exc

    code = int(header["code"])
    if code != EventCode.EVENT_PAYLOADS:
        raise MissingCatalog(f"event stream starts with 0x{code:02x}, expected the event payloads catalog", offset=0)

    size = int(header["size"])
    if size < 1 or (size - 1) % _ENTRY_SIZE != 0:
        raise MissingCatalog(f"catalog payload size {size} is not 1 + 3*n", offset=1)
    if len(view) < 1 + size:
        raise MissingCatalog(f"catalog declares {size} bytes but only {len(view) - 1} remain", offset=1)

    try:
        table = _table((size - 1) // _ENTRY_SIZE).parse(bytes(view[2 : 1 + size]))
    except ConstructError as exc:
        raise MissingCatalog(str(exc), offset=2) from exc

    sizes: dict[int, int] = {}
    for entry in table["entries"]:
        sizes[int(entry["code"])] = int(entry["size"])
    sizes[int(EventCode.EVENT_PAYLOADS)] = size
    return EventCatalog(sizes=MappingProxyType(sizes))
