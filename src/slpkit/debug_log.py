from __future__ import annotations

import datetime as dt
from typing import Final, TextIO

TRACE_OFF: Final[int] = 0
TRACE_INFO: Final[int] = 1
TRACE_DETAIL: Final[int] = 2
TRACE_EVENTS: Final[int] = 3


def _format_value(value: object) -> str:
    text = str(value)
    return text.replace("\n", "\\n")


def _format_fields(fields: dict[str, object]) -> str:
    parts: list[str] = []
    for key in sorted(fields):
        parts.append(f"{key}={_format_value(fields[key])}")
    return " ".join(parts)


def format_trace_line(event: str, fields: dict[str, object], *, timestamp: str | None = None) -> str:
    line = f"event={str(event).strip()}"
    if timestamp:
        line = f"{timestamp} {line}"
    payload = _format_fields(fields)
    if payload:
        line += f" {payload}"
    return line + "\n"


class DecodeTrace:
    """Structured `key=value` trace for one decode.

    Each decode owns its own trace; there is no process-wide log state. A line is
    written when its level is at or below the configured debug level.
    """

    __slots__ = ("level", "_sink", "_context", "_timestamps")

    def __init__(
        self,
        level: int = TRACE_OFF,
        sink: TextIO | None = None,
        *,
        timestamps: bool = True,
        **context: object,
    ) -> None:
        self.level = max(TRACE_OFF, int(level))
        self._sink = sink
        self._context = dict(context)
        self._timestamps = bool(timestamps)

    def enabled(self, level: int) -> bool:
        return self._sink is not None and int(level) <= self.level

    def bind(self, **context: object) -> DecodeTrace:
        merged = {**self._context, **context}
        return DecodeTrace(self.level, self._sink, timestamps=self._timestamps, **merged)

    def log(self, level: int, event: str, **fields: object) -> None:
        sink = self._sink
        if sink is None or int(level) > self.level:
            return
        timestamp = None
        if self._timestamps:
            timestamp = dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds")
        sink.write(format_trace_line(event, {**self._context, **fields}, timestamp=timestamp))

    def info(self, event: str, **fields: object) -> None:
        self.log(TRACE_INFO, event, **fields)

    def detail(self, event: str, **fields: object) -> None:
        self.log(TRACE_DETAIL, event, **fields)

    def event(self, event: str, **fields: object) -> None:
        self.log(TRACE_EVENTS, event, **fields)


NULL_TRACE: Final[DecodeTrace] = DecodeTrace()

__all__ = [
    "NULL_TRACE",
    "TRACE_DETAIL",
    "TRACE_EVENTS",
    "TRACE_INFO",
    "TRACE_OFF",
    "DecodeTrace",
    "format_trace_line",
]
