from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, TextIO

from .debug_log import DecodeTrace

DEBUG_ENV = "SLPKIT_DEBUG"
ITEM_POOL_SIZE_ENV = "SLPKIT_ITEM_POOL_SIZE"


def _env_int(env: Mapping[str, str], name: str, *, minimum: int) -> int | None:
    raw = env.get(name)
    if raw is None:
        return None
    try:
        return max(minimum, int(raw))
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class DecodeConfig:
    """Decode-scoped settings. `item_pool_size=None` keeps the model's default pool size."""

    debug_level: int = 0
    item_pool_size: int | None = None
    trace_sink: TextIO | None = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: object) -> DecodeConfig:
        env = os.environ if env is None else env
        config = cls(
            debug_level=_env_int(env, DEBUG_ENV, minimum=0) or 0,
            item_pool_size=_env_int(env, ITEM_POOL_SIZE_ENV, minimum=1),
        )
        if overrides:
            config = replace(config, **overrides)  # type: ignore[arg-type]
        return config

    def trace(self, **context: object) -> DecodeTrace:
        return DecodeTrace(self.debug_level, self.trace_sink, **context)
