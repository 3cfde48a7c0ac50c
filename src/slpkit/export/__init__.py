from __future__ import annotations

from .columnar import FRAMES_SCHEMA, ITEMS_SCHEMA, PLATFORMS_SCHEMA, write_parquet
from .text import FrameMode, build_document, settings_jsonl, write_json, write_jsonl

__all__ = [
    "FRAMES_SCHEMA",
    "ITEMS_SCHEMA",
    "PLATFORMS_SCHEMA",
    "FrameMode",
    "build_document",
    "settings_jsonl",
    "write_json",
    "write_jsonl",
    "write_parquet",
]
