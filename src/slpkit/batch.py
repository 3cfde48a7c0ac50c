from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, replace
from pathlib import Path
import sys
from typing import Callable, Iterable

from .analysis import analyze, write_analysis
from .config import DecodeConfig
from .export.columnar import write_parquet
from .export.text import FrameMode, write_json
from .replay.codec import DecodeResult, load_replay_file
from .replay.errors import DecodeError

CAPTURE_SUFFIX = ".slp"


class OutputPathError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class OutputPlan:
    """Where one decode's outputs go. `None` skips that output."""

    json_path: Path | str | None = None
    analysis_path: Path | None = None
    parquet_dir: Path | None = None
    frames: FrameMode = FrameMode.NONE

    @property
    def empty(self) -> bool:
        return self.json_path is None and self.analysis_path is None and self.parquet_dir is None


@dataclass(frozen=True, slots=True)
class BatchPlan:
    """Output directories for directory mode; each file gets its own names inside them."""

    json_dir: Path | None = None
    analysis_dir: Path | None = None
    parquet_dir: Path | None = None
    frames: FrameMode = FrameMode.NONE

    @property
    def empty(self) -> bool:
        return self.json_dir is None and self.analysis_dir is None and self.parquet_dir is None

    def for_file(self, path: Path) -> OutputPlan:
        path = Path(path)
        return OutputPlan(
            json_path=None if self.json_dir is None else self.json_dir / f"{path.name}.json",
            analysis_path=None if self.analysis_dir is None else self.analysis_dir / f"{path.stem}-analysis.json",
            parquet_dir=None if self.parquet_dir is None else self.parquet_dir / path.stem,
            frames=self.frames,
        )


@dataclass(frozen=True, slots=True)
class FileOutcome:
    path: Path
    complete: bool = False
    error: str = ""
    error_kind: str = ""
    fatal: bool = False
    outputs: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.fatal and not self.error


def prepare_output_dir(path: Path | str) -> Path:
    """Create `path` as a directory; an existing non-directory is an error."""

    path = Path(path)
    if path.exists() and not path.is_dir():
        raise OutputPathError(f"output path exists and is not a directory: {path}")
    path.mkdir(parents=True, exist_ok=True)
    return path


def prepare_batch_plan(plan: BatchPlan) -> BatchPlan:
    return replace(
        plan,
        json_dir=None if plan.json_dir is None else prepare_output_dir(plan.json_dir),
        analysis_dir=None if plan.analysis_dir is None else prepare_output_dir(plan.analysis_dir),
        parquet_dir=None if plan.parquet_dir is None else prepare_output_dir(plan.parquet_dir),
    )


def collect_inputs(input_dir: Path | str) -> list[Path]:
    input_dir = Path(input_dir)
    return sorted(
        path for path in input_dir.iterdir() if path.is_file() and path.suffix.lower() == CAPTURE_SUFFIX
    )


def write_outputs(result: DecodeResult, source: Path, plan: OutputPlan) -> tuple[str, ...]:
    replay = result.replay
    written: list[str] = []
    if plan.json_path is not None:
        write_json(replay, plan.json_path, slp_file_name=source.name, frames=plan.frames)
        written.append(str(plan.json_path))
    if plan.analysis_path is not None:
        write_analysis(analyze(replay), plan.analysis_path)
        written.append(str(plan.analysis_path))
    if plan.parquet_dir is not None:
        written.extend(str(path) for path in write_parquet(replay, plan.parquet_dir))
    return tuple(written)


def decode_to_outputs(path: Path, plan: OutputPlan, config: DecodeConfig) -> FileOutcome:
    """Decode one capture and write its outputs; errors are reported, not raised."""

    path = Path(path)
    try:
        result = load_replay_file(path, config=config)
        outputs = write_outputs(result, path, plan)
    except DecodeError as exc:
        return FileOutcome(path=path, error=str(exc), error_kind=type(exc).__name__, fatal=True)
    except OSError as exc:
        return FileOutcome(path=path, error=str(exc), error_kind=type(exc).__name__, fatal=True)
    if result.error is not None:
        return FileOutcome(
            path=path,
            complete=False,
            error=str(result.error),
            error_kind=type(result.error).__name__,
            outputs=outputs,
        )
    return FileOutcome(path=path, complete=result.replay.complete, outputs=outputs)


def _decode_task(path: Path, plan: OutputPlan, debug_level: int, item_pool_size: int | None) -> FileOutcome:
    # Trace sinks do not cross process boundaries; workers trace to their own stderr.
    config = DecodeConfig(
        debug_level=debug_level,
        item_pool_size=item_pool_size,
        trace_sink=sys.stderr if debug_level else None,
    )
    return decode_to_outputs(path, plan, config)


def run_batch(
    paths: Iterable[Path],
    plan: BatchPlan,
    *,
    config: DecodeConfig | None = None,
    workers: int = 1,
    on_outcome: Callable[[FileOutcome], None] | None = None,
) -> list[FileOutcome]:
    """Decode every capture in `paths` independently.

    A failing file never stops the batch. Outcomes are returned in input order;
    `on_outcome` sees them as they complete.
    """

    config = DecodeConfig.from_env() if config is None else config
    paths = [Path(path) for path in paths]
    outcomes: dict[Path, FileOutcome] = {}
    if int(workers) <= 1 or len(paths) <= 1:
        for path in paths:
            outcome = decode_to_outputs(path, plan.for_file(path), config)
            outcomes[path] = outcome
            if on_outcome is not None:
                on_outcome(outcome)
    else:
        with ProcessPoolExecutor(max_workers=int(workers)) as executor:
            futures = {
                executor.submit(
                    _decode_task,
                    path,
                    plan.for_file(path),
                    config.debug_level,
                    config.item_pool_size,
                ): path
                for path in paths
            }
            for future in as_completed(futures):
                path = futures[future]
                try:
                    outcome = future.result()
                except Exception as exc:  # worker crashed or failed to pickle
                    outcome = FileOutcome(path=path, error=str(exc), error_kind=type(exc).__name__, fatal=True)
                outcomes[path] = outcome
                if on_outcome is not None:
                    on_outcome(outcome)
    return [outcomes[path] for path in paths]
