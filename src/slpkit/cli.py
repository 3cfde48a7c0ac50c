from __future__ import annotations

from dataclasses import replace
from pathlib import Path
import sys

import typer

from .analysis import analyze, write_analysis
from .batch import (
    BatchPlan,
    FileOutcome,
    OutputPathError,
    OutputPlan,
    collect_inputs,
    prepare_batch_plan,
    prepare_output_dir,
    run_batch,
    write_outputs,
)
from .config import DecodeConfig
from .export.text import STDOUT_PATH, FrameMode
from .replay.codec import load_replay_file
from .replay.errors import DecodeError

EXIT_PARTIAL = 1
EXIT_FATAL = 2

app = typer.Typer(add_completion=False)


def _config(debug: int | None) -> DecodeConfig:
    overrides: dict[str, object] = {}
    if debug is not None:
        overrides["debug_level"] = max(0, int(debug))
    config = DecodeConfig.from_env(**overrides)
    if config.debug_level > 0:
        config = replace(config, trace_sink=sys.stderr)
    return config


def _frame_mode(frames: bool, full: bool) -> FrameMode:
    if not frames:
        return FrameMode.NONE
    return FrameMode.FULL if full else FrameMode.DELTA


def _fail(message: str) -> typer.Exit:
    typer.echo(message, err=True)
    return typer.Exit(code=EXIT_FATAL)


def _check_file_output(path: Path | None, flag: str) -> None:
    if path is None or str(path) == STDOUT_PATH:
        return
    if path.is_dir():
        raise _fail(f"{flag} output {path} is a directory; expected a file path")


def _report(outcome: FileOutcome) -> None:
    if outcome.fatal:
        typer.echo(f"failed {outcome.path}: {outcome.error_kind}: {outcome.error}", err=True)
    elif outcome.error:
        typer.echo(f"partial {outcome.path}: {outcome.error_kind}: {outcome.error}", err=True)
    else:
        typer.echo(f"ok {outcome.path}", err=True)


def _decode_directory(
    input_dir: Path,
    plan: BatchPlan,
    config: DecodeConfig,
    *,
    workers: int,
    strict: bool,
) -> None:
    if plan.empty:
        raise _fail("no output directories specified with -j, -a or -p")
    try:
        plan = prepare_batch_plan(plan)
    except OutputPathError as exc:
        raise _fail(str(exc)) from exc

    paths = collect_inputs(input_dir)
    if not paths:
        typer.echo(f"no .slp files under {input_dir}", err=True)
        return
    outcomes = run_batch(paths, plan, config=config, workers=workers, on_outcome=_report)
    fatal = sum(1 for outcome in outcomes if outcome.fatal)
    partial = sum(1 for outcome in outcomes if not outcome.fatal and outcome.error)
    typer.echo(f"decoded {len(outcomes) - fatal}/{len(outcomes)} files ({partial} partial, {fatal} failed)", err=True)
    if fatal:
        raise typer.Exit(code=EXIT_FATAL)
    if partial and strict:
        raise typer.Exit(code=EXIT_PARTIAL)


def _decode_file(
    path: Path,
    plan: OutputPlan,
    analysis_path: Path | None,
    config: DecodeConfig,
    *,
    strict: bool,
) -> None:
    if plan.empty and analysis_path is None:
        raise _fail("no outputs specified with -j, -a or -p")
    if plan.parquet_dir is not None:
        try:
            prepare_output_dir(plan.parquet_dir)
        except OutputPathError as exc:
            raise _fail(str(exc)) from exc

    try:
        result = load_replay_file(path, config=config)
    except DecodeError as exc:
        raise _fail(f"could not decode {path}: {type(exc).__name__}: {exc}") from exc
    except OSError as exc:
        raise _fail(f"could not read {path}: {exc}") from exc

    try:
        write_outputs(result, path, plan)
        if analysis_path is not None:
            analysis = analyze(result.replay)
            if str(analysis_path) == STDOUT_PATH:
                sys.stdout.buffer.write(analysis.as_json())
                sys.stdout.buffer.flush()
            else:
                write_analysis(analysis, analysis_path)
    except OSError as exc:
        raise _fail(f"could not write outputs for {path}: {exc}") from exc

    if result.error is not None:
        typer.echo(f"warning: partial decode of {path}: {type(result.error).__name__}: {result.error}", err=True)
        if strict:
            raise typer.Exit(code=EXIT_PARTIAL)


@app.command("decode")
def cmd_decode(
    input_path: Path = typer.Option(..., "-i", "--input", help="capture file (.slp) or a directory of captures"),
    json_out: Path | None = typer.Option(
        None, "-j", "--json", help="JSON output file (\"-\" for stdout); a directory in directory mode"
    ),
    analysis_out: Path | None = typer.Option(
        None, "-a", "--analysis", help="analysis JSON output file (\"-\" for stdout); a directory in directory mode"
    ),
    parquet_out: Path | None = typer.Option(None, "-p", "--parquet", help="Parquet output directory"),
    full: bool = typer.Option(False, "-f", "--full", help="write full frame records instead of frame deltas"),
    frames: bool = typer.Option(True, "--frames/--no-frames", help="include per-frame records in JSON output"),
    debug: int | None = typer.Option(None, "-d", "--debug", min=0, help="trace level (0-3), traces go to stderr"),
    strict: bool = typer.Option(False, "--strict/--lenient", help="exit 1 when a capture decodes only partially"),
    workers: int = typer.Option(1, "--workers", min=1, help="decode processes in directory mode"),
) -> None:
    """Decode a Slippi capture (or a directory of them) into JSON, analysis and Parquet outputs."""

    config = _config(debug)
    frame_mode = _frame_mode(frames, full)

    if input_path.is_dir():
        plan = BatchPlan(
            json_dir=json_out,
            analysis_dir=analysis_out,
            parquet_dir=parquet_out,
            frames=frame_mode,
        )
        _decode_directory(input_path, plan, config, workers=workers, strict=strict)
        return

    if not input_path.is_file():
        raise _fail(f"input not found: {input_path}")
    _check_file_output(json_out, "-j")
    _check_file_output(analysis_out, "-a")
    plan = OutputPlan(
        json_path=json_out,
        parquet_dir=parquet_out,
        frames=frame_mode,
    )
    _decode_file(input_path, plan, analysis_out, config, strict=strict)


@app.command("info")
def cmd_info(
    input_path: Path = typer.Argument(..., help="capture file (.slp)"),
    debug: int | None = typer.Option(None, "-d", "--debug", min=0, help="trace level (0-3), traces go to stderr"),
) -> None:
    """Print a short summary of a capture."""

    config = _config(debug)
    try:
        result = load_replay_file(input_path, config=config)
    except DecodeError as exc:
        raise _fail(f"could not decode {input_path}: {type(exc).__name__}: {exc}") from exc
    except OSError as exc:
        raise _fail(f"could not read {input_path}: {exc}") from exc

    replay = result.replay
    typer.echo(f"match_id={replay.start_time}")
    typer.echo(f"slippi_version={replay.slippi_version}")
    typer.echo(f"stage={replay.stage}")
    typer.echo(f"frames={replay.frame_count} first={replay.first_frame} last={replay.last_frame}")
    typer.echo(f"winner={replay.winner_id} end_type={replay.end_type} complete={str(replay.complete).lower()}")
    for slot in replay.ports():
        typer.echo(
            f"port={slot.port + 1} character={slot.character} type={int(slot.player_type)} "
            f"tag={slot.tag!r} code={slot.tag_code!r}"
        )
    typer.echo(f"items={len(replay.items)} platform_frames={len(replay.platform_frames)}")
    if result.error is not None:
        typer.echo(f"error={type(result.error).__name__}: {result.error}")


def main(argv: list[str] | None = None) -> None:
    app(prog_name="slpkit", args=argv)


if __name__ == "__main__":
    main()
