"""Command line interface for the dmmlog package."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer

from .fs9922.config import OUTPUT_FORMATS, TIME_FORMATS, load_config
from .fs9922.errors import EndOfStream, ReadError
from .fs9922.frames import FrameSynchronizer
from .fs9922.render import format_frame, render
from .fs9922.runner import build_sampler, open_source

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help="Read FS9922-DMM4 multimeters (e.g. Voltcraft VC-830) over RS-232.",
)

logger = logging.getLogger(__name__)


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Python logging level for diagnostics."),
) -> None:
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level '{log_level}'", param_hint="--log-level")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@app.command()
def read(
    device: str = typer.Argument(..., help="Serial device, capture file, or '-' for stdin."),
    output_format: Optional[str] = typer.Option(
        None, "--format", "-f", help=f"Output format: {'|'.join(OUTPUT_FORMATS)} (default human)."
    ),
    time_format: Optional[str] = typer.Option(
        None, "--time", "-t", help=f"Timestamp format: {'|'.join(TIME_FORMATS)} (default none)."
    ),
    count: Optional[int] = typer.Option(None, "--count", "-c", min=0, help="Number of samples (default endless)."),
    idle_timeout: Optional[float] = typer.Option(
        None, "--idle-timeout", help="Stream silence (seconds) that marks a frame boundary."
    ),
    legacy_kilo: bool = typer.Option(
        False, "--legacy-kilo", help="Scale the 'k' prefix by 1e6 as older tooling did."
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", exists=True, dir_okay=False, help="JSON configuration file."
    ),
    override: Optional[List[str]] = typer.Option(
        None, "--set", help="Override config keys, e.g. --set serial.baudrate=2400"
    ),
) -> None:
    """Decode measurements and print one record per sample."""

    overrides = list(override or [])
    if output_format is not None:
        overrides.append(f"output.format={output_format}")
    if time_format is not None:
        overrides.append(f"output.time_format={time_format}")
    if count is not None:
        overrides.append(f"count={count}")
    if idle_timeout is not None:
        overrides.append(f"sync.idle_timeout={idle_timeout}")
    if legacy_kilo:
        overrides.append("decoder.legacy_kilo_multiplier=true")
    try:
        cfg = load_config(config_path, overrides)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    def emit(record) -> None:
        typer.echo(render(record, cfg.output.format, cfg.output.time_format))

    try:
        source = open_source(device, cfg)
    except ReadError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    sampler = build_sampler(source, cfg, emit)
    try:
        sampler.run()
    except ReadError as exc:
        typer.echo(f"Error: read failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    except KeyboardInterrupt:
        logger.info("Stopping (Ctrl+C)")
    finally:
        source.close()


@app.command()
def inspect(
    device: str = typer.Argument(..., help="Serial device, capture file, or '-' for stdin."),
    count: int = typer.Option(1, "--count", "-c", min=1, help="Number of frames to dump."),
    idle_timeout: float = typer.Option(0.1, "--idle-timeout", help="Frame boundary silence (seconds)."),
) -> None:
    """Dump raw frames bit by bit without decoding them."""

    try:
        cfg = load_config(None, [f"sync.idle_timeout={idle_timeout}"])
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--idle-timeout") from exc
    try:
        source = open_source(device, cfg)
    except ReadError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    synchronizer = FrameSynchronizer(source, idle_timeout=cfg.sync.idle_timeout)
    try:
        for _ in range(count):
            frame = synchronizer.next_frame()
            typer.echo(format_frame(frame))
            typer.echo("")
    except EndOfStream:
        pass
    except ReadError as exc:
        typer.echo(f"Error: read failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        source.close()


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
