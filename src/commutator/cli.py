"""Command line interface for the commutator package."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

import typer

from .demo import run_demo
from .host.errors import ConfigurationError
from .host.runner import app as host_app
from .replay import export_replay, run_replay

app = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]})
app.add_typer(host_app, name="host")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (DEBUG, INFO, WARNING...)."),
) -> None:
    """Tether commutator control utilities."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def replay(
    input_path: Path = typer.Option(..., "--in", help="Recorded orientation CSV (w,x,y,z[,ts_ms])."),
    axis: Tuple[float, float, float] = typer.Option((0.0, 0.0, 1.0), "--axis", help="Rotation axis x y z."),
    out_dir: Optional[Path] = typer.Option(None, "--out", help="Write turns.csv and commands.txt here."),
) -> None:
    """Compute the turn commands a recording would have produced."""

    try:
        result = run_replay(input_path, axis)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc), param_hint="--axis") from exc
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(str(exc), param_hint="--in") from exc

    if out_dir is not None:
        export_replay(result, out_dir)
        typer.echo(f"Replay written to {out_dir}")
    else:
        for line in result.commands:
            typer.echo(line)
    typer.echo(f"samples={len(result.recording)} commands={len(result.commands)} total_turns={result.total_turns:.4f}")


@app.command()
def demo(
    out_dir: Path = typer.Option(Path("demo_output"), "--out", help="Target directory for the demo replay."),
) -> None:
    """Generate a synthetic recording and replay it."""

    result = run_demo(out_dir)
    typer.echo(f"Demo recording and replay written to {out_dir} (total_turns={result.total_turns:.4f})")


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
