"""CLI entry point for the street explorer."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console

from street_explorer.core.agent import ExplorationAgent
from street_explorer.core.runner import ExplorationRunner
from street_explorer.display import StepPrinter, snapshot_table
from street_explorer.metrics.run_log import RunLogWriter, read_run_log, summarize_run_log
from street_explorer.modules.stubs import (
    InMemoryNodeSource,
    ScriptedVisionService,
    StubObservationCapture,
    build_grid_world,
    dump_world,
    load_world,
)
from street_explorer.schemas import AgentSnapshot, StepRecord
from street_explorer.utils.config import ExplorerConfig

app = typer.Typer(
    name="street-explorer",
    help="Coverage-driven exploration of street-level panorama graphs",
    add_completion=False,
)

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_snapshot(path: Path) -> AgentSnapshot:
    try:
        return AgentSnapshot.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        typer.echo(f"Error: cannot read snapshot {path}: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def run(
    steps: int = typer.Option(
        50,
        "--steps",
        "-n",
        help="Number of steps to run",
    ),
    world_path: Optional[Path] = typer.Option(
        None,
        "--world",
        "-w",
        help="JSON world file (default: generated grid)",
    ),
    rows: int = typer.Option(8, "--rows", help="Rows of the generated grid"),
    cols: int = typer.Option(8, "--cols", help="Columns of the generated grid"),
    spacing: float = typer.Option(20.0, "--spacing", help="Grid spacing in metres"),
    start: Optional[str] = typer.Option(
        None,
        "--start",
        help="Start node id (default: first node of the world)",
    ),
    delay: Optional[float] = typer.Option(
        None,
        "--delay",
        "-d",
        help="Seconds between steps (default from EXPLORER_STEP_DELAY_S or 1.0)",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        "-s",
        help="Random seed for the scripted vision service",
    ),
    output_dir: Path = typer.Option(
        Path("runs"),
        "--output",
        "-o",
        help="Output directory for run logs",
    ),
    save: Optional[Path] = typer.Option(
        None,
        "--save",
        help="Write a resumable snapshot here when the run ends",
    ),
    resume: Optional[Path] = typer.Option(
        None,
        "--resume",
        help="Resume from a snapshot written by --save",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress per-step output",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Explore a world with the scripted vision service.

    Writes one JSONL record per step to runs/<timestamp>/run.jsonl.

    Examples:

        # Explore a generated 10x10 grid without pauses
        street-explorer run --rows 10 --cols 10 --delay 0 -n 200

        # Save and later resume a run
        street-explorer run -n 100 --save runs/snap.json
        street-explorer run -n 100 --resume runs/snap.json
    """
    setup_logging(verbose)

    config = ExplorerConfig.from_env()
    if delay is not None:
        config.step_delay_s = delay
    try:
        config.validate()
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if world_path is not None:
        try:
            world, aliases = load_world(world_path)
        except (OSError, ValueError, KeyError) as e:
            typer.echo(f"Error: cannot load world {world_path}: {e}", err=True)
            raise typer.Exit(1)
    else:
        world, aliases = build_grid_world(rows, cols, spacing), {}
    if not world:
        typer.echo("Error: world has no nodes", err=True)
        raise typer.Exit(1)

    snapshot = _load_snapshot(resume) if resume is not None else None

    run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = output_dir / run_id
    log_path = run_dir / "run.jsonl"

    source = InMemoryNodeSource(world, aliases)
    agent = ExplorationAgent(
        source,
        vision_service=ScriptedVisionService(seed=seed),
        capture=StubObservationCapture(),
        config=config,
        run_id=run_id,
    )
    runner = ExplorationRunner(agent, config.step_delay_s, config.max_consecutive_failures)

    if not quiet:
        typer.echo("Street Explorer")
        typer.echo(f"Run ID: {run_id}")
        typer.echo(f"World: {world_path or f'grid {rows}x{cols} @ {spacing:g}m'} ({len(world)} nodes)")
        typer.echo(f"Steps: {steps}, delay: {config.step_delay_s:g}s")
        typer.echo(f"Log: {log_path}")
        typer.echo("-" * 60)

    async def _explore() -> list[StepRecord]:
        if snapshot is not None:
            agent.restore(snapshot)
            if agent.current_node_id is None:
                raise typer.BadParameter("snapshot has no current node")
            await source.settle(agent.current_node_id)
        else:
            await agent.initialize(start or next(iter(world)))
        return await runner.run(max_steps=steps)

    records: list[StepRecord] = []
    with RunLogWriter(log_path) as writer:
        agent.subscribe(writer.write)
        if not quiet:
            agent.subscribe(StepPrinter())
        try:
            records = asyncio.run(_explore())
        except KeyboardInterrupt:
            if not quiet:
                typer.echo("\n" + "-" * 60)
                typer.echo("Interrupted by user")

    if save is not None:
        save.parent.mkdir(parents=True, exist_ok=True)
        save.write_text(agent.snapshot().model_dump_json(indent=2), encoding="utf-8")

    if not quiet:
        typer.echo("-" * 60)
        typer.echo(f"Completed {len(records)} steps ({runner.failed_steps} failed)")
        StepPrinter().print_summary(summarize_run_log(list(read_run_log(log_path))))
        typer.echo(f"Log written to: {log_path}")
        if save is not None:
            typer.echo(f"Snapshot written to: {save}")


@app.command("make-world")
def make_world(
    path: Path = typer.Argument(..., help="Where to write the world JSON"),
    rows: int = typer.Option(8, "--rows", help="Grid rows"),
    cols: int = typer.Option(8, "--cols", help="Grid columns"),
    spacing: float = typer.Option(20.0, "--spacing", help="Grid spacing in metres"),
    lat: float = typer.Option(0.0, "--lat", help="Latitude of the south-west corner"),
    lng: float = typer.Option(0.0, "--lng", help="Longitude of the south-west corner"),
) -> None:
    """Write a generated street grid as a world file."""
    from street_explorer.schemas import LatLng

    try:
        world = build_grid_world(rows, cols, spacing, LatLng(lat=lat, lng=lng))
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    dump_world(path, world)
    typer.echo(f"Wrote {len(world)} nodes to {path}")


@app.command()
def inspect(
    snapshot_path: Path = typer.Argument(..., help="Snapshot written by run --save"),
    top: int = typer.Option(10, "--top", help="Most visited nodes to list"),
    as_json: bool = typer.Option(False, "--json", help="Print the stats as JSON"),
) -> None:
    """Show the coverage recorded in a snapshot."""
    snapshot = _load_snapshot(snapshot_path)
    if as_json:
        graph = snapshot.graph
        typer.echo(json.dumps({
            "run_id": snapshot.run_id,
            "step_index": snapshot.step_index,
            "current_node_id": snapshot.current_node_id,
            "visited": len(graph.nodes),
            "distance_traveled_m": round(graph.distance_traveled_m),
        }))
        return
    Console().print(snapshot_table(snapshot, top=top))


@app.command()
def version() -> None:
    """Show version information."""
    from street_explorer import __version__
    typer.echo(f"street-explorer v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
