"""Terminal output for exploration runs.

Prints one coloured line per step record and renders coverage tables
for snapshots. Uses ``rich`` for formatting.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.table import Table

from street_explorer.schemas import AgentSnapshot, ExplorationMode, StepRecord

MODE_STYLES: dict[ExplorationMode, str] = {
    ExplorationMode.EXPLORING: "green",
    ExplorationMode.PATHFINDING_TO_FRONTIER: "cyan",
    ExplorationMode.SINGLE_OPTION: "blue",
    ExplorationMode.DEAD_END_RECOVERY: "yellow",
    ExplorationMode.TELEPORT_TO_FRONTIER: "magenta",
}


class StepPrinter:
    """Pretty-prints each step record to the terminal.

    Usable directly as an agent listener: ``agent.subscribe(printer)``.
    """

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()
        self.printed = 0

    def __call__(self, record: StepRecord) -> None:
        self.print_step(record)

    def print_step(self, record: StepRecord) -> None:
        self.printed += 1
        style = MODE_STYLES.get(record.mode, "white")
        stats = record.coverage_stats

        heading = f"{record.heading:.0f}°" if record.heading is not None else "jump"
        new_mark = " [bold green]NEW[/]" if record.is_new_node else ""
        alias = (
            f" [dim](asked {record.requested_node_id})[/]"
            if record.requested_node_id else ""
        )

        self._console.print(
            f"[dim][{record.step_index:04d}][/dim] "
            f"[{style}]{record.mode.value:<24}[/] "
            f"{record.previous_node_id} → [bold]{record.chosen_node_id}[/]{alias} "
            f"{heading}{new_mark}"
        )

        detail = [
            f"visited={stats.locations_visited}",
            f"frontier={stats.frontier_size}",
            f"cells={stats.cells_visited}",
            f"dist={stats.distance_traveled_m}m",
        ]
        if record.remaining_path_steps is not None:
            detail.append(f"remaining={record.remaining_path_steps}")
        if record.fallback_cause:
            detail.append(f"[red]fallback={record.fallback_cause}[/]")
        self._console.print(f"         [dim]{' | '.join(detail)}[/]")
        if record.rationale:
            self._console.print(f"         [italic]{record.rationale}[/]")

    def print_summary(self, summary: dict[str, Any]) -> None:
        table = Table(title="Run summary")
        table.add_column("Metric")
        table.add_column("Value", justify="right")

        table.add_row("steps", str(summary.get("steps", 0)))
        for mode, count in sorted(summary.get("modes", {}).items()):
            table.add_row(f"mode: {mode}", str(count))
        for cause, count in sorted(summary.get("fallbacks", {}).items()):
            table.add_row(f"fallback: {cause}", str(count))
        if "new_node_ratio" in summary:
            table.add_row("new-node ratio", f"{summary['new_node_ratio']:.0%}")
        final = summary.get("final_stats") or {}
        for key, value in final.items():
            table.add_row(key, str(value))

        self._console.print(table)


def snapshot_table(snapshot: AgentSnapshot, top: int = 10) -> Table:
    """Coverage overview of a snapshot, with the most visited nodes."""
    graph = snapshot.graph
    frontier = {
        nbr
        for node in graph.nodes.values()
        for nbr in node.neighbors
        if nbr not in graph.nodes
    }

    table = Table(title=f"Snapshot {snapshot.run_id or ''}".strip())
    table.add_column("Field")
    table.add_column("Value", justify="right")
    table.add_row("step", str(snapshot.step_index))
    table.add_row("current node", str(snapshot.current_node_id))
    table.add_row("last mode", snapshot.mode.value if snapshot.mode else "-")
    table.add_row("visited nodes", str(len(graph.nodes)))
    table.add_row("frontier nodes", str(len(frontier)))
    table.add_row("distance (m)", f"{graph.distance_traveled_m:.0f}")
    table.add_row("recent history", " ".join(graph.recent_history) or "-")

    busiest = sorted(graph.visit_counts.items(), key=lambda kv: kv[1], reverse=True)[:top]
    for node_id, count in busiest:
        table.add_row(f"visits: {node_id}", str(count))
    return table
