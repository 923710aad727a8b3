"""Tests for step records, the JSONL run log and terminal display."""

from __future__ import annotations

import io
import json

import pytest
from rich.console import Console

from street_explorer.display import StepPrinter, snapshot_table
from street_explorer.metrics import RunLogWriter, read_run_log, summarize_run_log
from street_explorer.schemas import (
    AgentSnapshot,
    CoverageStats,
    ExplorationMode,
    GraphSnapshot,
    LatLng,
    SerializedNode,
    StepRecord,
)


def _record(step_index: int = 1, mode: ExplorationMode = ExplorationMode.EXPLORING, **kwargs) -> StepRecord:
    defaults = dict(
        run_id="run-1",
        step_index=step_index,
        mode=mode,
        chosen_node_id=f"n{step_index}",
        previous_node_id=f"n{step_index - 1}",
        heading=90.0,
        rationale="test move",
        position=LatLng(lat=1.0, lng=2.0),
        coverage_stats=CoverageStats(locations_visited=step_index + 1, frontier_size=3),
        is_new_node=True,
    )
    defaults.update(kwargs)
    return StepRecord(**defaults)


class TestStepRecord:
    """Tests for the log form of a step record."""

    def test_required_keys(self):
        data = _record().to_log_dict()

        assert data["log_version"] == "v1"
        assert data["mode"] == "exploring"
        assert data["broadcast_mode"] == "exploration"
        assert data["position"] == {"lat": 1.0, "lng": 2.0}
        assert data["coverage_stats"]["locations_visited"] == 2
        json.dumps(data)

    def test_optional_keys_omitted(self):
        data = _record().to_log_dict()
        for key in ("requested_node_id", "observations", "scene_tag",
                    "fallback_cause", "remaining_path_steps"):
            assert key not in data

    def test_optional_keys_present(self):
        data = _record(
            requested_node_id="alias",
            observations=["1-090"],
            scene_tag="plaza",
            fallback_cause="api_error_429",
            remaining_path_steps=4,
        ).to_log_dict()

        assert data["requested_node_id"] == "alias"
        assert data["observations"] == ["1-090"]
        assert data["scene_tag"] == "plaza"
        assert data["fallback_cause"] == "api_error_429"
        assert data["remaining_path_steps"] == 4

    @pytest.mark.parametrize("mode,label", [
        (ExplorationMode.EXPLORING, "exploration"),
        (ExplorationMode.DEAD_END_RECOVERY, "dead-end-recovery"),
        (ExplorationMode.PATHFINDING_TO_FRONTIER, "pathfinding"),
        (ExplorationMode.SINGLE_OPTION, "pathfinding"),
        (ExplorationMode.TELEPORT_TO_FRONTIER, "pathfinding"),
    ])
    def test_broadcast_labels(self, mode, label):
        assert mode.broadcast_label == label

    def test_records_are_frozen(self):
        record = _record()
        with pytest.raises(Exception):
            record.step_index = 5


class TestRunLog:
    """Tests for writing, reading and summarising run logs."""

    def test_write_and_read(self, tmp_path):
        path = tmp_path / "nested" / "run.jsonl"
        with RunLogWriter(path) as writer:
            writer.write(_record(1))
            writer.write(_record(2, ExplorationMode.SINGLE_OPTION))
            assert writer.records_written == 2
            assert writer.path == path

        records = list(read_run_log(path))
        assert [r["step_index"] for r in records] == [1, 2]
        assert records[1]["mode"] == "single_option"

    def test_appends_to_existing_log(self, tmp_path):
        path = tmp_path / "run.jsonl"
        with RunLogWriter(path) as writer:
            writer.write(_record(1))
        with RunLogWriter(path) as writer:
            writer.write(_record(2))

        assert len(list(read_run_log(path))) == 2

    def test_skips_blank_lines(self, tmp_path):
        path = tmp_path / "run.jsonl"
        path.write_text(json.dumps(_record(1).to_log_dict()) + "\n\n")
        assert len(list(read_run_log(path))) == 1

    def test_close_is_idempotent(self, tmp_path):
        writer = RunLogWriter(tmp_path / "run.jsonl")
        writer.close()
        writer.close()

    def test_summary(self):
        records = [
            _record(1).to_log_dict(),
            _record(2, fallback_cause="api_error_503").to_log_dict(),
            _record(3, ExplorationMode.TELEPORT_TO_FRONTIER, is_new_node=False).to_log_dict(),
        ]
        summary = summarize_run_log(records)

        assert summary["steps"] == 3
        assert summary["modes"] == {"exploring": 2, "teleport_to_frontier": 1}
        assert summary["fallbacks"] == {"api_error_503": 1}
        assert summary["new_node_ratio"] == pytest.approx(2 / 3)
        assert summary["final_stats"]["locations_visited"] == 4

    def test_empty_summary(self):
        assert summarize_run_log([]) == {
            "steps": 0, "modes": {}, "fallbacks": {}, "final_stats": None,
        }


class TestDisplay:
    """Tests for terminal output."""

    def _console(self) -> tuple[Console, io.StringIO]:
        buffer = io.StringIO()
        return Console(file=buffer, width=160, color_system=None), buffer

    def test_step_printer(self):
        console, buffer = self._console()
        printer = StepPrinter(console)

        printer(_record(1, remaining_path_steps=2, fallback_cause="unknown_error"))
        printer.print_step(_record(2, ExplorationMode.TELEPORT_TO_FRONTIER, heading=None))

        out = buffer.getvalue()
        assert printer.printed == 2
        assert "exploring" in out
        assert "n0 → n1" in out
        assert "remaining=2" in out
        assert "fallback=unknown_error" in out
        assert "jump" in out

    def test_summary_table(self):
        console, buffer = self._console()
        StepPrinter(console).print_summary(summarize_run_log([_record(1).to_log_dict()]))

        out = buffer.getvalue()
        assert "Run summary" in out
        assert "mode: exploring" in out

    def test_snapshot_table(self):
        snapshot = AgentSnapshot(
            run_id="run-1",
            step_index=7,
            current_node_id="B",
            mode=ExplorationMode.SINGLE_OPTION,
            graph=GraphSnapshot(
                nodes={
                    "A": SerializedNode(lat=0.0, lng=0.0, neighbors=["B", "F"]),
                    "B": SerializedNode(lat=0.0002, lng=0.0, neighbors=["A"]),
                },
                recent_history=["A", "B"],
                visit_counts={"A": 3, "B": 1},
                distance_traveled_m=44.4,
            ),
        )
        console, buffer = self._console()
        console.print(snapshot_table(snapshot, top=1))

        out = buffer.getvalue()
        assert "Snapshot run-1" in out
        assert "single_option" in out
        assert "visits: A" in out
        assert "visits: B" not in out
