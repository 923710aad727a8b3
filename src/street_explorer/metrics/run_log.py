"""JSONL run log of exploration steps.

One ``StepRecord.to_log_dict()`` per line, appended as steps complete,
plus helpers to read a log back and tally it.
"""

from __future__ import annotations

import json
from collections import Counter
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator

if TYPE_CHECKING:
    from street_explorer.schemas import StepRecord


class RunLogWriter:
    """Writes step records to a JSONL log file."""

    def __init__(self, log_path: Path) -> None:
        """Initialize the log writer.

        Args:
            log_path: Path to the JSONL log file. Parent directories are
                created; an existing file is appended to.
        """
        self._log_path = Path(log_path)
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self._log_path, "a", encoding="utf-8")
        self.records_written = 0

    @property
    def path(self) -> Path:
        return self._log_path

    def write(self, record: StepRecord) -> None:
        line = json.dumps(record.to_log_dict(), separators=(",", ":"))
        self._file.write(line + "\n")
        self._file.flush()
        self.records_written += 1

    def close(self) -> None:
        """Close the log file."""
        if not self._file.closed:
            self._file.close()

    def __enter__(self) -> RunLogWriter:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def read_run_log(log_path: Path) -> Iterator[dict[str, Any]]:
    """Yield the records of a JSONL run log, skipping blank lines."""
    with open(log_path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                yield json.loads(line)


def summarize_run_log(records: list[dict[str, Any]]) -> dict[str, Any]:
    """Tally modes, fallbacks and coverage growth over a run."""
    if not records:
        return {"steps": 0, "modes": {}, "fallbacks": {}, "final_stats": None}

    modes = Counter(r.get("mode", "unknown") for r in records)
    fallbacks = Counter(r["fallback_cause"] for r in records if r.get("fallback_cause"))
    new_nodes = sum(1 for r in records if r.get("is_new_node"))
    return {
        "steps": len(records),
        "modes": dict(modes),
        "fallbacks": dict(fallbacks),
        "new_node_ratio": new_nodes / len(records),
        "final_stats": records[-1].get("coverage_stats"),
    }
