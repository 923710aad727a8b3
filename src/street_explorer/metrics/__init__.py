"""Run logging for exploration runs."""

from street_explorer.metrics.run_log import RunLogWriter, read_run_log, summarize_run_log

__all__ = [
    "RunLogWriter",
    "read_run_log",
    "summarize_run_log",
]
