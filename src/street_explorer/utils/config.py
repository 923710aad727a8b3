"""Configuration constants for the street explorer."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields

logger = logging.getLogger(__name__)

# Log format version for JSONL records
LOG_VERSION: str = "v1"

# =============================================================================
# Coverage Graph
# =============================================================================

# Length of the recent-history FIFO used for loop signatures
DEFAULT_HISTORY_SIZE: int = 10

# Moves remembered for the vision service's context
DEFAULT_MOVEMENT_HISTORY_SIZE: int = 20

# Edge length of a spatial cell in metres
DEFAULT_CELL_SIZE_M: float = 5.0

# =============================================================================
# Alias Clustering
# =============================================================================

# Members join a cluster whose centroid is within this distance
DEFAULT_CLUSTER_DISTANCE_M: float = 5.0

# =============================================================================
# Dead-End Recovery
# =============================================================================

DEFAULT_DEAD_END_STEP_M: float = 10.0
DEFAULT_MAX_DEAD_END_DISTANCE_M: float = 200.0

# =============================================================================
# Loop Guards
# =============================================================================

# Steps without entering a new spatial cell before a forced teleport
DEFAULT_STALE_CELL_THRESHOLD_STEPS: int = 120

# Minimum length of a strict A/B alternation counted as a loop
DEFAULT_LOOP_WINDOW_NODES: int = 6

DEFAULT_REPEATING_LOOP_MIN_PERIOD: int = 2
DEFAULT_REPEATING_LOOP_MAX_PERIOD: int = 6
DEFAULT_REPEATING_LOOP_MIN_REPEATS: int = 3

# Hops of lookahead when scoring escape directions
DEFAULT_ESCAPE_LOOKAHEAD_DEPTH: int = 3

# =============================================================================
# Vision Decisions
# =============================================================================

DEFAULT_VISION_MAX_RETRIES: int = 1
DEFAULT_VISION_MAX_TOKENS: int = 1200
DEFAULT_VISION_MAX_RETRY_TOKENS: int = 2400

# Floor applied when a blank response forces a larger budget
VISION_BLANK_RETRY_MIN_TOKENS: int = 600

# =============================================================================
# Runner
# =============================================================================

DEFAULT_STEP_DELAY_S: float = 1.0
DEFAULT_MAX_CONSECUTIVE_FAILURES: int = 5


@dataclass
class ExplorerConfig:
    """Tunable parameters for one exploration agent.

    Every field can be overridden from the environment with
    ``ExplorerConfig.from_env()``; see ``from_env`` for the naming rule.
    """

    history_size: int = DEFAULT_HISTORY_SIZE
    movement_history_size: int = DEFAULT_MOVEMENT_HISTORY_SIZE
    cell_size_m: float = DEFAULT_CELL_SIZE_M
    cluster_distance_m: float = DEFAULT_CLUSTER_DISTANCE_M
    dead_end_step_m: float = DEFAULT_DEAD_END_STEP_M
    max_dead_end_distance_m: float = DEFAULT_MAX_DEAD_END_DISTANCE_M
    stale_cell_threshold_steps: int = DEFAULT_STALE_CELL_THRESHOLD_STEPS
    loop_window_nodes: int = DEFAULT_LOOP_WINDOW_NODES
    repeating_loop_min_period: int = DEFAULT_REPEATING_LOOP_MIN_PERIOD
    repeating_loop_max_period: int = DEFAULT_REPEATING_LOOP_MAX_PERIOD
    repeating_loop_min_repeats: int = DEFAULT_REPEATING_LOOP_MIN_REPEATS
    escape_lookahead_depth: int = DEFAULT_ESCAPE_LOOKAHEAD_DEPTH
    vision_max_retries: int = DEFAULT_VISION_MAX_RETRIES
    vision_max_tokens: int = DEFAULT_VISION_MAX_TOKENS
    vision_max_retry_tokens: int = DEFAULT_VISION_MAX_RETRY_TOKENS
    step_delay_s: float = DEFAULT_STEP_DELAY_S
    max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES

    @classmethod
    def from_env(
        cls,
        prefix: str = "EXPLORER_",
        environ: dict[str, str] | None = None,
    ) -> ExplorerConfig:
        """Build a config from ``<PREFIX><FIELD_NAME_UPPER>`` variables.

        Values that fail to parse are ignored and the default is kept.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, int | float] = {}

        for f in fields(cls):
            raw = env.get(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            caster = float if isinstance(f.default, float) else int
            try:
                overrides[f.name] = caster(raw.strip())
            except ValueError:
                logger.warning(
                    "Ignoring %s%s=%r: not a valid %s",
                    prefix, f.name.upper(), raw, caster.__name__,
                )

        return cls(**overrides)

    def validate(self) -> ExplorerConfig:
        """Raise ``ValueError`` for settings the agent cannot run with."""
        positive = (
            "history_size",
            "movement_history_size",
            "cell_size_m",
            "cluster_distance_m",
            "dead_end_step_m",
            "stale_cell_threshold_steps",
            "loop_window_nodes",
            "repeating_loop_min_period",
            "repeating_loop_min_repeats",
            "vision_max_tokens",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        for name in ("max_dead_end_distance_m", "escape_lookahead_depth",
                     "vision_max_retries", "step_delay_s"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative, got {getattr(self, name)}")

        if self.max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures must be at least 1")
        if self.repeating_loop_min_period > self.repeating_loop_max_period:
            raise ValueError(
                "repeating_loop_min_period must not exceed repeating_loop_max_period"
            )
        if self.vision_max_retry_tokens < self.vision_max_tokens:
            raise ValueError("vision_max_retry_tokens must be >= vision_max_tokens")
        return self
