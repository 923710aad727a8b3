"""Payloads exchanged with the vision decision service."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from street_explorer.schemas.nodes import LatLng
from street_explorer.schemas.results import CoverageStats, MovementRecord


class CandidateView(BaseModel):
    """One move option shown to the vision service."""

    index: int = Field(..., ge=0, description="Position in the candidate list")
    target_id: str = Field(..., description="Node id the option leads to")
    heading: float = Field(..., description="Heading of the option in degrees")
    description: str = Field(default="", description="Source-supplied link label")
    visited: bool = Field(default=False, description="Whether the target was visited")
    observation: Any = Field(
        default=None,
        description="Opaque handle returned by the observation capture",
    )


class DecisionContext(BaseModel):
    """Everything the vision service sees when choosing a move."""

    step_index: int = Field(..., ge=0, description="Step being decided")
    position: LatLng = Field(..., description="Current position")
    candidates: list[CandidateView] = Field(
        ...,
        min_length=1,
        description="Move options, indexed from zero",
    )
    recent_history: list[str] = Field(
        default_factory=list,
        description="Most recently visited node ids, oldest first",
    )
    recent_movements: list[MovementRecord] = Field(
        default_factory=list,
        description="Most recent moves, oldest first",
    )
    coverage_stats: CoverageStats | None = Field(
        default=None,
        description="Coverage statistics at decision time",
    )


class VisionDecision(BaseModel):
    """A validated choice among the candidates of a ``DecisionContext``.

    ``fallback_cause`` is set only when the service could not be used and
    the choice was made locally.
    """

    selected_index: int = Field(..., ge=0, description="Chosen candidate index")
    target_id: str = Field(..., description="Node id of the chosen candidate")
    rationale: str = Field(..., description="Short explanation of the choice")
    scene_tag: str = Field(default="street cue", description="Short scene label")
    fallback_cause: str | None = Field(
        default=None,
        description="Why the local fallback was used, if it was",
    )
    attempts: int = Field(default=1, ge=0, description="Service calls made")

    model_config = {"frozen": True}

    @property
    def is_fallback(self) -> bool:
        return self.fallback_cause is not None or self.scene_tag == "fallback"
