"""Scripted vision service for demos and testing."""

from __future__ import annotations

import json
import random
from typing import Any, Iterable

from street_explorer.core.interfaces import VisionService
from street_explorer.schemas.decisions import DecisionContext

SCENE_TAGS: tuple[str, ...] = (
    "open corridor",
    "corner storefront",
    "busy crosswalk",
    "quiet side street",
    "tree-lined block",
)


class ScriptedVisionService(VisionService):
    """Answer from a script, then at random among unvisited candidates.

    Script entries are returned in order; an entry that is an exception
    instance is raised instead. Once the script is exhausted the service
    picks a random unvisited candidate (any candidate if all are visited)
    and returns it as JSON text.
    """

    def __init__(self, seed: int = 42, script: Iterable[Any] | None = None) -> None:
        self._rng = random.Random(seed)
        self._script = list(script or [])
        self.calls: list[tuple[DecisionContext, int]] = []

    async def choose(self, context: DecisionContext, max_tokens: int) -> Any:
        self.calls.append((context, max_tokens))
        if self._script:
            entry = self._script.pop(0)
            if isinstance(entry, BaseException):
                raise entry
            return entry

        unvisited = [c for c in context.candidates if not c.visited]
        pick = self._rng.choice(unvisited or context.candidates)
        return json.dumps({
            "selectedIndex": pick.index,
            "reasoning": f"Heading {pick.heading:.0f} looks less traveled than the rest.",
            "sceneTag": self._rng.choice(SCENE_TAGS),
        })
