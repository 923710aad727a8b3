"""Stub observation capture."""

from __future__ import annotations

from street_explorer.core.interfaces import ObservationCapture


class StubObservationCapture(ObservationCapture):
    """Return string handles like ``"3-090"`` instead of images."""

    def __init__(self) -> None:
        self.calls: list[tuple[int, float]] = []

    async def capture(self, step_index: int, heading: float) -> str:
        self.calls.append((step_index, heading))
        return f"{step_index}-{heading % 360:03.0f}"
