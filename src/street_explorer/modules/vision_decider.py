"""Retry, parse and fallback contract around the vision decision service.

The service is an external collaborator that may fail, time out or
return text that is not quite JSON. ``VisionDecider`` turns any of that
into a ``VisionDecision``; it never raises on service failure.
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any

from street_explorer.core.errors import DecisionParseError, VisionServiceError
from street_explorer.core.interfaces import VisionService
from street_explorer.schemas.decisions import DecisionContext, VisionDecision
from street_explorer.utils.config import (
    DEFAULT_VISION_MAX_RETRIES,
    DEFAULT_VISION_MAX_RETRY_TOKENS,
    DEFAULT_VISION_MAX_TOKENS,
    VISION_BLANK_RETRY_MIN_TOKENS,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

RETRYABLE_MESSAGE_FRAGMENTS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "socket",
    "econnreset",
    "temporar",
    "overloaded",
    "rate limit",
)

FALLBACK_LINES: tuple[str, ...] = (
    "Model unavailable; advancing toward a less-visited branch to keep coverage expanding.",
    "Model unavailable; taking the most promising unvisited option to avoid stalling.",
    "Model unavailable; selecting a new corridor to preserve forward exploration momentum.",
)

DEFAULT_RATIONALE = "The line of sight ahead feels less traveled, so I am testing that corridor next."
DEFAULT_SCENE_TAG = "street cue"
INVALID_INDEX_RATIONALE = "Falling back to the first available direction after an invalid index."
MAX_SCENE_TAG_LENGTH = 40

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


class FailureKind(str, Enum):
    """Classification of one failed service attempt."""

    BLANK_CONTENT = "blank_content"
    MALFORMED = "malformed"
    RETRYABLE_API = "retryable_api"
    FATAL_API = "fatal_api"

    @property
    def retryable(self) -> bool:
        return self is not FailureKind.FATAL_API


def parse_decision_content(raw: Any) -> Any:
    """Decode a service payload, tolerating markdown fences and chatter.

    Tries plain JSON, then the body of a fenced block, then the outermost
    brace-delimited substring.

    Raises:
        DecisionParseError: If nothing decodes. ``blank`` is set for empty
            payloads.
    """
    if raw is None:
        raise DecisionParseError("Model returned empty content", blank=True)
    if isinstance(raw, dict):
        return raw

    text = raw if isinstance(raw, str) else json.dumps(raw)
    trimmed = text.strip()
    if not trimmed:
        raise DecisionParseError("Model returned blank content", blank=True)

    try:
        return json.loads(trimmed)
    except json.JSONDecodeError:
        pass

    fenced = _FENCE_RE.search(trimmed)
    if fenced and fenced.group(1).strip():
        try:
            return json.loads(fenced.group(1).strip())
        except json.JSONDecodeError:
            pass

    first = trimmed.find("{")
    last = trimmed.rfind("}")
    if first >= 0 and last > first:
        try:
            return json.loads(trimmed[first:last + 1])
        except json.JSONDecodeError:
            pass

    raise DecisionParseError(f"Invalid JSON response from model: {trimmed[:240]}")


def classify_failure(error: BaseException) -> FailureKind:
    """Map an exception from one attempt onto a ``FailureKind``."""
    if isinstance(error, DecisionParseError):
        return FailureKind.BLANK_CONTENT if error.blank else FailureKind.MALFORMED
    if isinstance(error, (TimeoutError, ConnectionError)):
        return FailureKind.RETRYABLE_API
    if isinstance(error, VisionServiceError) and error.status is not None:
        if error.status in RETRYABLE_STATUSES:
            return FailureKind.RETRYABLE_API
        return FailureKind.FATAL_API

    message = str(error).lower()
    if any(fragment in message for fragment in RETRYABLE_MESSAGE_FRAGMENTS):
        return FailureKind.RETRYABLE_API
    return FailureKind.FATAL_API


def next_token_budget(kind: FailureKind, current: int, cap: int) -> int:
    """Completion budget for the attempt after a failure of ``kind``.

    Blank output usually means the budget was spent before any text was
    produced, so it doubles (with a floor) up to ``cap``. Other failures
    keep the budget.
    """
    if kind is FailureKind.BLANK_CONTENT:
        return min(cap, max(current * 2, VISION_BLANK_RETRY_MIN_TOKENS))
    return current


def fallback_cause_for(error: BaseException | None) -> str:
    if isinstance(error, VisionServiceError) and error.status is not None:
        return f"api_error_{error.status}"
    if isinstance(error, DecisionParseError):
        return "parse_error_after_retries"
    return "unknown_error"


def _coerce_index(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        match = re.match(r"\s*(-?\d+)", value)
        if match:
            return int(match.group(1))
    return None


def _first_text(payload: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class VisionDecider:
    """Bounded retry loop around a ``VisionService``.

    Parse failures and retryable API failures are retried up to
    ``max_retries`` extra times. Exhausted or fatal failures produce a
    fallback decision: the first unvisited candidate, or the first
    candidate when all are visited.
    """

    def __init__(
        self,
        service: VisionService,
        max_retries: int = DEFAULT_VISION_MAX_RETRIES,
        max_tokens: int = DEFAULT_VISION_MAX_TOKENS,
        max_retry_tokens: int = DEFAULT_VISION_MAX_RETRY_TOKENS,
    ) -> None:
        self.service = service
        self.max_retries = max(0, max_retries)
        self.max_tokens = max_tokens
        self.max_retry_tokens = max(max_tokens, max_retry_tokens)

    async def decide(self, context: DecisionContext) -> VisionDecision:
        """Ask the service for a choice among ``context.candidates``.

        Args:
            context: Candidates and history for this step.

        Returns:
            A decision whose index is always valid for the candidates.
        """
        max_attempts = self.max_retries + 1
        budget = self.max_tokens
        last_error: BaseException | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                raw = await self.service.choose(context, max_tokens=budget)
                payload = parse_decision_content(raw)
            except Exception as exc:
                last_error = exc
                kind = classify_failure(exc)
                logger.warning(
                    "Vision attempt %d/%d failed at step %d (%s): %s",
                    attempt, max_attempts, context.step_index, kind.value, exc,
                )
                if attempt < max_attempts and kind.retryable:
                    budget = next_token_budget(kind, budget, self.max_retry_tokens)
                    continue
                break

            return self._sanitize(payload, context, attempt)

        cause = fallback_cause_for(last_error)
        logger.warning("Vision fallback engaged at step %d (cause=%s)", context.step_index, cause)
        return self._fallback(context, cause, attempts=attempt)

    def _sanitize(self, payload: Any, context: DecisionContext, attempts: int) -> VisionDecision:
        candidates = context.candidates
        data = payload if isinstance(payload, dict) else {}
        raw_index = data.get("selectedIndex", data.get("selected_index"))
        index = _coerce_index(raw_index)

        if index is None or not 0 <= index < len(candidates):
            logger.warning("Vision selected invalid index %r (valid 0-%d)",
                           raw_index, len(candidates) - 1)
            return VisionDecision(
                selected_index=0,
                target_id=candidates[0].target_id,
                rationale=INVALID_INDEX_RATIONALE,
                scene_tag="invalid-index",
                fallback_cause="invalid_index",
                attempts=attempts,
            )

        rationale = _first_text(data, "reasoning", "rationale") or DEFAULT_RATIONALE
        scene_tag = _first_text(data, "sceneTag", "scene_tag") or DEFAULT_SCENE_TAG
        return VisionDecision(
            selected_index=index,
            target_id=candidates[index].target_id,
            rationale=rationale,
            scene_tag=scene_tag[:MAX_SCENE_TAG_LENGTH],
            attempts=attempts,
        )

    def _fallback(self, context: DecisionContext, cause: str, attempts: int) -> VisionDecision:
        candidates = context.candidates
        chosen = next((c for c in candidates if not c.visited), candidates[0])
        return VisionDecision(
            selected_index=chosen.index,
            target_id=chosen.target_id,
            rationale=FALLBACK_LINES[context.step_index % len(FALLBACK_LINES)],
            scene_tag="fallback",
            fallback_cause=cause,
            attempts=attempts,
        )
