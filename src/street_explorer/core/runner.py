"""Fixed-delay scheduling of exploration steps.

The next step is scheduled only after the previous one finished, so a
slow vision service slows the whole loop down instead of piling up
concurrent steps. Stopping is cooperative: it prevents the next step and
never cancels the one in flight.
"""

from __future__ import annotations

import asyncio
import logging

from street_explorer.core.agent import ExplorationAgent
from street_explorer.schemas.results import StepRecord
from street_explorer.utils.config import DEFAULT_MAX_CONSECUTIVE_FAILURES, DEFAULT_STEP_DELAY_S

logger = logging.getLogger(__name__)


class ExplorationRunner:
    """Drive an agent step after step with pause, resume and stop."""

    def __init__(
        self,
        agent: ExplorationAgent,
        delay_s: float = DEFAULT_STEP_DELAY_S,
        max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES,
    ) -> None:
        self.agent = agent
        self.delay_s = delay_s
        self.max_consecutive_failures = max(1, max_consecutive_failures)

        self._resume_event = asyncio.Event()
        self._resume_event.set()  # starts un-paused
        self._stop_event = asyncio.Event()
        self._running = False
        self._paused = False
        self.consecutive_failures = 0
        self.failed_steps = 0

    # ----------------------------------------------------------------
    # Control
    # ----------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def pause(self) -> None:
        """Hold the loop before its next step."""
        self._paused = True
        self._resume_event.clear()

    def resume(self) -> None:
        self._paused = False
        self._resume_event.set()

    def stop(self) -> None:
        """Prevent the next step. A step already in flight completes."""
        self._stop_event.set()
        self._resume_event.set()

    async def wait_idle(self) -> None:
        """Wait until the agent has no step in flight."""
        await self.agent.wait_idle()

    # ----------------------------------------------------------------
    # Loop
    # ----------------------------------------------------------------

    async def run(self, max_steps: int | None = None) -> list[StepRecord]:
        """Step until stopped, ``max_steps`` records, or too many failures.

        Args:
            max_steps: Number of step records to produce; None for no limit.

        Returns:
            The records produced by this run, in order.
        """
        records: list[StepRecord] = []
        self._stop_event.clear()
        self._running = True
        self.consecutive_failures = 0

        try:
            while not self.stopped:
                await self._resume_event.wait()
                if self.stopped:
                    break

                try:
                    record = await self.agent.advance_step()
                except Exception:
                    self.consecutive_failures += 1
                    self.failed_steps += 1
                    logger.exception("Step failed (%d consecutive)", self.consecutive_failures)
                    if self.consecutive_failures >= self.max_consecutive_failures:
                        logger.error("Stopping after %d consecutive failures",
                                     self.consecutive_failures)
                        break
                else:
                    if record is None:
                        logger.debug("Step rejected: another step is in flight")
                    else:
                        self.consecutive_failures = 0
                        records.append(record)

                if max_steps is not None and len(records) >= max_steps:
                    break
                await self._delay()
        finally:
            self._running = False

        logger.info("Runner finished: %d steps, %d failures", len(records), self.failed_steps)
        return records

    async def _delay(self) -> None:
        if self.delay_s <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.delay_s)
        except asyncio.TimeoutError:
            pass  # delay elapsed without a stop
