"""Tests for the fixed-delay step runner."""

from __future__ import annotations

import asyncio

from street_explorer.core.agent import ExplorationAgent
from street_explorer.core.runner import ExplorationRunner
from street_explorer.modules.stubs import InMemoryNodeSource, ScriptedVisionService, make_node


class _FlakySource(InMemoryNodeSource):
    """Fails the first ``failures`` lookups of the current node."""

    def __init__(self, world, failures: int) -> None:
        super().__init__(world)
        self.failures = failures

    async def current(self):
        if self.failures > 0:
            self.failures -= 1
            raise OSError("connection dropped")
        return await super().current()


class TestExplorationRunner:
    """Tests for run, pause, resume and stop."""

    def test_runs_max_steps(self, make_agent, grid_world):
        agent, _, _ = make_agent(grid_world)

        async def scenario():
            await agent.initialize("r0c0")
            runner = ExplorationRunner(agent, delay_s=0)
            records = await runner.run(max_steps=5)
            return runner, records

        runner, records = asyncio.run(scenario())

        assert [r.step_index for r in records] == [1, 2, 3, 4, 5]
        assert agent.step_index == 5
        assert not runner.running
        assert runner.failed_steps == 0

    def test_stop_from_listener(self, make_agent, grid_world):
        agent, _, _ = make_agent(grid_world)

        async def scenario():
            await agent.initialize("r0c0")
            runner = ExplorationRunner(agent, delay_s=0)

            def stop_after_three(record):
                if record.step_index == 3:
                    runner.stop()

            agent.subscribe(stop_after_three)
            records = await runner.run()
            return runner, records

        runner, records = asyncio.run(scenario())

        assert len(records) == 3
        assert runner.stopped
        assert not agent.is_stepping

    def test_stop_interrupts_delay(self, make_agent, grid_world):
        agent, _, _ = make_agent(grid_world)

        async def scenario():
            await agent.initialize("r0c0")
            runner = ExplorationRunner(agent, delay_s=30)
            agent.subscribe(lambda record: runner.stop())
            return await asyncio.wait_for(runner.run(), timeout=5)

        records = asyncio.run(scenario())
        assert len(records) == 1

    def test_pause_and_resume(self, make_agent, grid_world):
        agent, _, _ = make_agent(grid_world)

        async def scenario():
            await agent.initialize("r0c0")
            runner = ExplorationRunner(agent, delay_s=0)
            runner.pause()
            task = asyncio.create_task(runner.run(max_steps=2))
            for _ in range(10):
                await asyncio.sleep(0)

            assert runner.running
            assert runner.paused
            assert agent.step_index == 0

            runner.resume()
            records = await task
            await runner.wait_idle()
            return records

        records = asyncio.run(scenario())
        assert len(records) == 2

    def test_stop_while_paused(self, make_agent, grid_world):
        agent, _, _ = make_agent(grid_world)

        async def scenario():
            await agent.initialize("r0c0")
            runner = ExplorationRunner(agent, delay_s=0)
            runner.pause()
            task = asyncio.create_task(runner.run())
            await asyncio.sleep(0)
            runner.stop()
            return await asyncio.wait_for(task, timeout=5)

        assert asyncio.run(scenario()) == []
        assert agent.step_index == 0

    def test_stops_after_consecutive_failures(self, make_agent):
        agent, _, _ = make_agent({"Z": make_node("Z", 0.0, 0.0)})

        async def scenario():
            await agent.initialize("Z")
            runner = ExplorationRunner(agent, delay_s=0, max_consecutive_failures=3)
            records = await runner.run(max_steps=10)
            return runner, records

        runner, records = asyncio.run(scenario())

        assert records == []
        assert runner.failed_steps == 3
        assert runner.consecutive_failures == 3
        assert not runner.running

    def test_failures_reset_after_success(self, line_world, fast_config):
        source = _FlakySource(line_world, failures=0)
        agent = ExplorationAgent(source, ScriptedVisionService(), config=fast_config)

        async def scenario():
            await agent.initialize("A")
            source.failures = 2
            runner = ExplorationRunner(agent, delay_s=0, max_consecutive_failures=3)
            records = await runner.run(max_steps=2)
            return runner, records

        runner, records = asyncio.run(scenario())

        assert [r.chosen_node_id for r in records] == ["B", "C"]
        assert runner.failed_steps == 2
        assert runner.consecutive_failures == 0
