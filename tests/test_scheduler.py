import asyncio

import pytest

from nft_watch_agent.scheduler import PollingScheduler, TaskResult, TaskStatus


def test_job_runs_repeatedly_until_cancelled() -> None:
    calls = []

    async def task() -> TaskResult:
        calls.append(1)
        return TaskResult.ok()

    async def scenario():
        scheduler = PollingScheduler()
        scheduler.schedule("tick", 0.01, task)
        await asyncio.sleep(0.05)
        await scheduler.cancel("tick")
        return scheduler

    scheduler = asyncio.run(scenario())

    assert len(calls) >= 2
    assert scheduler.is_scheduled("tick") is False


def test_cancel_waits_for_in_flight_tick() -> None:
    finished = []

    async def slow() -> TaskResult:
        await asyncio.sleep(0.05)
        finished.append(True)
        return TaskResult.ok()

    async def scenario():
        scheduler = PollingScheduler()
        scheduler.schedule("slow", 10, slow)
        await asyncio.sleep(0.01)
        await scheduler.cancel("slow")

    asyncio.run(scenario())

    assert finished == [True]


def test_exceptions_become_retryable_results() -> None:
    async def boom() -> TaskResult:
        raise RuntimeError("network down")

    async def scenario():
        scheduler = PollingScheduler()
        scheduler.schedule("boom", 0.01, boom)
        await asyncio.sleep(0.03)
        result = scheduler.last_result("boom")
        await scheduler.stop()
        return result

    result = asyncio.run(scenario())

    assert result.status is TaskStatus.RETRYABLE
    assert "network down" in result.detail


def test_fatal_result_stops_the_job() -> None:
    calls = []

    async def fatal() -> TaskResult:
        calls.append(1)
        return TaskResult.fatal("bad config")

    async def scenario():
        scheduler = PollingScheduler()
        scheduler.schedule("fatal", 0.01, fatal)
        await scheduler.wait("fatal")
        await asyncio.sleep(0.03)
        return scheduler

    scheduler = asyncio.run(scenario())

    assert calls == [1]
    assert scheduler.is_scheduled("fatal") is False


def test_duplicate_job_name_is_rejected() -> None:
    async def task() -> TaskResult:
        return TaskResult.ok()

    async def scenario():
        scheduler = PollingScheduler()
        scheduler.schedule("dup", 1, task)
        try:
            with pytest.raises(ValueError):
                scheduler.schedule("dup", 1, task)
        finally:
            await scheduler.stop()

    asyncio.run(scenario())
