from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    OK = "ok"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class TaskResult:
    status: TaskStatus
    detail: str = ""

    @classmethod
    def ok(cls, detail: str = "") -> "TaskResult":
        return cls(TaskStatus.OK, detail)

    @classmethod
    def retryable(cls, detail: str) -> "TaskResult":
        return cls(TaskStatus.RETRYABLE, detail)

    @classmethod
    def fatal(cls, detail: str) -> "TaskResult":
        return cls(TaskStatus.FATAL, detail)


ScheduledTask = Callable[[], Awaitable[TaskResult]]


@dataclass
class _Job:
    name: str
    interval_seconds: float
    task: ScheduledTask
    stop: asyncio.Event
    runner: asyncio.Task | None = None
    last_result: TaskResult | None = None
    runs: int = 0


class PollingScheduler:
    """Runs recurring jobs on a fixed interval.

    Each job has a single runner, so a tick never starts before the previous
    tick of the same job has returned. Cancelling a job waits for the tick in
    flight instead of interrupting it.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, _Job] = {}

    def schedule(self, name: str, interval_seconds: float, task: ScheduledTask) -> None:
        if name in self._jobs:
            raise ValueError(f"Job {name!r} is already scheduled")
        job = _Job(name=name, interval_seconds=interval_seconds, task=task, stop=asyncio.Event())
        job.runner = asyncio.create_task(self._run(job), name=f"job:{name}")
        self._jobs[name] = job
        logger.info("Scheduled job %s every %.1fs", name, interval_seconds)

    def is_scheduled(self, name: str) -> bool:
        return name in self._jobs

    def last_result(self, name: str) -> TaskResult | None:
        job = self._jobs.get(name)
        return job.last_result if job else None

    async def cancel(self, name: str) -> None:
        job = self._jobs.pop(name, None)
        if job is None:
            return
        job.stop.set()
        if job.runner is not None:
            await job.runner
        logger.info("Job %s stopped after %d runs", name, job.runs)

    async def stop(self) -> None:
        for name in list(self._jobs):
            await self.cancel(name)

    async def wait(self, name: str) -> None:
        job = self._jobs.get(name)
        if job is not None and job.runner is not None:
            await asyncio.shield(job.runner)

    async def _run(self, job: _Job) -> None:
        while not job.stop.is_set():
            result = await self._run_once(job)
            job.last_result = result
            job.runs += 1
            if result.status is TaskStatus.FATAL:
                logger.error("Job %s failed fatally: %s", job.name, result.detail)
                self._jobs.pop(job.name, None)
                return
            if result.status is TaskStatus.RETRYABLE:
                logger.warning("Job %s will retry: %s", job.name, result.detail)
            try:
                await asyncio.wait_for(job.stop.wait(), timeout=job.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def _run_once(self, job: _Job) -> TaskResult:
        try:
            return await job.task()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Job %s raised: %s", job.name, exc)
            return TaskResult.retryable(f"{type(exc).__name__}: {exc}")
