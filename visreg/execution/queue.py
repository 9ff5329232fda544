"""Bounded-concurrency, strict-priority execution queue for test runs.

Jobs wait in three FIFO tiers (HIGH, NORMAL, LOW) and are started whenever a
slot is free, always taking the head of the highest non-empty tier. A failed
job is retried at the front of its own tier until its retries are exhausted,
at which point the caller's future is rejected with the original error.

Lower tiers get no aging: a steady stream of HIGH work starves LOW work.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from visreg.errors import ExecutionTimeoutError, InvalidTransitionError
from visreg.models.config import CamelModel
from visreg.models.test_run import PRIORITY_ORDER, Priority, TestRun

logger = logging.getLogger(__name__)

ExecuteFn = Callable[[TestRun], Awaitable[TestRun]]


class RunStore(Protocol):
    def update(self, item: TestRun) -> Any: ...


class QueueStatus(CamelModel):
    queued: dict[str, int]
    running: int
    max_concurrency: int


@dataclass
class Job:
    run: TestRun
    future: asyncio.Future


class ConcurrentExecutionManager:

    def __init__(
        self,
        repository: RunStore,
        execute_fn: ExecuteFn,
        max_concurrency: int = 5,
        tick_seconds: float = 1.0,
        job_timeout_seconds: Optional[float] = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.repository = repository
        self.execute_fn = execute_fn
        self.max_concurrency = max_concurrency
        self.tick_seconds = tick_seconds
        self.job_timeout_seconds = job_timeout_seconds
        self._queues: dict[Priority, deque[Job]] = {p: deque() for p in PRIORITY_ORDER}
        self._running: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._tick_task: Optional[asyncio.Task] = None
        self._drain_pending = False
        self.peak_running = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, run: TestRun) -> asyncio.Future:
        """Queue a run and return a future resolved with the finished run."""
        future = asyncio.get_running_loop().create_future()
        self._queues[run.priority].append(Job(run, future))
        logger.info("Test queued: %s (%s)", run.id, run.priority.value)
        self._schedule_drain()
        return future

    async def enqueue(self, run: TestRun) -> TestRun:
        return await self.submit(run)

    def get_queue_status(self) -> QueueStatus:
        return QueueStatus(
            queued={p.value: len(q) for p, q in self._queues.items()},
            running=len(self._running),
            max_concurrency=self.max_concurrency,
        )

    def queue_position(self, run_id: str) -> Optional[int]:
        """1-based position among waiting jobs in dispatch order, or None if not queued."""
        position = 0
        for priority in PRIORITY_ORDER:
            for job in self._queues[priority]:
                position += 1
                if job.run.id == run_id:
                    return position
        return None

    @property
    def running(self) -> frozenset[str]:
        return frozenset(self._running)

    async def start(self) -> None:
        if self._tick_task is None:
            self._tick_task = asyncio.create_task(self._tick_loop())
            logger.debug("Queue tick started (every %.1fs)", self.tick_seconds)

    async def stop(self) -> None:
        """Stop the tick and wait for in-flight jobs; queued jobs stay queued."""
        if self._tick_task is not None:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def __aenter__(self) -> "ConcurrentExecutionManager":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _schedule_drain(self) -> None:
        if not self._drain_pending:
            self._drain_pending = True
            asyncio.get_running_loop().call_soon(self._drain)

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            self._drain()

    def _next_job(self) -> Optional[Job]:
        for priority in PRIORITY_ORDER:
            queue = self._queues[priority]
            if queue:
                return queue.popleft()
        return None

    def _drain(self) -> None:
        self._drain_pending = False
        while len(self._running) < self.max_concurrency:
            job = self._next_job()
            if job is None:
                return
            self._running.add(job.run.id)
            self.peak_running = max(self.peak_running, len(self._running))
            task = asyncio.create_task(self._process(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    async def _process(self, job: Job) -> None:
        run_id = job.run.id
        try:
            try:
                running = job.run.start()
            except InvalidTransitionError as e:
                logger.error("Test %s cannot start: %s", run_id, e)
                self._reject(job, e)
                return

            try:
                await asyncio.to_thread(self.repository.update, running)
                logger.info("Test started: %s (attempt %d)", run_id, running.retry_count + 1)
                result = await self._execute(running)
                completed = result.complete()
                await asyncio.to_thread(self.repository.update, completed)
            except Exception as e:
                self._handle_failure(job, running, e)
                return

            logger.info("Test completed: %s", run_id)
            self._resolve(job, completed)
        finally:
            self._running.discard(run_id)
            self._schedule_drain()

    async def _execute(self, run: TestRun) -> TestRun:
        if not self.job_timeout_seconds:
            return await self.execute_fn(run)
        try:
            return await asyncio.wait_for(self.execute_fn(run), timeout=self.job_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ExecutionTimeoutError(
                f"Test {run.id} exceeded {self.job_timeout_seconds:.0f}s"
            ) from e

    def _handle_failure(self, job: Job, running: TestRun, error: Exception) -> None:
        logger.error("Test failed: %s: %s", running.id, error)
        retried = running.retry()
        if retried is not None:
            logger.info("Retrying test: %s (retry %d/%d)",
                        retried.id, retried.retry_count, retried.max_retries)
            self._persist(retried)
            self._queues[retried.priority].appendleft(Job(retried, job.future))
            return
        failed = running.fail(str(error))
        self._persist(failed)
        logger.error("Test %s failed permanently after %d retries", failed.id, failed.retry_count)
        self._reject(job, error)

    def _persist(self, run: TestRun) -> None:
        try:
            self.repository.update(run)
        except Exception as e:
            logger.error("Failed to persist test %s (%s): %s", run.id, run.status.value, e)

    @staticmethod
    def _resolve(job: Job, run: TestRun) -> None:
        if not job.future.done():
            job.future.set_result(run)

    @staticmethod
    def _reject(job: Job, error: BaseException) -> None:
        if not job.future.done():
            job.future.set_exception(error)
