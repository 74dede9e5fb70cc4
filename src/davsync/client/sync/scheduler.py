"""Priority request scheduler with rate limiting and retry.

This module provides:
- RequestPriority: HIGH < NORMAL < LOW dispatch order
- RequestScheduler: bounded-concurrency queue that paces requests through a
  RateLimiter and retries failures with exponential backoff
- SchedulerStatus: snapshot for status reporting

Usage:
    scheduler = RequestScheduler(RateLimiter.for_tier(AccountTier.FREE))
    info = await scheduler.enqueue(lambda: provider.get_file_info("/a.md"))
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from davsync.client.sync.rate_limit import RateLimiter
from davsync.core.errors import RequestCancelledError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 2
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY = 30.0  # seconds
CONCURRENCY_POLL_INTERVAL = 0.1  # seconds


class RequestPriority(IntEnum):
    """Dispatch priority. Lower values run first."""

    HIGH = 0  # user-initiated
    NORMAL = 1  # regular sync traffic
    LOW = 2  # background work


@dataclass
class RequestTask:
    """A queued request and the future its caller awaits."""

    id: str
    priority: RequestPriority
    executor: Callable[[], Awaitable[Any]]
    future: asyncio.Future[Any]
    max_retries: int = DEFAULT_MAX_RETRIES
    retries: int = 0


@dataclass
class SchedulerStatus:
    """Point-in-time view of the scheduler."""

    queued: int
    active: int
    paused: bool
    request_count: int
    limit: int | None
    pending_retries: int = 0
    queued_by_priority: dict[str, int] = field(default_factory=dict)


class RequestScheduler:
    """Runs request coroutines in priority order under a rate limit.

    Equal-priority tasks keep FIFO order. A failed task is re-inserted by its
    original priority after ``retry_base_delay * 2**retries`` seconds (capped)
    until ``max_retries`` is exhausted, then its future receives the error.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        poll_interval: float = CONCURRENCY_POLL_INTERVAL,
        should_retry: Callable[[Exception], bool] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            rate_limiter: Quota and pacing source.
            max_concurrent: Tasks allowed in flight at once.
            retry_base_delay: Backoff base in seconds.
            max_retry_delay: Backoff cap in seconds.
            poll_interval: Wait between concurrency checks when saturated.
            should_retry: Predicate selecting retryable errors (default: all).
        """
        self._limiter = rate_limiter
        self._max_concurrent = max(1, max_concurrent)
        self._retry_base_delay = retry_base_delay
        self._max_retry_delay = max_retry_delay
        self._poll_interval = poll_interval
        self._should_retry = should_retry

        self._queue: list[RequestTask] = []
        self._active = 0
        self._paused = False
        self._ids = itertools.count(1)
        self._drive_task: asyncio.Task[None] | None = None
        self._running: set[asyncio.Task[None]] = set()
        self._retry_handles: dict[str, tuple[asyncio.TimerHandle, RequestTask]] = {}

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._limiter

    def __len__(self) -> int:
        return len(self._queue)

    def enqueue(
        self,
        executor: Callable[[], Awaitable[Any]],
        priority: RequestPriority = RequestPriority.NORMAL,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> asyncio.Future[Any]:
        """Queue a request.

        Args:
            executor: Zero-argument callable returning a fresh awaitable on
                each call (it is called again on retry).
            priority: Dispatch priority.
            max_retries: Retries allowed after the first failure.

        Returns:
            A future resolved with the executor's result, or failed with its
            last error, or with RequestCancelledError if cleared first.
        """
        loop = asyncio.get_running_loop()
        task = RequestTask(
            id=f"task-{next(self._ids)}",
            priority=priority,
            executor=executor,
            future=loop.create_future(),
            max_retries=max_retries,
        )
        self._insert_by_priority(task)
        logger.debug(
            "Queued %s (priority=%s, queue=%d)", task.id, priority.name, len(self._queue)
        )
        self._ensure_driving()
        return task.future

    def _insert_by_priority(self, task: RequestTask) -> None:
        for index, queued in enumerate(self._queue):
            if task.priority < queued.priority:
                self._queue.insert(index, task)
                return
        self._queue.append(task)

    def _ensure_driving(self) -> None:
        if self._paused or not self._queue:
            return
        if self._drive_task is None or self._drive_task.done():
            self._drive_task = asyncio.get_running_loop().create_task(self._drive())

    async def _drive(self) -> None:
        loop = asyncio.get_running_loop()
        while self._queue and not self._paused:
            if self._active >= self._max_concurrent:
                await asyncio.sleep(self._poll_interval)
                continue

            if not self._limiter.can_make_request():
                wait = self._limiter.get_wait_time()
                logger.debug(
                    "Rate limited, waiting %.1fs (%d/%s)",
                    wait,
                    self._limiter.request_count,
                    self._limiter.limit,
                )
                await asyncio.sleep(wait)
                continue

            task = self._queue.pop(0)
            if task.future.done():
                # Caller gave up on it while queued
                continue

            self._active += 1
            self._limiter.increment_counter()
            logger.debug(
                "Dispatching %s (active=%d, queue=%d)", task.id, self._active, len(self._queue)
            )
            running = loop.create_task(self._execute(task))
            self._running.add(running)
            running.add_done_callback(self._on_task_done)

    def _on_task_done(self, running: asyncio.Task[None]) -> None:
        self._running.discard(running)
        self._active -= 1

    async def _execute(self, task: RequestTask) -> None:
        delay = self._limiter.get_wait_time()
        if delay > 0:
            await asyncio.sleep(delay)

        try:
            result = await task.executor()
        except Exception as e:
            if task.future.done():
                return
            retryable = self._should_retry is None or self._should_retry(e)
            if retryable and task.retries < task.max_retries:
                task.retries += 1
                backoff = min(
                    self._retry_base_delay * (2**task.retries), self._max_retry_delay
                )
                logger.info(
                    "Retrying %s in %.1fs (attempt %d/%d): %s",
                    task.id,
                    backoff,
                    task.retries,
                    task.max_retries,
                    e,
                )
                handle = asyncio.get_running_loop().call_later(
                    backoff, self._requeue, task
                )
                self._retry_handles[task.id] = (handle, task)
            else:
                logger.error("%s failed after %d retries: %s", task.id, task.retries, e)
                task.future.set_exception(e)
            return

        if not task.future.done():
            task.future.set_result(result)

    def _requeue(self, task: RequestTask) -> None:
        self._retry_handles.pop(task.id, None)
        if task.future.done():
            return
        self._insert_by_priority(task)
        self._ensure_driving()

    def pause(self) -> None:
        """Stop dispatching new tasks. In-flight tasks run to completion."""
        if not self._paused:
            logger.info("Request scheduler paused")
            self._paused = True

    def resume(self) -> None:
        """Restart dispatching if tasks are waiting."""
        if self._paused:
            logger.info("Request scheduler resumed")
            self._paused = False
            self._ensure_driving()

    def clear(self) -> int:
        """Reject every task that has not been dispatched yet.

        Tasks waiting for a retry are rejected too. In-flight tasks are left
        alone.

        Returns:
            Number of tasks rejected.
        """
        pending = list(self._queue)
        self._queue.clear()
        for handle, task in list(self._retry_handles.values()):
            handle.cancel()
            pending.append(task)
        self._retry_handles.clear()

        for task in pending:
            if not task.future.done():
                task.future.set_exception(RequestCancelledError(f"{task.id} cancelled"))
        if pending:
            logger.info("Cleared %d queued requests", len(pending))
        return len(pending)

    def status(self) -> SchedulerStatus:
        counts: dict[str, int] = {}
        for task in self._queue:
            counts[task.priority.name] = counts.get(task.priority.name, 0) + 1
        return SchedulerStatus(
            queued=len(self._queue),
            active=self._active,
            paused=self._paused,
            request_count=self._limiter.request_count,
            limit=self._limiter.limit,
            pending_retries=len(self._retry_handles),
            queued_by_priority=counts,
        )

    async def close(self) -> None:
        """Reject queued work and wait for in-flight tasks to finish."""
        self.clear()
        if self._drive_task is not None and not self._drive_task.done():
            self._drive_task.cancel()
            try:
                await self._drive_task
            except asyncio.CancelledError:
                pass
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
