"""Bounded-concurrency task pool for file conversions.

Tasks run in worker threads (each typically waiting on an external encoder
process). The queue/running/finished registries are only touched by the
thread calling ``TaskPool.process``; completion is signalled back through
``concurrent.futures`` futures, never by tasks mutating pool state.
"""

from __future__ import annotations

from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable

from loguru import logger

from .models import PoolSnapshot, TaskStatus, ToolResult

log = logger.bind(stage="pool")

ProgressCallback = Callable[[PoolSnapshot], None]


class Task:
    """A unit of work executed by the pool.

    Subclasses implement ``run``. Raising, or returning an unsuccessful
    ToolResult, marks the task FAILED; anything else marks it SUCCEEDED.
    """

    def __init__(self) -> None:
        self.status = TaskStatus.QUEUED
        self.result: ToolResult | None = None
        self.error: BaseException | None = None

    def run(self) -> ToolResult | None:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.SUCCEEDED


class TaskPool:
    """Run up to ``max_parallel`` tasks at once in FIFO order.

    No priorities, no preemption, no retries, no cancellation: a task that
    never returns blocks ``process`` indefinitely.
    """

    def __init__(
        self,
        max_parallel: int = 1,
        poll_interval: float = 0.1,
        progress_every: int = 4,
    ) -> None:
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be >= 1, got {max_parallel}")
        self.max_parallel = max_parallel
        self.poll_interval = poll_interval
        self.progress_every = max(1, progress_every)
        self._tasks: list[Task] = []
        self._queue: deque[Task] = deque()
        self._running: dict[Future, Task] = {}
        self._finished: list[Task] = []

    def submit(self, task: Task) -> None:
        """Append a task to the pending queue."""
        task.status = TaskStatus.QUEUED
        self._tasks.append(task)
        self._queue.append(task)
        log.debug(f"Queued {task.describe()} (queued={len(self._queue)})")

    @property
    def tasks(self) -> list[Task]:
        """All submitted tasks in submission order."""
        return list(self._tasks)

    @property
    def queued(self) -> list[Task]:
        return list(self._queue)

    @property
    def running(self) -> list[Task]:
        return list(self._running.values())

    @property
    def finished(self) -> list[Task]:
        return list(self._finished)

    def snapshot(self) -> PoolSnapshot:
        return PoolSnapshot(
            queued=len(self._queue),
            running=len(self._running),
            finished=len(self._finished),
            total=len(self._tasks),
        )

    def process(self, progress: ProgressCallback | None = None) -> list[Task]:
        """Run every submitted task to a terminal state.

        Starts tasks while fewer than ``max_parallel`` are running, polls
        for completion every ``poll_interval`` seconds, and reports a
        snapshot to ``progress`` every ``progress_every`` polls plus once
        after the last task finishes. Returns the tasks in submission order.
        """
        if not self._queue and not self._running:
            if progress:
                progress(self.snapshot())
            return self.tasks

        log.info(
            f"Processing {len(self._queue)} tasks, max_parallel={self.max_parallel}"
        )
        polls = 0
        with ThreadPoolExecutor(
            max_workers=self.max_parallel, thread_name_prefix="task"
        ) as executor:
            while self._queue or self._running:
                while self._queue and len(self._running) < self.max_parallel:
                    task = self._queue.popleft()
                    task.status = TaskStatus.RUNNING
                    self._running[executor.submit(task.run)] = task
                    log.debug(
                        f"Started {task.describe()} "
                        f"(running={len(self._running)}/{self.max_parallel})"
                    )

                done, _ = wait(
                    list(self._running),
                    timeout=self.poll_interval,
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    self._complete(self._running.pop(future), future)

                polls += 1
                if progress and polls % self.progress_every == 0:
                    progress(self.snapshot())

        if progress:
            progress(self.snapshot())

        failed = sum(1 for t in self._finished if not t.succeeded)
        log.info(f"Pool finished: {len(self._finished)} tasks, {failed} failed")
        return self.tasks

    def _complete(self, task: Task, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            task.error = exc
            task.status = TaskStatus.FAILED
            log.error(f"{task.describe()} raised: {exc}")
        else:
            task.result = future.result()
            if task.result is not None and not task.result.success:
                task.status = TaskStatus.FAILED
                log.error(f"{task.describe()} failed: {task.result.diagnostic[-500:]}")
            else:
                task.status = TaskStatus.SUCCEEDED
                log.debug(f"{task.describe()} succeeded")
        self._finished.append(task)
