"""Bounded in-process queue for immediate dispatches.

One consumer task hands jobs to workers in submission order. Each submission
gets a future that resolves with the recorded task or the dispatch error, so
failures are never silently dropped. Jobs still queued when the queue stops
are handed to ``defer_fn`` instead of being lost.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from lipsync_dispatch.blobs.blob_store import Blob
from lipsync_dispatch.main.exceptions import DispatchError, DispatchQueueFull
from lipsync_dispatch.main.logging import get_logger
from lipsync_dispatch.main.request_context import job_context
from lipsync_dispatch.queue.task_models import Task

logger = get_logger(__name__)


@dataclass(frozen=True)
class DispatchJob:
    tracking_id: str
    machine: str
    image: Blob
    audio: Blob
    prompt: str
    audio_duration_seconds: Optional[float] = None


DispatchFn = Callable[[DispatchJob], Awaitable[Task]]
DeferFn = Callable[[DispatchJob], Awaitable[None]]


class DispatchWorkQueue:
    """Runs direct dispatches one at a time in a background task."""

    def __init__(
        self,
        dispatch_fn: DispatchFn,
        max_size: int = 100,
        defer_fn: Optional[DeferFn] = None,
    ):
        self._dispatch_fn = dispatch_fn
        self._defer_fn = defer_fn
        self._queue: asyncio.Queue[tuple[DispatchJob, asyncio.Future]] = asyncio.Queue(
            maxsize=max_size
        )
        # tracking_id -> target machine
        self._in_flight: dict[str, str] = {}
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def is_in_flight(self, tracking_id: str) -> bool:
        return tracking_id in self._in_flight

    def reserved_machines(self) -> set[str]:
        """Machines that a queued or running job is about to occupy."""
        return set(self._in_flight.values())

    def submit(self, job: DispatchJob) -> asyncio.Future:
        """Queue ``job`` without waiting for it.

        Raises:
            DispatchQueueFull: ``max_size`` jobs are already waiting.
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        try:
            self._queue.put_nowait((job, future))
        except asyncio.QueueFull as exc:
            raise DispatchQueueFull(
                f"Dispatch queue is full ({self._queue.maxsize} jobs waiting)"
            ) from exc

        self._in_flight[job.tracking_id] = job.machine
        return future

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._worker_loop())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        while not self._queue.empty():
            job, future = self._queue.get_nowait()
            try:
                await self._hand_back(job, future)
            finally:
                self._in_flight.pop(job.tracking_id, None)

    async def _hand_back(self, job: DispatchJob, future: asyncio.Future) -> None:
        """Resolve a job that never reached a worker."""
        if self._defer_fn is None:
            if not future.done():
                future.set_exception(DispatchError("Dispatch queue stopped", machine=job.machine))
            return

        with job_context(tracking_id=job.tracking_id, machine=job.machine):
            try:
                await self._defer_fn(job)
            except Exception as exc:
                logger.error(
                    "Failed to defer undelivered dispatch",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                )
                if not future.done():
                    future.set_exception(exc)
                return

            logger.info("Undelivered dispatch moved to waiting queue")
            if not future.done():
                future.cancel()

    async def _worker_loop(self) -> None:
        """Process jobs one at a time from the queue."""
        while self._running:
            job, future = await self._queue.get()
            try:
                await self._process(job, future)
            finally:
                self._queue.task_done()

    async def _process(self, job: DispatchJob, future: asyncio.Future) -> None:
        with job_context(tracking_id=job.tracking_id, machine=job.machine):
            try:
                task = await self._dispatch_fn(job)
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                raise
            except Exception as exc:
                logger.error(
                    "Background generation failed",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                )
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(task)
            finally:
                self._in_flight.pop(job.tracking_id, None)
