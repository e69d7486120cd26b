"""Periodic reconciliation of waiting jobs with idle workers.

Every tick moves at most one waiting job to the first idle worker. Ticks are
scheduled on a fixed interval and never wait for the previous one; in
``locked`` mode the advisory lock keeps overlapping ticks (from this or any
other instance) from handing off concurrently.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import TYPE_CHECKING, Optional

from lipsync_dispatch.main.config import Settings, get_settings
from lipsync_dispatch.main.logging import get_logger
from lipsync_dispatch.main.request_context import job_context

if TYPE_CHECKING:
    from lipsync_dispatch.blobs.blob_store import BlobStore
    from lipsync_dispatch.lipsync.comfy_client import ComfyDispatchClient
    from lipsync_dispatch.machines.prober import WorkerProber
    from lipsync_dispatch.queue.task_models import Task, WaitingTask
    from lipsync_dispatch.queue.waiting_store import WaitingStore
    from lipsync_dispatch.redis.advisory_lock import AdvisoryLock

logger = get_logger(__name__)


class SweepOutcome(str, Enum):
    LOCK_CONTENDED = "lock_contended"
    NO_IDLE_WORKER = "no_idle_worker"
    NO_WAITING_JOB = "no_waiting_job"
    DISPATCHED = "dispatched"


class WaitingQueueSweeper:
    """Drains the waiting store against workers as they free up.

    Args:
        waiting_store: Deferred jobs, oldest first.
        prober: Reports idle workers in priority order.
        blob_store: Holds the inputs of deferred jobs.
        dispatch_client: Hands a job to a worker and records the task.
        lock: Advisory lock used in ``locked`` mode.
        settings: Application settings (optional, uses global if not provided).
    """

    def __init__(
        self,
        waiting_store: WaitingStore,
        prober: WorkerProber,
        blob_store: BlobStore,
        dispatch_client: ComfyDispatchClient,
        lock: AdvisoryLock,
        settings: Settings | None = None,
    ) -> None:
        self._waiting_store = waiting_store
        self._prober = prober
        self._blob_store = blob_store
        self._dispatch_client = dispatch_client
        self._lock = lock
        self.settings = settings or get_settings()

        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._ticks: set[asyncio.Task] = set()

    async def sweep(self) -> SweepOutcome:
        if self.settings.sweep_mode == "unguarded":
            return await self.sweep_unguarded()
        return await self.sweep_locked()

    async def sweep_locked(self) -> SweepOutcome:
        """One tick serialized across instances by the advisory lock.

        The waiting entry is only removed after the hand-off succeeded. A
        failed hand-off moves it to the tail, keeping its blobs, so the jobs
        behind it get their turn; the error propagates.
        """
        async with self._lock.hold(
            self.settings.sweep_lock_key,
            ttl_ms=self.settings.sweep_lock_ttl_ms,
            retry_delay_ms=self.settings.lock_retry_delay_ms,
            max_attempts=self.settings.lock_max_attempts,
        ) as token:
            if token is None:
                logger.debug("Another instance is sweeping, skipping")
                return SweepOutcome.LOCK_CONTENDED

            waiting_task, machines = await asyncio.gather(
                self._waiting_store.peek_one(),
                self._prober.get_available_machines(),
            )
            if waiting_task is None:
                return SweepOutcome.NO_WAITING_JOB
            if not machines:
                logger.debug("No machines available, skipping")
                return SweepOutcome.NO_IDLE_WORKER

            try:
                await self._hand_off(waiting_task, machines[0])
            except Exception:
                logger.warning(
                    "Failed processing waiting task, moving it to the back of the queue",
                    extra={"tracking_id": waiting_task.id},
                )
                await self._waiting_store.move_to_tail(waiting_task.id)
                raise

            await self._waiting_store.remove(waiting_task.id)
            await self._delete_blobs(waiting_task)
            return SweepOutcome.DISPATCHED

    async def sweep_unguarded(self) -> SweepOutcome:
        """One tick for a single instance, without the lock.

        On a failed hand-off the job is re-enqueued at the tail with its blobs
        intact and the error propagates.
        """
        machines = await self._prober.get_available_machines()
        if not machines:
            logger.debug("No machines available, skipping")
            return SweepOutcome.NO_IDLE_WORKER

        waiting_task = await self._waiting_store.dequeue_one()
        if waiting_task is None:
            return SweepOutcome.NO_WAITING_JOB

        try:
            await self._hand_off(waiting_task, machines[0])
        except Exception:
            logger.warning(
                "Failed processing waiting task, re-queuing",
                extra={"tracking_id": waiting_task.id},
            )
            await self._waiting_store.requeue(waiting_task)
            raise

        await self._delete_blobs(waiting_task)
        return SweepOutcome.DISPATCHED

    async def _hand_off(self, waiting_task: WaitingTask, machine: str) -> Task:
        with job_context(tracking_id=waiting_task.id, machine=machine):
            image, audio = await asyncio.gather(
                self._blob_store.fetch(waiting_task.image_url),
                self._blob_store.fetch(waiting_task.audio_url),
            )
            task = await self._dispatch_client.dispatch(
                machine,
                image,
                audio,
                waiting_task.prompt,
                waiting_task.id,
                audio_duration_seconds=waiting_task.audio_duration_seconds,
            )
            logger.info("Processed waiting task")
            return task

    async def _delete_blobs(self, waiting_task: WaitingTask) -> None:
        results = await asyncio.gather(
            self._blob_store.delete(waiting_task.image_url),
            self._blob_store.delete(waiting_task.audio_url),
            return_exceptions=True,
        )
        for reference, result in zip((waiting_task.image_url, waiting_task.audio_url), results):
            if isinstance(result, Exception):
                logger.warning(
                    "Failed to delete blob of dispatched task",
                    extra={"tracking_id": waiting_task.id, "blob": reference, "error": str(result)},
                )

    async def _run_tick(self) -> Optional[SweepOutcome]:
        try:
            outcome = await self.sweep()
        except Exception as exc:
            logger.error(
                "Error processing waiting queue",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return None

        logger.debug("Sweep tick finished", extra={"outcome": outcome.value})
        return outcome

    async def _run_forever(self) -> None:
        interval = self.settings.sweep_interval_seconds
        while self._running:
            tick = asyncio.create_task(self._run_tick())
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)
            await asyncio.sleep(interval)

    async def start(self) -> None:
        logger.info(
            "Starting waiting queue sweep",
            extra={
                "mode": self.settings.sweep_mode,
                "interval_seconds": self.settings.sweep_interval_seconds,
            },
        )
        self._running = True
        self._loop_task = asyncio.create_task(self._run_forever())

    async def stop(self) -> None:
        logger.info("Stopping waiting queue sweep")
        self._running = False
        tasks = list(self._ticks)
        if self._loop_task is not None:
            tasks.append(self._loop_task)
            self._loop_task = None

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
