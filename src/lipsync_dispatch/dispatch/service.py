"""Entry point used by the HTTP layer: submit, track and complete jobs."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional
from uuid import uuid4

from lipsync_dispatch.blobs.blob_store import Blob
from lipsync_dispatch.dispatch.work_queue import DispatchJob
from lipsync_dispatch.main.exceptions import DispatchQueueFull
from lipsync_dispatch.main.logging import get_logger
from lipsync_dispatch.queue.task_models import (
    CompletedTaskView,
    SubmissionReceipt,
    Task,
    TaskStatus,
    TrackingStatus,
    WaitingTaskInput,
)
from lipsync_dispatch.utils.formatting import (
    format_milliseconds_human,
    format_seconds_human,
)

if TYPE_CHECKING:
    from lipsync_dispatch.blobs.blob_store import BlobStore
    from lipsync_dispatch.dispatch.work_queue import DispatchWorkQueue
    from lipsync_dispatch.machines.prober import WorkerProber
    from lipsync_dispatch.queue.task_store import TaskStore
    from lipsync_dispatch.queue.waiting_store import WaitingStore

logger = get_logger(__name__)

STATUS_PROCESSING = "processing"
STATUS_WAITING = "waiting_for_free_machine"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class JobInput:
    image: Blob
    audio: Blob
    prompt: str
    audio_duration_seconds: Optional[float] = None
    tracking_id: Optional[str] = None


def blob_name(tracking_id: str, file_name: str, fallback: str) -> str:
    """Storage name for a deferred input, unique per job."""
    cleaned = _UNSAFE_NAME_CHARS.sub("_", file_name).strip("._") or fallback
    return f"{tracking_id}-{cleaned}"


def _consume_dispatch_result(future: asyncio.Future) -> None:
    # The work queue already logged failures; retrieve so asyncio stays quiet
    if not future.cancelled():
        future.exception()


class DispatchService:
    def __init__(
        self,
        task_store: TaskStore,
        waiting_store: WaitingStore,
        prober: WorkerProber,
        blob_store: BlobStore,
        work_queue: DispatchWorkQueue,
    ) -> None:
        self._task_store = task_store
        self._waiting_store = waiting_store
        self._prober = prober
        self._blob_store = blob_store
        self._work_queue = work_queue

    async def submit(self, job_input: JobInput) -> SubmissionReceipt:
        """Dispatch to the first idle worker, or defer until one frees up.

        Workers already targeted by a queued direct dispatch are skipped; they
        still report idle until that job's upload lands. Returns as soon as
        the job is queued for dispatch or stored as waiting; the outcome of a
        direct dispatch is only logged.
        """
        tracking_id = job_input.tracking_id or str(uuid4())
        available = await self._prober.get_available_machines()
        reserved = self._work_queue.reserved_machines()
        machines = [machine for machine in available if machine not in reserved]

        if machines:
            try:
                future = self._work_queue.submit(
                    DispatchJob(
                        tracking_id=tracking_id,
                        machine=machines[0],
                        image=job_input.image,
                        audio=job_input.audio,
                        prompt=job_input.prompt,
                        audio_duration_seconds=job_input.audio_duration_seconds,
                    )
                )
            except DispatchQueueFull:
                logger.warning(
                    "Dispatch queue full, deferring job",
                    extra={"tracking_id": tracking_id},
                )
            else:
                future.add_done_callback(_consume_dispatch_result)
                logger.info(
                    "Generation started",
                    extra={"tracking_id": tracking_id, "machine": machines[0]},
                )
                return SubmissionReceipt(tracking_id=tracking_id, status=STATUS_PROCESSING)

        await self._defer(tracking_id, job_input)
        return SubmissionReceipt(tracking_id=tracking_id, status=STATUS_WAITING)

    async def defer(self, job: DispatchJob) -> None:
        """Store a direct dispatch that never reached its worker as waiting."""
        await self._defer(job.tracking_id, job)

    async def _defer(self, tracking_id: str, job: JobInput | DispatchJob) -> None:
        image_url, audio_url = await asyncio.gather(
            self._blob_store.upload(
                Blob(
                    name=blob_name(tracking_id, job.image.name, "image.bin"),
                    data=job.image.data,
                    content_type=job.image.content_type,
                )
            ),
            self._blob_store.upload(
                Blob(
                    name=blob_name(tracking_id, job.audio.name, "audio.bin"),
                    data=job.audio.data,
                    content_type=job.audio.content_type,
                )
            ),
        )
        await self._waiting_store.enqueue(
            WaitingTaskInput(
                id=tracking_id,
                image_url=image_url,
                audio_url=audio_url,
                prompt=job.prompt,
                audio_duration_seconds=job.audio_duration_seconds,
            )
        )
        logger.info("Waiting task added to queue", extra={"tracking_id": tracking_id})

    async def status(self, tracking_id: str) -> TrackingStatus:
        if await self._waiting_store.find_by_id(tracking_id) is not None:
            return TrackingStatus.WAITING

        task = await self._task_store.get(tracking_id)
        if task is not None:
            return TrackingStatus(task.status.value)

        # Accepted for direct dispatch but not recorded yet
        if self._work_queue.is_in_flight(tracking_id):
            return TrackingStatus.PENDING

        return TrackingStatus.NOT_FOUND

    async def get_task(self, tracking_id: str) -> Task | None:
        return await self._task_store.get(tracking_id)

    async def mark_completed(self, tracking_id: str, output_path: str) -> bool:
        completed = await self._task_store.mark_completed(tracking_id, output_path)
        if completed:
            logger.info(
                "Task completed",
                extra={"tracking_id": tracking_id, "video_path": output_path},
            )
        return completed

    async def list_completed(self) -> list[CompletedTaskView]:
        tasks = await self._task_store.list_all()
        return [
            CompletedTaskView(
                tracking_id=task.tracking_id,
                machine=task.machine,
                prompt=task.prompt,
                created_at=task.created_at,
                completed_at=task.completed_at,
                audio_length_seconds=task.audio_duration_seconds,
                audio_length_formatted=format_seconds_human(task.audio_duration_seconds),
                processing_time_ms=task.time_to_complete_ms,
                processing_time_formatted=format_milliseconds_human(task.time_to_complete_ms),
            )
            for task in tasks
            if task.status == TaskStatus.COMPLETED
        ]
