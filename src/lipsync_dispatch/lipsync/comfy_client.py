"""Hand jobs to ComfyUI worker machines."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable
from urllib.parse import urlencode

import aiohttp

from lipsync_dispatch.main.aiohttp_client import aiohttp_client
from lipsync_dispatch.main.exceptions import DispatchError
from lipsync_dispatch.main.logging import get_logger
from lipsync_dispatch.queue.task_models import Task, TaskStatus

if TYPE_CHECKING:
    from lipsync_dispatch.blobs.blob_store import Blob
    from lipsync_dispatch.lipsync.prompt import WorkflowBuilder
    from lipsync_dispatch.queue.task_store import TaskStore

logger = get_logger(__name__)

OUTPUT_MARKER = "/output/"


def view_url(output_path: str, machine: str) -> str:
    """Build the worker's ``/view`` URL for a file under its output directory.

    Raises:
        ValueError: ``output_path`` does not contain ``/output/``.
    """
    idx = output_path.find(OUTPUT_MARKER)
    if idx == -1:
        raise ValueError(f"Unexpected video_path: {output_path}")

    relative = output_path[idx + len(OUTPUT_MARKER) :]
    subfolder, _, filename = relative.rpartition("/")

    params = urlencode({"filename": filename, "type": "output", "subfolder": subfolder})
    return f"{machine}/view?{params}"


class ComfyDispatchClient:
    """Uploads inputs, queues the lipsync workflow and records the task.

    Args:
        task_store: Where the dispatched task is recorded.
        workflow_builder: Produces the workflow for one job.
        webhook_url: Callback the worker posts to when the video is saved.
        session_provider: Returns the shared aiohttp session.
    """

    def __init__(
        self,
        task_store: TaskStore,
        workflow_builder: WorkflowBuilder,
        webhook_url: str,
        session_provider: Callable[[], aiohttp.ClientSession] = aiohttp_client,
    ) -> None:
        self._task_store = task_store
        self._workflow_builder = workflow_builder
        self._webhook_url = webhook_url
        self._session_provider = session_provider

    async def upload_file(self, machine: str, blob: Blob) -> str:
        """Upload one input file and return the name the worker stored it under."""
        form = aiohttp.FormData()
        form.add_field("image", blob.data, filename=blob.name, content_type=blob.content_type)
        form.add_field("overwrite", "true")

        session = self._session_provider()
        async with session.post(f"{machine}/upload/image", data=form) as response:
            if response.status != 200:
                raise DispatchError(
                    f"Failed to upload file: {response.status} {response.reason}",
                    machine=machine,
                )
            result = await response.json(content_type=None)

        logger.debug(
            "File uploaded to worker",
            extra={"machine": machine, "file_name": result["name"]},
        )
        return result["name"]

    async def _queue_prompt(self, machine: str, workflow: dict) -> str:
        session = self._session_provider()
        async with session.post(f"{machine}/prompt", json={"prompt": workflow}) as response:
            if response.status != 200:
                body = await response.text()
                raise DispatchError(
                    f"Worker rejected prompt: {response.status} {body}",
                    machine=machine,
                )
            result = await response.json(content_type=None)

        prompt_id = result.get("prompt_id") if isinstance(result, dict) else None
        if not prompt_id:
            raise DispatchError("Worker response had no prompt_id", machine=machine)
        return prompt_id

    async def dispatch(
        self,
        machine: str,
        image: Blob,
        audio: Blob,
        prompt: str,
        tracking_id: str,
        audio_duration_seconds: float | None = None,
    ) -> Task:
        """Submit one job to ``machine`` and append its pending task.

        Completion arrives later through the webhook.

        Raises:
            DispatchError: Upload, prompt submission or the task append failed.
        """
        try:
            image_name, audio_name = await asyncio.gather(
                self.upload_file(machine, image),
                self.upload_file(machine, audio),
            )
            workflow = self._workflow_builder.build(
                audio_filename=audio_name,
                image_filename=image_name,
                positive_prompt=prompt,
                tracking_id=tracking_id,
                webhook_url=self._webhook_url,
            )
            prompt_id = await self._queue_prompt(machine, workflow)
        except DispatchError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, TypeError, ValueError) as exc:
            raise DispatchError(f"Dispatch to {machine} failed: {exc}", machine=machine) from exc

        task = Task(
            prompt_id=prompt_id,
            tracking_id=tracking_id,
            machine=machine,
            status=TaskStatus.PENDING,
            image_path=image_name,
            audio_path=audio_name,
            prompt=prompt,
            audio_length_bytes=audio.size,
            audio_duration_seconds=audio_duration_seconds,
            created_at=datetime.now(timezone.utc),
        )
        if not await self._task_store.append(task):
            raise DispatchError(
                f"Task {tracking_id} already recorded, refusing duplicate dispatch",
                machine=machine,
            )

        logger.info(
            "Job dispatched to worker",
            extra={"tracking_id": tracking_id, "machine": machine, "prompt_id": prompt_id},
        )
        return task

    def view_url(self, output_path: str, machine: str) -> str:
        return view_url(output_path, machine)
