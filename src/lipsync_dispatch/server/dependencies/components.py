"""Wiring of the long-lived service objects shared by all requests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import aiohttp
from fastapi import Request

from lipsync_dispatch.blobs.blob_store import FilesystemBlobStore
from lipsync_dispatch.dispatch.service import DispatchService
from lipsync_dispatch.dispatch.sweeper import WaitingQueueSweeper
from lipsync_dispatch.dispatch.work_queue import DispatchJob, DispatchWorkQueue
from lipsync_dispatch.lipsync.comfy_client import ComfyDispatchClient
from lipsync_dispatch.lipsync.prompt import WorkflowBuilder
from lipsync_dispatch.machines.prober import WorkerProber
from lipsync_dispatch.main.aiohttp_client import aiohttp_client
from lipsync_dispatch.main.config import Settings
from lipsync_dispatch.main.exceptions import NotReadyException
from lipsync_dispatch.queue.task_store import TaskStore
from lipsync_dispatch.queue.waiting_store import WaitingStore
from lipsync_dispatch.redis.advisory_lock import AdvisoryLock
from lipsync_dispatch.redis.connection import CoordinationStore


@dataclass
class Components:
    coordination_store: CoordinationStore
    dispatch_client: ComfyDispatchClient
    work_queue: DispatchWorkQueue
    sweeper: WaitingQueueSweeper
    service: DispatchService


def build_components(settings: Settings, coordination_store: CoordinationStore) -> Components:
    task_store = TaskStore(coordination_store, collection=settings.task_collection_key)
    waiting_store = WaitingStore(coordination_store, key=settings.waiting_collection_key)
    lock = AdvisoryLock(coordination_store, prefix=settings.lock_prefix)
    prober = WorkerProber(
        settings.machines,
        timeout_seconds=settings.worker_probe_timeout_seconds,
    )
    blob_store = FilesystemBlobStore(
        settings.blob_storage_dir,
        public_base_url=settings.blob_public_base_url,
    )
    dispatch_client = ComfyDispatchClient(
        task_store,
        WorkflowBuilder(settings.workflow_template_path),
        webhook_url=settings.webhook_url,
    )

    async def _dispatch(job: DispatchJob):
        return await dispatch_client.dispatch(
            job.machine,
            job.image,
            job.audio,
            job.prompt,
            job.tracking_id,
            audio_duration_seconds=job.audio_duration_seconds,
        )

    async def _defer(job: DispatchJob) -> None:
        await service.defer(job)

    work_queue = DispatchWorkQueue(
        _dispatch,
        max_size=settings.dispatch_queue_max_size,
        defer_fn=_defer,
    )
    sweeper = WaitingQueueSweeper(
        waiting_store,
        prober,
        blob_store,
        dispatch_client,
        lock,
        settings=settings,
    )
    service = DispatchService(task_store, waiting_store, prober, blob_store, work_queue)

    return Components(
        coordination_store=coordination_store,
        dispatch_client=dispatch_client,
        work_queue=work_queue,
        sweeper=sweeper,
        service=service,
    )


def _get_components(request: Request) -> Components:
    components: Optional[Components] = getattr(request.app.state, "components", None)
    if components is None:
        raise NotReadyException("Service components are not initialized")
    return components


def get_dispatch_service(request: Request) -> DispatchService:
    return _get_components(request).service


def get_dispatch_client(request: Request) -> ComfyDispatchClient:
    return _get_components(request).dispatch_client


def get_coordination_store(request: Request) -> CoordinationStore:
    return _get_components(request).coordination_store


def get_http_session() -> aiohttp.ClientSession:
    return aiohttp_client()
