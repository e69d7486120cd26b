from typing import Optional

import aiohttp
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, ValidationError

from lipsync_dispatch.blobs.blob_store import DEFAULT_CONTENT_TYPE, Blob
from lipsync_dispatch.dispatch.service import DispatchService, JobInput
from lipsync_dispatch.lipsync.comfy_client import ComfyDispatchClient
from lipsync_dispatch.main.exceptions import (
    BadRequestException,
    NotFoundException,
    UpstreamWorkerError,
)
from lipsync_dispatch.main.logging import get_logger
from lipsync_dispatch.queue.task_models import (
    CompletedTaskView,
    SubmissionReceipt,
    TrackingStatus,
)
from lipsync_dispatch.server import responses
from lipsync_dispatch.server.dependencies.components import (
    get_dispatch_client,
    get_dispatch_service,
    get_http_session,
)

logger = get_logger(__name__)

router = APIRouter()

STILL_WAITING = "still_waiting_for_free_machine"


class TrackingResponse(BaseModel):
    tracking_id: str
    status: str


class WebhookPayload(BaseModel):
    tracking_id: str
    video_path: str
    status: Optional[str] = None


class WebhookResponse(BaseModel):
    status: str = "ok"


class CompletedTasksResponse(BaseModel):
    count: int
    tasks: list[CompletedTaskView]


async def _read_upload(upload: UploadFile, fallback_name: str) -> Blob:
    return Blob(
        name=upload.filename or fallback_name,
        data=await upload.read(),
        content_type=upload.content_type or DEFAULT_CONTENT_TYPE,
    )


@router.post(
    "/generate",
    response_model=SubmissionReceipt,
    responses=responses.get_responses([400, 503]),
)
async def generate(
    image: Optional[UploadFile] = File(None),
    audio: Optional[UploadFile] = File(None),
    prompt: Optional[str] = Form(None),
    audio_duration_seconds: Optional[float] = Form(None),
    service: DispatchService = Depends(get_dispatch_service),
):
    if image is None or audio is None or not prompt:
        raise BadRequestException("Missing required fields: image, audio, or prompt")

    logger.info(
        "Received new generation request",
        extra={"image": image.filename, "audio": audio.filename},
    )

    job_input = JobInput(
        image=await _read_upload(image, "image.bin"),
        audio=await _read_upload(audio, "audio.bin"),
        prompt=prompt,
        audio_duration_seconds=audio_duration_seconds,
    )
    return await service.submit(job_input)


@router.get(
    "/tracking/{tracking_id}",
    response_model=TrackingResponse,
    responses=responses.get_responses([404]),
)
async def get_tracking_status(
    tracking_id: str,
    service: DispatchService = Depends(get_dispatch_service),
):
    status = await service.status(tracking_id)

    if status == TrackingStatus.NOT_FOUND:
        raise NotFoundException("Unknown tracking_id")

    if status == TrackingStatus.WAITING:
        return TrackingResponse(tracking_id=tracking_id, status=STILL_WAITING)

    return TrackingResponse(tracking_id=tracking_id, status=status.value)


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    responses=responses.get_responses([400, 404]),
)
async def webhook(
    request: Request,
    service: DispatchService = Depends(get_dispatch_service),
):
    # The worker posts its request_body template, not always as application/json
    try:
        payload = WebhookPayload.model_validate_json(await request.body())
    except ValidationError as exc:
        raise BadRequestException(f"Invalid webhook payload: {exc}") from exc

    logger.info(
        "Webhook received",
        extra={"tracking_id": payload.tracking_id, "video_path": payload.video_path},
    )

    if not await service.mark_completed(payload.tracking_id, payload.video_path):
        raise NotFoundException("Unknown tracking_id")

    return WebhookResponse()


@router.get(
    "/download/{tracking_id}",
    response_class=Response,
    responses=responses.get_responses([404, 502]),
)
async def download(
    tracking_id: str,
    service: DispatchService = Depends(get_dispatch_service),
    dispatch_client: ComfyDispatchClient = Depends(get_dispatch_client),
    session: aiohttp.ClientSession = Depends(get_http_session),
):
    task = await service.get_task(tracking_id)
    if task is None or not task.generated_video_path:
        raise NotFoundException("Unknown tracking_id or not finished yet")

    try:
        url = dispatch_client.view_url(task.generated_video_path, task.machine)
    except ValueError as exc:
        raise UpstreamWorkerError(str(exc)) from exc

    logger.info(
        "Proxying download",
        extra={"tracking_id": tracking_id, "machine": task.machine, "url": url},
    )

    try:
        async with session.get(url) as upstream:
            if upstream.status != 200:
                logger.error(
                    "Worker download failed",
                    extra={"tracking_id": tracking_id, "status_code": upstream.status},
                )
                raise UpstreamWorkerError("Failed to fetch video from worker")
            content = await upstream.read()
            content_type = upstream.headers.get("Content-Type", "video/mp4")
    except aiohttp.ClientError as exc:
        raise UpstreamWorkerError(f"Failed to fetch video from worker: {exc}") from exc

    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": f'attachment; filename="{tracking_id}.mp4"'},
    )


@router.get("/tasks/completed", response_model=CompletedTasksResponse)
async def list_completed_tasks(
    service: DispatchService = Depends(get_dispatch_service),
):
    tasks = await service.list_completed()
    return CompletedTasksResponse(count=len(tasks), tasks=tasks)
