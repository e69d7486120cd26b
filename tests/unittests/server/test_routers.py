"""HTTP boundary tests using httpx against the ASGI app with mocked services."""

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from httpx import ASGITransport, AsyncClient

from lipsync_dispatch.lipsync.comfy_client import view_url
from lipsync_dispatch.main.exceptions import ErrorCodes
from lipsync_dispatch.queue.task_models import (
    CompletedTaskView,
    SubmissionReceipt,
    Task,
    TaskStatus,
    TrackingStatus,
)
from lipsync_dispatch.server.dependencies.components import Components, get_http_session
from lipsync_dispatch.server.main import get_application


def _upstream(status=200, body=b"video-bytes", content_type="video/mp4"):
    response = MagicMock()
    response.status = status
    response.read = AsyncMock(return_value=body)
    response.headers = {"Content-Type": content_type}
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


@pytest.fixture
def service():
    service = MagicMock()
    service.submit = AsyncMock(
        return_value=SubmissionReceipt(tracking_id="track-1", status="processing")
    )
    service.status = AsyncMock(return_value=TrackingStatus.NOT_FOUND)
    service.mark_completed = AsyncMock(return_value=True)
    service.list_completed = AsyncMock(return_value=[])
    service.get_task = AsyncMock(return_value=None)
    return service


@pytest.fixture
def coordination_store():
    store = MagicMock()
    store.ping = AsyncMock(return_value=True)
    return store


@pytest.fixture
def http_session():
    session = MagicMock()
    session.get = MagicMock(return_value=_upstream())
    return session


@pytest.fixture
def app(service, coordination_store, http_session):
    app = get_application()
    dispatch_client = MagicMock()
    dispatch_client.view_url = MagicMock(side_effect=view_url)
    app.state.components = Components(
        coordination_store=coordination_store,
        dispatch_client=dispatch_client,
        work_queue=MagicMock(),
        sweeper=MagicMock(),
        service=service,
    )
    app.dependency_overrides[get_http_session] = lambda: http_session
    return app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


FILES = {
    "image": ("face.png", b"png-bytes", "image/png"),
    "audio": ("voice.wav", b"wav-bytes", "audio/wav"),
}


class TestGenerate:
    @pytest.mark.asyncio
    async def test_generate_submits_job(self, client, service):
        response = await client.post(
            "/generate",
            files=FILES,
            data={"prompt": "a person talking", "audio_duration_seconds": "4.5"},
        )

        assert response.status_code == 200
        assert response.json() == {"tracking_id": "track-1", "status": "processing"}

        job_input = service.submit.await_args.args[0]
        assert job_input.prompt == "a person talking"
        assert job_input.image.name == "face.png"
        assert job_input.image.data == b"png-bytes"
        assert job_input.audio.content_type == "audio/wav"
        assert job_input.audio_duration_seconds == 4.5

    @pytest.mark.asyncio
    async def test_missing_fields_return_400(self, client, service):
        response = await client.post("/generate", files={"image": FILES["image"]}, data={"prompt": "p"})

        assert response.status_code == 400
        assert response.json()["lipsync_error_code"] == ErrorCodes.BAD_REQUEST
        service.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deferred_job_still_returns_tracking_id(self, client, service):
        service.submit.return_value = SubmissionReceipt(
            tracking_id="track-2", status="waiting_for_free_machine"
        )

        response = await client.post("/generate", files=FILES, data={"prompt": "p"})

        assert response.status_code == 200
        assert response.json() == {
            "tracking_id": "track-2",
            "status": "waiting_for_free_machine",
        }


class TestTracking:
    @pytest.mark.asyncio
    async def test_unknown_tracking_id_returns_404(self, client):
        response = await client.get("/tracking/nope")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_waiting_job_reports_still_waiting(self, client, service):
        service.status.return_value = TrackingStatus.WAITING

        response = await client.get("/tracking/track-1")

        assert response.json() == {
            "tracking_id": "track-1",
            "status": "still_waiting_for_free_machine",
        }

    @pytest.mark.asyncio
    async def test_dispatched_job_reports_task_status(self, client, service):
        service.status.return_value = TrackingStatus.PENDING

        response = await client.get("/tracking/track-1")

        assert response.json()["status"] == "pending"


class TestWebhook:
    @pytest.mark.asyncio
    async def test_webhook_marks_task_completed(self, client, service):
        response = await client.post(
            "/webhook",
            json={
                "tracking_id": "track-1",
                "video_path": "/comfy/output/v.mp4",
                "status": "completed",
            },
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        service.mark_completed.assert_awaited_once_with("track-1", "/comfy/output/v.mp4")

    @pytest.mark.asyncio
    async def test_webhook_accepts_plain_text_body(self, client, service):
        response = await client.post(
            "/webhook",
            content='{"video_path": "/comfy/output/v.mp4", "status": "completed", "tracking_id": "track-1"}',
            headers={"Content-Type": "text/plain"},
        )

        assert response.status_code == 200
        service.mark_completed.assert_awaited_once_with("track-1", "/comfy/output/v.mp4")

    @pytest.mark.asyncio
    async def test_invalid_webhook_body_returns_400(self, client, service):
        response = await client.post("/webhook", content="not json")

        assert response.status_code == 400
        service.mark_completed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_webhook_for_unknown_task_returns_404(self, client, service):
        service.mark_completed.return_value = False

        response = await client.post(
            "/webhook", json={"tracking_id": "nope", "video_path": "/comfy/output/v.mp4"}
        )

        assert response.status_code == 404


class TestDownload:
    @pytest.mark.asyncio
    async def test_unfinished_task_returns_404(self, client, service):
        service.get_task.return_value = Task(
            prompt_id="p",
            tracking_id="track-1",
            machine="http://worker-a:8188",
            image_path="i",
            audio_path="a",
            prompt="p",
        )

        response = await client.get("/download/track-1")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_proxies_video_from_worker(self, client, service, http_session):
        service.get_task.return_value = Task(
            prompt_id="p",
            tracking_id="track-1",
            machine="http://worker-a:8188",
            status=TaskStatus.COMPLETED,
            image_path="i",
            audio_path="a",
            generated_video_path="/comfy/output/lipsync/v.mp4",
            prompt="p",
        )

        response = await client.get("/download/track-1")

        assert response.status_code == 200
        assert response.content == b"video-bytes"
        assert response.headers["content-type"] == "video/mp4"
        assert response.headers["content-disposition"] == 'attachment; filename="track-1.mp4"'
        http_session.get.assert_called_once_with(
            "http://worker-a:8188/view?filename=v.mp4&type=output&subfolder=lipsync"
        )

    @pytest.mark.asyncio
    async def test_upstream_failure_returns_502(self, client, service, http_session):
        service.get_task.return_value = Task(
            prompt_id="p",
            tracking_id="track-1",
            machine="http://worker-a:8188",
            status=TaskStatus.COMPLETED,
            image_path="i",
            audio_path="a",
            generated_video_path="/comfy/output/v.mp4",
            prompt="p",
        )
        http_session.get.side_effect = aiohttp.ClientConnectionError("refused")

        response = await client.get("/download/track-1")

        assert response.status_code == 502


class TestCompletedTasks:
    @pytest.mark.asyncio
    async def test_lists_completed_tasks_with_count(self, client, service):
        service.list_completed.return_value = [
            CompletedTaskView(
                tracking_id="track-1",
                machine="http://worker-a:8188",
                prompt="p",
                audio_length_seconds=90.0,
                audio_length_formatted="1m 30s",
                processing_time_ms=8500,
                processing_time_formatted="8.5s",
            )
        ]

        response = await client.get("/tasks/completed")

        body = response.json()
        assert body["count"] == 1
        assert body["tasks"][0]["tracking_id"] == "track-1"
        assert body["tasks"][0]["audio_length_formatted"] == "1m 30s"


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, client):
        response = await client.get("/healthz")

        assert response.status_code == 200
        assert response.json()["status"] == "HEALTHY"

    @pytest.mark.asyncio
    async def test_unreachable_store_returns_503(self, client, coordination_store):
        coordination_store.ping.side_effect = ConnectionError("down")

        response = await client.get("/healthz")

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_not_initialized_returns_503(self, app, client):
        app.state.components = None

        response = await client.get("/healthz")

        assert response.status_code == 503
        assert response.json()["lipsync_error_code"] == ErrorCodes.NOT_READY
