"""Task store behaviour against Redis."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from lipsync_dispatch.queue.task_models import Task, TaskStatus
from lipsync_dispatch.queue.task_store import TaskStore

CREATED = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _task(tracking_id: str, **overrides) -> Task:
    values = dict(
        prompt_id=f"prompt-{tracking_id}",
        tracking_id=tracking_id,
        machine="http://worker-a:8188",
        image_path=f"{tracking_id}.png",
        audio_path=f"{tracking_id}.wav",
        prompt="a person talking",
        created_at=CREATED,
    )
    values.update(overrides)
    return Task(**values)


@pytest.mark.asyncio
@pytest.mark.integration
class TestTaskStore:
    async def test_append_and_get(self, task_store):
        assert await task_store.append(_task("a")) is True

        stored = await task_store.get("a")

        assert stored == _task("a")

    async def test_get_unknown_returns_none(self, task_store):
        assert await task_store.get("missing") is None

    async def test_append_refuses_duplicate_tracking_id(self, task_store):
        await task_store.append(_task("a"))

        assert await task_store.append(_task("a", prompt="other")) is False
        assert (await task_store.get("a")).prompt == "a person talking"
        assert [task.tracking_id for task in await task_store.list_all()] == ["a"]

    async def test_append_stamps_created_at_when_missing(self, coordination_store, test_settings):
        store = TaskStore(
            coordination_store,
            collection=test_settings.task_collection_key,
            clock=lambda: CREATED,
        )

        await store.append(_task("a", created_at=None))

        assert (await store.get("a")).created_at == CREATED

    async def test_updates_preserve_other_records_and_order(self, task_store):
        for tracking_id in ("a", "b", "c"):
            await task_store.append(_task(tracking_id))
        before = {task.tracking_id: task for task in await task_store.list_all()}

        assert await task_store.set_status("b", TaskStatus.COMPLETED) is True
        assert await task_store.set_output_path("b", "/comfy/output/b.mp4") is True

        tasks = await task_store.list_all()
        assert [task.tracking_id for task in tasks] == ["a", "b", "c"]
        updated = tasks[1]
        assert updated.status == TaskStatus.COMPLETED
        assert updated.generated_video_path == "/comfy/output/b.mp4"
        assert updated.completed_at is not None
        assert tasks[0] == before["a"]
        assert tasks[2] == before["c"]

    async def test_updates_on_unknown_tracking_id_return_false(self, task_store):
        assert await task_store.set_status("missing", TaskStatus.RUNNING) is False
        assert await task_store.set_output_path("missing", "/x") is False
        assert await task_store.mark_completed("missing", "/x") is False
        assert await task_store.list_all() == []

    async def test_mark_completed_computes_duration_once(self, coordination_store, test_settings):
        now = [CREATED + timedelta(seconds=30)]
        store = TaskStore(
            coordination_store,
            collection=test_settings.task_collection_key,
            clock=lambda: now[0],
        )
        await store.append(_task("a"))

        assert await store.mark_completed("a", "/comfy/output/a.mp4") is True
        first = await store.get("a")

        now[0] = CREATED + timedelta(minutes=5)
        assert await store.mark_completed("a", "/comfy/output/a.mp4") is True
        second = await store.get("a")

        assert first.time_to_complete_ms == 30_000
        assert second == first

    async def test_concurrent_updates_do_not_lose_writes(self, task_store):
        for tracking_id in ("a", "b", "c", "d"):
            await task_store.append(_task(tracking_id))

        await asyncio.gather(
            task_store.mark_completed("a", "/out/a.mp4"),
            task_store.mark_completed("b", "/out/b.mp4"),
            task_store.set_status("c", TaskStatus.RUNNING),
            task_store.set_output_path("d", "/out/d.mp4"),
        )

        tasks = {task.tracking_id: task for task in await task_store.list_all()}
        assert tasks["a"].generated_video_path == "/out/a.mp4"
        assert tasks["b"].status == TaskStatus.COMPLETED
        assert tasks["c"].status == TaskStatus.RUNNING
        assert tasks["d"].generated_video_path == "/out/d.mp4"

    async def test_malformed_record_is_skipped(self, task_store, coordination_store, test_settings):
        await task_store.append(_task("a"))
        records_key = f"{test_settings.task_collection_key}:records"
        order_key = f"{test_settings.task_collection_key}:order"
        await coordination_store.client.hset(records_key, "broken", "{not json")
        await coordination_store.client.rpush(order_key, "broken", "ghost")
        await task_store.append(_task("b"))

        assert [task.tracking_id for task in await task_store.list_all()] == ["a", "b"]
        assert await task_store.get("broken") is None
