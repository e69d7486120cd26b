"""Holding area for jobs deferred because no worker was free.

A single Redis list used as a FIFO: ``enqueue`` appends to the tail, the sweep
takes from the head. A job whose hand-off failed goes back to the tail, so it
never holds up the jobs behind it. Entries hold blob references, never the
blobs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import uuid4

from pydantic import ValidationError

from lipsync_dispatch.main.logging import get_logger
from lipsync_dispatch.queue.task_models import WaitingTask, WaitingTaskInput
from lipsync_dispatch.redis.lua_scripts import LuaScripts

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from lipsync_dispatch.redis.connection import CoordinationStore

logger = get_logger(__name__)


class WaitingStore:
    """FIFO queue of waiting tasks.

    Args:
        store: Coordination store handle.
        key: Redis list holding serialized waiting tasks, head = oldest.
    """

    def __init__(self, store: CoordinationStore, key: str = "waiting_queue") -> None:
        self._store = store
        self._key = key

    @staticmethod
    def _parse(raw: bytes | str) -> WaitingTask | None:
        try:
            return WaitingTask.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning(
                "Skipping invalid waiting task entry",
                extra={"error": str(exc)},
            )
            return None

    async def _read_all(self) -> list[tuple[bytes, WaitingTask]]:
        """Return (raw_bytes, task) pairs in queue order.

        Raw bytes are kept for exact LREM matching.
        """
        raw_entries = await self._store.run(
            "read_waiting_queue",
            lambda redis: redis.lrange(self._key, 0, -1),
        )
        entries = []
        for raw in raw_entries:
            task = self._parse(raw)
            if task is not None:
                entries.append((raw, task))
        return entries

    async def enqueue(self, waiting_input: WaitingTaskInput) -> WaitingTask:
        waiting_task = WaitingTask(
            id=waiting_input.id or str(uuid4()),
            image_url=waiting_input.image_url,
            audio_url=waiting_input.audio_url,
            prompt=waiting_input.prompt,
            audio_duration_seconds=waiting_input.audio_duration_seconds,
        )
        payload = waiting_task.model_dump_json()
        await self._store.run(
            "enqueue_waiting_task",
            lambda redis: redis.rpush(self._key, payload),
        )
        logger.debug(
            "Waiting task added to queue",
            extra={"tracking_id": waiting_task.id},
        )
        return waiting_task

    async def requeue(self, waiting_task: WaitingTask) -> None:
        """Put a task back at the tail of the queue, unchanged."""
        payload = waiting_task.model_dump_json()
        await self._store.run(
            "requeue_waiting_task",
            lambda redis: redis.rpush(self._key, payload),
        )

    async def dequeue_one(self) -> WaitingTask | None:
        """Pop the oldest waiting task, discarding unreadable entries."""

        async def _pop(redis: aioredis.Redis) -> WaitingTask | None:
            while True:
                raw = await redis.lpop(self._key)
                if raw is None:
                    return None
                waiting_task = self._parse(raw)
                if waiting_task is not None:
                    return waiting_task

        return await self._store.run("dequeue_waiting_task", _pop)

    async def peek_one(self) -> WaitingTask | None:
        """Return the oldest waiting task without removing it.

        An unreadable head is removed as a poison message so it cannot block
        the queue forever.
        """

        async def _peek(redis: aioredis.Redis) -> WaitingTask | None:
            while True:
                raw = await redis.lindex(self._key, 0)
                if raw is None:
                    return None
                waiting_task = self._parse(raw)
                if waiting_task is not None:
                    return waiting_task
                logger.warning("Removing invalid JSON from waiting queue (poison message)")
                await redis.lrem(self._key, 1, raw)

        return await self._store.run("peek_waiting_task", _peek)

    async def move_to_tail(self, tracking_id: str) -> bool:
        """Move a waiting task behind all others in one atomic step.

        Returns False if the task is no longer waiting.
        """
        for raw, waiting_task in await self._read_all():
            if waiting_task.id != tracking_id:
                continue
            moved = await self._store.run(
                "move_waiting_task_to_tail",
                lambda redis: LuaScripts.move_to_tail(redis, self._key, raw),
            )
            if moved:
                return True
            break

        logger.warning(
            "Waiting task not found",
            extra={"tracking_id": tracking_id},
        )
        return False

    async def find_by_id(self, tracking_id: str) -> WaitingTask | None:
        for _, waiting_task in await self._read_all():
            if waiting_task.id == tracking_id:
                return waiting_task
        return None

    async def remove(self, tracking_id: str) -> bool:
        """Delete one waiting task by id.

        Matches on the exact stored bytes; re-serializing could produce
        different bytes than the original push.
        """
        for raw, waiting_task in await self._read_all():
            if waiting_task.id != tracking_id:
                continue
            removed = await self._store.run(
                "remove_waiting_task",
                lambda redis: redis.lrem(self._key, 1, raw),
            )
            if removed:
                return True
            break

        logger.warning(
            "Waiting task not found",
            extra={"tracking_id": tracking_id},
        )
        return False

    async def list_all(self) -> list[WaitingTask]:
        return [waiting_task for _, waiting_task in await self._read_all()]

    async def clear(self) -> None:
        await self._store.run(
            "clear_waiting_queue",
            lambda redis: redis.delete(self._key),
        )
