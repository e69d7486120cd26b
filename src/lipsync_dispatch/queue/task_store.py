"""Durable record of dispatched jobs.

Records live in one hash (tracking id -> task json) with a list alongside it
holding tracking ids in append order. Point updates touch a single hash field
inside a WATCH/MULTI transaction, so concurrent updates never overwrite each
other and no operation ever clears the collection.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from pydantic import ValidationError
from redis.exceptions import WatchError

from lipsync_dispatch.main.logging import get_logger
from lipsync_dispatch.queue.task_models import Task, TaskStatus
from lipsync_dispatch.redis.lua_scripts import LuaScripts

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from lipsync_dispatch.redis.connection import CoordinationStore

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def apply_completion(task: Task, completed_at: datetime) -> None:
    """Mark ``task`` completed, deriving its processing time once.

    The completion timestamp is kept if one was already recorded. A negative
    elapsed time (clock skew between instances) is discarded.
    """
    task.status = TaskStatus.COMPLETED
    if task.completed_at is None:
        task.completed_at = completed_at

    if task.time_to_complete_ms is None and task.created_at is not None:
        elapsed = _as_utc(task.completed_at) - _as_utc(task.created_at)
        elapsed_ms = int(elapsed.total_seconds() * 1000)
        task.time_to_complete_ms = elapsed_ms if elapsed_ms >= 0 else None


class TaskStore:
    """Task records keyed by tracking id.

    Args:
        store: Coordination store handle.
        collection: Base key; records and order index are derived from it.
        clock: Returns the current time (injectable for tests).
    """

    def __init__(
        self,
        store: CoordinationStore,
        collection: str = "queue",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._records_key = f"{collection}:records"
        self._order_key = f"{collection}:order"
        self._clock = clock

    @staticmethod
    def _parse(raw: bytes | str, tracking_id: str | None = None) -> Task | None:
        try:
            return Task.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning(
                "Skipping invalid task entry",
                extra={"tracking_id": tracking_id, "error": str(exc)},
            )
            return None

    async def append(self, task: Task) -> bool:
        """Store a new task; refuses a tracking id that is already present."""
        if task.created_at is None:
            task.created_at = self._clock()

        appended = await self._store.run(
            "append_task",
            lambda redis: LuaScripts.append_task(
                redis,
                self._records_key,
                self._order_key,
                task.tracking_id,
                task.model_dump_json(),
            ),
        )
        if not appended:
            logger.warning(
                "Task with tracking_id already exists, not appended",
                extra={"tracking_id": task.tracking_id},
            )
        return appended

    async def _update(
        self,
        operation_name: str,
        tracking_id: str,
        mutate: Callable[[Task], bool],
    ) -> bool:
        """Apply ``mutate`` to one record atomically.

        ``mutate`` returns False when there is nothing to write.
        """

        async def _transaction(redis: aioredis.Redis) -> bool:
            async with redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(self._records_key)
                        raw = await pipe.hget(self._records_key, tracking_id)
                        if raw is None:
                            return False

                        task = self._parse(raw, tracking_id)
                        if task is None:
                            return False

                        if not mutate(task):
                            return True

                        pipe.multi()
                        pipe.hset(self._records_key, tracking_id, task.model_dump_json())
                        await pipe.execute()
                        return True
                    except WatchError:
                        # Another writer touched the hash; re-read and retry
                        continue

        updated = await self._store.run(operation_name, _transaction)
        if not updated:
            logger.warning(
                "Task with tracking_id not found",
                extra={"tracking_id": tracking_id, "operation": operation_name},
            )
        return updated

    async def set_status(self, tracking_id: str, status: TaskStatus) -> bool:
        status = TaskStatus(status)

        def _mutate(task: Task) -> bool:
            if status == TaskStatus.COMPLETED:
                apply_completion(task, self._clock())
            else:
                task.status = status
            return True

        return await self._update("set_task_status", tracking_id, _mutate)

    async def set_output_path(self, tracking_id: str, path: str) -> bool:
        def _mutate(task: Task) -> bool:
            task.generated_video_path = path
            return True

        return await self._update("set_task_output_path", tracking_id, _mutate)

    async def mark_completed(self, tracking_id: str, path: str) -> bool:
        """Set status and output path together; repeated calls change nothing."""

        def _mutate(task: Task) -> bool:
            if task.status == TaskStatus.COMPLETED and task.generated_video_path:
                return False
            apply_completion(task, self._clock())
            task.generated_video_path = path
            return True

        return await self._update("mark_task_completed", tracking_id, _mutate)

    async def get(self, tracking_id: str) -> Task | None:
        raw = await self._store.run(
            "get_task",
            lambda redis: redis.hget(self._records_key, tracking_id),
        )
        if raw is None:
            return None
        return self._parse(raw, tracking_id)

    async def list_all(self) -> list[Task]:
        """All tasks in append order; unreadable records are skipped."""

        async def _read(redis: aioredis.Redis) -> list[tuple[bytes, bytes | None]]:
            tracking_ids = await redis.lrange(self._order_key, 0, -1)
            if not tracking_ids:
                return []
            raws = await redis.hmget(self._records_key, tracking_ids)
            return list(zip(tracking_ids, raws))

        tasks: list[Task] = []
        for tracking_id, raw in await self._store.run("list_tasks", _read):
            if raw is None:
                logger.warning(
                    "Indexed task has no record",
                    extra={"tracking_id": _decode(tracking_id)},
                )
                continue
            task = self._parse(raw, _decode(tracking_id))
            if task is not None:
                tasks.append(task)
        return tasks


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value
