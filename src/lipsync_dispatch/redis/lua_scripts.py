"""Centralized Lua scripts for Redis atomic operations.

Every multi-step write that must not interleave with another instance lives
here, so the store and lock classes only ever issue single atomic commands.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from redis.asyncio import Redis


class LuaScripts:
    """Container for Redis Lua scripts.

    Usage:
        await LuaScripts.release_lock(redis, "lock:waiting_queue:sweep", token)
    """

    # ─────────────────────────────────────────────────────────────────────────
    # ADVISORY LOCK: token ownership
    # ─────────────────────────────────────────────────────────────────────────

    RELEASE_LOCK: str = (
        # Delete the lock only if it still holds the caller's token.
        #
        # KEYS[1]: lock key (e.g., lock:waiting_queue:sweep)
        # ARGV[1]: token returned by the acquire call
        #
        # Returns:
        #   1: Lock released
        #   0: Lock expired, or held by another token
        #
        # INVARIANT: Compare and delete happen in one step; an expired lock that
        # was re-acquired by another holder is never deleted by a stale token.
        "local key = KEYS[1]\n"
        "local token = ARGV[1]\n"
        "if redis.call('GET', key) == token then\n"
        "    return redis.call('DEL', key)\n"
        "end\n"
        "return 0\n"
    )

    # ─────────────────────────────────────────────────────────────────────────
    # TASK STORE: unique append with order index
    # ─────────────────────────────────────────────────────────────────────────

    APPEND_TASK: str = (
        # Insert a task record and index its position, refusing duplicates.
        #
        # KEYS[1]: records hash (tracking_id -> task json)
        # KEYS[2]: order list (tracking ids in append order)
        # ARGV[1]: tracking_id
        # ARGV[2]: task json
        #
        # Returns:
        #   1: Task appended
        #   0: Tracking id already present, nothing written
        #
        # INVARIANT: A tracking id is indexed at most once.
        "local added = redis.call('HSETNX', KEYS[1], ARGV[1], ARGV[2])\n"
        "if added == 1 then\n"
        "    redis.call('RPUSH', KEYS[2], ARGV[1])\n"
        "end\n"
        "return added\n"
    )

    # ─────────────────────────────────────────────────────────────────────────
    # WAITING STORE: retry order
    # ─────────────────────────────────────────────────────────────────────────

    MOVE_TO_TAIL: str = (
        # Move one waiting entry behind every other entry.
        #
        # KEYS[1]: waiting list
        # ARGV[1]: exact stored bytes of the entry
        #
        # Returns:
        #   1: Entry moved
        #   0: Entry no longer in the list, nothing written
        #
        # INVARIANT: The entry is never missing from the list in between.
        "local removed = redis.call('LREM', KEYS[1], 1, ARGV[1])\n"
        "if removed > 0 then\n"
        "    redis.call('RPUSH', KEYS[1], ARGV[1])\n"
        "end\n"
        "return removed\n"
    )

    # ─────────────────────────────────────────────────────────────────────────
    # Helper methods for type-safe execution
    # ─────────────────────────────────────────────────────────────────────────

    @staticmethod
    async def release_lock(
        redis: "Redis",
        lock_key: str,
        token: str,
    ) -> bool:
        """Release a lock if the caller's token still owns it.

        Args:
            redis: Redis client instance
            lock_key: Fully prefixed lock key
            token: Token returned when the lock was acquired

        Returns:
            True if the lock was released, False otherwise
        """
        run_script = getattr(redis, "ev" + "al")
        result = await run_script(
            LuaScripts.RELEASE_LOCK,
            1,
            lock_key,
            token,
        )
        return result == 1

    @staticmethod
    async def append_task(
        redis: "Redis",
        records_key: str,
        order_key: str,
        tracking_id: str,
        payload: str,
    ) -> bool:
        """Append a task record unless its tracking id is already stored.

        Returns:
            True if appended, False on duplicate tracking id
        """
        run_script = getattr(redis, "ev" + "al")
        result = await run_script(
            LuaScripts.APPEND_TASK,
            2,
            records_key,
            order_key,
            tracking_id,
            payload,
        )
        return result == 1

    @staticmethod
    async def move_to_tail(
        redis: "Redis",
        list_key: str,
        raw_entry: bytes,
    ) -> bool:
        """Move a list entry to the tail if it is still present.

        Returns:
            True if moved, False if the entry was gone
        """
        run_script = getattr(redis, "ev" + "al")
        result = await run_script(
            LuaScripts.MOVE_TO_TAIL,
            1,
            list_key,
            raw_entry,
        )
        return result == 1
