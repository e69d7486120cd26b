"""Expiring token-based advisory lock on the coordination store.

Uses Redis SET NX PX so a crashed holder's lock disappears after its TTL,
and a Lua compare-and-delete so only the holder's token can release it.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from tenacity import (
    AsyncRetrying,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
    wait_random,
)

from lipsync_dispatch.main.logging import get_logger
from lipsync_dispatch.redis.connection import CoordinationStore
from lipsync_dispatch.redis.lua_scripts import LuaScripts

logger = get_logger(__name__)

LOCK_PREFIX = "lock:"
RETRY_JITTER_MS = 50


class AdvisoryLock:
    """Mutual exclusion between process instances, keyed by name.

    Args:
        store: Coordination store handle.
        prefix: Namespace prepended to every lock name.
    """

    def __init__(self, store: CoordinationStore, prefix: str = LOCK_PREFIX) -> None:
        self._store = store
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def acquire(self, key: str, ttl_ms: int = 5000) -> str | None:
        """Try once to take the lock.

        Returns:
            A fresh token if the lock was free, None if another holder has it.
        """
        token = str(uuid4())
        lock_key = self._key(key)
        acquired = await self._store.run(
            "acquire_lock",
            lambda redis: redis.set(lock_key, token, nx=True, px=ttl_ms),
        )
        return token if acquired else None

    async def release(self, key: str, token: str) -> bool:
        """Release the lock if ``token`` still owns it.

        Returns:
            True if released, False if the lock expired or belongs to someone else.
        """
        lock_key = self._key(key)
        released = await self._store.run(
            "release_lock",
            lambda redis: LuaScripts.release_lock(redis, lock_key, token),
        )
        if not released:
            logger.debug(
                "Lock not released, token no longer owns it",
                extra={"lock_key": lock_key},
            )
        return released

    async def acquire_with_retry(
        self,
        key: str,
        ttl_ms: int = 5000,
        retry_delay_ms: int = 100,
        max_attempts: int = 20,
    ) -> str | None:
        """Retry ``acquire`` a bounded number of times with jitter.

        Returns:
            The token, or None once ``max_attempts`` have all been contended.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_fixed(retry_delay_ms / 1000) + wait_random(0, RETRY_JITTER_MS / 1000),
            retry=retry_if_result(lambda token: token is None),
            retry_error_callback=lambda retry_state: None,
        )
        token = await retrying(self.acquire, key, ttl_ms)
        if token is None:
            logger.info(
                "Gave up acquiring lock",
                extra={"lock_key": self._key(key), "attempts": max_attempts},
            )
        return token

    @asynccontextmanager
    async def hold(
        self,
        key: str,
        ttl_ms: int = 5000,
        retry_delay_ms: int = 100,
        max_attempts: int = 1,
    ) -> AsyncIterator[str | None]:
        """Acquire the lock and always release it on exit.

        Yields the token, or None when the lock stayed held elsewhere for all
        ``max_attempts``; the body decides what to do in that case.
        """
        if max_attempts > 1:
            token = await self.acquire_with_retry(key, ttl_ms, retry_delay_ms, max_attempts)
        else:
            token = await self.acquire(key, ttl_ms)
        try:
            yield token
        finally:
            if token is not None:
                await self.release(key, token)
