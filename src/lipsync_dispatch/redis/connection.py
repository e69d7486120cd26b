"""Coordination store connection lifecycle and reconnect-on-failure wrapper."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from lipsync_dispatch.main.config import Settings, get_settings
from lipsync_dispatch.main.exceptions import (
    CoordinationStoreUnavailable,
    NotReadyException,
)
from lipsync_dispatch.main.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RECONNECTABLE_ERROR_TYPES: tuple[type[BaseException], ...] = (
    RedisConnectionError,
    RedisTimeoutError,
    ConnectionResetError,
    ConnectionRefusedError,
)
RECONNECTABLE_MESSAGES = ("Connection has failed", "Connection timeout")


def is_connection_error(error: BaseException) -> bool:
    """Classify errors that justify one reconnect-and-retry cycle."""
    if isinstance(error, RECONNECTABLE_ERROR_TYPES):
        return True
    message = str(error)
    return any(fragment in message for fragment in RECONNECTABLE_MESSAGES)


def build_redis_pool_kwargs(
    settings: Settings | None = None,
    *,
    decode_responses: bool,
) -> dict[str, Any]:
    """Build keyword arguments for redis.asyncio connection pools."""
    resolved_settings = settings or get_settings()
    kwargs: dict[str, Any] = {
        "decode_responses": decode_responses,
        "socket_connect_timeout": resolved_settings.redis_conn_timeout,
        "retry_on_timeout": resolved_settings.redis_retry_on_timeout,
        "socket_keepalive": resolved_settings.redis_socket_keepalive,
        "health_check_interval": resolved_settings.redis_health_check_interval,
    }

    if resolved_settings.redis_max_connections is not None:
        kwargs["max_connections"] = resolved_settings.redis_max_connections

    if resolved_settings.redis_db is not None:
        kwargs["db"] = resolved_settings.redis_db

    return kwargs


class CoordinationStore:
    """Injected handle to the shared Redis coordination store.

    Owns the client lifecycle (connect, reconnect, close) and is the single
    place where transient connection errors are retried: every store
    operation goes through ``run`` which reconnects once and retries once
    before letting the error propagate.

    Args:
        settings: Application settings (optional, uses global if not provided).
        client_factory: Builds a fresh client; defaults to a pool built from settings.
        error_classifier: Decides whether an error warrants a reconnect.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client_factory: Optional[Callable[[], aioredis.Redis]] = None,
        error_classifier: Callable[[BaseException], bool] = is_connection_error,
    ) -> None:
        self._settings = settings or get_settings()
        self._client_factory = client_factory or self._build_client
        self._is_reconnectable = error_classifier
        self._client: aioredis.Redis | None = None

    def _build_client(self) -> aioredis.Redis:
        # Raw bytes so stored list entries can be matched exactly by LREM
        redis_kwargs = build_redis_pool_kwargs(self._settings, decode_responses=False)
        return aioredis.Redis.from_url(self._settings.coordination_store_url, **redis_kwargs)

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            raise NotReadyException("Coordination store is not connected")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Create the client and verify it with a PING.

        Raises:
            CoordinationStoreUnavailable: The store did not answer.
        """
        if self._client is not None:
            await self.close()

        client = self._client_factory()
        try:
            await client.ping()
        except Exception as exc:
            logger.error(
                "Error connecting to coordination store",
                extra={"error": str(exc)},
            )
            try:
                await client.aclose()
            except Exception as close_exc:
                logger.debug(
                    "Error closing unreachable coordination store client",
                    extra={"error": str(close_exc)},
                )
            raise CoordinationStoreUnavailable(str(exc)) from exc

        self._client = client
        logger.info("Coordination store connection established")

    async def reconnect(self) -> None:
        await self.close()
        await self.connect()

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            await client.aclose()
            logger.debug("Coordination store connection closed")
        except Exception as exc:
            logger.warning(
                "Error closing coordination store client",
                extra={"error": str(exc)},
            )

    async def ping(self) -> bool:
        return bool(await self.run("ping", lambda redis: redis.ping()))

    async def run(
        self,
        operation_name: str,
        fn: Callable[[aioredis.Redis], Awaitable[T]],
    ) -> T:
        """Run ``fn`` against the client, reconnecting once on connection errors.

        Args:
            operation_name: Used in log records only.
            fn: Coroutine function receiving the live client.

        Returns:
            Whatever ``fn`` returns.
        """
        try:
            return await fn(self.client)
        except Exception as exc:
            if not self._is_reconnectable(exc):
                raise
            logger.warning(
                f"Coordination store operation {operation_name!r} failed, attempting reconnect",
                extra={"operation": operation_name, "error": str(exc)},
            )

        await self.reconnect()
        return await fn(self.client)
