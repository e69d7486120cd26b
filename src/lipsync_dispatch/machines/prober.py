"""Find worker machines that are not running or holding any job."""

from __future__ import annotations

import asyncio
from typing import Callable, Sequence

import aiohttp

from lipsync_dispatch.main.aiohttp_client import aiohttp_client
from lipsync_dispatch.main.logging import get_logger

logger = get_logger(__name__)


def is_idle_queue(payload: dict) -> bool:
    """A ComfyUI ``/queue`` payload is idle when both queues are empty."""
    return len(payload["queue_running"]) == 0 and len(payload["queue_pending"]) == 0


class WorkerProber:
    """Probe each configured worker's queue endpoint.

    Args:
        machines: Worker base URLs in priority order.
        session_provider: Returns the shared aiohttp session.
        timeout_seconds: Upper bound for one probe.
    """

    def __init__(
        self,
        machines: Sequence[str],
        session_provider: Callable[[], aiohttp.ClientSession] = aiohttp_client,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._machines = list(machines)
        self._session_provider = session_provider
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def machines(self) -> list[str]:
        return list(self._machines)

    async def _probe(self, machine: str) -> bool:
        """Return True if ``machine`` is idle; any failure counts as busy."""
        try:
            session = self._session_provider()
            async with session.get(f"{machine}/queue", timeout=self._timeout) as response:
                if response.status != 200:
                    logger.warning(
                        "Worker queue check returned non-OK status",
                        extra={"machine": machine, "status_code": response.status},
                    )
                    return False
                payload = await response.json(content_type=None)
            return is_idle_queue(payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning(
                "Failed to check machine",
                extra={"machine": machine, "error": str(exc)},
            )
            return False
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "Worker returned malformed queue payload",
                extra={"machine": machine, "error": str(exc)},
            )
            return False

    async def get_available_machines(self) -> list[str]:
        """Idle machines, in configuration order."""
        if not self._machines:
            return []

        results = await asyncio.gather(*(self._probe(machine) for machine in self._machines))
        available = [machine for machine, idle in zip(self._machines, results) if idle]

        logger.debug(
            "Machine availability checked",
            extra={"available": available, "configured": len(self._machines)},
        )
        return available
