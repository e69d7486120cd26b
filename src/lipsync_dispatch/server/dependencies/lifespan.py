from contextlib import asynccontextmanager

from fastapi import FastAPI

from lipsync_dispatch.main.aiohttp_client import aiohttp_client
from lipsync_dispatch.main.config import get_settings
from lipsync_dispatch.main.logging import get_logger
from lipsync_dispatch.redis.connection import CoordinationStore
from lipsync_dispatch.server.dependencies.components import build_components

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup(app)
    yield
    await shutdown(app)


async def startup(app: FastAPI):
    settings = get_settings()

    aiohttp_client.start()
    coordination_store = CoordinationStore(settings)
    await coordination_store.connect()

    components = build_components(settings, coordination_store)
    await components.work_queue.start()

    if settings.sweep_enabled:
        await components.sweeper.start()
    else:
        logger.info("Waiting queue sweep disabled")

    if not settings.machines:
        logger.warning("MACHINE_LIST is empty, every job will wait")

    app.state.components = components


async def shutdown(app: FastAPI):
    components = getattr(app.state, "components", None)
    if components is not None:
        await components.sweeper.stop()
        await components.work_queue.stop()
        await components.coordination_store.close()
        app.state.components = None

    await aiohttp_client.stop()
