from datetime import datetime, timezone

import uvicorn
from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from lipsync_dispatch.main.config import get_settings
from lipsync_dispatch.main.logging import get_logger
from lipsync_dispatch.redis.connection import CoordinationStore
from lipsync_dispatch.server.dependencies.components import get_coordination_store
from lipsync_dispatch.server.dependencies.lifespan import lifespan
from lipsync_dispatch.server.exception_handlers import add_exception_handlers
from lipsync_dispatch.server.routers import router as api_router

logger = get_logger(__name__)


def get_application():
    app = FastAPI(
        title="lipsync-dispatch",
        version=get_settings().app_version,
        lifespan=lifespan,
    )

    app.include_router(api_router)

    # Add handlers of all errors except 500
    add_exception_handlers(app)

    @app.exception_handler(500)
    async def custom_http_500_exception_handler(request, exc):
        logger.error(
            f"Unhandled error: {request.method} {request.url.path}",
            extra={"error": str(exc), "error_type": type(exc).__name__},
        )
        return JSONResponse(status_code=500, content={"error": "Something went wrong"})

    @app.get("/healthz")
    async def get_healthz(
        coordination_store: CoordinationStore = Depends(get_coordination_store),
    ):
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            await coordination_store.ping()
        except Exception as exc:
            logger.warning("Health check failed", extra={"error": str(exc)})
            raise HTTPException(
                status_code=503,
                detail={
                    "status": "UNHEALTHY",
                    "timestamp": timestamp,
                    "details": "Coordination store unreachable",
                },
            )

        return {"status": "HEALTHY", "timestamp": timestamp}

    return app


app = get_application()


def start():
    uvicorn.run(
        "lipsync_dispatch.server.main:app",
        host="0.0.0.0",
        port=get_settings().port,
        reload=get_settings().dev,
    )
