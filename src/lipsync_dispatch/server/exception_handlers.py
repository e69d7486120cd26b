from fastapi import FastAPI
from fastapi.responses import JSONResponse

from lipsync_dispatch.main.exceptions import EXCEPTION_MAP
from lipsync_dispatch.main.logging import get_logger
from lipsync_dispatch.main.models import GeneralError

logger = get_logger(__name__)


def add_exception_handlers(app: FastAPI):
    for exception, (status_code, error_message, error_code) in EXCEPTION_MAP.items():

        def handler(
            request,
            exc,
            status_code=status_code,
            error_message=error_message,
            error_code=error_code,
        ):
            message = error_message or str(exc)

            if status_code >= 500:
                logger.warning(
                    f"Request failed: {request.method} {request.url.path} - {str(exc)}",
                    extra={
                        "method": request.method,
                        "path": request.url.path,
                        "error_code": error_code,
                    },
                )

            return JSONResponse(
                status_code=status_code,
                content=GeneralError(
                    message=message, lipsync_error_code=error_code
                ).model_dump(),
            )

        app.add_exception_handler(exception, handler)
