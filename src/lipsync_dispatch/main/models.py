from typing import Optional

from pydantic import BaseModel

from lipsync_dispatch.main.exceptions import ErrorCodes


class GeneralError(BaseModel):
    message: str
    lipsync_error_code: Optional[ErrorCodes] = None
