from enum import Enum


class ErrorCodes(int, Enum):
    NOT_READY = 9001
    COORDINATION_STORE_UNAVAILABLE = 9002
    DISPATCH_FAILED = 9003
    WORKFLOW_TEMPLATE_INVALID = 9005
    BLOB_NOT_FOUND = 9006
    BAD_REQUEST = 9007
    NOT_FOUND = 9008
    UPSTREAM_WORKER_ERROR = 9009


class LipsyncDispatchException(Exception):
    pass


class NotReadyException(LipsyncDispatchException):
    pass


class CoordinationStoreUnavailable(LipsyncDispatchException):
    pass


class DispatchError(LipsyncDispatchException):
    """A worker rejected or could not be reached during submission."""

    def __init__(self, message: str, machine: str | None = None):
        super().__init__(message)
        self.machine = machine


class DispatchQueueFull(LipsyncDispatchException):
    pass


class WorkflowTemplateError(LipsyncDispatchException):
    pass


class BlobNotFoundError(LipsyncDispatchException):
    pass


class BadRequestException(LipsyncDispatchException):
    pass


class NotFoundException(LipsyncDispatchException):
    pass


class UpstreamWorkerError(LipsyncDispatchException):
    """A worker answered a proxied request with an error."""

    pass


# Map exceptions to response codes
# Set message to None to use the internal message
EXCEPTION_MAP = {
    BadRequestException: (400, None, ErrorCodes.BAD_REQUEST),
    BlobNotFoundError: (404, None, ErrorCodes.BLOB_NOT_FOUND),
    NotFoundException: (404, None, ErrorCodes.NOT_FOUND),
    DispatchError: (502, None, ErrorCodes.DISPATCH_FAILED),
    UpstreamWorkerError: (502, None, ErrorCodes.UPSTREAM_WORKER_ERROR),
    NotReadyException: (503, "Service is starting up", ErrorCodes.NOT_READY),
    CoordinationStoreUnavailable: (
        503,
        "Coordination store unavailable",
        ErrorCodes.COORDINATION_STORE_UNAVAILABLE,
    ),
    WorkflowTemplateError: (500, None, ErrorCodes.WORKFLOW_TEMPLATE_INVALID),
}
