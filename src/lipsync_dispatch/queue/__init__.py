from lipsync_dispatch.queue.task_models import (
    CompletedTaskView,
    SubmissionReceipt,
    Task,
    TaskStatus,
    TrackingStatus,
    WaitingTask,
    WaitingTaskInput,
)
from lipsync_dispatch.queue.task_store import TaskStore
from lipsync_dispatch.queue.waiting_store import WaitingStore

__all__ = [
    "CompletedTaskView",
    "SubmissionReceipt",
    "Task",
    "TaskStatus",
    "TaskStore",
    "TrackingStatus",
    "WaitingStore",
    "WaitingTask",
    "WaitingTaskInput",
]
