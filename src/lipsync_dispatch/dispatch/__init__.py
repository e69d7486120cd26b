from lipsync_dispatch.dispatch.service import DispatchService, JobInput
from lipsync_dispatch.dispatch.sweeper import SweepOutcome, WaitingQueueSweeper
from lipsync_dispatch.dispatch.work_queue import DispatchJob, DispatchWorkQueue

__all__ = [
    "DispatchJob",
    "DispatchService",
    "DispatchWorkQueue",
    "JobInput",
    "SweepOutcome",
    "WaitingQueueSweeper",
]
