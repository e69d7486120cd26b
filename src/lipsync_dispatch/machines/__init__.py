from lipsync_dispatch.machines.prober import WorkerProber, is_idle_queue

__all__ = ["WorkerProber", "is_idle_queue"]
