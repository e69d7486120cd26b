"""Coordination store utilities.

This package provides:
- CoordinationStore: Injected Redis handle with reconnect-once semantics
- AdvisoryLock: Expiring token lock used to serialize the sweep
- LuaScripts: Atomic Lua scripts for lock release and task append
"""

from lipsync_dispatch.redis.advisory_lock import AdvisoryLock
from lipsync_dispatch.redis.connection import (
    CoordinationStore,
    build_redis_pool_kwargs,
    is_connection_error,
)
from lipsync_dispatch.redis.lua_scripts import LuaScripts

__all__ = [
    "AdvisoryLock",
    "CoordinationStore",
    "LuaScripts",
    "build_redis_pool_kwargs",
    "is_connection_error",
]
