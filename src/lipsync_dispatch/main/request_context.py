"""Utilities for storing per-job logging context using contextvars."""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator


_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def get_request_context() -> Dict[str, Any]:
    """Return a copy of the current log context."""
    context = _log_context.get()
    # Ensure callers cannot mutate the stored context in place
    return dict(context) if context else {}


def set_request_context(**values: Any) -> Dict[str, Any]:
    """Merge provided values into the stored context.

    Passing ``None`` clears the value for that key.
    """

    current = get_request_context()
    for key, value in values.items():
        if value is None:
            current.pop(key, None)
        else:
            current[key] = value
    _log_context.set(current)
    return current


def clear_request_context() -> None:
    """Remove all stored context for the active task."""

    _log_context.set({})


@contextmanager
def job_context(**values: Any) -> Iterator[Dict[str, Any]]:
    """Scope log context values (e.g. ``tracking_id``) to a block."""
    token = _log_context.set({**get_request_context(), **values})
    try:
        yield get_request_context()
    finally:
        _log_context.reset(token)
