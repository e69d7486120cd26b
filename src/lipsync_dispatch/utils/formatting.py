import math


def format_seconds_human(seconds: float | None) -> str | None:
    """Render a duration as ``42s``, ``8.5s``, ``1m 30s`` or ``2m``.

    Under ten seconds keeps one decimal; above a minute the remainder is
    rounded to one decimal and dropped when zero.
    """
    if seconds is None or not math.isfinite(seconds):
        return None

    if seconds >= 60:
        minutes = math.floor(seconds / 60)
        remaining = _round_half_up(seconds - minutes * 60, 1)
        if remaining > 0:
            return f"{minutes}m {_trim(remaining)}s"
        return f"{minutes}m"

    rounded = _round_half_up(seconds, 0) if seconds >= 10 else _round_half_up(seconds, 1)
    return f"{_trim(rounded)}s"


def format_milliseconds_human(milliseconds: float | None) -> str | None:
    if milliseconds is None or not math.isfinite(milliseconds):
        return None
    return format_seconds_human(milliseconds / 1000)


def _round_half_up(value: float, digits: int) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def _trim(value: float) -> str:
    # 30.0 -> "30", 8.5 -> "8.5"
    return f"{value:g}" if value != int(value) else str(int(value))
