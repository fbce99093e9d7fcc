"""Time helpers. All broker timestamps are integer milliseconds since the epoch."""

import time


def now_ms() -> int:
    return int(time.time() * 1000)


def format_uptime(seconds: float) -> str:
    """Render an uptime in the coarse form used by the dashboard.

    Examples: ``2d 3h``, ``4h 12m``, ``7m``.
    """
    seconds = max(0, int(seconds))
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60

    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
