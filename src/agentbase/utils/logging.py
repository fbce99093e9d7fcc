"""
Logging setup for agentbase processes.

All components log through loguru. A process configures its sinks once at
startup with :func:`setup_logging`; library code only ever calls
``logger.bind(...)`` and the level methods.
"""

import sys
from typing import TYPE_CHECKING, Optional

from loguru import logger

if TYPE_CHECKING:
    from ..config.settings import LoggingSettings

TEXT_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | "
    "{name}:{function}:{line} - {message}"
)


def setup_logging(
    settings: Optional["LoggingSettings"] = None,
    *,
    level: Optional[str] = None,
) -> None:
    """
    Configure loguru sinks for the current process.

    Args:
        settings: Logging settings; defaults are used when omitted
        level: Overrides ``settings.level`` (used by the CLI ``--log-level`` option)
    """
    if settings is None:
        from ..config.settings import LoggingSettings

        settings = LoggingSettings()

    effective_level = (level or settings.level).upper()
    serialize = settings.format == "json"

    logger.remove()
    logger.add(
        sys.stderr,
        level=effective_level,
        format=TEXT_FORMAT,
        serialize=serialize,
    )

    if settings.file_path:
        # Daily files, one per day, pruned after the retention window
        logger.add(
            settings.file_path,
            level=effective_level,
            format=TEXT_FORMAT,
            serialize=serialize,
            rotation=settings.rotation,
            retention=settings.retention,
            encoding="utf-8",
            enqueue=True,
        )

    logger.debug(f"Logging configured at {effective_level} ({settings.format})")
