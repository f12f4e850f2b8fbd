"""Per-area log levels for the library's loggers.

Each area reads ``LOG_LEVEL_<AREA>`` from the environment, falling back to
``LOG_LEVEL`` and finally ``INFO``.
"""

import logging
import os
from typing import Dict

LOG_AREAS: list[str] = ["URL_FILTER", "CHUNKING", "OPEN_TELEMETRY"]

DEFAULT_LOG_LEVEL: str = "INFO"


def _resolve_level(area: str) -> str:
    """
    Resolve the log level name configured for an area.

    Args:
        area: Logging area name (e.g. "URL_FILTER")

    Returns:
        An upper-case level name that the logging module understands
    """
    level = os.environ.get(f"LOG_LEVEL_{area}") or os.environ.get(
        "LOG_LEVEL", DEFAULT_LOG_LEVEL
    )
    level = level.strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        return DEFAULT_LOG_LEVEL
    return level


SRC_LOG_LEVELS: Dict[str, str] = {area: _resolve_level(area) for area in LOG_AREAS}
