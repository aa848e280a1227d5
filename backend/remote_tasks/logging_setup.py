from __future__ import annotations

import logging
import sys
from typing import Union


class _LibraryNoiseFilter(logging.Filter):
    """Keep our own logs; let httpx/httpcore through only at WARNING+."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith(("httpx", "httpcore")):
            return record.levelno >= logging.WARNING
        return True


def setup_logging(level: Union[str, int] = "info") -> None:
    """
    Configure a single stderr handler on the root logger.

    Call this once, early (scripts and app entry points). Library code only
    uses logging.getLogger(__name__).
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    # Remove any pre-existing handlers to avoid duplicates.
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    handler.addFilter(_LibraryNoiseFilter())
    root.addHandler(handler)
