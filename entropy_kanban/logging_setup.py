"""Logging configuration for the server process."""

from __future__ import annotations

import logging
import sys

_CONFIGURED_ATTR = "_entropy_kanban_handler"


class _ThirdPartyNoiseFilter(logging.Filter):
    """Keep our own logs; let other libraries through only at WARNING+."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("entropy_kanban"):
            return True
        # uvicorn's own error logger reports startup and bind failures.
        if record.name == "uvicorn.error":
            return record.levelno >= logging.INFO
        return record.levelno >= logging.WARNING


def setup_logging(level: str | int = logging.INFO) -> None:
    """Install a single stderr handler on the root logger.

    Safe to call more than once; the handler is replaced, not duplicated.
    """
    root = logging.getLogger()
    root.setLevel(level)

    for handler in list(root.handlers):
        if getattr(handler, _CONFIGURED_ATTR, False):
            root.removeHandler(handler)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(fmt)
    handler.addFilter(_ThirdPartyNoiseFilter())
    setattr(handler, _CONFIGURED_ATTR, True)
    root.addHandler(handler)

    logging.captureWarnings(True)
