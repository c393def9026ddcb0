"""Logger factory shared by all rag_chat modules."""

from __future__ import annotations

import logging
import sys

_ROOT = "rag_chat"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the package hierarchy.

    Module loggers carry no handlers of their own; output is controlled once
    by `configure_logging` on the package root.
    """

    if name != _ROOT and not name.startswith(_ROOT + "."):
        name = f"{_ROOT}.{name}"
    return logging.getLogger(name)


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a single stderr handler to the package logger."""

    logger = logging.getLogger(_ROOT)
    resolved = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    logger.setLevel(resolved)

    # Avoid duplicate handlers when called more than once.
    if not any(getattr(h, "_rag_chat", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))
        handler._rag_chat = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
        logger.propagate = False

    for handler in logger.handlers:
        handler.setLevel(resolved)
    return logger
