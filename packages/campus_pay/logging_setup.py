"""Logging for ``campus_pay``.

Every module logs through ``get_logger("campus_pay.<module>")``; none of them
attach handlers. Output is switched on only when an entrypoint (the CLI or a
host service) calls ``configure_logging()``, which puts one stderr handler on
the ``campus_pay`` logger. Level comes from the argument or
``CAMPUS_PAY_LOG_LEVEL``.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "campus_pay"
_LEVEL_ENV = "CAMPUS_PAY_LOG_LEVEL"
_CONFIGURED = False


def _level_from_name(name: str) -> int | None:
    # Numeric strings or standard level names (INFO/DEBUG/etc.).
    name = name.strip().upper()
    if name.isdigit():
        return int(name)
    numeric = getattr(logging, name, None)
    return numeric if isinstance(numeric, int) else None


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        parsed = _level_from_name(level)
        if parsed is not None:
            return parsed
    env_val = os.getenv(_LEVEL_ENV)
    if env_val:
        parsed = _level_from_name(env_val)
        if parsed is not None:
            return parsed
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Install the package handler; later calls are ignored.

    ``level`` may be an int or a level name; ``None`` reads
    ``CAMPUS_PAY_LOG_LEVEL`` and falls back to INFO.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)

    # get_logger() may have left a NullHandler here.
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(
        logging.Formatter(fmt or "%(asctime)s %(name)s %(levelname)s %(message)s")
    )

    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return ``logging.getLogger(name)``; unconfigured output is discarded."""

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger"]
