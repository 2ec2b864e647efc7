# log.py
# SPDX-License-Identifier: MIT
"""Logging setup for rowforge.

The ``rowforge`` logger carries a NullHandler, so embedding applications
see nothing until they (or the CLI) call :func:`configure_logging`.
"""

from __future__ import annotations

import logging
import sys

__all__ = [
    "PACKAGE_LOGGER_NAME",
    "DEFAULT_LOG_FORMAT",
    "get_logger",
    "configure_logging",
]

PACKAGE_LOGGER_NAME = "rowforge"
# Reader and lane threads are named, so parallel runs log the thread too.
DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s]: %(message)s"

logging.getLogger(PACKAGE_LOGGER_NAME).addHandler(logging.NullHandler())


def _coerce_level(level: int | str) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return level


def get_logger(name: str | None = None) -> logging.Logger:
    """Return ``name``'s logger, or the ``rowforge`` logger when omitted."""
    return logging.getLogger(name or PACKAGE_LOGGER_NAME)


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream=None,
    fmt: str | None = None,
    datefmt: str | None = None,
    propagate: bool | None = None,
    logger_name: str = PACKAGE_LOGGER_NAME,
) -> logging.Logger:
    """Attach one stream handler to a rowforge logger and set its level.

    Repeated calls reuse the existing handler, so a CLI that configures
    logging per command never duplicates output.

    Args:
        level (int | str): Level or level name; unknown names mean INFO.
        stream (IO[str] | None): Destination; sys.stderr when omitted, which
            keeps stdout free for the JSON run report.
        fmt (str | None): Format string, :data:`DEFAULT_LOG_FORMAT` by
            default.
        datefmt (str | None): Date format for the handler.
        propagate (bool | None): Propagation flag. None leaves it on so
            root handlers (pytest's caplog included) still receive records.
        logger_name (str): Logger to configure.

    Returns:
        logging.Logger: The configured logger.
    """
    logger = get_logger(logger_name)
    logger.setLevel(_coerce_level(level))
    logger.propagate = True if propagate is None else bool(propagate)

    target = sys.stderr if stream is None else stream
    existing = [h for h in logger.handlers if isinstance(h, logging.StreamHandler)]
    for handler in existing:
        # A handler from an earlier call may hold a stream that has since closed.
        if getattr(handler.stream, "closed", False):
            handler.stream = target
    if not existing:
        handler = logging.StreamHandler(target)
        handler.setFormatter(logging.Formatter(fmt=fmt or DEFAULT_LOG_FORMAT, datefmt=datefmt))
        logger.addHandler(handler)
    return logger
