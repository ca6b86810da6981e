# log.py
# SPDX-License-Identifier: MIT
"""Logging setup for healthstream.

Every module logs through ``get_logger(__name__)`` under the ``healthstream``
namespace. Nothing is printed unless the host application (or the CLI)
calls :func:`configure_logging`; until then a NullHandler absorbs records.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import IO, Iterator

__all__ = [
    "PACKAGE_LOGGER_NAME",
    "DEFAULT_LOG_FORMAT",
    "get_logger",
    "configure_logging",
    "temp_level",
]

PACKAGE_LOGGER_NAME = "healthstream"
DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logging.getLogger(PACKAGE_LOGGER_NAME).addHandler(logging.NullHandler())


def _level_number(level: int | str) -> int:
    """Map ``"debug"``/``"INFO"``/... or a numeric level to a number; unknown names mean INFO."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    return value if isinstance(value, int) else logging.INFO


def _console_handler(logger: logging.Logger) -> logging.StreamHandler | None:
    for h in logger.handlers:
        if isinstance(h, logging.StreamHandler):
            return h
    return None


def get_logger(name: str | None = None) -> logging.Logger:
    """Logger for ``name``, or the package logger when name is empty."""
    return logging.getLogger(name or PACKAGE_LOGGER_NAME)


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: IO[str] | None = None,
    fmt: str | None = None,
    datefmt: str | None = None,
    propagate: bool | None = None,
    logger_name: str = PACKAGE_LOGGER_NAME,
) -> logging.Logger:
    """Send healthstream log records to a console stream.

    Calling this repeatedly never stacks handlers: the logger keeps one
    StreamHandler, whose stream is swapped for ``stream`` when the old one
    has been closed (pytest capture does this between tests).

    Args:
        level (int | str): Level number or name; unknown names mean INFO.
        stream (IO[str] | None): Destination; sys.stderr when omitted.
        fmt (str | None): Record format, :data:`DEFAULT_LOG_FORMAT` when
            omitted.
        datefmt (str | None): ``strftime`` format for ``%(asctime)s``.
        propagate (bool | None): Forward records to ancestor handlers.
            None keeps propagation on.
        logger_name (str): Logger to configure.

    Returns:
        logging.Logger: The configured logger.
    """
    target = stream if stream is not None else sys.stderr
    logger = get_logger(logger_name)
    logger.setLevel(_level_number(level))
    logger.propagate = True if propagate is None else bool(propagate)

    console = _console_handler(logger)
    if console is None:
        console = logging.StreamHandler(target)
        console.setFormatter(logging.Formatter(fmt=fmt or DEFAULT_LOG_FORMAT, datefmt=datefmt))
        logger.addHandler(console)
    elif getattr(console.stream, "closed", False):
        console.setStream(target)
    return logger


@contextmanager
def temp_level(level: int | str, name: str | None = None) -> Iterator[logging.Logger]:
    """Raise or lower a logger's level for the duration of a ``with`` block."""
    logger = get_logger(name)
    previous = logger.level
    logger.setLevel(_level_number(level))
    try:
        yield logger
    finally:
        logger.setLevel(previous)
