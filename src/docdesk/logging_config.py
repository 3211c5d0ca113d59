"""Loguru logging configuration.

Call ``setup_logging()`` once at CLI startup to:
- replace loguru's default sink (coloured stderr, or serialized JSON)
- route stdlib ``logging`` records from LiteLLM and urllib3-based clients
  through loguru so there is one log stream.

Library modules log with ``from loguru import logger`` and a bracketed
component prefix, e.g. ``logger.warning("[versions] ...")``.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger

_INTERCEPTED = ("LiteLLM", "LiteLLM Router", "LiteLLM Proxy", "httpx", "urllib3")


class InterceptHandler(logging.Handler):
    """Redirect stdlib logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(*, level: str = "WARNING", json: bool = False) -> None:
    """Configure loguru as the single logging backend.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ...).
        json: If True, emit structured JSON lines to stderr.
    """
    logger.remove()

    if json:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(
            sys.stderr,
            level=level,
            format=(
                "<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan> - <level>{message}</level>"
            ),
            colorize=True,
        )

    intercept = InterceptHandler()
    for name in _INTERCEPTED:
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [intercept]
        stdlib_logger.propagate = False
