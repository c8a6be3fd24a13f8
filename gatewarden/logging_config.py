"""Loguru sink for every gatewarden process (gateway, schedule and deploy CLIs)."""

import os
import sys

from loguru import logger

LOG_FORMAT = "<level>{time:YYYY-MM-DD HH:mm:ss} | {name}:{function}:{line} | {message}</level>"


def setup_logging(level: str | None = None) -> None:
    """Route gatewarden's log records to stderr.

    stdout is reserved for the one JSON line a schedule command prints, so
    nothing here may write to it. The level comes from the argument, then
    ``GATEWARDEN_LOG_LEVEL``, then ``LOG_LEVEL`` (the process manager's
    generic knob), then INFO.
    """
    if level is None:
        level = os.environ.get("GATEWARDEN_LOG_LEVEL") or os.environ.get("LOG_LEVEL") or "INFO"

    logger.remove()
    logger.add(
        sys.stderr,
        format=LOG_FORMAT,
        level=level.upper(),
        colorize=sys.stderr.isatty(),  # no ANSI codes in pm2 log files
        backtrace=True,
        diagnose=False,
    )
