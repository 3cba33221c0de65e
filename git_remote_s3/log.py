"""Logging setup for the remote helper.

Stdout carries the remote helper protocol, so log records only ever go to
stderr. Lines use the absl layout, e.g.::

    1019 14:03:07.123 DEBUG git_remote_s3 sync.py:88] Pushing refs/heads/main
"""

import logging
import os
import sys
from datetime import datetime

LOGLEVEL_ENV = "GIT_REMOTE_S3_LOGLEVEL"
DEFAULT_LOGLEVEL = "WARNING"


class GoogleFormatter(logging.Formatter):
    """Format records as ``MMDD HH:MM:SS.mmm LEVEL module file:line] msg``."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created)
        root_module = record.name.split(".")[0]
        line = (
            f"{created:%m%d %H:%M:%S}.{int(record.msecs):03d} "
            f"{record.levelname:<5} {root_module} "
            f"{record.filename}:{record.lineno}] {record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def get_loglevel(env=None) -> str:
    """Return the configured log level name."""
    env = os.environ if env is None else env
    level = (env.get(LOGLEVEL_ENV) or DEFAULT_LOGLEVEL).upper()
    if not isinstance(logging.getLevelName(level), int):
        return DEFAULT_LOGLEVEL
    return level


def setup_logging(level: str = None, stream=None) -> logging.Logger:
    """Attach a stderr handler to the package logger."""
    logger = logging.getLogger("git_remote_s3")
    logger.setLevel(level or get_loglevel())
    for handler in list(logger.handlers):
        if getattr(handler, "_git_remote_s3", False):
            logger.removeHandler(handler)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(GoogleFormatter())
    handler._git_remote_s3 = True
    logger.addHandler(handler)
    logger.propagate = False
    return logger
