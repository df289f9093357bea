"""
Logging module for the automation core.

All services log to console (stdout) with colored, structured output.
Context such as workflow or execution ids travels in ``extra`` and is
appended to the line.

Usage:
    from shared.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Workflow fired", extra={"workflow_id": "wf_1"})
"""

import logging
import sys

from shared.config import config

# Global cache of loggers
_loggers = {}

# Keys that may be passed through ``extra`` and rendered after the message
CONTEXT_KEYS = (
    "workflow_id",
    "execution_id",
    "webhook_id",
    "trigger_kind",
    "node_id",
    "app_id",
)


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors and trailing context to console output"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record):
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            message = super().format(record)
        finally:
            record.levelname = levelname

        context = [f"{key}={getattr(record, key)}" for key in CONTEXT_KEYS if hasattr(record, key)]
        if context:
            message = f"{message} | {' '.join(context)}"
        return message


def _resolve_level(level) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def get_logger(name: str, level=None) -> logging.Logger:
    """
    Get a logger that outputs colored, structured logs to console.

    Args:
        name: Logger name (typically __name__ or component name)
        level: Logging level (default: ``config.log_level``)

    Returns:
        Configured logger instance
    """
    if name in _loggers:
        return _loggers[name]

    resolved_level = _resolve_level(level if level is not None else config.log_level)

    logger = logging.getLogger(name)
    logger.setLevel(resolved_level)
    logger.propagate = False
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(resolved_level)
    console_handler.setFormatter(
        ColoredFormatter(
            fmt='%(asctime)s | %(name)s | %(levelname)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
    )
    logger.addHandler(console_handler)

    _loggers[name] = logger
    return logger
