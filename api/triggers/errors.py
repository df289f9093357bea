from __future__ import annotations

from typing import Optional


class TriggerConfigurationError(Exception):
    """
    A schedule trigger cannot be evaluated as configured.

    Raised for a missing or malformed cron expression and for an unknown
    timezone. The dispatcher skips the workflow for the current tick and logs
    the reason.
    """

    def __init__(self, message: str, *, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason or message


__all__ = ["TriggerConfigurationError"]
