"""Standardized error description helpers for executions and webhook responses"""

import traceback
from typing import Any, Dict, Optional, Tuple

DEFAULT_ERROR_MESSAGE = "Workflow execution failed"


def describe_exception(exception: BaseException, default: str = DEFAULT_ERROR_MESSAGE) -> Tuple[str, str]:
    """
    Build the (message, stack) pair persisted on failed executions.

    Args:
        exception: The exception that ended the execution
        default: Message used when the exception carries no text

    Returns:
        Tuple of (error_message, error_stack)
    """
    message = str(exception).strip() or default
    stack = "".join(traceback.format_exception(type(exception), exception, exception.__traceback__))
    return message, stack


def error_payload(
    error_message: str,
    *,
    execution_id: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Create the standardized JSON body for a failed request.

    Args:
        error_message: User-facing error message
        execution_id: Public id of the failed execution, if one was created
        extra: Optional additional fields

    Returns:
        Dict with the standardized error format
    """
    payload: Dict[str, Any] = {"status": "error", "message": error_message}
    if execution_id:
        payload["executionId"] = execution_id
    if extra:
        payload.update(extra)
    return payload
