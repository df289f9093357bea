"""Comparison semantics shared by condition and switch nodes."""
import json
import math
from typing import Any, Iterable, Optional, Tuple

from .schema import SwitchCase

CONDITION_OPERATORS = (
    "exists",
    "not_exists",
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "gt",
    "gte",
    "lt",
    "lte",
)


def to_text(value: Any) -> str:
    """Render a value the way the dashboard displays it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def _normalize(value: Any, case_sensitive: bool) -> str:
    text = to_text(value)
    return text if case_sensitive else text.lower()


def _to_number(text: str) -> Optional[float]:
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _exists(value: Any) -> bool:
    return value is not None and bool(to_text(value).strip())


def evaluate_condition(left: Any, operator: str, right: Any = None, case_sensitive: bool = False) -> bool:
    """
    Evaluate ``left <operator> right``.

    Ordering operators compare numerically when both sides parse as numbers
    and fall back to string comparison otherwise; they are false when either
    side is empty.

    Raises:
        ValueError: For an unknown operator
    """
    left_text = _normalize(left, case_sensitive)
    right_text = _normalize(right, case_sensitive)

    if operator == "exists":
        return _exists(left)
    if operator == "not_exists":
        return not _exists(left)
    if operator == "equals":
        return left_text == right_text
    if operator == "not_equals":
        return left_text != right_text
    if operator == "contains":
        return right_text in left_text
    if operator == "not_contains":
        return right_text not in left_text
    if operator in ("gt", "gte", "lt", "lte"):
        if not _exists(left) or not _exists(right):
            return False
        left_number = _to_number(left_text)
        right_number = _to_number(right_text)
        if left_number is None or right_number is None:
            lhs: Any = left_text
            rhs: Any = right_text
        else:
            lhs, rhs = left_number, right_number
        if operator == "gt":
            return lhs > rhs
        if operator == "gte":
            return lhs >= rhs
        if operator == "lt":
            return lhs < rhs
        return lhs <= rhs
    raise ValueError(f"Unknown condition operator: {operator}")


def select_switch_route(
    value: Any,
    cases: Iterable[SwitchCase],
    default_route: Optional[str] = None,
    case_sensitive: bool = False,
) -> Tuple[bool, Optional[str]]:
    """
    Pick the route for a switch value.

    Returns ``(matched, route)``; cases with an empty ``equals`` never match.
    Without a match the default route is returned.
    """
    normalized = _normalize(value, case_sensitive)
    for case in cases:
        expected = _normalize(case.equals, case_sensitive)
        if not expected:
            continue
        if normalized == expected:
            return True, case.route
    return False, default_route


__all__ = ["CONDITION_OPERATORS", "evaluate_condition", "select_switch_route", "to_text"]
