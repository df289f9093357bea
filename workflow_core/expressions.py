"""
``{{ path }}`` template resolution for node configs.

Paths are dotted lookups into the run scope (``trigger``, ``nodes``,
``variables``, ``loop`` and the active loop variables). ``<nodeId>.field`` is
shorthand for ``nodes.<nodeId>.field`` and ``items[0]`` for ``items.0``.
"""
import json
import re
from typing import Any, Dict

TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")
_INDEX_PATTERN = re.compile(r"\[(\d+)\]")


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


def lookup_path(value: Any, path: str) -> Any:
    """Walk ``path`` through dicts and lists; returns ``MISSING`` when any segment is absent."""
    current = value
    for part in _INDEX_PATTERN.sub(r".\1", path).split("."):
        if not part:
            continue
        if isinstance(current, dict):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)):
            try:
                index = int(part)
            except ValueError:
                return MISSING
            if not -len(current) <= index < len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def resolve_expression(expression: str, scope: Dict[str, Any]) -> Any:
    expression = expression.strip()
    value = lookup_path(scope, expression)
    if value is not MISSING:
        return value
    # bare node id shorthand
    return lookup_path(scope.get("nodes") or {}, expression)


def _as_text(value: Any) -> str:
    if value is MISSING or value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def interpolate_string(template: str, scope: Dict[str, Any]) -> Any:
    """
    Resolve templates in one string.

    A string that is exactly one template yields the referenced value as-is
    (None when it does not resolve); otherwise each template is spliced in as
    text.
    """
    whole = TEMPLATE_PATTERN.fullmatch(template.strip()) if "{{" in template else None
    if whole is not None:
        value = resolve_expression(whole.group(1), scope)
        return None if value is MISSING else value
    return TEMPLATE_PATTERN.sub(lambda match: _as_text(resolve_expression(match.group(1), scope)), template)


def interpolate(value: Any, scope: Dict[str, Any]) -> Any:
    """Recursively resolve templates in strings, lists and dicts."""
    if isinstance(value, str):
        return interpolate_string(value, scope) if "{{" in value else value
    if isinstance(value, list):
        return [interpolate(item, scope) for item in value]
    if isinstance(value, dict):
        return {key: interpolate(item, scope) for key, item in value.items()}
    return value


__all__ = ["MISSING", "TEMPLATE_PATTERN", "interpolate", "interpolate_string", "lookup_path", "resolve_expression"]
