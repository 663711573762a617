from __future__ import annotations

import re
from typing import Any, Dict, Mapping

_TEMPLATE_RE = re.compile(r"\{\{([^}]+)\}\}")

MISSING = object()


def get_path(root: Any, path: str, default: Any = None) -> Any:
    """Walk a dot-delimited path through nested dicts (and lists by index).

    Never raises: an absent key, an out-of-range index or a scalar in the
    middle of the path returns ``default``.
    """
    current = root
    for part in path.split("."):
        if current is None:
            return default
        if isinstance(current, Mapping):
            if part not in current:
                return default
            current = current[part]
        elif isinstance(current, (list, tuple)):
            if not part.isdigit() or int(part) >= len(current):
                return default
            current = current[int(part)]
        else:
            return default
    return current


def resolve_template_string(text: str, context: Dict[str, Any]) -> Any:
    whole = _TEMPLATE_RE.fullmatch(text.strip())
    if whole:
        # A lone placeholder keeps the referenced value's type
        value = get_path(context, whole.group(1).strip(), MISSING)
        return text if value is MISSING else value

    def _sub(match: re.Match) -> str:
        value = get_path(context, match.group(1).strip(), MISSING)
        return match.group(0) if value is MISSING else str(value)

    return _TEMPLATE_RE.sub(_sub, text)


def resolve_parameter_templates(params: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    """Replace ``{{tool.path}}`` placeholders in params with session values.

    Unresolvable placeholders are left verbatim.
    """
    return {key: _resolve_value(value, context) for key, value in params.items()}


def _resolve_value(value: Any, context: Dict[str, Any]) -> Any:
    if isinstance(value, str):
        return resolve_template_string(value, context)
    if isinstance(value, list):
        return [_resolve_value(v, context) for v in value]
    if isinstance(value, dict):
        return resolve_parameter_templates(value, context)
    return value
