"""
Template substitution for runbook steps.

Two flavours of ``{{...}}`` placeholder are supported:

- ``render_template`` substitutes variable names, used on prompt templates
  of AI operations.
- ``render_body_template`` substitutes dotted paths into the step input,
  used on request body templates of endpoint calls.

Neither raises: a placeholder that cannot be resolved is left as written.
"""

import json
import logging
import re
from typing import Any, Dict, Match, Optional, Pattern

# Configure logger
logger = logging.getLogger(__name__)

# Regex for placeholders like {{ name }} or {{data.items.0.id}}
PLACEHOLDER_PATTERN: Pattern = re.compile(r'\{\{\s*([^{}]*?)\s*\}\}')

# Sentinel telling "missing" apart from a stored None
_MISSING = object()


def stringify(value: Any) -> str:
    """
    Convert a value to the text substituted for a placeholder.

    Strings are used as-is; dicts, lists, booleans and None become JSON
    text; any other value goes through ``str``.
    """
    if isinstance(value, str):
        return value
    if value is None or isinstance(value, (dict, list, bool)):
        return json.dumps(value)
    return str(value)


def render_template(template: Optional[str], variables: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Substitute ``{{name}}`` placeholders with values from ``variables``.

    Args:
        template: Template text, or None
        variables: Mapping of variable names to values

    Returns:
        The rendered text; None when ``template`` is None
    """
    if template is None:
        return None
    if not variables:
        return template

    def replace_func(match: Match) -> str:
        name = match.group(1)
        if name in variables:
            return stringify(variables[name])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace_func, template)


def resolve_path(obj: Any, path: Optional[str], default: Any = None) -> Any:
    """
    Resolve a dotted path against nested dicts and lists.

    A leading ``$.`` (or a lone ``$``) is ignored. Numeric segments index
    into lists; any other segment looks up a dict key.

    Args:
        obj: Root object to walk
        path: Path such as ``"$.data.items.0.id"``
        default: Value returned when the path does not resolve

    Returns:
        The value at ``path``, the root for an empty path, or ``default``
    """
    if path is None:
        return default

    path = path.strip()
    if path.startswith("$."):
        path = path[2:]
    elif path == "$":
        path = ""

    if not path:
        return obj

    current = obj
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return default
            current = current[segment]
        elif isinstance(current, list):
            if not segment.isdigit():
                return default
            index = int(segment)
            if index >= len(current):
                return default
            current = current[index]
        else:
            return default

    return current


def render_body_template(template: str, data: Any) -> str:
    """
    Substitute ``{{path}}`` placeholders with values found in ``data``.

    Placeholders whose path does not resolve, or resolves to null, keep
    their original text.

    Args:
        template: Body template text
        data: Step input the paths are resolved against

    Returns:
        The rendered body
    """
    def replace_func(match: Match) -> str:
        value = resolve_path(data, match.group(1), _MISSING)
        if value is _MISSING or value is None:
            logger.debug(f"Body template path '{match.group(1)}' did not resolve")
            return match.group(0)
        return stringify(value)

    return PLACEHOLDER_PATTERN.sub(replace_func, template)
