"""
Validation of runbook and step definitions submitted through the API.

Each ``validate_*`` function collects every problem it finds and raises a
single ValidationError whose message is the first one. On success it returns
the column values to store.
"""

import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from errors import ValidationError
from runbooks.models import OnErrorBehavior, StepType

UUID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$',
    re.IGNORECASE
)

SIMPLE_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]
ADVANCED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]

STEP_DEFAULTS = {
    "timeout_seconds": 300,
    "retry_count": 0,
    "retry_delay_seconds": 5,
}


def _non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _is_valid_url(url: str) -> bool:
    if url.startswith("http://") or url.startswith("https://"):
        parsed = urlparse(url)
        return bool(parsed.netloc)
    return url.startswith("/")


def _check_int(data: Dict[str, Any], key: str, minimum: int, errors: List[str]) -> None:
    value = data.get(key)
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        errors.append(f"{key} must be an integer >= {minimum}")


def _raise_if_errors(errors: List[str]) -> None:
    if errors:
        raise ValidationError(errors[0], errors=errors)


def validate_runbook_definition(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate a runbook create or update payload.

    Args:
        data: Request body
        partial: Whether absent fields are allowed (updates)

    Returns:
        Column values to store

    Raises:
        ValidationError: If the payload is invalid
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a valid JSON object")

    errors = []
    values: Dict[str, Any] = {}

    if "name" in data or not partial:
        if not _non_empty_string(data.get("name")):
            errors.append("name is required")
        else:
            values["name"] = data["name"].strip()

    if "description" in data:
        values["description"] = data["description"] or None

    if data.get("is_active") is not None:
        if not isinstance(data["is_active"], bool):
            errors.append("is_active must be a boolean")
        else:
            values["is_active"] = data["is_active"]

    _check_int(data, "max_execution_time_minutes", 1, errors)
    if data.get("max_execution_time_minutes") is not None:
        values["max_execution_time_minutes"] = data["max_execution_time_minutes"]

    behavior = data.get("on_error_behavior")
    if behavior is not None:
        valid = [b.value for b in OnErrorBehavior]
        if behavior not in valid:
            errors.append(f"Invalid on_error_behavior. Must be one of: {', '.join(valid)}")
        else:
            values["on_error_behavior"] = OnErrorBehavior(behavior)

    _raise_if_errors(errors)
    return values


def validate_step_definition(data: Dict[str, Any], creating: bool = True) -> Dict[str, Any]:
    """
    Validate a step create or update payload.

    ``ai_operation`` steps need UUID-shaped ``prompt_template_id`` and
    ``endpoint_id``. ``endpoint_call`` steps need either a simple
    configuration (``http_method`` and ``endpoint_url``) or an advanced
    ``endpoint_config`` with ``method`` and ``url``. Fields belonging to the
    other step type are cleared.

    Args:
        data: Request body
        creating: Whether defaults are filled in for absent limits

    Returns:
        Column values to store

    Raises:
        ValidationError: If the payload is invalid
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a valid JSON object")

    if not _non_empty_string(data.get("step_name")):
        raise ValidationError("step_name is required and must be a non-empty string")

    valid_types = [t.value for t in StepType]
    step_type = data.get("step_type") or StepType.AI_OPERATION.value
    if step_type not in valid_types:
        raise ValidationError(f"Invalid step_type. Must be one of: {', '.join(valid_types)}")
    step_type = StepType(step_type)

    errors: List[str] = []
    if step_type == StepType.AI_OPERATION:
        errors.extend(_validate_ai_operation(data))
    else:
        errors.extend(_validate_endpoint_call(data))

    for key in STEP_DEFAULTS:
        _check_int(data, key, 1 if key == "timeout_seconds" else 0, errors)

    _raise_if_errors(errors)

    is_ai = step_type == StepType.AI_OPERATION
    values: Dict[str, Any] = {
        "step_name": data["step_name"].strip(),
        "description": data.get("description") or None,
        "step_type": step_type,
        "prompt_template_id": data.get("prompt_template_id") if is_ai else None,
        "endpoint_id": data.get("endpoint_id") if is_ai else None,
        "http_method": data["http_method"].upper() if not is_ai and data.get("http_method") else None,
        "endpoint_url": data.get("endpoint_url") if not is_ai and data.get("endpoint_url") else None,
        "endpoint_config": data.get("endpoint_config") if not is_ai and data.get("endpoint_config") else None,
    }

    for key, default in STEP_DEFAULTS.items():
        if data.get(key) is not None:
            values[key] = data[key]
        elif creating:
            values[key] = default

    return values


def _validate_ai_operation(data: Dict[str, Any]) -> List[str]:
    errors = []
    for key in ("prompt_template_id", "endpoint_id"):
        value = data.get(key)
        if not _non_empty_string(value):
            errors.append(f"{key} is required and must be a valid non-empty string for ai_operation steps")
        elif not UUID_PATTERN.match(value):
            errors.append(f"{key} must be a valid UUID")
    return errors


def _validate_endpoint_call(data: Dict[str, Any]) -> List[str]:
    http_method = data.get("http_method")
    endpoint_url = data.get("endpoint_url")
    endpoint_config = data.get("endpoint_config")

    has_simple = _non_empty_string(http_method) and _non_empty_string(endpoint_url)
    has_advanced = bool(endpoint_config)

    if not has_simple and not has_advanced:
        return ["http_method + endpoint_url are required for endpoint_call steps. "
                "endpoint_config is optional for advanced features."]

    errors = []
    if has_simple:
        if http_method.upper() not in SIMPLE_METHODS:
            errors.append(f"Invalid HTTP method. Must be one of: {', '.join(SIMPLE_METHODS)}")
        if not _is_valid_url(endpoint_url):
            errors.append("endpoint_url must be a valid absolute URL (starting with http:// or https://) "
                          "or relative URL (starting with /)")

    if has_advanced:
        errors.extend(_validate_endpoint_config(endpoint_config, require_target=not has_simple))

    return errors


def _validate_endpoint_config(endpoint_config: Any, require_target: bool) -> List[str]:
    if not isinstance(endpoint_config, dict):
        return ["endpoint_config must be a JSON object"]

    errors = []
    method: Optional[str] = endpoint_config.get("method")
    url: Optional[str] = endpoint_config.get("url")

    if require_target:
        if not method or not url:
            errors.append("endpoint_config must include method and url for endpoint_call steps")
        elif not isinstance(method, str) or method.upper() not in ADVANCED_METHODS:
            errors.append(f"Invalid HTTP method. Must be one of: {', '.join(ADVANCED_METHODS)}")

    headers = endpoint_config.get("headers")
    if headers is not None and (not isinstance(headers, dict)
                                or not all(isinstance(v, str) for v in headers.values())):
        errors.append("endpoint_config.headers must map header names to strings")

    body_template = endpoint_config.get("body_template")
    if body_template is not None and not isinstance(body_template, str):
        errors.append("endpoint_config.body_template must be a string")

    mapping = endpoint_config.get("response_mapping")
    if mapping is not None and not isinstance(mapping, dict):
        errors.append("endpoint_config.response_mapping must be a JSON object")

    return errors
