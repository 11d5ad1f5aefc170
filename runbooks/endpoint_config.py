"""
Merged request configuration of ``endpoint_call`` steps.

A step may describe its request in a simple form (``http_method`` and
``endpoint_url`` columns), an advanced form (the ``endpoint_config`` JSON
column), or both. ``EndpointCallConfig.from_step`` folds them into one value
with fixed precedence:

- method and url come from the simple form when both are set, otherwise
  from the advanced form;
- headers, body_template and response_mapping only exist in the advanced
  form and are always taken from it.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from errors import StepConfigurationError, ErrorCode

# Methods whose request carries the step input as a JSON body
BODY_METHODS = ("POST", "PUT", "PATCH")


class ResponseMapping(BaseModel):
    """How the step output is extracted from the response body."""
    output_path: Optional[str] = Field(default=None, description="Path such as '$.data.id'")
    output_key: Optional[str] = Field(default=None, description="Key the extracted value is wrapped in")


class AdvancedEndpointConfig(BaseModel):
    """Shape of the ``endpoint_config`` column."""
    method: Optional[str] = None
    url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    body_template: Optional[str] = None
    response_mapping: Optional[ResponseMapping] = None


class EndpointCallConfig(BaseModel):
    """Everything needed to issue the request of one endpoint call."""
    method: str
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body_template: Optional[str] = None
    response_mapping: Optional[ResponseMapping] = None

    @property
    def sends_input_as_body(self) -> bool:
        return self.body_template is None and self.method in BODY_METHODS

    @classmethod
    def from_step(cls, step: Any) -> "EndpointCallConfig":
        """
        Build the merged configuration of a step.

        Args:
            step: A RunbookStep (or any object with the same attributes)

        Returns:
            The merged configuration

        Raises:
            StepConfigurationError: If neither form names a method and a url,
                or ``endpoint_config`` is malformed
        """
        advanced = None
        if step.endpoint_config:
            try:
                advanced = AdvancedEndpointConfig.model_validate(step.endpoint_config)
            except PydanticValidationError as e:
                raise StepConfigurationError(
                    f"Invalid endpoint_config: {e.errors()[0]['msg']}",
                    ErrorCode.STEP_INVALID_CONFIG,
                    {"step_id": getattr(step, "id", None)}
                )

        if step.http_method and step.endpoint_url:
            method, url = step.http_method, step.endpoint_url
        elif advanced is not None and advanced.method and advanced.url:
            method, url = advanced.method, advanced.url
        else:
            raise StepConfigurationError(
                "Endpoint configuration is required for endpoint_call steps. Use http_method + "
                "endpoint_url for simple requests, or endpoint_config for advanced configuration.",
                ErrorCode.STEP_INVALID_CONFIG,
                {"step_id": getattr(step, "id", None)}
            )

        return cls(
            method=method.upper(),
            url=url,
            headers=dict(advanced.headers) if advanced else {},
            body_template=advanced.body_template if advanced else None,
            response_mapping=advanced.response_mapping if advanced else None,
        )


def merge_headers(base: Dict[str, str], override: Dict[str, str]) -> Dict[str, str]:
    """
    Merge two header mappings, ``override`` winning on names that differ only in case.

    Args:
        base: Default headers
        override: Headers that replace defaults

    Returns:
        New merged mapping
    """
    merged = dict(base)
    for name, value in override.items():
        for existing in [key for key in merged if key.lower() == name.lower()]:
            del merged[existing]
        merged[name] = value
    return merged


def has_header(headers: Dict[str, str], name: str) -> bool:
    return any(key.lower() == name.lower() for key in headers)
