"""
Tests for runbook and step definition validation.
"""
import pytest

from errors import ValidationError
from runbooks.models import OnErrorBehavior, StepType
from runbooks.validation import validate_runbook_definition, validate_step_definition

TEMPLATE_ID = "6f1c2a9e-3b4d-4c8e-9f0a-1b2c3d4e5f60"
ENDPOINT_ID = "0a9b8c7d-6e5f-4a3b-8c2d-1e0f9a8b7c6d"


def validation_errors(fn, *args, **kwargs):
    with pytest.raises(ValidationError) as excinfo:
        fn(*args, **kwargs)
    return excinfo.value.errors


class TestRunbookDefinition:

    def test_minimal(self):
        assert validate_runbook_definition({"name": "  Digest  "}) == {"name": "Digest"}

    def test_full(self):
        values = validate_runbook_definition({
            "name": "Digest",
            "description": "Daily",
            "is_active": False,
            "max_execution_time_minutes": 10,
            "on_error_behavior": "continue",
        })

        assert values == {
            "name": "Digest",
            "description": "Daily",
            "is_active": False,
            "max_execution_time_minutes": 10,
            "on_error_behavior": OnErrorBehavior.CONTINUE,
        }

    def test_name_required(self):
        assert validation_errors(validate_runbook_definition, {"name": "  "}) == ["name is required"]

    def test_partial_update_without_name(self):
        assert validate_runbook_definition({"is_active": True}, partial=True) == {"is_active": True}

    def test_collects_every_error(self):
        errors = validation_errors(validate_runbook_definition, {
            "is_active": "yes",
            "max_execution_time_minutes": 0,
            "on_error_behavior": "retry",
        })

        assert errors == [
            "name is required",
            "is_active must be a boolean",
            "max_execution_time_minutes must be an integer >= 1",
            "Invalid on_error_behavior. Must be one of: stop, continue",
        ]

    def test_body_must_be_object(self):
        with pytest.raises(ValidationError):
            validate_runbook_definition(["not", "an", "object"])


class TestStepDefinition:

    def test_ai_operation_defaults(self):
        values = validate_step_definition({
            "step_name": "Summarize",
            "prompt_template_id": TEMPLATE_ID,
            "endpoint_id": ENDPOINT_ID,
            "http_method": "POST",
        })

        assert values["step_type"] == StepType.AI_OPERATION
        assert values["prompt_template_id"] == TEMPLATE_ID
        assert values["http_method"] is None
        assert values["timeout_seconds"] == 300
        assert values["retry_count"] == 0
        assert values["retry_delay_seconds"] == 5

    def test_ai_operation_requires_uuids(self):
        errors = validation_errors(validate_step_definition, {
            "step_name": "Summarize",
            "step_type": "ai_operation",
            "prompt_template_id": "not-a-uuid",
        })

        assert errors == [
            "prompt_template_id must be a valid UUID",
            "endpoint_id is required and must be a valid non-empty string for ai_operation steps",
        ]

    def test_step_name_required(self):
        with pytest.raises(ValidationError) as excinfo:
            validate_step_definition({"step_type": "endpoint_call"})
        assert excinfo.value.message == "step_name is required and must be a non-empty string"

    def test_unknown_step_type(self):
        with pytest.raises(ValidationError) as excinfo:
            validate_step_definition({"step_name": "x", "step_type": "webhook"})
        assert excinfo.value.message == "Invalid step_type. Must be one of: ai_operation, endpoint_call"

    def test_simple_endpoint_call(self):
        values = validate_step_definition({
            "step_name": "Send",
            "step_type": "endpoint_call",
            "http_method": "post",
            "endpoint_url": "/api/integrations/telegram/send",
            "prompt_template_id": TEMPLATE_ID,
            "retry_count": 2,
        })

        assert values["http_method"] == "POST"
        assert values["endpoint_url"] == "/api/integrations/telegram/send"
        assert values["prompt_template_id"] is None
        assert values["endpoint_config"] is None
        assert values["retry_count"] == 2

    def test_endpoint_call_needs_configuration(self):
        errors = validation_errors(validate_step_definition, {"step_name": "Send", "step_type": "endpoint_call"})
        assert errors[0].startswith("http_method + endpoint_url are required")

    @pytest.mark.parametrize("method,url,expected", [
        ("TRACE", "/api/x", "Invalid HTTP method. Must be one of: GET, POST, PUT, PATCH, DELETE, HEAD, OPTIONS"),
        ("GET", "api/x", "endpoint_url must be a valid absolute URL (starting with http:// or https://) "
                         "or relative URL (starting with /)"),
        ("GET", "https://", "endpoint_url must be a valid absolute URL (starting with http:// or https://) "
                            "or relative URL (starting with /)"),
    ])
    def test_simple_configuration_checks(self, method, url, expected):
        errors = validation_errors(validate_step_definition, {
            "step_name": "Send", "step_type": "endpoint_call", "http_method": method, "endpoint_url": url,
        })
        assert errors == [expected]

    def test_advanced_configuration_only(self):
        config = {"method": "PUT", "url": "https://example.com/x", "headers": {"X-Key": "1"},
                  "body_template": "{{a}}", "response_mapping": {"output_key": "r"}}

        values = validate_step_definition({"step_name": "Put", "step_type": "endpoint_call",
                                           "endpoint_config": config})

        assert values["endpoint_config"] == config
        assert values["http_method"] is None

    def test_advanced_configuration_requires_target(self):
        errors = validation_errors(validate_step_definition, {
            "step_name": "Put", "step_type": "endpoint_call", "endpoint_config": {"headers": {"A": "b"}},
        })
        assert errors == ["endpoint_config must include method and url for endpoint_call steps"]

    def test_advanced_fields_layer_on_simple(self):
        values = validate_step_definition({
            "step_name": "Send",
            "step_type": "endpoint_call",
            "http_method": "POST",
            "endpoint_url": "https://hooks.example.com",
            "endpoint_config": {"headers": {"Authorization": "Bearer x"}},
        })
        assert values["endpoint_config"] == {"headers": {"Authorization": "Bearer x"}}

    def test_advanced_field_types(self):
        errors = validation_errors(validate_step_definition, {
            "step_name": "Send",
            "step_type": "endpoint_call",
            "endpoint_config": {"method": "GET", "url": "/x", "headers": {"A": 1},
                                "body_template": {"not": "text"}, "response_mapping": "$.a"},
        })
        assert errors == [
            "endpoint_config.headers must map header names to strings",
            "endpoint_config.body_template must be a string",
            "endpoint_config.response_mapping must be a JSON object",
        ]

    def test_limits_checked(self):
        errors = validation_errors(validate_step_definition, {
            "step_name": "Send", "step_type": "endpoint_call", "http_method": "GET", "endpoint_url": "/x",
            "timeout_seconds": 0, "retry_count": -1, "retry_delay_seconds": "5",
        })
        assert errors == [
            "timeout_seconds must be an integer >= 1",
            "retry_count must be an integer >= 0",
            "retry_delay_seconds must be an integer >= 0",
        ]

    def test_update_does_not_fill_defaults(self):
        values = validate_step_definition({"step_name": "Send", "step_type": "endpoint_call",
                                           "http_method": "GET", "endpoint_url": "/x"}, creating=False)
        assert "timeout_seconds" not in values
        assert "retry_count" not in values
