"""
Tests for the AI operation executor.
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from conftest import json_response
from errors import APIError, ErrorCode, ResourceNotFoundError, StepConfigurationError, StepExecutionError
from runbooks.ai_executor import AIOperationExecutor
from runbooks.catalog import AIModel, AIRequestLog, PromptTemplate, calculate_cost_cents
from runbooks.models import RunbookStep, StepType


def completion(content, usage=None):
    body = {"choices": [{"message": {"role": "assistant", "content": content}}]}
    if usage is not None:
        body["usage"] = usage
    return body


@pytest.fixture
def session():
    """Mocked requests session returned for every call."""
    return MagicMock()


@pytest.fixture
def executor(catalog, session):
    executor = AIOperationExecutor(catalog=catalog, max_retries=0, default_timeout=30)
    with patch.object(AIOperationExecutor, "_create_session", return_value=session):
        yield executor


def ai_step(ai_catalog, **values):
    return RunbookStep(
        id="step-ai",
        step_name="Summarize",
        step_type=StepType.AI_OPERATION,
        endpoint_id=ai_catalog["endpoint"].id,
        prompt_template_id=ai_catalog["template"].id,
        **values
    )


def test_request_built_from_catalog(executor, session, ai_catalog, monkeypatch):
    monkeypatch.setenv("TEST_OPENAI_API_KEY", "sk-test")
    session.request.return_value = json_response(completion("short summary"))

    output = executor.execute(ai_step(ai_catalog), {"topic": "science", "text": "long text"}, "user-1", 60)

    assert output == {"content": "short summary"}
    session.request.assert_called_once()
    kwargs = session.request.call_args.kwargs
    assert kwargs["method"] == "POST"
    assert kwargs["url"] == "https://api.openai.example/v1/chat/completions"
    assert kwargs["timeout"] == 60
    assert kwargs["headers"] == {"Content-Type": "application/json", "Authorization": "Bearer sk-test"}
    assert kwargs["json"] == {
        "model": "gpt-test",
        "temperature": 0.2,
        "max_tokens": 256,
        "top_p": 1.0,
        "messages": [
            {"role": "system", "content": "You summarize science articles."},
            {"role": "user", "content": "Summarize: long text"},
        ],
    }


def test_non_dict_input_exposed_as_input_variable(executor, session, ai_catalog, db):
    template = db.add(PromptTemplate(name="Echo", user_prompt_template="Say {{input}}"))
    session.request.return_value = json_response(completion("ok"))
    step = ai_step(ai_catalog)
    step.prompt_template_id = template.id

    executor.execute(step, "hello", None, None)

    body = session.request.call_args.kwargs["json"]
    assert body["messages"] == [{"role": "user", "content": "Say hello"}]


def test_provider_timeout_used_without_step_timeout(executor, session, ai_catalog, monkeypatch):
    monkeypatch.delenv("TEST_OPENAI_API_KEY", raising=False)
    session.request.return_value = json_response(completion("ok"))

    executor.execute(ai_step(ai_catalog), {}, None, None)

    kwargs = session.request.call_args.kwargs
    assert kwargs["timeout"] == 45
    assert "Authorization" not in kwargs["headers"]


def test_structured_output_parsed(executor, session, ai_catalog, db):
    schema = {"name": "summary", "schema": {"type": "object"}}
    template = db.add(PromptTemplate(
        name="Structured",
        user_prompt_template="Summarize {{text}}",
        use_structured_output=True,
        structured_output_schema=schema,
        structured_output_format="json_schema",
    ))
    session.request.return_value = json_response(completion('{"title": "Hi", "score": 3}'))
    step = ai_step(ai_catalog)
    step.prompt_template_id = template.id

    output = executor.execute(step, {"text": "x"}, None, 10)

    assert output == {"title": "Hi", "score": 3}
    assert session.request.call_args.kwargs["json"]["response_format"] == {
        "type": "json_schema",
        "json_schema": schema,
    }


def test_structured_output_parse_failure(executor, session, ai_catalog, db):
    template = db.add(PromptTemplate(
        name="Structured",
        user_prompt_template="Summarize",
        use_structured_output=True,
        structured_output_schema={"type": "object"},
        structured_output_format="pydantic",
    ))
    session.request.return_value = json_response(completion("not json"))
    step = ai_step(ai_catalog)
    step.prompt_template_id = template.id

    with pytest.raises(StepExecutionError) as excinfo:
        executor.execute(step, {}, None, 10)

    assert excinfo.value.code == ErrorCode.STEP_INVALID_OUTPUT


def test_http_error_becomes_step_error(executor, session, ai_catalog):
    session.request.return_value = json_response({"error": "boom"}, status_code=500,
                                                 reason="Internal Server Error")

    with pytest.raises(StepExecutionError) as excinfo:
        executor.execute(ai_step(ai_catalog), {}, None, 10)

    assert excinfo.value.message == "AI API error: 500 Internal Server Error"
    assert excinfo.value.retryable is True


@pytest.mark.parametrize("status_code, reason, code", [
    (401, "Unauthorized", ErrorCode.API_AUTHENTICATION_ERROR),
    (400, "Bad Request", ErrorCode.API_RESPONSE_ERROR),
])
def test_client_error_not_retryable(executor, session, ai_catalog, status_code, reason, code):
    session.request.return_value = json_response({"error": "rejected"}, status_code=status_code, reason=reason)

    with pytest.raises(StepExecutionError) as excinfo:
        executor.execute(ai_step(ai_catalog), {}, None, 10)

    assert excinfo.value.code == code
    assert excinfo.value.retryable is False


def test_rate_limit_stays_retryable(executor, session, ai_catalog):
    session.request.return_value = json_response({"error": "slow down"}, status_code=429,
                                                 reason="Too Many Requests")

    with pytest.raises(StepExecutionError) as excinfo:
        executor.execute(ai_step(ai_catalog), {}, None, 10)

    assert excinfo.value.retryable is True


def test_network_error(executor, session, ai_catalog):
    session.request.side_effect = requests.exceptions.ConnectionError("refused")

    with pytest.raises(StepExecutionError) as excinfo:
        executor.execute(ai_step(ai_catalog), {}, None, 10)

    assert excinfo.value.code == ErrorCode.API_CONNECTION_ERROR


def test_missing_template_is_configuration_error(executor, session, ai_catalog):
    step = ai_step(ai_catalog)
    step.prompt_template_id = "00000000-0000-4000-8000-000000000000"

    with pytest.raises(StepConfigurationError) as excinfo:
        executor.execute(step, {}, None, 10)

    assert excinfo.value.message == "Prompt template not found"
    session.request.assert_not_called()


def test_inactive_endpoint_not_found(executor, ai_catalog, db):
    endpoint = ai_catalog["endpoint"]
    endpoint.is_active = False
    db.update(endpoint)

    with pytest.raises(ResourceNotFoundError):
        executor.generate(endpoint.id, ai_catalog["template"].id, {})


def test_generate_logs_request_with_cost(executor, session, ai_catalog, db):
    usage = {"prompt_tokens": 1_000_000, "completion_tokens": 500_000, "total_tokens": 1_500_000}
    session.request.return_value = json_response(completion("hi", usage))

    result = executor.generate(ai_catalog["endpoint"].id, ai_catalog["template"].id,
                               {"topic": "t", "text": "x"}, user_id="user-1")

    assert result["endpoint"] == {"id": ai_catalog["endpoint"].id, "slug": "chat",
                                  "model": "GPT Test", "provider": "OpenAI"}
    assert result["prompt_template"]["name"] == "Summarize"

    logs = db.query(AIRequestLog)
    assert len(logs) == 1
    assert logs[0].user_id == "user-1"
    assert logs[0].response_status == 200
    assert logs[0].tokens_used == 1_500_000
    # 2.50 + 5.00 dollars
    assert logs[0].cost_cents == 750


def test_logging_failure_does_not_fail_call(executor, session, ai_catalog):
    session.request.return_value = json_response(completion("still fine"))

    with patch.object(executor.catalog, "log_request", side_effect=RuntimeError("db down")):
        output = executor.execute(ai_step(ai_catalog), {}, None, 10)

    assert output == {"content": "still fine"}


def test_generate_http_error_keeps_details(executor, session, ai_catalog):
    response = json_response({}, status_code=429, reason="Too Many Requests")
    response.text = "slow down"
    session.request.return_value = response

    with pytest.raises(APIError) as excinfo:
        executor.generate(ai_catalog["endpoint"].id, ai_catalog["template"].id, {})

    assert excinfo.value.code == ErrorCode.API_RATE_LIMIT_ERROR
    assert excinfo.value.details["details"] == "slow down"


def test_missing_message_content(executor, session, ai_catalog):
    session.request.return_value = json_response({"choices": []})

    with pytest.raises(StepExecutionError) as excinfo:
        executor.execute(ai_step(ai_catalog), {}, None, 10)

    assert excinfo.value.code == ErrorCode.STEP_INVALID_OUTPUT


def test_calculate_cost_cents():
    model = AIModel(input_cost_per_million_tokens=3.0, output_cost_per_million_tokens=15.0)

    assert calculate_cost_cents({"prompt_tokens": 2000, "completion_tokens": 1000}, model) == 2
    assert calculate_cost_cents(None, model) is None
    assert calculate_cost_cents({"prompt_tokens": 10}, None) is None
    assert calculate_cost_cents({}, model) is None
