"""
Pytest configuration and fixtures for the runbook engine tests.

This module provides shared fixtures and configuration for all tests.
"""
import pytest

from db import Database
from runbooks.catalog import AIEndpoint, AIModel, AIProvider, CatalogStore, PromptTemplate
from runbooks.models import StepType
from runbooks.store import ExecutionStore


@pytest.fixture
def db(tmp_path):
    """Provide an isolated SQLite database per test."""
    database = Database(f"sqlite:///{tmp_path / 'runbooks.db'}")
    yield database
    database.dispose()


@pytest.fixture
def store(db):
    return ExecutionStore(db)


@pytest.fixture
def catalog(db):
    return CatalogStore(db)


@pytest.fixture
def make_runbook(store):
    """Factory creating runbooks with sensible defaults."""
    def _make(**values):
        values.setdefault("name", "Test runbook")
        return store.create_runbook(values)
    return _make


@pytest.fixture
def make_endpoint_step(store):
    """Factory appending simple endpoint_call steps to a runbook."""
    def _make(runbook_id, step_name="Send message", http_method="POST",
              endpoint_url="/api/integrations/telegram/send", **values):
        return store.create_step(runbook_id, {
            "step_name": step_name,
            "step_type": StepType.ENDPOINT_CALL,
            "http_method": http_method,
            "endpoint_url": endpoint_url,
            **values
        })
    return _make


@pytest.fixture
def ai_catalog(db):
    """Seed one provider, model, endpoint and prompt template."""
    provider = db.add(AIProvider(
        name="OpenAI",
        base_url="https://api.openai.example/",
        api_key_env="TEST_OPENAI_API_KEY",
        global_timeout_seconds=45,
    ))
    model = db.add(AIModel(
        provider_id=provider.id,
        model_identifier="gpt-test",
        display_name="GPT Test",
        input_cost_per_million_tokens=2.5,
        output_cost_per_million_tokens=10.0,
    ))
    endpoint = db.add(AIEndpoint(
        model_id=model.id,
        slug="chat",
        api_path="/v1/chat/completions",
        http_method="POST",
        default_temperature=0.2,
        default_max_tokens=256,
        default_top_p=1.0,
    ))
    template = db.add(PromptTemplate(
        name="Summarize",
        version="1",
        system_prompt="You summarize {{topic}} articles.",
        user_prompt_template="Summarize: {{text}}",
    ))
    return {"provider": provider, "model": model, "endpoint": endpoint, "template": template}


def json_response(body, status_code=200, reason="OK"):
    """Build a mocked requests.Response carrying a JSON body."""
    from unittest.mock import MagicMock

    response = MagicMock()
    response.status_code = status_code
    response.reason = reason
    response.headers = {"Content-Type": "application/json; charset=utf-8"}
    response.json.return_value = body
    response.text = str(body)
    response.url = "https://example.com"
    return response
