"""
AI catalog models: providers, models, endpoints and prompt templates.

The catalog is managed elsewhere; the runbook engine only reads it to run
``ai_operation`` steps and writes one ``AIRequestLog`` row per AI call.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import Column, String, DateTime, Text, Boolean, Integer, Float, JSON, ForeignKey
from sqlalchemy.orm import relationship, joinedload

from db import Base, Database
from runbooks.models import new_id, utc_now

# Configure logger
logger = logging.getLogger(__name__)


class AIProvider(Base):
    """An AI vendor reachable at a base URL."""
    __tablename__ = 'ai_providers'

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    base_url = Column(String, nullable=False)
    api_key_env = Column(String)  # Name of the environment variable holding the API key
    global_timeout_seconds = Column(Integer)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    models = relationship("AIModel", back_populates="provider")


class AIModel(Base):
    """A model offered by a provider, with its token prices."""
    __tablename__ = 'ai_models'

    id = Column(String, primary_key=True, default=new_id)
    provider_id = Column(String, ForeignKey('ai_providers.id'), nullable=False)
    model_identifier = Column(String, nullable=False)
    display_name = Column(String)
    input_cost_per_million_tokens = Column(Float)
    output_cost_per_million_tokens = Column(Float)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    provider = relationship("AIProvider", back_populates="models")
    endpoints = relationship("AIEndpoint", back_populates="model")


class AIEndpoint(Base):
    """A callable API path of a model with its default sampling parameters."""
    __tablename__ = 'ai_endpoints'

    id = Column(String, primary_key=True, default=new_id)
    model_id = Column(String, ForeignKey('ai_models.id'), nullable=False)
    slug = Column(String)
    api_path = Column(String, nullable=False)
    http_method = Column(String, default="POST")
    default_temperature = Column(Float)
    default_max_tokens = Column(Integer)
    default_top_p = Column(Float)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    model = relationship("AIModel", back_populates="endpoints")

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "model": self.model.display_name if self.model else None,
            "provider": self.model.provider.name if self.model and self.model.provider else None,
        }


class PromptTemplate(Base):
    """System prompt and user prompt template of an AI operation."""
    __tablename__ = 'ai_prompt_templates'

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    version = Column(String)
    system_prompt = Column(Text)
    user_prompt_template = Column(Text, nullable=False)
    use_structured_output = Column(Boolean, default=False)
    structured_output_schema = Column(JSON)
    structured_output_format = Column(String)  # json_schema | pydantic
    created_at = Column(DateTime(timezone=True), default=utc_now)

    @property
    def structured_output_enabled(self) -> bool:
        return bool(self.use_structured_output and self.structured_output_schema
                    and self.structured_output_format in ("json_schema", "pydantic"))

    def describe(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "version": self.version}


class AIRequestLog(Base):
    """One call made to an AI endpoint."""
    __tablename__ = 'ai_request_logs'

    id = Column(String, primary_key=True, default=new_id)
    endpoint_id = Column(String)
    prompt_template_id = Column(String)
    user_id = Column(String)
    request_payload = Column(JSON)
    response_payload = Column(JSON)
    response_status = Column(Integer)
    tokens_used = Column(Integer)
    cost_cents = Column(Integer)
    duration_ms = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=utc_now)


def calculate_cost_cents(usage: Optional[Dict[str, Any]], model: Optional[AIModel]) -> Optional[int]:
    """
    Price a call from its token usage.

    Args:
        usage: The ``usage`` object of the provider response
        model: Model carrying the per-million-token prices

    Returns:
        Cost in whole cents, or None when usage or model is unknown
    """
    if not usage or model is None:
        return None

    input_tokens = usage.get("prompt_tokens") or 0
    output_tokens = usage.get("completion_tokens") or 0

    input_cost = (input_tokens / 1_000_000) * (model.input_cost_per_million_tokens or 0)
    output_cost = (output_tokens / 1_000_000) * (model.output_cost_per_million_tokens or 0)

    return round((input_cost + output_cost) * 100)


class CatalogStore:
    """Read access to the AI catalog plus request logging."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or Database()

    def get_active_endpoint(self, endpoint_id: str) -> Optional[AIEndpoint]:
        """
        Load an active endpoint with its model and provider.

        Returns:
            The endpoint, or None if it does not exist or is inactive
        """
        with self.db.get_session() as session:
            return (
                session.query(AIEndpoint)
                .options(joinedload(AIEndpoint.model).joinedload(AIModel.provider))
                .filter(AIEndpoint.id == endpoint_id, AIEndpoint.is_active.is_(True))
                .one_or_none()
            )

    def get_prompt_template(self, template_id: str) -> Optional[PromptTemplate]:
        return self.db.get(PromptTemplate, template_id)

    def log_request(self, **fields) -> AIRequestLog:
        return self.db.add(AIRequestLog(**fields))
