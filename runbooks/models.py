"""
Runbook models for workflow definitions and their executions.

This module defines the database models for runbooks, their ordered steps,
runbook executions and step executions, plus the configuration section of
the runbook engine.
"""

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional

from sqlalchemy import Column, String, DateTime, Text, Boolean, Integer, Float, JSON, ForeignKey, Index
from sqlalchemy import Enum as SQLAEnum
from sqlalchemy.orm import relationship
from pydantic import BaseModel, Field

from db import Base
from config.registry import registry

# Configure logger
logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class StepType(str, Enum):
    """Enumeration of runbook step types."""
    AI_OPERATION = "ai_operation"     # Templated call to a configured AI endpoint
    ENDPOINT_CALL = "endpoint_call"   # Generic outbound HTTP request


class OnErrorBehavior(str, Enum):
    """What the orchestrator does when a step fails."""
    STOP = "stop"             # Fail the execution at the first failed step
    CONTINUE = "continue"     # Record the failure and move on to the next step


class ExecutionStatus(str, Enum):
    """Enumeration of runbook execution status values."""
    PENDING = "pending"       # Execution is waiting to start
    RUNNING = "running"       # Steps are being executed
    COMPLETED = "completed"   # All steps were executed
    FAILED = "failed"         # Execution stopped because of an error
    CANCELLED = "cancelled"   # Execution was cancelled by a user


class StepExecutionStatus(str, Enum):
    """Enumeration of step execution status values."""
    PENDING = "pending"       # Step is waiting to be executed
    RUNNING = "running"       # Step is currently running
    COMPLETED = "completed"   # Step completed successfully
    FAILED = "failed"         # Step execution failed
    SKIPPED = "skipped"       # Step was abandoned because the execution was cancelled


class Runbook(Base):
    """
    Runbook model: a named, reusable sequence of steps.

    Maps to the 'runbooks' table. Steps and executions are owned by the
    runbook and deleted with it.
    """
    __tablename__ = 'runbooks'

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    max_execution_time_minutes = Column(Integer, default=30, nullable=False)
    on_error_behavior = Column(SQLAEnum(OnErrorBehavior), default=OnErrorBehavior.STOP, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_runbooks_created_at', 'created_at'),
    )

    steps = relationship("RunbookStep", back_populates="runbook",
                         order_by="RunbookStep.step_order", cascade="all, delete-orphan")
    executions = relationship("RunbookExecution", back_populates="runbook",
                              cascade="all, delete-orphan")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "max_execution_time_minutes": self.max_execution_time_minutes,
            "on_error_behavior": self.on_error_behavior.value if self.on_error_behavior else None,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class RunbookStep(Base):
    """
    Runbook step model: one unit of work within a runbook.

    ``ai_operation`` steps reference a prompt template and an AI endpoint.
    ``endpoint_call`` steps carry a simple configuration (http_method and
    endpoint_url), an advanced one (endpoint_config), or both; the advanced
    fields layer on top of the simple ones.
    """
    __tablename__ = 'runbook_steps'

    id = Column(String, primary_key=True, default=new_id)
    runbook_id = Column(String, ForeignKey('runbooks.id', ondelete='CASCADE'), nullable=False)
    step_order = Column(Integer, nullable=False)
    step_name = Column(String, nullable=False)
    description = Column(Text)
    step_type = Column(SQLAEnum(StepType), nullable=False)

    # ai_operation references into the AI catalog
    prompt_template_id = Column(String)
    endpoint_id = Column(String)

    # endpoint_call configuration
    http_method = Column(String)
    endpoint_url = Column(Text)
    endpoint_config = Column(JSON)

    # Execution limits
    timeout_seconds = Column(Integer, default=300)
    retry_count = Column(Integer, default=0)
    retry_delay_seconds = Column(Integer, default=5)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_runbook_steps_runbook_order', 'runbook_id', 'step_order', unique=True),
    )

    runbook = relationship("Runbook", back_populates="steps")
    step_executions = relationship("RunbookStepExecution", back_populates="step", passive_deletes=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "runbook_id": self.runbook_id,
            "step_order": self.step_order,
            "step_name": self.step_name,
            "description": self.description,
            "step_type": self.step_type.value if self.step_type else None,
            "prompt_template_id": self.prompt_template_id,
            "endpoint_id": self.endpoint_id,
            "http_method": self.http_method,
            "endpoint_url": self.endpoint_url,
            "endpoint_config": self.endpoint_config,
            "timeout_seconds": self.timeout_seconds,
            "retry_count": self.retry_count,
            "retry_delay_seconds": self.retry_delay_seconds,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class RunbookExecution(Base):
    """
    One run of a runbook.

    Created with status ``running`` when the run is triggered; afterwards
    only the orchestrator and the cancel operation change it.
    """
    __tablename__ = 'runbook_executions'

    id = Column(String, primary_key=True, default=new_id)
    runbook_id = Column(String, ForeignKey('runbooks.id', ondelete='CASCADE'), nullable=False)
    execution_status = Column(SQLAEnum(ExecutionStatus), default=ExecutionStatus.PENDING, nullable=False)

    initial_input = Column(JSON)
    final_output = Column(JSON)
    error_message = Column(Text)
    triggered_by = Column(String)  # User the execution runs on behalf of

    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_runbook_executions_runbook_id', 'runbook_id'),
        Index('ix_runbook_executions_status', 'execution_status'),
    )

    runbook = relationship("Runbook", back_populates="executions")
    step_executions = relationship("RunbookStepExecution", back_populates="execution",
                                   order_by="RunbookStepExecution.created_at",
                                   cascade="all, delete-orphan")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "runbook_id": self.runbook_id,
            "execution_status": self.execution_status.value if self.execution_status else None,
            "initial_input": self.initial_input,
            "final_output": self.final_output,
            "error_message": self.error_message,
            "triggered_by": self.triggered_by,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class RunbookStepExecution(Base):
    """
    One step's run within a runbook execution.

    Inserted as ``running`` right before the step is dispatched and
    finalized exactly once, unless cancellation marked it ``skipped`` first.
    """
    __tablename__ = 'runbook_step_executions'

    id = Column(String, primary_key=True, default=new_id)
    runbook_execution_id = Column(String, ForeignKey('runbook_executions.id', ondelete='CASCADE'),
                                  nullable=False)
    runbook_step_id = Column(String, ForeignKey('runbook_steps.id', ondelete='SET NULL'), nullable=True)
    step_status = Column(SQLAEnum(StepExecutionStatus), default=StepExecutionStatus.PENDING, nullable=False)

    step_input = Column(JSON)
    step_output = Column(JSON)
    error_message = Column(Text)
    attempts = Column(Integer, default=0)
    execution_time_seconds = Column(Float)

    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index('ix_runbook_step_executions_execution_id', 'runbook_execution_id'),
        Index('ix_runbook_step_executions_status', 'step_status'),
    )

    execution = relationship("RunbookExecution", back_populates="step_executions")
    step = relationship("RunbookStep", back_populates="step_executions")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "runbook_execution_id": self.runbook_execution_id,
            "runbook_step_id": self.runbook_step_id,
            "step_status": self.step_status.value if self.step_status else None,
            "step_input": self.step_input,
            "step_output": self.step_output,
            "error_message": self.error_message,
            "attempts": self.attempts,
            "execution_time_seconds": self.execution_time_seconds,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
        }


# Configuration class for the runbook engine
class RunbookConfig(BaseModel):
    """Configuration for the runbook engine."""
    base_url: str = Field(default="http://localhost:8000",
                          description="Base URL relative endpoint_url values are resolved against")
    internal_token: Optional[str] = Field(default=None,
                                          description="Shared secret sent with same-origin calls; "
                                                      "when set, x-internal-user-id is only trusted with it")
    max_concurrent_executions: int = Field(default=4,
                                           description="Worker threads running executions; excess work queues")
    max_concurrent_per_runbook: int = Field(default=0,
                                            description="Running executions allowed per runbook (0 = unlimited)")
    default_timeout_seconds: int = Field(default=300,
                                         description="Step timeout used when a step does not set one")
    enforce_max_execution_time: bool = Field(default=True,
                                             description="Fail executions that exceed the runbook's time limit")


# Register with the configuration registry
registry.register("runbook", RunbookConfig)
