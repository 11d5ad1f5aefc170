"""
Runbook package for defining and executing sequential multi-step workflows.

This package provides the runbook data model, the step executors for AI
operations and HTTP endpoint calls, and the orchestrator that runs a
runbook's steps in order on a background worker pool.
"""

# Models first: they register the "runbook" configuration section
from runbooks.models import (
    Runbook, RunbookStep, RunbookExecution, RunbookStepExecution,
    StepType, OnErrorBehavior, ExecutionStatus, StepExecutionStatus, RunbookConfig
)
from runbooks.store import ExecutionStore
from runbooks.orchestrator import RunbookOrchestrator
from runbooks.dispatcher import ExecutionDispatcher
