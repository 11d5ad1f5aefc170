"""
REST endpoints for runbooks, their steps and their executions.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Request
from pydantic import BaseModel

from api.auth import get_current_user_id
from errors import ValidationError
from runbooks.ai_executor import AIOperationExecutor
from runbooks.orchestrator import RunbookOrchestrator
from runbooks.store import ExecutionStore
from runbooks.validation import validate_runbook_definition, validate_step_definition

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


class ExecuteRequest(BaseModel):
    initial_input: Optional[Any] = None


def get_orchestrator(request: Request) -> RunbookOrchestrator:
    return request.app.state.orchestrator


def get_store(request: Request) -> ExecutionStore:
    return request.app.state.orchestrator.store


def get_ai_executor(request: Request) -> AIOperationExecutor:
    return request.app.state.ai_executor


# Executions

@router.post("/runbooks/{runbook_id}/execute", status_code=202)
def execute_runbook(
    runbook_id: str,
    body: Optional[ExecuteRequest] = None,
    user_id: str = Depends(get_current_user_id),
    orchestrator: RunbookOrchestrator = Depends(get_orchestrator)
) -> Dict[str, Any]:
    """Start a runbook execution in the background."""
    initial_input = body.initial_input if body else None
    execution = orchestrator.start_execution(runbook_id, initial_input, user_id)
    return {"execution_id": execution.id, "status": execution.execution_status.value}


@router.get("/runbooks/executions/{execution_id}")
def get_execution(
    execution_id: str,
    user_id: str = Depends(get_current_user_id),
    store: ExecutionStore = Depends(get_store)
) -> Dict[str, Any]:
    return store.get_execution(execution_id).to_dict()


@router.get("/runbooks/executions/{execution_id}/steps")
def get_execution_steps(
    execution_id: str,
    user_id: str = Depends(get_current_user_id),
    store: ExecutionStore = Depends(get_store)
) -> List[Dict[str, Any]]:
    return store.list_step_executions(execution_id)


@router.post("/runbooks/executions/{execution_id}/cancel")
def cancel_execution(
    execution_id: str,
    user_id: str = Depends(get_current_user_id),
    orchestrator: RunbookOrchestrator = Depends(get_orchestrator)
) -> Dict[str, Any]:
    if orchestrator.cancel_execution(execution_id):
        return {"success": True}
    status = orchestrator.store.get_execution(execution_id).execution_status
    return {"success": False, "error": f"Execution is already {status.value}"}


@router.get("/runbooks/{runbook_id}/executions")
def list_runbook_executions(
    runbook_id: str,
    user_id: str = Depends(get_current_user_id),
    store: ExecutionStore = Depends(get_store)
) -> List[Dict[str, Any]]:
    store.get_runbook(runbook_id)
    return [execution.to_dict() for execution in store.list_executions(runbook_id)]


# Runbooks

@router.get("/runbooks")
def list_runbooks(
    user_id: str = Depends(get_current_user_id),
    store: ExecutionStore = Depends(get_store)
) -> List[Dict[str, Any]]:
    return [runbook.to_dict() for runbook in store.list_runbooks()]


@router.post("/runbooks")
def create_runbook(
    body: Any = Body(...),
    user_id: str = Depends(get_current_user_id),
    store: ExecutionStore = Depends(get_store)
) -> Dict[str, Any]:
    values = validate_runbook_definition(body)
    runbook = store.create_runbook(values)
    logger.info(f"Runbook {runbook.id} created by {user_id}")
    return runbook.to_dict()


@router.get("/runbooks/{runbook_id}")
def get_runbook(
    runbook_id: str,
    user_id: str = Depends(get_current_user_id),
    store: ExecutionStore = Depends(get_store)
) -> Dict[str, Any]:
    result = store.get_runbook(runbook_id).to_dict()
    result["steps"] = [step.to_dict() for step in store.list_steps(runbook_id)]
    return result


@router.put("/runbooks/{runbook_id}")
def update_runbook(
    runbook_id: str,
    body: Any = Body(...),
    user_id: str = Depends(get_current_user_id),
    store: ExecutionStore = Depends(get_store)
) -> Dict[str, Any]:
    values = validate_runbook_definition(body, partial=True)
    return store.update_runbook(runbook_id, values).to_dict()


@router.delete("/runbooks/{runbook_id}")
def delete_runbook(
    runbook_id: str,
    user_id: str = Depends(get_current_user_id),
    store: ExecutionStore = Depends(get_store)
) -> Dict[str, Any]:
    store.delete_runbook(runbook_id)
    return {"success": True}


# Steps

@router.get("/runbooks/{runbook_id}/steps")
def list_steps(
    runbook_id: str,
    user_id: str = Depends(get_current_user_id),
    store: ExecutionStore = Depends(get_store)
) -> List[Dict[str, Any]]:
    return [step.to_dict() for step in store.list_steps(runbook_id)]


@router.post("/runbooks/{runbook_id}/steps")
def create_step(
    runbook_id: str,
    body: Any = Body(...),
    user_id: str = Depends(get_current_user_id),
    store: ExecutionStore = Depends(get_store)
) -> Dict[str, Any]:
    values = validate_step_definition(body, creating=True)
    return store.create_step(runbook_id, values).to_dict()


@router.put("/runbooks/{runbook_id}/steps/{step_id}")
def update_step(
    runbook_id: str,
    step_id: str,
    body: Any = Body(...),
    user_id: str = Depends(get_current_user_id),
    store: ExecutionStore = Depends(get_store)
) -> Dict[str, Any]:
    values = validate_step_definition(body, creating=False)
    return store.update_step(runbook_id, step_id, values).to_dict()


@router.delete("/runbooks/{runbook_id}/steps/{step_id}")
def delete_step(
    runbook_id: str,
    step_id: str,
    user_id: str = Depends(get_current_user_id),
    store: ExecutionStore = Depends(get_store)
) -> Dict[str, Any]:
    store.delete_step(runbook_id, step_id)
    return {"success": True}


# Generation

@router.post("/generate")
def generate(
    body: Any = Body(...),
    user_id: str = Depends(get_current_user_id),
    ai_executor: AIOperationExecutor = Depends(get_ai_executor)
) -> Dict[str, Any]:
    """Run a prompt template against an AI endpoint outside any runbook."""
    if not isinstance(body, dict) or not body.get("endpoint_id") or not body.get("prompt_template_id"):
        raise ValidationError("endpoint_id and prompt_template_id are required")

    result = ai_executor.generate(
        body["endpoint_id"],
        body["prompt_template_id"],
        body.get("variables") or {},
        user_id=user_id
    )
    return {
        "response": result["response"],
        "endpoint": result["endpoint"],
        "prompt_template": result["prompt_template"],
    }
