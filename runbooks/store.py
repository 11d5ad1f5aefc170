"""
Persistence of runbooks, steps and execution state.

All status transitions that can race with cancellation are written as
conditional updates: a row is only finalized while it is still ``running``.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update

from db import Database
from errors import (
    ErrorCode, ExecutionNotFoundError, RunbookNotFoundError, error_context, EngineError
)
from runbooks.models import (
    ExecutionStatus, Runbook, RunbookExecution, RunbookStep, RunbookStepExecution,
    StepExecutionStatus, utc_now
)

# Configure logger
logger = logging.getLogger(__name__)

ACTIVE_EXECUTION_STATUSES = (ExecutionStatus.PENDING, ExecutionStatus.RUNNING)


class ExecutionStore:
    """
    Data access for the runbook engine.

    Wraps a ``Database`` with the queries and state transitions used by the
    orchestrator, the step runner and the REST API.
    """

    # Serializes step-order assignment and re-compaction
    _step_order_lock = threading.Lock()

    def __init__(self, db: Optional[Database] = None):
        self.db = db or Database()

    # Runbooks

    def list_runbooks(self) -> List[Runbook]:
        return self.db.query(Runbook, order_by=Runbook.created_at.desc())

    def get_runbook(self, runbook_id: str) -> Runbook:
        """
        Load a runbook.

        Raises:
            RunbookNotFoundError: If it does not exist
        """
        runbook = self.db.get(Runbook, runbook_id)
        if runbook is None:
            raise RunbookNotFoundError("Runbook not found", details={"runbook_id": runbook_id})
        return runbook

    def create_runbook(self, values: Dict[str, Any]) -> Runbook:
        return self.db.add(Runbook(**values))

    def update_runbook(self, runbook_id: str, values: Dict[str, Any]) -> Runbook:
        runbook = self.get_runbook(runbook_id)
        for key, value in values.items():
            setattr(runbook, key, value)
        return self.db.update(runbook)

    def delete_runbook(self, runbook_id: str) -> bool:
        """Delete a runbook together with its steps and executions."""
        with error_context(
            component_name="ExecutionStore",
            operation="delete runbook",
            error_class=EngineError,
            error_code=ErrorCode.DATABASE_ERROR,
            logger=logger
        ):
            with self.db.get_session() as session:
                runbook = session.get(Runbook, runbook_id)
                if runbook is None:
                    raise RunbookNotFoundError("Runbook not found", details={"runbook_id": runbook_id})
                session.delete(runbook)
                return True

    # Steps

    def list_steps(self, runbook_id: str) -> List[RunbookStep]:
        return self.db.query(RunbookStep, RunbookStep.runbook_id == runbook_id,
                             order_by=RunbookStep.step_order)

    def get_step(self, runbook_id: str, step_id: str) -> RunbookStep:
        """
        Load a step of a runbook.

        Raises:
            RunbookNotFoundError: If the step does not exist in that runbook
        """
        step = self.db.get(RunbookStep, step_id)
        if step is None or step.runbook_id != runbook_id:
            raise RunbookNotFoundError(
                "Runbook step not found",
                ErrorCode.STEP_NOT_FOUND,
                {"runbook_id": runbook_id, "step_id": step_id}
            )
        return step

    def create_step(self, runbook_id: str, values: Dict[str, Any]) -> RunbookStep:
        """
        Append a step to a runbook.

        The step order is ``max(existing) + 1`` (1 for the first step),
        computed and inserted while holding the step-order lock.

        Raises:
            RunbookNotFoundError: If the runbook does not exist
        """
        self.get_runbook(runbook_id)

        with self._step_order_lock:
            with error_context(
                component_name="ExecutionStore",
                operation="create step",
                error_class=EngineError,
                error_code=ErrorCode.DATABASE_ERROR,
                logger=logger
            ):
                with self.db.get_session() as session:
                    current_max = (
                        session.query(func.max(RunbookStep.step_order))
                        .filter(RunbookStep.runbook_id == runbook_id)
                        .scalar()
                    )
                    step = RunbookStep(runbook_id=runbook_id, step_order=(current_max or 0) + 1, **values)
                    session.add(step)
                    session.flush()
                    session.refresh(step)
                    return step

    def update_step(self, runbook_id: str, step_id: str, values: Dict[str, Any]) -> RunbookStep:
        step = self.get_step(runbook_id, step_id)
        for key, value in values.items():
            setattr(step, key, value)
        return self.db.update(step)

    def delete_step(self, runbook_id: str, step_id: str) -> bool:
        """
        Delete a step and close the gap it leaves in the step order.

        Raises:
            RunbookNotFoundError: If the step does not exist in that runbook
        """
        self.get_step(runbook_id, step_id)

        with self._step_order_lock:
            with error_context(
                component_name="ExecutionStore",
                operation="delete step",
                error_class=EngineError,
                error_code=ErrorCode.DATABASE_ERROR,
                logger=logger
            ):
                with self.db.get_session() as session:
                    step = session.get(RunbookStep, step_id)
                    deleted_order = step.step_order
                    # History rows outlive their step definition
                    session.execute(
                        update(RunbookStepExecution)
                        .where(RunbookStepExecution.runbook_step_id == step_id)
                        .values(runbook_step_id=None)
                        .execution_options(synchronize_session=False)
                    )
                    session.delete(step)
                    session.flush()

                    following = (
                        session.query(RunbookStep.id, RunbookStep.step_order)
                        .filter(RunbookStep.runbook_id == runbook_id,
                                RunbookStep.step_order > deleted_order)
                        .order_by(RunbookStep.step_order)
                        .all()
                    )
                    # Ascending one row at a time so the unique order index never collides
                    for following_id, order in following:
                        session.execute(
                            update(RunbookStep)
                            .where(RunbookStep.id == following_id)
                            .values(step_order=order - 1)
                            .execution_options(synchronize_session=False)
                        )
                    return True

    # Executions

    def create_execution(self, runbook_id: str, initial_input: Any, user_id: Optional[str],
                         status: ExecutionStatus = ExecutionStatus.RUNNING) -> RunbookExecution:
        return self.db.add(RunbookExecution(
            runbook_id=runbook_id,
            execution_status=status,
            initial_input=initial_input,
            triggered_by=user_id,
            started_at=utc_now(),
        ))

    def get_execution(self, execution_id: str) -> RunbookExecution:
        """
        Load an execution.

        Raises:
            ExecutionNotFoundError: If it does not exist
        """
        execution = self.db.get(RunbookExecution, execution_id)
        if execution is None:
            raise ExecutionNotFoundError("Execution not found", details={"execution_id": execution_id})
        return execution

    def list_executions(self, runbook_id: str) -> List[RunbookExecution]:
        return self.db.query(RunbookExecution, RunbookExecution.runbook_id == runbook_id,
                             order_by=RunbookExecution.created_at.desc())

    def is_running(self, execution_id: str) -> bool:
        return self.get_execution(execution_id).execution_status == ExecutionStatus.RUNNING

    def finish_execution(self, execution_id: str, status: ExecutionStatus, final_output: Any = None,
                         error_message: Optional[str] = None) -> bool:
        """
        Move a running execution to a terminal status.

        Returns:
            False if the execution was no longer running (e.g. cancelled)
        """
        now = utc_now()
        changed = self.db.update_where(
            RunbookExecution,
            [RunbookExecution.id == execution_id,
             RunbookExecution.execution_status == ExecutionStatus.RUNNING],
            {
                "execution_status": status,
                "final_output": final_output,
                "error_message": error_message,
                "completed_at": now,
                "updated_at": now,
            }
        )
        if not changed:
            logger.info(f"Execution {execution_id} was no longer running; {status.value} not recorded")
        return bool(changed)

    def cancel_execution(self, execution_id: str) -> bool:
        """
        Cancel a pending or running execution.

        Step rows still running are marked ``skipped``; completed and
        failed step rows are left alone.

        Returns:
            False if the execution had already reached a terminal status

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        self.get_execution(execution_id)

        with error_context(
            component_name="ExecutionStore",
            operation="cancel execution",
            error_class=EngineError,
            error_code=ErrorCode.DATABASE_ERROR,
            logger=logger
        ):
            with self.db.get_session() as session:
                now = utc_now()
                result = session.execute(
                    update(RunbookExecution)
                    .where(RunbookExecution.id == execution_id,
                           RunbookExecution.execution_status.in_(ACTIVE_EXECUTION_STATUSES))
                    .values(execution_status=ExecutionStatus.CANCELLED, completed_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if not result.rowcount:
                    return False

                session.execute(
                    update(RunbookStepExecution)
                    .where(RunbookStepExecution.runbook_execution_id == execution_id,
                           RunbookStepExecution.step_status == StepExecutionStatus.RUNNING)
                    .values(step_status=StepExecutionStatus.SKIPPED, completed_at=now)
                    .execution_options(synchronize_session=False)
                )
                return True

    # Step executions

    def start_step_execution(self, execution_id: str, step_id: str, step_input: Any) -> RunbookStepExecution:
        return self.db.add(RunbookStepExecution(
            runbook_execution_id=execution_id,
            runbook_step_id=step_id,
            step_status=StepExecutionStatus.RUNNING,
            step_input=step_input,
            attempts=0,
            started_at=utc_now(),
        ))

    def record_attempt(self, step_execution_id: str, attempts: int) -> bool:
        return bool(self.db.update_where(
            RunbookStepExecution,
            [RunbookStepExecution.id == step_execution_id,
             RunbookStepExecution.step_status == StepExecutionStatus.RUNNING],
            {"attempts": attempts}
        ))

    def finish_step_execution(self, step_execution_id: str, status: StepExecutionStatus,
                              step_output: Any = None, error_message: Optional[str] = None,
                              attempts: Optional[int] = None,
                              execution_time_seconds: Optional[float] = None) -> bool:
        """
        Move a running step execution to ``completed`` or ``failed``.

        Returns:
            False if the row was no longer running (skipped by cancellation)
        """
        values = {
            "step_status": status,
            "completed_at": utc_now(),
            "execution_time_seconds": execution_time_seconds,
        }
        if status == StepExecutionStatus.COMPLETED:
            values["step_output"] = step_output
        else:
            values["error_message"] = error_message
        if attempts is not None:
            values["attempts"] = attempts

        return bool(self.db.update_where(
            RunbookStepExecution,
            [RunbookStepExecution.id == step_execution_id,
             RunbookStepExecution.step_status == StepExecutionStatus.RUNNING],
            values
        ))

    def get_step_execution(self, step_execution_id: str) -> Optional[RunbookStepExecution]:
        return self.db.get(RunbookStepExecution, step_execution_id)

    def list_step_executions(self, execution_id: str) -> List[Dict[str, Any]]:
        """
        List the step rows of an execution in creation order.

        Each row carries the step's name, order and type alongside its own fields.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        self.get_execution(execution_id)

        with self.db.get_session() as session:
            rows = (
                session.query(RunbookStepExecution, RunbookStep.step_name, RunbookStep.step_order,
                              RunbookStep.step_type)
                .outerjoin(RunbookStep, RunbookStep.id == RunbookStepExecution.runbook_step_id)
                .filter(RunbookStepExecution.runbook_execution_id == execution_id)
                .order_by(RunbookStepExecution.created_at)
                .all()
            )

        results = []
        for step_execution, step_name, step_order, step_type in rows:
            item = step_execution.to_dict()
            item["step_name"] = step_name
            item["step_order"] = step_order
            item["step_type"] = step_type.value if step_type else None
            results.append(item)
        return results
