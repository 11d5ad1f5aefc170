"""
Runbook orchestrator: starts executions and drives their step loop.

An execution moves ``running -> completed | failed | cancelled``. It is
recorded as ``running`` before the step loop is handed to the dispatcher,
so callers can poll it immediately.
"""

import logging
import time
from typing import Any, List, Optional

from errors import ErrorCode, StepExecutionError, ValidationError, error_message
from runbooks.dispatcher import ExecutionDispatcher
from runbooks.models import ExecutionStatus, OnErrorBehavior, RunbookExecution
from runbooks.step_runner import StepRunner
from runbooks.store import ExecutionStore

# Configure logger
logger = logging.getLogger(__name__)


class RunbookOrchestrator:
    """
    Coordinates runbook executions.

    Steps run strictly in ``step_order``; each step's output becomes the
    next step's input. The runbook's ``on_error_behavior`` decides whether
    a failed step ends the execution.
    """

    def __init__(
        self,
        store: Optional[ExecutionStore] = None,
        step_runner: Optional[StepRunner] = None,
        dispatcher: Optional[ExecutionDispatcher] = None,
        enforce_max_execution_time: Optional[bool] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Execution store
            step_runner: Runner used for each step
            dispatcher: Worker pool the step loops run on
            enforce_max_execution_time: Whether the runbook time limit applies
                (default: runbook.enforce_max_execution_time)
        """
        # Import config when needed (avoids circular imports)
        from config import config

        self.store = store or ExecutionStore()
        self.step_runner = step_runner or StepRunner(store=self.store)
        self.dispatcher = dispatcher or ExecutionDispatcher()
        self.enforce_max_execution_time = (enforce_max_execution_time if enforce_max_execution_time is not None
                                           else config.runbook.enforce_max_execution_time)
        self.logger = logging.getLogger(__name__)

    def start_execution(self, runbook_id: str, initial_input: Any = None,
                        user_id: Optional[str] = None) -> RunbookExecution:
        """
        Record a new execution and submit its step loop.

        Args:
            runbook_id: Runbook to execute
            initial_input: Input of the first step
            user_id: User the execution runs on behalf of

        Returns:
            The execution, already ``running``

        Raises:
            RunbookNotFoundError: If the runbook does not exist
            ValidationError: If the runbook is inactive
            ConcurrencyLimitError: If the runbook has too many active executions
        """
        runbook = self.store.get_runbook(runbook_id)
        if not runbook.is_active:
            raise ValidationError("Runbook is not active", ErrorCode.RUNBOOK_INACTIVE,
                                  {"runbook_id": runbook_id})

        self.dispatcher.acquire(runbook_id)
        try:
            execution = self.store.create_execution(runbook_id, initial_input, user_id)
        except Exception:
            self.dispatcher.release(runbook_id)
            raise

        try:
            self.dispatcher.submit(runbook_id, execution.id, self.run_execution, execution.id, user_id)
        except Exception as e:
            self.logger.error(f"Execution {execution.id} could not be dispatched: {e}")
            self.store.finish_execution(execution.id, ExecutionStatus.FAILED, None, error_message(e))
            raise
        self.logger.info(f"Execution {execution.id} of runbook {runbook_id} started")
        return execution

    def run_execution(self, execution_id: str, user_id: Optional[str] = None) -> None:
        """
        Run the step loop of an execution to its end.

        Never raises for step failures; anything unexpected is recorded as
        a failed execution.
        """
        try:
            self._run_steps(execution_id, user_id)
        except Exception as e:
            self.logger.error(f"Runbook execution {execution_id} error: {e}", exc_info=True)
            self.store.finish_execution(execution_id, ExecutionStatus.FAILED, None, error_message(e))

    def _run_steps(self, execution_id: str, user_id: Optional[str]) -> None:
        execution = self.store.get_execution(execution_id)
        runbook = self.store.get_runbook(execution.runbook_id)
        steps = self.store.list_steps(runbook.id)
        user_id = user_id or execution.triggered_by

        current_input = execution.initial_input if execution.initial_input is not None else {}
        final_output = None
        failed_steps: List[str] = []

        started = time.monotonic()
        time_limit = (runbook.max_execution_time_minutes or 0) * 60

        for step in steps:
            if not self.store.is_running(execution_id):
                self.logger.info(f"Execution {execution_id} is no longer running; stopping before "
                                 f"step '{step.step_name}'")
                return

            if self.enforce_max_execution_time and time_limit and time.monotonic() - started > time_limit:
                self.store.finish_execution(
                    execution_id, ExecutionStatus.FAILED, final_output,
                    f"Execution exceeded maximum time of {runbook.max_execution_time_minutes} minutes"
                )
                return

            try:
                output = self.step_runner.run(step, current_input, execution_id, user_id)
            except StepExecutionError as e:
                self.logger.error(f"Step {step.step_order} ('{step.step_name}') of execution "
                                  f"{execution_id} failed: {e.message}")

                if runbook.on_error_behavior == OnErrorBehavior.CONTINUE:
                    failed_steps.append(step.step_name)
                    continue

                self.store.finish_execution(execution_id, ExecutionStatus.FAILED, final_output,
                                            f"Step {step.step_name} failed: {e.message}")
                return

            final_output = output
            current_input = output

        summary = None
        if failed_steps:
            summary = f"Completed with failed steps: {', '.join(failed_steps)}"

        if self.store.finish_execution(execution_id, ExecutionStatus.COMPLETED, final_output, summary):
            self.logger.info(f"Execution {execution_id} completed")

    def cancel_execution(self, execution_id: str) -> bool:
        """
        Cancel an execution.

        Returns:
            True if the execution was cancelled, False if it had already
            reached a terminal status

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        cancelled = self.store.cancel_execution(execution_id)
        if cancelled:
            self.logger.info(f"Execution {execution_id} cancelled")
        return cancelled
