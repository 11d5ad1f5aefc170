"""
Step runner: executes one runbook step and records its execution row.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

from errors import EngineError, ErrorCode, StepExecutionError, error_message
from runbooks.ai_executor import AIOperationExecutor
from runbooks.endpoint_executor import EndpointCallExecutor
from runbooks.models import RunbookStep, StepExecutionStatus, StepType
from runbooks.store import ExecutionStore

# Configure logger
logger = logging.getLogger(__name__)

# Signature shared by all step executors: (step, input_data, user_id, timeout) -> output
StepHandler = Callable[[RunbookStep, Any, Optional[str], Optional[float]], Any]


class StepRunner:
    """
    Runs a single step with retries and persists its outcome.

    Each step type maps to exactly one handler. Retries re-run only the
    handler call and are recorded on the same step execution row.
    """

    def __init__(
        self,
        store: Optional[ExecutionStore] = None,
        ai_executor: Optional[AIOperationExecutor] = None,
        endpoint_executor: Optional[EndpointCallExecutor] = None
    ):
        """
        Initialize the step runner.

        Args:
            store: Execution store for step rows
            ai_executor: Executor for ai_operation steps
            endpoint_executor: Executor for endpoint_call steps
        """
        self.store = store or ExecutionStore()
        self.ai_executor = ai_executor or AIOperationExecutor()
        self.endpoint_executor = endpoint_executor or EndpointCallExecutor()

        self.handlers: Dict[StepType, StepHandler] = {
            StepType.AI_OPERATION: self.ai_executor.execute,
            StepType.ENDPOINT_CALL: self.endpoint_executor.execute,
        }

        self.logger = logging.getLogger(__name__)

    def run(self, step: RunbookStep, input_data: Any, execution_id: str,
            user_id: Optional[str] = None) -> Any:
        """
        Execute a step and record it.

        Args:
            step: The step to execute
            input_data: Output of the previous step (or the initial input)
            execution_id: Runbook execution the step belongs to
            user_id: User the execution runs on behalf of

        Returns:
            The step output

        Raises:
            StepExecutionError: If the step failed after all attempts
        """
        step_execution = self.store.start_step_execution(execution_id, step.id, input_data)
        started = time.monotonic()
        attempts = 0

        try:
            output, attempts = self._run_with_retries(step, input_data, step_execution.id, user_id)
        except StepExecutionError as e:
            attempts = e.details.get("attempts", attempts)
            self.store.finish_step_execution(
                step_execution.id,
                StepExecutionStatus.FAILED,
                error_message=e.message,
                attempts=attempts,
                execution_time_seconds=time.monotonic() - started
            )
            raise
        except EngineError as e:
            # Bookkeeping failed mid-step; the row must not stay running
            self.logger.error(f"Step '{step.step_name}' aborted: {e}")
            self.store.finish_step_execution(
                step_execution.id,
                StepExecutionStatus.FAILED,
                error_message=e.message,
                execution_time_seconds=time.monotonic() - started
            )
            raise

        recorded = self.store.finish_step_execution(
            step_execution.id,
            StepExecutionStatus.COMPLETED,
            step_output=output,
            attempts=attempts,
            execution_time_seconds=time.monotonic() - started
        )
        if not recorded:
            self.logger.info(f"Step '{step.step_name}' finished after its execution was cancelled")

        return output

    def _run_with_retries(self, step: RunbookStep, input_data: Any, step_execution_id: str,
                          user_id: Optional[str]):
        handler = self.handlers.get(step.step_type)
        if handler is None:
            raise StepExecutionError(
                f"Unsupported step type: {step.step_type}",
                ErrorCode.STEP_TYPE_NOT_SUPPORTED,
                {"step_id": step.id},
                retryable=False
            )

        max_retries = step.retry_count or 0
        retry_delay = step.retry_delay_seconds or 0

        for attempt in range(max_retries + 1):
            attempts = attempt + 1
            if not self.store.record_attempt(step_execution_id, attempts):
                raise StepExecutionError(
                    "Execution was cancelled",
                    ErrorCode.EXECUTION_NOT_RUNNING,
                    {"attempts": attempt},
                    retryable=False
                )

            if attempt > 0:
                self.logger.info(f"Retry attempt {attempt}/{max_retries} for step '{step.step_name}'")

            try:
                return handler(step, input_data, user_id, step.timeout_seconds), attempts

            except StepExecutionError as e:
                error = e
            except Exception as e:
                self.logger.error(f"Unexpected error in step '{step.step_name}': {e}", exc_info=True)
                error = StepExecutionError(error_message(e), ErrorCode.STEP_EXECUTION_ERROR)

            if not error.retryable or attempt >= max_retries:
                error.details["attempts"] = attempts
                raise error

            self.logger.warning(
                f"Error in step '{step.step_name}', attempt {attempts}/{max_retries + 1}: {error.message}. "
                f"Retrying in {retry_delay} seconds."
            )
            time.sleep(retry_delay)
