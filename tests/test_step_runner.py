"""
Tests for running a single step with retries.
"""
from unittest.mock import MagicMock, patch

import pytest

from errors import EngineError, ErrorCode, StepConfigurationError, StepExecutionError
from runbooks.models import ExecutionStatus, StepExecutionStatus, StepType
from runbooks.step_runner import StepRunner


@pytest.fixture
def endpoint_executor():
    return MagicMock()


@pytest.fixture
def runner(store, endpoint_executor):
    return StepRunner(store=store, ai_executor=MagicMock(), endpoint_executor=endpoint_executor)


@pytest.fixture
def execution(store, make_runbook):
    runbook = make_runbook()
    return store.create_execution(runbook.id, {"chat_id": "1"}, "user-1")


@pytest.fixture
def step(store, execution, make_endpoint_step):
    return make_endpoint_step(execution.runbook_id, retry_count=2, retry_delay_seconds=5)


def only_row(store, execution):
    rows = store.list_step_executions(execution.id)
    assert len(rows) == 1
    return rows[0]


def test_successful_step_recorded(runner, store, execution, step, endpoint_executor):
    endpoint_executor.execute.return_value = {"ok": True}

    output = runner.run(step, {"chat_id": "1"}, execution.id, "user-1")

    assert output == {"ok": True}
    endpoint_executor.execute.assert_called_once_with(step, {"chat_id": "1"}, "user-1", 300)

    row = only_row(store, execution)
    assert row["step_status"] == "completed"
    assert row["step_input"] == {"chat_id": "1"}
    assert row["step_output"] == {"ok": True}
    assert row["attempts"] == 1
    assert row["step_name"] == "Send message"
    assert row["step_order"] == 1
    assert row["step_type"] == "endpoint_call"
    assert row["execution_time_seconds"] >= 0
    assert row["completed_at"] is not None


@patch("runbooks.step_runner.time.sleep")
def test_transient_failure_retried(mock_sleep, runner, store, execution, step, endpoint_executor):
    endpoint_executor.execute.side_effect = [StepExecutionError("Endpoint call failed: HTTP 503"), {"ok": True}]

    output = runner.run(step, {}, execution.id, "user-1")

    assert output == {"ok": True}
    assert endpoint_executor.execute.call_count == 2
    mock_sleep.assert_called_once_with(5)
    assert only_row(store, execution)["attempts"] == 2


@patch("runbooks.step_runner.time.sleep")
def test_retries_exhausted(mock_sleep, runner, store, execution, step, endpoint_executor):
    endpoint_executor.execute.side_effect = StepExecutionError("Endpoint call failed: HTTP 503")

    with pytest.raises(StepExecutionError) as excinfo:
        runner.run(step, {}, execution.id, "user-1")

    assert excinfo.value.details["attempts"] == 3
    assert endpoint_executor.execute.call_count == 3
    assert mock_sleep.call_count == 2

    row = only_row(store, execution)
    assert row["step_status"] == "failed"
    assert row["error_message"] == "Endpoint call failed: HTTP 503"
    assert row["attempts"] == 3
    assert row["step_output"] is None


@patch("runbooks.step_runner.time.sleep")
def test_configuration_error_not_retried(mock_sleep, runner, store, execution, step, endpoint_executor):
    endpoint_executor.execute.side_effect = StepConfigurationError("Endpoint call failed: no URL")

    with pytest.raises(StepConfigurationError):
        runner.run(step, {}, execution.id, None)

    assert endpoint_executor.execute.call_count == 1
    mock_sleep.assert_not_called()
    assert only_row(store, execution)["attempts"] == 1


@patch("runbooks.step_runner.time.sleep")
def test_unexpected_exception_wrapped(mock_sleep, runner, store, execution, step, endpoint_executor):
    step.retry_count = 0
    endpoint_executor.execute.side_effect = ValueError("bad value")

    with pytest.raises(StepExecutionError) as excinfo:
        runner.run(step, {}, execution.id, None)

    assert excinfo.value.message == "bad value"
    assert excinfo.value.code == ErrorCode.STEP_EXECUTION_ERROR
    assert only_row(store, execution)["error_message"] == "bad value"


def test_ai_operation_routed_to_ai_executor(store, execution, step):
    ai_executor = MagicMock()
    ai_executor.execute.return_value = {"content": "hi"}
    runner = StepRunner(store=store, ai_executor=ai_executor, endpoint_executor=MagicMock())
    step.step_type = StepType.AI_OPERATION
    step.timeout_seconds = 20

    assert runner.run(step, "text", execution.id, "user-1") == {"content": "hi"}
    ai_executor.execute.assert_called_once_with(step, "text", "user-1", 20)


def test_unsupported_step_type(runner, store, execution, step, endpoint_executor):
    step.step_type = "webhook"

    with pytest.raises(StepExecutionError) as excinfo:
        runner.run(step, {}, execution.id, None)

    assert excinfo.value.code == ErrorCode.STEP_TYPE_NOT_SUPPORTED
    endpoint_executor.execute.assert_not_called()
    assert only_row(store, execution)["step_status"] == "failed"


def test_cancelled_step_not_resurrected(runner, store, execution, step, endpoint_executor):
    def cancel_then_answer(*args):
        store.cancel_execution(execution.id)
        return {"late": True}

    endpoint_executor.execute.side_effect = cancel_then_answer

    runner.run(step, {}, execution.id, None)

    row = only_row(store, execution)
    assert row["step_status"] == "skipped"
    assert row["step_output"] is None
    assert store.get_execution(execution.id).execution_status == ExecutionStatus.CANCELLED


@patch("runbooks.step_runner.time.sleep")
def test_no_retry_after_cancellation(mock_sleep, runner, store, execution, step, endpoint_executor):
    def cancel_then_fail(*args):
        store.cancel_execution(execution.id)
        raise StepExecutionError("Endpoint call failed: HTTP 503")

    endpoint_executor.execute.side_effect = cancel_then_fail

    with pytest.raises(StepExecutionError) as excinfo:
        runner.run(step, {}, execution.id, None)

    assert excinfo.value.code == ErrorCode.EXECUTION_NOT_RUNNING
    assert endpoint_executor.execute.call_count == 1

    row = store.get_step_execution(only_row(store, execution)["id"])
    assert row.step_status == StepExecutionStatus.SKIPPED
    assert row.attempts == 1


@patch("runbooks.step_runner.time.sleep")
def test_bookkeeping_failure_finalizes_row(mock_sleep, runner, store, execution, step, endpoint_executor):
    endpoint_executor.execute.side_effect = StepExecutionError("Endpoint call failed: HTTP 503")
    database_error = EngineError("Error in database during update", ErrorCode.DATABASE_ERROR)

    with patch.object(store, "record_attempt", side_effect=[True, database_error]):
        with pytest.raises(EngineError) as excinfo:
            runner.run(step, {}, execution.id, None)

    assert excinfo.value is database_error
    row = only_row(store, execution)
    assert row["step_status"] == "failed"
    assert row["error_message"] == "Error in database during update"
    assert row["completed_at"] is not None
