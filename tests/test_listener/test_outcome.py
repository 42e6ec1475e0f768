"""Tests for batch outcome tagging."""

from group_queue.listener.executor import ExecutionResult
from group_queue.listener.outcome import BatchOutcome, OutcomeStatus


class TestBatchOutcome:
    def test_cancelled(self):
        outcome = BatchOutcome.cancelled(4)
        assert outcome.status is OutcomeStatus.CANCELLED
        assert outcome.batch_size == 4
        assert outcome.deleted == 0
        assert outcome.error is None

    def test_failed_keeps_error(self):
        error = ValueError("bad payload")
        outcome = BatchOutcome.failed(2, error)
        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.error is error

    def test_status_values_are_metric_labels(self):
        assert {s.value for s in OutcomeStatus} == {
            "ok",
            "executor_failed",
            "cancelled",
            "failed",
        }


class TestExecutionResult:
    def test_success_has_no_error(self):
        result = ExecutionResult(succeeded=True)
        assert result.error is None
