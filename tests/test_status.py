"""Tests for status translation and readiness."""

from __future__ import annotations

from connect_operator.client import ConnectorInfo, ConnectorStatusPayload
from connect_operator.status import (
    REASON_AVAILABLE,
    REASON_CONNECTOR_FAILED,
    REASON_TASK_FAILED,
    REASON_UNAVAILABLE,
    ObservedConnector,
    ObservedTask,
    evaluate_readiness,
    to_observation,
    translate,
)


def _info() -> ConnectorInfo:
    return ConnectorInfo(
        name="sink1",
        config={"connector.class": "FileStreamSink", "name": "sink1"},
        type="sink",
    )


def _status(connector_state: str, *task_states: str, trace: str | None = None) -> ConnectorStatusPayload:
    return ConnectorStatusPayload.model_validate(
        {
            "name": "sink1",
            "connector": {"state": connector_state, "worker_id": "w1", "trace": trace},
            "tasks": [
                {"id": i, "state": s, "worker_id": "w1", "trace": "stack" if s == "FAILED" else None}
                for i, s in enumerate(task_states)
            ],
        }
    )


def _observed(state: str, *task_states: str) -> ObservedConnector:
    return ObservedConnector(
        name="sink1",
        config={},
        state=state,
        tasks=tuple(ObservedTask(id=i, state=s) for i, s in enumerate(task_states)),
    )


class TestTranslate:
    """Tests for building observations from payloads."""

    def test_with_status(self) -> None:
        observed = translate(_info(), _status("RUNNING", "RUNNING", "FAILED"))

        assert observed.status_known
        assert observed.state == "RUNNING"
        assert observed.worker_id == "w1"
        assert observed.type == "sink"
        assert [t.state for t in observed.tasks] == ["RUNNING", "FAILED"]
        assert [t.id for t in observed.failed_tasks] == [1]
        assert observed.tasks[1].trace == "stack"

    def test_without_status(self) -> None:
        """Test that a failed status probe leaves state unknown but keeps config."""
        observed = translate(_info(), None)

        assert not observed.status_known
        assert observed.state == ""
        assert observed.tasks == ()
        assert observed.config["connector.class"] == "FileStreamSink"

    def test_trace_dropped_unless_failed(self) -> None:
        observed = translate(_info(), _status("RUNNING", trace="old failure"))
        assert observed.trace is None

    def test_trace_kept_when_failed(self) -> None:
        observed = translate(_info(), _status("FAILED", trace="boom\n\tat x"))
        assert observed.trace == "boom\n\tat x"


class TestEvaluateReadiness:
    """Tests for the Ready computation."""

    def test_all_running(self) -> None:
        readiness = evaluate_readiness(_observed("RUNNING", "RUNNING", "RUNNING"))
        assert readiness.ready is True
        assert readiness.reason == REASON_AVAILABLE

    def test_running_without_tasks(self) -> None:
        assert evaluate_readiness(_observed("RUNNING")).ready is True

    def test_one_failed_task_is_not_ready(self) -> None:
        """Test that a partial failure is never hidden by a running connector."""
        readiness = evaluate_readiness(_observed("RUNNING", "RUNNING", "RUNNING", "FAILED"))

        assert readiness.ready is False
        assert readiness.reason == REASON_TASK_FAILED
        assert readiness.message == "task 2 of connector sink1 FAILED (1 of 3)"

    def test_several_failed_tasks(self) -> None:
        readiness = evaluate_readiness(_observed("RUNNING", "FAILED", "RUNNING", "FAILED"))
        assert readiness.message == "tasks 0, 2 of connector sink1 FAILED (2 of 3)"

    def test_connector_failed(self) -> None:
        observed = ObservedConnector(
            name="sink1", config={}, state="FAILED", trace="ConfigException: bad\n\tat x"
        )
        readiness = evaluate_readiness(observed)

        assert readiness.ready is False
        assert readiness.reason == REASON_CONNECTOR_FAILED
        assert readiness.message == "connector sink1 is FAILED: ConfigException: bad"

    def test_connector_failed_names_failed_tasks(self) -> None:
        """Test that failed task ids survive a failed connector."""
        readiness = evaluate_readiness(
            _observed("FAILED", "RUNNING", "RUNNING", "RUNNING", "FAILED")
        )

        assert readiness.ready is False
        assert readiness.reason == REASON_CONNECTOR_FAILED
        assert readiness.message == "connector sink1 is FAILED; task 3 FAILED"

    def test_paused_connector(self) -> None:
        readiness = evaluate_readiness(_observed("PAUSED", "PAUSED"))
        assert readiness.ready is False
        assert readiness.reason == REASON_UNAVAILABLE
        assert "PAUSED" in readiness.message

    def test_unassigned_task(self) -> None:
        readiness = evaluate_readiness(_observed("RUNNING", "RUNNING", "UNASSIGNED"))
        assert readiness.ready is False
        assert readiness.message == "tasks not running: 1=UNASSIGNED"


class TestToObservation:
    def test_projection(self) -> None:
        observation = to_observation(translate(_info(), _status("RUNNING", "FAILED")))

        assert observation.state == "RUNNING"
        assert observation.worker_id == "w1"
        assert len(observation.tasks) == 1
        assert observation.tasks[0].state == "FAILED"
        assert observation.tasks[0].trace == "stack"
