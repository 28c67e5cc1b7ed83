"""Translation of Kafka Connect status payloads into observations.

A connector and each of its tasks report their own state from the same
taxonomy (RUNNING, PAUSED, FAILED, UNASSIGNED, RESTARTING). The connector
state is not an aggregate of its tasks: a connector can be RUNNING while
one of its tasks is FAILED. Readiness is computed here from both levels so
that a partial failure is never hidden behind a healthy connector.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .client import ConnectorInfo, ConnectorStatusPayload, StateInfo
from .models import ConnectorObservation, ConnectorState, TaskStatus

REASON_AVAILABLE = "Available"
REASON_TASK_FAILED = "TaskFailed"
REASON_CONNECTOR_FAILED = "ConnectorFailed"
REASON_UNAVAILABLE = "Unavailable"


@dataclass(frozen=True)
class ObservedTask:
    id: int
    state: str
    worker_id: str = ""
    trace: str | None = None

    @property
    def failed(self) -> bool:
        return self.state == ConnectorState.FAILED.value


@dataclass(frozen=True)
class ObservedConnector:
    """Live view of a remote connector, rebuilt from scratch every cycle.

    status_known is False when the status endpoint could not be read; the
    connector is known to exist but its state and tasks are unknown.
    """

    name: str
    config: dict[str, str]
    type: str | None = None
    state: str = ""
    worker_id: str = ""
    trace: str | None = None
    tasks: tuple[ObservedTask, ...] = field(default_factory=tuple)
    status_known: bool = True

    @property
    def failed_tasks(self) -> list[ObservedTask]:
        return [t for t in self.tasks if t.failed]


@dataclass(frozen=True)
class Readiness:
    ready: bool
    reason: str
    message: str = ""


def _trace(info: StateInfo) -> str | None:
    # Traces are only meaningful for failures; the runtime may leave stale ones around
    if info.state == ConnectorState.FAILED.value and info.trace:
        return info.trace
    return None


def translate(
    info: ConnectorInfo, status: ConnectorStatusPayload | None
) -> ObservedConnector:
    """Build an observation from a connector read and an optional status read."""
    if status is None:
        return ObservedConnector(
            name=info.name,
            config=dict(info.config),
            type=info.type,
            status_known=False,
        )

    tasks = tuple(
        ObservedTask(
            id=task.id,
            state=task.state,
            worker_id=task.worker_id,
            trace=_trace(task),
        )
        for task in status.tasks
    )
    return ObservedConnector(
        name=info.name,
        config=dict(info.config),
        type=status.type or info.type,
        state=status.connector.state,
        worker_id=status.connector.worker_id,
        trace=_trace(status.connector),
        tasks=tasks,
    )


def evaluate_readiness(observed: ObservedConnector) -> Readiness:
    """Ready iff the connector and every one of its tasks are RUNNING.

    A failed task always wins over a healthy connector and is named in the
    message, so partial failures stay visible.
    """
    running = ConnectorState.RUNNING.value
    failed = observed.failed_tasks
    ids = ", ".join(str(t.id) for t in failed)
    noun = "task" if len(failed) == 1 else "tasks"

    if observed.state == ConnectorState.FAILED.value:
        message = f"connector {observed.name} is FAILED"
        if failed:
            message = f"{message}; {noun} {ids} FAILED"
        if observed.trace:
            message = f"{message}: {observed.trace.splitlines()[0]}"
        return Readiness(False, REASON_CONNECTOR_FAILED, message)

    if failed:
        return Readiness(
            False,
            REASON_TASK_FAILED,
            f"{noun} {ids} of connector {observed.name} FAILED "
            f"({len(failed)} of {len(observed.tasks)})",
        )

    if observed.state != running:
        return Readiness(
            False,
            REASON_UNAVAILABLE,
            f"connector {observed.name} is {observed.state or 'in an unknown state'}",
        )

    not_running = [t for t in observed.tasks if t.state != running]
    if not_running:
        detail = ", ".join(f"{t.id}={t.state}" for t in not_running)
        return Readiness(False, REASON_UNAVAILABLE, f"tasks not running: {detail}")

    return Readiness(True, REASON_AVAILABLE)


def to_observation(observed: ObservedConnector) -> ConnectorObservation:
    """Project an observation into the persisted atProvider shape."""
    return ConnectorObservation(
        state=observed.state,
        worker_id=observed.worker_id,
        tasks=[
            TaskStatus(id=t.id, state=t.state, worker_id=t.worker_id, trace=t.trace)
            for t in observed.tasks
        ],
    )
