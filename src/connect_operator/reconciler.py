"""Core reconciliation cycle for Kafka Connect connectors.

Each cycle follows the Kubernetes-style pattern, for one resource:
1. Observe: read the connector, then (best effort) its status
2. Decide: a pure function picks exactly one action
3. Act: at most one mutating REST call
4. Report: project the observation into status and conditions

State transitions on the Kafka Connect side are asynchronous, so a cycle
never reads back what it just wrote. The next cycle observes the outcome.
Every step is safe to repeat: a crash between any two steps leaves the
remote connector in a state the next cycle converges from.

Errors from Kafka Connect never escape a cycle. They are recorded on the
resource and the resource is requeued with exponential backoff.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .client import (
    ApplicationError,
    ConnectionPool,
    KafkaConnectClient,
    KafkaConnectError,
    NotFoundError,
    TransportError,
)
from .config import Config
from .diff import ConfigChange, desired_config, diff_config, ignored_keys, needs_update
from .models import (
    Condition,
    ConditionType,
    Connector,
    ConnectorObservation,
    DeletionPolicy,
    ResourceStatus,
)
from .resolver import ConnectionDetails, ConnectionResolver, ResolverError
from .status import ObservedConnector, evaluate_readiness, to_observation, translate
from .store import ResourceStore

logger = logging.getLogger(__name__)

# Condition reasons
REASON_RECONCILE_SUCCESS = "ReconcileSuccess"
REASON_RECONCILE_ERROR = "ReconcileError"
REASON_CONFIGURATION_ERROR = "ConfigurationError"
REASON_DRY_RUN = "DryRun"
REASON_CREATING = "Creating"
REASON_DELETING = "Deleting"
REASON_STATUS_UNKNOWN = "StatusUnknown"


class ResourceState(str, Enum):
    """Where a resource stands relative to its remote connector."""

    UNOBSERVED = "Unobserved"
    UP_TO_DATE = "UpToDate"
    DRIFTED = "Drifted"
    DELETING = "Deleting"
    GONE = "Gone"


class Action(str, Enum):
    """The single corrective action of a cycle."""

    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    NONE = "NoOp"


class NameChangedError(Exception):
    """The desired connector name differs from the one already managed."""

    pass


@dataclass(frozen=True)
class Decision:
    state: ResourceState
    action: Action
    changes: tuple[ConfigChange, ...] = ()


def decide(
    desired: dict[str, str],
    observed: ObservedConnector | None,
    *,
    deletion_requested: bool,
    ignored: frozenset[str],
) -> Decision:
    """Pick the one action that moves the remote connector toward the desired state.

    Args:
        desired: Desired config in wire form (see diff.desired_config).
        observed: Live connector, or None if Kafka Connect reported not-found.
        deletion_requested: Whether the resource is being deleted.
        ignored: Config keys excluded from drift detection.
    """
    if deletion_requested:
        return Decision(ResourceState.DELETING, Action.DELETE)
    if observed is None:
        return Decision(ResourceState.UNOBSERVED, Action.CREATE)

    if not needs_update(desired, observed.config, ignored):
        return Decision(ResourceState.UP_TO_DATE, Action.NONE)
    changes = tuple(diff_config(desired, observed.config, ignored))
    return Decision(ResourceState.DRIFTED, Action.UPDATE, changes)


class Backoff:
    """Per-resource exponential backoff: min * 2**failures, capped at max."""

    def __init__(self, min_seconds: float, max_seconds: float) -> None:
        self.min_seconds = min_seconds
        self.max_seconds = max_seconds
        self._failures: dict[str, int] = {}

    def failure(self, key: str) -> float:
        """Record a failed cycle and return the delay before the next one."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        return min(self.min_seconds * (2**failures), self.max_seconds)

    def failures(self, key: str) -> int:
        return self._failures.get(key, 0)

    def reset(self, key: str) -> None:
        self._failures.pop(key, None)

    forget = reset


@dataclass
class ReconcileResult:
    """Result of a single reconciliation cycle."""

    key: str
    state: ResourceState | None = None
    action: Action = Action.NONE
    action_performed: bool = False
    changes: tuple[ConfigChange, ...] = ()
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    error: Exception | None = None
    requeue_after: float | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None


def _is_terminal(error: Exception) -> bool:
    """Errors that retrying will not fix until the resource itself changes."""
    if isinstance(error, (ResolverError, NameChangedError)):
        return True
    return isinstance(error, KafkaConnectError) and not error.retryable


def _describe(error: Exception) -> str:
    return f"{type(error).__name__}: {error}"


class ConnectorReconciler:
    """Runs reconcile cycles for Connector resources.

    The reconciler holds no state shared between resources other than the
    per-key backoff table; cycles for different keys may run concurrently,
    cycles for one key must not (the scheduler guarantees this).
    """

    def __init__(
        self,
        config: Config,
        store: ResourceStore,
        pool: ConnectionPool,
        resolver: ConnectionResolver,
    ) -> None:
        self._config = config
        self._store = store
        self._pool = pool
        self._resolver = resolver
        self._ignored = ignored_keys(config.ignore_config_keys)
        self._backoff = Backoff(config.backoff_min_seconds, config.backoff_max_seconds)

    @property
    def backoff(self) -> Backoff:
        return self._backoff

    async def reconcile(self, key: str) -> ReconcileResult:
        """Execute a single reconciliation cycle for one resource.

        Returns:
            ReconcileResult; requeue_after is None when the resource needs no
            further cycles (finalized or removed from the store).
        """
        result = ReconcileResult(key=key)

        connector = self._store.get_connector(key)
        if connector is None:
            # Removed from the store without deletion: stop managing it
            self._backoff.forget(key)
            result.state = ResourceState.GONE
            result.end_time = datetime.now(UTC)
            return result

        status = self._store.get_status(key)
        finalized = await self._run_cycle(connector, status, result)
        if not finalized:
            self._store.write_status(key, status)

        result.requeue_after = self._requeue_after(result, finalized)
        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    async def _run_cycle(
        self, connector: Connector, status: ResourceStatus, result: ReconcileResult
    ) -> bool:
        """Observe, decide, act and report. Returns True if the resource was finalized."""
        key = connector.key
        params = connector.spec.for_provider
        deleting = connector.deletion_requested

        # Name is immutable; deletion always targets the connector we created
        name = status.connector_name or params.name
        if not deleting and name != params.name:
            self._record_error(
                status,
                result,
                NameChangedError(
                    f"connector name is immutable: managing {name!r}, spec asks for "
                    f"{params.name!r}; delete and recreate the resource to rename"
                ),
                reason=REASON_CONFIGURATION_ERROR,
            )
            return False

        if deleting and connector.spec.deletion_policy == DeletionPolicy.ORPHAN:
            logger.info(
                "Orphaning connector on deletion",
                extra={"resource": key, "connector": name},
            )
            return self._finalize(key, result)

        try:
            details = self._resolve(connector)
        except ResolverError as e:
            self._record_error(status, result, e, reason=REASON_CONFIGURATION_ERROR)
            return False

        client = self._client(details)

        # OBSERVE
        try:
            info = await client.get(name)
        except NotFoundError:
            info = None
        except KafkaConnectError as e:
            # Nothing is known about the remote side; no state transition
            self._record_error(status, result, e)
            return False

        observed: ObservedConnector | None = None
        if info is not None:
            status.connector_name = name
            status_payload = None
            try:
                status_payload = await client.get_status(name)
            except KafkaConnectError as e:
                # Existence is confirmed; only the status goes stale
                logger.warning(
                    "Connector status unavailable",
                    extra={"resource": key, "connector": name, "error": str(e)},
                )
                result.error = e
            observed = translate(info, status_payload)

        # DECIDE
        desired = desired_config(params)
        decision = decide(
            desired,
            observed,
            deletion_requested=deleting,
            ignored=self._ignored,
        )
        result.state = decision.state
        result.action = decision.action
        result.changes = decision.changes

        # ACT
        mutation_error: Exception | None = None
        outcome = ""
        if decision.action != Action.NONE and self._config.dry_run:
            logger.info(
                "Dry run: skipping action",
                extra={"resource": key, "action": decision.action.value},
            )
            status.set_condition(
                Condition(
                    type=ConditionType.SYNCED,
                    status=False,
                    reason=REASON_DRY_RUN,
                    message=f"{decision.action.value} required but skipped (dry run)",
                )
            )
        elif decision.action != Action.NONE:
            try:
                outcome = await self._act(client, decision.action, name, desired)
            except KafkaConnectError as e:
                mutation_error = e
                result.error = e
            else:
                result.action_performed = True
                if decision.action == Action.CREATE:
                    status.connector_name = name
                elif decision.action == Action.DELETE:
                    result.state = ResourceState.GONE
                    return self._finalize(key, result)

            status.set_condition(self._synced_after_action(outcome, mutation_error))

        # REPORT
        self._report(status, decision.state, observed)
        if decision.action == Action.NONE:
            if result.error is not None:
                status.set_condition(self._synced_error(result.error))
            else:
                synced = status.get_condition(ConditionType.SYNCED)
                if synced is None or not synced.status:
                    status.set_condition(
                        Condition(
                            type=ConditionType.SYNCED,
                            status=True,
                            reason=REASON_RECONCILE_SUCCESS,
                        )
                    )
        return False

    async def _act(
        self,
        client: KafkaConnectClient,
        action: Action,
        name: str,
        config: dict[str, str],
    ) -> str:
        """Execute exactly one mutating call and describe its outcome."""
        outcome = f"{action.value} succeeded"
        match action:
            case Action.CREATE:
                try:
                    await client.create(name, config)
                except ApplicationError as e:
                    if not e.is_conflict:
                        raise
                    # Created by an earlier cycle that crashed before recording it,
                    # or a rebalance is in progress; the next cycle observes it
                    logger.info(
                        "Connector already exists",
                        extra={"connector": name, "error": e.body},
                    )
                    outcome = "Connector already exists"
            case Action.UPDATE:
                await client.update_config(name, config)
            case Action.DELETE:
                try:
                    await client.delete(name)
                except NotFoundError:
                    logger.info("Connector already deleted", extra={"connector": name})
                    outcome = "Connector already absent"
            case Action.NONE:
                pass

        logger.info(
            "Applied action",
            extra={"connector": name, "action": action.value, "outcome": outcome},
        )
        return outcome

    def _resolve(self, connector: Connector) -> ConnectionDetails:
        provider = self._store.get_provider_config(self._resolver.provider_config_name(connector))
        return self._resolver.resolve(connector, provider)

    def _client(self, details: ConnectionDetails) -> KafkaConnectClient:
        return self._pool.client(
            details.endpoint,
            username=details.username,
            password=details.password,
            ssl_context=details.ssl_context,
        )

    def _finalize(self, key: str, result: ReconcileResult) -> bool:
        self._store.finalize(key)
        self._backoff.forget(key)
        result.state = ResourceState.GONE
        return True

    def _report(
        self,
        status: ResourceStatus,
        state: ResourceState,
        observed: ObservedConnector | None,
    ) -> None:
        """Overwrite the observation and set Ready from it."""
        if state == ResourceState.DELETING:
            status.set_condition(
                Condition(type=ConditionType.READY, status=False, reason=REASON_DELETING)
            )
            return

        if observed is None:
            # Absent is a state of its own: clear the observation entirely
            status.at_provider = ConnectorObservation()
            status.set_condition(
                Condition(type=ConditionType.READY, status=False, reason=REASON_CREATING)
            )
            return

        if not observed.status_known:
            # Keep the last observation and last Ready value through a failed probe
            if status.get_condition(ConditionType.READY) is None:
                status.set_condition(
                    Condition(
                        type=ConditionType.READY,
                        status=False,
                        reason=REASON_STATUS_UNKNOWN,
                    )
                )
            return

        status.at_provider = to_observation(observed)
        readiness = evaluate_readiness(observed)
        status.set_condition(
            Condition(
                type=ConditionType.READY,
                status=readiness.ready,
                reason=readiness.reason,
                message=readiness.message,
            )
        )

    def _synced_after_action(self, outcome: str, error: Exception | None) -> Condition:
        if error is not None:
            return self._synced_error(error)
        return Condition(
            type=ConditionType.SYNCED,
            status=True,
            reason=REASON_RECONCILE_SUCCESS,
            message=outcome,
        )

    @staticmethod
    def _synced_error(error: Exception, reason: str = REASON_RECONCILE_ERROR) -> Condition:
        return Condition(
            type=ConditionType.SYNCED,
            status=False,
            reason=reason,
            message=_describe(error),
        )

    def _record_error(
        self,
        status: ResourceStatus,
        result: ReconcileResult,
        error: Exception,
        *,
        reason: str = REASON_RECONCILE_ERROR,
    ) -> None:
        """Record a failure that ends the cycle before any action."""
        result.error = error
        status.set_condition(self._synced_error(error, reason))

    def _requeue_after(self, result: ReconcileResult, finalized: bool) -> float | None:
        key = result.key
        if finalized:
            return None

        if result.error is not None:
            if _is_terminal(result.error):
                return self._backoff.max_seconds
            return self._backoff.failure(key)

        if result.action_performed:
            # Remote state changes asynchronously; look again soon
            return self._backoff.min_seconds

        if result.state == ResourceState.UP_TO_DATE:
            self._backoff.reset(key)
        return float(self._config.resync_interval_seconds)

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconciliation result with structured data."""
        extra: dict[str, Any] = {
            "resource": result.key,
            "state": result.state.value if result.state else None,
            "action": result.action.value,
            "action_performed": result.action_performed,
            "duration_seconds": result.duration_seconds,
            "requeue_after": result.requeue_after,
        }
        if result.changes:
            extra["changed_keys"] = [c.key for c in result.changes]

        if result.error is not None:
            extra["error"] = str(result.error)
            extra["error_type"] = type(result.error).__name__
            extra["failures"] = self._backoff.failures(result.key)
            if isinstance(result.error, TransportError) and result.error.timed_out:
                logger.warning("Reconciliation timed out", extra=extra)
            else:
                logger.error("Reconciliation failed", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
