"""Drift detection between desired and observed connector configuration.

Kafka Connect configuration is a flat string-to-string map, so drift is a
plain map comparison:

- every key of both maps takes part (a key on one side only is drift)
- values are compared with strict string equality, no coercion
- keys the runtime writes into the config on its own are excluded

The excluded keys are enumerated in DEFAULT_IGNORED_KEYS. Anything else
the runtime reports back is treated as real drift; operators can extend the
set with IGNORE_CONFIG_KEYS when a connector plugin injects its own keys.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from .models import ConnectorParameters

logger = logging.getLogger(__name__)

CONNECTOR_CLASS_KEY = "connector.class"
TASKS_MAX_KEY = "tasks.max"


@dataclass(frozen=True)
class IgnoredKey:
    """A config key excluded from drift detection.

    Attributes:
        key: Exact config key.
        reason: Why the runtime populates it, for audit logging.
    """

    key: str
    reason: str


DEFAULT_IGNORED_KEYS: tuple[IgnoredKey, ...] = (
    IgnoredKey(
        key="name",
        reason="Kafka Connect copies the connector name into the stored config",
    ),
)

DEFAULT_IGNORED_KEY_NAMES: frozenset[str] = frozenset(k.key for k in DEFAULT_IGNORED_KEYS)


class ChangeKind(str, Enum):
    ADDED = "added"  # desired only
    REMOVED = "removed"  # observed only
    CHANGED = "changed"


@dataclass(frozen=True)
class ConfigChange:
    key: str
    kind: ChangeKind
    desired: str | None
    observed: str | None


def ignored_keys(extra: Iterable[str] = ()) -> frozenset[str]:
    """Built-in ignore set plus operator-supplied keys."""
    return DEFAULT_IGNORED_KEY_NAMES | frozenset(extra)


def desired_config(params: ConnectorParameters) -> dict[str, str]:
    """Wire representation of the desired connector configuration.

    connectorClass and tasksMax are folded into the map under their Kafka
    Connect keys and take precedence over the same keys in config.
    """
    config = dict(params.config)
    config[CONNECTOR_CLASS_KEY] = params.connector_class
    config[TASKS_MAX_KEY] = str(params.tasks_max)
    return config


def diff_config(
    desired: Mapping[str, str],
    observed: Mapping[str, str],
    ignored: frozenset[str] = DEFAULT_IGNORED_KEY_NAMES,
) -> list[ConfigChange]:
    """List every key that differs, sorted by key."""
    changes: list[ConfigChange] = []

    for key in sorted((desired.keys() | observed.keys()) - ignored):
        want = desired.get(key)
        have = observed.get(key)
        if want is None:
            changes.append(ConfigChange(key, ChangeKind.REMOVED, None, have))
        elif have is None:
            changes.append(ConfigChange(key, ChangeKind.ADDED, want, None))
        elif want != have:
            changes.append(ConfigChange(key, ChangeKind.CHANGED, want, have))

    return changes


def needs_update(
    desired: Mapping[str, str],
    observed: Mapping[str, str],
    ignored: frozenset[str] = DEFAULT_IGNORED_KEY_NAMES,
) -> bool:
    """True if the observed config must be replaced to match the desired one."""
    changes = diff_config(desired, observed, ignored)
    if changes:
        # Keys only; values may hold credentials
        logger.debug(
            "Config drift detected",
            extra={
                "changed_keys": [c.key for c in changes],
                "change_kinds": [c.kind.value for c in changes],
            },
        )
    return bool(changes)
