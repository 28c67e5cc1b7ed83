"""Resource builders and an in-memory resource store."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from connect_operator.models import API_VERSION, Connector, ProviderConfig, ResourceStatus
from connect_operator.store import ResourceStore


def connector_document(
    name: str,
    *,
    url: str | None = None,
    connector_name: str | None = None,
    connector_class: str = "FileStreamSink",
    tasks_max: int = 1,
    config: dict[str, str] | None = None,
    provider_config: str | None = None,
    deletion_policy: str | None = None,
    deleted: bool = False,
) -> dict[str, Any]:
    """Raw Connector document as it would appear in a YAML file."""
    for_provider: dict[str, Any] = {
        "name": connector_name or name,
        "connectorClass": connector_class,
        "tasksMax": tasks_max,
        "config": config or {},
    }
    if url is not None:
        for_provider["kafkaConnectUrl"] = url

    spec: dict[str, Any] = {"forProvider": for_provider}
    if provider_config is not None:
        spec["providerConfigRef"] = {"name": provider_config}
    if deletion_policy is not None:
        spec["deletionPolicy"] = deletion_policy

    metadata: dict[str, Any] = {"name": name}
    if deleted:
        metadata["deletionTimestamp"] = datetime.now(UTC).isoformat()

    return {"apiVersion": API_VERSION, "kind": "Connector", "metadata": metadata, "spec": spec}


def make_connector(name: str, **kwargs: Any) -> Connector:
    return Connector.model_validate(connector_document(name, **kwargs))


def provider_config_document(
    name: str = "default",
    *,
    url: str = "http://connect:8083",
    credentials: dict[str, Any] | None = None,
    tls: dict[str, Any] | None = None,
) -> dict[str, Any]:
    spec: dict[str, Any] = {"kafkaConnectUrl": url}
    if credentials is not None:
        spec["credentials"] = credentials
    if tls is not None:
        spec["tls"] = tls
    return {
        "apiVersion": API_VERSION,
        "kind": "ProviderConfig",
        "metadata": {"name": name},
        "spec": spec,
    }


def make_provider_config(name: str = "default", **kwargs: Any) -> ProviderConfig:
    return ProviderConfig.model_validate(provider_config_document(name, **kwargs))


class InMemoryResourceStore(ResourceStore):
    """Resource store holding everything in dictionaries.

    Statuses are stored as serialized copies so a test observes exactly what
    a reconcile cycle persisted, not a live object it may still mutate.
    """

    def __init__(
        self,
        connectors: list[Connector] | None = None,
        provider_configs: list[ProviderConfig] | None = None,
    ) -> None:
        self.connectors = {c.key: c for c in connectors or []}
        self.provider_configs = {p.metadata.name: p for p in provider_configs or []}
        self.statuses: dict[str, dict[str, Any]] = {}
        self.finalized: set[str] = set()
        self.status_writes = 0
        self.refreshes = 0

    def refresh(self) -> None:
        self.refreshes += 1

    def put(self, connector: Connector) -> None:
        self.connectors[connector.key] = connector

    def list_keys(self) -> list[str]:
        return sorted(k for k in self.connectors if k not in self.finalized)

    def get_connector(self, key: str) -> Connector | None:
        return self.connectors.get(key)

    def get_provider_config(self, name: str) -> ProviderConfig | None:
        return self.provider_configs.get(name)

    def get_status(self, key: str) -> ResourceStatus:
        raw = self.statuses.get(key)
        return ResourceStatus.model_validate(raw) if raw is not None else ResourceStatus()

    def write_status(self, key: str, status: ResourceStatus) -> None:
        self.status_writes += 1
        self.statuses[key] = status.to_dict()

    def finalize(self, key: str) -> None:
        self.finalized.add(key)
        self.statuses.pop(key, None)
