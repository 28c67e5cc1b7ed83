"""Pydantic models for connector resources with validation.

These models provide:
1. Type-safe YAML parsing of Connector and ProviderConfig documents
2. Validation at the boundary (fail fast, fail loudly)
3. The persisted status shape (atProvider observation plus conditions)
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator

from .config import MAX_CONNECTOR_NAME_LENGTH, VALID_CONNECTOR_NAME_PATTERN

API_VERSION = "kafkaconnect.crossplane.io/v1alpha1"

# =============================================================================
# Shared
# =============================================================================


class ObjectMeta(BaseModel):
    """Subset of resource metadata the operator reads."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    name: Annotated[str, Field(min_length=1, max_length=253)]
    deletion_timestamp: datetime | None = Field(None, alias="deletionTimestamp")
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class Reference(BaseModel):
    """Reference to another resource by name."""

    model_config = {"extra": "ignore", "frozen": True}

    name: Annotated[str, Field(min_length=1)]


# =============================================================================
# Connector
# =============================================================================


class ConnectorState(str, Enum):
    """States reported by Kafka Connect for connectors and tasks alike."""

    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    FAILED = "FAILED"
    UNASSIGNED = "UNASSIGNED"
    RESTARTING = "RESTARTING"


class DeletionPolicy(str, Enum):
    """What happens to the remote connector when the resource is deleted."""

    DELETE = "Delete"
    ORPHAN = "Orphan"


class ConnectorParameters(BaseModel):
    """Desired configuration of a single Kafka Connect connector."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    name: Annotated[str, Field(min_length=1, max_length=MAX_CONNECTOR_NAME_LENGTH)]
    connector_class: Annotated[str, Field(min_length=1, alias="connectorClass")]
    tasks_max: Annotated[int, Field(ge=1, alias="tasksMax")] = 1
    config: dict[str, str] = Field(default_factory=dict)

    # Optional per-connector endpoint, overrides the ProviderConfig URL
    kafka_connect_url: str | None = Field(None, alias="kafkaConnectUrl")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not re.match(VALID_CONNECTOR_NAME_PATTERN, v):
            raise ValueError("name must not contain '/' or control characters")
        return v

    @field_validator("config", mode="before")
    @classmethod
    def validate_string_values(cls, v: Any) -> Any:
        # Kafka Connect only understands string-valued configuration
        if isinstance(v, dict):
            bad = sorted(str(k) for k, val in v.items() if not isinstance(val, str))
            if bad:
                raise ValueError(
                    f"config values must be strings (quote them in YAML): {', '.join(bad)}"
                )
        return v

    @field_validator("kafka_connect_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("kafkaConnectUrl must be an http:// or https:// URL")
        return v


class ConnectorSpec(BaseModel):
    """Desired state of a Connector resource."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    for_provider: ConnectorParameters = Field(alias="forProvider")
    provider_config_ref: Reference | None = Field(None, alias="providerConfigRef")
    deletion_policy: DeletionPolicy = Field(DeletionPolicy.DELETE, alias="deletionPolicy")


class Connector(BaseModel):
    """A managed resource representing a Kafka Connect connector."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    api_version: str = Field(API_VERSION, alias="apiVersion")
    kind: Literal["Connector"] = "Connector"
    metadata: ObjectMeta
    spec: ConnectorSpec

    @property
    def key(self) -> str:
        """Identity of the resource within the store."""
        return self.metadata.name

    @property
    def deletion_requested(self) -> bool:
        return self.metadata.deletion_timestamp is not None


# =============================================================================
# ProviderConfig
# =============================================================================


class CredentialsSource(str, Enum):
    """Closed set of places credentials can come from."""

    NONE = "None"
    SECRET = "Secret"
    INJECTED_IDENTITY = "InjectedIdentity"
    ENVIRONMENT = "Environment"
    FILESYSTEM = "Filesystem"


class SecretKeySelector(BaseModel):
    """Key within a mounted secret directory."""

    model_config = {"extra": "ignore", "frozen": True}

    name: Annotated[str, Field(min_length=1)]
    namespace: str | None = None
    key: Annotated[str, Field(min_length=1)] = "credentials"


class EnvSelector(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}

    name: Annotated[str, Field(min_length=1)]


class FsSelector(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}

    path: Annotated[str, Field(min_length=1)]


class ProviderCredentials(BaseModel):
    """Credentials required to authenticate to Kafka Connect."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    source: CredentialsSource = CredentialsSource.NONE
    secret_ref: SecretKeySelector | None = Field(None, alias="secretRef")
    env: EnvSelector | None = None
    fs: FsSelector | None = None


class TLSConfig(BaseModel):
    """TLS configuration for connecting to Kafka Connect."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    insecure_skip_verify: bool = Field(False, alias="insecureSkipVerify")
    # PEM encoded CA bundle used to validate the server certificate
    ca_bundle: str | None = Field(None, alias="caBundle")


class ProviderConfigSpec(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    kafka_connect_url: str = Field(alias="kafkaConnectUrl")
    credentials: ProviderCredentials = Field(default_factory=ProviderCredentials)
    tls: TLSConfig | None = None

    @field_validator("kafka_connect_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("kafkaConnectUrl must be an http:// or https:// URL")
        return v


class ProviderConfig(BaseModel):
    """Connection settings shared by the connectors that reference it."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    api_version: str = Field(API_VERSION, alias="apiVersion")
    kind: Literal["ProviderConfig"] = "ProviderConfig"
    metadata: ObjectMeta
    spec: ProviderConfigSpec


# =============================================================================
# Status
# =============================================================================


class ConditionType(str, Enum):
    READY = "Ready"
    SYNCED = "Synced"


class Condition(BaseModel):
    """A single health condition, keyed by type."""

    model_config = {"populate_by_name": True, "frozen": True}

    type: ConditionType
    status: bool
    reason: str
    message: str = ""
    last_transition_time: datetime = Field(
        default_factory=lambda: datetime.now(UTC), alias="lastTransitionTime"
    )

    def equivalent(self, other: Condition) -> bool:
        """True if both conditions say the same thing, ignoring time."""
        return (
            self.type == other.type
            and self.status == other.status
            and self.reason == other.reason
            and self.message == other.message
        )


class TaskStatus(BaseModel):
    model_config = {"populate_by_name": True, "frozen": True}

    id: int
    state: str
    worker_id: str = Field("", alias="workerId")
    trace: str | None = None


class ConnectorObservation(BaseModel):
    """Observable fields of a connector, projected from the latest read."""

    model_config = {"populate_by_name": True, "frozen": True}

    state: str = ""
    worker_id: str = Field("", alias="workerId")
    tasks: list[TaskStatus] = Field(default_factory=list)


class ResourceStatus(BaseModel):
    """Persisted status of a Connector resource."""

    model_config = {"populate_by_name": True}

    at_provider: ConnectorObservation = Field(
        default_factory=ConnectorObservation, alias="atProvider"
    )
    conditions: list[Condition] = Field(default_factory=list)

    # Remote connector name this resource manages, recorded on first contact
    connector_name: str | None = Field(None, alias="connectorName")

    def get_condition(self, condition_type: ConditionType) -> Condition | None:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def set_condition(self, condition: Condition) -> None:
        """Replace the condition of the same type.

        The previous transition time is kept when nothing but the time changed.
        """
        existing = self.get_condition(condition.type)
        if existing is not None and existing.equivalent(condition):
            return
        self.conditions = [c for c in self.conditions if c.type != condition.type]
        self.conditions.append(condition)
        self.conditions.sort(key=lambda c: c.type.value)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
