"""Registry of resource kinds the operator understands.

Built once at startup and passed to the resource store. The registry is
immutable, so parsing a document never depends on import order or on
registration happening at some arbitrary later point.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel

from .models import API_VERSION, Connector, ProviderConfig


class UnknownKindError(ValueError):
    """Raised when a document's apiVersion/kind is not registered."""

    pass


@dataclass(frozen=True)
class ResourceRegistry:
    """Immutable (apiVersion, kind) → model mapping."""

    kinds: Mapping[tuple[str, str], type[BaseModel]]

    def model_for(self, api_version: str, kind: str) -> type[BaseModel]:
        try:
            return self.kinds[(api_version, kind)]
        except KeyError:
            valid = sorted(f"{v}/{k}" for v, k in self.kinds)
            raise UnknownKindError(
                f"Unknown resource {api_version}/{kind}. Valid kinds: {valid}"
            ) from None

    def parse(self, document: dict[str, Any]) -> BaseModel:
        """Validate a raw document against its registered model.

        Raises:
            UnknownKindError: If apiVersion/kind is missing or not registered.
            pydantic.ValidationError: If the document fails validation.
        """
        api_version = document.get("apiVersion")
        kind = document.get("kind")
        if not isinstance(api_version, str) or not isinstance(kind, str):
            raise UnknownKindError("document must declare string apiVersion and kind")
        return self.model_for(api_version, kind).model_validate(document)


def build_registry(*models: type[BaseModel]) -> ResourceRegistry:
    """Create the registry; defaults to Connector and ProviderConfig."""
    selected = models or (Connector, ProviderConfig)
    kinds: dict[tuple[str, str], type[BaseModel]] = {}
    for model in selected:
        fields = model.model_fields
        api_version = fields["api_version"].default if "api_version" in fields else API_VERSION
        kind = fields["kind"].default
        if (api_version, kind) in kinds:
            raise ValueError(f"{api_version}/{kind} registered twice")
        kinds[(api_version, kind)] = model
    return ResourceRegistry(kinds=MappingProxyType(kinds))
