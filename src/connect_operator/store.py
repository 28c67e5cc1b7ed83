"""Desired-state storage for Connector and ProviderConfig resources.

The file store reads resource documents from a directory of YAML files and
persists status as one JSON file per resource. Deletion is requested by
setting metadata.deletionTimestamp on a Connector; once the operator has
finished deleting it, the resource is finalized with a tombstone file so it
is not recreated on the next resync.

SECURITY: All file operations enforce size limits to prevent DoS attacks
via large files. Input validation is performed at the boundary.
"""

from __future__ import annotations

import abc
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import Connector, ProviderConfig, ResourceStatus
from .registry import ResourceRegistry, UnknownKindError

logger = logging.getLogger(__name__)

SPEC_FILE_SUFFIXES = (".yaml", ".yml")
STATUS_SUFFIX = ".json"
TOMBSTONE_SUFFIX = ".finalized"


class StoreError(Exception):
    """Raised when resource documents cannot be loaded or status cannot be written."""

    pass


class ResourceStore(abc.ABC):
    """Interface the reconciler consumes from the desired-state provider."""

    def refresh(self) -> LoadResult | None:
        """Reload desired state from its source, if the store has one."""
        return None

    @abc.abstractmethod
    def list_keys(self) -> list[str]:
        """Keys of every Connector that still needs reconciling."""

    @abc.abstractmethod
    def get_connector(self, key: str) -> Connector | None: ...

    @abc.abstractmethod
    def get_provider_config(self, name: str) -> ProviderConfig | None: ...

    @abc.abstractmethod
    def get_status(self, key: str) -> ResourceStatus:
        """Last written status, or an empty status if none was written."""

    @abc.abstractmethod
    def write_status(self, key: str, status: ResourceStatus) -> None: ...

    @abc.abstractmethod
    def finalize(self, key: str) -> None:
        """Record that deletion of the resource completed."""


@dataclass
class LoadResult:
    """Outcome of scanning the specs directory."""

    connectors: dict[str, Connector] = field(default_factory=dict)
    provider_configs: dict[str, ProviderConfig] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def load_documents(specs_dir: Path, registry: ResourceRegistry) -> LoadResult:
    """Load and validate every resource document under specs_dir.

    A broken file is reported in LoadResult.errors and skipped; it never
    prevents the remaining files from loading.
    """
    result = LoadResult()

    if not specs_dir.is_dir():
        result.errors.append(f"Specs directory not found: {specs_dir}")
        return result

    paths = sorted(p for p in specs_dir.iterdir() if p.suffix in SPEC_FILE_SUFFIXES)
    for path in paths:
        try:
            documents = _read_documents(path)
        except StoreError as e:
            result.errors.append(str(e))
            continue

        for index, document in enumerate(documents):
            where = f"{path}[{index}]"
            try:
                resource = registry.parse(document)
            except UnknownKindError as e:
                result.errors.append(f"{where}: {e}")
                continue
            except ValidationError as e:
                # Format Pydantic validation errors for readability
                errors = []
                for error in e.errors():
                    loc = ".".join(str(x) for x in error["loc"])
                    errors.append(f"  - {loc}: {error['msg']}")
                result.errors.append(f"Validation failed for {where}:\n" + "\n".join(errors))
                continue

            if isinstance(resource, Connector):
                bucket: dict = result.connectors
            elif isinstance(resource, ProviderConfig):
                bucket = result.provider_configs
            else:
                result.errors.append(f"{where}: unsupported resource {type(resource).__name__}")
                continue

            name = resource.metadata.name
            if name in bucket:
                result.errors.append(f"{where}: duplicate {resource.kind} {name!r}")
                continue
            bucket[name] = resource

    return result


def _read_documents(path: Path) -> list[dict]:
    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise StoreError(f"Failed to stat spec file {path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise StoreError(
            f"Spec file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise StoreError(f"Failed to read spec file {path}: {e}") from e

    try:
        documents = [d for d in yaml.safe_load_all(content) if d is not None]
    except yaml.YAMLError as e:
        raise StoreError(f"Invalid YAML in {path}: {e}") from e

    for document in documents:
        if not isinstance(document, dict):
            raise StoreError(f"Spec file must contain YAML mappings: {path}")
    return documents


class FileResourceStore(ResourceStore):
    """Resource store backed by a specs directory and a status directory.

    Documents are re-read on refresh(); between refreshes the store serves
    an immutable snapshot so one reconcile cycle sees consistent input.
    """

    def __init__(self, specs_dir: Path, status_dir: Path, registry: ResourceRegistry) -> None:
        self._specs_dir = specs_dir
        self._status_dir = status_dir
        self._registry = registry
        self._snapshot = LoadResult()

    def refresh(self) -> LoadResult:
        """Reload documents from disk and return the load result."""
        result = load_documents(self._specs_dir, self._registry)
        for error in result.errors:
            logger.error("Invalid resource document", extra={"error": error})

        self._snapshot = result
        logger.info(
            "Loaded resources",
            extra={
                "specs_dir": str(self._specs_dir),
                "connectors": len(result.connectors),
                "provider_configs": len(result.provider_configs),
                "errors": len(result.errors),
            },
        )
        return result

    def list_keys(self) -> list[str]:
        return sorted(
            key
            for key, connector in self._snapshot.connectors.items()
            if not self._is_finalized(key, connector)
        )

    def get_connector(self, key: str) -> Connector | None:
        return self._snapshot.connectors.get(key)

    def get_provider_config(self, name: str) -> ProviderConfig | None:
        return self._snapshot.provider_configs.get(name)

    def get_status(self, key: str) -> ResourceStatus:
        path = self._status_path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ResourceStatus()
        except OSError as e:
            raise StoreError(f"Failed to read status file {path}: {e}") from e

        try:
            return ResourceStatus.model_validate_json(raw)
        except ValidationError as e:
            # A corrupt status file is rebuilt by the next cycle
            logger.warning(
                "Discarding unreadable status file",
                extra={"path": str(path), "error": str(e)},
            )
            return ResourceStatus()

    def write_status(self, key: str, status: ResourceStatus) -> None:
        self._write_atomic(self._status_path(key), json.dumps(status.to_dict(), indent=2))

    def finalize(self, key: str) -> None:
        connector = self._snapshot.connectors.get(key)
        stamp = ""
        if connector is not None and connector.metadata.deletion_timestamp is not None:
            stamp = connector.metadata.deletion_timestamp.isoformat()

        self._write_atomic(self._tombstone_path(key), stamp)
        try:
            self._status_path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StoreError(f"Failed to remove status for {key}: {e}") from e

        logger.info("Finalized resource", extra={"resource": key})

    def _is_finalized(self, key: str, connector: Connector) -> bool:
        # A tombstone only covers the deletion request it was written for
        if connector.metadata.deletion_timestamp is None:
            return False
        path = self._tombstone_path(key)
        try:
            stamp = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoreError(f"Failed to read tombstone {path}: {e}") from e
        return stamp == connector.metadata.deletion_timestamp.isoformat()

    def _status_path(self, key: str) -> Path:
        return self._status_dir / f"{quote(key, safe='')}{STATUS_SUFFIX}"

    def _tombstone_path(self, key: str) -> Path:
        return self._status_dir / f"{quote(key, safe='')}{TOMBSTONE_SUFFIX}"

    def _write_atomic(self, path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp, path)
        except OSError as e:
            raise StoreError(f"Failed to write {path}: {e}") from e
