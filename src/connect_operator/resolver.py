"""Connection and credential resolution for Kafka Connect endpoints.

Each reconcile cycle resolves its resource once into a ConnectionDetails
value: the endpoint, an optional Basic Auth pair and the TLS settings. The
closed set of credential sources is dispatched here and nowhere else.

Credential payloads (from a secret, environment variable or file) are JSON
objects of the form {"username": "...", "password": "..."}.

SECURITY: Resolved secrets are never logged. Only the source type and the
reference used to locate them appear in log records.
"""

from __future__ import annotations

import json
import logging
import os
import ssl
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .models import Connector, CredentialsSource, ProviderConfig, TLSConfig

logger = logging.getLogger(__name__)

DEFAULT_SECRETS_DIR = Path("/var/run/secrets/kafkaconnect")
DEFAULT_PROVIDER_CONFIG_NAME = "default"

# SECURITY: Credential payloads are tiny; refuse anything suspiciously large
MAX_CREDENTIALS_BYTES = 64 * 1024


class ResolverError(Exception):
    """Raised when a resource's connection cannot be resolved.

    This is a configuration error, distinct from transport failures.
    """

    pass


@dataclass(frozen=True)
class ConnectionDetails:
    """Everything the transport client needs for one reconcile cycle."""

    endpoint: str
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    ssl_context: ssl.SSLContext | bool = True

    @property
    def has_basic_auth(self) -> bool:
        return bool(self.username and self.password)


class ConnectionResolver:
    """Resolves Connector resources into concrete connection details.

    Args:
        secrets_dir: Root of mounted secrets; a Secret reference resolves to
            <secrets_dir>/[<namespace>/]<name>/<key>.
        environ: Environment used by the Environment source (default: os.environ).
    """

    def __init__(
        self,
        *,
        secrets_dir: Path = DEFAULT_SECRETS_DIR,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._secrets_dir = secrets_dir
        self._environ = environ if environ is not None else os.environ
        # Pooled connections are keyed by SSL context, so reuse one per ProviderConfig
        self._ssl_contexts: dict[str, tuple[TLSConfig, ssl.SSLContext | bool]] = {}

    def provider_config_name(self, connector: Connector) -> str:
        ref = connector.spec.provider_config_ref
        return ref.name if ref is not None else DEFAULT_PROVIDER_CONFIG_NAME

    def resolve(
        self, connector: Connector, provider: ProviderConfig | None
    ) -> ConnectionDetails:
        """Resolve the endpoint and credentials for a connector.

        Args:
            connector: The resource being reconciled.
            provider: The ProviderConfig it references, or None if none exists.

        Raises:
            ResolverError: If no endpoint is available or credentials cannot be read.
        """
        params = connector.spec.for_provider

        if provider is None:
            if connector.spec.provider_config_ref is not None:
                raise ResolverError(
                    f"ProviderConfig {connector.spec.provider_config_ref.name!r} not found"
                )
            if params.kafka_connect_url is None:
                raise ResolverError(
                    f"connector {connector.key!r} has no kafkaConnectUrl and no "
                    f"ProviderConfig {DEFAULT_PROVIDER_CONFIG_NAME!r} exists"
                )
            # Anonymous access to the per-connector endpoint
            return ConnectionDetails(endpoint=params.kafka_connect_url)

        endpoint = params.kafka_connect_url or provider.spec.kafka_connect_url
        username, password = self._credentials(provider)

        logger.debug(
            "Resolved connection",
            extra={
                "resource": connector.key,
                "provider_config": provider.metadata.name,
                "endpoint": endpoint,
                "credentials_source": provider.spec.credentials.source.value,
                "basic_auth": bool(username and password),
            },
        )

        return ConnectionDetails(
            endpoint=endpoint,
            username=username,
            password=password,
            ssl_context=self._ssl_context(provider),
        )

    def _ssl_context(self, provider: ProviderConfig) -> ssl.SSLContext | bool:
        tls = provider.spec.tls
        if tls is None:
            return True

        name = provider.metadata.name
        cached = self._ssl_contexts.get(name)
        if cached is not None and cached[0] == tls:
            return cached[1]

        context = build_ssl_context(tls)
        self._ssl_contexts[name] = (tls, context)
        return context

    def _credentials(self, provider: ProviderConfig) -> tuple[str | None, str | None]:
        creds = provider.spec.credentials
        name = provider.metadata.name

        match creds.source:
            case CredentialsSource.NONE | CredentialsSource.INJECTED_IDENTITY:
                # Injected identity authenticates below HTTP (mTLS, sidecar proxy)
                return None, None
            case CredentialsSource.SECRET:
                if creds.secret_ref is None:
                    raise ResolverError(f"ProviderConfig {name!r}: source Secret needs secretRef")
                ref = creds.secret_ref
                path = self._secrets_dir
                if ref.namespace:
                    path = path / ref.namespace
                raw = _read_file(path / ref.name / ref.key, name)
            case CredentialsSource.ENVIRONMENT:
                if creds.env is None:
                    raise ResolverError(f"ProviderConfig {name!r}: source Environment needs env")
                value = self._environ.get(creds.env.name)
                if not value:
                    raise ResolverError(
                        f"ProviderConfig {name!r}: environment variable "
                        f"{creds.env.name} is not set"
                    )
                raw = value
            case CredentialsSource.FILESYSTEM:
                if creds.fs is None:
                    raise ResolverError(f"ProviderConfig {name!r}: source Filesystem needs fs")
                raw = _read_file(Path(creds.fs.path), name)
            case _:
                raise ResolverError(f"ProviderConfig {name!r}: unsupported source {creds.source}")

        return _parse_credentials(raw, name)


def _read_file(path: Path, provider_name: str) -> str:
    try:
        if path.stat().st_size > MAX_CREDENTIALS_BYTES:
            raise ResolverError(f"ProviderConfig {provider_name!r}: {path} is too large")
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ResolverError(
            f"ProviderConfig {provider_name!r}: cannot read credentials from {path}: "
            f"{e.strerror or e}"
        ) from e


def _parse_credentials(raw: str, provider_name: str) -> tuple[str | None, str | None]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        # Do not include the payload, it is a secret
        raise ResolverError(
            f"ProviderConfig {provider_name!r}: credentials are not valid JSON "
            f"(line {e.lineno}, column {e.colno})"
        ) from e

    if not isinstance(data, dict):
        raise ResolverError(f"ProviderConfig {provider_name!r}: credentials must be a JSON object")

    username = data.get("username")
    password = data.get("password")
    for field_name, value in (("username", username), ("password", password)):
        if value is not None and not isinstance(value, str):
            raise ResolverError(
                f"ProviderConfig {provider_name!r}: credentials {field_name} must be a string"
            )
    return username or None, password or None


def build_ssl_context(tls: TLSConfig | None) -> ssl.SSLContext | bool:
    """TLS settings for aiohttp: True means default verification."""
    if tls is None:
        return True

    try:
        context = ssl.create_default_context(cadata=tls.ca_bundle or None)
    except (ssl.SSLError, ValueError) as e:
        raise ResolverError(f"invalid caBundle: {e}") from e

    if tls.insecure_skip_verify:
        logger.warning("TLS certificate verification disabled for Kafka Connect endpoint")
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context
