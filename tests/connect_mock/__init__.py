"""Kafka Connect Mock for Integration Testing.

This module provides a mock Kafka Connect worker and an in-memory resource
store that enable reconcile tests without a real Connect cluster.

Key Features:
- Real HTTP: the mock is an aiohttp.web application served on localhost
- In-memory connector state with per-task states
- Error injection (status codes, delays) per operation
- Resource builders for Connector and ProviderConfig documents

Usage:
    from connect_mock import InMemoryResourceStore, MockKafkaConnect, make_connector

    async with TestServer(mock.app) as server:
        store = InMemoryResourceStore([make_connector("sink1", url=url)])
        result = await reconciler.reconcile("sink1")

        # Assert on mock state
        assert mock.mutations == [("create", "sink1")]
"""

from .resources import (
    InMemoryResourceStore,
    connector_document,
    make_connector,
    make_provider_config,
    provider_config_document,
)
from .server import Fault, MockConnector, MockKafkaConnect

__all__ = [
    "Fault",
    "InMemoryResourceStore",
    "MockConnector",
    "MockKafkaConnect",
    "connector_document",
    "make_connector",
    "make_provider_config",
    "provider_config_document",
]
