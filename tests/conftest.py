"""Pytest configuration and fixtures."""

import sys
from collections.abc import AsyncGenerator
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for connect_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

import pytest_asyncio  # noqa: E402
from aiohttp.test_utils import TestServer  # noqa: E402
from connect_mock import MockKafkaConnect  # noqa: E402


@pytest_asyncio.fixture
async def kafka_connect() -> AsyncGenerator[MockKafkaConnect, None]:
    """Mock Kafka Connect worker listening on localhost.

    The base URL is available as kafka_connect.url.
    """
    mock = MockKafkaConnect()
    async with TestServer(mock.app) as server:
        mock.url = str(server.make_url("/")).rstrip("/")
        yield mock
