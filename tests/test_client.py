"""Tests for the Kafka Connect REST client."""

from __future__ import annotations

import pytest
from connect_mock import MockKafkaConnect

from connect_operator.client import (
    ApplicationError,
    ConnectionPool,
    DecodeError,
    NotFoundError,
    TransportError,
    _connector_path,
)


class TestConnectorPath:
    """Tests for URL path construction."""

    def test_plain_name(self) -> None:
        assert _connector_path("sink1") == "/connectors/sink1"

    def test_suffix(self) -> None:
        assert _connector_path("sink1", "status") == "/connectors/sink1/status"

    def test_name_is_escaped(self) -> None:
        """Test that names are percent-encoded as a single path segment."""
        assert _connector_path("my sink?x") == "/connectors/my%20sink%3Fx"


class TestApplicationError:
    """Tests for error classification."""

    @pytest.mark.parametrize("status", [500, 502, 503, 408, 409, 429])
    def test_retryable_statuses(self, status: int) -> None:
        assert ApplicationError(status, "", operation="get").retryable is True

    @pytest.mark.parametrize("status", [400, 401, 403, 422])
    def test_configuration_statuses_not_retryable(self, status: int) -> None:
        assert ApplicationError(status, "", operation="get").retryable is False

    def test_conflict(self) -> None:
        assert ApplicationError(409, "", operation="create").is_conflict is True
        assert ApplicationError(400, "", operation="create").is_conflict is False

    def test_not_found_is_application_error(self) -> None:
        error = NotFoundError("gone", operation="get")
        assert isinstance(error, ApplicationError)
        assert error.status_code == 404

    def test_decode_error_is_retryable(self) -> None:
        error = DecodeError(200, "<html>", operation="get", reason="not json")
        assert error.retryable is True
        assert "undecodable" in str(error)

    def test_body_is_truncated(self) -> None:
        error = ApplicationError(500, "x" * 10000, operation="get")
        assert len(error.body) == 4096


class TestConnectionPool:
    """Tests for ConnectionPool lifecycle."""

    def test_client_requires_entered_pool(self) -> None:
        with pytest.raises(RuntimeError):
            ConnectionPool().client("http://connect:8083")


class TestKafkaConnectClient:
    """Tests against the mock Kafka Connect worker."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, kafka_connect: MockKafkaConnect) -> None:
        async with ConnectionPool() as pool:
            client = pool.client(kafka_connect.url)
            created = await client.create(
                "sink1", {"connector.class": "FileStreamSink", "tasks.max": "2"}
            )
            info = await client.get("sink1")

        assert created.name == "sink1"
        assert info.config["connector.class"] == "FileStreamSink"
        assert info.config["name"] == "sink1"
        assert [t.task for t in info.tasks] == [0, 1]
        assert info.type == "sink"

    @pytest.mark.asyncio
    async def test_get_missing_raises_not_found(self, kafka_connect: MockKafkaConnect) -> None:
        async with ConnectionPool() as pool:
            with pytest.raises(NotFoundError):
                await pool.client(kafka_connect.url).get("missing")

    @pytest.mark.asyncio
    async def test_create_existing_is_conflict(self, kafka_connect: MockKafkaConnect) -> None:
        kafka_connect.add_connector("sink1", {"connector.class": "FileStreamSink"})

        async with ConnectionPool() as pool:
            with pytest.raises(ApplicationError) as exc_info:
                await pool.client(kafka_connect.url).create(
                    "sink1", {"connector.class": "FileStreamSink"}
                )

        assert exc_info.value.is_conflict
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_create_rejected_config(self, kafka_connect: MockKafkaConnect) -> None:
        """Test that a 400 surfaces as a non-retryable application error."""
        async with ConnectionPool() as pool:
            with pytest.raises(ApplicationError) as exc_info:
                await pool.client(kafka_connect.url).create("sink1", {"topics": "a"})

        assert exc_info.value.status_code == 400
        assert not exc_info.value.retryable
        assert "connector.class" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_update_config_replaces_map(self, kafka_connect: MockKafkaConnect) -> None:
        kafka_connect.add_connector(
            "sink1", {"connector.class": "FileStreamSink", "file": "/tmp/a"}
        )

        async with ConnectionPool() as pool:
            info = await pool.client(kafka_connect.url).update_config(
                "sink1", {"connector.class": "FileStreamSink", "tasks.max": "3"}
            )

        assert "file" not in info.config
        assert len(info.tasks) == 3

    @pytest.mark.asyncio
    async def test_delete(self, kafka_connect: MockKafkaConnect) -> None:
        kafka_connect.add_connector("sink1", {"connector.class": "FileStreamSink"})

        async with ConnectionPool() as pool:
            client = pool.client(kafka_connect.url)
            await client.delete("sink1")
            with pytest.raises(NotFoundError):
                await client.delete("sink1")

        assert "sink1" not in kafka_connect.connectors

    @pytest.mark.asyncio
    async def test_get_status(self, kafka_connect: MockKafkaConnect) -> None:
        kafka_connect.add_connector(
            "sink1", {"connector.class": "FileStreamSink", "tasks.max": "2"}
        )
        kafka_connect.set_task_state("sink1", 1, "FAILED", "java.lang.RuntimeException: boom")

        async with ConnectionPool() as pool:
            status = await pool.client(kafka_connect.url).get_status("sink1")

        assert status.connector.state == "RUNNING"
        assert status.connector.worker_id == "connect-0:8083"
        assert [(t.id, t.state) for t in status.tasks] == [(0, "RUNNING"), (1, "FAILED")]
        assert status.tasks[1].trace == "java.lang.RuntimeException: boom"

    @pytest.mark.asyncio
    async def test_name_with_special_characters(self, kafka_connect: MockKafkaConnect) -> None:
        async with ConnectionPool() as pool:
            client = pool.client(kafka_connect.url)
            await client.create("orders sink", {"connector.class": "FileStreamSink"})
            info = await client.get("orders sink")

        assert info.name == "orders sink"

    @pytest.mark.asyncio
    async def test_server_error(self, kafka_connect: MockKafkaConnect) -> None:
        kafka_connect.fail("get", status=503)

        async with ConnectionPool() as pool:
            with pytest.raises(ApplicationError) as exc_info:
                await pool.client(kafka_connect.url).get("sink1")

        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable
        assert exc_info.value.operation == "get"

    @pytest.mark.asyncio
    async def test_malformed_success_body(self, kafka_connect: MockKafkaConnect) -> None:
        kafka_connect.fail("get", status=200, body='{"unexpected": true}')

        async with ConnectionPool() as pool:
            with pytest.raises(DecodeError):
                await pool.client(kafka_connect.url).get("sink1")

    @pytest.mark.asyncio
    async def test_empty_success_body(self, kafka_connect: MockKafkaConnect) -> None:
        kafka_connect.fail("status", status=200, body="")

        async with ConnectionPool() as pool:
            with pytest.raises(DecodeError):
                await pool.client(kafka_connect.url).get_status("sink1")

    @pytest.mark.asyncio
    async def test_timeout(self, kafka_connect: MockKafkaConnect) -> None:
        kafka_connect.delay("get", 1.0)

        async with ConnectionPool(timeout_seconds=0.2) as pool:
            with pytest.raises(TransportError) as exc_info:
                await pool.client(kafka_connect.url).get("sink1")

        assert exc_info.value.timed_out is True
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_per_call_timeout_overrides_pool(self, kafka_connect: MockKafkaConnect) -> None:
        kafka_connect.delay("get", 1.0)

        async with ConnectionPool(timeout_seconds=30) as pool:
            with pytest.raises(TransportError) as exc_info:
                await pool.client(kafka_connect.url).get("sink1", timeout=0.2)

        assert exc_info.value.timed_out is True

    @pytest.mark.asyncio
    async def test_connection_refused(self) -> None:
        async with ConnectionPool(timeout_seconds=5) as pool:
            with pytest.raises(TransportError) as exc_info:
                await pool.client("http://127.0.0.1:1").get("sink1")

        assert exc_info.value.timed_out is False

    @pytest.mark.asyncio
    async def test_basic_auth(self, kafka_connect: MockKafkaConnect) -> None:
        kafka_connect.require_auth = ("admin", "secret")
        kafka_connect.add_connector("sink1", {"connector.class": "FileStreamSink"})

        async with ConnectionPool() as pool:
            with pytest.raises(ApplicationError) as exc_info:
                await pool.client(kafka_connect.url).get("sink1")
            info = await pool.client(
                kafka_connect.url, username="admin", password="secret"
            ).get("sink1")

        assert exc_info.value.status_code == 401
        assert info.name == "sink1"

    @pytest.mark.asyncio
    async def test_non_string_config_refused(self, kafka_connect: MockKafkaConnect) -> None:
        async with ConnectionPool() as pool:
            with pytest.raises(TypeError):
                await pool.client(kafka_connect.url).create(
                    "sink1", {"connector.class": "FileStreamSink", "tasks.max": 1}  # type: ignore[dict-item]
                )

        assert kafka_connect.requests == []
