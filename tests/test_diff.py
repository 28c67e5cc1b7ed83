"""Tests for drift detection."""

from __future__ import annotations

from connect_mock import make_connector

from connect_operator.diff import (
    DEFAULT_IGNORED_KEY_NAMES,
    ChangeKind,
    desired_config,
    diff_config,
    ignored_keys,
    needs_update,
)


class TestDesiredConfig:
    """Tests for the wire form of the desired configuration."""

    def test_typed_fields_folded_in(self) -> None:
        params = make_connector(
            "sink1", url="http://connect:8083", tasks_max=3, config={"topics": "orders"}
        ).spec.for_provider

        assert desired_config(params) == {
            "connector.class": "FileStreamSink",
            "tasks.max": "3",
            "topics": "orders",
        }

    def test_typed_fields_win_over_config(self) -> None:
        params = make_connector(
            "sink1",
            url="http://connect:8083",
            config={"connector.class": "Other", "tasks.max": "9"},
        ).spec.for_provider

        config = desired_config(params)
        assert config["connector.class"] == "FileStreamSink"
        assert config["tasks.max"] == "1"


class TestDiffConfig:
    """Tests for map comparison."""

    def test_identical(self) -> None:
        assert diff_config({"a": "1"}, {"a": "1"}) == []

    def test_ignored_key_only(self) -> None:
        """Test that the runtime-written name key is not drift."""
        assert diff_config({"a": "1"}, {"a": "1", "name": "sink1"}) == []

    def test_changed_added_removed(self) -> None:
        changes = diff_config(
            {"a": "1", "b": "2", "d": "4"},
            {"a": "1", "b": "3", "c": "x"},
        )

        assert [(c.key, c.kind) for c in changes] == [
            ("b", ChangeKind.CHANGED),
            ("c", ChangeKind.REMOVED),
            ("d", ChangeKind.ADDED),
        ]
        assert changes[0].desired == "2"
        assert changes[0].observed == "3"

    def test_strict_string_equality(self) -> None:
        """Test that values are never coerced before comparison."""
        changes = diff_config({"tasks.max": "1"}, {"tasks.max": "01"})
        assert len(changes) == 1

    def test_extra_ignored_keys(self) -> None:
        ignored = ignored_keys(["plugin.injected"])

        assert "name" in ignored
        assert diff_config({}, {"plugin.injected": "x"}, ignored) == []

    def test_default_ignore_set(self) -> None:
        assert DEFAULT_IGNORED_KEY_NAMES == frozenset({"name"})


class TestNeedsUpdate:
    """Tests for the update decision."""

    def test_difference_only_on_ignored_key(self) -> None:
        desired = {"connector.class": "FileStreamSink", "tasks.max": "1"}
        observed = {**desired, "name": "sink1"}

        assert needs_update(desired, observed) is False

    def test_tasks_max_compared_as_string(self) -> None:
        desired = {"connector.class": "FileStreamSink", "tasks.max": "2"}
        observed = {"connector.class": "FileStreamSink", "tasks.max": "1"}

        assert needs_update(desired, observed) is True

    def test_key_missing_on_either_side(self) -> None:
        assert needs_update({"a": "1"}, {}) is True
        assert needs_update({}, {"a": "1"}) is True
