"""Tests for the remote error policy."""

from __future__ import annotations

import logging

import pytest

from hybrid_cache.errors import RemoteUnavailable
from hybrid_cache.policy import ErrorMode, ErrorPolicy


@pytest.fixture
def error() -> RemoteUnavailable:
    return RemoteUnavailable("connection refused", "set", "app:x")


class TestErrorPolicy:
    def test_default_is_ignore(self) -> None:
        assert ErrorPolicy().mode is ErrorMode.IGNORE

    def test_from_flag(self) -> None:
        assert ErrorPolicy.from_flag(True).mode is ErrorMode.PROPAGATE
        assert ErrorPolicy.from_flag(False).mode is ErrorMode.IGNORE

    def test_ignore_logs(self, error: RemoteUnavailable, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="hybrid_cache.policy"):
            ErrorPolicy.ignore().handle("set", "app:x", error)
        assert "connection refused" in caplog.text

    def test_propagate_raises(self, error: RemoteUnavailable) -> None:
        with pytest.raises(RemoteUnavailable):
            ErrorPolicy.propagate().handle("set", "app:x", error)

    def test_custom_callback_can_swallow(self, error: RemoteUnavailable) -> None:
        calls: list[tuple[str, str | None]] = []
        policy = ErrorPolicy.custom(lambda op, key, e: calls.append((op, key)))

        policy.handle("set", "app:x", error)

        assert calls == [("set", "app:x")]

    def test_custom_callback_can_raise(self, error: RemoteUnavailable) -> None:
        def strict(operation: str, key: str | None, e: Exception) -> None:
            raise RuntimeError(f"{operation} failed")

        with pytest.raises(RuntimeError):
            ErrorPolicy.custom(strict).handle("get", "app:x", error)

    def test_report_never_raises(self, error: RemoteUnavailable) -> None:
        def strict(operation: str, key: str | None, e: Exception) -> None:
            raise RuntimeError("nope")

        ErrorPolicy.propagate().report("set", "app:x", error)
        ErrorPolicy.custom(strict).report("set", "app:x", error)
