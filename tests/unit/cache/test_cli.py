"""Tests for CLI helpers."""

from __future__ import annotations

import pytest
import typer
from typer.testing import CliRunner

from hybrid_cache.cli import app
from hybrid_cache.cli.commands import _run, parse_value
from hybrid_cache.cli.watch_cmd import format_message
from hybrid_cache.invalidation import InvalidationMessage

runner = CliRunner()


class TestParseValue:
    def test_json_values(self) -> None:
        assert parse_value('{"a": 1}') == {"a": 1}
        assert parse_value("42") == 42
        assert parse_value("true") is True

    def test_plain_string(self) -> None:
        assert parse_value("hello world") == "hello world"


class TestFormatMessage:
    def test_valid_message(self) -> None:
        line = format_message(InvalidationMessage("inst", ("app:a", "app:b")).to_bytes())
        assert "inst" in line
        assert "app:a, app:b" in line

    def test_malformed_message(self) -> None:
        assert "malformed" in format_message(b"junk")


class TestApp:
    def test_help_lists_commands(self) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("get", "set", "remove", "ping", "watch"):
            assert command in result.output

    def test_watch_requires_namespace(self, monkeypatch) -> None:
        from hybrid_cache.config import settings

        monkeypatch.setattr(settings, "namespace", None)
        result = runner.invoke(app, ["watch"])
        assert result.exit_code == 2

    def test_set_rejects_null(self) -> None:
        result = runner.invoke(app, ["set", "k", "null"])
        assert result.exit_code == 2
        assert "null cannot be cached" in result.output

    def test_set_rejects_non_positive_ttl(self) -> None:
        result = runner.invoke(app, ["set", "k", "1", "--ttl", "0"])
        assert result.exit_code == 2
        assert "--ttl must be positive" in result.output


class TestRun:
    def test_value_error_becomes_exit_code(self) -> None:
        async def invalid() -> None:
            raise ValueError("ttl must be positive, got 0")

        with pytest.raises(typer.Exit) as exc_info:
            _run(invalid())

        assert exc_info.value.exit_code == 1
