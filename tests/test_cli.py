"""
Tests for the click CLI.
"""

from __future__ import annotations

import json
import logging
import socket

import pytest
from click.testing import CliRunner

from conftest import VALID_CONFIG
from pinger.main import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def restore_root_logger():
    """The CLI reconfigures logging onto the runner's stderr; undo that."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def listener():
    """A listening socket; connects complete from the backlog."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(8)
    yield sock.getsockname()[1]
    sock.close()


def closed_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestCheckConfig:
    """Tests for `pinger check-config`."""

    def test_valid(self, runner, write_config):
        result = runner.invoke(cli, ["check-config", "--config", str(write_config(VALID_CONFIG))])

        assert result.exit_code == 0, result.output
        assert "is valid" in result.output
        assert "db1" in result.output
        assert "https://example.com/" in result.output
        assert "3 target(s)" in result.output

    def test_invalid(self, runner, write_config):
        path = write_config("targets:\n  - name: db\n    kind: tcp\n    host: db\n")

        result = runner.invoke(cli, ["check-config", "--config", str(path)])

        assert result.exit_code == 1
        assert "host and port" in result.output

    def test_json(self, runner, write_config):
        result = runner.invoke(
            cli, ["check-config", "--config", str(write_config(VALID_CONFIG)), "--json"]
        )

        data = json.loads(result.output)
        assert data["valid"] is True
        assert [t["name"] for t in data["targets"]] == ["db1", "web", "gateway"]
        assert data["targets"][0]["interval_seconds"] == 5

    def test_config_from_env(self, runner, write_config):
        path = write_config(VALID_CONFIG)
        result = runner.invoke(cli, ["check-config"], env={"PINGER_CONFIG": str(path)})
        assert result.exit_code == 0, result.output

    def test_missing_config_option(self, runner):
        result = runner.invoke(cli, ["check-config"], env={"PINGER_CONFIG": None})
        assert result.exit_code == 2


class TestProbe:
    """Tests for `pinger probe`."""

    def test_reachable(self, runner, write_config, listener):
        path = write_config(
            f"targets:\n  - name: local\n    kind: tcp\n    host: 127.0.0.1\n    port: {listener}\n"
        )

        result = runner.invoke(cli, ["probe", "--config", str(path)])

        assert result.exit_code == 0, result.output
        assert "✓ local" in result.output

    def test_failure_exits_1(self, runner, write_config):
        path = write_config(
            f"targets:\n  - name: closed\n    kind: tcp\n    host: 127.0.0.1\n    port: {closed_port()}\n"
        )

        result = runner.invoke(cli, ["probe", "--config", str(path), "--json"])

        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data[0]["reason"] == "connection_refused"

    def test_single_target(self, runner, write_config, listener):
        path = write_config(
            "targets:\n"
            f"  - name: local\n    kind: tcp\n    host: 127.0.0.1\n    port: {listener}\n"
            f"  - name: closed\n    kind: tcp\n    host: 127.0.0.1\n    port: {closed_port()}\n"
        )

        result = runner.invoke(cli, ["probe", "--config", str(path), "--target", "local"])

        assert result.exit_code == 0, result.output
        assert "closed" not in result.output

    def test_unknown_target(self, runner, write_config):
        result = runner.invoke(
            cli, ["probe", "--config", str(write_config(VALID_CONFIG)), "--target", "nope"]
        )

        assert result.exit_code == 1
        assert "Unknown target: nope" in result.output


class TestServe:
    """Tests for `pinger serve` startup failures."""

    def test_invalid_config_is_fatal(self, runner, write_config):
        path = write_config("targets: [")

        result = runner.invoke(cli, ["serve", "--config", str(path)])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
