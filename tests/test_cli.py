"""Tests for the command line interface with an in-memory engine."""

import pytest
from typer.testing import CliRunner

from moonwell_risk.cli import main as cli_main

runner = CliRunner()


class FakeProvider:
    def __init__(self):
        self.disconnected = False

    def disconnect(self):
        self.disconnected = True


@pytest.fixture
def provider(monkeypatch, engine, chain):
    chain.supply_collateral("WETH", 10**18)
    chain.set_debt("USDC", 1000 * 10**6)
    fake = FakeProvider()
    monkeypatch.setattr(cli_main, "_build_engine", lambda settings, address: (engine, fake))
    return fake


def test_position_table(provider):
    result = runner.invoke(cli_main.app, ["position"])

    assert result.exit_code == 0
    assert "Health factor:" in result.output
    assert "1.60" in result.output
    assert provider.disconnected is True


def test_position_json(provider):
    result = runner.invoke(cli_main.app, ["position", "--format", "json"])

    assert result.exit_code == 0
    assert '"health_factor": "1.60"' in result.output


def test_engine_error_exits_non_zero(provider, core_market):
    core_market.fail = True

    result = runner.invoke(cli_main.app, ["position", "--refresh"])

    assert result.exit_code == 1
    assert "Failed to read asset positions" in result.output
    assert provider.disconnected is True


def test_markets(provider):
    result = runner.invoke(cli_main.app, ["markets", "WETH"])

    assert result.exit_code == 0
    assert "WETH" in result.output


def test_monitor_once(provider):
    result = runner.invoke(cli_main.app, ["monitor", "--once"])

    assert result.exit_code == 0
    assert "Health factor: 1.60" in result.output
