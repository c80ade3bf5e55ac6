"""
CLI smoke tests (offline commands only).
"""
from typer.testing import CliRunner

from delta_gateway.cli import app

runner = CliRunner()


def test_sign_prints_known_signature(monkeypatch):
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    result = runner.invoke(app, ["sign", "GET", "/wallet/balances", "-t", "1700000000", "--secret", "test-secret"])

    assert result.exit_code == 0
    assert "/v2/wallet/balances" in result.output
    assert "63f4e0ed83545296429f440440e63e7be52c52ff86b73649249eb6466ab3db00" in result.output


def test_sign_reads_secret_from_env(monkeypatch):
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.setenv("DELTA_API_SECRET", "test-secret")
    result = runner.invoke(app, ["sign", "GET", "/v2/wallet/balances", "-t", "1700000000"])

    assert result.exit_code == 0
    assert "63f4e0ed83545296429f440440e63e7be52c52ff86b73649249eb6466ab3db00" in result.output


def test_verify_without_credentials_exits_2(monkeypatch):
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.delenv("DELTA_API_KEY", raising=False)
    monkeypatch.delenv("DELTA_API_SECRET", raising=False)

    result = runner.invoke(app, ["verify"])

    assert result.exit_code == 2
