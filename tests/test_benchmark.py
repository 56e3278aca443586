"""
Tests for the benchmark CLI.
"""

from __future__ import annotations

from pii_vault import EnvelopeEngine, MockBackend
from pii_vault.benchmark import main, run_benchmark


def test_run_benchmark_against_mock(capsys):
    engine = EnvelopeEngine.with_backend(MockBackend())
    result = run_benchmark(engine, rows=10)

    assert result.rows == 10
    assert result.sealed == 10
    assert result.opened_cold == 10
    assert result.opened_warm == 10
    assert result.resealed == 10
    assert result.shredded == 2
    assert result.shredded_verified == 2

    out = capsys.readouterr().out
    assert "BENCHMARK COMPLETE" in out
    assert "****" in out
    assert "row 1 secret data" not in out


def test_main_mock(capsys):
    assert main(["--mock", "--rows", "5"]) == 0
    assert "BENCHMARK SUMMARY" in capsys.readouterr().out


def test_main_rejects_zero_rows(capsys):
    assert main(["--mock", "--rows", "0"]) == 1
    assert "ERROR" in capsys.readouterr().out


def test_main_without_configuration(monkeypatch, capsys):
    monkeypatch.setattr("pii_vault.config.load_dotenv", lambda **kwargs: False)
    monkeypatch.delenv("PII_VAULT_URL", raising=False)
    assert main([]) == 1
    assert "PII_VAULT_URL" in capsys.readouterr().out
