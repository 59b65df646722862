"""
``agri-ledger`` command line tests.

Each test points the CLI at its own SQLite file and resets the module
engine afterwards.
"""

import json

import pytest

from agri_config import CONFIG_ENV_VAR, DATABASE_URL_ENV_VAR, AppConfig
from agri_kernel.db.engine import reset_engine
from agri_services.cli import chart_of_accounts, main


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.delenv(DATABASE_URL_ENV_VAR, raising=False)
    yield f"sqlite:///{tmp_path / 'cli.db'}"
    reset_engine()


def _run(capsys, *argv):
    code = main(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


class TestInitDb:
    def test_creates_chart_once(self, capsys, db_url):
        code, out, _ = _run(capsys, "--database-url", db_url, "init-db")
        assert code == 0
        created = json.loads(out)["accounts_created"]
        assert {"AR", "SALES_REVENUE", "CASH", "PAYABLE_LANDLORD"} <= set(created)

        code, out, _ = _run(capsys, "--database-url", db_url, "init-db")
        assert code == 0
        assert json.loads(out)["accounts_created"] == []


class TestReports:
    def test_ageing_on_empty_ledger(self, capsys, db_url):
        _run(capsys, "--database-url", db_url, "init-db")

        code, out, _ = _run(capsys, "--database-url", db_url, "ageing", "--as-of", "2024-03-31")

        assert code == 0
        report = json.loads(out)
        assert report["rows"] == []
        assert report["totals"]["GBP"]["total_outstanding"] == "0.00"

    def test_balances_and_cashbook(self, capsys, db_url):
        _run(capsys, "--database-url", db_url, "init-db")

        code, out, _ = _run(capsys, "--database-url", db_url, "balances", "--as-of", "2024-03-31")
        assert (code, json.loads(out)) == (0, [])

        code, out, _ = _run(
            capsys, "--database-url", db_url, "cashbook", "--from", "2024-01-01", "--to", "2024-03-31"
        )
        assert (code, json.loads(out)) == (0, [])

    def test_invalid_date_is_reported(self, capsys, db_url):
        _run(capsys, "--database-url", db_url, "init-db")

        code, out, err = _run(capsys, "--database-url", db_url, "ageing", "--as-of", "31/03/2024")

        assert code == 1
        assert out == ""
        assert '"INVALID_ARGUMENT"' in err

    def test_missing_config_file(self, capsys, db_url, tmp_path):
        code, _, err = _run(
            capsys, "--config", str(tmp_path / "absent.yaml"), "--database-url", db_url, "init-db"
        )
        assert code == 2
        assert "configuration error" in err


def test_chart_of_accounts_has_unique_codes():
    chart = chart_of_accounts(AppConfig().ledger.accounts)
    codes = [code for code, _, _ in chart]
    assert len(codes) == len(set(codes))
    assert "PROFIT_DISTRIBUTION" in codes
