"""
Configuration loader tests.

Defaults load cleanly; override files and $DATABASE_URL merge on top;
every malformed value is rejected with ValueError naming the key.
"""

import pytest
import yaml

from agri_config import CONFIG_ENV_VAR, DATABASE_URL_ENV_VAR, AppConfig, load_config
from agri_config.loader import deep_merge, parse_config


def _write(tmp_path, data, name="override.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:
    def test_packaged_defaults(self):
        config = load_config(environ={})

        assert isinstance(config, AppConfig)
        assert config.source is None
        assert config.ledger.default_currency == "GBP"
        assert config.ledger.accounts.payable_for("LANDLORD") == "PAYABLE_LANDLORD"
        assert config.ledger.accounts.payable_for("UNKNOWN") == "PARTY_PAYABLE"
        assert config.settlement.lock_timeout_seconds == 5.0
        assert config.database.isolation_level == "REPEATABLE READ"

    def test_config_is_frozen(self):
        config = load_config(environ={})
        with pytest.raises(AttributeError):
            config.ledger.default_currency = "EUR"


class TestOverrides:
    def test_override_file_merges(self, tmp_path):
        path = _write(tmp_path, {
            "ledger": {"default_currency": "eur", "accounts": {"cash_account_codes": ["CASH", "PETTY"]}},
            "settlement": {"lock_timeout_seconds": 0.5},
        })

        config = load_config(path, environ={})

        assert config.source == str(path)
        assert config.ledger.default_currency == "EUR"
        assert config.ledger.accounts.cash_account_codes == ("CASH", "PETTY")
        # keys not in the override keep their defaults
        assert config.ledger.accounts.receivable == "AR"
        assert config.settlement.number_prefix == "STL"
        assert config.settlement.lock_timeout_seconds == 0.5

    def test_env_var_names_override_file(self, tmp_path):
        path = _write(tmp_path, {"logging": {"level": "debug"}})

        config = load_config(environ={CONFIG_ENV_VAR: str(path)})

        assert config.logging.level == "DEBUG"

    def test_database_url_env_wins(self, tmp_path):
        path = _write(tmp_path, {"database": {"url": "sqlite:///from-file.db"}})

        config = load_config(
            path, environ={DATABASE_URL_ENV_VAR: "postgresql+psycopg2://u:p@db/agri"}
        )

        assert config.database.url == "postgresql+psycopg2://u:p@db/agri"

    def test_missing_override_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml", environ={})

    def test_deep_merge_replaces_lists(self):
        merged = deep_merge({"a": {"b": [1, 2], "c": 1}}, {"a": {"b": [3]}})
        assert merged == {"a": {"b": [3], "c": 1}}


class TestValidation:
    @pytest.mark.parametrize("data,key", [
        ({"ledger": {"default_currency": "ZZZ"}}, "ledger.default_currency"),
        ({"settlement": {"lock_timeout_seconds": 0}}, "settlement.lock_timeout_seconds"),
        ({"settlement": {"number_prefix": "ST-L"}}, "settlement.number_prefix"),
        ({"database": {"url": "not a url"}}, "database.url"),
        ({"database": {"pool_size": -1}}, "database.pool_size"),
        ({"database": {"isolation_level": "DIRTY"}}, "database.isolation_level"),
        ({"logging": {"level": "LOUD"}}, "logging.level"),
        ({"ledger": {"accounts": {"role_payables": {"BANKER": "X"}}}}, "role_payables"),
        ({"ledger": {"accounts": {"receivable": ""}}}, "ledger.accounts.receivable"),
        ({"settlement": {"retries": 3}}, "settlement"),
        ({"reports": {}}, "unknown configuration sections"),
    ])
    def test_rejected(self, data, key):
        with pytest.raises(ValueError, match=key.replace(".", r"\.")):
            parse_config(data)

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path, environ={})
