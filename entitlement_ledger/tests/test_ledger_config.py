from __future__ import annotations

import pytest

from entitlement_ledger.config import load_ledger_config


def test_defaults_when_environment_is_empty() -> None:
    config = load_ledger_config({})

    assert config.store_backend == "postgres"
    assert config.free_grant_validity_days == 365
    assert config.admin_roles == ("admin", "service")
    assert config.seed_catalog is True
    assert config.session_cookie_name == "session"
    assert config.log_level == "INFO"


def test_db_settings_include_statement_timeout() -> None:
    config = load_ledger_config(
        {
            "DB_HOST": "db",
            "DB_PORT": "6543",
            "DB_CONNECT_TIMEOUT": "2.5",
            "DB_STATEMENT_TIMEOUT_MS": "1500",
        }
    )

    settings = config.db_settings()

    assert settings["host"] == "db"
    assert settings["port"] == 6543
    assert settings["connect_timeout"] == 3
    assert settings["options"] == "-c statement_timeout=1500"


def test_statement_timeout_can_be_disabled() -> None:
    config = load_ledger_config({"DB_STATEMENT_TIMEOUT_MS": "0"})

    assert "options" not in config.db_settings()


def test_ledger_settings_are_parsed() -> None:
    config = load_ledger_config(
        {
            "LEDGER_STORE": " Memory ",
            "FREE_GRANT_VALIDITY_DAYS": "30",
            "LEDGER_ADMIN_ROLES": "support, admin ,",
            "LEDGER_SEED_CATALOG": "off",
            "CORS_ALLOW_ORIGINS": "https://app.example.com,https://admin.example.com",
            "LOG_LEVEL": "debug",
        }
    )

    assert config.store_backend == "memory"
    assert config.free_grant_validity_days == 30
    assert config.admin_roles == ("support", "admin")
    assert config.seed_catalog is False
    assert config.cors_allow_origins == ("https://app.example.com", "https://admin.example.com")
    assert config.log_level == "DEBUG"


@pytest.mark.parametrize(
    "env",
    [
        {"LEDGER_STORE": "redis"},
        {"FREE_GRANT_VALIDITY_DAYS": "0"},
        {"FREE_GRANT_VALIDITY_DAYS": "soon"},
        {"DB_CONNECT_TIMEOUT": "-1"},
    ],
)
def test_invalid_settings_are_rejected(env) -> None:
    with pytest.raises(ValueError):
        load_ledger_config(env)
