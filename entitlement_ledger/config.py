"""Ledger configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple
import math
import os


@dataclass(frozen=True)
class LedgerConfig:
    """Configuration for the entitlement ledger service."""

    db_host: str
    db_port: int
    db_name: str
    db_user: str
    db_password: str
    db_connect_timeout: int
    db_statement_timeout_ms: int
    jwt_secret_key: str
    jwt_algorithm: str
    session_cookie_name: str
    free_grant_validity_days: int
    store_backend: str
    seed_catalog: bool
    admin_roles: Tuple[str, ...]
    cors_allow_origins: Tuple[str, ...]
    log_level: str

    def db_settings(self) -> Dict[str, object]:
        settings: Dict[str, object] = dict(
            host=self.db_host,
            port=self.db_port,
            dbname=self.db_name,
            user=self.db_user,
            password=self.db_password,
            connect_timeout=self.db_connect_timeout,
        )
        if self.db_statement_timeout_ms > 0:
            settings["options"] = f"-c statement_timeout={self.db_statement_timeout_ms}"
        return settings


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_csv(value: Optional[str], *, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if value is None:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_connect_timeout(raw_value: Optional[str]) -> int:
    if raw_value is None or raw_value == "":
        return 5
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


def load_ledger_config(env: Optional[Mapping[str, str]] = None) -> LedgerConfig:
    """Load :class:`LedgerConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    store_backend = (env_mapping.get("LEDGER_STORE") or "postgres").strip().lower()
    if store_backend not in {"postgres", "memory"}:
        raise ValueError(f"LEDGER_STORE must be 'postgres' or 'memory', got {store_backend!r}")

    free_grant_validity_days = _to_int(env_mapping.get("FREE_GRANT_VALIDITY_DAYS"), default=365)
    if free_grant_validity_days < 1:
        raise ValueError("FREE_GRANT_VALIDITY_DAYS must be >= 1")

    return LedgerConfig(
        db_host=env_mapping.get("DB_HOST", "127.0.0.1"),
        db_port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        db_name=env_mapping.get("DB_NAME", "careerprep"),
        db_user=env_mapping.get("DB_USER", "careerprep"),
        db_password=env_mapping.get("DB_PASSWORD", "careerprep"),
        db_connect_timeout=_parse_connect_timeout(env_mapping.get("DB_CONNECT_TIMEOUT")),
        db_statement_timeout_ms=max(0, _to_int(env_mapping.get("DB_STATEMENT_TIMEOUT_MS"), default=5000)),
        jwt_secret_key=env_mapping.get("JWT_SECRET_KEY", "dev-secret-change-me"),
        jwt_algorithm=env_mapping.get("JWT_ALGORITHM", "HS256"),
        session_cookie_name=env_mapping.get("SESSION_COOKIE_NAME", "session"),
        free_grant_validity_days=free_grant_validity_days,
        store_backend=store_backend,
        seed_catalog=_to_bool(env_mapping.get("LEDGER_SEED_CATALOG"), default=True),
        admin_roles=_to_csv(env_mapping.get("LEDGER_ADMIN_ROLES"), default=("admin", "service")),
        cors_allow_origins=_to_csv(
            env_mapping.get("CORS_ALLOW_ORIGINS"), default=("http://localhost:3000",)
        ),
        log_level=(env_mapping.get("LOG_LEVEL") or "INFO").strip().upper(),
    )


__all__ = ["LedgerConfig", "load_ledger_config"]
