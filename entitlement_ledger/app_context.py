"""Shared application context for reusable dependencies."""
from __future__ import annotations

from typing import Any, Callable, Optional

from .config import LedgerConfig, load_ledger_config

_get_conn: Optional[Callable[[], Any]] = None
_resolve_identity: Optional[Callable[..., Optional[Any]]] = None
_config: Optional[LedgerConfig] = None


def configure(
    *,
    get_conn: Callable[[], Any],
    resolve_identity: Callable[..., Optional[Any]],
    config: Optional[LedgerConfig] = None,
) -> None:
    """Register application-wide dependencies required by modular routers.

    ``resolve_identity`` maps raw request credentials to the caller identity
    handed out by the identity provider, returning ``None`` when they are
    missing or invalid.
    """

    global _get_conn
    global _resolve_identity
    global _config

    _get_conn = get_conn
    _resolve_identity = resolve_identity
    if config is not None:
        _config = config


def _require(value: Optional[Any], name: str) -> Any:
    if value is None:
        raise RuntimeError(f"Application context has not been configured yet: {name}")
    return value


def get_conn() -> Any:
    conn_factory = _require(_get_conn, "get_conn")
    return conn_factory()


def resolve_identity(*args: Any, **kwargs: Any) -> Optional[Any]:
    resolver = _require(_resolve_identity, "resolve_identity")
    return resolver(*args, **kwargs)


def get_config() -> LedgerConfig:
    global _config
    if _config is None:
        _config = load_ledger_config()
    return _config
