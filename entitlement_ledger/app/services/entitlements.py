"""Application wiring for the entitlement ledger."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..entitlements import (
    DEFAULT_PLANS,
    EntitlementService,
    InMemoryLedgerStore,
    LedgerAuditEvent,
    LedgerEventLogger,
    PlanCatalog,
)
from ..entitlements.repository import PostgresLedgerRepository
from ...app_context import get_config


logger = logging.getLogger("entitlements.audit")


class LoggingLedgerEventLogger(LedgerEventLogger):
    """Event logger forwarding ledger audit events to the application log."""

    def log(self, event: LedgerAuditEvent) -> None:
        logger.info(
            "Ledger event %s user=%s grant=%s actor=%s metadata=%s",
            event.event_type.value,
            event.user_id,
            event.grant_id,
            event.actor_id,
            event.metadata,
            extra={"ledger_event": event.event_type.value},
        )


def build_entitlement_service() -> EntitlementService:
    config = get_config()
    if config.store_backend == "memory":
        store = InMemoryLedgerStore(DEFAULT_PLANS if config.seed_catalog else ())
        catalog = PlanCatalog(store)
        repository = store
    else:
        postgres = PostgresLedgerRepository()
        catalog = PlanCatalog(postgres)
        repository = postgres
    return EntitlementService(
        catalog,
        repository,
        event_logger=LoggingLedgerEventLogger(),
        free_grant_validity_days=config.free_grant_validity_days,
    )


@lru_cache(maxsize=1)
def get_entitlement_service() -> EntitlementService:
    service = build_entitlement_service()
    logger.debug("Entitlement service initialised with %s", type(service.repository).__name__)
    return service


def prepare_datastore() -> None:
    """Create tables and seed the default catalog when running against PostgreSQL."""

    config = get_config()
    if config.store_backend != "postgres":
        return
    repository = PostgresLedgerRepository()
    repository.ensure_schema()
    if config.seed_catalog:
        inserted = repository.seed_plans(DEFAULT_PLANS)
        if inserted:
            logger.info("Seeded %s default plan(s)", inserted)


__all__ = [
    "LoggingLedgerEventLogger",
    "build_entitlement_service",
    "get_entitlement_service",
    "prepare_datastore",
]
