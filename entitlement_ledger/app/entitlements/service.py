"""Facade coordinating resolution, consumption, provisioning and reporting."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Mapping, Optional

from .catalog import PlanCatalog
from .consumption import ConsumptionCoordinator
from .events import LedgerEventLogger, RecordingLedgerEventLogger
from .exceptions import CatalogInconsistencyError, GrantNotFoundError, PlanNotFoundError
from .models import (
    CommitOutcome,
    CommitResult,
    ConsumptionReceipt,
    Grant,
    LedgerAuditEvent,
    LedgerAuditEventType,
    Plan,
    PlanLimits,
    UsageCategory,
    UsageReport,
    UsageView,
)
from .provisioning import DEFAULT_FREE_GRANT_VALIDITY_DAYS, ProvisioningService
from .reporting import UsageReporter
from .resolver import EntitlementResolver
from .store import GrantRepository

logger = logging.getLogger("entitlements")


def denial_message(category: UsageCategory) -> str:
    return f"You have used all of your {category.label} credits. Upgrade your plan to continue."


ALREADY_SPENT_MESSAGE = "Action recorded, but the credit for it was already spent by another request."
NOT_SELECTABLE_MESSAGE = "The plan selected for this action expired or was deactivated before it could be charged."


class EntitlementService:
    """Entry point used by feature handlers and the HTTP routes."""

    def __init__(
        self,
        catalog: PlanCatalog,
        repository: GrantRepository,
        *,
        event_logger: Optional[LedgerEventLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        free_grant_validity_days: int = DEFAULT_FREE_GRANT_VALIDITY_DAYS,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._event_logger = event_logger or RecordingLedgerEventLogger()
        self.catalog = catalog
        self.repository = repository
        self.resolver = EntitlementResolver(repository, clock=self._clock)
        self.provisioning = ProvisioningService(
            catalog=catalog,
            repository=repository,
            event_logger=self._event_logger,
            free_grant_validity_days=free_grant_validity_days,
            clock=self._clock,
        )
        self.consumption = ConsumptionCoordinator(
            repository=repository,
            provisioning=self.provisioning,
            event_logger=self._event_logger,
            clock=self._clock,
        )
        self.reporter = UsageReporter(catalog, self.resolver, clock=self._clock)

    # Resolution and consumption -----------------------------------------

    def resolve(self, user_id: str, category: UsageCategory) -> Optional[Grant]:
        return self.resolver.resolve(user_id, category)

    def commit(self, grant: Grant, category: UsageCategory) -> CommitResult:
        return self.consumption.commit(grant, category)

    def resolve_and_commit(self, user_id: str, category: UsageCategory) -> ConsumptionReceipt:
        """Charge a completed billable action to the grant the resolver selects."""

        grant = self.resolver.resolve(user_id, category)
        if grant is None:
            return ConsumptionReceipt(
                user_id=user_id,
                category=category,
                granted=False,
                message=denial_message(category),
            )

        result = self.consumption.commit(grant, category)
        if result.outcome == CommitOutcome.OK:
            return ConsumptionReceipt(
                user_id=user_id,
                category=category,
                granted=True,
                outcome=result.outcome,
                grant_id=grant.id,
                remaining=result.remaining,
                fallback_grant_id=result.fallback_grant.id if result.fallback_grant else None,
            )

        message = (
            ALREADY_SPENT_MESSAGE
            if result.outcome == CommitOutcome.ALREADY_EXHAUSTED
            else NOT_SELECTABLE_MESSAGE
        )
        return ConsumptionReceipt(
            user_id=user_id,
            category=category,
            granted=False,
            outcome=result.outcome,
            grant_id=grant.id,
            remaining=result.remaining,
            message=message,
        )

    # Provisioning --------------------------------------------------------

    def ensure_free_grant(self, user_id: str) -> Grant:
        return self.provisioning.ensure_free_grant(user_id)

    def grant_plan(self, user_id: str, plan_id: str, *, actor_id: Optional[str] = None) -> Grant:
        return self.provisioning.grant_plan(user_id, plan_id, actor_id=actor_id)

    # Reporting -----------------------------------------------------------

    def report(self, user_id: str) -> UsageReport:
        return self.reporter.report(user_id)

    def usage_for_grant(self, grant: Grant) -> Mapping[UsageCategory, UsageView]:
        return self.reporter.usage_for_grant(grant)

    # Grant administration ------------------------------------------------

    def get_grant(self, grant_id: str) -> Grant:
        grant = self.repository.get_grant(grant_id)
        if grant is None:
            raise GrantNotFoundError(f"Grant {grant_id} not found")
        return grant

    def list_grants(self, user_id: str, *, include_inactive: bool = False) -> List[Grant]:
        return list(self.repository.list_grants(user_id, include_inactive=include_inactive))

    def adjust_balances(
        self,
        grant_id: str,
        deltas: Mapping[UsageCategory, int],
        *,
        actor_id: Optional[str] = None,
    ) -> Grant:
        """Manually correct a grant's balances; results are clamped to the plan limits."""

        effective = {category: int(delta) for category, delta in deltas.items() if delta}
        if not effective:
            raise ValueError("At least one non-zero balance delta is required")

        grant = self.get_grant(grant_id)
        plan = self._plan_for_grant(grant)
        updated = self.repository.adjust_balances(grant_id, effective, plan.limits)
        if updated is None:
            raise GrantNotFoundError(f"Grant {grant_id} not found")

        logger.info(
            "Adjusted balances grant=%s user=%s actor=%s deltas=%s",
            grant_id,
            updated.user_id,
            actor_id,
            {category.value: delta for category, delta in effective.items()},
        )
        self._event_logger.log(
            LedgerAuditEvent(
                event_type=LedgerAuditEventType.BALANCE_ADJUSTED,
                user_id=updated.user_id,
                grant_id=grant_id,
                actor_id=actor_id,
                metadata={category.value: str(delta) for category, delta in effective.items()},
            )
        )
        return updated

    def deactivate_grant(self, grant_id: str, *, actor_id: Optional[str] = None) -> Grant:
        """Soft-delete a grant. Paid grants leave the user with a free grant."""

        grant = self.get_grant(grant_id)
        updated = self.repository.deactivate_grant(grant_id)
        if updated is None:
            raise GrantNotFoundError(f"Grant {grant_id} not found")

        if grant.is_active:
            logger.info("Deactivated grant=%s user=%s actor=%s", grant_id, grant.user_id, actor_id)
            self._event_logger.log(
                LedgerAuditEvent(
                    event_type=LedgerAuditEventType.GRANT_DEACTIVATED,
                    user_id=grant.user_id,
                    grant_id=grant_id,
                    actor_id=actor_id,
                    metadata={"reason": "administrative"},
                )
            )
        if grant.is_paid:
            self.provisioning.ensure_free_grant(grant.user_id)
        return updated

    # Catalog -------------------------------------------------------------

    def list_plans(self, *, include_inactive: bool = False) -> List[Plan]:
        return self.catalog.list_plans(include_inactive=include_inactive)

    def create_plan(
        self,
        *,
        name: str,
        price_minor_units: int,
        validity_days: int,
        limits: PlanLimits,
        description: Optional[str] = None,
        highlight: bool = False,
        actor_id: Optional[str] = None,
    ) -> Plan:
        plan = self.catalog.create_plan(
            name=name,
            price_minor_units=price_minor_units,
            validity_days=validity_days,
            limits=limits,
            description=description,
            highlight=highlight,
        )
        self._event_logger.log(
            LedgerAuditEvent(
                event_type=LedgerAuditEventType.PLAN_PUBLISHED,
                actor_id=actor_id,
                metadata={"plan_id": plan.id, "name": plan.name},
            )
        )
        return plan

    def _plan_for_grant(self, grant: Grant) -> Plan:
        try:
            return self.catalog.get_plan(grant.plan_id)
        except PlanNotFoundError as exc:
            logger.error(
                "Catalog inconsistency: grant=%s references missing plan=%s",
                grant.id,
                grant.plan_id,
            )
            raise CatalogInconsistencyError(grant.plan_id, grant_id=grant.id) from exc


__all__ = [
    "ALREADY_SPENT_MESSAGE",
    "EntitlementService",
    "NOT_SELECTABLE_MESSAGE",
    "denial_message",
]
