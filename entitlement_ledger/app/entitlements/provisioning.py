"""Creates grants at onboarding, on purchase and during fallback."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import uuid4

from .catalog import PlanCatalog
from .events import LedgerEventLogger, RecordingLedgerEventLogger
from .exceptions import CatalogInconsistencyError, GrantNotFoundError, PlanNotFoundError
from .models import Balances, Grant, LedgerAuditEvent, LedgerAuditEventType, Plan
from .store import GrantRepository

logger = logging.getLogger("entitlements.provisioning")

DEFAULT_FREE_GRANT_VALIDITY_DAYS = 365


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProvisioningService:
    """Issues grants from catalog plans.

    ``ensure_free_grant`` is idempotent under concurrent calls: the store's
    ``insert_free_grant_if_absent`` decides the winner, never a read followed
    by a create in this process.
    """

    catalog: PlanCatalog
    repository: GrantRepository
    event_logger: LedgerEventLogger = field(default_factory=RecordingLedgerEventLogger)
    free_grant_validity_days: int = DEFAULT_FREE_GRANT_VALIDITY_DAYS
    clock: Callable[[], datetime] = _utcnow

    def ensure_free_grant(self, user_id: str) -> Grant:
        now = self.clock()
        plan = self.catalog.find_free_plan()
        candidate = self._build_grant(
            user_id,
            plan,
            now=now,
            end_at=now + timedelta(days=self.free_grant_validity_days),
        )
        grant = self.repository.insert_free_grant_if_absent(candidate, now=now)
        if grant.id == candidate.id:
            logger.info(
                "Provisioned free grant=%s user=%s plan=%s end_at=%s",
                grant.id,
                user_id,
                plan.id,
                grant.end_at.isoformat(),
            )
            self._log_event(LedgerAuditEventType.GRANT_CREATED, grant, metadata={"plan_id": plan.id})
        else:
            logger.debug("Free grant already present grant=%s user=%s", grant.id, user_id)
        return grant

    def fallback_from_exhausted_paid(self, user_id: str, exhausted_grant: Grant) -> Grant:
        """Deactivate an exhausted paid grant and make sure a free grant is available."""

        if exhausted_grant.is_free_tier:
            raise ValueError("Only paid grants fall back to the free tier")
        if exhausted_grant.user_id != user_id:
            raise ValueError("Grant does not belong to the given user")

        try:
            self.catalog.find_free_plan()
        except PlanNotFoundError as exc:
            logger.error(
                "No free plan to fall back to user=%s exhausted grant=%s; paid grant left active",
                user_id,
                exhausted_grant.id,
            )
            raise CatalogInconsistencyError(
                exhausted_grant.plan_id,
                grant_id=exhausted_grant.id,
                detail="No active free tier plan is configured to fall back to",
            ) from exc

        deactivated = self.repository.deactivate_grant(exhausted_grant.id)
        if deactivated is None:
            raise GrantNotFoundError(f"Grant {exhausted_grant.id} not found")
        self._log_event(
            LedgerAuditEventType.GRANT_DEACTIVATED,
            deactivated,
            metadata={"reason": "exhausted"},
        )

        free_grant = self.ensure_free_grant(user_id)
        logger.info(
            "Fallback user=%s from paid grant=%s (%s) to free grant=%s",
            user_id,
            exhausted_grant.id,
            exhausted_grant.plan_name,
            free_grant.id,
        )
        self._log_event(
            LedgerAuditEventType.FALLBACK_PROVISIONED,
            free_grant,
            metadata={"exhausted_grant_id": exhausted_grant.id},
        )
        return free_grant

    def grant_plan(self, user_id: str, plan_id: str, *, actor_id: Optional[str] = None) -> Grant:
        """Issue a grant after a confirmed purchase."""

        plan = self.catalog.get_plan(plan_id)
        if not plan.is_active:
            raise ValueError(f"Plan {plan_id} is no longer offered")
        if plan.is_free_tier:
            return self.ensure_free_grant(user_id)

        now = self.clock()
        grant = self.repository.insert_grant(
            self._build_grant(user_id, plan, now=now, end_at=now + timedelta(days=plan.validity_days))
        )
        logger.info(
            "Provisioned paid grant=%s user=%s plan=%s end_at=%s",
            grant.id,
            user_id,
            plan.id,
            grant.end_at.isoformat(),
        )
        self._log_event(
            LedgerAuditEventType.GRANT_CREATED,
            grant,
            actor_id=actor_id,
            metadata={"plan_id": plan.id},
        )
        # Paid users keep a free grant alongside the paid one.
        self.ensure_free_grant(user_id)
        return grant

    def _build_grant(self, user_id: str, plan: Plan, *, now: datetime, end_at: datetime) -> Grant:
        return Grant(
            id=f"grant_{uuid4().hex}",
            user_id=user_id,
            plan_id=plan.id,
            plan_name=plan.name,
            is_free_tier=plan.is_free_tier,
            start_at=now,
            end_at=end_at,
            is_active=True,
            balances=Balances.from_limits(plan.limits),
            created_at=now,
            updated_at=now,
        )

    def _log_event(
        self,
        event_type: LedgerAuditEventType,
        grant: Grant,
        *,
        actor_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        self.event_logger.log(
            LedgerAuditEvent(
                event_type=event_type,
                user_id=grant.user_id,
                grant_id=grant.id,
                actor_id=actor_id,
                metadata=metadata or {},
            )
        )


__all__ = ["DEFAULT_FREE_GRANT_VALIDITY_DAYS", "ProvisioningService"]
