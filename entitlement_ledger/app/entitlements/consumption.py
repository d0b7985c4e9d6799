"""Charges a resolved grant once a billable action has completed."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from .events import LedgerEventLogger, RecordingLedgerEventLogger
from .models import (
    CommitOutcome,
    CommitResult,
    Grant,
    LedgerAuditEvent,
    LedgerAuditEventType,
    UsageCategory,
)
from .provisioning import ProvisioningService
from .store import GrantRepository

logger = logging.getLogger("entitlements.consumption")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ConsumptionCoordinator:
    """Decrements balances with a compare-and-decrement and triggers fallback."""

    repository: GrantRepository
    provisioning: ProvisioningService
    event_logger: LedgerEventLogger = field(default_factory=RecordingLedgerEventLogger)
    clock: Callable[[], datetime] = _utcnow

    def commit(self, grant: Grant, category: UsageCategory) -> CommitResult:
        """Charge one ``category`` credit to ``grant``.

        Must only be called after the billable action succeeded. A lost race
        is reported as ``ALREADY_EXHAUSTED``; the caller is never moved to
        another grant here.
        """

        now = self.clock()
        if not grant.is_selectable(now):
            logger.info(
                "Grant no longer selectable grant=%s user=%s category=%s active=%s end_at=%s",
                grant.id,
                grant.user_id,
                category.value,
                grant.is_active,
                grant.end_at.isoformat(),
            )
            return CommitResult(outcome=CommitOutcome.GRANT_NOT_SELECTABLE, category=category, grant=grant)

        updated = self.repository.decrement_balance(grant.id, category, now=now)
        if updated is None:
            return self._classify_failed_decrement(grant, category)

        self.event_logger.log(
            LedgerAuditEvent(
                event_type=LedgerAuditEventType.CREDIT_CONSUMED,
                user_id=updated.user_id,
                grant_id=updated.id,
                metadata={
                    "category": category.value,
                    "remaining": str(updated.balance(category)),
                },
            )
        )

        fallback_grant: Optional[Grant] = None
        if updated.is_paid and updated.balances.is_exhausted:
            fallback_grant = self.provisioning.fallback_from_exhausted_paid(updated.user_id, updated)
            updated = updated.model_copy(update={"is_active": False})

        return CommitResult(
            outcome=CommitOutcome.OK,
            category=category,
            grant=updated,
            fallback_grant=fallback_grant,
        )

    def _classify_failed_decrement(
        self,
        grant: Grant,
        category: UsageCategory,
    ) -> CommitResult:
        current = self.repository.get_grant(grant.id)
        if current is None or current.balance(category) > 0:
            logger.info(
                "Grant became unselectable before commit grant=%s user=%s category=%s",
                grant.id,
                grant.user_id,
                category.value,
            )
            return CommitResult(
                outcome=CommitOutcome.GRANT_NOT_SELECTABLE,
                category=category,
                grant=current or grant,
            )

        logger.warning(
            "Overdraft prevented grant=%s user=%s category=%s",
            grant.id,
            grant.user_id,
            category.value,
            extra={"ledger_event": LedgerAuditEventType.OVERDRAFT_PREVENTED.value},
        )
        self.event_logger.log(
            LedgerAuditEvent(
                event_type=LedgerAuditEventType.OVERDRAFT_PREVENTED,
                user_id=grant.user_id,
                grant_id=grant.id,
                metadata={"category": category.value},
            )
        )
        return CommitResult(outcome=CommitOutcome.ALREADY_EXHAUSTED, category=category, grant=current)


__all__ = ["ConsumptionCoordinator"]
