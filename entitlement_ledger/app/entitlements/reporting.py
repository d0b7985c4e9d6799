"""Derives usage, limit and remaining figures from raw grant state."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .catalog import PlanCatalog
from .exceptions import CatalogInconsistencyError, PlanNotFoundError
from .models import Grant, Plan, TimeInfo, UsageCategory, UsageReport, UsageView
from .resolver import EntitlementResolver, pick_grant, rank_grants

logger = logging.getLogger("entitlements.reporting")

NO_GRANT_MESSAGE = "You do not have an active plan yet, or your plan has expired."


class UsageReporter:
    """Projects a user's grants into the figures shown next to each feature."""

    def __init__(
        self,
        catalog: PlanCatalog,
        resolver: EntitlementResolver,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._catalog = catalog
        self._resolver = resolver
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def report(self, user_id: str) -> UsageReport:
        now = self._clock()
        grants = rank_grants(self._resolver.selectable_grants(user_id, now=now))
        if not grants:
            return UsageReport(
                user_id=user_id,
                has_usable_entitlement=False,
                per_category={category: UsageView.empty() for category in UsageCategory},
                message=NO_GRANT_MESSAGE,
            )

        display_grant = self._display_grant(grants)
        per_category: Dict[UsageCategory, UsageView] = {}
        charged: Dict[UsageCategory, Optional[Grant]] = {}
        plans: Dict[str, Plan] = {}
        for category in UsageCategory:
            charged_grant = pick_grant(grants, category)
            charged[category] = charged_grant
            per_category[category] = self.usage_view(
                charged_grant or display_grant, category, now=now, plans=plans
            )

        return UsageReport(
            user_id=user_id,
            has_usable_entitlement=any(view.can_use for view in per_category.values()),
            per_category=per_category,
            selected_grant=display_grant,
            charged_grants=charged,
            all_grants=grants,
            time_info=TimeInfo.for_grant(display_grant, now),
        )

    def usage_view(
        self,
        grant: Grant,
        category: UsageCategory,
        *,
        now: Optional[datetime] = None,
        plans: Optional[Dict[str, Plan]] = None,
    ) -> UsageView:
        plan = self._plan_for(grant, plans)
        return UsageView.compute(
            balance=grant.balance(category),
            limit=plan.limits.for_category(category),
            is_time_valid=grant.is_time_valid(now or self._clock()),
        )

    def usage_for_grant(self, grant: Grant) -> Dict[UsageCategory, UsageView]:
        now = self._clock()
        plans: Dict[str, Plan] = {}
        return {
            category: self.usage_view(grant, category, now=now, plans=plans)
            for category in UsageCategory
        }

    def _display_grant(self, ranked: List[Grant]) -> Grant:
        for grant in ranked:
            if grant.balances.has_any:
                return grant
        # Everything is spent; show the highest-priority grant so the UI can explain why.
        return ranked[0]

    def _plan_for(self, grant: Grant, plans: Optional[Dict[str, Plan]]) -> Plan:
        if plans is not None and grant.plan_id in plans:
            return plans[grant.plan_id]
        try:
            plan = self._catalog.get_plan(grant.plan_id)
        except PlanNotFoundError as exc:
            logger.error(
                "Catalog inconsistency: grant=%s references missing plan=%s",
                grant.id,
                grant.plan_id,
            )
            raise CatalogInconsistencyError(grant.plan_id, grant_id=grant.id) from exc
        if plans is not None:
            plans[grant.plan_id] = plan
        return plan


__all__ = ["NO_GRANT_MESSAGE", "UsageReporter"]
