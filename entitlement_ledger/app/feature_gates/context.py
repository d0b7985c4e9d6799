"""Convenience wrapper around usage reports for feature gating."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..entitlements import GrantType, UsageCategory, UsageReport, UsageView
from .enforcement import require_usable_entitlement


@dataclass(frozen=True)
class EntitlementContext:
    """Facade exposing gating-centric helpers for a user's usage report."""

    report: UsageReport

    @property
    def user_id(self) -> str:
        return self.report.user_id

    @property
    def grant_type(self) -> Optional[GrantType]:
        grant = self.report.selected_grant
        return grant.grant_type if grant else None

    @property
    def has_usable_entitlement(self) -> bool:
        return self.report.has_usable_entitlement

    def usage(self, category: UsageCategory) -> UsageView:
        return self.report.usage(category)

    def can_use(self, category: UsageCategory) -> bool:
        return self.report.usage(category).can_use

    def require(self, category: UsageCategory) -> None:
        """Raise :class:`FeatureGateError` when ``category`` has no credit left."""

        require_usable_entitlement(self.report, category)
