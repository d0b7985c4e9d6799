"""Grant store contract shared by the PostgreSQL and in-memory backends."""
from __future__ import annotations

from datetime import datetime
from typing import Mapping, Optional, Protocol, Sequence

from .models import Grant, PlanLimits, UsageCategory


class GrantRepository(Protocol):
    """Persistence operations required by the ledger.

    Every mutating method must be atomic with respect to concurrent callers:
    implementations are the only place balance safety is enforced.
    """

    def get_grant(self, grant_id: str) -> Optional[Grant]:
        ...

    def list_grants(self, user_id: str, *, include_inactive: bool = False) -> Sequence[Grant]:
        ...

    def list_selectable_grants(self, user_id: str, *, now: datetime) -> Sequence[Grant]:
        """Active grants of ``user_id`` whose ``end_at`` is not before ``now``."""

    def insert_grant(self, grant: Grant) -> Grant:
        ...

    def insert_free_grant_if_absent(self, grant: Grant, *, now: datetime) -> Grant:
        """Create ``grant`` unless the user already holds an active, unexpired free grant.

        Returns whichever free grant is active once the call completes. Active
        free grants that have already expired are deactivated first.
        """

    def decrement_balance(
        self,
        grant_id: str,
        category: UsageCategory,
        *,
        now: datetime,
    ) -> Optional[Grant]:
        """Compare-and-decrement one credit.

        Returns the updated grant, or ``None`` when the grant is missing,
        inactive, expired or already at zero in ``category``.
        """

    def deactivate_grant(self, grant_id: str) -> Optional[Grant]:
        """Set ``is_active`` to false. Returns ``None`` for unknown grants."""

    def adjust_balances(
        self,
        grant_id: str,
        deltas: Mapping[UsageCategory, int],
        limits: PlanLimits,
    ) -> Optional[Grant]:
        """Apply signed deltas clamped into ``[0, limit]`` in a single update."""


__all__ = ["GrantRepository"]
