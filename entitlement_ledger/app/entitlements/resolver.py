"""Selects which grant pays for a billable action."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from .models import Grant, UsageCategory
from .store import GrantRepository

logger = logging.getLogger("entitlements.resolver")


def rank_grants(grants: Sequence[Grant]) -> List[Grant]:
    """Order grants by charging priority: paid before free, newest first.

    Grants created at the same instant fall back to the higher id so the
    order is total.
    """

    return sorted(
        grants,
        key=lambda grant: (grant.is_paid, grant.created_at, grant.id),
        reverse=True,
    )


def pick_grant(grants: Sequence[Grant], category: UsageCategory) -> Optional[Grant]:
    for grant in rank_grants(grants):
        if grant.balance(category) > 0:
            return grant
    return None


class EntitlementResolver:
    """Applies the paid-first, newest-first rule to a user's selectable grants."""

    def __init__(
        self,
        repository: GrantRepository,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def selectable_grants(self, user_id: str, *, now: Optional[datetime] = None) -> List[Grant]:
        moment = now or self._clock()
        grants = self._repository.list_selectable_grants(user_id, now=moment)
        return [grant for grant in grants if grant.is_selectable(moment)]

    def resolve(self, user_id: str, category: UsageCategory) -> Optional[Grant]:
        """Return the grant that should pay for ``category``, or ``None`` when denied."""

        grants = self.selectable_grants(user_id)
        selected = pick_grant(grants, category)
        if selected is None:
            logger.info(
                "No usable entitlement user=%s category=%s grants=%s",
                user_id,
                category.value,
                len(grants),
            )
            return None
        logger.debug(
            "Resolved grant=%s type=%s user=%s category=%s balance=%s",
            selected.id,
            selected.grant_type.value,
            user_id,
            category.value,
            selected.balance(category),
        )
        return selected


__all__ = ["EntitlementResolver", "pick_grant", "rank_grants"]
