"""In-process ledger store suitable for tests and local development."""
from __future__ import annotations

from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .models import Grant, Plan, PlanLimits, UsageCategory


class InMemoryLedgerStore:
    """Plan and grant storage guarded by a single lock.

    Each mutation reads and writes under the lock, so it behaves like the
    conditional ``UPDATE`` statements of the PostgreSQL repository when many
    threads commit against the same grant.
    """

    def __init__(self, plans: Iterable[Plan] = ()) -> None:
        self._lock = Lock()
        self._plans: Dict[str, Plan] = {plan.id: plan for plan in plans}
        self._grants: Dict[str, Grant] = {}

    # Plans ---------------------------------------------------------------

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        with self._lock:
            return self._plans.get(plan_id)

    def list_plans(self, *, include_inactive: bool = False) -> Sequence[Plan]:
        with self._lock:
            plans = list(self._plans.values())
        if include_inactive:
            return plans
        return [plan for plan in plans if plan.is_active]

    def insert_plan(self, plan: Plan) -> Plan:
        with self._lock:
            if plan.id in self._plans:
                raise ValueError(f"Plan {plan.id} already exists")
            self._plans[plan.id] = plan
            return plan

    # Grants --------------------------------------------------------------

    def get_grant(self, grant_id: str) -> Optional[Grant]:
        with self._lock:
            return self._grants.get(grant_id)

    def list_grants(self, user_id: str, *, include_inactive: bool = False) -> Sequence[Grant]:
        with self._lock:
            grants = [grant for grant in self._grants.values() if grant.user_id == user_id]
        if not include_inactive:
            grants = [grant for grant in grants if grant.is_active]
        return _newest_first(grants)

    def list_selectable_grants(self, user_id: str, *, now: datetime) -> Sequence[Grant]:
        with self._lock:
            grants = [
                grant
                for grant in self._grants.values()
                if grant.user_id == user_id and grant.is_selectable(now)
            ]
        return _newest_first(grants)

    def insert_grant(self, grant: Grant) -> Grant:
        with self._lock:
            if grant.id in self._grants:
                raise ValueError(f"Grant {grant.id} already exists")
            if grant.is_free_tier and grant.is_active and self._active_free_grant(grant.user_id):
                raise ValueError(f"User {grant.user_id} already holds an active free grant")
            self._grants[grant.id] = grant
            return grant

    def insert_free_grant_if_absent(self, grant: Grant, *, now: datetime) -> Grant:
        with self._lock:
            existing = self._active_free_grant(grant.user_id)
            if existing is not None and existing.is_time_valid(now):
                return existing
            if existing is not None:
                self._grants[existing.id] = existing.model_copy(
                    update={"is_active": False, "updated_at": _utcnow()}
                )
            self._grants[grant.id] = grant
            return grant

    def decrement_balance(
        self,
        grant_id: str,
        category: UsageCategory,
        *,
        now: datetime,
    ) -> Optional[Grant]:
        with self._lock:
            grant = self._grants.get(grant_id)
            if grant is None or not grant.is_selectable(now):
                return None
            if grant.balance(category) <= 0:
                return None
            updated = grant.model_copy(
                update={
                    "balances": grant.balances.decremented(category),
                    "updated_at": _utcnow(),
                }
            )
            self._grants[grant_id] = updated
            return updated

    def deactivate_grant(self, grant_id: str) -> Optional[Grant]:
        with self._lock:
            grant = self._grants.get(grant_id)
            if grant is None:
                return None
            if not grant.is_active:
                return grant
            updated = grant.model_copy(update={"is_active": False, "updated_at": _utcnow()})
            self._grants[grant_id] = updated
            return updated

    def adjust_balances(
        self,
        grant_id: str,
        deltas: Mapping[UsageCategory, int],
        limits: PlanLimits,
    ) -> Optional[Grant]:
        with self._lock:
            grant = self._grants.get(grant_id)
            if grant is None:
                return None
            updated = grant.model_copy(
                update={
                    "balances": grant.balances.adjusted(deltas, limits),
                    "updated_at": _utcnow(),
                }
            )
            self._grants[grant_id] = updated
            return updated

    def _active_free_grant(self, user_id: str) -> Optional[Grant]:
        for grant in self._grants.values():
            if grant.user_id == user_id and grant.is_free_tier and grant.is_active:
                return grant
        return None


def _newest_first(grants: List[Grant]) -> List[Grant]:
    return sorted(grants, key=lambda grant: (grant.created_at, grant.id), reverse=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["InMemoryLedgerStore"]
