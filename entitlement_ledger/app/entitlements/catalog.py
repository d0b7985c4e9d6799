"""Plan catalog: read access to subscription tiers and append-only publishing."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol, Sequence
from uuid import uuid4

from .exceptions import PlanNotFoundError
from .models import Plan, PlanLimits


class PlanRepository(Protocol):
    """Data access layer for catalog plans."""

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        ...

    def list_plans(self, *, include_inactive: bool = False) -> Sequence[Plan]:
        ...

    def insert_plan(self, plan: Plan) -> Plan:
        ...


DEFAULT_PLANS: tuple[Plan, ...] = (
    Plan(
        id="plan_free",
        name="Free",
        price_minor_units=0,
        validity_days=365,
        limits=PlanLimits(interview=2, assessment=3, document_upload=1),
        is_free_tier=True,
        description="Try every feature with a small allowance.",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    ),
    Plan(
        id="plan_starter",
        name="Starter",
        price_minor_units=99000,
        validity_days=30,
        limits=PlanLimits(interview=10, assessment=20, document_upload=5),
        description="For candidates preparing for a handful of interviews.",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    ),
    Plan(
        id="plan_pro",
        name="Pro",
        price_minor_units=249000,
        validity_days=90,
        limits=PlanLimits(interview=40, assessment=80, document_upload=20),
        description="Frequent practice for an active job search.",
        highlight=True,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    ),
)


class PlanCatalog:
    """Read-mostly view of subscription plans."""

    def __init__(
        self,
        repository: PlanRepository,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get_plan(self, plan_id: str) -> Plan:
        plan = self._repository.get_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Unknown plan: {plan_id}")
        return plan

    def find_free_plan(self) -> Plan:
        """Return the canonical free tier plan.

        When more than one active plan carries the free tier flag the oldest
        one wins so that every caller provisions against the same plan.
        """

        candidates = [
            plan
            for plan in self._repository.list_plans(include_inactive=False)
            if plan.is_free_tier and plan.is_active
        ]
        if not candidates:
            raise PlanNotFoundError("No active free tier plan is configured")
        candidates.sort(key=lambda plan: (plan.created_at, plan.id))
        return candidates[0]

    def list_plans(self, *, include_inactive: bool = False) -> List[Plan]:
        plans = list(self._repository.list_plans(include_inactive=include_inactive))
        plans.sort(key=lambda plan: (plan.price_minor_units, plan.name.lower()))
        return plans

    def create_plan(
        self,
        *,
        name: str,
        price_minor_units: int,
        validity_days: int,
        limits: PlanLimits,
        description: Optional[str] = None,
        highlight: bool = False,
    ) -> Plan:
        """Publish a new catalog entry. Existing plans are never edited in place."""

        normalized_name = (name or "").strip()
        if not normalized_name:
            raise ValueError("name must be provided")
        if price_minor_units < 0:
            raise ValueError("price_minor_units must be >= 0")
        if validity_days < 1:
            raise ValueError("validity_days must be >= 1")

        lowered = normalized_name.lower()
        for existing in self._repository.list_plans(include_inactive=True):
            if existing.name.lower() == lowered and existing.is_active:
                raise ValueError(f"An active plan named {normalized_name!r} already exists")

        plan = Plan(
            id=f"plan_{uuid4().hex}",
            name=normalized_name,
            price_minor_units=price_minor_units,
            validity_days=validity_days,
            limits=limits,
            is_free_tier=price_minor_units == 0,
            description=description,
            highlight=highlight,
            created_at=self._clock(),
        )
        return self._repository.insert_plan(plan)


__all__ = ["DEFAULT_PLANS", "PlanCatalog", "PlanRepository"]
