from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from entitlement_ledger.app.entitlements import (
    DEFAULT_PLANS,
    Balances,
    EntitlementService,
    Grant,
    InMemoryLedgerStore,
    Plan,
    PlanCatalog,
    PlanLimits,
    RecordingLedgerEventLogger,
)

START = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

SINGLE_CATEGORY_PLAN = Plan(
    id="plan_interview_pack",
    name="Interview Pack",
    price_minor_units=49000,
    validity_days=30,
    limits=PlanLimits(interview=10),
    created_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_grant(
    *,
    grant_id: str,
    user_id: str = "user-1",
    plan: Plan = SINGLE_CATEGORY_PLAN,
    created_at: datetime = START,
    end_at: Optional[datetime] = None,
    is_active: bool = True,
    balances: Optional[Balances] = None,
) -> Grant:
    return Grant(
        id=grant_id,
        user_id=user_id,
        plan_id=plan.id,
        plan_name=plan.name,
        is_free_tier=plan.is_free_tier,
        start_at=created_at,
        end_at=end_at or created_at + timedelta(days=plan.validity_days),
        is_active=is_active,
        balances=balances or Balances.from_limits(plan.limits),
        created_at=created_at,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore(DEFAULT_PLANS + (SINGLE_CATEGORY_PLAN,))


@pytest.fixture
def events() -> RecordingLedgerEventLogger:
    return RecordingLedgerEventLogger()


@pytest.fixture
def service(store, events, clock) -> EntitlementService:
    return EntitlementService(
        PlanCatalog(store, clock=clock),
        store,
        event_logger=events,
        clock=clock,
    )


@pytest.fixture
def interview_pack() -> Plan:
    return SINGLE_CATEGORY_PLAN


@pytest.fixture
def grant_factory():
    return make_grant
