from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from entitlement_ledger.app.entitlements import (
    DEFAULT_PLANS,
    EntitlementService,
    GrantNotFoundError,
    InMemoryLedgerStore,
    LedgerAuditEventType,
    Plan,
    PlanCatalog,
    PlanLimits,
    PlanNotFoundError,
)


def _created_events(events):
    return [event for event in events.events if event.event_type == LedgerAuditEventType.GRANT_CREATED]


def test_ensure_free_grant_uses_catalog_limits(service, clock) -> None:
    grant = service.ensure_free_grant("user-1")

    assert grant.is_free_tier is True
    assert grant.plan_id == "plan_free"
    assert grant.start_at == clock.now
    assert grant.end_at == clock.now + timedelta(days=365)
    assert (grant.balances.interview, grant.balances.assessment, grant.balances.document_upload) == (2, 3, 1)


def test_ensure_free_grant_is_idempotent(service, store, events) -> None:
    first = service.ensure_free_grant("user-1")
    second = service.ensure_free_grant("user-1")

    assert first.id == second.id
    assert len(store.list_grants("user-1", include_inactive=True)) == 1
    assert len(_created_events(events)) == 1


def test_concurrent_onboarding_creates_single_free_grant(service, store) -> None:
    with ThreadPoolExecutor(max_workers=20) as executor:
        grants = list(executor.map(lambda _: service.ensure_free_grant("user-1"), range(20)))

    assert len({grant.id for grant in grants}) == 1
    assert len(store.list_grants("user-1", include_inactive=True)) == 1


def test_expired_free_grant_is_replaced(service, store, clock) -> None:
    original = service.ensure_free_grant("user-1")
    clock.advance(days=366)

    renewed = service.ensure_free_grant("user-1")

    assert renewed.id != original.id
    assert store.get_grant(original.id).is_active is False
    assert [grant.id for grant in store.list_grants("user-1")] == [renewed.id]


def test_free_grant_validity_is_configurable(store, clock) -> None:
    service = EntitlementService(
        PlanCatalog(store, clock=clock),
        store,
        clock=clock,
        free_grant_validity_days=30,
    )

    grant = service.ensure_free_grant("user-1")

    assert grant.end_at == clock.now + timedelta(days=30)


def test_grant_plan_issues_paid_grant_and_keeps_free_grant(service, store, events, clock) -> None:
    grant = service.grant_plan("user-1", "plan_pro", actor_id="billing")

    assert grant.is_paid is True
    assert grant.plan_name == "Pro"
    assert grant.end_at == clock.now + timedelta(days=90)
    assert grant.balances.interview == 40

    active = store.list_grants("user-1")
    assert sorted(g.is_free_tier for g in active) == [False, True]
    paid_event = next(event for event in _created_events(events) if event.grant_id == grant.id)
    assert paid_event.actor_id == "billing"


def test_repeat_purchases_keep_every_paid_grant(service, store, clock) -> None:
    first = service.grant_plan("user-1", "plan_starter")
    clock.advance(seconds=1)
    second = service.grant_plan("user-1", "plan_starter")

    active_ids = {grant.id for grant in store.list_grants("user-1")}
    assert {first.id, second.id} <= active_ids


def test_grant_plan_for_free_plan_reuses_existing_free_grant(service) -> None:
    free = service.ensure_free_grant("user-1")

    assert service.grant_plan("user-1", "plan_free").id == free.id


def test_grant_plan_rejects_unknown_and_retired_plans(clock) -> None:
    retired = Plan(
        id="plan_retired",
        name="Retired",
        price_minor_units=1000,
        validity_days=30,
        limits=PlanLimits(interview=1),
        is_active=False,
        created_at=datetime(2023, 1, 1, tzinfo=timezone.utc),
    )
    store = InMemoryLedgerStore(DEFAULT_PLANS + (retired,))
    service = EntitlementService(PlanCatalog(store, clock=clock), store, clock=clock)

    with pytest.raises(PlanNotFoundError):
        service.grant_plan("user-1", "plan_missing")
    with pytest.raises(ValueError):
        service.grant_plan("user-1", "plan_retired")


def test_fallback_requires_a_paid_grant(service) -> None:
    free = service.ensure_free_grant("user-1")

    with pytest.raises(ValueError):
        service.provisioning.fallback_from_exhausted_paid("user-1", free)


def test_fallback_for_unknown_grant_raises(service, grant_factory) -> None:
    ghost = grant_factory(grant_id="grant_ghost")

    with pytest.raises(GrantNotFoundError):
        service.provisioning.fallback_from_exhausted_paid("user-1", ghost)
