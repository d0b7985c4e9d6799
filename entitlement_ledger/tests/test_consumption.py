from __future__ import annotations

from collections import Counter
from concurrent.futures import ThreadPoolExecutor

import pytest

from entitlement_ledger.app.entitlements import (
    DEFAULT_PLANS,
    Balances,
    CatalogInconsistencyError,
    CommitOutcome,
    EntitlementService,
    InMemoryLedgerStore,
    LedgerAuditEventType,
    PlanCatalog,
    UsageCategory,
)


def _event_types(events):
    return [event.event_type for event in events.events]


def test_commit_decrements_exactly_one_credit(service, store, events) -> None:
    free = service.ensure_free_grant("user-1")

    result = service.commit(free, UsageCategory.INTERVIEW)

    assert result.outcome == CommitOutcome.OK
    assert result.remaining == 1
    assert store.get_grant(free.id).balances.interview == 1
    assert store.get_grant(free.id).balances.assessment == 3
    assert LedgerAuditEventType.CREDIT_CONSUMED in _event_types(events)


def test_concurrent_commits_never_overdraw(service, store, events, grant_factory) -> None:
    grant = store.insert_grant(
        grant_factory(grant_id="grant_paid", balances=Balances(interview=10, assessment=1))
    )

    with ThreadPoolExecutor(max_workers=50) as executor:
        results = list(
            executor.map(lambda _: service.commit(grant, UsageCategory.INTERVIEW), range(50))
        )

    outcomes = Counter(result.outcome for result in results)
    assert outcomes[CommitOutcome.OK] == 10
    assert outcomes[CommitOutcome.ALREADY_EXHAUSTED] == 40
    assert store.get_grant(grant.id).balances.interview == 0
    assert _event_types(events).count(LedgerAuditEventType.OVERDRAFT_PREVENTED) == 40


def test_exhausting_paid_grant_falls_back_to_existing_free_grant(service, store, events) -> None:
    paid = service.grant_plan("user-1", "plan_interview_pack")
    free = service.ensure_free_grant("user-1")

    results = [service.commit(paid, UsageCategory.INTERVIEW) for _ in range(10)]

    assert all(result.ok for result in results)
    assert all(result.fallback_grant is None for result in results[:-1])
    last = results[-1]
    assert last.grant.is_active is False
    assert last.fallback_grant.id == free.id
    assert store.get_grant(paid.id).is_active is False
    assert len(store.list_grants("user-1")) == 1

    recorded = _event_types(events)
    assert LedgerAuditEventType.GRANT_DEACTIVATED in recorded
    assert LedgerAuditEventType.FALLBACK_PROVISIONED in recorded


def test_fallback_creates_free_grant_when_missing(service, store, grant_factory) -> None:
    paid = store.insert_grant(grant_factory(grant_id="grant_paid", balances=Balances(interview=1)))

    result = service.commit(paid, UsageCategory.INTERVIEW)

    assert result.ok
    assert result.fallback_grant is not None
    assert result.fallback_grant.is_free_tier is True
    active = store.list_grants("user-1")
    assert [grant.id for grant in active] == [result.fallback_grant.id]


def test_fallback_without_free_plan_leaves_paid_grant_active(clock, events, grant_factory) -> None:
    store = InMemoryLedgerStore(tuple(plan for plan in DEFAULT_PLANS if not plan.is_free_tier))
    service = EntitlementService(PlanCatalog(store, clock=clock), store, event_logger=events, clock=clock)
    paid = store.insert_grant(grant_factory(grant_id="grant_paid", balances=Balances(interview=1)))

    with pytest.raises(CatalogInconsistencyError) as exc:
        service.commit(paid, UsageCategory.INTERVIEW)

    assert exc.value.grant_id == "grant_paid"
    current = store.get_grant("grant_paid")
    assert current.is_active is True
    assert current.balances.interview == 0
    assert [grant.id for grant in store.list_grants("user-1")] == ["grant_paid"]
    assert LedgerAuditEventType.GRANT_DEACTIVATED not in _event_types(events)


def test_stale_commit_after_fallback_reports_already_exhausted(service, store, grant_factory) -> None:
    paid = store.insert_grant(grant_factory(grant_id="grant_paid", balances=Balances(interview=1)))
    service.commit(paid, UsageCategory.INTERVIEW)

    result = service.commit(paid, UsageCategory.INTERVIEW)

    assert result.outcome == CommitOutcome.ALREADY_EXHAUSTED
    assert store.get_grant(paid.id).balances.interview == 0


def test_exhausted_free_grant_stays_active(service, store) -> None:
    free = service.ensure_free_grant("user-1")
    service.commit(free, UsageCategory.DOCUMENT_UPLOAD)

    result = service.commit(free, UsageCategory.DOCUMENT_UPLOAD)

    assert result.outcome == CommitOutcome.ALREADY_EXHAUSTED
    assert store.get_grant(free.id).is_active is True


def test_expired_grant_is_not_charged(service, store, clock) -> None:
    paid = service.grant_plan("user-1", "plan_starter")
    clock.advance(days=31)

    result = service.commit(paid, UsageCategory.INTERVIEW)

    assert result.outcome == CommitOutcome.GRANT_NOT_SELECTABLE
    assert store.get_grant(paid.id).balances.interview == 10


def test_grant_deactivated_between_resolve_and_commit(service, store) -> None:
    paid = service.grant_plan("user-1", "plan_starter")
    resolved = service.resolve("user-1", UsageCategory.INTERVIEW)
    service.deactivate_grant(paid.id, actor_id="admin-1")

    result = service.commit(resolved, UsageCategory.INTERVIEW)

    assert result.outcome == CommitOutcome.GRANT_NOT_SELECTABLE
    assert store.get_grant(paid.id).balances.interview == 10
