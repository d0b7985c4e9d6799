from __future__ import annotations

from datetime import timedelta

from entitlement_ledger.app.entitlements import (
    DEFAULT_PLANS,
    Balances,
    UsageCategory,
    pick_grant,
    rank_grants,
)

FREE_PLAN = DEFAULT_PLANS[0]


def test_paid_grant_is_charged_before_free(service, store, clock) -> None:
    paid = service.grant_plan("user-1", "plan_starter")
    free = service.ensure_free_grant("user-1")

    assert paid.id != free.id
    assert service.resolve("user-1", UsageCategory.INTERVIEW).id == paid.id


def test_newest_paid_grant_wins(service, clock) -> None:
    older = service.grant_plan("user-1", "plan_pro")
    clock.advance(minutes=5)
    newer = service.grant_plan("user-1", "plan_starter")

    selected = service.resolve("user-1", UsageCategory.ASSESSMENT)

    assert selected.id == newer.id
    assert selected.id != older.id


def test_paid_grant_without_credit_in_category_falls_through_to_free(
    service, store, grant_factory, interview_pack, clock
) -> None:
    store.insert_grant(grant_factory(grant_id="grant_paid", plan=interview_pack))
    free = service.ensure_free_grant("user-1")

    assert service.resolve("user-1", UsageCategory.INTERVIEW).id == "grant_paid"
    assert service.resolve("user-1", UsageCategory.DOCUMENT_UPLOAD).id == free.id


def test_expired_paid_grant_is_never_selected(service, clock) -> None:
    service.grant_plan("user-1", "plan_starter")
    free = service.ensure_free_grant("user-1")

    clock.advance(days=31)

    assert service.resolve("user-1", UsageCategory.INTERVIEW).id == free.id


def test_deactivated_grant_is_never_selected(service, store, grant_factory) -> None:
    store.insert_grant(grant_factory(grant_id="grant_paid", is_active=False))

    assert service.resolve("user-1", UsageCategory.INTERVIEW) is None


def test_resolve_returns_none_without_grants(service) -> None:
    assert service.resolve("nobody", UsageCategory.INTERVIEW) is None


def test_identical_creation_times_break_ties_by_id(grant_factory, clock) -> None:
    first = grant_factory(grant_id="grant_a", created_at=clock.now)
    second = grant_factory(grant_id="grant_b", created_at=clock.now)

    assert [grant.id for grant in rank_grants([first, second])] == ["grant_b", "grant_a"]
    assert [grant.id for grant in rank_grants([second, first])] == ["grant_b", "grant_a"]


def test_ranking_puts_every_paid_grant_ahead_of_newer_free_grants(grant_factory, clock) -> None:
    paid = grant_factory(grant_id="grant_paid", created_at=clock.now - timedelta(days=10))
    free = grant_factory(grant_id="grant_free", plan=FREE_PLAN, created_at=clock.now)

    assert [grant.id for grant in rank_grants([free, paid])] == ["grant_paid", "grant_free"]


def test_pick_grant_skips_zero_balances(grant_factory, clock) -> None:
    empty = grant_factory(grant_id="grant_empty", balances=Balances(assessment=1))
    free = grant_factory(grant_id="grant_free", plan=FREE_PLAN)

    assert pick_grant([empty, free], UsageCategory.INTERVIEW).id == "grant_free"
    assert pick_grant([empty], UsageCategory.INTERVIEW) is None
