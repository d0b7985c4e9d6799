from __future__ import annotations

from datetime import timedelta

import pytest

from entitlement_ledger.app.entitlements import (
    Balances,
    Plan,
    PlanLimits,
    TimeInfo,
    UsageCategory,
    UsageView,
)


def test_decremented_balance_never_goes_negative() -> None:
    balances = Balances(interview=1, assessment=0, document_upload=2)

    updated = balances.decremented(UsageCategory.INTERVIEW)

    assert updated.interview == 0
    assert balances.interview == 1
    with pytest.raises(ValueError):
        updated.decremented(UsageCategory.INTERVIEW)


def test_adjusted_balances_are_clamped_to_plan_limits() -> None:
    limits = PlanLimits(interview=5, assessment=3, document_upload=1)
    balances = Balances(interview=2, assessment=3, document_upload=0)

    updated = balances.adjusted(
        {UsageCategory.INTERVIEW: -10, UsageCategory.ASSESSMENT: 4, UsageCategory.DOCUMENT_UPLOAD: 1},
        limits,
    )

    assert updated == Balances(interview=0, assessment=3, document_upload=1)


def test_exhausted_requires_every_category_at_zero() -> None:
    assert Balances().is_exhausted is True
    assert Balances(document_upload=1).is_exhausted is False
    assert Balances(document_upload=1).has_any is True


def test_free_tier_plan_must_be_free() -> None:
    with pytest.raises(ValueError):
        Plan(
            id="plan_bad",
            name="Bad",
            price_minor_units=100,
            validity_days=30,
            limits=PlanLimits(),
            is_free_tier=True,
        )


def test_zero_price_plan_must_be_free_tier() -> None:
    with pytest.raises(ValueError):
        Plan(
            id="plan_promo",
            name="Promo",
            price_minor_units=0,
            validity_days=30,
            limits=PlanLimits(interview=1),
        )


def test_usage_view_display_reports_used_over_limit() -> None:
    fresh = UsageView.compute(balance=2, limit=2, is_time_valid=True)
    spent = UsageView.compute(balance=0, limit=2, is_time_valid=True)
    expired = UsageView.compute(balance=2, limit=2, is_time_valid=False)

    assert fresh.display == "0/2"
    assert fresh.can_use is True
    assert spent.display == "2/2"
    assert spent.remaining == 0
    assert spent.can_use is False
    assert expired.can_use is False


def test_time_info_rounds_partial_days_up(grant_factory, clock) -> None:
    grant = grant_factory(grant_id="grant_a", end_at=clock.now + timedelta(days=1, hours=1))

    info = TimeInfo.for_grant(grant, clock.now)

    assert info.days_remaining == 2
    assert info.is_time_valid is True


def test_time_info_floors_expired_grants_at_zero(grant_factory, clock) -> None:
    grant = grant_factory(grant_id="grant_a", end_at=clock.now - timedelta(hours=3))

    info = TimeInfo.for_grant(grant, clock.now)

    assert info.days_remaining == 0
    assert info.is_time_valid is False


def test_grant_valid_through_its_end_instant(grant_factory, clock) -> None:
    grant = grant_factory(grant_id="grant_a", end_at=clock.now)

    assert grant.is_selectable(clock.now) is True
    assert grant.is_selectable(clock.now + timedelta(microseconds=1)) is False
