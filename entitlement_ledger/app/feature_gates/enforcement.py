"""Helpers for turning ledger outcomes into gating failures."""
from __future__ import annotations

from fastapi import status

from ..entitlements import CommitOutcome, ConsumptionReceipt, UsageCategory, UsageReport
from ..entitlements.service import denial_message
from .exceptions import FeatureGateError


def no_usable_entitlement(category: UsageCategory, *, message: str | None = None) -> FeatureGateError:
    return FeatureGateError(
        code="no_usable_entitlement",
        message=message or denial_message(category),
        category=category,
    )


def require_usable_entitlement(report: UsageReport, category: UsageCategory) -> None:
    """Ensure the user can start an action in ``category`` before doing any work.

    Parameters
    ----------
    report:
        Usage report produced by :class:`UsageReporter` for the acting user.
    category:
        The billable category the action will be charged to on completion.
    """

    if not report.usage(category).can_use:
        raise no_usable_entitlement(category)


def require_charged(receipt: ConsumptionReceipt) -> ConsumptionReceipt:
    """Raise unless a completed action was charged to a grant."""

    if receipt.granted:
        return receipt

    if receipt.outcome == CommitOutcome.ALREADY_EXHAUSTED:
        raise FeatureGateError(
            code="credit_already_spent",
            message=receipt.message or "Credit already spent.",
            status_code=status.HTTP_409_CONFLICT,
            category=receipt.category,
            detail={"grantId": receipt.grant_id},
        )
    if receipt.outcome == CommitOutcome.GRANT_NOT_SELECTABLE:
        raise FeatureGateError(
            code="grant_not_selectable",
            message=receipt.message or "Grant is no longer selectable.",
            status_code=status.HTTP_409_CONFLICT,
            category=receipt.category,
            detail={"grantId": receipt.grant_id},
        )
    raise no_usable_entitlement(receipt.category, message=receipt.message)
