"""API schemas for entitlement endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..entitlements import (
    Balances,
    CommitOutcome,
    ConsumptionReceipt,
    Grant,
    GrantType,
    Plan,
    PlanLimits,
    TimeInfo,
    UsageCategory,
    UsageReport,
    UsageView,
)


class UsageViewOut(BaseModel):
    used: int
    limit: int
    remaining: int
    can_use: bool = Field(alias="canUse")
    display: str

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_view(cls, view: UsageView) -> "UsageViewOut":
        return cls(
            used=view.used,
            limit=view.limit,
            remaining=view.remaining,
            can_use=view.can_use,
            display=view.display,
        )


class UsageOut(BaseModel):
    interview: UsageViewOut
    assessment: UsageViewOut
    document_upload: UsageViewOut = Field(alias="documentUpload")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_views(cls, views: Mapping[UsageCategory, UsageView]) -> "UsageOut":
        def _view(category: UsageCategory) -> UsageViewOut:
            return UsageViewOut.from_view(views.get(category, UsageView.empty()))

        return cls(
            interview=_view(UsageCategory.INTERVIEW),
            assessment=_view(UsageCategory.ASSESSMENT),
            document_upload=_view(UsageCategory.DOCUMENT_UPLOAD),
        )


class BalancesOut(BaseModel):
    interview: int
    assessment: int
    document_upload: int = Field(alias="documentUpload")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_balances(cls, balances: Balances) -> "BalancesOut":
        return cls(
            interview=balances.interview,
            assessment=balances.assessment,
            document_upload=balances.document_upload,
        )


class GrantSummary(BaseModel):
    id: str
    name: str
    type: GrantType
    end_at: datetime = Field(alias="endAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_grant(cls, grant: Grant) -> "GrantSummary":
        return cls(id=grant.id, name=grant.plan_name, type=grant.grant_type, end_at=grant.end_at)


class GrantOut(BaseModel):
    id: str
    user_id: str = Field(alias="userId")
    plan_id: str = Field(alias="planId")
    name: str
    type: GrantType
    start_at: datetime = Field(alias="startAt")
    end_at: datetime = Field(alias="endAt")
    is_active: bool = Field(alias="isActive")
    balances: BalancesOut
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_grant(cls, grant: Grant) -> "GrantOut":
        return cls(
            id=grant.id,
            user_id=grant.user_id,
            plan_id=grant.plan_id,
            name=grant.plan_name,
            type=grant.grant_type,
            start_at=grant.start_at,
            end_at=grant.end_at,
            is_active=grant.is_active,
            balances=BalancesOut.from_balances(grant.balances),
            created_at=grant.created_at,
        )


class GrantWithUsageOut(GrantOut):
    usage: UsageOut

    @classmethod
    def from_grant_usage(
        cls,
        grant: Grant,
        usage: Mapping[UsageCategory, UsageView],
    ) -> "GrantWithUsageOut":
        base = GrantOut.from_grant(grant).model_dump()
        return cls(**base, usage=UsageOut.from_views(usage))


class TimeInfoOut(BaseModel):
    end_at: datetime = Field(alias="endAt")
    days_remaining: int = Field(alias="daysRemaining")
    is_time_valid: bool = Field(alias="isTimeValid")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_time_info(cls, info: TimeInfo) -> "TimeInfoOut":
        return cls(end_at=info.end_at, days_remaining=info.days_remaining, is_time_valid=info.is_time_valid)


class ActiveEntitlementResponse(BaseModel):
    has_usable_entitlement: bool = Field(alias="hasUsableEntitlement")
    selected_grant: Optional[GrantSummary] = Field(alias="selectedGrant", default=None)
    usage: Optional[UsageOut] = None
    all_grants: Optional[List[GrantOut]] = Field(alias="allGrants", default=None)
    time_info: Optional[TimeInfoOut] = Field(alias="timeInfo", default=None)
    message: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_report(cls, report: UsageReport) -> "ActiveEntitlementResponse":
        if report.selected_grant is None:
            return cls(has_usable_entitlement=False, message=report.message)
        return cls(
            has_usable_entitlement=report.has_usable_entitlement,
            selected_grant=GrantSummary.from_grant(report.selected_grant),
            usage=UsageOut.from_views(report.per_category),
            all_grants=[GrantOut.from_grant(grant) for grant in report.all_grants],
            time_info=TimeInfoOut.from_time_info(report.time_info) if report.time_info else None,
        )


class GrantCreateRequest(BaseModel):
    user_id: str = Field(alias="userId", min_length=1)
    plan_id: str = Field(alias="planId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class BalanceDelta(BaseModel):
    interview: int = 0
    assessment: int = 0
    document_upload: int = Field(alias="documentUpload", default=0)

    model_config = ConfigDict(populate_by_name=True)

    def as_mapping(self) -> Dict[UsageCategory, int]:
        return {
            UsageCategory.INTERVIEW: self.interview,
            UsageCategory.ASSESSMENT: self.assessment,
            UsageCategory.DOCUMENT_UPLOAD: self.document_upload,
        }


class GrantAdjustRequest(BaseModel):
    balance_delta: BalanceDelta = Field(alias="balanceDelta")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _require_change(self) -> "GrantAdjustRequest":
        if not any(self.balance_delta.as_mapping().values()):
            raise ValueError("balanceDelta must change at least one category")
        return self


class GrantDeactivateResponse(BaseModel):
    message: str
    deactivated_grant: GrantOut = Field(alias="deactivatedGrant")

    model_config = ConfigDict(populate_by_name=True)


class GrantListResponse(BaseModel):
    grants: List[GrantOut]

    model_config = ConfigDict(populate_by_name=True)


class PlanLimitsIn(BaseModel):
    interview: int = Field(default=0, ge=0)
    assessment: int = Field(default=0, ge=0)
    document_upload: int = Field(alias="documentUpload", default=0, ge=0)

    model_config = ConfigDict(populate_by_name=True)

    def to_limits(self) -> PlanLimits:
        return PlanLimits(
            interview=self.interview,
            assessment=self.assessment,
            document_upload=self.document_upload,
        )


class PlanOut(BaseModel):
    id: str
    name: str
    price_minor_units: int = Field(alias="priceMinorUnits")
    validity_days: int = Field(alias="validityDays")
    limits: PlanLimitsIn
    is_free_tier: bool = Field(alias="isFreeTier")
    is_active: bool = Field(alias="isActive")
    description: Optional[str] = None
    highlight: bool = False

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_plan(cls, plan: Plan) -> "PlanOut":
        return cls(
            id=plan.id,
            name=plan.name,
            price_minor_units=plan.price_minor_units,
            validity_days=plan.validity_days,
            limits=PlanLimitsIn(
                interview=plan.limits.interview,
                assessment=plan.limits.assessment,
                document_upload=plan.limits.document_upload,
            ),
            is_free_tier=plan.is_free_tier,
            is_active=plan.is_active,
            description=plan.description,
            highlight=plan.highlight,
        )


class PlanListResponse(BaseModel):
    plans: List[PlanOut]


class PlanCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    price_minor_units: int = Field(alias="priceMinorUnits", ge=0)
    validity_days: int = Field(alias="validityDays", ge=1)
    limits: PlanLimitsIn
    description: Optional[str] = None
    highlight: bool = False

    model_config = ConfigDict(populate_by_name=True)


class ConsumeRequest(BaseModel):
    category: UsageCategory


class ConsumptionReceiptOut(BaseModel):
    granted: bool
    category: UsageCategory
    outcome: Optional[CommitOutcome] = None
    grant_id: Optional[str] = Field(alias="grantId", default=None)
    remaining: Optional[int] = None
    fallback_grant_id: Optional[str] = Field(alias="fallbackGrantId", default=None)
    message: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_receipt(cls, receipt: ConsumptionReceipt) -> "ConsumptionReceiptOut":
        return cls(
            granted=receipt.granted,
            category=receipt.category,
            outcome=receipt.outcome,
            grant_id=receipt.grant_id,
            remaining=receipt.remaining,
            fallback_grant_id=receipt.fallback_grant_id,
            message=receipt.message,
        )
