"""Domain models for plans, grants and derived usage figures."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class UsageCategory(str, Enum):
    """Billable feature classes that consume credits."""

    INTERVIEW = "interview"
    ASSESSMENT = "assessment"
    DOCUMENT_UPLOAD = "document_upload"

    @property
    def label(self) -> str:
        return _CATEGORY_LABELS[self]


_CATEGORY_LABELS: Dict[UsageCategory, str] = {
    UsageCategory.INTERVIEW: "AI interview",
    UsageCategory.ASSESSMENT: "assessment",
    UsageCategory.DOCUMENT_UPLOAD: "job description upload",
}


class GrantType(str, Enum):
    """Tier of a grant as exposed to clients."""

    PAID = "PAID"
    FREE = "FREE"


class PlanLimits(BaseModel):
    """Per-category credit allowance of a plan."""

    interview: int = Field(default=0, ge=0)
    assessment: int = Field(default=0, ge=0)
    document_upload: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)

    def for_category(self, category: UsageCategory) -> int:
        return int(getattr(self, category.value))


class Balances(BaseModel):
    """Remaining credits per category held by a grant."""

    interview: int = Field(default=0, ge=0)
    assessment: int = Field(default=0, ge=0)
    document_upload: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_limits(cls, limits: PlanLimits) -> "Balances":
        return cls(
            interview=limits.interview,
            assessment=limits.assessment,
            document_upload=limits.document_upload,
        )

    def for_category(self, category: UsageCategory) -> int:
        return int(getattr(self, category.value))

    def decremented(self, category: UsageCategory) -> "Balances":
        current = self.for_category(category)
        if current <= 0:
            raise ValueError(f"{category.value} balance is already exhausted")
        return self.model_copy(update={category.value: current - 1})

    def adjusted(self, deltas: Mapping[UsageCategory, int], limits: PlanLimits) -> "Balances":
        """Apply signed deltas, clamping every category into ``[0, limit]``."""

        update: Dict[str, int] = {}
        for category, delta in deltas.items():
            target = self.for_category(category) + int(delta)
            update[category.value] = max(0, min(target, limits.for_category(category)))
        return self.model_copy(update=update)

    @property
    def is_exhausted(self) -> bool:
        return all(self.for_category(category) <= 0 for category in UsageCategory)

    @property
    def has_any(self) -> bool:
        return not self.is_exhausted


class Plan(BaseModel):
    """Catalog entry describing a subscription tier."""

    id: str
    name: str
    price_minor_units: int = Field(ge=0)
    validity_days: int = Field(ge=1)
    limits: PlanLimits
    is_free_tier: bool = False
    is_active: bool = True
    description: Optional[str] = None
    highlight: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _validate_free_tier_flag(self) -> "Plan":
        if self.is_free_tier != (self.price_minor_units == 0):
            raise ValueError("is_free_tier must be set exactly when the price is 0")
        return self

    @property
    def grant_type(self) -> GrantType:
        return GrantType.FREE if self.is_free_tier else GrantType.PAID


class Grant(BaseModel):
    """A user's time-bounded instance of a plan with mutable balances."""

    id: str
    user_id: str
    plan_id: str
    plan_name: str
    is_free_tier: bool
    start_at: datetime
    end_at: datetime
    is_active: bool = True
    balances: Balances
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("user_id")
    @classmethod
    def _validate_user_id(cls, value: str) -> str:
        if not value:
            raise ValueError("user_id must be provided")
        return value

    @property
    def grant_type(self) -> GrantType:
        return GrantType.FREE if self.is_free_tier else GrantType.PAID

    @property
    def is_paid(self) -> bool:
        return not self.is_free_tier

    def is_time_valid(self, now: datetime) -> bool:
        return self.end_at >= now

    def is_selectable(self, now: datetime) -> bool:
        return self.is_active and self.is_time_valid(now)

    def balance(self, category: UsageCategory) -> int:
        return self.balances.for_category(category)


@dataclass(frozen=True)
class UsageView:
    """Human-facing projection of a grant's balance in one category."""

    used: int
    limit: int
    remaining: int
    can_use: bool

    @property
    def display(self) -> str:
        return f"{self.used}/{self.limit}"

    @classmethod
    def compute(cls, *, balance: int, limit: int, is_time_valid: bool) -> "UsageView":
        remaining = max(0, balance)
        return cls(
            used=limit - remaining,
            limit=limit,
            remaining=remaining,
            can_use=is_time_valid and remaining > 0,
        )

    @classmethod
    def empty(cls) -> "UsageView":
        return cls(used=0, limit=0, remaining=0, can_use=False)


@dataclass(frozen=True)
class TimeInfo:
    end_at: datetime
    days_remaining: int
    is_time_valid: bool

    @classmethod
    def for_grant(cls, grant: Grant, now: datetime) -> "TimeInfo":
        seconds = (grant.end_at - now).total_seconds()
        return cls(
            end_at=grant.end_at,
            days_remaining=max(0, math.ceil(seconds / 86400)),
            is_time_valid=grant.is_time_valid(now),
        )


@dataclass(frozen=True)
class UsageReport:
    """Usage figures for a user derived from the grants that would be charged next."""

    user_id: str
    has_usable_entitlement: bool
    per_category: Dict[UsageCategory, UsageView]
    selected_grant: Optional[Grant] = None
    charged_grants: Dict[UsageCategory, Optional[Grant]] = field(default_factory=dict)
    all_grants: List[Grant] = field(default_factory=list)
    time_info: Optional[TimeInfo] = None
    message: Optional[str] = None

    def usage(self, category: UsageCategory) -> UsageView:
        return self.per_category.get(category, UsageView.empty())


class CommitOutcome(str, Enum):
    """Result of a compare-and-decrement attempt."""

    OK = "ok"
    ALREADY_EXHAUSTED = "already_exhausted"
    GRANT_NOT_SELECTABLE = "grant_not_selectable"


@dataclass(frozen=True)
class CommitResult:
    outcome: CommitOutcome
    category: UsageCategory
    grant: Optional[Grant] = None
    fallback_grant: Optional[Grant] = None

    @property
    def ok(self) -> bool:
        return self.outcome == CommitOutcome.OK

    @property
    def remaining(self) -> Optional[int]:
        if self.grant is None:
            return None
        return self.grant.balance(self.category)


class ConsumptionReceipt(BaseModel):
    """Outcome of resolving and charging a billable action for a user."""

    user_id: str
    category: UsageCategory
    granted: bool
    outcome: Optional[CommitOutcome] = None
    grant_id: Optional[str] = None
    remaining: Optional[int] = None
    fallback_grant_id: Optional[str] = None
    message: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class LedgerAuditEventType(str, Enum):
    """Audit trail entries emitted by the ledger."""

    GRANT_CREATED = "grant.created"
    CREDIT_CONSUMED = "credit.consumed"
    OVERDRAFT_PREVENTED = "credit.overdraft_prevented"
    GRANT_DEACTIVATED = "grant.deactivated"
    FALLBACK_PROVISIONED = "grant.fallback_provisioned"
    BALANCE_ADJUSTED = "grant.balance_adjusted"
    PLAN_PUBLISHED = "plan.published"


class LedgerAuditEvent(BaseModel):
    """Structured audit event for analytics and support tooling."""

    event_type: LedgerAuditEventType
    user_id: Optional[str] = None
    grant_id: Optional[str] = None
    actor_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)
