"""Entitlement ledger: plans, grants, resolution, consumption and reporting."""

from .catalog import DEFAULT_PLANS, PlanCatalog, PlanRepository
from .consumption import ConsumptionCoordinator
from .events import LedgerEventLogger, RecordingLedgerEventLogger
from .exceptions import (
    CatalogInconsistencyError,
    GrantNotFoundError,
    LedgerUnavailableError,
    PlanNotFoundError,
)
from .memory import InMemoryLedgerStore
from .models import (
    Balances,
    CommitOutcome,
    CommitResult,
    ConsumptionReceipt,
    Grant,
    GrantType,
    LedgerAuditEvent,
    LedgerAuditEventType,
    Plan,
    PlanLimits,
    TimeInfo,
    UsageCategory,
    UsageReport,
    UsageView,
)
from .provisioning import DEFAULT_FREE_GRANT_VALIDITY_DAYS, ProvisioningService
from .reporting import UsageReporter
from .resolver import EntitlementResolver, pick_grant, rank_grants
from .service import EntitlementService
from .store import GrantRepository

__all__ = [
    "DEFAULT_FREE_GRANT_VALIDITY_DAYS",
    "DEFAULT_PLANS",
    "Balances",
    "CatalogInconsistencyError",
    "CommitOutcome",
    "CommitResult",
    "ConsumptionCoordinator",
    "ConsumptionReceipt",
    "EntitlementResolver",
    "EntitlementService",
    "Grant",
    "GrantNotFoundError",
    "GrantRepository",
    "GrantType",
    "InMemoryLedgerStore",
    "LedgerAuditEvent",
    "LedgerAuditEventType",
    "LedgerEventLogger",
    "LedgerUnavailableError",
    "Plan",
    "PlanCatalog",
    "PlanLimits",
    "PlanNotFoundError",
    "PlanRepository",
    "ProvisioningService",
    "RecordingLedgerEventLogger",
    "TimeInfo",
    "UsageCategory",
    "UsageReport",
    "UsageReporter",
    "UsageView",
    "pick_grant",
    "rank_grants",
]
