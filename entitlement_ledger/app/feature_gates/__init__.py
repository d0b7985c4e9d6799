"""Feature gating utilities coordinating entitlement enforcement."""
from .context import EntitlementContext
from .enforcement import no_usable_entitlement, require_charged, require_usable_entitlement
from .exceptions import FeatureGateError

__all__ = [
    "EntitlementContext",
    "FeatureGateError",
    "no_usable_entitlement",
    "require_charged",
    "require_usable_entitlement",
]
