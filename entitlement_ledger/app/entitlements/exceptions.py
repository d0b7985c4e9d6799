"""Errors raised by the entitlement ledger."""
from __future__ import annotations


class PlanNotFoundError(LookupError):
    """Raised when a plan id is not present in the catalog."""


class GrantNotFoundError(LookupError):
    """Raised when a grant id does not exist."""


class CatalogInconsistencyError(RuntimeError):
    """A grant references a plan the catalog does not know about."""

    def __init__(self, plan_id: str, *, grant_id: str | None = None, detail: str | None = None) -> None:
        self.plan_id = plan_id
        self.grant_id = grant_id
        if detail is None:
            detail = f"Plan {plan_id!r} referenced by grant {grant_id!r} is missing from the catalog"
        super().__init__(detail)


class LedgerUnavailableError(RuntimeError):
    """The backing datastore could not be reached or timed out; safe to retry."""
