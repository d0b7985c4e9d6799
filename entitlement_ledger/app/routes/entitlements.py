"""API routes exposing the entitlement ledger."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from ..entitlements import (
    CatalogInconsistencyError,
    LedgerUnavailableError,
)
from ..feature_gates import FeatureGateError, require_charged
from ..schemas.entitlements import (
    ActiveEntitlementResponse,
    ConsumeRequest,
    ConsumptionReceiptOut,
    GrantAdjustRequest,
    GrantCreateRequest,
    GrantDeactivateResponse,
    GrantListResponse,
    GrantOut,
    GrantWithUsageOut,
    PlanCreateRequest,
    PlanListResponse,
    PlanOut,
)
from ..services.entitlements import get_entitlement_service
from ... import app_context
from ...auth import CallerIdentity, extract_bearer_token

logger = logging.getLogger("entitlements.routes")


def _get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> CallerIdentity:
    cookie_name = app_context.get_config().session_cookie_name
    token = extract_bearer_token(authorization) or request.cookies.get(cookie_name)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    identity = app_context.resolve_identity(token)
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return identity


def _is_admin(current_user: CallerIdentity) -> bool:
    return current_user.has_role(app_context.get_config().admin_roles)


def _require_admin(current_user: CallerIdentity) -> None:
    if not _is_admin(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator access required")


def _subject_user_id(requested: Optional[str], current_user: CallerIdentity) -> str:
    if not requested or requested == current_user.id:
        return current_user.id
    if not _is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot view entitlements for another user",
        )
    return requested


@contextmanager
def _ledger_errors() -> Iterator[None]:
    try:
        yield
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc
    except CatalogInconsistencyError as exc:
        logger.error("Catalog inconsistency: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Entitlement catalog is inconsistent",
        ) from exc
    except LedgerUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Entitlement ledger is temporarily unavailable, please retry",
        ) from exc
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


router = APIRouter(prefix="/entitlements", tags=["entitlements"])


@router.get(
    "/active",
    response_model=ActiveEntitlementResponse,
    response_model_exclude_none=True,
)
def get_active_entitlements(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    *,
    current_user: CallerIdentity = Depends(_get_current_user),
) -> ActiveEntitlementResponse:
    subject = _subject_user_id(user_id, current_user)
    service = get_entitlement_service()
    with _ledger_errors():
        report = service.report(subject)
    return ActiveEntitlementResponse.from_report(report)


@router.get("/grants", response_model=GrantListResponse)
def list_grants(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    *,
    current_user: CallerIdentity = Depends(_get_current_user),
) -> GrantListResponse:
    subject = _subject_user_id(user_id, current_user)
    service = get_entitlement_service()
    with _ledger_errors():
        grants = service.list_grants(subject, include_inactive=include_inactive)
    return GrantListResponse(grants=[GrantOut.from_grant(grant) for grant in grants])


@router.post("/grants", response_model=GrantOut, status_code=status.HTTP_201_CREATED)
def create_grant(
    payload: GrantCreateRequest,
    *,
    current_user: CallerIdentity = Depends(_get_current_user),
) -> GrantOut:
    _require_admin(current_user)
    service = get_entitlement_service()
    with _ledger_errors():
        grant = service.grant_plan(payload.user_id, payload.plan_id, actor_id=current_user.id)
    return GrantOut.from_grant(grant)


@router.patch("/grants/{grant_id}", response_model=GrantWithUsageOut)
def adjust_grant(
    grant_id: str,
    payload: GrantAdjustRequest,
    *,
    current_user: CallerIdentity = Depends(_get_current_user),
) -> GrantWithUsageOut:
    _require_admin(current_user)
    service = get_entitlement_service()
    with _ledger_errors():
        grant = service.adjust_balances(
            grant_id,
            payload.balance_delta.as_mapping(),
            actor_id=current_user.id,
        )
        usage = service.usage_for_grant(grant)
    return GrantWithUsageOut.from_grant_usage(grant, usage)


@router.delete("/grants/{grant_id}", response_model=GrantDeactivateResponse)
def deactivate_grant(
    grant_id: str,
    *,
    current_user: CallerIdentity = Depends(_get_current_user),
) -> GrantDeactivateResponse:
    _require_admin(current_user)
    service = get_entitlement_service()
    with _ledger_errors():
        grant = service.deactivate_grant(grant_id, actor_id=current_user.id)
    return GrantDeactivateResponse(
        message="Grant deactivated",
        deactivated_grant=GrantOut.from_grant(grant),
    )


@router.get("/plans", response_model=PlanListResponse)
def list_plans(
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    *,
    current_user: CallerIdentity = Depends(_get_current_user),
) -> PlanListResponse:
    if include_inactive:
        _require_admin(current_user)
    service = get_entitlement_service()
    with _ledger_errors():
        plans = service.list_plans(include_inactive=include_inactive)
    return PlanListResponse(plans=[PlanOut.from_plan(plan) for plan in plans])


@router.post("/plans", response_model=PlanOut, status_code=status.HTTP_201_CREATED)
def create_plan(
    payload: PlanCreateRequest,
    *,
    current_user: CallerIdentity = Depends(_get_current_user),
) -> PlanOut:
    _require_admin(current_user)
    service = get_entitlement_service()
    with _ledger_errors():
        plan = service.create_plan(
            name=payload.name,
            price_minor_units=payload.price_minor_units,
            validity_days=payload.validity_days,
            limits=payload.limits.to_limits(),
            description=payload.description,
            highlight=payload.highlight,
            actor_id=current_user.id,
        )
    return PlanOut.from_plan(plan)


@router.post("/consume", response_model=ConsumptionReceiptOut)
def consume_credit(
    payload: ConsumeRequest,
    *,
    current_user: CallerIdentity = Depends(_get_current_user),
) -> ConsumptionReceiptOut:
    service = get_entitlement_service()
    with _ledger_errors():
        receipt = require_charged(service.resolve_and_commit(current_user.id, payload.category))
    return ConsumptionReceiptOut.from_receipt(receipt)


@router.post("/onboarding", response_model=GrantOut)
def onboard_user(
    *,
    current_user: CallerIdentity = Depends(_get_current_user),
) -> GrantOut:
    service = get_entitlement_service()
    with _ledger_errors():
        grant = service.ensure_free_grant(current_user.id)
    return GrantOut.from_grant(grant)
