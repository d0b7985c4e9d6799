"""Gating failures raised when a billable action cannot be charged."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse

from ..entitlements import UsageCategory

UPGRADE_PATH = "/pricing"


@dataclass
class FeatureGateError(Exception):
    """A denial the caller can act on, such as upgrading their plan.

    Denials for missing credit (403) carry the exhausted category and an
    upgrade link; lost commit races (409) carry the grant that was spent.
    """

    code: str
    message: str
    status_code: int = status.HTTP_403_FORBIDDEN
    category: Optional[UsageCategory] = None
    detail: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.category is not None:
            body["category"] = self.category.value
        if self.status_code == status.HTTP_403_FORBIDDEN:
            body["upgradeUrl"] = UPGRADE_PATH
        body.update(self.detail)
        return body

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.payload)

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content={"detail": self.payload})
