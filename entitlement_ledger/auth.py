"""Session token handling for identities issued by the external identity provider."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict

from .config import LedgerConfig

logger = logging.getLogger("entitlements.auth")

DEFAULT_TOKEN_TTL = timedelta(hours=1)


class CallerIdentity(BaseModel):
    """Stable caller identifier plus the role claim used for administrative routes."""

    id: str
    role: str = "user"

    model_config = ConfigDict(frozen=True)

    def has_role(self, roles) -> bool:
        return self.role in set(roles)


def create_access_token(
    config: LedgerConfig,
    *,
    subject: str,
    role: str = "user",
    expires_delta: Optional[timedelta] = None,
) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or DEFAULT_TOKEN_TTL)
    claims = {"sub": subject, "role": role, "exp": expire}
    return jwt.encode(claims, config.jwt_secret_key, algorithm=config.jwt_algorithm)


def resolve_identity_from_token(config: LedgerConfig, token: Optional[str]) -> Optional[CallerIdentity]:
    if not token:
        return None
    try:
        payload = jwt.decode(token, config.jwt_secret_key, algorithms=[config.jwt_algorithm])
    except JWTError:
        return None

    subject = payload.get("sub")
    if subject is None or str(subject).strip() == "":
        return None
    role = payload.get("role") or "user"
    return CallerIdentity(id=str(subject), role=str(role))


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


__all__ = [
    "CallerIdentity",
    "create_access_token",
    "extract_bearer_token",
    "resolve_identity_from_token",
]
