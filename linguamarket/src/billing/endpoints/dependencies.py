"""
Endpoint Dependencies

Shared dependencies for billing API endpoints. Each one can be overridden
in tests through ``app.dependency_overrides``.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Annotated, Optional

import jwt
from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from linguamarket.core.conf import settings
from linguamarket.src.billing.shared.config import UserRole
from linguamarket.src.billing.shared.exceptions import AuthorizationError, ForbiddenError
from linguamarket.src.billing.shared.settings_cache import AdminSettingsCache, get_admin_settings_cache

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller decoded from the access token."""
    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def decode_access_token(token: str) -> CurrentUser:
    """
    Verify an access token and build the caller from its claims.

    Raises:
        AuthorizationError: Expired, malformed or incomplete token
    """
    try:
        payload = jwt.decode(token, settings.TOKEN_SECRET_KEY, algorithms=[settings.TOKEN_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthorizationError("Token has expired", code="TOKEN_EXPIRED")
    except jwt.InvalidTokenError as e:
        logger.warning(f"[AUTH] Invalid token: {e}")
        raise AuthorizationError("Invalid token", code="INVALID_TOKEN")

    user_id = payload.get('sub') or payload.get('user_id')
    if user_id is None:
        raise AuthorizationError("Invalid token", code="INVALID_TOKEN")
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise AuthorizationError("Invalid token", code="INVALID_TOKEN")
    role = str(payload.get('role') or UserRole.STUDENT).upper()
    return CurrentUser(id=user_id, role=role)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """Get the current authenticated user."""
    if credentials is None or not credentials.credentials:
        raise AuthorizationError("Missing authorization header")
    return decode_access_token(credentials.credentials)


def require_role(*roles: str):
    """Dependency factory admitting only callers holding one of ``roles``."""

    async def checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise ForbiddenError(
                f"Requires one of roles: {', '.join(roles)}",
                code="ROLE_NOT_ALLOWED",
                details={'role': user.role}
            )
        return user

    return checker


async def verify_cron_secret(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> None:
    """Admit scheduler calls carrying ``Bearer <CRON_SECRET>``."""
    if not settings.CRON_SECRET:
        logger.error("[CRON] CRON_SECRET not configured")
        raise AuthorizationError("Cron endpoints are not configured", code="CRON_NOT_CONFIGURED")
    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise AuthorizationError("Invalid cron secret", code="INVALID_CRON_SECRET")


async def verify_billing_enabled() -> bool:
    """Reject billing calls when billing is switched off."""
    if not settings.BILLING_ENABLED:
        raise ForbiddenError("Billing is disabled", code="BILLING_DISABLED")
    return True


AuthUser = Annotated[CurrentUser, Depends(get_current_user)]
AdminUser = Annotated[CurrentUser, Depends(require_role(UserRole.ADMIN))]
SettingsCache = Annotated[AdminSettingsCache, Depends(get_admin_settings_cache)]
