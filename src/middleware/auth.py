"""Authentication dependencies.

* **Staff sessions**: an HS256 token (python-jose) carrying the agency
  ID, display name, handled categories and a ``scope`` claim.  Read
  from the ``auth_token`` cookie or an ``Authorization: Bearer`` header.
  ``scope = "all-agencies"`` grants access to every ticket.
* **Internal callers** (ticket creation from trusted services): the
  ``X-API-Key`` header, compared in constant time.
* **Vapi webhook**: the ``x-vapi-secret`` header, when a secret is
  configured.
"""

from __future__ import annotations

import hmac
from datetime import UTC, datetime, timedelta

import structlog
from fastapi import Request, Security
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import ValidationError

from config.settings import settings
from src.models.staff import StaffPrincipal, StaffScope
from src.services.errors import ServiceUnavailable, Unauthorized

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_bearer = HTTPBearer(auto_error=False)
_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
_vapi_secret_header = APIKeyHeader(name="x-vapi-secret", auto_error=False)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


# ---------------------------------------------------------------------------
# Staff tokens
# ---------------------------------------------------------------------------


def create_access_token(
    principal: StaffPrincipal,
    *,
    expires_hours: int | None = None,
    secret: str | None = None,
) -> str:
    """Sign a staff token for *principal*."""
    now = datetime.now(UTC)
    payload = {
        "sub": principal.agency_id,
        "name": principal.agency_name,
        "categories": [c.value for c in principal.categories],
        "scope": principal.scope.value,
        "iat": now,
        "exp": now + timedelta(hours=expires_hours or settings.jwt_expiry_hours),
    }
    return jwt.encode(payload, secret or settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, *, secret: str | None = None) -> StaffPrincipal | None:
    """Verify *token*; *None* when the signature, expiry or claims are bad."""
    try:
        payload = jwt.decode(
            token, secret or settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except JWTError:
        return None
    try:
        return StaffPrincipal(
            agency_id=payload["sub"],
            agency_name=payload.get("name") or payload["sub"],
            categories=payload.get("categories") or [],
            scope=payload.get("scope") or StaffScope.AGENCY,
        )
    except (KeyError, ValidationError):
        return None


def _token_from(request: Request, credentials: HTTPAuthorizationCredentials | None) -> str | None:
    cookie = request.cookies.get(settings.auth_cookie_name)
    if cookie:
        return cookie
    return credentials.credentials if credentials else None


async def get_optional_staff(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> StaffPrincipal | None:
    """The authenticated staff member, or *None* for anonymous callers."""
    token = _token_from(request, credentials)
    if not token:
        return None
    principal = decode_access_token(token)
    if principal is None:
        logger.warning("auth.invalid_token", path=request.url.path, client_ip=_client_ip(request))
    return principal


async def require_staff(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> StaffPrincipal:
    """FastAPI dependency that enforces a valid staff token (401 otherwise)."""
    principal = await get_optional_staff(request, credentials)
    if principal is None:
        raise Unauthorized()
    return principal


# ---------------------------------------------------------------------------
# Shared secrets
# ---------------------------------------------------------------------------


async def require_internal_api_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
) -> str:
    """Enforce the ``X-API-Key`` shared secret.

    Without a configured key, development allows the request with a
    warning and production refuses everything.
    """
    configured_key = settings.internal_api_key

    if not configured_key:
        if not settings.is_production:
            logger.warning("auth.internal_key_not_configured", path=request.url.path)
            return ""
        logger.error("auth.internal_key_not_configured_production")
        raise ServiceUnavailable(
            "Autentikasi internal belum dikonfigurasi", code="INTERNAL_AUTH_NOT_CONFIGURED"
        )

    if not api_key or not hmac.compare_digest(api_key.encode(), configured_key.encode()):
        logger.warning(
            "auth.invalid_api_key",
            path=request.url.path,
            client_ip=_client_ip(request),
        )
        raise Unauthorized("API key tidak valid", code="INVALID_API_KEY")

    return api_key


async def verify_vapi_secret(
    request: Request,
    secret: str | None = Security(_vapi_secret_header),
) -> None:
    """Check ``x-vapi-secret`` when a webhook secret is configured."""
    configured = settings.vapi_webhook_secret
    if not configured:
        return
    if not secret or not hmac.compare_digest(secret.encode(), configured.encode()):
        logger.warning("auth.invalid_vapi_secret", client_ip=_client_ip(request))
        raise Unauthorized()
