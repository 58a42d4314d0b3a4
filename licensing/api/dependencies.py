"""
FastAPI Dependencies - Authentication, gateway injection and client context.

NO DICTIONARIES - All dependencies return typed objects.
"""

import time

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from licensing.config import settings
from licensing.models.domain import UserIdentity
from licensing.observability import get_logger
from licensing.services.payment_provider import PaymentGateway

logger = get_logger(__name__)

# ============================================================================
# User Authentication (Google ID tokens)
# ============================================================================

# Bearer token scheme for ID token auth
bearer_scheme = HTTPBearer(auto_error=False)

# Cache for verified Google ID tokens: token -> (identity, expiry_timestamp)
_google_token_cache: dict[str, tuple[UserIdentity, float]] = {}
_MAX_CACHE_SIZE = 10000


def _cleanup_google_token_cache() -> None:
    """Remove expired entries from the cache."""
    if len(_google_token_cache) < _MAX_CACHE_SIZE:
        return

    now = time.time()
    expired = [k for k, (_, exp) in _google_token_cache.items() if exp < now]
    for k in expired:
        del _google_token_cache[k]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> UserIdentity:
    """
    FastAPI dependency to validate a Google ID token from the Authorization header.

    Accepts: Authorization: Bearer {google_id_token}
    Verifies: Token signature, expiry, issuer and audience (any configured client ID)

    Usage:
        @router.get("/v1/licenses/mine")
        async def my_licenses(user: UserIdentity = Depends(get_current_user)):
            ...

    Raises:
        HTTPException 401 if no token or invalid token
    """
    if credentials is None:
        raise _unauthorized("Authentication required")

    token = credentials.credentials

    # Check cache first (avoids fetching Google's certificates)
    cached = _google_token_cache.get(token)
    if cached is not None:
        identity, expiry = cached
        if time.time() < expiry:
            return identity
        del _google_token_cache[token]

    valid_client_ids = settings.valid_google_client_ids
    if not valid_client_ids:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server misconfiguration: no Google client IDs configured",
        )

    # Web and mobile clients issue tokens for different audiences
    last_error: str | None = None
    for client_id in valid_client_ids:
        try:
            idinfo = id_token.verify_oauth2_token(  # type: ignore[no-untyped-call]
                token,
                google_requests.Request(),  # type: ignore[no-untyped-call]
                client_id,
            )
        except ValueError as e:
            last_error = str(e)
            if "audience" in last_error.lower():
                continue
            break

        user_id = idinfo.get("sub")
        if not user_id:
            raise _unauthorized("Invalid token: missing user ID")

        identity = UserIdentity(
            external_id=user_id,
            email=idinfo.get("email"),
            email_verified=bool(idinfo.get("email_verified", False)),
            name=idinfo.get("name"),
        )

        # Cache the verified token until it expires (with 60s buffer)
        expiry = idinfo.get("exp", time.time() + 3600) - 60
        _cleanup_google_token_cache()
        _google_token_cache[token] = (identity, expiry)
        return identity

    logger.warning("google_token_validation_failed", error=last_error)
    raise _unauthorized("Authentication required")


# ============================================================================
# Gateway and client context
# ============================================================================


def get_gateway(request: Request) -> PaymentGateway:
    """FastAPI dependency for the payment gateway built in the lifespan."""
    gateway: PaymentGateway = request.app.state.gateway
    return gateway


def resolve_client_ip(request: Request) -> str:
    """
    Best-effort buyer IP for the gateway's fraud checks.

    First X-Forwarded-For entry, then CF-Connecting-IP, then the socket peer.
    """
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first

    cf_ip = request.headers.get("cf-connecting-ip", "").strip()
    if cf_ip:
        return cf_ip

    if request.client and request.client.host:
        return request.client.host

    return "0.0.0.0"
