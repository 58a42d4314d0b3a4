"""
API Routes - FastAPI endpoints for checkout, licenses and devices.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from licensing.api.dependencies import get_current_user, get_gateway, resolve_client_ip
from licensing.config import settings
from licensing.db.session import Database, get_db
from licensing.exceptions import (
    AuthenticationError,
    InvalidInputError,
    PaymentNotCompletedError,
    PaymentProviderError,
    ResourceNotFoundError,
)
from licensing.models.api import (
    ActivateDeviceRequest,
    ActivationResponse,
    CheckoutRequest,
    CheckoutResponse,
    ClaimLicenseRequest,
    ClaimLicenseResponse,
    DeactivateDeviceRequest,
    DeactivateDeviceResponse,
    HealthResponse,
    LicenseSummary,
    LinkAccountResponse,
    PremiumStatusResponse,
    ProductResponse,
)
from licensing.models.domain import UserIdentity, WebhookOutcome
from licensing.observability import get_logger, metrics
from licensing.services.account_linking import AccountLinkingService
from licensing.services.catalog import CatalogService
from licensing.services.checkout import CheckoutService
from licensing.services.entitlements import EntitlementService
from licensing.services.license_issuance import LicenseIssuanceService
from licensing.services.payment_provider import PaymentGateway
from licensing.services.webhook import WebhookProcessor

logger = get_logger(__name__)

router = APIRouter()


def _internal_error(operation: str, exc: Exception) -> HTTPException:
    """Log an unexpected failure and hide its details from the caller."""
    metrics.record_error(type(exc).__name__, operation)
    logger.error(f"{operation}_failed", error=str(exc), exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error",
    )


# =============================================================================
# Catalog
# =============================================================================


@router.get("/v1/products", response_model=list[ProductResponse])
async def list_products(
    app_slug: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> list[ProductResponse]:
    """Active products of an app, cheapest first within each sort group."""
    try:
        return await CatalogService(db).list_products(app_slug)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except Exception as e:
        raise _internal_error("list_products", e) from e


@router.get("/v1/payment-methods")
async def get_payment_methods(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
) -> Any:
    """
    Payment methods offered by the gateway.

    Served from a cache row refreshed every 12 hours.
    """
    try:
        return await CatalogService(db).get_payment_methods(
            gateway, settings.payment_methods_cache_ttl_seconds
        )
    except PaymentProviderError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to fetch payment methods",
        ) from e
    except Exception as e:
        raise _internal_error("get_payment_methods", e) from e


# =============================================================================
# Checkout
# =============================================================================


@router.post(
    "/v1/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_checkout(
    body: CheckoutRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
) -> CheckoutResponse:
    """
    Start a purchase of a product.

    Returns the purchase token the buyer later uses to claim the license,
    and the gateway's payment methods for this transaction.
    """
    service = CheckoutService(db, gateway, settings)
    try:
        result = await service.create_checkout(body.product_id, resolve_client_ip(request))
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except ResourceNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Product not found"
        ) from e
    except PaymentProviderError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to create payment session",
        ) from e
    except Exception as e:
        metrics.record_checkout(success=False, error_type="internal")
        raise _internal_error("create_checkout", e) from e

    return CheckoutResponse(
        purchase_token=result.purchase_token,
        payment_methods=result.payment_methods,
        transaction_id=result.transaction_id,
    )


# =============================================================================
# Payment Webhook
# =============================================================================


@router.api_route(
    "/v1/webhooks/maksekeskus",
    methods=["GET", "POST"],
    response_class=PlainTextResponse,
)
async def maksekeskus_webhook(request: Request) -> PlainTextResponse:
    """
    Handle Maksekeskus payment notifications.

    Always answers 200 "OK": the gateway retries anything else, and a bad
    delivery will not get better on retry. The session is opened here rather
    than through a dependency so that a database outage is also answered 200.
    """
    try:
        body = await request.body()
        database: Database = request.app.state.database
        gateway: PaymentGateway = request.app.state.gateway
        async with database.session() as session:
            outcome = await WebhookProcessor(session, gateway).process(
                request.headers.get("content-type", ""),
                body,
                request.query_params,
            )
        logger.info("maksekeskus_webhook_handled", outcome=outcome.value)
    except Exception as e:
        metrics.record_webhook(WebhookOutcome.FAILED.value)
        metrics.record_error(type(e).__name__, "maksekeskus_webhook")
        logger.error("maksekeskus_webhook_failed", error=str(e), exc_info=True)

    return PlainTextResponse("OK", status_code=status.HTTP_200_OK)


# =============================================================================
# Licenses
# =============================================================================


@router.post(
    "/v1/licenses/claim",
    response_model=ClaimLicenseResponse,
    status_code=status.HTTP_201_CREATED,
)
async def claim_license(
    body: ClaimLicenseRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> ClaimLicenseResponse:
    """
    Collect the buyer's email and issue the license for a paid purchase.

    Auth: the purchase token itself.

    201 when the license is created by this call, 200 when it already existed.
    """
    service = LicenseIssuanceService(db, settings.license_key_max_attempts)
    try:
        issued = await service.claim_license(body.purchase_token, body.email)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except ResourceNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Purchase not found"
        ) from e
    except PaymentNotCompletedError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "Payment not completed", "status": e.status},
        ) from e
    except Exception as e:
        raise _internal_error("claim_license", e) from e

    if not issued.created:
        response.status_code = status.HTTP_200_OK

    return ClaimLicenseResponse(
        license_key=issued.license_key,
        app_slug=issued.app_slug,
        expires_at=issued.expires_at,
    )


@router.get("/v1/licenses/mine", response_model=list[LicenseSummary])
async def my_licenses(
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[LicenseSummary]:
    """
    Licenses linked to the signed-in user, newest first.

    Auth: Bearer {google_id_token}
    """
    try:
        return await EntitlementService(db).list_user_licenses(user)
    except Exception as e:
        raise _internal_error("my_licenses", e) from e


@router.post("/v1/account/link", response_model=LinkAccountResponse)
async def link_account(
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> LinkAccountResponse:
    """
    Attach licenses bought under the user's verified email to the user.

    Auth: Bearer {google_id_token}
    """
    try:
        linked_count = await AccountLinkingService(db).link_licenses(user)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    except Exception as e:
        raise _internal_error("link_account", e) from e

    return LinkAccountResponse(linked_count=linked_count)


# =============================================================================
# Devices
# =============================================================================


@router.post(
    "/v1/devices/activate",
    response_model=ActivationResponse,
    response_model_exclude_none=True,
)
async def activate_device(
    body: ActivateDeviceRequest,
    db: AsyncSession = Depends(get_db),
) -> ActivationResponse:
    """
    Bind a device to a license.

    A full license answers 200 with status ``device_limit_reached``.
    """
    service = EntitlementService(db, settings.self_service_url)
    try:
        result = await service.activate_device(body.license_key, body.device_id, body.app_slug)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except Exception as e:
        raise _internal_error("activate_device", e) from e

    return ActivationResponse(
        status=result.status,
        expires_at=result.expires_at,
        owner_email_hint=result.owner_email_hint,
        manage_url=result.manage_url,
    )


@router.post(
    "/v1/devices/deactivate",
    response_model=DeactivateDeviceResponse,
    response_model_exclude_none=True,
)
async def deactivate_device(
    body: DeactivateDeviceRequest,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> DeactivateDeviceResponse:
    """
    Release a device slot on one of the user's licenses.

    Auth: Bearer {google_id_token}
    """
    try:
        result = await EntitlementService(db).deactivate_device(body.activation_id, user)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except ResourceNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Activation not found"
        ) from e
    except Exception as e:
        raise _internal_error("deactivate_device", e) from e

    return DeactivateDeviceResponse(ok=result.ok, message=result.message)


@router.get(
    "/v1/premium-status",
    response_model=PremiumStatusResponse,
    response_model_exclude_none=True,
)
async def premium_status(
    device_id: str | None = None,
    app_slug: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> PremiumStatusResponse:
    """Whether a device currently has premium for an app."""
    try:
        result = await EntitlementService(db).get_premium_status(device_id, app_slug)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except Exception as e:
        raise _internal_error("premium_status", e) from e

    return PremiumStatusResponse(is_premium=result.is_premium, expires_at=result.expires_at)


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC),
    )
