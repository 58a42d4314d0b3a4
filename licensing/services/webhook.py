"""
Webhook Processor - Verified, idempotent payment status updates.

NO DICTIONARIES - All operations use strongly typed domain models.

The gateway retries deliveries and may send them out of order. A purchase
that reached COMPLETED is never changed again.
"""

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from urllib.parse import parse_qs

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from licensing.db.models import Purchase
from licensing.exceptions import WebhookVerificationError
from licensing.models.api import PaymentStatus
from licensing.models.domain import WebhookDecision, WebhookOutcome
from licensing.observability import get_logger, metrics
from licensing.services.payment_provider import PaymentGateway, SignedPayload

logger = get_logger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _string_end(raw: str, start: int) -> int | None:
    """Index just past the JSON string literal opening at ``start``."""
    i = start + 1
    while i < len(raw):
        if raw[i] == "\\":
            i += 2
            continue
        if raw[i] == '"':
            return i + 1
        i += 1
    return None


def _skip_whitespace(raw: str, i: int) -> int:
    while i < len(raw) and raw[i] in " \t\r\n":
        i += 1
    return i


def _top_level_mac_span(raw: str) -> tuple[int, int] | None:
    """Start and end of the ``"mac": "<value>"`` member of the outermost object."""
    depth = 0
    expect_key = False
    i = 0
    while i < len(raw):
        ch = raw[i]
        if ch == '"':
            end = _string_end(raw, i)
            if end is None:
                return None
            if depth == 1 and expect_key and raw[i + 1 : end - 1] == "mac":
                colon = _skip_whitespace(raw, end)
                value = _skip_whitespace(raw, colon + 1)
                if raw[colon : colon + 1] == ":" and raw[value : value + 1] == '"':
                    value_end = _string_end(raw, value)
                    if value_end is not None:
                        return i, value_end
            expect_key = False
            i = end
            continue
        if ch in "{[":
            depth += 1
            expect_key = ch == "{"
        elif ch in "}]":
            depth -= 1
        elif ch == ",":
            expect_key = True
        elif ch == ":":
            expect_key = False
        i += 1
    return None


def _strip_embedded_mac(raw: str) -> str | None:
    """Cut the top-level mac member out of the raw JSON text, leaving every other byte."""
    span = _top_level_mac_span(raw)
    if span is None:
        return None

    start, end = span
    before = raw[:start].rstrip()
    if before.endswith(","):
        return before[:-1] + raw[end:]

    after = raw[end:].lstrip()
    if after.startswith(","):
        after = after[1:].lstrip()
    return raw[:start] + after


def extract_signed_payload(
    content_type: str, body: bytes, query_params: Mapping[str, str]
) -> SignedPayload | None:
    """
    Find the signed JSON text and its MAC in a notification request.

    Accepted shapes, in order:
    - form fields ``json`` and ``mac``
    - a JSON envelope ``{"json": "<signed text>", "mac": "..."}``
    - a raw JSON object with an embedded ``mac`` member
    - query parameters ``json`` and ``mac``

    Returns None when no shape yields both parts.
    """
    json_string = ""
    mac = ""
    text = body.decode("utf-8", errors="replace") if body else ""

    if FORM_CONTENT_TYPE in content_type.lower():
        fields = parse_qs(text, keep_blank_values=True)
        json_string = fields.get("json", [""])[0]
        mac = fields.get("mac", [""])[0]
    elif text.strip():
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            envelope_json = parsed.get("json")
            received_mac = parsed.get("mac")
            if isinstance(envelope_json, str):
                json_string = envelope_json
                mac = received_mac if isinstance(received_mac, str) else ""
            elif isinstance(received_mac, str):
                json_string = _strip_embedded_mac(text) or ""
                mac = received_mac

    if not json_string or not mac:
        json_string = query_params.get("json", "")
        mac = query_params.get("mac", "")

    if not json_string or not mac:
        return None
    return SignedPayload(json_string=json_string, mac=mac)


def decide_transition(current_status: str | None, incoming_status: str) -> WebhookDecision:
    """
    Choose what a verified notification does to a purchase.

    Args:
        current_status: Stored status, or None if no purchase matches
        incoming_status: Status carried by the notification
    """
    if current_status is None:
        return WebhookDecision(outcome=WebhookOutcome.UNKNOWN_TRANSACTION)

    if current_status == PaymentStatus.COMPLETED.value:
        return WebhookDecision(outcome=WebhookOutcome.ALREADY_COMPLETED)

    return WebhookDecision(
        outcome=WebhookOutcome.APPLIED,
        next_status=incoming_status,
        stamp_paid_at=incoming_status == PaymentStatus.COMPLETED.value,
    )


class WebhookProcessor:
    """Applies gateway notifications to purchases."""

    def __init__(self, session: AsyncSession, gateway: PaymentGateway) -> None:
        """Initialize webhook processor with database session and gateway."""
        self.session = session
        self.gateway = gateway

    async def process(
        self, content_type: str, body: bytes, query_params: Mapping[str, str]
    ) -> WebhookOutcome:
        """
        Verify and apply one notification.

        Dropped deliveries are reported as an outcome, not raised. Database
        errors propagate.
        """
        outcome = await self._process(content_type, body, query_params)
        metrics.record_webhook(outcome.value)
        return outcome

    async def _process(
        self, content_type: str, body: bytes, query_params: Mapping[str, str]
    ) -> WebhookOutcome:
        payload = extract_signed_payload(content_type, body, query_params)
        if payload is None:
            logger.warning("webhook_payload_missing", content_type=content_type)
            return WebhookOutcome.MALFORMED

        try:
            notification = self.gateway.verify_notification(payload)
        except WebhookVerificationError as e:
            logger.warning("webhook_signature_invalid", error=e.message)
            return WebhookOutcome.INVALID_SIGNATURE
        except ValueError as e:
            logger.warning("webhook_notification_malformed", error=str(e))
            return WebhookOutcome.MALFORMED

        stmt = (
            select(Purchase)
            .where(Purchase.mk_transaction_id == notification.transaction)
            .with_for_update()
        )
        purchase = (await self.session.execute(stmt)).scalar_one_or_none()

        decision = decide_transition(
            purchase.mk_status if purchase is not None else None,
            notification.status,
        )

        if purchase is None or decision.outcome != WebhookOutcome.APPLIED:
            await self.session.rollback()
            logger.info(
                "webhook_ignored",
                transaction_id=notification.transaction,
                status=notification.status,
                outcome=decision.outcome.value,
            )
            return decision.outcome

        purchase.mk_status = decision.next_status or notification.status
        if decision.stamp_paid_at:
            purchase.paid_at = _utc_now()
        await self.session.commit()

        logger.info(
            "webhook_applied",
            transaction_id=notification.transaction,
            purchase_id=str(purchase.id),
            status=purchase.mk_status,
        )
        return decision.outcome
