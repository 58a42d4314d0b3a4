"""
Tests for the webhook processor.

Covers payload extraction for every accepted shape, the transition rules and
the processor against a mocked session and gateway.
"""

import hashlib
import json
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import urlencode

import httpx
import pytest

from licensing.exceptions import WebhookVerificationError
from licensing.models.domain import WebhookOutcome
from licensing.services.maksekeskus_provider import MaksekeskusProvider
from licensing.services.webhook import (
    WebhookProcessor,
    decide_transition,
    extract_signed_payload,
)
from tests.conftest import make_product, make_purchase, make_result

SECRET = "test-secret-key"
SIGNED = '{"transaction":"mk-tx-1","status":"COMPLETED","reference":"TS-1"}'


def mac_for(json_string: str) -> str:
    return hashlib.sha512((json_string + SECRET).encode("utf-8")).hexdigest().upper()


# ============================================================================
# extract_signed_payload
# ============================================================================


class TestExtractSignedPayload:
    """Tests for extract_signed_payload."""

    def test_form_fields(self):
        body = urlencode({"json": SIGNED, "mac": "ABC123"}).encode()

        payload = extract_signed_payload(
            "application/x-www-form-urlencoded; charset=utf-8", body, {}
        )

        assert payload is not None
        assert payload.json_string == SIGNED
        assert payload.mac == "ABC123"

    def test_json_envelope(self):
        body = json.dumps({"json": SIGNED, "mac": "ABC123"}).encode()

        payload = extract_signed_payload("application/json", body, {})

        assert payload is not None
        assert payload.json_string == SIGNED
        assert payload.mac == "ABC123"

    def test_raw_json_with_trailing_mac_keeps_original_bytes(self):
        """Spacing and member order of the signed text survive untouched."""
        raw = '{"transaction": "mk-tx-1",  "status":"COMPLETED", "mac": "ABC123"}'

        payload = extract_signed_payload("application/json", raw.encode(), {})

        assert payload is not None
        assert payload.json_string == '{"transaction": "mk-tx-1",  "status":"COMPLETED"}'
        assert payload.mac == "ABC123"

    def test_raw_json_with_leading_mac(self):
        raw = '{"mac":"ABC123", "transaction":"mk-tx-1","status":"COMPLETED"}'

        payload = extract_signed_payload("application/json", raw.encode(), {})

        assert payload is not None
        assert payload.json_string == '{"transaction":"mk-tx-1","status":"COMPLETED"}'

    def test_raw_json_with_middle_mac(self):
        raw = '{"transaction":"mk-tx-1","mac":"ABC123","status":"COMPLETED"}'

        payload = extract_signed_payload("application/json", raw.encode(), {})

        assert payload is not None
        assert payload.json_string == '{"transaction":"mk-tx-1","status":"COMPLETED"}'

    def test_raw_json_only_strips_top_level_mac(self):
        """A nested object's own mac member is part of the signed text."""
        signed = '{"transaction":"t1","customer":{"name":"x","mac":"00"},"status":"COMPLETED"}'
        raw = signed[:-1] + ',"mac":"ABC123"}'

        payload = extract_signed_payload("application/json", raw.encode(), {})

        assert payload is not None
        assert payload.json_string == signed
        assert payload.mac == "ABC123"

    def test_raw_json_mac_inside_string_value_is_kept(self):
        signed = '{"transaction":"t1","note":"\\",\\"mac\\":\\"00","status":"COMPLETED"}'
        raw = '{"mac":"ABC123",' + signed[1:]

        payload = extract_signed_payload("application/json", raw.encode(), {})

        assert payload is not None
        assert payload.json_string == signed

    def test_query_parameters(self):
        payload = extract_signed_payload("", b"", {"json": SIGNED, "mac": "ABC123"})

        assert payload is not None
        assert payload.json_string == SIGNED

    def test_missing_mac_returns_none(self):
        body = urlencode({"json": SIGNED}).encode()
        assert extract_signed_payload("application/x-www-form-urlencoded", body, {}) is None

    def test_unparseable_body_returns_none(self):
        assert extract_signed_payload("application/json", b"{not json", {}) is None

    def test_empty_request_returns_none(self):
        assert extract_signed_payload("", b"", {}) is None


# ============================================================================
# decide_transition
# ============================================================================


class TestDecideTransition:
    """Tests for decide_transition."""

    def test_unknown_transaction(self):
        decision = decide_transition(None, "COMPLETED")
        assert decision.outcome == WebhookOutcome.UNKNOWN_TRANSACTION
        assert decision.next_status is None

    @pytest.mark.parametrize("incoming", ["COMPLETED", "CANCELLED", "PENDING", "EXPIRED"])
    def test_completed_is_terminal(self, incoming: str):
        decision = decide_transition("COMPLETED", incoming)
        assert decision.outcome == WebhookOutcome.ALREADY_COMPLETED
        assert decision.next_status is None
        assert decision.stamp_paid_at is False

    def test_completion_stamps_paid_at(self):
        decision = decide_transition("CREATED", "COMPLETED")
        assert decision.outcome == WebhookOutcome.APPLIED
        assert decision.next_status == "COMPLETED"
        assert decision.stamp_paid_at is True

    @pytest.mark.parametrize(
        ("current", "incoming"),
        [("CREATED", "PENDING"), ("PENDING", "CANCELLED"), ("CANCELLED", "PENDING")],
    )
    def test_non_terminal_statuses_overwrite(self, current: str, incoming: str):
        decision = decide_transition(current, incoming)
        assert decision.outcome == WebhookOutcome.APPLIED
        assert decision.next_status == incoming
        assert decision.stamp_paid_at is False


# ============================================================================
# WebhookProcessor
# ============================================================================


@pytest.fixture
def provider() -> MaksekeskusProvider:
    """Real provider for MAC checks; its HTTP client is never used."""
    client = httpx.AsyncClient(
        base_url="https://api.test.maksekeskus.ee",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )
    return MaksekeskusProvider(client, "shop-1", SECRET)


def form_body(json_string: str, mac: str) -> bytes:
    return urlencode({"json": json_string, "mac": mac}).encode()


FORM = "application/x-www-form-urlencoded"


class TestWebhookProcessor:
    """Tests for WebhookProcessor.process."""

    @pytest.mark.asyncio
    async def test_completion_updates_purchase(
        self, db_session: AsyncMock, provider: MaksekeskusProvider
    ):
        purchase = make_purchase(make_product(), mk_status="CREATED")
        db_session.execute = AsyncMock(return_value=make_result(scalar=purchase))

        outcome = await WebhookProcessor(db_session, provider).process(
            FORM, form_body(SIGNED, mac_for(SIGNED)), {}
        )

        assert outcome == WebhookOutcome.APPLIED
        assert purchase.mk_status == "COMPLETED"
        assert purchase.paid_at is not None
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_purchase_row_is_locked(
        self, db_session: AsyncMock, provider: MaksekeskusProvider
    ):
        purchase = make_purchase(make_product())
        db_session.execute = AsyncMock(return_value=make_result(scalar=purchase))

        await WebhookProcessor(db_session, provider).process(
            FORM, form_body(SIGNED, mac_for(SIGNED)), {}
        )

        stmt = db_session.execute.call_args[0][0]
        assert stmt._for_update_arg is not None

    @pytest.mark.asyncio
    async def test_non_completed_status_leaves_paid_at_empty(
        self, db_session: AsyncMock, provider: MaksekeskusProvider
    ):
        signed = '{"transaction":"mk-tx-1","status":"CANCELLED"}'
        purchase = make_purchase(make_product(), mk_status="CREATED")
        db_session.execute = AsyncMock(return_value=make_result(scalar=purchase))

        outcome = await WebhookProcessor(db_session, provider).process(
            FORM, form_body(signed, mac_for(signed)), {}
        )

        assert outcome == WebhookOutcome.APPLIED
        assert purchase.mk_status == "CANCELLED"
        assert purchase.paid_at is None

    @pytest.mark.asyncio
    async def test_redelivery_after_completion_is_noop(
        self, db_session: AsyncMock, provider: MaksekeskusProvider
    ):
        signed = '{"transaction":"mk-tx-1","status":"CANCELLED"}'
        purchase = make_purchase(make_product(), mk_status="COMPLETED")
        db_session.execute = AsyncMock(return_value=make_result(scalar=purchase))

        outcome = await WebhookProcessor(db_session, provider).process(
            FORM, form_body(signed, mac_for(signed)), {}
        )

        assert outcome == WebhookOutcome.ALREADY_COMPLETED
        assert purchase.mk_status == "COMPLETED"
        db_session.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_identical_redelivery_changes_nothing(
        self, db_session: AsyncMock, provider: MaksekeskusProvider
    ):
        purchase = make_purchase(make_product(), mk_status="CREATED")
        db_session.execute = AsyncMock(return_value=make_result(scalar=purchase))
        processor = WebhookProcessor(db_session, provider)
        body = form_body(SIGNED, mac_for(SIGNED))

        first = await processor.process(FORM, body, {})
        paid_at = purchase.paid_at
        second = await processor.process(FORM, body, {})

        assert first == WebhookOutcome.APPLIED
        assert second == WebhookOutcome.ALREADY_COMPLETED
        assert purchase.mk_status == "COMPLETED"
        assert purchase.paid_at == paid_at
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_raw_json_with_nested_mac_member_is_accepted(
        self, db_session: AsyncMock, provider: MaksekeskusProvider
    ):
        signed = '{"transaction":"mk-tx-1","customer":{"name":"x","mac":"00"},"status":"COMPLETED"}'
        raw = signed[:-1] + f',"mac":"{mac_for(signed)}"}}'
        purchase = make_purchase(make_product(), mk_status="PENDING")
        db_session.execute = AsyncMock(return_value=make_result(scalar=purchase))

        outcome = await WebhookProcessor(db_session, provider).process(
            "application/json", raw.encode(), {}
        )

        assert outcome == WebhookOutcome.APPLIED
        assert purchase.mk_status == "COMPLETED"

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_dropped(
        self, db_session: AsyncMock, provider: MaksekeskusProvider
    ):
        db_session.execute = AsyncMock(return_value=make_result(scalar=None))

        outcome = await WebhookProcessor(db_session, provider).process(
            FORM, form_body(SIGNED, mac_for(SIGNED)), {}
        )

        assert outcome == WebhookOutcome.UNKNOWN_TRANSACTION
        db_session.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_mac_is_dropped_before_any_read(
        self, db_session: AsyncMock, provider: MaksekeskusProvider
    ):
        outcome = await WebhookProcessor(db_session, provider).process(
            FORM, form_body(SIGNED, mac_for(SIGNED).lower()), {}
        )

        assert outcome == WebhookOutcome.INVALID_SIGNATURE
        db_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_payload_is_malformed(
        self, db_session: AsyncMock, provider: MaksekeskusProvider
    ):
        outcome = await WebhookProcessor(db_session, provider).process("", b"", {})

        assert outcome == WebhookOutcome.MALFORMED
        db_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_signed_body_without_transaction_is_malformed(
        self, db_session: AsyncMock, provider: MaksekeskusProvider
    ):
        signed = '{"status":"COMPLETED"}'

        outcome = await WebhookProcessor(db_session, provider).process(
            FORM, form_body(signed, mac_for(signed)), {}
        )

        assert outcome == WebhookOutcome.MALFORMED
        db_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_raw_json_delivery_verifies_against_original_bytes(
        self, db_session: AsyncMock, provider: MaksekeskusProvider
    ):
        signed = '{"transaction": "mk-tx-1", "status": "COMPLETED"}'
        raw = signed[:-1] + f', "mac": "{mac_for(signed)}"}}'
        purchase = make_purchase(make_product(), mk_status="PENDING")
        db_session.execute = AsyncMock(return_value=make_result(scalar=purchase))

        outcome = await WebhookProcessor(db_session, provider).process(
            "application/json", raw.encode(), {}
        )

        assert outcome == WebhookOutcome.APPLIED
        assert purchase.mk_status == "COMPLETED"

    @pytest.mark.asyncio
    async def test_gateway_verification_error_is_reported(self, db_session: AsyncMock):
        gateway = MagicMock()
        gateway.verify_notification = MagicMock(side_effect=WebhookVerificationError("bad"))

        outcome = await WebhookProcessor(db_session, gateway).process(
            FORM, form_body(SIGNED, "X"), {}
        )

        assert outcome == WebhookOutcome.INVALID_SIGNATURE
