"""
Tests for the Maksekeskus gateway adapter.

HTTP calls go through httpx.MockTransport; no network access.
"""

import base64
import hashlib
import json

import httpx
import pytest
from hypothesis import given
from hypothesis import strategies as st
from pydantic import ValidationError

from licensing.exceptions import PaymentProviderError, WebhookVerificationError
from licensing.services.maksekeskus_provider import (
    MaksekeskusProvider,
    build_transaction_payload,
    compute_mac,
    create_auth_header,
    format_amount,
    verify_mac,
)
from licensing.services.payment_provider import SignedPayload, TransactionParams

SECRET = "test-secret-key"


def reference_mac(json_string: str, secret: str) -> str:
    return hashlib.sha512((json_string + secret).encode("utf-8")).hexdigest().upper()


def make_params(**overrides) -> TransactionParams:
    values = {
        "amount_cents": 849,
        "currency": "EUR",
        "reference": "TS-abc123",
        "customer_ip": "203.0.113.7",
        "return_url": "https://minu.example/payment/success?token=tok",
        "cancel_url": "https://minu.example/payment/cancelled",
        "notification_url": "https://api.example/v1/webhooks/maksekeskus",
    }
    values.update(overrides)
    return TransactionParams(**values)


def make_provider(handler) -> MaksekeskusProvider:
    client = httpx.AsyncClient(
        base_url="https://api.test.maksekeskus.ee",
        transport=httpx.MockTransport(handler),
    )
    return MaksekeskusProvider(client, "shop-1", SECRET)


# ============================================================================
# Pure helpers
# ============================================================================


class TestCreateAuthHeader:
    """Tests for create_auth_header."""

    def test_basic_credentials(self):
        header = create_auth_header("shop-1", "secret")

        assert header.startswith("Basic ")
        assert base64.b64decode(header[len("Basic ") :]).decode() == "shop-1:secret"


class TestVerifyMac:
    """Tests for compute_mac and verify_mac."""

    def test_compute_mac_is_uppercase_sha512_of_json_plus_secret(self):
        payload = '{"transaction":"tx-1","status":"COMPLETED"}'

        assert compute_mac(payload, SECRET) == reference_mac(payload, SECRET)
        assert len(compute_mac(payload, SECRET)) == 128

    def test_accepts_matching_mac(self):
        payload = '{"transaction":"tx-1","status":"COMPLETED"}'
        assert verify_mac(payload, reference_mac(payload, SECRET), SECRET)

    def test_lowercase_mac_is_rejected(self):
        """Comparison is case-sensitive."""
        payload = '{"transaction":"tx-1","status":"COMPLETED"}'
        assert not verify_mac(payload, reference_mac(payload, SECRET).lower(), SECRET)

    def test_single_byte_change_in_body_is_rejected(self):
        payload = '{"transaction":"tx-1","status":"COMPLETED"}'
        mac = reference_mac(payload, SECRET)
        assert not verify_mac(payload.replace(":", ": ", 1), mac, SECRET)

    def test_wrong_secret_is_rejected(self):
        payload = '{"transaction":"tx-1"}'
        assert not verify_mac(payload, reference_mac(payload, "other-secret"), SECRET)

    def test_empty_mac_is_rejected(self):
        assert not verify_mac('{"transaction":"tx-1"}', "", SECRET)

    @given(st.text(max_size=200))
    def test_round_trip_for_arbitrary_text(self, payload: str):
        assert verify_mac(payload, compute_mac(payload, SECRET), SECRET)


class TestFormatAmount:
    """Tests for format_amount."""

    @pytest.mark.parametrize(
        ("cents", "expected"),
        [(849, "8.49"), (1000, "10.00"), (5, "0.05"), (0, "0.00"), (100, "1.00"), (1999, "19.99")],
    )
    def test_examples(self, cents: int, expected: str):
        assert format_amount(cents) == expected

    @given(st.integers(min_value=0, max_value=10**9))
    def test_parses_back_to_same_cents(self, cents: int):
        major, minor = format_amount(cents).split(".")
        assert len(minor) == 2
        assert int(major) * 100 + int(minor) == cents


class TestBuildTransactionPayload:
    """Tests for build_transaction_payload."""

    def test_defaults_country_and_locale(self):
        payload = build_transaction_payload(make_params())

        assert payload.transaction.amount == "8.49"
        assert payload.transaction.currency == "EUR"
        assert payload.transaction.reference == "TS-abc123"
        assert payload.customer.ip == "203.0.113.7"
        assert payload.customer.country == "ee"
        assert payload.customer.locale == "et"
        assert payload.transaction_url.return_url.endswith("token=tok")

    def test_explicit_country_and_locale(self):
        payload = build_transaction_payload(make_params(country="lv", locale="en"))

        assert payload.customer.country == "lv"
        assert payload.customer.locale == "en"

    def test_serialized_shape(self):
        body = build_transaction_payload(make_params()).model_dump()

        assert set(body) == {"transaction", "customer", "transaction_url"}
        assert set(body["transaction_url"]) == {"return_url", "cancel_url", "notification_url"}


# ============================================================================
# MaksekeskusProvider
# ============================================================================


class TestCreateTransaction:
    """Tests for MaksekeskusProvider.create_transaction."""

    @pytest.mark.asyncio
    async def test_posts_payload_with_basic_auth(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                201,
                json={
                    "id": "mk-tx-42",
                    "status": "CREATED",
                    "payment_methods": {"banklinks": [{"name": "swedbank"}]},
                },
            )

        provider = make_provider(handler)
        transaction = await provider.create_transaction(make_params())
        await provider.aclose()

        assert seen["method"] == "POST"
        assert seen["path"] == "/v1/transactions"
        assert seen["auth"] == create_auth_header("shop-1", SECRET)
        assert seen["body"]["transaction"]["amount"] == "8.49"
        assert transaction.transaction_id == "mk-tx-42"
        assert transaction.status == "CREATED"
        assert transaction.payment_methods == {"banklinks": [{"name": "swedbank"}]}

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        provider = make_provider(lambda request: httpx.Response(400, json={"error": "bad"}))

        with pytest.raises(PaymentProviderError) as exc_info:
            await provider.create_transaction(make_params())

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_unauthorized_raises(self):
        provider = make_provider(lambda request: httpx.Response(401))

        with pytest.raises(PaymentProviderError, match="Invalid API credentials"):
            await provider.create_transaction(make_params())

    @pytest.mark.asyncio
    async def test_missing_id_raises(self):
        provider = make_provider(lambda request: httpx.Response(201, json={"status": "CREATED"}))

        with pytest.raises(PaymentProviderError, match="missing transaction id"):
            await provider.create_transaction(make_params())

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = make_provider(handler)

        with pytest.raises(PaymentProviderError, match="unreachable"):
            await provider.create_transaction(make_params())


class TestListPaymentMethods:
    """Tests for MaksekeskusProvider.list_payment_methods."""

    @pytest.mark.asyncio
    async def test_requests_country_and_currency(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"banklinks": [], "cards": []})

        provider = make_provider(handler)
        methods = await provider.list_payment_methods("ee", "EUR")

        assert seen["path"] == "/v1/methods"
        assert seen["params"] == {"country": "ee", "currency": "EUR"}
        assert methods == {"banklinks": [], "cards": []}

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        provider = make_provider(lambda request: httpx.Response(503, text="down"))

        with pytest.raises(PaymentProviderError):
            await provider.list_payment_methods()


class TestVerifyNotification:
    """Tests for MaksekeskusProvider.verify_notification."""

    def test_valid_mac_returns_notification(self):
        provider = make_provider(lambda request: httpx.Response(200))
        body = '{"transaction":"mk-tx-1","status":"COMPLETED","reference":"TS-1"}'

        notification = provider.verify_notification(
            SignedPayload(json_string=body, mac=reference_mac(body, SECRET))
        )

        assert notification.transaction == "mk-tx-1"
        assert notification.status == "COMPLETED"
        assert notification.reference == "TS-1"

    def test_bad_mac_raises(self):
        provider = make_provider(lambda request: httpx.Response(200))

        with pytest.raises(WebhookVerificationError):
            provider.verify_notification(
                SignedPayload(json_string='{"transaction":"x","status":"COMPLETED"}', mac="00")
            )

    def test_signed_body_without_status_is_malformed(self):
        provider = make_provider(lambda request: httpx.Response(200))
        body = '{"transaction":"mk-tx-1"}'

        with pytest.raises(ValidationError):
            provider.verify_notification(
                SignedPayload(json_string=body, mac=reference_mac(body, SECRET))
            )
