"""Unit tests for PaystackService.

Tests verify webhook signature validation and transaction re-verification
without network access. The verify endpoint is served by httpx.MockTransport.
"""

from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import httpx
import pytest

from conftest import TEST_SECRET_KEY, FakeGateway, sign
from fulfillment.services.paystack_service import PaystackService, PaystackServiceError
from fulfillment.services.ssm_service import SSMServiceError

PAYLOAD = b'{"event":"charge.success","data":{"reference":"ref-1"}}'


# === Webhook Signature Validation ===


class TestWebhookSignatureValidation:
    """Test x-paystack-signature verification."""

    def test_valid_signature(self, paystack: PaystackService):
        assert paystack.verify_webhook_signature(PAYLOAD, sign(PAYLOAD)) is True

    def test_uppercase_signature_is_accepted(self, paystack: PaystackService):
        assert paystack.verify_webhook_signature(PAYLOAD, sign(PAYLOAD).upper()) is True

    def test_tampered_body_fails(self, paystack: PaystackService):
        signature = sign(PAYLOAD)
        tampered = PAYLOAD.replace(b"ref-1", b"ref-2")
        assert paystack.verify_webhook_signature(tampered, signature) is False

    def test_wrong_secret_fails(self, paystack: PaystackService):
        assert paystack.verify_webhook_signature(PAYLOAD, sign(PAYLOAD, "sk_other")) is False

    @pytest.mark.parametrize("signature", [None, "", "abc123", "z" * 128, sign(PAYLOAD)[:-2]])
    def test_missing_or_malformed_signature_fails(
        self, paystack: PaystackService, signature: str | None
    ):
        assert paystack.verify_webhook_signature(PAYLOAD, signature) is False

    def test_dedicated_webhook_secret_takes_precedence(self):
        service = PaystackService(secret_key=TEST_SECRET_KEY, webhook_secret="whsec_dedicated")

        assert service.verify_webhook_signature(PAYLOAD, sign(PAYLOAD, "whsec_dedicated"))
        assert not service.verify_webhook_signature(PAYLOAD, sign(PAYLOAD))

    def test_no_secret_configured_fails(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("PAYSTACK_SECRET_KEY", raising=False)
        monkeypatch.delenv("PAYSTACK_WEBHOOK_SECRET", raising=False)
        with patch("fulfillment.services.paystack_service.get_ssm_service") as mock_get_ssm:
            mock_ssm = MagicMock()
            mock_ssm.get_parameter.side_effect = SSMServiceError("not found")
            mock_get_ssm.return_value = mock_ssm

            service = PaystackService(environment="test")
            assert service.verify_webhook_signature(PAYLOAD, sign(PAYLOAD)) is False

    def test_secret_is_read_from_ssm(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("PAYSTACK_SECRET_KEY", raising=False)
        monkeypatch.delenv("PAYSTACK_WEBHOOK_SECRET", raising=False)
        with patch("fulfillment.services.paystack_service.get_ssm_service") as mock_get_ssm:
            mock_ssm = MagicMock()
            mock_ssm.get_parameter.side_effect = lambda name: {
                "/studio/test/paystack/webhook_secret": "whsec_from_ssm",
            }[name]
            mock_get_ssm.return_value = mock_ssm

            service = PaystackService(environment="test")
            assert service.verify_webhook_signature(PAYLOAD, sign(PAYLOAD, "whsec_from_ssm"))


# === Transaction Verification ===


class TestVerifyTransaction:
    """Test re-verification against GET /transaction/verify/:reference."""

    def test_returns_verified_transaction(self, paystack: PaystackService, gateway: FakeGateway):
        gateway.add(
            "ref-1",
            amount=150000,
            metadata={"payment_type": "booking", "booking_reference": "BK-1"},
        )

        transaction = paystack.verify_transaction("ref-1")

        assert transaction.reference == "ref-1"
        assert transaction.is_successful
        assert transaction.amount_minor_units == 150000
        assert transaction.currency == "KES"
        assert transaction.customer_email == "client@example.com"
        assert transaction.paid_at == datetime(2026, 3, 10, 8, 15, tzinfo=UTC)
        assert transaction.metadata["booking_reference"] == "BK-1"

    def test_sends_bearer_token(self, paystack: PaystackService, gateway: FakeGateway):
        gateway.add("ref-1", amount=100, metadata={})

        paystack.verify_transaction("ref-1")

        request = gateway.requests[0]
        assert request.headers["Authorization"] == f"Bearer {TEST_SECRET_KEY}"
        assert request.url.path == "/transaction/verify/ref-1"

    def test_reference_is_escaped_in_verify_path(
        self, paystack: PaystackService, gateway: FakeGateway
    ):
        gateway.add("ref/../x?y", amount=100, metadata={})

        transaction = paystack.verify_transaction("ref/../x?y")

        request = gateway.requests[0]
        assert request.url.raw_path == b"/transaction/verify/ref%2F..%2Fx%3Fy"
        assert request.url.query == b""
        assert transaction.reference == "ref/../x?y"

    def test_metadata_sent_as_json_string_is_parsed(
        self, paystack: PaystackService, gateway: FakeGateway
    ):
        gateway.add("ref-1", amount=100, metadata={})
        gateway.transactions["ref-1"]["metadata"] = '{"payment_type": "invoice", "invoice_id": "INV-9"}'

        transaction = paystack.verify_transaction("ref-1")

        assert transaction.metadata == {"payment_type": "invoice", "invoice_id": "INV-9"}

    def test_failed_status_is_reported_not_raised(
        self, paystack: PaystackService, gateway: FakeGateway
    ):
        gateway.add("ref-1", amount=100, metadata={}, status="failed")

        transaction = paystack.verify_transaction("ref-1")

        assert transaction.is_successful is False

    def test_unknown_reference_raises(self, paystack: PaystackService):
        with pytest.raises(PaystackServiceError) as exc_info:
            paystack.verify_transaction("missing")

        assert exc_info.value.status_code == 404

    def test_status_false_raises(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"status": False, "message": "Invalid key"})
        )
        service = PaystackService(
            secret_key=TEST_SECRET_KEY, http_client=httpx.Client(transport=transport)
        )

        with pytest.raises(PaystackServiceError, match="Invalid key"):
            service.verify_transaction("ref-1")

    def test_transport_error_raises(self):
        def _fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        service = PaystackService(
            secret_key=TEST_SECRET_KEY,
            http_client=httpx.Client(transport=httpx.MockTransport(_fail)),
        )

        with pytest.raises(PaystackServiceError, match="request failed"):
            service.verify_transaction("ref-1")

    def test_invalid_json_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
        service = PaystackService(
            secret_key=TEST_SECRET_KEY, http_client=httpx.Client(transport=transport)
        )

        with pytest.raises(PaystackServiceError, match="invalid JSON"):
            service.verify_transaction("ref-1")


def test_payload_hash_is_sha256():
    digest = PaystackService.compute_payload_hash(b"{}")
    assert digest == "44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a"
