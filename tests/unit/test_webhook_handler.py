"""Unit tests for WebhookHandler (business flow without HTTP)."""

import json

import pytest

from conftest import (
    TEST_ADMIN_EMAIL,
    FakeGateway,
    add_pending,
    charge_success_body,
    sign,
)
from fulfillment.models.enums import ProcessingResult
from fulfillment.models.errors import ErrorCode, FulfillmentError
from fulfillment.services.collaborators import RecordingEmailSender
from fulfillment.services.document_store import InMemoryDocumentStore
from fulfillment.services.record_stores import RecordStores
from fulfillment.services.webhook_handler import WebhookHandler

BOOKING_METADATA = {"payment_type": "booking", "booking_reference": "BK-1"}


def audit_entries(store: InMemoryDocumentStore) -> list[dict]:
    return [
        entry
        for name in store.names()
        if name.startswith("webhook-events/")
        for entry in store.read(name).body
    ]


def deliver(handler: WebhookHandler, body: bytes):
    return handler.process(body, sign(body))


class TestSignature:
    def test_invalid_signature_raises_before_any_access(
        self, webhook_handler: WebhookHandler, store: InMemoryDocumentStore, gateway: FakeGateway
    ):
        body = charge_success_body("ref-1", BOOKING_METADATA)

        with pytest.raises(FulfillmentError) as exc_info:
            webhook_handler.process(body, sign(body)[::-1])

        assert exc_info.value.code == ErrorCode.INVALID_WEBHOOK_SIGNATURE
        assert store.names() == []
        assert gateway.requests == []

    def test_missing_signature_raises(self, webhook_handler: WebhookHandler):
        with pytest.raises(FulfillmentError):
            webhook_handler.process(b"{}", None)


class TestIgnoredDeliveries:
    def test_malformed_json_is_skipped(
        self, webhook_handler: WebhookHandler, store: InMemoryDocumentStore
    ):
        outcome = deliver(webhook_handler, b"not json")

        assert outcome.result == ProcessingResult.SKIPPED
        assert audit_entries(store)[0]["error_message"] == "Webhook payload is not valid JSON"

    def test_other_event_types_are_skipped(
        self, webhook_handler: WebhookHandler, gateway: FakeGateway
    ):
        body = json.dumps({"event": "transfer.success", "data": {"reference": "ref-1"}}).encode()

        outcome = deliver(webhook_handler, body)

        assert outcome.result == ProcessingResult.SKIPPED
        assert outcome.event_type == "transfer.success"
        assert gateway.requests == []

    def test_missing_reference_is_skipped(self, webhook_handler: WebhookHandler):
        body = json.dumps({"event": "charge.success", "data": {}}).encode()

        assert deliver(webhook_handler, body).result == ProcessingResult.SKIPPED

    def test_gateway_failure_is_skipped(self, webhook_handler: WebhookHandler):
        outcome = deliver(webhook_handler, charge_success_body("ref-unknown", BOOKING_METADATA))

        assert outcome.result == ProcessingResult.SKIPPED
        assert "Payment gateway API error" in outcome.message

    def test_unsuccessful_transaction_is_skipped(
        self,
        webhook_handler: WebhookHandler,
        gateway: FakeGateway,
        stores: RecordStores,
    ):
        add_pending(stores, "pending_bookings", "BK-1", email="amina@example.com")
        gateway.add("ref-1", amount=200000, metadata=BOOKING_METADATA, status="abandoned")

        outcome = deliver(webhook_handler, charge_success_body("ref-1", BOOKING_METADATA))

        assert outcome.result == ProcessingResult.SKIPPED
        assert "abandoned" in outcome.message
        assert stores.pending_bookings.find("BK-1") is not None


class TestProcessing:
    def test_verified_metadata_wins_over_body(
        self,
        webhook_handler: WebhookHandler,
        gateway: FakeGateway,
        stores: RecordStores,
    ):
        add_pending(stores, "pending_bookings", "BK-1", email="amina@example.com", final_price=2000)
        gateway.add("ref-1", amount=200000, metadata=BOOKING_METADATA)
        forged = {"payment_type": "gift_card", "gift_card_id": "GIFT-1"}

        outcome = deliver(webhook_handler, charge_success_body("ref-1", forged))

        assert outcome.result == ProcessingResult.SUCCESS
        assert outcome.payment_type == "booking"
        assert outcome.natural_key == "BK-1"
        assert stores.bookings.find("BK-1") is not None

    def test_body_metadata_used_when_gateway_has_none(
        self,
        webhook_handler: WebhookHandler,
        gateway: FakeGateway,
        stores: RecordStores,
    ):
        add_pending(stores, "pending_bookings", "BK-1", email="amina@example.com")
        gateway.add("ref-1", amount=200000, metadata={})

        outcome = deliver(webhook_handler, charge_success_body("ref-1", BOOKING_METADATA))

        assert outcome.result == ProcessingResult.SUCCESS

    def test_admin_is_notified_and_event_audited(
        self,
        webhook_handler: WebhookHandler,
        gateway: FakeGateway,
        stores: RecordStores,
        store: InMemoryDocumentStore,
        email_sender: RecordingEmailSender,
    ):
        add_pending(stores, "pending_bookings", "BK-1", email="amina@example.com")
        gateway.add("ref-1", amount=200000, metadata=BOOKING_METADATA)
        body = charge_success_body("ref-1", BOOKING_METADATA)

        deliver(webhook_handler, body)

        admin = [m for m in email_sender.sent if m["to"] == TEST_ADMIN_EMAIL]
        assert [m["subject"] for m in admin] == ["Payment Successful: ref-1"]
        entries = audit_entries(store)
        assert len(entries) == 1
        assert entries[0]["reference"] == "ref-1"
        assert entries[0]["processing_result"] == "success"
        assert entries[0]["natural_key"] == "BK-1"
        assert entries[0]["payload_hash"] == webhook_handler.paystack.compute_payload_hash(body)

    def test_unknown_type_is_acknowledged_without_changes(
        self,
        webhook_handler: WebhookHandler,
        gateway: FakeGateway,
        store: InMemoryDocumentStore,
    ):
        metadata = {"payment_type": "membership", "natural_key": "M-1"}
        gateway.add("ref-1", amount=100000, metadata=metadata)

        outcome = deliver(webhook_handler, charge_success_body("ref-1", metadata))

        assert outcome.result == ProcessingResult.UNKNOWN_TYPE
        assert all(name.startswith("webhook-events/") for name in store.names())

    def test_audit_failure_does_not_fail_delivery(
        self,
        webhook_handler: WebhookHandler,
        gateway: FakeGateway,
        stores: RecordStores,
        monkeypatch: pytest.MonkeyPatch,
    ):
        add_pending(stores, "pending_bookings", "BK-1", email="amina@example.com")
        gateway.add("ref-1", amount=200000, metadata=BOOKING_METADATA)
        original_write = webhook_handler.store.write

        def _write(name, body, expected_version):
            if name.startswith("webhook-events/"):
                raise RuntimeError("audit table unavailable")
            return original_write(name, body, expected_version)

        monkeypatch.setattr(webhook_handler.store, "write", _write)

        outcome = deliver(webhook_handler, charge_success_body("ref-1", BOOKING_METADATA))

        assert outcome.result == ProcessingResult.SUCCESS
        assert stores.bookings.find("BK-1") is not None
