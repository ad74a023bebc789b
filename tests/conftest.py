"""Pytest configuration and fixtures for the fulfillment pipeline tests.

This module provides reusable fixtures for testing:
- In-memory document store and record stores
- A fake Paystack API served through httpx.MockTransport
- Recording/failing email senders and a fake calendar
- Handler context, router and webhook handler wired to the fakes
- DynamoDB/SSM mocking with moto
"""

import hashlib
import hmac
import json
import os
from datetime import UTC, datetime
from typing import Any, Generator
from urllib.parse import unquote

import boto3
import httpx
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-studio")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DOCUMENT_STORE", "memory")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_fulfillment_secret")
os.environ.setdefault("PAYSTACK_WEBHOOK_SECRET", "sk_test_fulfillment_secret")

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from fulfillment.models.payment_event import PaymentEvent, PaymentMetadata  # noqa: E402
from fulfillment.models.records import PendingIntent  # noqa: E402
from fulfillment.services.availability import AvailabilityService  # noqa: E402
from fulfillment.services.clients import ClientDirectory  # noqa: E402
from fulfillment.services.collaborators import (  # noqa: E402
    CalendarEventDetails,
    RecordingEmailSender,
)
from fulfillment.services.document_store import InMemoryDocumentStore  # noqa: E402
from fulfillment.services.gift_cards import GiftCardLedger  # noqa: E402
from fulfillment.services.handlers import HandlerContext  # noqa: E402
from fulfillment.services.paystack_service import PaystackService  # noqa: E402
from fulfillment.services.record_stores import RecordStores  # noqa: E402
from fulfillment.services.referrals import ReferralCodeIssuer  # noqa: E402
from fulfillment.services.router import PaymentRouter  # noqa: E402
from fulfillment.services.webhook_handler import WebhookHandler  # noqa: E402
from fulfillment.settings import Settings  # noqa: E402

# === Test Configuration ===

TEST_SECRET_KEY = "sk_test_fulfillment_secret"
TEST_ADMIN_EMAIL = "owner@studio.test"
TEST_PAID_AT = "2026-03-10T08:15:00Z"


# === Helper Functions ===


def sign(payload: bytes, secret: str = TEST_SECRET_KEY) -> str:
    """Create a valid x-paystack-signature for a raw body."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()


def charge_success_body(reference: str, metadata: dict[str, Any] | None = None) -> bytes:
    """Create a charge.success delivery body."""
    return json.dumps(
        {
            "event": "charge.success",
            "data": {
                "reference": reference,
                "status": "success",
                "metadata": metadata or {},
            },
        }
    ).encode("utf-8")


class FakeGateway:
    """In-process stand-in for the Paystack verify endpoint."""

    def __init__(self) -> None:
        self.transactions: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        reference: str,
        *,
        amount: int,
        metadata: dict[str, Any],
        status: str = "success",
        currency: str = "KES",
        email: str = "client@example.com",
        paid_at: str = TEST_PAID_AT,
    ) -> None:
        """Register a transaction; amount is in minor units."""
        self.transactions[reference] = {
            "reference": reference,
            "status": status,
            "amount": amount,
            "currency": currency,
            "paid_at": paid_at,
            "customer": {"email": email},
            "metadata": metadata,
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reference = unquote(request.url.raw_path.decode().rsplit("/", 1)[-1])
        transaction = self.transactions.get(reference)
        if transaction is None:
            return httpx.Response(
                404, json={"status": False, "message": "Transaction reference not found"}
            )
        return httpx.Response(
            200,
            json={"status": True, "message": "Verification successful", "data": transaction},
        )


class FakeCalendarClient:
    """Calendar client that records events."""

    def __init__(self) -> None:
        self.events: list[CalendarEventDetails] = []

    def create_event(self, details: CalendarEventDetails) -> str | None:
        self.events.append(details)
        return f"cal-{len(self.events)}"


class FailingEmailSender:
    """Email sender whose provider is down."""

    def __init__(self) -> None:
        self.attempts = 0

    def send(self, to: str, subject: str, html: str) -> str | None:
        self.attempts += 1
        raise RuntimeError("SES unavailable")


def payment_event(
    payment_type: str,
    natural_key: str | None,
    *,
    amount: int,
    reference: str = "ref-1",
    key_field: str = "natural_key",
    customer_email: str | None = "client@example.com",
) -> PaymentEvent:
    """Build a verified event; amount is in minor units."""
    raw: dict[str, Any] = {"payment_type": payment_type}
    if natural_key is not None:
        raw[key_field] = natural_key
    return PaymentEvent(
        event_type="charge.success",
        reference=reference,
        amount_minor_units=amount,
        currency="KES",
        customer_email=customer_email,
        paid_at=datetime(2026, 3, 10, 8, 15, tzinfo=UTC),
        metadata=PaymentMetadata.from_raw(raw),
    )


def add_pending(
    stores: RecordStores,
    collection: str,
    natural_key: str,
    **payload: Any,
) -> PendingIntent:
    """Store a pending intent in one of the pending collections."""
    intent = PendingIntent(
        natural_key=natural_key,
        payload=payload,
        created_at=datetime(2026, 3, 1, 12, 0, tzinfo=UTC),
    )
    getattr(stores, collection).add(intent)
    return intent


# === Reset Fixtures ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset cached services before and after each test."""
    from fulfillment_api.dependencies import reset_services

    reset_services()
    yield
    reset_services()


# === Pipeline Fixtures ===


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        document_store="memory",
        business_notification_email=TEST_ADMIN_EMAIL,
        email_sender=TEST_ADMIN_EMAIL,
    )


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def stores(store: InMemoryDocumentStore) -> RecordStores:
    return RecordStores.from_store(store)


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def calendar() -> FakeCalendarClient:
    return FakeCalendarClient()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def paystack(gateway: FakeGateway) -> PaystackService:
    """PaystackService talking to the fake gateway."""
    return PaystackService(
        environment="test",
        secret_key=TEST_SECRET_KEY,
        http_client=httpx.Client(transport=httpx.MockTransport(gateway.handler)),
    )


def build_context(
    store: InMemoryDocumentStore,
    stores: RecordStores,
    email: Any,
    calendar: Any,
    settings: Settings,
) -> HandlerContext:
    return HandlerContext(
        stores=stores,
        email=email,
        calendar=calendar,
        gift_cards=GiftCardLedger(store),
        referrals=ReferralCodeIssuer(store),
        clients=ClientDirectory(store),
        availability=AvailabilityService(store),
        settings=settings,
    )


@pytest.fixture
def context(
    store: InMemoryDocumentStore,
    stores: RecordStores,
    email_sender: RecordingEmailSender,
    calendar: FakeCalendarClient,
    settings: Settings,
) -> HandlerContext:
    return build_context(store, stores, email_sender, calendar, settings)


@pytest.fixture
def router(context: HandlerContext) -> PaymentRouter:
    return PaymentRouter.from_context(context)


@pytest.fixture
def webhook_handler(
    paystack: PaystackService,
    router: PaymentRouter,
    store: InMemoryDocumentStore,
    email_sender: RecordingEmailSender,
    settings: Settings,
) -> WebhookHandler:
    return WebhookHandler(
        paystack=paystack,
        router=router,
        store=store,
        email=email_sender,
        settings=settings,
    )


# === AWS Fixtures ===


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@pytest.fixture
def documents_table(aws_credentials: None) -> Generator[Any, None, None]:
    """Create the mocked documents table."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        client.create_table(
            TableName="test-studio-documents",
            KeySchema=[{"AttributeName": "document_id", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "document_id", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        yield client


@pytest.fixture
def ssm_client(aws_credentials: None) -> Generator[Any, None, None]:
    """Create a mocked SSM client."""
    with mock_aws():
        yield boto3.client("ssm", region_name="eu-west-1")
