"""FastAPI dependency injection providers for the fulfillment pipeline.

Services are lazily instantiated and cached with @lru_cache so one Lambda
container (or one uvicorn worker) builds the graph once.

Usage in routes:
    from fulfillment_api.dependencies import get_webhook_handler

    @router.post("/webhook")
    async def receive(handler: WebhookHandler = Depends(get_webhook_handler)):
        ...

Service Dependency Graph:
    DocumentStore (DynamoDB, or in-memory with DOCUMENT_STORE=memory)
        ├── RecordStores
        ├── GiftCardLedger / ReferralCodeIssuer / ClientDirectory / AvailabilityService
        └── HandlerContext
                └── PaymentRouter
                        └── WebhookHandler ── PaystackService

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from fulfillment.services.availability import AvailabilityService
from fulfillment.services.clients import ClientDirectory
from fulfillment.services.collaborators import (
    CalendarClient,
    EmailSender,
    NullCalendarClient,
    RecordingEmailSender,
    SESEmailSender,
)
from fulfillment.services.document_store import DocumentStore, get_document_store
from fulfillment.services.gift_cards import GiftCardLedger
from fulfillment.services.handlers import HandlerContext
from fulfillment.services.paystack_service import get_paystack_service
from fulfillment.services.record_stores import RecordStores
from fulfillment.services.referrals import ReferralCodeIssuer
from fulfillment.services.router import PaymentRouter
from fulfillment.services.webhook_handler import WebhookHandler
from fulfillment.settings import Settings, get_settings


def get_store() -> DocumentStore:
    return get_document_store()


@lru_cache
def get_record_stores() -> RecordStores:
    """Get cached RecordStores bound to the document store."""
    return RecordStores.from_store(
        get_store(), max_attempts=get_settings().store_max_write_attempts
    )


@lru_cache
def get_email_sender() -> EmailSender:
    """Get the email sender.

    Returns:
        RecordingEmailSender when running against the in-memory store,
        otherwise SESEmailSender from the configured sender address.
    """
    settings = get_settings()
    if settings.document_store == "memory":
        return RecordingEmailSender()
    return SESEmailSender(settings.email_sender)


@lru_cache
def get_calendar_client() -> CalendarClient:
    return NullCalendarClient()


@lru_cache
def get_handler_context() -> HandlerContext:
    """Get cached HandlerContext with every collaborator wired in."""
    settings: Settings = get_settings()
    store = get_store()
    attempts = settings.store_max_write_attempts
    return HandlerContext(
        stores=get_record_stores(),
        email=get_email_sender(),
        calendar=get_calendar_client(),
        gift_cards=GiftCardLedger(store, attempts),
        referrals=ReferralCodeIssuer(store, attempts),
        clients=ClientDirectory(store, attempts),
        availability=AvailabilityService(store, attempts),
        settings=settings,
    )


@lru_cache
def get_payment_router() -> PaymentRouter:
    return PaymentRouter.from_context(get_handler_context())


@lru_cache
def get_webhook_handler() -> WebhookHandler:
    """Get cached WebhookHandler.

    Returns:
        WebhookHandler configured with the Paystack client, the router and
        the shared email sender.
    """
    return WebhookHandler(
        paystack=get_paystack_service(),
        router=get_payment_router(),
        store=get_store(),
        email=get_email_sender(),
        settings=get_settings(),
    )


def reset_services() -> None:
    """Clear all cached service instances.

    Call this in test fixtures to ensure clean state between tests.
    Also resets the settings, the document store, the DynamoDB and SSM
    singletons and the Paystack client.

    Example:
        @pytest.fixture(autouse=True)
        def reset_state():
            yield
            reset_services()
    """
    from fulfillment.services.document_store import reset_document_store
    from fulfillment.services.dynamodb import reset_dynamodb_service
    from fulfillment.services.ssm_service import SSMService, get_ssm_service

    get_record_stores.cache_clear()
    get_email_sender.cache_clear()
    get_calendar_client.cache_clear()
    get_handler_context.cache_clear()
    get_payment_router.cache_clear()
    get_webhook_handler.cache_clear()

    get_settings.cache_clear()
    get_paystack_service.cache_clear()
    get_ssm_service.cache_clear()
    SSMService.reset()
    reset_document_store()
    reset_dynamodb_service()
