"""Backend services for the payment fulfillment pipeline."""

from .document_store import (
    DocumentStore,
    DynamoDBDocumentStore,
    InMemoryDocumentStore,
    get_document_store,
)
from .dynamodb import DynamoDBService
from .paystack_service import PaystackService, PaystackServiceError, get_paystack_service
from .record_stores import ConfirmedStore, PendingStore, RecordStores, SlotReservationStore
from .ssm_service import SSMService, SSMServiceError, get_ssm_service

__all__ = [
    "ConfirmedStore",
    "DocumentStore",
    "DynamoDBDocumentStore",
    "DynamoDBService",
    "InMemoryDocumentStore",
    "PaystackService",
    "PaystackServiceError",
    "PendingStore",
    "RecordStores",
    "SSMService",
    "SSMServiceError",
    "SlotReservationStore",
    "get_document_store",
    "get_paystack_service",
    "get_ssm_service",
]
