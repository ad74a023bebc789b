"""Pydantic models for the payment fulfillment pipeline."""

from .enums import (
    AWAITING_PAYMENT,
    NATURAL_KEY_FIELDS,
    GiftCardStatus,
    PaymentStatus,
    PaymentType,
    ProcessingResult,
    RecordStatus,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    ConcurrentWriteError,
    ErrorCode,
    ErrorResponse,
    FulfillmentError,
    VersionConflict,
)
from .payment_event import (
    PaymentEvent,
    PaymentMetadata,
    VerifiedTransaction,
    convert_from_subunits,
)
from .records import (
    Booking,
    ConfirmedRecord,
    Consultation,
    CoursePurchase,
    GiftCardGrant,
    Invoice,
    PaymentLedgerEntry,
    PendingIntent,
    ShopOrder,
    SlotReservation,
    Subscriber,
)
from .webhook_event import WebhookEventLog

__all__ = [
    # Enums
    "AWAITING_PAYMENT",
    "GiftCardStatus",
    "NATURAL_KEY_FIELDS",
    "PaymentStatus",
    "PaymentType",
    "ProcessingResult",
    "RecordStatus",
    # Errors
    "ConcurrentWriteError",
    "ErrorCode",
    "ErrorResponse",
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "FulfillmentError",
    "VersionConflict",
    # Payment events
    "PaymentEvent",
    "PaymentMetadata",
    "VerifiedTransaction",
    "convert_from_subunits",
    # Records
    "Booking",
    "ConfirmedRecord",
    "Consultation",
    "CoursePurchase",
    "GiftCardGrant",
    "Invoice",
    "PaymentLedgerEntry",
    "PendingIntent",
    "ShopOrder",
    "SlotReservation",
    "Subscriber",
    # Webhook
    "WebhookEventLog",
]
