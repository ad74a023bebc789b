"""Enumeration types for fulfillment data models."""

from enum import Enum


class PaymentType(str, Enum):
    """Payment type tag carried in gateway transaction metadata."""

    BOOKING = "booking"
    BOOKING_BALANCE = "booking_balance"
    CONSULTATION = "consultation"
    INVOICE = "invoice"
    GIFT_CARD = "gift_card"
    LABS_WEB_SERVICES = "labs_web_services"
    LABS_TIER = "labs_tier"
    LABS_YEARLY_SUBSCRIPTION = "labs_yearly_subscription"
    COURSE_PURCHASE = "course_purchase"

    @classmethod
    def parse(cls, value: str | None) -> "PaymentType | None":
        """Return the matching member, or None for unknown tags."""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


# Metadata field holding the natural key for each payment type
NATURAL_KEY_FIELDS: dict[PaymentType, str] = {
    PaymentType.BOOKING: "booking_reference",
    PaymentType.BOOKING_BALANCE: "booking_id",
    PaymentType.CONSULTATION: "consultation_id",
    PaymentType.INVOICE: "invoice_id",
    PaymentType.GIFT_CARD: "gift_card_id",
    PaymentType.LABS_WEB_SERVICES: "order_id",
    PaymentType.LABS_TIER: "order_id",
    PaymentType.LABS_YEARLY_SUBSCRIPTION: "subscriber_id",
    PaymentType.COURSE_PURCHASE: "purchase_id",
}


class ProcessingResult(str, Enum):
    """Outcome of processing one webhook delivery."""

    SUCCESS = "success"
    REPLAY = "replay"
    SKIPPED = "skipped"
    UNKNOWN_TYPE = "unknown_type"
    ERROR = "error"


class RecordStatus(str, Enum):
    """Lifecycle status of a confirmed business record.

    Records are also written by the admin app, so this covers every status
    those screens set (invoices: draft, sent, expired; Labs orders:
    in_progress, delivered; tier orders: processing, failed).
    """

    DRAFT = "draft"
    SENT = "sent"
    PENDING = "pending"
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    PAID = "paid"
    ACTIVE = "active"
    PROCESSING = "processing"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DELIVERED = "delivered"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Statuses a payment moves to confirmed
AWAITING_PAYMENT = frozenset({RecordStatus.PENDING, RecordStatus.PENDING_PAYMENT})


class PaymentStatus(str, Enum):
    """Payment status stored on a confirmed record."""

    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    COMPLETED = "completed"  # Tier orders use completed instead of paid
    # Subscriber billing states set by the admin app
    ACTIVE = "active"
    OVERDUE = "overdue"
    SUSPENDED = "suspended"


class GiftCardStatus(str, Enum):
    """Status of a gift card in the ledger."""

    ACTIVE = "active"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
