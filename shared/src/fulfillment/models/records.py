"""Pending intents and the confirmed records they are promoted into.

Every confirmed record carries ``natural_key``: the caller-chosen id that
joins the pending intent, the record and the payment metadata. At most one
record exists per natural key in a collection.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import PaymentStatus, RecordStatus


class PendingIntent(BaseModel):
    """A tentative, pre-payment business object awaiting confirmation."""

    natural_key: str = Field(..., description="Join key chosen at submit time")
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class SlotReservation(BaseModel):
    """Short-lived hold on a time slot while its booking awaits payment."""

    natural_key: str
    date: str = Field(..., description="YYYY-MM-DD", examples=["2026-03-14"])
    time_slot: str = Field(..., examples=["2026-03-14T09:30:00+03:00"])
    created_at: datetime | None = None


class PaymentLedgerEntry(BaseModel):
    """One discrete payment applied to a record."""

    amount: Decimal = Field(..., ge=0, description="Amount in main currency units")
    method: str = "paystack"
    date: str = Field(..., description="ISO timestamp of the payment")
    transaction_id: str


class ConfirmedRecord(BaseModel):
    """Base for durable records produced by the pipeline."""

    model_config = ConfigDict(extra="allow")

    natural_key: str
    status: RecordStatus = RecordStatus.CONFIRMED
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: str | None = None
    transaction_id: str | None = None
    paid_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status in (PaymentStatus.PAID, PaymentStatus.COMPLETED)


class LedgerMixin(BaseModel):
    """Running total of payments with deduplication by transaction id."""

    amount_paid: Decimal = Decimal(0)
    payments: list[PaymentLedgerEntry] = Field(default_factory=list)

    def has_payment(self, transaction_id: str) -> bool:
        return any(p.transaction_id == transaction_id for p in self.payments)

    def record_payment(self, entry: PaymentLedgerEntry) -> bool:
        """Append a ledger entry unless the transaction was already applied.

        Returns:
            True if the entry was appended
        """
        if self.has_payment(entry.transaction_id):
            return False
        self.payments.append(entry)
        self.amount_paid = Decimal(self.amount_paid) + Decimal(entry.amount)
        return True


class Booking(LedgerMixin, ConfirmedRecord):
    """Confirmed studio appointment.

    ``natural_key`` is the booking reference; ``booking_id`` is the
    platform id that balance payments address.
    """

    booking_id: str
    name: str = ""
    email: str = ""
    phone: str | None = None
    service: str = ""
    services: list[Any] = Field(default_factory=list)
    date: str | None = None
    time_slot: str | None = None
    total_duration_hours: float = 2
    location: str | None = None
    original_price: Decimal = Decimal(0)
    discount: Decimal = Decimal(0)
    final_price: Decimal = Decimal(0)
    deposit: Decimal = Decimal(0)
    gift_card_code: str | None = None
    gift_card_redeemed: bool = False
    gift_card_remaining_balance: Decimal | None = None
    calendar_event_id: str | None = None
    manage_token: str | None = None
    cancellation_cutoff: str | None = None
    paid_in_full_at: str | None = None
    is_walk_in: bool = False

    @property
    def is_paid_in_full(self) -> bool:
        return Decimal(self.amount_paid) >= Decimal(self.final_price)


class Consultation(ConfirmedRecord):
    """Paid consultation session."""

    name: str = ""
    email: str = ""
    phone: str | None = None
    business_name: str | None = None
    preferred_date: str | None = None
    preferred_time: str | None = None
    meeting_type: str | None = None
    amount: Decimal | None = None


class Invoice(ConfirmedRecord):
    """Invoice raised by an admin, paid through a payment link."""

    status: RecordStatus = RecordStatus.PENDING
    client_name: str = ""
    email: str = ""
    total: Decimal = Decimal(0)


class ShopOrder(LedgerMixin, ConfirmedRecord):
    """Labs order: a web-services cart checkout or a tier purchase."""

    status: RecordStatus = RecordStatus.PENDING
    kind: str = "web_services"
    name: str = ""
    email: str = ""
    phone_number: str | None = None
    business_name: str | None = None
    total: Decimal = Decimal(0)
    initial_payment: Decimal | None = None
    tier_id: str | None = None
    referral_code: str | None = None
    completed_at: str | None = None

    @property
    def is_paid_in_full(self) -> bool:
        return Decimal(self.amount_paid) >= Decimal(self.total)


class Subscriber(ConfirmedRecord):
    """Yearly web-services subscriber."""

    status: RecordStatus = RecordStatus.PENDING
    name: str = ""
    email: str = ""
    total_annual_amount: Decimal = Decimal(0)
    last_renewal_date: str | None = None
    next_renewal_date: str | None = None
    renewal_references: list[str] = Field(default_factory=list)


class GiftCardGrant(ConfirmedRecord):
    """Purchased gift card, issued into the ledger on payment."""

    code: str | None = None
    amount: Decimal = Decimal(0)
    purchaser_name: str = ""
    purchaser_email: str = ""
    recipient_name: str | None = None
    recipient_email: str | None = None
    message: str | None = None
    expires_at: str | None = None


class CoursePurchase(ConfirmedRecord):
    """Online course purchase."""

    status: RecordStatus = RecordStatus.PENDING
    course_id: str | None = None
    course_title: str | None = None
    name: str = ""
    email: str = ""
    access_granted: bool = False
