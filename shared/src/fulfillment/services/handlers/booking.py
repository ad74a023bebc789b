"""Studio bookings: deposit payments (promotion) and balance payments."""

import datetime as dt
import secrets
import string
from decimal import Decimal
from typing import Any

from fulfillment.models.enums import (
    AWAITING_PAYMENT,
    PaymentStatus,
    PaymentType,
    ProcessingResult,
    RecordStatus,
)
from fulfillment.models.errors import ErrorCode
from fulfillment.models.payment_event import PaymentEvent
from fulfillment.models.records import Booking, PaymentLedgerEntry, PendingIntent
from fulfillment.services import notifications
from fulfillment.services.collaborators import CalendarEventDetails
from fulfillment.services.gift_cards import GiftCardRedemptionError
from fulfillment.services.record_stores import ConfirmedStore, PendingStore
from fulfillment.services.side_effects import SideEffect
from fulfillment.utils.logging import get_logger

from .base import HandlerResult, PaymentHandler, PromotingHandler

logger = get_logger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_booking_id(now: dt.datetime) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"booking-{int(now.timestamp() * 1000)}-{suffix}"


def parse_slot(value: str | None) -> dt.datetime | None:
    if not value:
        return None
    try:
        return dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def apply_booking_payment(
    booking: Booking, event: PaymentEvent, *, seed_from_deposit: bool = True
) -> bool:
    """Record a payment against a booking and settle its status.

    Args:
        booking: Booking to update in place
        event: Verified payment
        seed_from_deposit: Treat the stored deposit as already paid when the
            ledger is empty. Off for bookings built from this very payment.

    Returns:
        False if this transaction was already applied
    """
    if (
        seed_from_deposit
        and not booking.payments
        and Decimal(booking.amount_paid) == 0
        and Decimal(booking.deposit) > 0
    ):
        # Records created before the ledger existed carried the paid total in deposit
        booking.amount_paid = Decimal(booking.deposit)

    entry = PaymentLedgerEntry(
        amount=event.amount,
        date=event.paid_at_iso,
        transaction_id=event.reference,
    )
    if not booking.record_payment(entry):
        return False

    booking.payment_method = "paystack"
    booking.transaction_id = event.reference
    booking.paid_at = event.paid_at_iso
    booking.updated_at = dt.datetime.now(dt.UTC).isoformat()
    if booking.status in AWAITING_PAYMENT:
        booking.status = RecordStatus.CONFIRMED

    if booking.is_paid_in_full:
        booking.payment_status = PaymentStatus.PAID
        if not booking.paid_in_full_at:
            booking.paid_in_full_at = event.paid_at_iso
        if booking.status == RecordStatus.CONFIRMED:
            booking.status = RecordStatus.PAID
    else:
        booking.payment_status = PaymentStatus.PARTIAL
    return True


def _decimal(value: Any, default: Decimal = Decimal(0)) -> Decimal:
    if value in (None, ""):
        return default
    return Decimal(str(value))


class BookingHandler(PromotingHandler[Booking]):
    """Deposit payment for a booking submitted through the website."""

    payment_type = PaymentType.BOOKING

    @property
    def pending(self) -> PendingStore:
        return self.context.stores.pending_bookings

    @property
    def confirmed(self) -> ConfirmedStore[Booking]:
        return self.context.stores.bookings

    def record_id(self, record: Booking) -> str:
        return record.booking_id

    def release(self, key: str) -> None:
        released = self.context.stores.slot_reservations.release(key)
        if released:
            logger.info("Released %d slot reservation(s) for %s", released, key)

    def fast_path(self, event: PaymentEvent, key: str) -> HandlerResult:
        updated = self.confirmed.update(key, lambda booking: apply_booking_payment(booking, event))
        if updated is None:
            return self.skip(event, ErrorCode.RECORD_NOT_FOUND)
        booking, applied = updated
        if not applied:
            return self.result(
                ProcessingResult.REPLAY, event, "Payment already applied", booking.booking_id
            )
        return self.result(
            ProcessingResult.SUCCESS, event, "Existing booking updated", booking.booking_id
        )

    def build_record(self, event: PaymentEvent, intent: PendingIntent) -> Booking:
        data = intent.payload
        settings = self.context.settings
        now = dt.datetime.now(dt.UTC)

        start = parse_slot(data.get("time_slot"))
        cutoff = None
        if start is not None:
            cutoff = (start - dt.timedelta(hours=settings.client_manage_window_hours)).isoformat()

        final_price = _decimal(data.get("final_price"))
        booking = Booking(
            natural_key=intent.natural_key,
            booking_id=generate_booking_id(now),
            name=data.get("name", ""),
            email=data.get("email", ""),
            phone=data.get("phone"),
            service=data.get("service", ""),
            services=data.get("services") or [],
            date=data.get("date"),
            time_slot=data.get("time_slot"),
            total_duration_hours=float(data.get("total_duration") or 2),
            location=data.get("location") or settings.studio_location,
            original_price=_decimal(data.get("original_price"), final_price),
            discount=_decimal(data.get("discount")),
            final_price=final_price,
            deposit=_decimal(data.get("deposit"), event.amount),
            gift_card_code=data.get("gift_card_code"),
            is_walk_in=bool(data.get("is_walk_in", False)),
            manage_token=secrets.token_hex(24),
            cancellation_cutoff=cutoff,
            created_at=now.isoformat(),
        )
        apply_booking_payment(booking, event, seed_from_deposit=False)
        return booking

    def promotion_side_effects(self, event: PaymentEvent, record: Booking) -> list[SideEffect]:
        steps = [SideEffect("create_calendar_event", lambda: self._create_calendar_event(record))]
        if record.gift_card_code and Decimal(record.deposit) > 0:
            steps.append(SideEffect("redeem_gift_card", lambda: self._redeem_gift_card(record)))
        if record.email:
            steps.append(SideEffect("upsert_client_account", lambda: self._upsert_client(record)))
        if record.date:
            steps.append(SideEffect("update_capacity", lambda: self._update_capacity(record)))
        if record.email:
            steps.append(
                SideEffect(
                    "send_confirmation_email",
                    lambda: self.context.send(
                        notifications.booking_confirmation(record, event.currency)
                    ),
                )
            )
        return steps

    def _create_calendar_event(self, booking: Booking) -> str | None:
        start = parse_slot(booking.time_slot)
        if start is None:
            raise ValueError(f"Booking {booking.booking_id} has no valid time slot")
        end = start + dt.timedelta(hours=booking.total_duration_hours)
        settings = self.context.settings
        details = CalendarEventDetails(
            summary=f"Lash Appointment - {booking.name}",
            description=(
                f"Client: {booking.name}\n"
                f"Email: {booking.email}\n"
                f"Phone: {booking.phone or ''}\n"
                f"Service: {booking.service}\n"
                f"Location: {booking.location}\n"
                f"Deposit: KES {booking.deposit}"
            ),
            start=start.isoformat(),
            end=end.isoformat(),
            location=booking.location or settings.studio_location,
            timezone=settings.calendar_timezone,
            attendees=[a for a in (settings.business_notification_email, booking.email) if a],
        )
        event_id = self.context.calendar.create_event(details)
        if event_id:

            def _link(b: Booking) -> None:
                b.calendar_event_id = event_id

            self.confirmed.update(booking.natural_key, _link)
        return event_id

    def _redeem_gift_card(self, booking: Booking) -> Decimal | None:
        outcome = self.context.gift_cards.redeem(
            booking.gift_card_code or "",
            Decimal(booking.deposit),
            booking.booking_id,
            booking.email,
        )
        if not outcome.success:
            raise GiftCardRedemptionError(booking.gift_card_code or "", outcome.error)

        def _mark(b: Booking) -> None:
            b.gift_card_redeemed = True
            b.gift_card_remaining_balance = outcome.remaining_balance

        self.confirmed.update(booking.natural_key, _mark)
        return outcome.remaining_balance

    def _upsert_client(self, booking: Booking) -> str:
        account = self.context.clients.upsert(
            booking.email,
            booking.name,
            booking.phone,
            history_entry={
                "appointment_id": booking.booking_id,
                "date": booking.date,
                "service": booking.service,
                "service_type": "full-set",
                "lash_tech": "Lash Technician",
            },
        )
        return account.user_id

    def _update_capacity(self, booking: Booking) -> bool | None:
        return self.context.availability.update_fully_booked_state(
            booking.date or "", self.confirmed.all()
        )


class BookingBalanceHandler(PaymentHandler):
    """Further payments against a confirmed booking, addressed by booking_id.

    Each payment is a discrete ledger entry; the booking flips to paid once
    the running total reaches the final price.
    """

    payment_type = PaymentType.BOOKING_BALANCE

    def handle(self, event: PaymentEvent) -> HandlerResult:
        key = event.natural_key
        if not key:
            return self.skip(event, ErrorCode.MISSING_NATURAL_KEY)

        updated = self.context.stores.bookings.update(
            key, lambda booking: apply_booking_payment(booking, event)
        )
        if updated is None:
            return self.skip(event, ErrorCode.RECORD_NOT_FOUND)

        booking, applied = updated
        if not applied:
            return self.result(
                ProcessingResult.REPLAY, event, "Payment already applied", booking.booking_id
            )

        if booking.is_paid_in_full:
            logger.info("Booking %s paid in full", booking.booking_id)

        steps = []
        if booking.email:
            steps.append(
                SideEffect(
                    "send_payment_receipt",
                    lambda: self.context.send(notifications.booking_payment_receipt(booking, event)),
                )
            )
        report = self.run_side_effects(event, steps)
        message = "Paid in full" if booking.is_paid_in_full else "Partial payment recorded"
        return self.result(
            ProcessingResult.SUCCESS, event, message, booking.booking_id, side_effects=report
        )
