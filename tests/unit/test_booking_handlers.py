"""Unit tests for booking deposit and balance payments."""

from decimal import Decimal

import pytest

from conftest import FailingEmailSender, FakeCalendarClient, add_pending, build_context, payment_event
from fulfillment.models.enums import PaymentStatus, ProcessingResult, RecordStatus
from fulfillment.models.errors import ErrorCode
from fulfillment.models.records import Booking, SlotReservation
from fulfillment.services.collaborators import RecordingEmailSender
from fulfillment.services.document_store import InMemoryDocumentStore
from fulfillment.services.handlers import BookingBalanceHandler, BookingHandler, HandlerContext
from fulfillment.services.handlers.booking import apply_booking_payment, generate_booking_id
from fulfillment.services.record_stores import RecordStores
from fulfillment.settings import Settings

# Monday; default weekday slots are 09:30, 12:00, 14:30 and 16:30
BOOKING_DATE = "2026-03-16"
BOOKING_SLOT = "2026-03-16T09:30:00+03:00"


def pending_booking(stores: RecordStores, key: str = "BK-1", **overrides) -> None:
    payload = {
        "name": "Amina Otieno",
        "email": "amina@example.com",
        "phone": "+254700000001",
        "service": "Classic Full Set",
        "date": BOOKING_DATE,
        "time_slot": BOOKING_SLOT,
        "total_duration": 2,
        "original_price": 6000,
        "final_price": 6000,
        "deposit": 2000,
    }
    payload.update(overrides)
    add_pending(stores, "pending_bookings", key, **payload)
    stores.slot_reservations.add(
        SlotReservation(natural_key=key, date=BOOKING_DATE, time_slot=payload["time_slot"])
    )


def deposit_event(key: str = "BK-1", amount: int = 200000, reference: str = "ref-1"):
    return payment_event(
        "booking", key, amount=amount, reference=reference, key_field="booking_reference"
    )


def confirmed_booking(stores: RecordStores, **overrides) -> Booking:
    fields = {
        "natural_key": "BK-1",
        "booking_id": "booking-1773650000000-abcdefghi",
        "email": "amina@example.com",
        "final_price": Decimal(6000),
        "deposit": Decimal(2000),
    }
    fields.update(overrides)
    booking = Booking(**fields)
    stores.bookings.upsert(booking)
    return booking


# === Promotion ===


class TestBookingPromotion:
    def test_promotes_pending_booking(
        self,
        context: HandlerContext,
        stores: RecordStores,
        email_sender: RecordingEmailSender,
        calendar: FakeCalendarClient,
    ):
        pending_booking(stores)

        result = BookingHandler(context).handle(deposit_event())

        assert result.outcome == ProcessingResult.SUCCESS
        assert result.failed_side_effects == []
        booking = stores.bookings.find("BK-1")
        assert booking is not None
        assert result.record_id == booking.booking_id
        assert booking.booking_id.startswith("booking-")
        assert booking.amount_paid == Decimal(2000)
        assert booking.payment_status == PaymentStatus.PARTIAL
        assert booking.status == RecordStatus.CONFIRMED
        assert [p.transaction_id for p in booking.payments] == ["ref-1"]
        assert len(booking.manage_token) == 48
        assert booking.cancellation_cutoff == "2026-03-13T09:30:00+03:00"
        assert booking.calendar_event_id == "cal-1"

        assert stores.pending_bookings.find("BK-1") is None
        assert stores.slot_reservations.find("BK-1") == []

        assert calendar.events[0].start == BOOKING_SLOT
        assert calendar.events[0].end == "2026-03-16T11:30:00+03:00"
        assert [m["subject"] for m in email_sender.sent] == ["Your appointment is confirmed"]

    def test_creates_client_account_with_history(self, context: HandlerContext, stores: RecordStores):
        pending_booking(stores, email="Amina@Example.com ")

        BookingHandler(context).handle(deposit_event())

        user = context.clients.find("amina@example.com")
        assert user is not None
        history = context.clients.history(user["id"])
        assert [h["appointment_id"] for h in history] == [stores.bookings.find("BK-1").booking_id]

    def test_paid_in_full_at_promotion(self, context: HandlerContext, stores: RecordStores):
        pending_booking(stores, deposit=6000)

        BookingHandler(context).handle(deposit_event(amount=600000))

        booking = stores.bookings.find("BK-1")
        assert booking.payment_status == PaymentStatus.PAID
        assert booking.status == RecordStatus.PAID
        assert booking.paid_in_full_at == "2026-03-10T08:15:00+00:00"

    def test_redelivery_is_replay(
        self, context: HandlerContext, stores: RecordStores, email_sender: RecordingEmailSender
    ):
        pending_booking(stores)
        handler = BookingHandler(context)
        handler.handle(deposit_event())

        result = handler.handle(deposit_event())

        assert result.outcome == ProcessingResult.REPLAY
        assert len(stores.bookings.all()) == 1
        assert stores.bookings.find("BK-1").amount_paid == Decimal(2000)
        assert len(email_sender.sent) == 1

    def test_no_pending_intent_is_skipped(self, context: HandlerContext, store: InMemoryDocumentStore):
        result = BookingHandler(context).handle(deposit_event())

        assert result.outcome == ProcessingResult.SKIPPED
        assert result.error_code == ErrorCode.RECORD_NOT_FOUND
        assert store.names() == []

    def test_missing_natural_key_is_skipped(self, context: HandlerContext):
        result = BookingHandler(context).handle(deposit_event(key=None))

        assert result.error_code == ErrorCode.MISSING_NATURAL_KEY

    def test_completes_interrupted_promotion(
        self, context: HandlerContext, stores: RecordStores, email_sender: RecordingEmailSender
    ):
        pending_booking(stores)
        handler = BookingHandler(context)
        event = deposit_event()
        # Confirmed write landed, then the process died before removing the intent
        stores.bookings.insert_if_absent(handler.build_record(event, stores.pending_bookings.find("BK-1")))

        result = handler.handle(event)

        assert result.outcome == ProcessingResult.SUCCESS
        assert len(stores.bookings.all()) == 1
        assert stores.bookings.find("BK-1").amount_paid == Decimal(2000)
        assert stores.pending_bookings.find("BK-1") is None
        assert stores.slot_reservations.find("BK-1") == []
        assert len(email_sender.sent) == 1

        assert handler.handle(event).outcome == ProcessingResult.REPLAY

    def test_lost_insert_race_takes_fast_path(
        self, context: HandlerContext, stores: RecordStores, monkeypatch: pytest.MonkeyPatch
    ):
        pending_booking(stores)
        handler = BookingHandler(context)
        event = deposit_event()
        original_insert = stores.bookings.insert_if_absent

        def _concurrent_insert(record: Booking) -> bool:
            # Another delivery of the same payment promotes first
            original_insert(record)
            stores.pending_bookings.remove("BK-1")
            return False

        monkeypatch.setattr(stores.bookings, "insert_if_absent", _concurrent_insert)

        result = handler.handle(event)

        assert result.outcome == ProcessingResult.REPLAY
        assert len(stores.bookings.all()) == 1

    def test_intent_removed_by_concurrent_delivery_runs_side_effects_once(
        self,
        context: HandlerContext,
        stores: RecordStores,
        email_sender: RecordingEmailSender,
        calendar: FakeCalendarClient,
        monkeypatch: pytest.MonkeyPatch,
    ):
        pending_booking(stores)
        event = deposit_event()
        original_remove = stores.pending_bookings.remove
        concurrent_results = []
        redelivered = False

        def _remove_after_redelivery(key: str) -> bool:
            nonlocal redelivered
            if not redelivered:
                # A redelivery sees the new record and the leftover intent first
                redelivered = True
                concurrent_results.append(BookingHandler(context).handle(event))
            return original_remove(key)

        monkeypatch.setattr(stores.pending_bookings, "remove", _remove_after_redelivery)

        result = BookingHandler(context).handle(event)

        assert result.outcome == ProcessingResult.REPLAY
        assert concurrent_results[0].outcome == ProcessingResult.SUCCESS
        assert len(calendar.events) == 1
        assert [m["subject"] for m in email_sender.sent] == ["Your appointment is confirmed"]
        assert stores.pending_bookings.find("BK-1") is None


# === Side effects ===


class TestBookingSideEffects:
    def test_email_failure_keeps_record_and_other_steps(
        self,
        store: InMemoryDocumentStore,
        stores: RecordStores,
        calendar: FakeCalendarClient,
        settings: Settings,
    ):
        failing = FailingEmailSender()
        context = build_context(store, stores, failing, calendar, settings)
        pending_booking(stores)

        result = BookingHandler(context).handle(deposit_event())

        assert result.outcome == ProcessingResult.SUCCESS
        assert result.failed_side_effects == ["send_confirmation_email"]
        assert failing.attempts == 1
        assert stores.bookings.find("BK-1") is not None
        assert len(calendar.events) == 1
        assert result.side_effects.succeeded == [
            "create_calendar_event",
            "upsert_client_account",
            "update_capacity",
        ]

    def test_redeems_gift_card(self, context: HandlerContext, stores: RecordStores):
        card = context.gift_cards.issue(Decimal(5000), purchased_by={"name": "Wanjiru"})
        pending_booking(stores, gift_card_code=card.code)

        result = BookingHandler(context).handle(deposit_event())

        assert "redeem_gift_card" in result.side_effects.succeeded
        booking = stores.bookings.find("BK-1")
        assert booking.gift_card_redeemed is True
        assert booking.gift_card_remaining_balance == Decimal(3000)
        assert context.gift_cards.find(card.code).amount == Decimal(3000)

    def test_unknown_gift_card_is_isolated(
        self, context: HandlerContext, stores: RecordStores, email_sender: RecordingEmailSender
    ):
        pending_booking(stores, gift_card_code="GC-NOTREAL1")

        result = BookingHandler(context).handle(deposit_event())

        assert result.outcome == ProcessingResult.SUCCESS
        assert result.failed_side_effects == ["redeem_gift_card"]
        assert stores.bookings.find("BK-1").gift_card_redeemed is False
        assert len(email_sender.sent) == 1

    def test_last_slot_marks_date_fully_booked(self, context: HandlerContext, stores: RecordStores):
        for index, slot in enumerate(("12:00", "14:30", "16:30")):
            confirmed_booking(
                stores,
                natural_key=f"BK-OTHER-{index}",
                booking_id=f"booking-other-{index}",
                date=BOOKING_DATE,
                time_slot=f"{BOOKING_DATE}T{slot}:00+03:00",
            )
        pending_booking(stores)

        BookingHandler(context).handle(deposit_event())

        assert context.availability.fully_booked_dates() == [BOOKING_DATE]

    def test_open_slots_leave_date_available(self, context: HandlerContext, stores: RecordStores):
        pending_booking(stores)

        result = BookingHandler(context).handle(deposit_event())

        assert result.side_effects.results["update_capacity"] is False
        assert context.availability.fully_booked_dates() == []


# === Balance payments ===


class TestBookingBalance:
    def balance_event(self, amount: int, reference: str, key: str = "booking-1773650000000-abcdefghi"):
        return payment_event(
            "booking_balance", key, amount=amount, reference=reference, key_field="booking_id"
        )

    def test_partial_payments_accumulate(
        self, context: HandlerContext, stores: RecordStores, email_sender: RecordingEmailSender
    ):
        confirmed_booking(stores, deposit=Decimal(0))
        handler = BookingBalanceHandler(context)

        first = handler.handle(self.balance_event(200000, "ref-a"))
        booking = stores.bookings.find("BK-1")
        assert first.outcome == ProcessingResult.SUCCESS
        assert booking.amount_paid == Decimal(2000)
        assert booking.payment_status == PaymentStatus.PARTIAL
        assert booking.paid_in_full_at is None

        second = handler.handle(self.balance_event(400000, "ref-b"))
        booking = stores.bookings.find("BK-1")
        assert second.message == "Paid in full"
        assert booking.amount_paid == Decimal(6000)
        assert booking.payment_status == PaymentStatus.PAID
        assert booking.status == RecordStatus.PAID
        assert booking.paid_in_full_at == "2026-03-10T08:15:00+00:00"
        assert len(email_sender.sent) == 2

    def test_replayed_balance_is_not_double_counted(self, context: HandlerContext, stores: RecordStores):
        confirmed_booking(stores, deposit=Decimal(0))
        handler = BookingBalanceHandler(context)
        handler.handle(self.balance_event(200000, "ref-a"))

        result = handler.handle(self.balance_event(200000, "ref-a"))

        assert result.outcome == ProcessingResult.REPLAY
        assert stores.bookings.find("BK-1").amount_paid == Decimal(2000)

    def test_legacy_deposit_counts_towards_total(self, context: HandlerContext, stores: RecordStores):
        confirmed_booking(stores)

        BookingBalanceHandler(context).handle(self.balance_event(400000, "ref-b"))

        booking = stores.bookings.find("BK-1")
        assert booking.amount_paid == Decimal(6000)
        assert booking.payment_status == PaymentStatus.PAID

    def test_unknown_booking_is_skipped(self, context: HandlerContext):
        result = BookingBalanceHandler(context).handle(self.balance_event(100, "ref-x", key="nope"))

        assert result.outcome == ProcessingResult.SKIPPED
        assert result.error_code == ErrorCode.RECORD_NOT_FOUND


def test_apply_booking_payment_settles_status():
    booking = Booking(natural_key="BK-1", booking_id="b-1", final_price=Decimal(1000))

    assert apply_booking_payment(booking, payment_event("booking", "BK-1", amount=100000))
    assert booking.is_paid_in_full
    assert booking.status == RecordStatus.PAID
    assert not apply_booking_payment(booking, payment_event("booking", "BK-1", amount=100000))


def test_generate_booking_id_format():
    from datetime import UTC, datetime

    booking_id = generate_booking_id(datetime(2026, 3, 16, tzinfo=UTC))

    prefix, millis, suffix = booking_id.split("-")
    assert prefix == "booking"
    assert millis == "1773619200000"
    assert len(suffix) == 9
