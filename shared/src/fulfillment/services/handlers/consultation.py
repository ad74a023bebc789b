"""Paid Labs consultations."""

import datetime as dt
from decimal import Decimal

from fulfillment.models.enums import PaymentStatus, PaymentType, ProcessingResult, RecordStatus
from fulfillment.models.errors import ErrorCode
from fulfillment.models.payment_event import PaymentEvent
from fulfillment.models.records import Consultation, PendingIntent
from fulfillment.services import notifications
from fulfillment.services.record_stores import ConfirmedStore, PendingStore
from fulfillment.services.side_effects import SideEffect

from .base import HandlerResult, PromotingHandler

# Set from the payment, never copied from the intent
_PIPELINE_FIELDS = frozenset(
    {
        "natural_key",
        "status",
        "payment_status",
        "payment_method",
        "transaction_id",
        "paid_at",
        "amount",
        "created_at",
        "updated_at",
    }
)


def mark_paid(consultation: Consultation, event: PaymentEvent) -> bool:
    """Flip a consultation to confirmed/paid.

    Returns:
        True on the first transition to paid
    """
    if consultation.is_paid:
        return False
    consultation.payment_status = PaymentStatus.PAID
    consultation.status = RecordStatus.CONFIRMED
    consultation.paid_at = event.paid_at_iso
    consultation.transaction_id = event.reference
    consultation.payment_method = "paystack"
    consultation.updated_at = dt.datetime.now(dt.UTC).isoformat()
    return True


class ConsultationHandler(PromotingHandler[Consultation]):
    payment_type = PaymentType.CONSULTATION

    @property
    def pending(self) -> PendingStore:
        return self.context.stores.pending_consultations

    @property
    def confirmed(self) -> ConfirmedStore[Consultation]:
        return self.context.stores.consultations

    def fast_path(self, event: PaymentEvent, key: str) -> HandlerResult:
        updated = self.confirmed.update(key, lambda c: mark_paid(c, event))
        if updated is None:
            return self.skip(event, ErrorCode.RECORD_NOT_FOUND)

        consultation, first_payment = updated
        if not first_payment:
            return self.result(ProcessingResult.REPLAY, event, "Consultation already paid", key)

        report = self.run_side_effects(event, self._email(consultation))
        return self.result(
            ProcessingResult.SUCCESS, event, "Existing consultation paid", key, report
        )

    def build_record(self, event: PaymentEvent, intent: PendingIntent) -> Consultation:
        data = intent.payload
        amount = data.get("amount")
        consultation = Consultation(
            **{k: v for k, v in data.items() if k not in _PIPELINE_FIELDS},
            natural_key=intent.natural_key,
            status=RecordStatus.PENDING,
            amount=Decimal(str(amount)) if amount is not None else event.amount,
            created_at=intent.created_at.isoformat(),
        )
        mark_paid(consultation, event)
        return consultation

    def promotion_side_effects(
        self, event: PaymentEvent, record: Consultation
    ) -> list[SideEffect]:
        return self._email(record)

    def _email(self, consultation: Consultation) -> list[SideEffect]:
        if not consultation.email:
            return []
        return [
            SideEffect(
                "send_confirmation_email",
                lambda: self.context.send(notifications.consultation_confirmation(consultation)),
            )
        ]
