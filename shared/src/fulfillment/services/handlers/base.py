"""Shared plumbing for payment type handlers.

Every handler follows the same template:

1. Fast path: a confirmed record already exists for the natural key, so only
   status fields change and only "first transition to paid" side effects run.
2. Promotion: otherwise the pending intent for the key is looked up; if there
   is none the delivery is logged and skipped.
3. The confirmed record is built from the intent, inserted, the intent and
   any slot reservation are removed, and side effects run.

The confirmed insert always happens before the pending intent is removed. If
processing stops between the two, the next delivery finds the record, sees
the leftover intent and finishes the promotion.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import ClassVar, Generic, TypeVar

from fulfillment.models.enums import PaymentType, ProcessingResult
from fulfillment.models.errors import ERROR_MESSAGES, ErrorCode
from fulfillment.models.payment_event import PaymentEvent
from fulfillment.models.records import ConfirmedRecord, PendingIntent
from fulfillment.services.availability import AvailabilityService
from fulfillment.services.clients import ClientDirectory
from fulfillment.services.collaborators import CalendarClient, EmailSender
from fulfillment.services.gift_cards import GiftCardLedger
from fulfillment.services.notifications import EmailMessage
from fulfillment.services.record_stores import ConfirmedStore, PendingStore, RecordStores
from fulfillment.services.referrals import ReferralCodeIssuer
from fulfillment.services.side_effects import (
    SideEffect,
    SideEffectContext,
    SideEffectReport,
    SideEffectRunner,
)
from fulfillment.settings import Settings
from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)

R = TypeVar("R", bound=ConfirmedRecord)


@dataclass(frozen=True)
class HandlerResult:
    """Outcome of handling one verified payment event."""

    outcome: ProcessingResult
    natural_key: str | None = None
    record_id: str | None = None
    message: str | None = None
    error_code: ErrorCode | None = None
    side_effects: SideEffectReport | None = None

    @property
    def failed_side_effects(self) -> list[str]:
        return sorted(self.side_effects.failed) if self.side_effects else []


@dataclass
class HandlerContext:
    """Collaborators shared by all handlers."""

    stores: RecordStores
    email: EmailSender
    calendar: CalendarClient
    gift_cards: GiftCardLedger
    referrals: ReferralCodeIssuer
    clients: ClientDirectory
    availability: AvailabilityService
    settings: Settings
    side_effects: SideEffectRunner = field(default_factory=SideEffectRunner)

    def send(self, message: EmailMessage) -> str | None:
        if not message.to:
            raise ValueError(f"No recipient for email {message.subject!r}")
        return self.email.send(message.to, message.subject, message.html)


class PaymentHandler(ABC):
    """Handles one payment type."""

    payment_type: ClassVar[PaymentType]

    def __init__(self, context: HandlerContext) -> None:
        self.context = context

    @abstractmethod
    def handle(self, event: PaymentEvent) -> HandlerResult:
        """Apply a verified payment event."""

    def result(
        self,
        outcome: ProcessingResult,
        event: PaymentEvent,
        message: str | None = None,
        record_id: str | None = None,
        side_effects: SideEffectReport | None = None,
    ) -> HandlerResult:
        return HandlerResult(
            outcome=outcome,
            natural_key=event.natural_key,
            record_id=record_id,
            message=message,
            side_effects=side_effects,
        )

    def skip(self, event: PaymentEvent, code: ErrorCode) -> HandlerResult:
        """Log and report a delivery that cannot be applied."""
        logger.warning(
            "%s payment %s skipped: %s (natural_key=%s)",
            self.payment_type.value,
            event.reference,
            ERROR_MESSAGES[code],
            event.natural_key,
        )
        return HandlerResult(
            outcome=ProcessingResult.SKIPPED,
            natural_key=event.natural_key,
            message=ERROR_MESSAGES[code],
            error_code=code,
        )

    def run_side_effects(
        self, event: PaymentEvent, steps: Sequence[SideEffect]
    ) -> SideEffectReport:
        if not steps:
            return SideEffectReport()
        return self.context.side_effects.run(
            steps,
            SideEffectContext(
                natural_key=event.natural_key,
                reference=event.reference,
                payment_type=self.payment_type.value,
            ),
        )


class PromotingHandler(PaymentHandler, Generic[R]):
    """Template for types that promote a pending intent into a record."""

    @property
    @abstractmethod
    def pending(self) -> PendingStore: ...

    @property
    @abstractmethod
    def confirmed(self) -> ConfirmedStore[R]: ...

    @abstractmethod
    def build_record(self, event: PaymentEvent, intent: PendingIntent) -> R:
        """Construct the confirmed record from the intent and the payment."""

    @abstractmethod
    def fast_path(self, event: PaymentEvent, key: str) -> HandlerResult:
        """Apply the payment to an existing record."""

    def promotion_side_effects(self, event: PaymentEvent, record: R) -> list[SideEffect]:
        return []

    def release(self, key: str) -> None:
        """Drop anything held for the intent besides the intent itself."""

    def record_id(self, record: R) -> str:
        return record.natural_key

    def handle(self, event: PaymentEvent) -> HandlerResult:
        key = event.natural_key
        if not key:
            return self.skip(event, ErrorCode.MISSING_NATURAL_KEY)

        if self.confirmed.find(key) is not None:
            return self._existing_record(event, key)

        intent = self.pending.find(key)
        if intent is None:
            return self.skip(event, ErrorCode.RECORD_NOT_FOUND)

        record = self.build_record(event, intent)
        if not self.confirmed.insert_if_absent(record):
            logger.info(
                "%s %s was promoted by a concurrent delivery",
                self.payment_type.value,
                key,
            )
            return self._existing_record(event, key)

        if not self.pending.remove(key):
            # A delivery that found our record removed the intent and owns the side effects
            return self.result(
                ProcessingResult.REPLAY,
                event,
                "Promotion finished by a concurrent delivery",
                self.record_id(record),
            )
        return self._finish_promotion(event, key, record)

    def _existing_record(self, event: PaymentEvent, key: str) -> HandlerResult:
        result = self.fast_path(event, key)
        if not self.pending.remove(key):
            return result

        # Intent outlived its record: an earlier delivery stopped mid-promotion
        logger.warning(
            "Completing interrupted promotion of %s %s",
            self.payment_type.value,
            key,
        )
        record = self.confirmed.find(key)
        if record is None:
            return result
        return self._finish_promotion(event, key, record)

    def _finish_promotion(self, event: PaymentEvent, key: str, record: R) -> HandlerResult:
        self.release(key)
        report = self.run_side_effects(event, self.promotion_side_effects(event, record))
        logger.info("%s %s confirmed", self.payment_type.value, key)
        return self.result(
            ProcessingResult.SUCCESS,
            event,
            message="Promoted pending intent",
            record_id=self.record_id(record),
            side_effects=report,
        )
