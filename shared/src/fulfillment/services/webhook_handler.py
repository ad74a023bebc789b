"""Webhook handler for Paystack deliveries.

Holds the business flow separate from HTTP routing so it can be unit tested
without a web server:

verify signature -> parse -> re-verify with the gateway -> route to the type
handler -> notify the business -> write the audit log.

Only a bad signature is reported to the caller as a failure. Everything else
ends in a ProcessingResult so the gateway stops retrying.
"""

import datetime as dt
import json
from dataclasses import dataclass
from typing import Any

from fulfillment.models.enums import ProcessingResult
from fulfillment.models.errors import ERROR_MESSAGES, ErrorCode, FulfillmentError
from fulfillment.models.payment_event import PaymentEvent
from fulfillment.models.webhook_event import WebhookEventLog
from fulfillment.settings import Settings
from fulfillment.utils.logging import get_logger, log_webhook_event

from . import notifications
from .collaborators import EmailSender
from .document_store import DocumentStore
from .handlers import HandlerResult
from .paystack_service import PaystackService, PaystackServiceError
from .record_stores import DocumentCollection
from .router import PaymentRouter
from .side_effects import SideEffect, SideEffectContext, SideEffectRunner

logger = get_logger(__name__)

CHARGE_SUCCESS = "charge.success"


@dataclass(frozen=True)
class WebhookOutcome:
    """Result of processing one delivery."""

    result: ProcessingResult
    event_type: str | None = None
    reference: str | None = None
    payment_type: str | None = None
    natural_key: str | None = None
    message: str | None = None
    handler_result: HandlerResult | None = None


class WebhookHandler:
    """Processes verified Paystack webhook deliveries."""

    AUDIT_PREFIX = "webhook-events"

    def __init__(
        self,
        paystack: PaystackService,
        router: PaymentRouter,
        store: DocumentStore,
        email: EmailSender,
        settings: Settings,
        side_effects: SideEffectRunner | None = None,
    ) -> None:
        self.paystack = paystack
        self.router = router
        self.store = store
        self.email = email
        self.settings = settings
        self.side_effects = side_effects or SideEffectRunner()

    def process(self, raw_body: bytes, signature: str | None) -> WebhookOutcome:
        """Process one delivery.

        Args:
            raw_body: Request body exactly as received
            signature: x-paystack-signature header

        Returns:
            WebhookOutcome

        Raises:
            FulfillmentError: INVALID_WEBHOOK_SIGNATURE; nothing has been read
                or written when this is raised
        """
        if not self.paystack.verify_webhook_signature(raw_body, signature):
            raise FulfillmentError(ErrorCode.INVALID_WEBHOOK_SIGNATURE)

        payload_hash = self.paystack.compute_payload_hash(raw_body)
        try:
            body = json.loads(raw_body)
        except ValueError:
            return self._finish(
                WebhookOutcome(
                    result=ProcessingResult.SKIPPED,
                    message=ERROR_MESSAGES[ErrorCode.MALFORMED_PAYLOAD],
                ),
                payload_hash,
            )
        if not isinstance(body, dict):
            return self._finish(
                WebhookOutcome(
                    result=ProcessingResult.SKIPPED,
                    message=ERROR_MESSAGES[ErrorCode.MALFORMED_PAYLOAD],
                ),
                payload_hash,
            )

        event_type = str(body.get("event") or "unknown")
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        reference = data.get("reference")

        if event_type != CHARGE_SUCCESS:
            logger.info("Ignoring %s event for %s", event_type, reference or "no-reference")
            return self._finish(
                WebhookOutcome(
                    result=ProcessingResult.SKIPPED,
                    event_type=event_type,
                    reference=reference,
                    message=f"Event type {event_type} is not handled",
                ),
                payload_hash,
            )

        if not reference:
            return self._finish(
                WebhookOutcome(
                    result=ProcessingResult.SKIPPED,
                    event_type=event_type,
                    message=ERROR_MESSAGES[ErrorCode.MISSING_REFERENCE],
                ),
                payload_hash,
            )

        try:
            transaction = self.paystack.verify_transaction(str(reference))
        except PaystackServiceError as e:
            return self._finish(
                WebhookOutcome(
                    result=ProcessingResult.SKIPPED,
                    event_type=event_type,
                    reference=reference,
                    message=f"{ERROR_MESSAGES[ErrorCode.GATEWAY_API_ERROR]}: {e}",
                ),
                payload_hash,
            )

        if not transaction.is_successful:
            return self._finish(
                WebhookOutcome(
                    result=ProcessingResult.SKIPPED,
                    event_type=event_type,
                    reference=reference,
                    message=(
                        f"{ERROR_MESSAGES[ErrorCode.TRANSACTION_NOT_SUCCESSFUL]} "
                        f"(status={transaction.status})"
                    ),
                ),
                payload_hash,
            )

        fallback = data.get("metadata") if isinstance(data.get("metadata"), dict) else None
        event = PaymentEvent.from_transaction(
            event_type,
            transaction,
            fallback_metadata=fallback,
            received_at=dt.datetime.now(dt.UTC),
        )

        handler_result = self.router.route(event)
        self._notify_business(event)

        return self._finish(
            WebhookOutcome(
                result=handler_result.outcome,
                event_type=event_type,
                reference=event.reference,
                payment_type=event.metadata.payment_type,
                natural_key=event.natural_key,
                message=handler_result.message,
                handler_result=handler_result,
            ),
            payload_hash,
        )

    def _notify_business(self, event: PaymentEvent) -> None:
        admin_email = self.settings.business_notification_email
        if not admin_email:
            return
        message = notifications.payment_received(event, admin_email)
        self.side_effects.run(
            [
                SideEffect(
                    "notify_business",
                    lambda: self.email.send(message.to, message.subject, message.html),
                )
            ],
            SideEffectContext(
                natural_key=event.natural_key,
                reference=event.reference,
                payment_type=event.metadata.payment_type,
            ),
        )

    def _finish(self, outcome: WebhookOutcome, payload_hash: str) -> WebhookOutcome:
        is_error = outcome.result == ProcessingResult.ERROR
        log_webhook_event(
            logger,
            outcome.event_type or "unknown",
            outcome.reference,
            payment_type=outcome.payment_type,
            natural_key=outcome.natural_key,
            result=outcome.result.value,
            error=outcome.message if is_error else None,
            detail=None if is_error else outcome.message,
        )
        self.log_event(outcome, payload_hash)
        return outcome

    def log_event(self, outcome: WebhookOutcome, payload_hash: str) -> None:
        """Append the delivery to the audit trail. Failures are only logged."""
        entry = WebhookEventLog(
            reference=outcome.reference or "no-reference",
            event_type=outcome.event_type or "unknown",
            processed_at=dt.datetime.now(dt.UTC),
            payload_hash=payload_hash,
            payment_type=outcome.payment_type,
            natural_key=outcome.natural_key,
            processing_result=outcome.result,
            error_message=outcome.message if outcome.result != ProcessingResult.SUCCESS else None,
            failed_side_effects=(
                outcome.handler_result.failed_side_effects if outcome.handler_result else []
            ),
        )
        log = DocumentCollection(self.store, entry.document_name)

        def _append(items: list[dict[str, Any]]) -> None:
            items.append(entry.model_dump(mode="json"))

        try:
            log.mutate(_append)
        except Exception:
            logger.exception("Failed to write audit log for %s", entry.reference)
