"""Gift-card purchases: the paid intent becomes a grant plus a ledger card."""

import datetime as dt
from decimal import Decimal

from fulfillment.models.enums import PaymentStatus, PaymentType, ProcessingResult, RecordStatus
from fulfillment.models.payment_event import PaymentEvent
from fulfillment.models.records import GiftCardGrant, PendingIntent
from fulfillment.services import notifications
from fulfillment.services.gift_cards import DEFAULT_EXPIRATION_DAYS
from fulfillment.services.record_stores import ConfirmedStore, PendingStore
from fulfillment.services.side_effects import SideEffect

from .base import HandlerResult, PromotingHandler


class GiftCardHandler(PromotingHandler[GiftCardGrant]):
    payment_type = PaymentType.GIFT_CARD

    @property
    def pending(self) -> PendingStore:
        return self.context.stores.pending_gift_cards

    @property
    def confirmed(self) -> ConfirmedStore[GiftCardGrant]:
        return self.context.stores.gift_card_grants

    def fast_path(self, event: PaymentEvent, key: str) -> HandlerResult:
        # Grants are created paid; nothing changes on redelivery
        return self.result(ProcessingResult.REPLAY, event, "Gift card already issued", key)

    def build_record(self, event: PaymentEvent, intent: PendingIntent) -> GiftCardGrant:
        data = intent.payload
        amount = Decimal(str(data["amount"])) if data.get("amount") is not None else event.amount
        purchaser = {
            "name": data.get("purchaser_name", ""),
            "email": data.get("purchaser_email") or event.customer_email or "",
            "phone": data.get("purchaser_phone"),
        }
        recipient = {
            "name": data.get("recipient_name"),
            "email": data.get("recipient_email"),
            "message": data.get("message"),
        }

        # Card id is the natural key, so a retried promotion reuses the same card
        card = self.context.gift_cards.issue(
            amount,
            purchased_by=purchaser,
            recipient=recipient,
            expiration_days=int(data.get("expiration_days") or DEFAULT_EXPIRATION_DAYS),
            card_id=intent.natural_key,
        )

        now = dt.datetime.now(dt.UTC).isoformat()
        return GiftCardGrant(
            natural_key=intent.natural_key,
            status=RecordStatus.ACTIVE,
            payment_status=PaymentStatus.PAID,
            payment_method="paystack",
            transaction_id=event.reference,
            paid_at=event.paid_at_iso,
            created_at=now,
            updated_at=now,
            code=card.code,
            amount=amount,
            purchaser_name=purchaser["name"],
            purchaser_email=purchaser["email"],
            recipient_name=recipient["name"],
            recipient_email=recipient["email"],
            message=recipient["message"],
            expires_at=card.expires_at,
        )

    def promotion_side_effects(
        self, event: PaymentEvent, record: GiftCardGrant
    ) -> list[SideEffect]:
        if not (record.recipient_email or record.purchaser_email):
            return []
        return [
            SideEffect(
                "send_gift_card_email",
                lambda: self.context.send(notifications.gift_card_delivery(record, event.currency)),
            )
        ]
