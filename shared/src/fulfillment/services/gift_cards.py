"""Gift-card ledger.

Cards live in the ``gift-cards`` document under ``cards``; the document's
other fields (settings) are left untouched. Redemptions are keyed by the
id of the thing paid for, so replaying a redemption is a no-op.
"""

import datetime as dt
import secrets
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from fulfillment.models.enums import GiftCardStatus
from fulfillment.utils.logging import get_logger

from .document_store import DocumentStore
from .record_stores import DEFAULT_MAX_WRITE_ATTEMPTS, DocumentCollection

logger = get_logger(__name__)

# No 0/O/1/I so codes survive being read aloud
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8
DEFAULT_EXPIRATION_DAYS = 365


def _normalize_code(code: str) -> str:
    return code.replace("-", "").strip().upper()


def generate_code() -> str:
    """Generate a gift-card code of the form GC-XXXXXXXX."""
    return "GC-" + "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


class GiftCard(BaseModel):
    """A card in the ledger."""

    id: str
    code: str
    amount: Decimal = Field(..., ge=0, description="Remaining balance")
    original_amount: Decimal
    status: GiftCardStatus = GiftCardStatus.ACTIVE
    purchased_by: dict[str, Any] = Field(default_factory=dict)
    recipient: dict[str, Any] | None = None
    purchased_at: str
    expires_at: str
    redeemed_at: str | None = None
    redeemed_by: str | None = None
    redeemed_booking_id: str | None = None
    redemption_refs: list[str] = Field(default_factory=list)

    def is_expired(self, now: dt.datetime) -> bool:
        try:
            expires = dt.datetime.fromisoformat(self.expires_at.replace("Z", "+00:00"))
        except ValueError:
            return False
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=dt.UTC)
        return expires < now


@dataclass(frozen=True)
class RedemptionResult:
    success: bool
    remaining_balance: Decimal | None = None
    error: str | None = None


class GiftCardLedger:
    """Issue and redeem gift cards."""

    DOCUMENT = "gift-cards"

    def __init__(
        self,
        store: DocumentStore,
        max_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS,
    ) -> None:
        self.cards = DocumentCollection(
            store, self.DOCUMENT, wrapper_field="cards", max_attempts=max_attempts
        )

    def find(self, code: str) -> GiftCard | None:
        wanted = _normalize_code(code)
        for item in self.cards.load():
            if _normalize_code(item.get("code", "")) == wanted:
                return GiftCard.model_validate(item)
        return None

    def issue(
        self,
        amount: Decimal,
        purchased_by: dict[str, Any],
        recipient: dict[str, Any] | None = None,
        expiration_days: int = DEFAULT_EXPIRATION_DAYS,
        card_id: str | None = None,
    ) -> GiftCard:
        """Create an active card with a fresh code.

        Passing card_id makes issuing idempotent: an existing card with that
        id is returned unchanged.

        Args:
            amount: Initial balance
            purchased_by: Purchaser name/email/phone
            recipient: Recipient name/email/message
            expiration_days: Days until the card expires
            card_id: Stable id for the card

        Returns:
            The issued (or previously issued) card
        """
        now = dt.datetime.now(dt.UTC)
        new_id = card_id or f"gift-{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"
        expires_at = (now + dt.timedelta(days=expiration_days)).isoformat()

        def _issue(items: list[dict[str, Any]]) -> GiftCard:
            for item in items:
                if item.get("id") == new_id:
                    return GiftCard.model_validate(item)

            existing = {_normalize_code(i.get("code", "")) for i in items}
            code = generate_code()
            while _normalize_code(code) in existing:
                code = generate_code()

            card = GiftCard(
                id=new_id,
                code=code,
                amount=amount,
                original_amount=amount,
                purchased_by=purchased_by,
                recipient=recipient,
                purchased_at=now.isoformat(),
                expires_at=expires_at,
            )
            items.append(card.model_dump(mode="json"))
            return card

        card = self.cards.mutate(_issue)
        logger.info("Gift card %s issued for %s", card.code, card.amount)
        return card

    def redeem(
        self,
        code: str,
        amount: Decimal,
        ref_id: str,
        redeemed_by: str,
    ) -> RedemptionResult:
        """Deduct amount from a card.

        The card must exist, be active and unexpired, and hold at least the
        amount. A second redemption with the same ref_id succeeds without
        deducting again.

        Args:
            code: Gift-card code (dashes and case ignored)
            amount: Amount to deduct
            ref_id: Id of the booking/order paid for
            redeemed_by: Email of the person redeeming

        Returns:
            RedemptionResult
        """
        wanted = _normalize_code(code)
        amount = Decimal(amount)

        def _redeem(items: list[dict[str, Any]]) -> RedemptionResult:
            now = dt.datetime.now(dt.UTC)
            for index, item in enumerate(items):
                if _normalize_code(item.get("code", "")) != wanted:
                    continue
                card = GiftCard.model_validate(item)

                if ref_id in card.redemption_refs:
                    return RedemptionResult(success=True, remaining_balance=card.amount)
                if card.status != GiftCardStatus.ACTIVE:
                    return RedemptionResult(success=False, error=f"Gift card is {card.status.value}")
                if card.is_expired(now):
                    card.status = GiftCardStatus.EXPIRED
                    items[index] = card.model_dump(mode="json")
                    return RedemptionResult(success=False, error="Gift card has expired")
                if card.amount < amount:
                    return RedemptionResult(
                        success=False,
                        error=f"Insufficient balance. Available: {card.amount}",
                    )

                card.amount = card.amount - amount
                card.status = GiftCardStatus.ACTIVE if card.amount > 0 else GiftCardStatus.REDEEMED
                card.redeemed_at = now.isoformat()
                card.redeemed_by = redeemed_by
                card.redeemed_booking_id = ref_id
                card.redemption_refs.append(ref_id)
                items[index] = card.model_dump(mode="json")
                return RedemptionResult(success=True, remaining_balance=card.amount)

            return RedemptionResult(success=False, error="Gift card not found")

        return self.cards.mutate(_redeem)


class GiftCardRedemptionError(Exception):
    """Raised when a booking's gift card could not be charged."""

    def __init__(self, code: str, reason: str | None) -> None:
        super().__init__(f"Gift card {code} not redeemed: {reason or 'unknown error'}")
        self.code = code
        self.reason = reason
