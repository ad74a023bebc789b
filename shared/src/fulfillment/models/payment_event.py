"""Gateway transaction models.

A VerifiedTransaction is what the gateway's verify endpoint returned.
A PaymentEvent is the immutable input every type handler receives; it is
only ever built from a VerifiedTransaction, never from the webhook body.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import NATURAL_KEY_FIELDS, PaymentType

# Minor units per major unit; anything not listed uses 100
SUBUNIT_MULTIPLIERS: dict[str, int] = {
    "KES": 100,
    "USD": 100,
    "NGN": 100,
    "GHS": 100,
    "ZAR": 100,
    "XOF": 1,
}


def convert_from_subunits(amount_minor_units: int, currency: str) -> Decimal:
    """Convert a gateway amount from minor units to the main currency.

    Args:
        amount_minor_units: Amount as reported by the gateway
        currency: ISO currency code

    Returns:
        Amount in the main currency unit
    """
    multiplier = SUBUNIT_MULTIPLIERS.get(currency.upper(), 100)
    return Decimal(amount_minor_units) / Decimal(multiplier)


class VerifiedTransaction(BaseModel):
    """Transaction as reported by the gateway's verify endpoint."""

    model_config = ConfigDict(frozen=True)

    reference: str = Field(..., description="Gateway transaction reference")
    status: str = Field(..., description="Gateway status, 'success' when paid")
    amount_minor_units: int = Field(..., ge=0, description="Amount in minor units")
    currency: str = Field(default="KES", description="ISO currency code")
    paid_at: datetime | None = Field(default=None, description="When the charge succeeded")
    customer_email: str | None = Field(default=None, description="Payer email")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_successful(self) -> bool:
        """True when the gateway confirms the charge."""
        return self.status == "success"


class PaymentMetadata(BaseModel):
    """Routing metadata extracted from a verified transaction."""

    model_config = ConfigDict(frozen=True)

    payment_type: str = Field(default="unknown", description="Raw payment_type tag")
    natural_key: str | None = Field(default=None, description="Join key for the intent")
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "PaymentMetadata":
        """Resolve the payment type and natural key from raw metadata.

        A generic ``natural_key`` field wins over the type-specific one.

        Args:
            raw: Metadata dict attached to the transaction

        Returns:
            Parsed metadata
        """
        tag = str(raw.get("payment_type") or "unknown")
        natural_key = raw.get("natural_key")
        payment_type = PaymentType.parse(tag)
        if not natural_key and payment_type is not None:
            natural_key = raw.get(NATURAL_KEY_FIELDS[payment_type])
        return cls(
            payment_type=tag,
            natural_key=str(natural_key) if natural_key else None,
            raw=dict(raw),
        )


class PaymentEvent(BaseModel):
    """Verified payment event handed to type handlers. Immutable."""

    model_config = ConfigDict(frozen=True)

    event_type: str
    reference: str
    amount_minor_units: int = Field(..., ge=0)
    currency: str
    status: str = "success"
    customer_email: str | None = None
    paid_at: datetime
    metadata: PaymentMetadata

    @classmethod
    def from_transaction(
        cls,
        event_type: str,
        transaction: VerifiedTransaction,
        fallback_metadata: dict[str, Any] | None = None,
        received_at: datetime | None = None,
    ) -> "PaymentEvent":
        """Build an event from the gateway's verified transaction.

        Args:
            event_type: Webhook event type (charge.success)
            transaction: Response of the verify endpoint
            fallback_metadata: Body metadata, used only if the gateway sent none
            received_at: Timestamp used when the gateway omitted paid_at

        Returns:
            Immutable PaymentEvent
        """
        raw = transaction.metadata or fallback_metadata or {}
        paid_at = transaction.paid_at or received_at
        if paid_at is None:
            paid_at = datetime.now(UTC)
        return cls(
            event_type=event_type,
            reference=transaction.reference,
            amount_minor_units=transaction.amount_minor_units,
            status=transaction.status,
            currency=transaction.currency.upper(),
            customer_email=transaction.customer_email,
            paid_at=paid_at,
            metadata=PaymentMetadata.from_raw(raw),
        )

    @property
    def payment_type(self) -> PaymentType | None:
        """Parsed payment type, None when the tag is not known."""
        return PaymentType.parse(self.metadata.payment_type)

    @property
    def natural_key(self) -> str | None:
        return self.metadata.natural_key

    @property
    def amount(self) -> Decimal:
        """Amount in the main currency unit."""
        return convert_from_subunits(self.amount_minor_units, self.currency)

    @property
    def paid_at_iso(self) -> str:
        return self.paid_at.isoformat()
