"""Referral codes handed to Labs customers once their order is paid."""

import datetime as dt
import secrets
from typing import Any

from pydantic import BaseModel, Field

from fulfillment.utils.logging import get_logger

from .document_store import DocumentStore
from .record_stores import DEFAULT_MAX_WRITE_ATTEMPTS, DocumentCollection

logger = get_logger(__name__)


def generate_referral_code() -> str:
    return f"LABS-{secrets.token_hex(4).upper()}"


class ReferralCode(BaseModel):
    code: str
    order_id: str
    email: str
    created_at: str
    used_by: list[str] = Field(default_factory=list)


class ReferralCodeIssuer:
    """Issue one referral code per order."""

    DOCUMENT = "labs-referral-codes"

    def __init__(
        self,
        store: DocumentStore,
        max_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS,
    ) -> None:
        self.codes = DocumentCollection(
            store, self.DOCUMENT, wrapper_field="codes", max_attempts=max_attempts
        )

    def find_for_order(self, order_id: str) -> ReferralCode | None:
        for item in self.codes.load():
            if item.get("order_id") == order_id:
                return ReferralCode.model_validate(item)
        return None

    def issue(self, order_id: str, email: str) -> ReferralCode:
        """Return the order's referral code, creating it on first call.

        Args:
            order_id: Labs order id
            email: Customer email the code belongs to

        Returns:
            ReferralCode, unique across all issued codes
        """
        def _issue(items: list[dict[str, Any]]) -> ReferralCode:
            for item in items:
                if item.get("order_id") == order_id:
                    return ReferralCode.model_validate(item)

            taken = {item.get("code") for item in items}
            code = generate_referral_code()
            while code in taken:
                code = generate_referral_code()

            referral = ReferralCode(
                code=code,
                order_id=order_id,
                email=email.strip().lower(),
                created_at=dt.datetime.now(dt.UTC).isoformat(),
            )
            items.append(referral.model_dump(mode="json"))
            return referral

        referral = self.codes.mutate(_issue)
        logger.info("Referral code %s for order %s", referral.code, order_id)
        return referral
