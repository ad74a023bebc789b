"""LashDiary Labs payments: web-services orders, tier purchases and yearly
subscription renewals. All three update a record created at checkout."""

import datetime as dt
from decimal import Decimal

from fulfillment.models.enums import (
    AWAITING_PAYMENT,
    PaymentStatus,
    PaymentType,
    ProcessingResult,
    RecordStatus,
)
from fulfillment.models.errors import ErrorCode
from fulfillment.models.payment_event import PaymentEvent
from fulfillment.models.records import PaymentLedgerEntry, ShopOrder, Subscriber
from fulfillment.services import notifications
from fulfillment.services.side_effects import SideEffect
from fulfillment.utils.logging import get_logger

from .base import HandlerResult, PaymentHandler

logger = get_logger(__name__)


def add_one_year(moment: dt.datetime) -> dt.datetime:
    try:
        return moment.replace(year=moment.year + 1)
    except ValueError:
        # 29 February
        return moment.replace(year=moment.year + 1, day=28)


def _ledger_entry(event: PaymentEvent) -> PaymentLedgerEntry:
    return PaymentLedgerEntry(
        amount=event.amount,
        date=event.paid_at_iso,
        transaction_id=event.reference,
    )


class WebServicesOrderHandler(PaymentHandler):
    """Cart checkout for web services; may be paid in instalments."""

    payment_type = PaymentType.LABS_WEB_SERVICES

    def handle(self, event: PaymentEvent) -> HandlerResult:
        key = event.natural_key
        if not key:
            return self.skip(event, ErrorCode.MISSING_NATURAL_KEY)

        def _pay(order: ShopOrder) -> tuple[bool, bool]:
            """Returns (payment applied, first time fully paid)."""
            was_paid = order.payment_status == PaymentStatus.PAID
            if not order.record_payment(_ledger_entry(event)):
                return False, False
            order.payment_method = "paystack"
            order.transaction_id = event.reference
            order.paid_at = event.paid_at_iso
            order.updated_at = dt.datetime.now(dt.UTC).isoformat()
            if order.initial_payment is None:
                order.initial_payment = event.amount
            if order.status in AWAITING_PAYMENT:
                order.status = RecordStatus.CONFIRMED
            if order.is_paid_in_full:
                order.payment_status = PaymentStatus.PAID
            else:
                order.payment_status = PaymentStatus.PARTIAL
            return True, order.payment_status == PaymentStatus.PAID and not was_paid

        updated = self.context.stores.web_services_orders.update(key, _pay)
        if updated is None:
            return self.skip(event, ErrorCode.RECORD_NOT_FOUND)

        order, (applied, newly_paid) = updated
        if not applied:
            return self.result(ProcessingResult.REPLAY, event, "Payment already applied", key)

        steps = []
        if newly_paid and order.email:
            steps.append(SideEffect("issue_referral_code", lambda: self._send_referral(order)))
        report = self.run_side_effects(event, steps)
        message = "Order paid in full" if newly_paid else f"Payment recorded ({order.payment_status.value})"
        return self.result(ProcessingResult.SUCCESS, event, message, key, report)

    def _send_referral(self, order: ShopOrder) -> str:
        referral = self.context.referrals.issue(order.natural_key, order.email)

        def _link(o: ShopOrder) -> None:
            o.referral_code = referral.code

        self.context.stores.web_services_orders.update(order.natural_key, _link)
        self.context.send(notifications.referral_code(order, referral.code))
        return referral.code


class TierOrderHandler(PaymentHandler):
    """One-off purchase of a Labs tier."""

    payment_type = PaymentType.LABS_TIER

    def handle(self, event: PaymentEvent) -> HandlerResult:
        key = event.natural_key
        if not key:
            return self.skip(event, ErrorCode.MISSING_NATURAL_KEY)

        def _complete(order: ShopOrder) -> bool:
            if order.payment_status == PaymentStatus.COMPLETED:
                return False
            now = dt.datetime.now(dt.UTC).isoformat()
            order.record_payment(_ledger_entry(event))
            order.kind = "tier"
            order.status = RecordStatus.COMPLETED
            order.payment_status = PaymentStatus.COMPLETED
            order.payment_method = "paystack"
            order.transaction_id = event.reference
            order.paid_at = event.paid_at_iso
            order.completed_at = now
            order.updated_at = now
            return True

        updated = self.context.stores.tier_orders.update(key, _complete)
        if updated is None:
            return self.skip(event, ErrorCode.RECORD_NOT_FOUND)

        order, first_payment = updated
        if not first_payment:
            return self.result(ProcessingResult.REPLAY, event, "Tier order already completed", key)

        steps = []
        if order.email:
            steps.append(SideEffect("upsert_client_account", lambda: self._upsert_client(order)))
            steps.append(
                SideEffect(
                    "send_setup_email",
                    lambda: self.context.send(notifications.tier_setup(order)),
                )
            )
        report = self.run_side_effects(event, steps)
        return self.result(ProcessingResult.SUCCESS, event, "Tier order completed", key, report)

    def _upsert_client(self, order: ShopOrder) -> str:
        account = self.context.clients.upsert(
            order.email,
            order.name,
            order.phone_number,
            profile_updates={
                "tier_id": order.tier_id,
                "business_name": order.business_name,
                "tier_order_id": order.natural_key,
            },
        )
        return account.user_id


class YearlySubscriptionHandler(PaymentHandler):
    """Annual renewal of a web-services subscriber."""

    payment_type = PaymentType.LABS_YEARLY_SUBSCRIPTION

    def handle(self, event: PaymentEvent) -> HandlerResult:
        key = event.natural_key
        if not key:
            return self.skip(event, ErrorCode.MISSING_NATURAL_KEY)

        def _renew(subscriber: Subscriber) -> bool:
            if event.reference in subscriber.renewal_references:
                return False
            renewed_at = event.paid_at
            subscriber.status = RecordStatus.ACTIVE
            subscriber.payment_status = PaymentStatus.PAID
            subscriber.payment_method = "paystack"
            subscriber.transaction_id = event.reference
            subscriber.paid_at = event.paid_at_iso
            subscriber.last_renewal_date = renewed_at.isoformat()
            subscriber.next_renewal_date = add_one_year(renewed_at).isoformat()
            subscriber.renewal_references.append(event.reference)
            subscriber.updated_at = dt.datetime.now(dt.UTC).isoformat()
            if not subscriber.total_annual_amount:
                subscriber.total_annual_amount = Decimal(event.amount)
            return True

        updated = self.context.stores.yearly_subscribers.update(key, _renew)
        if updated is None:
            return self.skip(event, ErrorCode.RECORD_NOT_FOUND)

        subscriber, renewed = updated
        if not renewed:
            return self.result(ProcessingResult.REPLAY, event, "Renewal already applied", key)

        logger.info(
            "Subscriber %s renewed until %s", key, subscriber.next_renewal_date
        )
        return self.result(ProcessingResult.SUCCESS, event, "Subscription renewed", key)
