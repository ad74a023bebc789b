"""Online course purchases."""

import datetime as dt

from fulfillment.models.enums import PaymentStatus, PaymentType, ProcessingResult, RecordStatus
from fulfillment.models.errors import ErrorCode
from fulfillment.models.payment_event import PaymentEvent
from fulfillment.models.records import CoursePurchase
from fulfillment.services import notifications
from fulfillment.services.side_effects import SideEffect

from .base import HandlerResult, PaymentHandler


class CoursePurchaseHandler(PaymentHandler):
    payment_type = PaymentType.COURSE_PURCHASE

    def handle(self, event: PaymentEvent) -> HandlerResult:
        key = event.natural_key
        if not key:
            return self.skip(event, ErrorCode.MISSING_NATURAL_KEY)

        def _grant(purchase: CoursePurchase) -> bool:
            if purchase.access_granted and purchase.is_paid:
                return False
            purchase.status = RecordStatus.ACTIVE
            purchase.payment_status = PaymentStatus.PAID
            purchase.payment_method = "paystack"
            purchase.transaction_id = event.reference
            purchase.paid_at = event.paid_at_iso
            purchase.access_granted = True
            purchase.updated_at = dt.datetime.now(dt.UTC).isoformat()
            return True

        updated = self.context.stores.course_purchases.update(key, _grant)
        if updated is None:
            return self.skip(event, ErrorCode.RECORD_NOT_FOUND)

        purchase, granted = updated
        if not granted:
            return self.result(ProcessingResult.REPLAY, event, "Access already granted", key)

        steps = []
        if purchase.email:
            steps.append(
                SideEffect(
                    "send_course_access_email",
                    lambda: self.context.send(notifications.course_access(purchase)),
                )
            )
        report = self.run_side_effects(event, steps)
        return self.result(ProcessingResult.SUCCESS, event, "Course access granted", key, report)
