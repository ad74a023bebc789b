"""Invoice payments. Invoices are raised by an admin, so there is no
pending intent; a payment for an unknown invoice is logged and skipped."""

import datetime as dt

from fulfillment.models.enums import PaymentStatus, PaymentType, ProcessingResult, RecordStatus
from fulfillment.models.errors import ErrorCode
from fulfillment.models.payment_event import PaymentEvent
from fulfillment.models.records import Invoice
from fulfillment.services import notifications
from fulfillment.services.side_effects import SideEffect

from .base import HandlerResult, PaymentHandler


class InvoiceHandler(PaymentHandler):
    payment_type = PaymentType.INVOICE

    def handle(self, event: PaymentEvent) -> HandlerResult:
        key = event.natural_key
        if not key:
            return self.skip(event, ErrorCode.MISSING_NATURAL_KEY)

        def _pay(invoice: Invoice) -> bool:
            if invoice.is_paid:
                return False
            invoice.status = RecordStatus.PAID
            invoice.payment_status = PaymentStatus.PAID
            invoice.paid_at = event.paid_at_iso
            invoice.payment_method = "paystack"
            invoice.transaction_id = event.reference
            invoice.updated_at = dt.datetime.now(dt.UTC).isoformat()
            return True

        updated = self.context.stores.invoices.update(key, _pay)
        if updated is None:
            return self.skip(event, ErrorCode.RECORD_NOT_FOUND)

        invoice, first_payment = updated
        if not first_payment:
            return self.result(ProcessingResult.REPLAY, event, "Invoice already paid", key)

        steps = []
        if invoice.email or event.customer_email:
            steps.append(
                SideEffect(
                    "send_invoice_receipt",
                    lambda: self.context.send(notifications.invoice_receipt(invoice, event)),
                )
            )
        report = self.run_side_effects(event, steps)
        return self.result(ProcessingResult.SUCCESS, event, "Invoice paid", key, report)
