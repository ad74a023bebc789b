"""Email messages sent by the pipeline.

Each builder returns an EmailMessage; side effects pass it to an
EmailSender. Layout is deliberately plain; branded templates live outside
this package.
"""

from dataclasses import dataclass
from decimal import Decimal
from html import escape

from fulfillment.models.payment_event import PaymentEvent
from fulfillment.models.records import (
    Booking,
    Consultation,
    CoursePurchase,
    GiftCardGrant,
    Invoice,
    ShopOrder,
)

_WRAPPER = (
    '<div style="font-family: Arial, sans-serif; padding: 24px; '
    'background: #FDF9F4; color: #2F1A16;">{body}</div>'
)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str


def _money(currency: str, amount: Decimal | int | float) -> str:
    return f"{escape(currency)} {Decimal(amount):,.2f}"


def _rows(rows: list[tuple[str, object]]) -> str:
    return "".join(
        f"<p><strong>{escape(label)}:</strong> {escape(str(value if value not in (None, '') else 'N/A'))}</p>"
        for label, value in rows
    )


def _page(heading: str, rows: list[tuple[str, object]], footer: str = "") -> str:
    body = f'<h2 style="color: #7C4B31;">{escape(heading)}</h2>{_rows(rows)}'
    if footer:
        body += f"<p>{escape(footer)}</p>"
    return _WRAPPER.format(body=body)


def payment_received(event: PaymentEvent, admin_email: str) -> EmailMessage:
    """Admin notification sent for every verified charge."""
    return EmailMessage(
        to=admin_email,
        subject=f"Payment Successful: {event.reference}",
        html=_page(
            "Payment Received",
            [
                ("Reference", event.reference),
                ("Amount", _money(event.currency, event.amount)),
                ("Customer", event.customer_email),
                ("Payment Type", event.metadata.payment_type),
                ("Paid At", event.paid_at_iso),
            ],
        ),
    )


def booking_confirmation(booking: Booking, currency: str) -> EmailMessage:
    balance = max(Decimal(booking.final_price) - Decimal(booking.amount_paid), Decimal(0))
    return EmailMessage(
        to=booking.email,
        subject="Your appointment is confirmed",
        html=_page(
            f"Hi {booking.name}, your appointment is confirmed",
            [
                ("Service", booking.service),
                ("Date", booking.date),
                ("Time", booking.time_slot),
                ("Location", booking.location),
                ("Deposit paid", _money(currency, booking.amount_paid)),
                ("Balance due", _money(currency, balance)),
                ("Booking reference", booking.natural_key),
            ],
            footer=(
                f"You can reschedule or cancel until {booking.cancellation_cutoff}."
                if booking.cancellation_cutoff
                else ""
            ),
        ),
    )


def booking_payment_receipt(booking: Booking, event: PaymentEvent) -> EmailMessage:
    balance = max(Decimal(booking.final_price) - Decimal(booking.amount_paid), Decimal(0))
    return EmailMessage(
        to=booking.email or (event.customer_email or ""),
        subject="Payment Receipt - Booking Balance",
        html=_page(
            "Payment Receipt",
            [
                ("Amount", _money(event.currency, event.amount)),
                ("Total paid", _money(event.currency, booking.amount_paid)),
                ("Remaining balance", _money(event.currency, balance)),
                ("Service", booking.service),
                ("Reference", event.reference),
            ],
            footer="Your booking is fully paid. Thank you!" if booking.is_paid_in_full else "",
        ),
    )


def consultation_confirmation(consultation: Consultation) -> EmailMessage:
    return EmailMessage(
        to=consultation.email,
        subject="Your consultation is confirmed",
        html=_page(
            f"Hi {consultation.name}, your consultation is confirmed",
            [
                ("Business", consultation.business_name),
                ("Date", consultation.preferred_date),
                ("Time", consultation.preferred_time),
                ("Meeting type", consultation.meeting_type),
                ("Consultation ID", consultation.natural_key),
            ],
        ),
    )


def invoice_receipt(invoice: Invoice, event: PaymentEvent) -> EmailMessage:
    return EmailMessage(
        to=invoice.email or (event.customer_email or ""),
        subject=f"Payment received for invoice {invoice.natural_key}",
        html=_page(
            "Invoice Paid",
            [
                ("Client", invoice.client_name),
                ("Invoice", invoice.natural_key),
                ("Amount", _money(event.currency, event.amount)),
                ("Reference", event.reference),
                ("Paid At", invoice.paid_at),
            ],
        ),
    )


def gift_card_delivery(grant: GiftCardGrant, currency: str) -> EmailMessage:
    recipient = grant.recipient_email or grant.purchaser_email
    return EmailMessage(
        to=recipient,
        subject="You've received a gift card",
        html=_page(
            f"A gift card from {grant.purchaser_name}",
            [
                ("Code", grant.code),
                ("Amount", _money(currency, grant.amount)),
                ("Expires", grant.expires_at),
            ],
            footer=grant.message or "",
        ),
    )


def referral_code(order: ShopOrder, code: str) -> EmailMessage:
    return EmailMessage(
        to=order.email,
        subject="Your LashDiary Labs referral code",
        html=_page(
            f"Thank you, {order.name}",
            [("Order", order.natural_key), ("Referral code", code)],
            footer="Share this code with other business owners.",
        ),
    )


def tier_setup(order: ShopOrder) -> EmailMessage:
    return EmailMessage(
        to=order.email,
        subject="Welcome to LashDiary Labs - next steps",
        html=_page(
            f"Welcome, {order.name}",
            [
                ("Business", order.business_name),
                ("Tier", order.tier_id),
                ("Order", order.natural_key),
            ],
            footer="We will be in touch within two business days to begin your setup.",
        ),
    )


def course_access(purchase: CoursePurchase) -> EmailMessage:
    return EmailMessage(
        to=purchase.email,
        subject=f"Your access to {purchase.course_title or 'your course'}",
        html=_page(
            f"Hi {purchase.name}, your course is ready",
            [("Course", purchase.course_title), ("Purchase", purchase.natural_key)],
        ),
    )
