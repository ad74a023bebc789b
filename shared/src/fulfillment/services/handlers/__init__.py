"""Payment type handlers, one per PaymentType."""

from .base import HandlerContext, HandlerResult, PaymentHandler, PromotingHandler
from .booking import BookingBalanceHandler, BookingHandler
from .consultation import ConsultationHandler
from .course import CoursePurchaseHandler
from .gift_card import GiftCardHandler
from .invoice import InvoiceHandler
from .labs import TierOrderHandler, WebServicesOrderHandler, YearlySubscriptionHandler

HANDLER_CLASSES: tuple[type[PaymentHandler], ...] = (
    BookingHandler,
    BookingBalanceHandler,
    ConsultationHandler,
    InvoiceHandler,
    GiftCardHandler,
    WebServicesOrderHandler,
    TierOrderHandler,
    YearlySubscriptionHandler,
    CoursePurchaseHandler,
)

__all__ = [
    "HANDLER_CLASSES",
    "BookingBalanceHandler",
    "BookingHandler",
    "ConsultationHandler",
    "CoursePurchaseHandler",
    "GiftCardHandler",
    "HandlerContext",
    "HandlerResult",
    "InvoiceHandler",
    "PaymentHandler",
    "PromotingHandler",
    "TierOrderHandler",
    "WebServicesOrderHandler",
    "YearlySubscriptionHandler",
]
