"""Dispatch of verified payment events to their type handler."""

from collections.abc import Iterable

from fulfillment.models.enums import PaymentType, ProcessingResult
from fulfillment.models.errors import ERROR_MESSAGES, ErrorCode, FulfillmentError
from fulfillment.models.payment_event import PaymentEvent
from fulfillment.utils.logging import get_logger

from .handlers import HANDLER_CLASSES, HandlerContext, HandlerResult, PaymentHandler

logger = get_logger(__name__)


class PaymentRouter:
    """Maps each PaymentType to exactly one handler.

    The registry is checked when the router is built, so a missing or
    duplicated handler fails at startup rather than on the first payment.
    """

    def __init__(self, handlers: Iterable[PaymentHandler]) -> None:
        registry: dict[PaymentType, PaymentHandler] = {}
        for handler in handlers:
            if handler.payment_type in registry:
                raise ValueError(f"Duplicate handler for payment type {handler.payment_type.value}")
            registry[handler.payment_type] = handler

        missing = [t.value for t in PaymentType if t not in registry]
        if missing:
            raise ValueError(f"No handler registered for payment types: {', '.join(missing)}")
        self._handlers = registry

    @classmethod
    def from_context(cls, context: HandlerContext) -> "PaymentRouter":
        return cls(handler_cls(context) for handler_cls in HANDLER_CLASSES)

    def handler_for(self, payment_type: PaymentType) -> PaymentHandler:
        return self._handlers[payment_type]

    def route(self, event: PaymentEvent) -> HandlerResult:
        """Run the handler for the event's payment type.

        Never raises: unknown types and handler failures are logged and
        reported in the result.
        """
        payment_type = event.payment_type
        if payment_type is None:
            logger.warning(
                "Unknown payment type %r for %s",
                event.metadata.payment_type,
                event.reference,
            )
            return HandlerResult(
                outcome=ProcessingResult.UNKNOWN_TYPE,
                natural_key=event.natural_key,
                message=ERROR_MESSAGES[ErrorCode.UNKNOWN_PAYMENT_TYPE],
                error_code=ErrorCode.UNKNOWN_PAYMENT_TYPE,
            )

        handler = self._handlers[payment_type]
        try:
            return handler.handle(event)
        except FulfillmentError as e:
            logger.error(
                "Handler %s failed for %s (natural_key=%s): %s",
                payment_type.value,
                event.reference,
                event.natural_key,
                e.message,
                exc_info=True,
            )
            return HandlerResult(
                outcome=ProcessingResult.ERROR,
                natural_key=event.natural_key,
                message=e.message,
                error_code=e.code,
            )
        except Exception as e:
            logger.exception(
                "Handler %s failed for %s (natural_key=%s)",
                payment_type.value,
                event.reference,
                event.natural_key,
            )
            return HandlerResult(
                outcome=ProcessingResult.ERROR,
                natural_key=event.natural_key,
                message=repr(e),
            )
