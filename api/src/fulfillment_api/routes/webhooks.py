"""Webhook endpoints for Paystack deliveries.

These endpoints do NOT require authentication; the payload is authenticated
by its HMAC signature instead.
"""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from fulfillment.models.errors import FulfillmentError
from fulfillment.services.paystack_service import SIGNATURE_HEADER
from fulfillment.services.webhook_handler import WebhookHandler
from fulfillment.utils.logging import get_logger
from fulfillment_api.dependencies import get_webhook_handler

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the gateway."""

    received: bool = True


class WebhookErrorResponse(BaseModel):
    """Body returned when the signature does not verify."""

    received: bool = False
    message: str


WEBHOOK_DESCRIPTION = """
Endpoint for Paystack webhook events. Only `charge.success` is acted on;
the transaction is re-verified with Paystack before anything is written.

**No authentication required** - signature is verified with HMAC-SHA512.

**Idempotent**: repeated deliveries of the same payment change nothing.
Every verified delivery is acknowledged with 200 so the gateway stops retrying.
"""


@router.post(
    "/webhook",
    summary="Receive Paystack webhook events",
    description=WEBHOOK_DESCRIPTION,
    response_model=WebhookResponse,
    responses={
        200: {"description": "Delivery acknowledged", "model": WebhookResponse},
        401: {"description": "Invalid signature", "model": WebhookErrorResponse},
    },
)
@router.post(
    "/api/paystack/webhook",
    summary="Receive Paystack webhook events",
    description=WEBHOOK_DESCRIPTION,
    response_model=WebhookResponse,
    responses={
        200: {"description": "Delivery acknowledged", "model": WebhookResponse},
        401: {"description": "Invalid signature", "model": WebhookErrorResponse},
    },
)
async def handle_paystack_webhook(
    request: Request,
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> WebhookResponse:
    """Handle an incoming Paystack delivery.

    Raises:
        FulfillmentError: Invalid signature, rendered as 401 by the
            registered exception handler
    """
    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        outcome = await run_in_threadpool(handler.process, payload, signature)
    except FulfillmentError:
        raise
    except Exception:
        logger.exception("Unexpected failure processing webhook delivery")
        return WebhookResponse()

    logger.info(
        "Webhook %s for %s finished: %s",
        outcome.event_type or "unknown",
        outcome.reference or "no-reference",
        outcome.result.value,
    )
    return WebhookResponse()
