"""Webhook delivery log for auditing."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import ProcessingResult


class WebhookEventLog(BaseModel):
    """Log of a received gateway webhook delivery.

    Used for:
    - Auditing: track all webhook deliveries
    - Debugging: investigate payment issues
    - Manual recovery: the error message and natural key point at the record
    """

    model_config = ConfigDict(strict=True)

    reference: str = Field(
        ...,
        description="Gateway transaction reference",
        examples=["booking-1767225600000-x8k2m9q1a"],
    )
    event_type: str = Field(
        ...,
        description="Gateway event type",
        examples=["charge.success", "charge.failed"],
    )
    processed_at: datetime = Field(
        ...,
        description="When the delivery was processed",
    )
    payload_hash: str = Field(
        ...,
        description="SHA-256 hash of the raw body",
        examples=["a1b2c3d4e5f6..."],
    )
    payment_type: str | None = Field(
        default=None,
        description="payment_type tag from verified metadata",
    )
    natural_key: str | None = Field(
        default=None,
        description="Natural key the delivery resolved to",
    )
    processing_result: ProcessingResult = Field(
        default=ProcessingResult.SUCCESS,
        description="success, replay, skipped, unknown_type or error",
    )
    error_message: str | None = Field(
        default=None,
        description="Error details if processing failed",
    )
    failed_side_effects: list[str] = Field(
        default_factory=list,
        description="Names of best-effort steps that raised",
    )

    @property
    def document_name(self) -> str:
        return f"webhook-events/{self.reference}/{self.payload_hash[:16]}"
