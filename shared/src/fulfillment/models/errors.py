"""Standard error codes for the payment fulfillment pipeline.

Only signature failures ever reach the gateway as a non-200 response.
Every other code is logged and recorded in the webhook audit trail.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Error codes raised or recorded by the pipeline."""

    # Inbound delivery errors (ERR_WEBHOOK_001-ERR_WEBHOOK_003)
    INVALID_WEBHOOK_SIGNATURE = "ERR_WEBHOOK_001"
    MALFORMED_PAYLOAD = "ERR_WEBHOOK_002"
    MISSING_REFERENCE = "ERR_WEBHOOK_003"

    # Gateway errors (ERR_GATEWAY_001-ERR_GATEWAY_002)
    GATEWAY_API_ERROR = "ERR_GATEWAY_001"
    TRANSACTION_NOT_SUCCESSFUL = "ERR_GATEWAY_002"

    # Fulfillment errors (ERR_FULFILL_001-ERR_FULFILL_004)
    UNKNOWN_PAYMENT_TYPE = "ERR_FULFILL_001"
    MISSING_NATURAL_KEY = "ERR_FULFILL_002"
    RECORD_NOT_FOUND = "ERR_FULFILL_003"
    CONCURRENT_WRITE = "ERR_FULFILL_004"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Invalid webhook signature",
    ErrorCode.MALFORMED_PAYLOAD: "Webhook payload is not valid JSON",
    ErrorCode.MISSING_REFERENCE: "Webhook event has no transaction reference",
    ErrorCode.GATEWAY_API_ERROR: "Payment gateway API error occurred",
    ErrorCode.TRANSACTION_NOT_SUCCESSFUL: "Gateway reports the transaction as not successful",
    ErrorCode.UNKNOWN_PAYMENT_TYPE: "No handler registered for payment type",
    ErrorCode.MISSING_NATURAL_KEY: "Payment metadata has no natural key",
    ErrorCode.RECORD_NOT_FOUND: "No pending or confirmed record for natural key",
    ErrorCode.CONCURRENT_WRITE: "Document changed concurrently and retries were exhausted",
}

# Recovery hints for operators reading the audit trail
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Verify webhook secret configuration",
    ErrorCode.MALFORMED_PAYLOAD: "Inspect the raw delivery in the gateway dashboard",
    ErrorCode.MISSING_REFERENCE: "Inspect the raw delivery in the gateway dashboard",
    ErrorCode.GATEWAY_API_ERROR: "Re-verify the reference manually once the gateway is reachable",
    ErrorCode.TRANSACTION_NOT_SUCCESSFUL: "No action needed unless the customer disputes the charge",
    ErrorCode.UNKNOWN_PAYMENT_TYPE: "Check the payment_type attached when the transaction was initialised",
    ErrorCode.MISSING_NATURAL_KEY: "Check the metadata attached when the transaction was initialised",
    ErrorCode.RECORD_NOT_FOUND: "Look up the intent by reference and confirm it manually",
    ErrorCode.CONCURRENT_WRITE: "Replay the delivery from the gateway dashboard",
}


class ErrorResponse(BaseModel):
    """Standard error body returned by the HTTP layer."""

    model_config = ConfigDict(strict=True)

    received: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, str]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            An ErrorResponse with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class FulfillmentError(Exception):
    """Exception raised by pipeline operations.

    The HTTP layer converts it to an ErrorResponse.
    """

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ):
        self.code = code
        self.message = ERROR_MESSAGES[code]
        self.recovery = ERROR_RECOVERY[code]
        self.details = details
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse."""
        return ErrorResponse.from_code(self.code, self.details)


class ConcurrentWriteError(FulfillmentError):
    """Raised when a compare-and-set write keeps losing to other writers."""

    def __init__(self, document: str, attempts: int):
        super().__init__(
            ErrorCode.CONCURRENT_WRITE,
            details={"document": document, "attempts": str(attempts)},
        )
        self.document = document
        self.attempts = attempts


class VersionConflict(Exception):
    """Raised by a document store when the expected version is stale."""

    def __init__(self, document: str, expected_version: int):
        super().__init__(
            f"Document {document} is no longer at version {expected_version}"
        )
        self.document = document
        self.expected_version = expected_version
