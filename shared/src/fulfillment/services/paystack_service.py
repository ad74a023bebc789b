"""Paystack gateway service: webhook signatures and transaction verification.

Secrets are read from the environment first, then from SSM Parameter Store.
Paystack signs webhooks with the account secret key, so the webhook secret
falls back to it when no dedicated value is configured.
"""

import hashlib
import hmac
import json
import os
from datetime import datetime
from functools import lru_cache
from typing import Any
from urllib.parse import quote

import httpx

from fulfillment.models.payment_event import VerifiedTransaction
from fulfillment.utils.logging import get_logger

from .ssm_service import SSMServiceError, get_ssm_service

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.paystack.co"
SIGNATURE_HEADER = "x-paystack-signature"
# SHA-512 hex digest length
SIGNATURE_LENGTH = 128


class PaystackServiceError(Exception):
    """Raised when a Paystack API call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize with message and optional HTTP status.

        Args:
            message: Human-readable error message.
            status_code: HTTP status returned by Paystack, if any.
        """
        super().__init__(message)
        self.status_code = status_code


class PaystackService:
    """Service for Paystack operations.

    Handles:
    - Webhook signature validation (HMAC-SHA512 of the raw body)
    - Transaction re-verification against the verify endpoint

    Usage:
        paystack = get_paystack_service()
        if paystack.verify_webhook_signature(raw_body, signature):
            transaction = paystack.verify_transaction(reference)
    """

    def __init__(
        self,
        environment: str | None = None,
        *,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        base_url: str | None = None,
        http_client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize Paystack service.

        Args:
            environment: Environment name (dev, prod). Defaults to ENVIRONMENT env var.
            secret_key: Secret key override (otherwise env, then SSM).
            webhook_secret: Webhook secret override (otherwise env, SSM, secret key).
            base_url: API base URL. Defaults to PAYSTACK_BASE_URL or the public API.
            http_client: Preconfigured httpx client (tests pass a MockTransport).
            timeout: Request timeout in seconds.
        """
        self._environment = environment or os.environ.get("ENVIRONMENT", "dev")
        self._secret_key = secret_key or os.environ.get("PAYSTACK_SECRET_KEY") or None
        self._webhook_secret = (
            webhook_secret or os.environ.get("PAYSTACK_WEBHOOK_SECRET") or None
        )
        self._base_url = (
            base_url or os.environ.get("PAYSTACK_BASE_URL") or DEFAULT_BASE_URL
        ).rstrip("/")
        self._http_client = http_client
        self._timeout = timeout

    def _parameter(self, name: str) -> str | None:
        try:
            return get_ssm_service().get_parameter(
                f"/studio/{self._environment}/paystack/{name}"
            )
        except SSMServiceError as e:
            logger.warning("Paystack %s not available from SSM: %s", name, e)
            return None

    def _get_secret_key(self) -> str:
        """Get the API secret key.

        Raises:
            PaystackServiceError: If no secret key is configured.
        """
        if self._secret_key is None:
            self._secret_key = self._parameter("secret_key")
        if not self._secret_key:
            raise PaystackServiceError("Paystack secret key is not configured")
        return self._secret_key

    def _get_webhook_secret(self) -> str | None:
        if self._webhook_secret is None:
            self._webhook_secret = self._parameter("webhook_secret")
        if self._webhook_secret:
            return self._webhook_secret
        try:
            return self._get_secret_key()
        except PaystackServiceError:
            return None

    def _get_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(base_url=self._base_url, timeout=self._timeout)
        return self._http_client

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        """Check the x-paystack-signature header against the raw body.

        A missing or malformed header, or a missing secret, fails verification.

        Args:
            payload: Raw request body bytes.
            signature: Header value.

        Returns:
            True if the signature matches.
        """
        if not signature:
            logger.warning("Webhook delivery without signature header")
            return False

        signature = signature.strip().lower()
        if len(signature) != SIGNATURE_LENGTH:
            logger.warning("Malformed webhook signature (length %d)", len(signature))
            return False
        try:
            bytes.fromhex(signature)
        except ValueError:
            logger.warning("Malformed webhook signature (not hex)")
            return False

        secret = self._get_webhook_secret()
        if not secret:
            logger.error("No Paystack webhook secret configured; rejecting delivery")
            return False

        expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()
        if not hmac.compare_digest(expected, signature):
            logger.warning("Invalid webhook signature")
            return False
        return True

    def verify_transaction(self, reference: str) -> VerifiedTransaction:
        """Fetch the authoritative state of a transaction.

        Args:
            reference: Gateway transaction reference.

        Returns:
            VerifiedTransaction built from the verify endpoint's data.

        Raises:
            PaystackServiceError: On transport error, non-2xx or status false.
        """
        headers = {
            "Authorization": f"Bearer {self._get_secret_key()}",
            "Content-Type": "application/json",
        }
        url = f"{self._base_url}/transaction/verify/{quote(reference, safe='')}"

        try:
            response = self._get_client().get(url, headers=headers)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Paystack verify failed for %s: HTTP %d",
                reference,
                e.response.status_code,
            )
            raise PaystackServiceError(
                f"Paystack verify returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error("Paystack verify failed for %s: %s", reference, e)
            raise PaystackServiceError(f"Paystack verify request failed: {e}") from e
        except ValueError as e:
            raise PaystackServiceError("Paystack verify returned invalid JSON") from e

        if not isinstance(payload, dict) or not payload.get("status"):
            message = payload.get("message") if isinstance(payload, dict) else None
            raise PaystackServiceError(
                f"Paystack could not verify {reference}: {message or 'status false'}"
            )

        data = payload.get("data") or {}
        return self._to_transaction(reference, data)

    @staticmethod
    def _to_transaction(reference: str, data: dict[str, Any]) -> VerifiedTransaction:
        metadata = data.get("metadata")
        # Metadata set through the dashboard arrives as a JSON string
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except ValueError:
                metadata = None
        if not isinstance(metadata, dict):
            metadata = {}

        paid_at_raw = data.get("paid_at") or data.get("paidAt")
        paid_at: datetime | None = None
        if paid_at_raw:
            try:
                paid_at = datetime.fromisoformat(str(paid_at_raw).replace("Z", "+00:00"))
            except ValueError:
                logger.warning("Unparseable paid_at %r for %s", paid_at_raw, reference)

        customer = data.get("customer") or {}
        return VerifiedTransaction(
            reference=str(data.get("reference") or reference),
            status=str(data.get("status") or "unknown"),
            amount_minor_units=int(data.get("amount") or 0),
            currency=str(data.get("currency") or "KES"),
            paid_at=paid_at,
            customer_email=customer.get("email") if isinstance(customer, dict) else None,
            metadata=metadata,
        )

    @staticmethod
    def compute_payload_hash(payload: bytes) -> str:
        """Compute SHA-256 hash of webhook payload for the audit log.

        Args:
            payload: Raw webhook payload bytes.

        Returns:
            Hex-encoded SHA-256 hash.
        """
        return hashlib.sha256(payload).hexdigest()


@lru_cache(maxsize=1)
def get_paystack_service() -> PaystackService:
    """Get the shared PaystackService instance."""
    return PaystackService()
