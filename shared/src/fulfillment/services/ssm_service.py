"""SSM Parameter Store access for gateway secrets.

Paystack keys live under ``/studio/{environment}/paystack/`` as SecureString
parameters. Values are cached per process.
"""

from functools import lru_cache
from typing import ClassVar

import boto3
from botocore.exceptions import ClientError

from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)


class SSMServiceError(Exception):
    """Raised when SSM parameter retrieval fails."""


class SSMService:
    """Cached reader for SecureString parameters.

    Usage:
        ssm = get_ssm_service()
        secret = ssm.get_parameter("/studio/dev/paystack/secret_key")
    """

    _instance: ClassVar["SSMService | None"] = None
    _cache: ClassVar[dict[str, str]] = {}

    def __init__(self) -> None:
        self._client = boto3.client("ssm")

    @classmethod
    def get_instance(cls) -> "SSMService":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def get_parameter(self, name: str, *, use_cache: bool = True) -> str:
        """Retrieve a decrypted parameter value.

        Args:
            name: Full parameter path
            use_cache: Return the cached value if one exists

        Returns:
            The decrypted parameter value.

        Raises:
            SSMServiceError: If the parameter cannot be retrieved.
        """
        if use_cache and name in self._cache:
            return self._cache[name]

        try:
            logger.info("Fetching SSM parameter: %s", name)
            response = self._client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code == "ParameterNotFound":
                raise SSMServiceError(f"SSM parameter not found: {name}") from e
            if error_code == "AccessDeniedException":
                raise SSMServiceError(
                    f"Access denied to SSM parameter: {name}. "
                    "Check IAM permissions for ssm:GetParameter."
                ) from e
            raise SSMServiceError(f"Failed to retrieve SSM parameter {name}: {e}") from e

        value: str = response["Parameter"]["Value"]
        self._cache[name] = value
        return value

    def clear_cache(self) -> None:
        """Clear all cached parameters."""
        self._cache.clear()
        logger.info("SSM parameter cache cleared")

    @classmethod
    def reset(cls) -> None:
        """Drop the shared instance and its cache (for testing only)."""
        cls._instance = None
        cls._cache.clear()


@lru_cache(maxsize=1)
def get_ssm_service() -> SSMService:
    """Get the shared SSMService instance."""
    return SSMService.get_instance()
