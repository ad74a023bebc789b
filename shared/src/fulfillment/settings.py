"""Runtime settings read from environment variables.

Secrets (Paystack keys) are not read here; PaystackService resolves them
from the environment or SSM Parameter Store on first use.
"""

import os
from dataclasses import dataclass
from functools import lru_cache


def _int_env(name: str, default: int, minimum: int = 1) -> int:
    try:
        value = int(os.environ.get(name, default))
    except ValueError:
        value = default
    return max(value, minimum)


@dataclass(frozen=True)
class Settings:
    """Pipeline configuration."""

    environment: str = "dev"
    document_store: str = "dynamodb"
    business_notification_email: str = "hello@lashdiary.co.ke"
    email_sender: str = "hello@lashdiary.co.ke"
    studio_location: str = "LashDiary Studio, Nairobi, Kenya"
    calendar_timezone: str = "Africa/Nairobi"
    client_manage_window_hours: int = 72
    store_max_write_attempts: int = 5

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        notification_email = os.environ.get(
            "BUSINESS_NOTIFICATION_EMAIL", cls.business_notification_email
        )
        return cls(
            environment=os.environ.get("ENVIRONMENT", "dev"),
            document_store=os.environ.get("DOCUMENT_STORE", "dynamodb").lower(),
            business_notification_email=notification_email,
            email_sender=os.environ.get("EMAIL_SENDER", notification_email),
            studio_location=os.environ.get("STUDIO_LOCATION", cls.studio_location),
            calendar_timezone=os.environ.get("CALENDAR_TIMEZONE", cls.calendar_timezone),
            client_manage_window_hours=_int_env("CLIENT_MANAGE_WINDOW_HOURS", 72),
            store_max_write_attempts=_int_env("STORE_MAX_WRITE_ATTEMPTS", 5),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings (cached)."""
    return Settings.from_env()
