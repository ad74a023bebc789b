"""Capacity bookkeeping: mark days with no open slots as fully booked."""

import datetime as dt
from collections.abc import Iterable
from typing import Any

from fulfillment.models.enums import RecordStatus
from fulfillment.models.records import Booking
from fulfillment.utils.logging import get_logger

from .document_store import DocumentStore
from .record_stores import DEFAULT_MAX_WRITE_ATTEMPTS, DocumentCollection

logger = get_logger(__name__)

# Studio local offset (Africa/Nairobi has no DST)
SLOT_UTC_OFFSET = "+03:00"

DAY_KEYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DEFAULT_DAY_ENABLED: dict[str, bool] = {
    "monday": True,
    "tuesday": True,
    "wednesday": True,
    "thursday": True,
    "friday": True,
    "saturday": False,
    "sunday": True,
}

DEFAULT_WEEKDAY_SLOTS = [
    {"hour": 9, "minute": 30},
    {"hour": 12, "minute": 0},
    {"hour": 14, "minute": 30},
    {"hour": 16, "minute": 30},
]
DEFAULT_SUNDAY_SLOTS = [{"hour": 12, "minute": 30}, {"hour": 15, "minute": 0}]
DEFAULT_SATURDAY_SLOTS = [{"hour": 12, "minute": 30}]


def _non_empty(value: Any) -> list[dict[str, Any]] | None:
    return value if isinstance(value, list) and value else None


def generate_time_slots(date_str: str, availability: dict[str, Any] | None) -> list[str]:
    """List the bookable slot start times for a date.

    Args:
        date_str: Date as YYYY-MM-DD
        availability: The availability document (business hours, slots)

    Returns:
        ISO timestamps with the studio offset, empty if the day is closed
    """
    try:
        day = dt.date.fromisoformat(date_str)
    except ValueError:
        return []

    availability = availability or {}
    day_key = DAY_KEYS[day.weekday()]
    business_hours = availability.get("business_hours") or {}
    configured = (business_hours.get(day_key) or {}).get("enabled")
    enabled = configured if isinstance(configured, bool) else DEFAULT_DAY_ENABLED[day_key]
    if not enabled:
        return []

    time_slots = availability.get("time_slots") or {}
    weekdays = _non_empty(time_slots.get("weekdays"))
    if day_key == "sunday":
        config = _non_empty(time_slots.get("sunday")) or DEFAULT_SUNDAY_SLOTS
    elif day_key == "saturday":
        config = _non_empty(time_slots.get("saturday")) or weekdays or DEFAULT_SATURDAY_SLOTS
    else:
        config = _non_empty(time_slots.get(day_key)) or weekdays or DEFAULT_WEEKDAY_SLOTS

    slots = []
    for slot in config:
        hour = slot.get("hour") if isinstance(slot.get("hour"), int) else 0
        minute = slot.get("minute") if isinstance(slot.get("minute"), int) else 0
        slots.append(f"{date_str}T{hour:02d}:{minute:02d}:00{SLOT_UTC_OFFSET}")
    return slots


def _slot_instant(value: str) -> dt.datetime | None:
    try:
        parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = dt.datetime.fromisoformat(f"{value}{SLOT_UTC_OFFSET}")
    return parsed.astimezone(dt.UTC)


class AvailabilityService:
    """Maintains ``fully_booked_dates`` in the availability document."""

    DOCUMENT = "availability"

    def __init__(
        self,
        store: DocumentStore,
        max_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS,
    ) -> None:
        self.store = store
        self.fully_booked = DocumentCollection(
            store, self.DOCUMENT, wrapper_field="fully_booked_dates", max_attempts=max_attempts
        )

    def fully_booked_dates(self) -> list[str]:
        return [str(d) for d in self.fully_booked.load()]

    def update_fully_booked_state(self, date_str: str, bookings: Iterable[Booking]) -> bool | None:
        """Recompute whether a date is fully booked.

        A slot counts as taken when a non-cancelled booking starts at the
        same instant.

        Args:
            date_str: Date as YYYY-MM-DD
            bookings: All known bookings (other dates are ignored)

        Returns:
            True if the date is now fully booked, False if it is open,
            None if the studio is closed that day
        """
        slots = generate_time_slots(date_str, self.store.read(self.DOCUMENT).body)
        if not slots:
            return None

        booked = {
            instant
            for booking in bookings
            if booking.time_slot and booking.status != RecordStatus.CANCELLED
            for instant in [_slot_instant(booking.time_slot)]
            if instant is not None
        }
        all_filled = all(_slot_instant(slot) in booked for slot in slots)

        def _apply(items: list[Any]) -> None:
            marked = date_str in items
            if all_filled and not marked:
                items.append(date_str)
            elif not all_filled and marked:
                items[:] = [d for d in items if d != date_str]

        self.fully_booked.mutate(_apply)
        if all_filled:
            logger.info("Date %s is fully booked", date_str)
        return all_filled
