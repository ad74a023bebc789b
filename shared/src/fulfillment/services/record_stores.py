"""Collection adapters over whole-document storage.

Each logical collection (pending bookings, confirmed bookings, slot
reservations, ...) is one document holding a list of items. Every change is
a read-modify-write against the document version, retried on conflict, so
concurrent webhook deliveries cannot silently overwrite each other.
"""

import copy
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from fulfillment.models.errors import ConcurrentWriteError, VersionConflict
from fulfillment.models.records import (
    Booking,
    ConfirmedRecord,
    Consultation,
    CoursePurchase,
    GiftCardGrant,
    Invoice,
    PendingIntent,
    ShopOrder,
    SlotReservation,
    Subscriber,
)
from fulfillment.utils.logging import get_logger

from .document_store import DocumentStore

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R", bound=ConfirmedRecord)

DEFAULT_MAX_WRITE_ATTEMPTS = 5


class DocumentCollection:
    """A list of JSON items stored as one document.

    Some documents are a bare list, others wrap the list in an object
    (``{"bookings": [...]}``); ``wrapper_field`` selects the latter.
    """

    def __init__(
        self,
        store: DocumentStore,
        name: str,
        *,
        wrapper_field: str | None = None,
        max_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS,
    ) -> None:
        self.store = store
        self.name = name
        self.wrapper_field = wrapper_field
        self.max_attempts = max(max_attempts, 1)

    def _items(self, body: Any) -> list[dict[str, Any]]:
        if body is None:
            return []
        if self.wrapper_field and isinstance(body, dict):
            return list(body.get(self.wrapper_field) or [])
        if isinstance(body, list):
            return list(body)
        return []

    def _wrap(self, items: list[dict[str, Any]], body: Any) -> Any:
        if not self.wrapper_field:
            return items
        document = dict(body) if isinstance(body, dict) else {}
        document[self.wrapper_field] = items
        return document

    def load(self) -> list[dict[str, Any]]:
        """Read the current items."""
        return self._items(self.store.read(self.name).body)

    def mutate(self, fn: Callable[[list[dict[str, Any]]], T]) -> T:
        """Apply fn to the item list and write it back with compare-and-set.

        fn mutates the list in place and may be called more than once, so it
        must not have effects outside the list. Nothing is written when fn
        leaves the list unchanged.

        Args:
            fn: Mutation applied to a fresh copy of the items

        Returns:
            Whatever fn returned on the attempt that was persisted

        Raises:
            ConcurrentWriteError: If every attempt lost to another writer
        """
        for attempt in range(1, self.max_attempts + 1):
            document = self.store.read(self.name)
            items = self._items(document.body)
            before = copy.deepcopy(items)

            result = fn(items)
            if items == before:
                return result

            try:
                self.store.write(self.name, self._wrap(items, document.body), document.version)
                return result
            except VersionConflict:
                logger.warning(
                    "Version conflict on %s (attempt %d/%d), retrying",
                    self.name,
                    attempt,
                    self.max_attempts,
                )

        raise ConcurrentWriteError(self.name, self.max_attempts)


class PendingStore:
    """Lookup and removal of pending intents by natural key."""

    def __init__(self, collection: DocumentCollection) -> None:
        self.collection = collection

    def find(self, key: str) -> PendingIntent | None:
        """Find the pending intent for a natural key.

        Args:
            key: Natural key

        Returns:
            PendingIntent or None if not found
        """
        for item in self.collection.load():
            if item.get("natural_key") == key:
                return PendingIntent.model_validate(item)
        return None

    def add(self, intent: PendingIntent) -> bool:
        """Store a pending intent unless one exists for its key.

        Returns:
            True if stored
        """
        def _add(items: list[dict[str, Any]]) -> bool:
            if any(i.get("natural_key") == intent.natural_key for i in items):
                return False
            items.append(intent.model_dump(mode="json"))
            return True

        return self.collection.mutate(_add)

    def remove(self, key: str) -> bool:
        """Remove the pending intent for a key. Absent keys are a no-op.

        Returns:
            True if an intent was removed
        """
        def _remove(items: list[dict[str, Any]]) -> bool:
            kept = [i for i in items if i.get("natural_key") != key]
            removed = len(kept) != len(items)
            items[:] = kept
            return removed

        return self.collection.mutate(_remove)


class ConfirmedStore(Generic[R]):
    """Lookup, insert and update of confirmed records.

    ``alias_fields`` lists other fields a record can be found by (a booking
    is addressed by its reference on first payment and by its booking_id on
    balance payments).
    """

    def __init__(
        self,
        collection: DocumentCollection,
        model: type[R],
        alias_fields: tuple[str, ...] = (),
    ) -> None:
        self.collection = collection
        self.model = model
        self.alias_fields = alias_fields

    def _matches(self, item: dict[str, Any], key: str) -> bool:
        if item.get("natural_key") == key:
            return True
        return any(item.get(field) == key for field in self.alias_fields)

    def _index_of(self, items: list[dict[str, Any]], key: str) -> int | None:
        for index, item in enumerate(items):
            if self._matches(item, key):
                return index
        return None

    def find(self, key: str) -> R | None:
        """Find the confirmed record for a natural key (or alias).

        Args:
            key: Natural key or alias value

        Returns:
            Record or None if not found
        """
        for item in self.collection.load():
            if self._matches(item, key):
                return self.model.model_validate(item)
        return None

    def all(self) -> list[R]:
        """Load every record in the collection."""
        return [self.model.model_validate(item) for item in self.collection.load()]

    def insert_if_absent(self, record: R) -> bool:
        """Insert a record unless one already exists for its natural key.

        This is the promotion step: under concurrent deliveries exactly one
        caller gets True.

        Returns:
            True if inserted, False if a record already existed
        """
        def _insert(items: list[dict[str, Any]]) -> bool:
            if self._index_of(items, record.natural_key) is not None:
                return False
            items.append(record.model_dump(mode="json"))
            return True

        return self.collection.mutate(_insert)

    def upsert(self, record: R) -> None:
        """Replace the record with the same natural key, or append it."""
        def _upsert(items: list[dict[str, Any]]) -> None:
            data = record.model_dump(mode="json")
            index = self._index_of(items, record.natural_key)
            if index is None:
                items.append(data)
            else:
                items[index] = data

        self.collection.mutate(_upsert)

    def update(self, key: str, fn: Callable[[R], T]) -> tuple[R, T] | None:
        """Atomically modify one record.

        fn receives a fresh model, mutates it and returns a value; it may run
        more than once under contention.

        Args:
            key: Natural key or alias value
            fn: Mutation applied to the record

        Returns:
            (updated record, fn result), or None if no record matched
        """
        def _update(items: list[dict[str, Any]]) -> tuple[R, T] | None:
            index = self._index_of(items, key)
            if index is None:
                return None
            record = self.model.model_validate(items[index])
            result = fn(record)
            items[index] = record.model_dump(mode="json")
            return record, result

        return self.collection.mutate(_update)


class SlotReservationStore:
    """Time-slot holds for bookings awaiting payment."""

    def __init__(self, collection: DocumentCollection) -> None:
        self.collection = collection

    def find(self, key: str) -> list[SlotReservation]:
        return [
            SlotReservation.model_validate(item)
            for item in self.collection.load()
            if item.get("natural_key") == key
        ]

    def add(self, reservation: SlotReservation) -> None:
        def _add(items: list[dict[str, Any]]) -> None:
            items.append(reservation.model_dump(mode="json"))

        self.collection.mutate(_add)

    def release(self, key: str) -> int:
        """Delete every reservation held for a natural key.

        Returns:
            Number of reservations released
        """
        def _release(items: list[dict[str, Any]]) -> int:
            kept = [i for i in items if i.get("natural_key") != key]
            released = len(items) - len(kept)
            items[:] = kept
            return released

        return self.collection.mutate(_release)


@dataclass
class RecordStores:
    """Every collection the pipeline reads or writes."""

    pending_bookings: PendingStore
    pending_consultations: PendingStore
    pending_gift_cards: PendingStore
    slot_reservations: SlotReservationStore
    bookings: ConfirmedStore[Booking]
    consultations: ConfirmedStore[Consultation]
    invoices: ConfirmedStore[Invoice]
    gift_card_grants: ConfirmedStore[GiftCardGrant]
    web_services_orders: ConfirmedStore[ShopOrder]
    tier_orders: ConfirmedStore[ShopOrder]
    yearly_subscribers: ConfirmedStore[Subscriber]
    course_purchases: ConfirmedStore[CoursePurchase]

    @classmethod
    def from_store(
        cls,
        store: DocumentStore,
        max_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS,
    ) -> "RecordStores":
        """Bind every collection to its document in the given store."""

        def collection(name: str, wrapper_field: str | None = None) -> DocumentCollection:
            return DocumentCollection(
                store, name, wrapper_field=wrapper_field, max_attempts=max_attempts
            )

        return cls(
            pending_bookings=PendingStore(collection("pending-bookings")),
            pending_consultations=PendingStore(collection("pending-consultations")),
            pending_gift_cards=PendingStore(collection("pending-gift-cards")),
            slot_reservations=SlotReservationStore(collection("pending-booking-reservations")),
            bookings=ConfirmedStore(
                collection("bookings", "bookings"), Booking, alias_fields=("booking_id",)
            ),
            consultations=ConfirmedStore(
                collection("labs-consultations", "consultations"), Consultation
            ),
            invoices=ConfirmedStore(collection("labs-invoices"), Invoice),
            gift_card_grants=ConfirmedStore(collection("gift-card-grants"), GiftCardGrant),
            web_services_orders=ConfirmedStore(collection("labs-web-services-orders"), ShopOrder),
            tier_orders=ConfirmedStore(collection("labs-tier-orders"), ShopOrder),
            yearly_subscribers=ConfirmedStore(collection("labs-yearly-subscribers"), Subscriber),
            course_purchases=ConfirmedStore(
                collection("course-purchases", "purchases"), CoursePurchase
            ),
        )
