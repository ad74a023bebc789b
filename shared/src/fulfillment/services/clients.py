"""Client accounts created or updated when a customer pays.

Users live in the ``users`` document; each user also has a per-client
document ``client-{id}`` holding profile, preferences and visit history.
"""

import datetime as dt
import secrets
from dataclasses import dataclass
from typing import Any

from fulfillment.models.errors import VersionConflict
from fulfillment.utils.logging import get_logger

from .document_store import DocumentStore
from .record_stores import DEFAULT_MAX_WRITE_ATTEMPTS, DocumentCollection

logger = get_logger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class ClientAccount:
    user_id: str
    email: str
    created: bool
    history_added: bool


class ClientDirectory:
    """Upsert client users and append to their history."""

    USERS_DOCUMENT = "users"

    def __init__(
        self,
        store: DocumentStore,
        max_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.users = DocumentCollection(
            store, self.USERS_DOCUMENT, wrapper_field="users", max_attempts=max_attempts
        )

    def find(self, email: str) -> dict[str, Any] | None:
        wanted = normalize_email(email)
        for user in self.users.load():
            if normalize_email(user.get("email", "")) == wanted:
                return user
        return None

    def _client_document(self, user_id: str) -> str:
        return f"client-{user_id}"

    def _ensure_client_document(self, user: dict[str, Any]) -> None:
        name = self._client_document(user["id"])
        if self.store.read(name).body is not None:
            return
        document = {
            "profile": user,
            "lash_history": [],
            "preferences": {},
            "allergies": {"has_reaction": False},
            "aftercare": {},
            "lash_maps": [],
            "retention_cycles": [],
        }
        try:
            self.store.write(name, document, 0)
        except VersionConflict:
            # Another delivery created it first
            logger.info("Client document %s already created", name)

    def upsert(
        self,
        email: str,
        name: str,
        phone: str | None = None,
        history_entry: dict[str, Any] | None = None,
        profile_updates: dict[str, Any] | None = None,
    ) -> ClientAccount:
        """Create the client if needed and record the visit.

        Args:
            email: Client email (normalised before lookup)
            name: Client display name
            phone: Client phone number
            history_entry: Visit to append; must carry ``appointment_id``.
                Entries whose appointment_id is already present are skipped.
            profile_updates: Extra fields stored on the user (e.g. tier_id)

        Returns:
            ClientAccount describing what changed
        """
        normalized = normalize_email(email)
        if not normalized:
            raise ValueError("Client email is required")

        now = dt.datetime.now(dt.UTC).isoformat()
        new_user_id = secrets.token_hex(16)

        def _upsert_user(items: list[dict[str, Any]]) -> tuple[dict[str, Any], bool]:
            for user in items:
                if normalize_email(user.get("email", "")) == normalized:
                    if profile_updates:
                        user.update(profile_updates)
                    return dict(user), False
            user = {
                "id": new_user_id,
                "email": normalized,
                "name": name,
                "phone": phone,
                # No password until the client registers
                "password_hash": "",
                "created_at": now,
                "is_active": True,
                "email_verified": False,
                **(profile_updates or {}),
            }
            items.append(user)
            return dict(user), True

        user, created = self.users.mutate(_upsert_user)
        self._ensure_client_document(user)
        if created:
            logger.info("Client account created for %s (%s)", normalized, user["id"])

        history_added = False
        if history_entry:
            history_added = self._add_history(user["id"], history_entry)

        return ClientAccount(
            user_id=user["id"],
            email=normalized,
            created=created,
            history_added=history_added,
        )

    def _add_history(self, user_id: str, entry: dict[str, Any]) -> bool:
        history = DocumentCollection(
            self.store,
            self._client_document(user_id),
            wrapper_field="lash_history",
            max_attempts=self.max_attempts,
        )
        appointment_id = entry.get("appointment_id")

        def _append(items: list[dict[str, Any]]) -> bool:
            if appointment_id and any(i.get("appointment_id") == appointment_id for i in items):
                return False
            items.append(dict(entry))
            return True

        return history.mutate(_append)

    def history(self, user_id: str) -> list[dict[str, Any]]:
        document = self.store.read(self._client_document(user_id)).body or {}
        return list(document.get("lash_history") or [])
