"""Whole-document storage with optimistic concurrency.

The pipeline reads and writes whole documents by name (one document per
logical collection). Every document carries a version number; a write names
the version it was derived from and fails with VersionConflict if another
writer got there first. Version 0 means "document does not exist yet".
"""

import datetime as dt
import json
import os
import threading
from typing import Any, NamedTuple, Protocol

from fulfillment.models.errors import VersionConflict
from fulfillment.settings import get_settings

from .dynamodb import DynamoDBService, get_dynamodb_service


class StoredDocument(NamedTuple):
    """A document body and the version it was read at."""

    body: Any
    version: int


class DocumentStore(Protocol):
    """Read/write-whole-document store keyed by document name."""

    def read(self, name: str) -> StoredDocument:
        """Return the document, or StoredDocument(None, 0) if absent."""
        ...

    def write(self, name: str, body: Any, expected_version: int) -> int:
        """Replace the document if it is still at expected_version.

        Returns:
            The new version

        Raises:
            VersionConflict: If the stored version differs
        """
        ...


def _encode(body: Any) -> str:
    return json.dumps(body, default=str, sort_keys=True)


class InMemoryDocumentStore:
    """Process-local store for tests and local development.

    Bodies are held as JSON text so callers never share mutable state.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._documents: dict[str, tuple[str, int]] = {}

    def read(self, name: str) -> StoredDocument:
        with self._lock:
            entry = self._documents.get(name)
        if entry is None:
            return StoredDocument(None, 0)
        text, version = entry
        return StoredDocument(json.loads(text), version)

    def write(self, name: str, body: Any, expected_version: int) -> int:
        text = _encode(body)
        with self._lock:
            current = self._documents.get(name, (None, 0))[1]
            if current != expected_version:
                raise VersionConflict(name, expected_version)
            new_version = current + 1
            self._documents[name] = (text, new_version)
        return new_version

    def names(self) -> list[str]:
        """List stored document names."""
        with self._lock:
            return sorted(self._documents)


class DynamoDBDocumentStore:
    """Documents stored as JSON text in a single DynamoDB table.

    Table key: ``document_id`` (S). The version check is a DynamoDB
    condition expression, so concurrent Lambda invocations are safe.
    """

    TABLE = "documents"
    KEY = "document_id"

    def __init__(self, db: DynamoDBService, table: str | None = None) -> None:
        """Initialize document store.

        Args:
            db: DynamoDB service instance
            table: Table name without prefix. Defaults to DOCUMENTS_TABLE env
                var, then "documents".
        """
        self.db = db
        self.table = table or os.environ.get("DOCUMENTS_TABLE") or self.TABLE

    def read(self, name: str) -> StoredDocument:
        item, version = self.db.get_versioned(self.table, self.KEY, name)
        if item is None:
            return StoredDocument(None, 0)
        return StoredDocument(json.loads(item["body"]), version)

    def write(self, name: str, body: Any, expected_version: int) -> int:
        item = {
            self.KEY: name,
            "body": _encode(body),
            "updated_at": dt.datetime.now(dt.UTC).isoformat(),
        }
        if not self.db.put_versioned(self.table, self.KEY, item, expected_version):
            raise VersionConflict(name, expected_version)
        return expected_version + 1


_document_store_instance: DocumentStore | None = None


def get_document_store() -> DocumentStore:
    """Get the process-wide document store.

    ``DOCUMENT_STORE=memory`` selects the in-memory store; anything else
    uses DynamoDB.
    """
    global _document_store_instance
    if _document_store_instance is None:
        if get_settings().document_store == "memory":
            _document_store_instance = InMemoryDocumentStore()
        else:
            _document_store_instance = DynamoDBDocumentStore(get_dynamodb_service())
    return _document_store_instance


def reset_document_store() -> None:
    """Reset the singleton instance (for testing only)."""
    global _document_store_instance
    _document_store_instance = None
