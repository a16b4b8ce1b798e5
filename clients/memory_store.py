"""
In-process document store.

Thread-safe implementation of the DocumentStore port used in development and
tests. Honors the same versioning and conflict semantics as the Postgres
adapter so concurrency behavior can be exercised without a database.
"""

import copy
import logging
import threading
from typing import Any
from uuid import uuid4

from clients.document_store import (
    DocumentConflictError,
    DocumentNotFoundError,
    DocumentStore,
    StoredDocument,
    StoreUnavailableError,
    matches,
)

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """
    Dict-backed document store.

    Usage:
        store = InMemoryDocumentStore()
        doc_id = store.create("invoices", {"status": "DRAFT"})
        doc = store.get("invoices", doc_id)
        store.update("invoices", doc_id, {"status": "SENT"}, expected_version=doc.version)
    """

    def __init__(self, timeout_seconds: float = 5.0):
        self._timeout_seconds = timeout_seconds
        self._lock = threading.RLock()
        # collection -> doc_id -> (version, data)
        self._collections: dict[str, dict[str, tuple[int, dict[str, Any]]]] = {}

    def _acquire(self) -> None:
        if not self._lock.acquire(timeout=self._timeout_seconds):
            raise StoreUnavailableError(
                f"Timed out after {self._timeout_seconds}s waiting for the store"
            )

    def create(self, collection: str, data: dict[str, Any], doc_id: str | None = None) -> str:
        self._acquire()
        try:
            docs = self._collections.setdefault(collection, {})
            key = doc_id or uuid4().hex
            if key in docs:
                raise DocumentConflictError(collection, key)
            docs[key] = (1, copy.deepcopy(data))
            return key
        finally:
            self._lock.release()

    def get(self, collection: str, doc_id: str) -> StoredDocument:
        self._acquire()
        try:
            entry = self._collections.get(collection, {}).get(doc_id)
            if entry is None:
                raise DocumentNotFoundError(collection, doc_id)
            version, data = entry
            return StoredDocument(id=doc_id, version=version, data=copy.deepcopy(data))
        finally:
            self._lock.release()

    def update(
        self,
        collection: str,
        doc_id: str,
        patch: dict[str, Any],
        expected_version: int | None = None,
    ) -> int:
        self._acquire()
        try:
            docs = self._collections.get(collection, {})
            entry = docs.get(doc_id)
            if entry is None:
                raise DocumentNotFoundError(collection, doc_id)
            version, data = entry
            if expected_version is not None and version != expected_version:
                raise DocumentConflictError(collection, doc_id, expected_version)
            merged = {**data, **copy.deepcopy(patch)}
            docs[doc_id] = (version + 1, merged)
            return version + 1
        finally:
            self._lock.release()

    def delete(self, collection: str, doc_id: str, expected_version: int | None = None) -> None:
        self._acquire()
        try:
            docs = self._collections.get(collection, {})
            entry = docs.get(doc_id)
            if entry is None:
                raise DocumentNotFoundError(collection, doc_id)
            if expected_version is not None and entry[0] != expected_version:
                raise DocumentConflictError(collection, doc_id, expected_version)
            del docs[doc_id]
        finally:
            self._lock.release()

    def query(self, collection: str, field_name: str, op: str, value: Any) -> list[StoredDocument]:
        self._acquire()
        try:
            return [
                StoredDocument(id=doc_id, version=version, data=copy.deepcopy(data))
                for doc_id, (version, data) in self._collections.get(collection, {}).items()
                if matches(data, field_name, op, value)
            ]
        finally:
            self._lock.release()

    def count(self, collection: str) -> int:
        """Number of documents in a collection."""
        self._acquire()
        try:
            return len(self._collections.get(collection, {}))
        finally:
            self._lock.release()

    def clear(self) -> None:
        """Drop every collection."""
        self._acquire()
        try:
            self._collections.clear()
            logger.info("In-memory document store cleared")
        finally:
            self._lock.release()
