"""
Document store port.

The ledger persists JSON documents grouped in collections. Every document
carries a monotonically increasing version maintained by the store; writes
that must not lose a concurrent update pass the version they read as
`expected_version` and get DocumentConflictError if someone else won.

Adapters:
- InMemoryDocumentStore (clients.memory_store) for development and tests
- PostgresDocumentStore (clients.postgres_store) for production
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

# Operators accepted by query()
QUERY_OPERATORS = {"==", "!=", "<", "<=", ">", ">=", "in"}


class StoreError(Exception):
    """Base class for document store failures."""


class DocumentNotFoundError(StoreError):
    """No document with that key exists in the collection."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Document {collection}/{doc_id} not found")


class DocumentConflictError(StoreError):
    """
    Conditional write lost a race.

    Raised when expected_version no longer matches, or when create() is given
    an explicit key that already exists.
    """

    def __init__(self, collection: str, doc_id: str, expected_version: int | None = None):
        self.collection = collection
        self.doc_id = doc_id
        self.expected_version = expected_version
        if expected_version is None:
            message = f"Document {collection}/{doc_id} already exists"
        else:
            message = f"Document {collection}/{doc_id} changed since version {expected_version}"
        super().__init__(message)


class StoreUnavailableError(StoreError):
    """Store could not be reached or the call timed out."""


@dataclass(frozen=True)
class StoredDocument:
    """A document as read from the store."""

    id: str
    version: int
    data: dict[str, Any]


@dataclass(frozen=True)
class BatchUpdate:
    """One conditional update inside batch_update()."""

    collection: str
    doc_id: str
    patch: dict[str, Any]
    expected_version: int | None = None


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one BatchUpdate. Exactly one of version/error is set."""

    doc_id: str
    version: int | None = None
    error: StoreError | None = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return self.error is None


def matches(data: dict[str, Any], field_name: str, op: str, value: Any) -> bool:
    """
    Evaluate a single-field query predicate against a document body.

    Missing fields never match. Comparison operators compare values of the
    same JSON type only, mirroring JSONB semantics.
    """
    if op not in QUERY_OPERATORS:
        raise ValueError(f"Unsupported query operator '{op}'")
    if field_name not in data:
        return False

    current = data[field_name]
    if op == "==":
        return current == value
    if op == "!=":
        return current != value
    if op == "in":
        return current in value

    if current is None or type(current) is not type(value):
        return False
    if op == "<":
        return current < value
    if op == "<=":
        return current <= value
    if op == ">":
        return current > value
    return current >= value


class DocumentStore(ABC):
    """Contract every document store adapter implements."""

    @abstractmethod
    def create(self, collection: str, data: dict[str, Any], doc_id: str | None = None) -> str:
        """
        Insert a new document at version 1.

        Args:
            collection: Collection name
            data: JSON-serializable document body
            doc_id: Explicit key; generated when omitted

        Returns:
            The document key

        Raises:
            DocumentConflictError: If doc_id already exists
        """

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> StoredDocument:
        """
        Read a document.

        Raises:
            DocumentNotFoundError: If missing
        """

    @abstractmethod
    def update(
        self,
        collection: str,
        doc_id: str,
        patch: dict[str, Any],
        expected_version: int | None = None,
    ) -> int:
        """
        Shallow-merge patch into the document and bump its version.

        Args:
            expected_version: When set, the write only applies if the stored
                version still equals it

        Returns:
            The new version

        Raises:
            DocumentNotFoundError: If missing
            DocumentConflictError: If expected_version is stale
        """

    @abstractmethod
    def delete(self, collection: str, doc_id: str, expected_version: int | None = None) -> None:
        """
        Remove a document.

        Raises:
            DocumentNotFoundError: If missing
            DocumentConflictError: If expected_version is stale
        """

    @abstractmethod
    def query(self, collection: str, field_name: str, op: str, value: Any) -> list[StoredDocument]:
        """Return all documents whose top-level field satisfies `field op value`."""

    def batch_update(self, updates: list[BatchUpdate]) -> list[BatchResult]:
        """
        Apply several conditional updates.

        Each item commits or fails on its own; one failure never rolls back
        the others. Results are returned in input order.
        """
        results = []
        for item in updates:
            try:
                version = self.update(item.collection, item.doc_id, item.patch, item.expected_version)
            except StoreError as e:
                results.append(BatchResult(doc_id=item.doc_id, error=e))
            else:
                results.append(BatchResult(doc_id=item.doc_id, version=version))
        return results
