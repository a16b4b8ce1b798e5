"""
Audit trail for ledger mutations.

Every committed change to an invoice or counter is logged here. The audit log is:
- Append-only (entries never modified or deleted)
- User-attributed (who made the change)
- Detailed (captures old and new values)

Entries live in the `audit_log` collection of the same document store as
the invoices.
"""

from enum import Enum
from typing import Any

from clients.document_store import DocumentStore
from utils.user_context import get_current_user_id
from utils.timezone import now_utc

AUDIT_COLLECTION = "audit_log"


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two entity states.

    Args:
        old: Previous state of entity
        new: New state of entity
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = {"updated_at"} if exclude_fields is None else exclude_fields
    changes = {}

    for key in set(old.keys()) | set(new.keys()):
        if key in exclude:
            continue

        old_val = old.get(key)
        new_val = new.get(key)

        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}

    return changes


class AuditLogger:
    """
    Append-only audit trail.

    Always pass JSON-compatible values: use model_dump(mode="json") for
    Pydantic models.

    Usage:
        audit = AuditLogger(store)

        audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.UPDATE,
            changes=compute_changes(old.to_document(), new.to_document()),
        )

        history = audit.get_entity_history("invoice", invoice.id)
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def log_change(
        self,
        entity_type: str,
        entity_id: str,
        action: AuditAction,
        changes: dict[str, Any],
        user_id: str | None = None
    ) -> None:
        """
        Log an entity change.

        Changes format by action:
        - CREATE: {"created": {full entity data}}
        - UPDATE: {"field": {"old": old_val, "new": new_val}, ...}
        - DELETE: {"deleted": {full entity data at deletion}}
        """
        if user_id is None:
            user_id = get_current_user_id()

        self.store.create(
            AUDIT_COLLECTION,
            {
                "user_id": user_id,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "action": action.value,
                "changes": changes,
                "created_at": now_utc().isoformat(),
            },
        )

    def get_entity_history(self, entity_type: str, entity_id: str) -> list[dict[str, Any]]:
        """
        Get full audit history for an entity.

        Returns:
            List of audit entries, newest first.
        """
        docs = self.store.query(AUDIT_COLLECTION, "entity_id", "==", entity_id)
        entries = [
            {"id": doc.id, **doc.data}
            for doc in docs
            if doc.data.get("entity_type") == entity_type
        ]
        return sorted(entries, key=lambda e: e["created_at"], reverse=True)
