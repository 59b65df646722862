"""
ORM-level append-only enforcement for ledger records.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  Listeners registered here inspect the pending change and raise
ImmutabilityViolationError, aborting the flush:

    session.flush()
         |
         v
    [before_update] --> _check_append_only_update() --> ImmutabilityViolationError
    [before_delete] --> _check_append_only_delete() --> ImmutabilityViolationError

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity           | When immutable      | Correction path
-----------------|---------------------|------------------------------------
PostingGroup     | Always              | Write a REVERSAL group
LedgerPosting    | Always              | Reversal postings (negated amounts)
AllocationRow    | Always              | Mirrored rows with reversal_of_id

Only audit metadata (updated_at, updated_by_id) may change.

Usage:
    from agri_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # idempotent
"""

from sqlalchemy import event, inspect

from agri_kernel.exceptions import ImmutabilityViolationError
from agri_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _check_append_only_update(mapper, connection, target):
    """Block any change to a ledger record other than audit metadata."""
    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            entity_type = type(target).__name__
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": entity_type,
                    "entity_id": str(target.id),
                    "operation": "UPDATE",
                    "field": attr.key,
                },
            )
            raise ImmutabilityViolationError(
                entity_type=entity_type,
                entity_id=str(target.id),
                reason=f"Cannot modify field '{attr.key}' on an append-only ledger record",
            )


def _check_append_only_delete(mapper, connection, target):
    """Block deletion of a ledger record."""
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason="Ledger records cannot be deleted; post a reversal instead",
    )


def _protected_models():
    from agri_kernel.models.posting import AllocationRow, LedgerPosting, PostingGroup

    return (PostingGroup, LedgerPosting, AllocationRow)


def register_immutability_listeners() -> None:
    """
    Register append-only listeners on every ledger record model.

    Safe to call more than once.
    """
    for model in _protected_models():
        if not event.contains(model, "before_update", _check_append_only_update):
            event.listen(model, "before_update", _check_append_only_update)
        if not event.contains(model, "before_delete", _check_append_only_delete):
            event.listen(model, "before_delete", _check_append_only_delete)
