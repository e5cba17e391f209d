"""
ORM-Level Immutability Enforcement.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
Listeners registered here check the ledger's append-only rules and raise
ImmutabilityViolationError before any SQL is sent:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
    [before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable              | Notes
------------------|-----------------------------|-------------------------------
PaymentRecord     | ALWAYS (from creation)      | Corrections are new records
CaseStatusChange  | ALWAYS (from creation)      | Observed history
AuditEvent        | ALWAYS (from creation)      | Hash chain
Installment       | After status = paid         | Financial fields frozen;
                  |                             | cannot be deleted

updated_at/updated_by_id are audit metadata and may always change.

===============================================================================
USAGE
===============================================================================

    from settlement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # idempotent; create_tables() calls it

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from settlement_kernel.exceptions import ImmutabilityViolationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})

_PAID = "paid"


def _blocked(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _append_only_update(entity_type: str):
    def _check(mapper, connection, target):
        _blocked(entity_type, target, "UPDATE", f"{entity_type} records are append-only")

    _check.__name__ = f"_check_{entity_type.lower()}_update"
    return _check


def _append_only_delete(entity_type: str):
    def _check(mapper, connection, target):
        _blocked(entity_type, target, "DELETE", f"{entity_type} records cannot be deleted")

    _check.__name__ = f"_check_{entity_type.lower()}_delete"
    return _check


_check_payment_update = _append_only_update("PaymentRecord")
_check_payment_delete = _append_only_delete("PaymentRecord")
_check_case_status_update = _append_only_update("CaseStatusChange")
_check_case_status_delete = _append_only_delete("CaseStatusChange")
_check_audit_event_update = _append_only_update("AuditEvent")
_check_audit_event_delete = _append_only_delete("AuditEvent")


def _was_paid_before(target) -> bool:
    """
    True when the row was already Paid before this flush.

    The pending -> paid transition itself is allowed; anything after it is not.
    """
    status_history = get_history(target, "status")
    if status_history.deleted:
        return status_history.deleted[0] == _PAID
    if not status_history.added:
        return target.status == _PAID
    return False


def _check_installment_update(mapper, connection, target):
    """Block any change to an installment once it has been paid."""
    if not _was_paid_before(target):
        return

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in _AUDIT_METADATA_FIELDS:
            continue
        if attr.history.has_changes():
            _blocked(
                "Installment",
                target,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on paid installment",
                field=attr.key,
            )


def _check_installment_delete(mapper, connection, target):
    if target.status == _PAID:
        _blocked("Installment", target, "DELETE", "Paid installments cannot be deleted")


def _listeners():
    from settlement_kernel.models.agreement import Installment
    from settlement_kernel.models.audit_event import AuditEvent
    from settlement_kernel.models.case_status import CaseStatusChange
    from settlement_kernel.models.payment import PaymentRecord

    return (
        (PaymentRecord, "before_update", _check_payment_update),
        (PaymentRecord, "before_delete", _check_payment_delete),
        (CaseStatusChange, "before_update", _check_case_status_update),
        (CaseStatusChange, "before_delete", _check_case_status_delete),
        (AuditEvent, "before_update", _check_audit_event_update),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (Installment, "before_update", _check_installment_update),
        (Installment, "before_delete", _check_installment_delete),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners. Safe to call more than once."""
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability listeners.

    WARNING: Only use this in tests that deliberately bypass the rules.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
