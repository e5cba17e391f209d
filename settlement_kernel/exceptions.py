"""
Typed Exception Hierarchy for the Settlement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the facade, case automation, HTTP adapters outside this package)
branch on error category, never on message text. Every exception carries:

  1. A TYPED class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA as instance attributes (not just a message string)

Example:
    try:
        service.record_payment(installment_id, payment, actor_id)
    except AlreadyPaidError as e:
        return conflict(code=e.code, installment=e.installment_id)
    except ValidationError as e:
        return bad_request(code=e.code, detail=str(e))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SettlementKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidTermsError
    |   +-- InvalidPaymentError
    |   +-- InvalidRenegotiationError
    |   +-- InvalidCaseTransitionError
    |   +-- InvalidQueryError
    |
    +-- NotFoundError
    |   +-- AgreementNotFoundError
    |   +-- InstallmentNotFoundError
    |
    +-- ConflictError
    |   +-- AlreadyPaidError
    |   +-- AgreementLockedError
    |   +-- StandardAgreementExistsError
    |   +-- AgreementNotLiveError
    |   +-- AgreementHasPaymentsError
    |
    +-- InvariantViolationError
    |   +-- LedgerInvariantViolationError
    |   +-- ImmutabilityViolationError
    |
    +-- CollaboratorError
    |   +-- PersistenceError
    |   +-- AuditRecordError
    |   +-- DocumentArchivalError
    |   +-- CasePartiesUnavailableError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|-----------------------------------
Validation   | INVALID_TERMS                 | count < 1, entry > total, negatives
             | INVALID_PAYMENT               | amount <= 0, bad penalty split
             | INVALID_RENEGOTIATION         | short reason, past first due date
             | INVALID_CASE_TRANSITION       | unknown case status
             | INVALID_QUERY                 | bad month or filter in a read
-------------|-------------------------------|-----------------------------------
Not found    | AGREEMENT_NOT_FOUND           | agreement id unknown
             | INSTALLMENT_NOT_FOUND         | installment unknown or not live
-------------|-------------------------------|-----------------------------------
Conflict     | ALREADY_PAID                  | payment on a Paid installment
             | AGREEMENT_LOCKED              | agreement lock wait timed out
             | STANDARD_AGREEMENT_EXISTS     | second live standard agreement
             | AGREEMENT_NOT_LIVE            | mutating Cancelled/Renegotiated
             | AGREEMENT_HAS_PAYMENTS        | delete/reschedule with payments
-------------|-------------------------------|-----------------------------------
Invariant    | LEDGER_INVARIANT_VIOLATION    | paid beyond total + penalties
             | IMMUTABILITY_VIOLATION        | edit of an append-only record
-------------|-------------------------------|-----------------------------------
Collaborator | PERSISTENCE_FAILURE           | database error, rolled back
             | AUDIT_RECORD_FAILURE          | audit sink error (non-fatal)
             | DOCUMENT_ARCHIVAL_FAILURE     | archiver error (non-fatal)
             | CASE_PARTIES_UNAVAILABLE      | parties lookup failed
-------------|-------------------------------|-----------------------------------
Audit        | AUDIT_CHAIN_BROKEN            | hash chain validation failed
"""

from datetime import date
from decimal import Decimal


class SettlementKernelError(Exception):
    """
    Base exception for all settlement kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SETTLEMENT_KERNEL_ERROR"


# Validation


class ValidationError(SettlementKernelError):
    """Input rejected before any state change."""

    code: str = "VALIDATION_ERROR"


class InvalidTermsError(ValidationError):
    """Agreement terms cannot produce a valid schedule."""

    code: str = "INVALID_TERMS"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid agreement terms ({field}): {reason}")


class InvalidPaymentError(ValidationError):
    """Payment input is malformed."""

    code: str = "INVALID_PAYMENT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid payment ({field}): {reason}")


class InvalidRenegotiationError(ValidationError):
    """Renegotiation request is malformed."""

    code: str = "INVALID_RENEGOTIATION"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid renegotiation ({field}): {reason}")


class InvalidCaseTransitionError(ValidationError):
    """Case status value is not one the engine understands."""

    code: str = "INVALID_CASE_TRANSITION"

    def __init__(self, case_id: str, status: str):
        self.case_id = case_id
        self.status = status
        super().__init__(f"Unknown status {status!r} for case {case_id}")


class InvalidQueryError(ValidationError):
    """Read request parameters are out of range."""

    code: str = "INVALID_QUERY"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid query ({field}): {reason}")


# Not found


class NotFoundError(SettlementKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"


class AgreementNotFoundError(NotFoundError):
    """Agreement with given ID was not found."""

    code: str = "AGREEMENT_NOT_FOUND"

    def __init__(self, agreement_id: str):
        self.agreement_id = str(agreement_id)
        super().__init__(f"Agreement not found: {agreement_id}")


class InstallmentNotFoundError(NotFoundError):
    """
    Installment was not found, or belongs to an agreement that is no
    longer live (Cancelled or Renegotiated).
    """

    code: str = "INSTALLMENT_NOT_FOUND"

    def __init__(self, installment_id: str, reason: str = "not found"):
        self.installment_id = str(installment_id)
        self.reason = reason
        super().__init__(f"Installment {installment_id}: {reason}")


# Conflict


class ConflictError(SettlementKernelError):
    """Request conflicts with the current state."""

    code: str = "CONFLICT"


class AlreadyPaidError(ConflictError):
    """Installment is already settled; no state was changed."""

    code: str = "ALREADY_PAID"

    def __init__(self, installment_id: str, paid_date: date | None = None):
        self.installment_id = str(installment_id)
        self.paid_date = paid_date
        super().__init__(
            f"Installment {installment_id} already paid on {paid_date}"
        )


class AgreementLockedError(ConflictError):
    """Timed out waiting for another mutation of the same agreement."""

    code: str = "AGREEMENT_LOCKED"

    def __init__(self, key: str, timeout_seconds: float):
        self.key = str(key)
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Lock {key} not acquired within {timeout_seconds}s"
        )


class StandardAgreementExistsError(ConflictError):
    """A live standard agreement already exists for the case."""

    code: str = "STANDARD_AGREEMENT_EXISTS"

    def __init__(self, case_id: str):
        self.case_id = str(case_id)
        super().__init__(f"Case {case_id} already has a standard agreement")


class AgreementNotLiveError(ConflictError):
    """Agreement is Cancelled or Renegotiated and cannot be changed."""

    code: str = "AGREEMENT_NOT_LIVE"

    def __init__(self, agreement_id: str, status: str):
        self.agreement_id = str(agreement_id)
        self.status = status
        super().__init__(f"Agreement {agreement_id} is {status}")


class AgreementHasPaymentsError(ConflictError):
    """Operation needs an agreement without recorded payments."""

    code: str = "AGREEMENT_HAS_PAYMENTS"

    def __init__(self, agreement_id: str, operation: str):
        self.agreement_id = str(agreement_id)
        self.operation = operation
        super().__init__(
            f"Cannot {operation} agreement {agreement_id}: payments recorded"
        )


# Invariant violations


class InvariantViolationError(SettlementKernelError):
    """An internal ledger invariant was broken. Always a bug or tampering."""

    code: str = "INVARIANT_VIOLATION"


class LedgerInvariantViolationError(InvariantViolationError):
    """Paid amount exceeds total value plus penalties actually paid."""

    code: str = "LEDGER_INVARIANT_VIOLATION"

    def __init__(
        self,
        agreement_id: str,
        paid_amount: Decimal,
        ceiling: Decimal,
    ):
        self.agreement_id = str(agreement_id)
        self.paid_amount = paid_amount
        self.ceiling = ceiling
        super().__init__(
            f"Agreement {agreement_id}: paid {paid_amount} exceeds {ceiling}"
        )


class ImmutabilityViolationError(InvariantViolationError):
    """
    Attempted to modify or delete an immutable record.

    PaymentRecord, AuditEvent and CaseStatusChange are append-only; a
    Paid installment's financial fields are frozen.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Collaborators


class CollaboratorError(SettlementKernelError):
    """An external dependency failed."""

    code: str = "COLLABORATOR_ERROR"


class PersistenceError(CollaboratorError):
    """The database rejected the operation; everything was rolled back."""

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence failure during {operation}: {detail}")


class AuditRecordError(CollaboratorError):
    """Audit event could not be written."""

    code: str = "AUDIT_RECORD_FAILURE"

    def __init__(self, action: str, detail: str):
        self.action = action
        self.detail = detail
        super().__init__(f"Audit record for {action} failed: {detail}")


class DocumentArchivalError(CollaboratorError):
    """Archiving case documents failed."""

    code: str = "DOCUMENT_ARCHIVAL_FAILURE"

    def __init__(self, case_id: str, detail: str):
        self.case_id = str(case_id)
        self.detail = detail
        super().__init__(f"Archiving documents of case {case_id} failed: {detail}")


class CasePartiesUnavailableError(CollaboratorError):
    """Parties for a case could not be resolved."""

    code: str = "CASE_PARTIES_UNAVAILABLE"

    def __init__(self, case_id: str, detail: str):
        self.case_id = str(case_id)
        self.detail = detail
        super().__init__(f"Parties of case {case_id} unavailable: {detail}")


# Audit


class AuditError(SettlementKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = str(audit_event_id)
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )
