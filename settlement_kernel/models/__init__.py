"""ORM models. Importing this package registers every table on Base.metadata."""

from settlement_kernel.models.agreement import FinancialAgreement, Installment
from settlement_kernel.models.audit_event import AuditAction, AuditEvent
from settlement_kernel.models.case_status import CaseStatusChange
from settlement_kernel.models.payment import PaymentRecord
from settlement_kernel.models.sequence import SequenceCounter

__all__ = [
    "FinancialAgreement",
    "Installment",
    "PaymentRecord",
    "CaseStatusChange",
    "AuditAction",
    "AuditEvent",
    "SequenceCounter",
]
