"""
settlement_services -- orchestration over the settlement kernel.

Responsibility:
    Owns transaction boundaries, configuration and external collaborators.
    ``SettlementEngine`` is the inbound facade; ``CaseLifecycleService``
    reacts to case status changes.

Architecture position:
    settlement_services -> settlement_config -> settlement_kernel.
    The kernel never imports from this package.
"""

from settlement_services.case_lifecycle import CaseLifecycleService, CaseUpdateOutcome
from settlement_services.collaborators import (
    CaseParties,
    CasePartiesProvider,
    DocumentArchiver,
    InMemoryCaseParties,
    RecordingDocumentArchiver,
)
from settlement_services.engine import (
    OperationResult,
    OperationStatus,
    SettlementEngine,
)

__all__ = [
    "CaseLifecycleService",
    "CaseParties",
    "CasePartiesProvider",
    "CaseUpdateOutcome",
    "DocumentArchiver",
    "InMemoryCaseParties",
    "OperationResult",
    "OperationStatus",
    "RecordingDocumentArchiver",
    "SettlementEngine",
]
