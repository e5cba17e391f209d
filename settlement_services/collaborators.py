"""
External collaborators of the settlement engine.

The engine does not own cases or documents.  It asks the case registry who
the parties are and asks the document store to archive a closed case's
files.  Both are pluggable; the in-memory implementations here back tests
and single-process deployments.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Protocol, runtime_checkable
from uuid import UUID

from settlement_kernel.domain.dtos import AgreementTerms
from settlement_kernel.exceptions import CasePartiesUnavailableError
from settlement_kernel.logging_config import get_logger

logger = get_logger("services.collaborators")


@dataclass(frozen=True)
class CaseParties:
    """The client is the creditor of a settlement, the executed party its debtor."""

    client_entity_id: UUID
    executed_entity_id: UUID


# =========================================================================
# Protocols
# =========================================================================


@runtime_checkable
class CasePartiesProvider(Protocol):
    """Pluggable interface for case party lookups."""

    def get_case_parties(self, case_id: UUID) -> CaseParties:
        """Raise CasePartiesUnavailableError when the case cannot be resolved."""
        ...


@runtime_checkable
class DocumentArchiver(Protocol):
    """Pluggable interface to the case document store."""

    def archive_case_documents(self, case_id: UUID) -> None:
        ...


# =========================================================================
# In-memory implementations
# =========================================================================


class InMemoryCaseParties:
    def __init__(self, parties: dict[UUID, CaseParties] | None = None):
        self._parties: dict[UUID, CaseParties] = dict(parties or {})

    def register(self, case_id: UUID, parties: CaseParties) -> None:
        self._parties[case_id] = parties

    def get_case_parties(self, case_id: UUID) -> CaseParties:
        try:
            return self._parties[case_id]
        except KeyError:
            raise CasePartiesUnavailableError(str(case_id), "case has no registered parties") from None


class RecordingDocumentArchiver:
    """Remembers archived cases instead of moving files."""

    def __init__(self) -> None:
        self.archived: list[UUID] = []

    def archive_case_documents(self, case_id: UUID) -> None:
        self.archived.append(case_id)
        logger.info("case_documents_archived", extra={"case_id": str(case_id)})


def resolve_parties(
    terms: AgreementTerms, provider: CasePartiesProvider | None
) -> AgreementTerms:
    """Fill debtor and creditor from the case when the terms leave them out."""
    if terms.debtor_id is not None and terms.creditor_id is not None:
        return terms
    if provider is None:
        raise CasePartiesUnavailableError(str(terms.case_id), "no case parties provider configured")
    parties = provider.get_case_parties(terms.case_id)
    return replace(
        terms,
        debtor_id=terms.debtor_id or parties.executed_entity_id,
        creditor_id=terms.creditor_id or parties.client_entity_id,
    )
