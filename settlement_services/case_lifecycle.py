"""
CaseLifecycleService -- react to case status changes.

Responsibility:
    Records every observed case transition, then applies its effects on
    agreements (standard agreement upsert or retirement, alvará creation)
    and on documents (archival on extinguishment).

Architecture position:
    Services -- orchestrates kernel services over two transactions and owns
    both of them.

Invariants enforced:
    - The CaseStatusChange row and its audit event are committed before any
      effect runs; a failing effect never undoes the status change.
    - Agreement effects for one case run under the case lock, so repeated
      updates never leave two live standard agreements.
    - A standard agreement with payments is never deleted or rescheduled in
      place: it is kept, cancelled or renegotiated.

Failure modes:
    - InvalidCaseTransitionError for an unknown status (nothing recorded).
    - Agreement effect failures are returned in
      ``CaseUpdateOutcome.agreement_error``.
    - Archival failures are returned in ``CaseUpdateOutcome.archive_error``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from settlement_config.schema import StandardExitPolicy
from settlement_kernel.db.engine import session_scope
from settlement_kernel.domain.case_workflow import CaseEffect, plan_case_effects
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.dtos import (
    AgreementOrigin,
    AgreementTerms,
    AgreementType,
    CaseStatus,
    RenegotiationTerms,
)
from settlement_kernel.domain.money import to_money
from settlement_kernel.domain.policy import LedgerPolicy
from settlement_kernel.exceptions import (
    AgreementHasPaymentsError,
    DocumentArchivalError,
    InvalidCaseTransitionError,
    InvalidTermsError,
    PersistenceError,
    SettlementKernelError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.case_status import CaseStatusChange
from settlement_kernel.selectors.case_selector import CaseSelector
from settlement_kernel.services.agreement_lock import (
    AgreementLockRegistry,
    agreement_key,
    case_key,
)
from settlement_kernel.services.agreement_service import AgreementService
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.sequence_service import SequenceService
from settlement_services.collaborators import (
    CasePartiesProvider,
    DocumentArchiver,
    resolve_parties,
)

logger = get_logger("services.case_lifecycle")

RENEGOTIATION_REASON = "Case returned to agreement with revised terms"
EXIT_CANCEL_REASON = "Case left the agreement status"


@dataclass(frozen=True)
class CaseUpdateOutcome:
    """What one case update did.  The status change itself always stands."""

    case_id: UUID
    previous_status: CaseStatus | None
    new_status: CaseStatus
    status_change_id: UUID
    effects: tuple[CaseEffect, ...] = ()
    standard_agreement_id: UUID | None = None
    alvara_agreement_id: UUID | None = None
    retired_agreement_id: UUID | None = None
    documents_archived: bool = False
    agreement_error: SettlementKernelError | None = None
    archive_error: DocumentArchivalError | None = None

    @property
    def is_clean(self) -> bool:
        return self.agreement_error is None and self.archive_error is None


class CaseLifecycleService:
    """
    Contract:
        ``update_case`` never raises for effect failures; it raises only
        when the status change itself cannot be recorded.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        policy: LedgerPolicy,
        locks: AgreementLockRegistry,
        clock: Clock | None = None,
        parties: CasePartiesProvider | None = None,
        archiver: DocumentArchiver | None = None,
        exit_policy: StandardExitPolicy = StandardExitPolicy.KEEP_IF_PAID,
    ):
        self._session_factory = session_factory
        self._policy = policy
        self._locks = locks
        self._clock = clock or SystemClock()
        self._parties = parties
        self._archiver = archiver
        self._exit_policy = exit_policy

    def update_case(
        self,
        case_id: UUID,
        new_status: CaseStatus | str,
        actor_id: UUID,
        terms: AgreementTerms | None = None,
        alvara_value: Decimal | None = None,
        notes: str | None = None,
    ) -> CaseUpdateOutcome:
        try:
            status = CaseStatus(new_status)
        except ValueError:
            raise InvalidCaseTransitionError(str(case_id), str(new_status)) from None
        if terms is not None and terms.case_id != case_id:
            raise InvalidTermsError("case_id", "does not match the case being updated")
        if alvara_value is not None:
            alvara_value = to_money(alvara_value)
            if alvara_value <= 0:
                raise InvalidTermsError("alvara_value", "must be positive")

        with LogContext.bind(case_id=case_id, actor_id=actor_id):
            previous, change_id = self._record_status_change(case_id, status, actor_id, notes)
            effects = plan_case_effects(
                previous,
                status,
                has_standard_terms=terms is not None,
                has_alvara_value=alvara_value is not None,
            )

            results: dict[str, UUID | None] = {}
            agreement_error = None
            agreement_effects = [e for e in effects if e is not CaseEffect.ARCHIVE_DOCUMENTS]
            if agreement_effects:
                try:
                    results = self._apply_agreement_effects(
                        case_id, agreement_effects, actor_id, terms, alvara_value
                    )
                except SettlementKernelError as exc:
                    agreement_error = exc
                except SQLAlchemyError as exc:
                    agreement_error = PersistenceError("case_agreement_effects", str(exc))
                if agreement_error is not None:
                    logger.error(
                        "case_agreement_effects_failed",
                        extra={
                            "effects": [e.value for e in agreement_effects],
                            "error_code": agreement_error.code,
                            "error": str(agreement_error),
                        },
                    )

            archived = False
            archive_error = None
            if CaseEffect.ARCHIVE_DOCUMENTS in effects:
                archive_error = self._archive(case_id)
                archived = archive_error is None

            outcome = CaseUpdateOutcome(
                case_id=case_id,
                previous_status=previous,
                new_status=status,
                status_change_id=change_id,
                effects=effects,
                standard_agreement_id=results.get("standard"),
                alvara_agreement_id=results.get("alvara"),
                retired_agreement_id=results.get("retired"),
                documents_archived=archived,
                agreement_error=agreement_error,
                archive_error=archive_error,
            )
            logger.info(
                "case_updated",
                extra={
                    "previous_status": previous.value if previous else None,
                    "new_status": status.value,
                    "effects": [e.value for e in effects],
                    "clean": outcome.is_clean,
                },
            )
            return outcome

    # ------------------------------------------------------------------
    # Transaction 1: the observed transition
    # ------------------------------------------------------------------

    def _record_status_change(
        self,
        case_id: UUID,
        status: CaseStatus,
        actor_id: UUID,
        notes: str | None,
    ) -> tuple[CaseStatus | None, UUID]:
        with self._locks.hold(case_key(case_id)), session_scope(self._session_factory) as session:
            previous = CaseSelector(session).current_case_status(case_id)
            change = CaseStatusChange(
                seq=SequenceService(session).next_value(SequenceService.CASE_STATUS),
                case_id=case_id,
                previous_status=previous.value if previous else None,
                new_status=status.value,
                changed_by_id=actor_id,
                changed_at=self._clock.now(),
                notes=notes,
            )
            session.add(change)
            session.flush()
            AuditorService(session, self._clock).record_case_status_changed(
                case_id,
                previous.value if previous else None,
                status.value,
                actor_id,
            )
            change_id = change.id

        logger.info(
            "case_status_recorded",
            extra={
                "previous_status": previous.value if previous else None,
                "new_status": status.value,
            },
        )
        return previous, change_id

    # ------------------------------------------------------------------
    # Transaction 2: agreement effects
    # ------------------------------------------------------------------

    def _apply_agreement_effects(
        self,
        case_id: UUID,
        effects: list[CaseEffect],
        actor_id: UUID,
        terms: AgreementTerms | None,
        alvara_value: Decimal | None,
    ) -> dict[str, UUID | None]:
        results: dict[str, UUID | None] = {}
        with self._locks.hold(case_key(case_id)), session_scope(self._session_factory) as session:
            auditor = AuditorService(session, self._clock)
            agreements = AgreementService(session, self._policy, self._clock, auditor)
            for effect in effects:
                if effect is CaseEffect.UPSERT_STANDARD:
                    results["standard"] = self._upsert_standard(agreements, terms, actor_id)
                elif effect is CaseEffect.CREATE_ALVARA:
                    results["alvara"] = self._create_alvara(
                        agreements, case_id, alvara_value, actor_id
                    )
                elif effect is CaseEffect.RETIRE_STANDARD:
                    results["retired"] = self._retire_standard(agreements, case_id, actor_id)
        return results

    def _upsert_standard(
        self,
        agreements: AgreementService,
        terms: AgreementTerms,
        actor_id: UUID,
    ) -> UUID:
        terms = resolve_parties(terms, self._parties)
        existing = agreements.find_live_standard(terms.case_id, lock=True)
        if existing is None:
            created = agreements.create_agreement(terms, actor_id, origin=AgreementOrigin.STANDARD)
            return created.id

        with self._locks.hold(agreement_key(existing.id)):
            try:
                return agreements.update_terms(existing, terms, actor_id).id
            except AgreementHasPaymentsError:
                logger.info(
                    "standard_agreement_renegotiating",
                    extra={"agreement_id": str(existing.id)},
                )
            replacement = agreements.renegotiate(
                existing,
                RenegotiationTerms(
                    new_total_value=terms.total_value,
                    new_installment_count=terms.installment_count,
                    new_first_due_date=max(terms.start_date, self._clock.today()),
                    reason=RENEGOTIATION_REASON,
                    new_entry_value=terms.entry_value,
                ),
                actor_id,
            )
            return replacement.id

    def _create_alvara(
        self,
        agreements: AgreementService,
        case_id: UUID,
        value: Decimal,
        actor_id: UUID,
    ) -> UUID:
        for agreement in agreements.find_live_alvaras(case_id):
            if to_money(agreement.total_value) == value:
                logger.info(
                    "alvara_already_exists",
                    extra={"agreement_id": str(agreement.id), "value": str(value)},
                )
                return agreement.id

        terms = resolve_parties(
            AgreementTerms(
                case_id=case_id,
                total_value=value,
                installment_count=1,
                start_date=self._clock.today(),
                agreement_type=AgreementType.CASH_IN_FULL,
            ),
            self._parties,
        )
        return agreements.create_agreement(terms, actor_id, origin=AgreementOrigin.ALVARA).id

    def _retire_standard(
        self,
        agreements: AgreementService,
        case_id: UUID,
        actor_id: UUID,
    ) -> UUID | None:
        existing = agreements.find_live_standard(case_id, lock=True)
        if existing is None:
            return None

        agreement_id = existing.id
        with self._locks.hold(agreement_key(agreement_id)):
            if not existing.has_payments:
                agreements.delete(existing, actor_id)
            elif self._exit_policy is StandardExitPolicy.CANCEL_IF_PAID:
                agreements.cancel(existing, actor_id, reason=EXIT_CANCEL_REASON)
            else:
                logger.info(
                    "standard_agreement_kept",
                    extra={"agreement_id": str(agreement_id)},
                )
                return None
        return agreement_id

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _archive(self, case_id: UUID) -> DocumentArchivalError | None:
        if self._archiver is None:
            error = DocumentArchivalError(str(case_id), "no document archiver configured")
        else:
            try:
                self._archiver.archive_case_documents(case_id)
                return None
            except Exception as exc:
                error = DocumentArchivalError(str(case_id), str(exc))
        logger.warning(
            "case_document_archival_failed",
            extra={"error_code": error.code, "detail": error.detail},
        )
        return error
