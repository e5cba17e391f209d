"""
SettlementEngine -- the inbound facade of the agreement ledger.

Responsibility:
    One method per caller-facing operation.  Each call opens its own
    session, takes the locks the operation needs, runs the kernel services,
    commits on success and rolls back on failure.  Errors come back as an
    ``OperationResult`` with a machine-readable status, never as exceptions.

Architecture position:
    Services -- the only layer that owns transaction boundaries and reads
    configuration (through settlement_config bridges).

Invariants enforced:
    - A payment and its aggregate recompute commit together or not at all.
    - Mutations of one agreement are serialized by the agreement lock and the
      agreement row lock.
    - Invariant violations are logged at ERROR and roll the operation back.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from settlement_config import EngineSettings, build_ledger_policy, get_active_config
from settlement_kernel.db.engine import build_engine, create_tables, session_scope
from settlement_kernel.domain.accrual import Accrual
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.dtos import (
    AgreementOrigin,
    AgreementTerms,
    AgreementView,
    CaseStatus,
    CaseStatusChangeView,
    InstallmentStatus,
    InstallmentView,
    PaymentInput,
    PaymentView,
    RenegotiationTerms,
)
from settlement_kernel.exceptions import (
    AuditError,
    CollaboratorError,
    ConflictError,
    InstallmentNotFoundError,
    InvalidQueryError,
    InvariantViolationError,
    NotFoundError,
    PersistenceError,
    SettlementKernelError,
    ValidationError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.selectors.agreement_selector import AgreementSelector
from settlement_kernel.selectors.case_selector import CaseSelector
from settlement_kernel.services.agreement_lock import AgreementLockRegistry, agreement_key
from settlement_kernel.services.agreement_service import AgreementService
from settlement_kernel.services.auditor_service import AuditorService, AuditTrace
from settlement_kernel.services.payment_service import PaymentService
from settlement_services.case_lifecycle import CaseLifecycleService, CaseUpdateOutcome
from settlement_services.collaborators import (
    CasePartiesProvider,
    DocumentArchiver,
    resolve_parties,
)

logger = get_logger("services.engine")

T = TypeVar("T")


class OperationStatus(str, Enum):
    SUCCESS = "success"
    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVARIANT_VIOLATION = "invariant_violation"
    COLLABORATOR_FAILED = "collaborator_failed"
    AUDIT_FAILED = "audit_failed"


_STATUS_BY_ERROR: tuple[tuple[type[SettlementKernelError], OperationStatus], ...] = (
    (ValidationError, OperationStatus.VALIDATION_FAILED),
    (NotFoundError, OperationStatus.NOT_FOUND),
    (ConflictError, OperationStatus.CONFLICT),
    (InvariantViolationError, OperationStatus.INVARIANT_VIOLATION),
    (CollaboratorError, OperationStatus.COLLABORATOR_FAILED),
    (AuditError, OperationStatus.AUDIT_FAILED),
)


def status_for(error: SettlementKernelError) -> OperationStatus:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return OperationStatus.COLLABORATOR_FAILED


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Outcome of one facade call."""

    status: OperationStatus
    value: T | None = None
    error: SettlementKernelError | None = None

    @property
    def is_success(self) -> bool:
        return self.status is OperationStatus.SUCCESS

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error is not None else None

    def unwrap(self) -> T:
        """The value, or the original error raised again."""
        if self.error is not None:
            raise self.error
        return self.value


class SettlementEngine:
    """
    Contract:
        Every public method returns an OperationResult.  Successful results
        carry frozen views from settlement_kernel.domain.dtos, never ORM rows.

    Non-goals:
        - Does NOT own case records or documents (see collaborators).
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
        parties: CasePartiesProvider | None = None,
        archiver: DocumentArchiver | None = None,
        locks: AgreementLockRegistry | None = None,
    ):
        self._session_factory = session_factory
        self.settings = settings or EngineSettings.with_defaults()
        self.policy = build_ledger_policy(self.settings)
        self.clock = clock or SystemClock()
        self._parties = parties
        self._locks = locks or AgreementLockRegistry(self.policy.lock_timeout_seconds)
        self.cases = CaseLifecycleService(
            session_factory,
            self.policy,
            self._locks,
            clock=self.clock,
            parties=parties,
            archiver=archiver,
            exit_policy=self.settings.standard_exit_policy,
        )

    @classmethod
    def from_url(
        cls,
        database_url: str,
        config_path: str | None = None,
        **kwargs: Any,
    ) -> SettlementEngine:
        """Build an engine over a database URL, creating tables if needed."""
        db = build_engine(database_url)
        create_tables(db)
        return cls(
            sessionmaker(bind=db, expire_on_commit=False),
            settings=get_active_config(config_path),
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        work: Callable[[Session], T],
        actor_id: UUID | None = None,
        lock_keys: tuple[str, ...] = (),
        **log_fields: Any,
    ) -> OperationResult[T]:
        with LogContext.bind(correlation_id=str(uuid4()), actor_id=actor_id, **log_fields):
            t0 = time.monotonic()
            try:
                with ExitStack() as stack:
                    for key in lock_keys:
                        stack.enter_context(self._locks.hold(key))
                    with session_scope(self._session_factory) as session:
                        value = work(session)
            except SettlementKernelError as exc:
                return self._failed(operation, exc, t0)
            except IntegrityError as exc:
                return self._failed(operation, PersistenceError(operation, str(exc.orig)), t0)
            except SQLAlchemyError as exc:
                return self._failed(operation, PersistenceError(operation, str(exc)), t0)

            logger.debug(
                "operation_completed",
                extra={
                    "operation": operation,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return OperationResult(OperationStatus.SUCCESS, value=value)

    def _failed(
        self, operation: str, error: SettlementKernelError, t0: float
    ) -> OperationResult[Any]:
        status = status_for(error)
        extra = {
            "operation": operation,
            "status": status.value,
            "error_code": error.code,
            "error": str(error),
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        }
        if status in (OperationStatus.INVARIANT_VIOLATION, OperationStatus.COLLABORATOR_FAILED):
            logger.error("operation_failed", extra=extra)
        else:
            logger.warning("operation_failed", extra=extra)
        return OperationResult(status, error=error)

    def _selector(self, session: Session) -> AgreementSelector:
        return AgreementSelector(session, self.policy, self.clock)

    def _agreements(self, session: Session) -> AgreementService:
        return AgreementService(session, self.policy, self.clock, AuditorService(session, self.clock))

    def _agreement_id_for(self, installment_id: UUID) -> UUID | None:
        with session_scope(self._session_factory) as session:
            return self._selector(session).installment_agreement_id(installment_id)

    # ------------------------------------------------------------------
    # Agreements
    # ------------------------------------------------------------------

    def create_agreement(
        self, terms: AgreementTerms, actor_id: UUID
    ) -> OperationResult[AgreementView]:
        """Create a manual agreement for a case; parties default to the case's."""

        def work(session: Session) -> AgreementView:
            resolved = resolve_parties(terms, self._parties)
            agreement = self._agreements(session).create_agreement(
                resolved, actor_id, origin=AgreementOrigin.MANUAL
            )
            return self._selector(session).get_agreement(agreement.id)

        return self._run("create_agreement", work, actor_id, case_id=terms.case_id)

    def get_agreement(
        self, agreement_id: UUID, as_of: date | None = None
    ) -> OperationResult[AgreementView]:
        return self._run(
            "get_agreement",
            lambda session: self._selector(session).get_agreement(agreement_id, as_of),
            agreement_id=agreement_id,
        )

    def renegotiate_agreement(
        self,
        agreement_id: UUID,
        terms: RenegotiationTerms,
        actor_id: UUID,
    ) -> OperationResult[AgreementView]:
        """Returns the replacement agreement."""

        def work(session: Session) -> AgreementView:
            service = self._agreements(session)
            agreement = service.get_agreement(agreement_id, lock=True)
            replacement = service.renegotiate(agreement, terms, actor_id)
            return self._selector(session).get_agreement(replacement.id)

        return self._run(
            "renegotiate_agreement",
            work,
            actor_id,
            lock_keys=(agreement_key(agreement_id),),
            agreement_id=agreement_id,
        )

    def cancel_agreement(
        self,
        agreement_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> OperationResult[AgreementView]:
        def work(session: Session) -> AgreementView:
            service = self._agreements(session)
            agreement = service.cancel(service.get_agreement(agreement_id, lock=True), actor_id, reason)
            return self._selector(session).get_agreement(agreement.id)

        return self._run(
            "cancel_agreement",
            work,
            actor_id,
            lock_keys=(agreement_key(agreement_id),),
            agreement_id=agreement_id,
        )

    # ------------------------------------------------------------------
    # Installments and payments
    # ------------------------------------------------------------------

    def get_agreement_installments(
        self, agreement_id: UUID, as_of: date | None = None
    ) -> OperationResult[tuple[InstallmentView, ...]]:
        return self._run(
            "get_agreement_installments",
            lambda session: self._selector(session).get_installments(agreement_id, as_of),
            agreement_id=agreement_id,
        )

    def record_installment_payment(
        self,
        installment_id: UUID,
        payment: PaymentInput,
        actor_id: UUID,
    ) -> OperationResult[InstallmentView]:
        """Apply a payment; returns the installment as it stands afterwards."""
        agreement_id = self._agreement_id_for(installment_id)
        if agreement_id is None:
            return self._failed(
                "record_installment_payment",
                InstallmentNotFoundError(str(installment_id)),
                time.monotonic(),
            )

        def work(session: Session) -> InstallmentView:
            auditor = AuditorService(session, self.clock)
            service = PaymentService(session, self.policy, self.clock, auditor)
            service.record_payment(installment_id, payment, actor_id)
            installments = self._selector(session).get_installments(agreement_id)
            return next(i for i in installments if i.id == installment_id)

        return self._run(
            "record_installment_payment",
            work,
            actor_id,
            lock_keys=(agreement_key(agreement_id),),
            agreement_id=agreement_id,
            installment_id=installment_id,
        )

    def preview_accrual(
        self, installment_id: UUID, as_of: date | None = None
    ) -> OperationResult[Accrual]:
        return self._run(
            "preview_accrual",
            lambda session: PaymentService(session, self.policy, self.clock).preview_accrual(
                installment_id, as_of
            ),
            installment_id=installment_id,
        )

    def get_agreement_payment_history(
        self, agreement_id: UUID
    ) -> OperationResult[tuple[PaymentView, ...]]:
        return self._run(
            "get_agreement_payment_history",
            lambda session: self._selector(session).get_payment_history(agreement_id),
            agreement_id=agreement_id,
        )

    def installments_due_in_month(
        self,
        year: int,
        month: int,
        status: InstallmentStatus | None = None,
    ) -> OperationResult[tuple[InstallmentView, ...]]:
        def work(session: Session) -> tuple[InstallmentView, ...]:
            try:
                return self._selector(session).installments_due_in_month(year, month, status)
            except ValueError as exc:
                raise InvalidQueryError("month", str(exc)) from exc

        return self._run("installments_due_in_month", work)

    def payments_in_month(self, year: int, month: int) -> OperationResult[tuple[PaymentView, ...]]:
        def work(session: Session) -> tuple[PaymentView, ...]:
            try:
                return self._selector(session).payments_in_month(year, month)
            except ValueError as exc:
                raise InvalidQueryError("month", str(exc)) from exc

        return self._run("payments_in_month", work)

    def list_alvaras(self, case_id: UUID | None = None) -> OperationResult[tuple[AgreementView, ...]]:
        return self._run(
            "list_alvaras",
            lambda session: self._selector(session).list_alvaras(case_id),
        )

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    def update_case(
        self,
        case_id: UUID,
        new_status: CaseStatus | str,
        actor_id: UUID,
        terms: AgreementTerms | None = None,
        alvara_value: Decimal | None = None,
        notes: str | None = None,
    ) -> OperationResult[CaseUpdateOutcome]:
        """
        Record the case transition and apply its effects.

        Succeeds once the status change is committed; agreement and archival
        failures are reported inside the CaseUpdateOutcome.
        """
        t0 = time.monotonic()
        with LogContext.bind(correlation_id=str(uuid4())):
            try:
                outcome = self.cases.update_case(
                    case_id, new_status, actor_id, terms, alvara_value, notes
                )
            except SettlementKernelError as exc:
                return self._failed("update_case", exc, t0)
            except SQLAlchemyError as exc:
                return self._failed("update_case", PersistenceError("update_case", str(exc)), t0)
        return OperationResult(OperationStatus.SUCCESS, value=outcome)

    def get_case_history(self, case_id: UUID) -> OperationResult[tuple[CaseStatusChangeView, ...]]:
        return self._run(
            "get_case_history",
            lambda session: CaseSelector(session).case_history(case_id),
            case_id=case_id,
        )

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def get_audit_trace(self, entity_type: str, entity_id: UUID) -> OperationResult[AuditTrace]:
        return self._run(
            "get_audit_trace",
            lambda session: AuditorService(session, self.clock).get_trace(entity_type, entity_id),
        )

    def validate_audit_chain(self) -> OperationResult[bool]:
        return self._run(
            "validate_audit_chain",
            lambda session: AuditorService(session, self.clock).validate_chain(),
        )
