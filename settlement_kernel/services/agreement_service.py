"""
AgreementService -- create, revise, renegotiate, cancel and delete agreements.

Responsibility:
    Owns every write to FinancialAgreement and its installment schedule, and
    keeps the derived aggregate snapshot current after each mutation.

Architecture position:
    Kernel > Services -- imperative shell around the pure schedule and
    derivation functions in domain/.

Invariants enforced:
    - ``total_value == entry_value + sum(installment amounts)`` whenever a
      schedule is (re)generated.
    - At most one live standard agreement per case: checked up front and
      backed by the UNIQUE ``standard_case_id`` column.
    - A schedule is never regenerated once payments exist; revising such an
      agreement goes through renegotiation.
    - Stored status changes follow AGREEMENT_LIFECYCLE_WORKFLOW.

Failure modes:
    - InvalidTermsError / InvalidRenegotiationError on bad input.
    - StandardAgreementExistsError on a second standard agreement.
    - AgreementNotLiveError for changes to Cancelled/Renegotiated agreements.
    - AgreementHasPaymentsError when a reschedule or delete would discard
      payment history.
    - LedgerInvariantViolationError from refresh_state (logged at ERROR).

Audit relevance:
    Every mutation is recorded through AuditorService with the actor id.
"""

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement_kernel.domain.case_workflow import AGREEMENT_LIFECYCLE_WORKFLOW
from settlement_kernel.domain.clock import Clock
from settlement_kernel.domain.dates import ScheduleInterval
from settlement_kernel.domain.derivation import AgreementState, derive_agreement_state
from settlement_kernel.domain.dtos import (
    AgreementOrigin,
    AgreementStatus,
    AgreementTerms,
    InstallmentStatus,
    RenegotiationTerms,
)
from settlement_kernel.domain.money import HUNDRED, to_money
from settlement_kernel.domain.policy import LedgerPolicy
from settlement_kernel.domain.schedule import generate_schedule, installment_value
from settlement_kernel.exceptions import (
    AgreementHasPaymentsError,
    AgreementNotFoundError,
    AgreementNotLiveError,
    InvalidRenegotiationError,
    InvalidTermsError,
    LedgerInvariantViolationError,
    StandardAgreementExistsError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.agreement import FinancialAgreement, Installment
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.base import BaseService

logger = get_logger("services.agreement")


def agreement_payload(agreement: FinancialAgreement) -> dict[str, Any]:
    """Terms snapshot for audit payloads. Decimals as plain strings."""
    return {
        "case_id": str(agreement.case_id),
        "origin": agreement.origin,
        "agreement_type": agreement.agreement_type,
        "status": agreement.status,
        "total_value": str(to_money(agreement.total_value)),
        "entry_value": str(to_money(agreement.entry_value)),
        "installment_count": agreement.installment_count,
        "start_date": agreement.start_date.isoformat(),
        "interval": agreement.schedule_interval,
    }


class AgreementService(BaseService):
    """
    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT take the in-process agreement lock; callers hold it.
    """

    def __init__(
        self,
        session: Session,
        policy: LedgerPolicy | None = None,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session, clock)
        self.policy = policy or LedgerPolicy()
        self.auditor = auditor or AuditorService(session, self.clock)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_agreement(self, agreement_id: UUID, lock: bool = False) -> FinancialAgreement:
        """Load an agreement, optionally with a row lock held to commit."""
        stmt = select(FinancialAgreement).where(FinancialAgreement.id == agreement_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        agreement = self.session.execute(stmt).scalar_one_or_none()
        if agreement is None:
            raise AgreementNotFoundError(str(agreement_id))
        return agreement

    def find_live_standard(
        self, case_id: UUID, lock: bool = False
    ) -> FinancialAgreement | None:
        stmt = select(FinancialAgreement).where(
            FinancialAgreement.standard_case_id == case_id
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def find_live_alvaras(self, case_id: UUID) -> list[FinancialAgreement]:
        return list(
            self.session.execute(
                select(FinancialAgreement).where(
                    FinancialAgreement.case_id == case_id,
                    FinancialAgreement.origin == AgreementOrigin.ALVARA.value,
                    FinancialAgreement.status.notin_(
                        [AgreementStatus.CANCELLED.value, AgreementStatus.RENEGOTIATED.value]
                    ),
                )
            ).scalars().all()
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_agreement(
        self,
        terms: AgreementTerms,
        actor_id: UUID,
        origin: AgreementOrigin = AgreementOrigin.MANUAL,
    ) -> FinancialAgreement:
        """
        Persist a new agreement with its generated schedule.

        ``terms.debtor_id`` and ``terms.creditor_id`` must already be
        resolved.  A STANDARD origin claims the case's standard slot.

        Raises:
            InvalidTermsError: bad terms or unresolved parties.
            StandardAgreementExistsError: the case already has a live
                standard agreement.
        """
        if terms.debtor_id is None:
            raise InvalidTermsError("debtor_id", "is required")
        if terms.creditor_id is None:
            raise InvalidTermsError("creditor_id", "is required")

        if origin is AgreementOrigin.STANDARD and self.find_live_standard(terms.case_id):
            raise StandardAgreementExistsError(str(terms.case_id))

        agreement = self._build_agreement(
            case_id=terms.case_id,
            debtor_id=terms.debtor_id,
            creditor_id=terms.creditor_id,
            guarantor_id=terms.guarantor_id,
            agreement_type=terms.agreement_type.value,
            origin=origin,
            total_value=terms.total_value,
            entry_value=terms.entry_value,
            installment_count=terms.installment_count,
            start_date=terms.start_date,
            late_payment_fee_pct=self._fee_pct(terms.late_payment_fee_pct),
            late_payment_daily_interest_pct=self._daily_pct(
                terms.late_payment_daily_interest_pct
            ),
            payment_method=terms.payment_method.value,
            interval=terms.interval or self.policy.default_interval,
            notes=terms.notes,
            actor_id=actor_id,
        )
        self._insert(agreement)
        self.refresh_state(agreement)

        self.auditor.record_agreement_created(
            agreement.id, actor_id, agreement_payload(agreement)
        )
        logger.info(
            "agreement_created",
            extra={
                "agreement_id": str(agreement.id),
                "case_id": str(agreement.case_id),
                "origin": agreement.origin,
                "total_value": str(terms.total_value),
                "installment_count": agreement.installment_count,
            },
        )
        return agreement

    def _fee_pct(self, value: Decimal | None) -> Decimal:
        return self.policy.late_payment_fee_pct if value is None else value

    def _daily_pct(self, value: Decimal | None) -> Decimal:
        return self.policy.late_payment_daily_interest_pct if value is None else value

    def _build_agreement(
        self,
        *,
        case_id: UUID,
        debtor_id: UUID,
        creditor_id: UUID,
        guarantor_id: UUID | None,
        agreement_type: str,
        origin: AgreementOrigin,
        total_value: Decimal,
        entry_value: Decimal,
        installment_count: int,
        start_date: date,
        late_payment_fee_pct: Decimal,
        late_payment_daily_interest_pct: Decimal,
        payment_method: str,
        interval: ScheduleInterval,
        notes: str | None,
        actor_id: UUID,
    ) -> FinancialAgreement:
        agreement = FinancialAgreement(
            case_id=case_id,
            debtor_id=debtor_id,
            creditor_id=creditor_id,
            guarantor_id=guarantor_id,
            agreement_type=agreement_type,
            origin=origin.value,
            status=AgreementStatus.ACTIVE.value,
            standard_case_id=case_id if origin is AgreementOrigin.STANDARD else None,
            total_value=to_money(total_value),
            entry_value=to_money(entry_value),
            installment_count=installment_count,
            installment_value=installment_value(total_value, entry_value, installment_count),
            late_payment_fee_pct=late_payment_fee_pct,
            late_payment_daily_interest_pct=late_payment_daily_interest_pct,
            start_date=start_date,
            payment_method=payment_method,
            schedule_interval=interval.value,
            notes=notes,
            renegotiation_count=0,
            created_by_id=actor_id,
        )
        self._attach_schedule(agreement, actor_id)
        return agreement

    def _attach_schedule(self, agreement: FinancialAgreement, actor_id: UUID) -> None:
        schedule = generate_schedule(
            agreement.total_value,
            agreement.entry_value,
            agreement.installment_count,
            agreement.start_date,
            as_of=self.clock.today(),
            interval=ScheduleInterval(agreement.schedule_interval),
        )
        for item in schedule:
            agreement.installments.append(
                Installment(
                    installment_number=item.installment_number,
                    due_date=item.due_date,
                    amount=item.amount,
                    status=InstallmentStatus.PENDING.value,
                    created_by_id=actor_id,
                )
            )

    def _insert(self, agreement: FinancialAgreement) -> None:
        """Add and flush; the standard-slot UNIQUE violation becomes a Conflict."""
        savepoint = self.session.begin_nested()
        try:
            self.session.add(agreement)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            if agreement.origin == AgreementOrigin.STANDARD.value:
                logger.warning(
                    "standard_agreement_conflict",
                    extra={"case_id": str(agreement.case_id)},
                )
                raise StandardAgreementExistsError(str(agreement.case_id)) from exc
            raise

    # ------------------------------------------------------------------
    # Revision
    # ------------------------------------------------------------------

    def update_terms(
        self,
        agreement: FinancialAgreement,
        terms: AgreementTerms,
        actor_id: UUID,
    ) -> FinancialAgreement:
        """
        Apply new terms in place and set the agreement Active.

        The schedule is regenerated only when the installment count, total
        value or entry value changed.

        Raises:
            AgreementNotLiveError: the agreement is Cancelled or Renegotiated.
            AgreementHasPaymentsError: the schedule would change but payments
                already exist.
        """
        if not agreement.is_live:
            raise AgreementNotLiveError(str(agreement.id), agreement.status)

        reschedule = (
            terms.installment_count != agreement.installment_count
            or terms.total_value != to_money(agreement.total_value)
            or terms.entry_value != to_money(agreement.entry_value)
        )
        if reschedule and agreement.has_payments:
            raise AgreementHasPaymentsError(str(agreement.id), "reschedule")

        agreement.agreement_type = terms.agreement_type.value
        agreement.payment_method = terms.payment_method.value
        if terms.debtor_id is not None:
            agreement.debtor_id = terms.debtor_id
        if terms.creditor_id is not None:
            agreement.creditor_id = terms.creditor_id
        if terms.guarantor_id is not None:
            agreement.guarantor_id = terms.guarantor_id
        if terms.late_payment_fee_pct is not None:
            agreement.late_payment_fee_pct = terms.late_payment_fee_pct
        if terms.late_payment_daily_interest_pct is not None:
            agreement.late_payment_daily_interest_pct = terms.late_payment_daily_interest_pct
        if terms.interval is not None:
            agreement.schedule_interval = terms.interval.value
        if terms.notes is not None:
            agreement.notes = terms.notes
        agreement.updated_by_id = actor_id

        if reschedule:
            agreement.total_value = terms.total_value
            agreement.entry_value = terms.entry_value
            agreement.installment_count = terms.installment_count
            agreement.start_date = terms.start_date
            agreement.installment_value = installment_value(
                terms.total_value, terms.entry_value, terms.installment_count
            )
            agreement.installments.clear()
            # Old rows must be gone before the numbers are reused.
            self.session.flush()
            self._attach_schedule(agreement, actor_id)

        self._transition(agreement, AgreementStatus.ACTIVE)
        self.session.flush()
        self.refresh_state(agreement)

        self.auditor.record_agreement_updated(
            agreement.id,
            actor_id,
            {**agreement_payload(agreement), "rescheduled": reschedule},
        )
        logger.info(
            "agreement_terms_updated",
            extra={
                "agreement_id": str(agreement.id),
                "rescheduled": reschedule,
                "installment_count": agreement.installment_count,
            },
        )
        return agreement

    def renegotiate(
        self,
        agreement: FinancialAgreement,
        terms: RenegotiationTerms,
        actor_id: UUID,
    ) -> FinancialAgreement:
        """
        Replace a live agreement with a new one on new terms.

        The old agreement becomes Renegotiated and its open installments are
        cancelled; payments already made stay on it.  Returns the new
        agreement, which inherits the standard slot if the old one held it.

        Raises:
            AgreementNotLiveError: the agreement cannot be renegotiated from
                its current status.
            InvalidRenegotiationError: first due date in the past or the
                resulting total is not payable.
        """
        if AGREEMENT_LIFECYCLE_WORKFLOW.find(
            agreement.status, AgreementStatus.RENEGOTIATED.value
        ) is None:
            raise AgreementNotLiveError(str(agreement.id), agreement.status)

        today = self.clock.today()
        if terms.new_first_due_date < today:
            raise InvalidRenegotiationError("new_first_due_date", "cannot be in the past")

        new_total = to_money(
            terms.new_total_value * (HUNDRED - terms.discount_pct) / HUNDRED
            + terms.additional_fees
        )

        origin = AgreementOrigin(agreement.origin)
        self._transition(agreement, AgreementStatus.RENEGOTIATED)
        agreement.renegotiation_reason = terms.reason
        agreement.standard_case_id = None
        agreement.updated_by_id = actor_id
        self._cancel_open_installments(agreement, actor_id)
        # Releases the standard slot before the replacement claims it.
        self.session.flush()

        try:
            replacement = self._build_agreement(
                case_id=agreement.case_id,
                debtor_id=agreement.debtor_id,
                creditor_id=agreement.creditor_id,
                guarantor_id=agreement.guarantor_id,
                agreement_type=agreement.agreement_type,
                origin=origin,
                total_value=new_total,
                entry_value=terms.new_entry_value,
                installment_count=terms.new_installment_count,
                start_date=terms.new_first_due_date,
                late_payment_fee_pct=agreement.late_payment_fee_pct,
                late_payment_daily_interest_pct=agreement.late_payment_daily_interest_pct,
                payment_method=agreement.payment_method,
                interval=ScheduleInterval(agreement.schedule_interval),
                notes=agreement.notes,
                actor_id=actor_id,
            )
        except InvalidTermsError as exc:
            raise InvalidRenegotiationError(exc.field, exc.reason) from exc

        replacement.renegotiation_count = agreement.renegotiation_count + 1
        replacement.renegotiated_from_id = agreement.id
        self._insert(replacement)

        self.refresh_state(agreement)
        self.refresh_state(replacement)

        self.auditor.record_agreement_renegotiated(
            agreement.id,
            replacement.id,
            actor_id,
            {
                "reason": terms.reason,
                "new_total_value": str(new_total),
                "discount_pct": str(terms.discount_pct),
                "additional_fees": str(terms.additional_fees),
            },
        )
        self.auditor.record_agreement_created(
            replacement.id, actor_id, agreement_payload(replacement)
        )
        logger.info(
            "agreement_renegotiated",
            extra={
                "agreement_id": str(agreement.id),
                "replacement_id": str(replacement.id),
                "renegotiation_count": replacement.renegotiation_count,
                "new_total_value": str(new_total),
            },
        )
        return replacement

    def cancel(
        self,
        agreement: FinancialAgreement,
        actor_id: UUID,
        reason: str | None = None,
    ) -> FinancialAgreement:
        """Mark the agreement and its open installments Cancelled."""
        if not agreement.is_live:
            raise AgreementNotLiveError(str(agreement.id), agreement.status)

        self._transition(agreement, AgreementStatus.CANCELLED)
        agreement.standard_case_id = None
        agreement.updated_by_id = actor_id
        self._cancel_open_installments(agreement, actor_id)
        self.session.flush()
        self.refresh_state(agreement)

        self.auditor.record_agreement_cancelled(agreement.id, actor_id, reason)
        logger.info(
            "agreement_cancelled",
            extra={"agreement_id": str(agreement.id), "reason": reason},
        )
        return agreement

    def delete(self, agreement: FinancialAgreement, actor_id: UUID) -> None:
        """
        Remove an agreement that never received a payment.

        Raises:
            AgreementHasPaymentsError: payments exist.
        """
        if agreement.has_payments:
            raise AgreementHasPaymentsError(str(agreement.id), "delete")

        agreement_id = agreement.id
        payload = agreement_payload(agreement)
        self.session.delete(agreement)
        self.session.flush()

        self.auditor.record_agreement_deleted(agreement_id, actor_id, payload)
        logger.info(
            "agreement_deleted",
            extra={"agreement_id": str(agreement_id), "case_id": payload["case_id"]},
        )

    def _cancel_open_installments(
        self, agreement: FinancialAgreement, actor_id: UUID
    ) -> int:
        cancelled = 0
        for installment in agreement.installments:
            if installment.status == InstallmentStatus.PENDING.value:
                installment.status = InstallmentStatus.CANCELLED.value
                installment.updated_by_id = actor_id
                cancelled += 1
        return cancelled

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def _transition(self, agreement: FinancialAgreement, target: AgreementStatus) -> None:
        current = agreement.status
        if not AGREEMENT_LIFECYCLE_WORKFLOW.allows(current, target.value):
            raise AgreementNotLiveError(str(agreement.id), current)
        if current != target.value:
            transition = AGREEMENT_LIFECYCLE_WORKFLOW.find(current, target.value)
            agreement.status = target.value
            logger.info(
                "agreement_status_changed",
                extra={
                    "agreement_id": str(agreement.id),
                    "from_status": current,
                    "to_status": target.value,
                    "action": transition.action if transition else None,
                },
            )

    def refresh_state(
        self, agreement: FinancialAgreement, as_of: date | None = None
    ) -> AgreementState:
        """
        Recompute and store the aggregate snapshot.

        Raises:
            LedgerInvariantViolationError: the installment set is
                inconsistent with the agreement total.  Nothing is written.
        """
        as_of = as_of or self.clock.today()
        try:
            state = derive_agreement_state(
                agreement_id=agreement.id,
                total_value=agreement.total_value,
                current_status=agreement.status_enum,
                installments=agreement.installment_states(),
                as_of=as_of,
                default_threshold_days=self.policy.default_threshold_days,
            )
        except LedgerInvariantViolationError as exc:
            logger.error(
                "ledger_invariant_violation",
                extra={
                    "agreement_id": str(agreement.id),
                    "paid_amount": str(exc.paid_amount),
                    "ceiling": str(exc.ceiling),
                },
            )
            raise

        self._transition(agreement, state.status)
        agreement.paid_amount = state.paid_amount
        agreement.remaining_balance = state.remaining_balance
        agreement.completion_percentage = state.completion_percentage
        agreement.next_due_date = state.next_due_date
        agreement.days_overdue = state.days_overdue
        self.session.flush()
        return state
