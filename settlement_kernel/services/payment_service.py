"""
PaymentService -- apply a payment to one installment.

Responsibility:
    Validates the target, appends an immutable PaymentRecord, updates the
    installment's running totals, settles it when covered and recomputes the
    agreement aggregate, all in the caller's transaction.

Architecture position:
    Kernel > Services.  Delegates allocation to domain.payment_allocation and
    aggregate recompute to AgreementService.refresh_state.

Invariants enforced:
    - A Paid installment never takes another payment.
    - PaymentRecord rows are append-only (db/immutability.py).
    - The agreement row is locked for the read-recompute-write cycle.

Failure modes:
    - InstallmentNotFoundError: unknown installment, cancelled installment
      or agreement no longer live.
    - AlreadyPaidError: the installment is already Paid.
    - LedgerInvariantViolationError: the payment would break the aggregate
      ceiling; the caller rolls back.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.domain.accrual import Accrual, accrue_outstanding
from settlement_kernel.domain.clock import Clock
from settlement_kernel.domain.dtos import InstallmentStatus, PaymentInput
from settlement_kernel.domain.money import ZERO
from settlement_kernel.domain.payment_allocation import allocate_payment
from settlement_kernel.domain.policy import LedgerPolicy
from settlement_kernel.exceptions import (
    AgreementNotFoundError,
    AlreadyPaidError,
    InstallmentNotFoundError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.agreement import Installment
from settlement_kernel.models.payment import PaymentRecord
from settlement_kernel.services.agreement_service import AgreementService
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.base import BaseService

logger = get_logger("services.payment")


class PaymentService(BaseService):

    def __init__(
        self,
        session: Session,
        policy: LedgerPolicy | None = None,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        agreements: AgreementService | None = None,
    ):
        super().__init__(session, clock)
        self.policy = policy or LedgerPolicy()
        self.auditor = auditor or AuditorService(session, self.clock)
        self.agreements = agreements or AgreementService(
            session, self.policy, self.clock, self.auditor
        )

    def _load_installment(self, installment_id: UUID) -> Installment:
        installment = self.session.execute(
            select(Installment)
            .where(Installment.id == installment_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if installment is None:
            raise InstallmentNotFoundError(str(installment_id))
        return installment

    def record_payment(
        self,
        installment_id: UUID,
        payment: PaymentInput,
        actor_id: UUID,
    ) -> PaymentRecord:
        """
        Record ``payment`` against the installment.

        Preconditions: the caller holds the agreement's in-process lock.
        Postconditions: record, installment and agreement snapshot are
        flushed together; nothing is committed.
        """
        installment = self._load_installment(installment_id)
        try:
            agreement = self.agreements.get_agreement(installment.agreement_id, lock=True)
        except AgreementNotFoundError as exc:
            raise InstallmentNotFoundError(str(installment_id)) from exc
        # Re-read under the row lock.
        installment = self._load_installment(installment_id)

        if not agreement.is_live:
            raise InstallmentNotFoundError(
                str(installment_id), reason=f"agreement is {agreement.status}"
            )
        if installment.status_enum is InstallmentStatus.CANCELLED:
            raise InstallmentNotFoundError(str(installment_id), reason="installment is cancelled")
        if installment.status_enum is InstallmentStatus.PAID:
            logger.warning(
                "payment_rejected_already_paid",
                extra={
                    "installment_id": str(installment_id),
                    "agreement_id": str(agreement.id),
                },
            )
            raise AlreadyPaidError(str(installment_id), installment.paid_date)

        allocation = allocate_payment(
            installment.to_state(),
            payment,
            agreement.late_payment_fee_pct,
            agreement.late_payment_daily_interest_pct,
        )

        record = PaymentRecord(
            agreement_id=agreement.id,
            amount=allocation.amount,
            payment_date=payment.payment_date,
            payment_method=payment.payment_method.value,
            late_fee=allocation.late_fee,
            interest=allocation.interest,
            discount=allocation.discount,
            reference=payment.reference,
            notes=payment.notes,
            created_by_id=actor_id,
        )
        installment.payments.append(record)

        installment.amount_paid = installment.amount_paid + allocation.amount
        installment.late_fee_paid = installment.late_fee_paid + allocation.late_fee
        installment.interest_paid = installment.interest_paid + allocation.interest
        installment.discount_granted = installment.discount_granted + allocation.discount
        installment.updated_by_id = actor_id
        if allocation.settles:
            installment.status = InstallmentStatus.PAID.value
            installment.paid_date = payment.payment_date
        self.session.flush()

        state = self.agreements.refresh_state(agreement)

        self.auditor.record_payment(
            installment.id,
            actor_id,
            {
                "payment_id": str(record.id),
                "agreement_id": str(agreement.id),
                "amount": str(allocation.amount),
                "late_fee": str(allocation.late_fee),
                "interest": str(allocation.interest),
                "discount": str(allocation.discount),
                "payment_date": payment.payment_date.isoformat(),
                "settled": allocation.settles,
            },
        )
        logger.info(
            "payment_recorded",
            extra={
                "installment_id": str(installment.id),
                "agreement_id": str(agreement.id),
                "amount": str(allocation.amount),
                "settled": allocation.settles,
                "days_overdue": allocation.accrued_days,
                "agreement_status": state.status.value,
            },
        )
        return record

    def preview_accrual(self, installment_id: UUID, as_of: date | None = None) -> Accrual:
        """What is owed on the installment as of a date, without writing."""
        installment = self._load_installment(installment_id)
        agreement = installment.agreement
        as_of = as_of or self.clock.today()
        if installment.status_enum in (InstallmentStatus.PAID, InstallmentStatus.CANCELLED):
            return Accrual(base=ZERO, days_overdue=0, late_fee=ZERO, interest=ZERO)
        return accrue_outstanding(
            amount=installment.amount,
            amount_paid=installment.amount_paid,
            late_fee_paid=installment.late_fee_paid,
            interest_paid=installment.interest_paid,
            discount_granted=installment.discount_granted,
            due_date=installment.due_date,
            as_of=as_of,
            late_payment_fee_pct=agreement.late_payment_fee_pct,
            late_payment_daily_interest_pct=agreement.late_payment_daily_interest_pct,
        )
