"""
Module: settlement_kernel.selectors.agreement_selector
Responsibility: Read-only views of agreements, their installments and the
    payments recorded against them.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Overdue status and accrued penalties are derived as of the requested
      date on every read; nothing derived on read is written back.
    - Money in views is quantized to cents; percentages to six places.

Failure modes:
    - AgreementNotFoundError from get_agreement() for an unknown id.
    - Listing methods return empty tuples when nothing matches.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from settlement_kernel.domain.accrual import accrue_outstanding
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.dates import ScheduleInterval, days_overdue, month_bounds
from settlement_kernel.domain.derivation import derive_agreement_state
from settlement_kernel.domain.dtos import (
    AgreementOrigin,
    AgreementStatus,
    AgreementType,
    AgreementView,
    InstallmentStatus,
    InstallmentView,
    PaymentMethod,
    PaymentView,
)
from settlement_kernel.domain.money import ZERO, to_money, to_percent
from settlement_kernel.domain.policy import LedgerPolicy
from settlement_kernel.exceptions import AgreementNotFoundError
from settlement_kernel.models.agreement import FinancialAgreement, Installment
from settlement_kernel.models.payment import PaymentRecord
from settlement_kernel.selectors.base import BaseSelector


class AgreementSelector(BaseSelector):

    def __init__(
        self,
        session: Session,
        policy: LedgerPolicy | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self.policy = policy or LedgerPolicy()
        self.clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    def _installment_view(
        self,
        installment: Installment,
        agreement: FinancialAgreement,
        as_of: date,
    ) -> InstallmentView:
        state = installment.to_state()
        status = state.view_status(as_of)
        late_fee_due = interest_due = ZERO
        overdue_days = 0
        if state.is_open and agreement.is_live:
            accrual = accrue_outstanding(
                amount=state.amount,
                amount_paid=state.amount_paid,
                late_fee_paid=state.late_fee_paid,
                interest_paid=state.interest_paid,
                discount_granted=state.discount_granted,
                due_date=state.due_date,
                as_of=as_of,
                late_payment_fee_pct=agreement.late_payment_fee_pct,
                late_payment_daily_interest_pct=agreement.late_payment_daily_interest_pct,
            )
            late_fee_due = accrual.late_fee
            interest_due = accrual.interest
            overdue_days = days_overdue(state.due_date, as_of)

        return InstallmentView(
            id=installment.id,
            agreement_id=installment.agreement_id,
            installment_number=installment.installment_number,
            due_date=installment.due_date,
            amount=to_money(state.amount),
            status=status,
            amount_paid=to_money(state.amount_paid),
            late_fee_paid=to_money(state.late_fee_paid),
            interest_paid=to_money(state.interest_paid),
            discount_granted=to_money(state.discount_granted),
            paid_date=installment.paid_date,
            days_overdue=overdue_days,
            late_fee_due=late_fee_due,
            interest_due=interest_due,
        )

    def _agreement_view(
        self,
        agreement: FinancialAgreement,
        as_of: date,
        with_installments: bool = True,
    ) -> AgreementView:
        state = derive_agreement_state(
            agreement_id=agreement.id,
            total_value=agreement.total_value,
            current_status=agreement.status_enum,
            installments=agreement.installment_states(),
            as_of=as_of,
            default_threshold_days=self.policy.default_threshold_days,
        )
        installments = ()
        if with_installments:
            installments = tuple(
                self._installment_view(i, agreement, as_of) for i in agreement.installments
            )
        return AgreementView(
            id=agreement.id,
            case_id=agreement.case_id,
            debtor_id=agreement.debtor_id,
            creditor_id=agreement.creditor_id,
            guarantor_id=agreement.guarantor_id,
            agreement_type=AgreementType(agreement.agreement_type),
            origin=AgreementOrigin(agreement.origin),
            status=state.status,
            total_value=to_money(agreement.total_value),
            entry_value=to_money(agreement.entry_value),
            installment_count=agreement.installment_count,
            installment_value=to_money(agreement.installment_value),
            late_payment_fee_pct=to_percent(agreement.late_payment_fee_pct),
            late_payment_daily_interest_pct=to_percent(
                agreement.late_payment_daily_interest_pct
            ),
            start_date=agreement.start_date,
            payment_method=PaymentMethod(agreement.payment_method),
            interval=ScheduleInterval(agreement.schedule_interval),
            renegotiation_count=agreement.renegotiation_count,
            renegotiated_from_id=agreement.renegotiated_from_id,
            paid_amount=to_money(state.paid_amount),
            remaining_balance=to_money(state.remaining_balance),
            completion_percentage=state.completion_percentage,
            next_due_date=state.next_due_date,
            days_overdue=state.days_overdue,
            notes=agreement.notes,
            created_at=agreement.created_at,
            updated_at=agreement.updated_at,
            installments=installments,
        )

    @staticmethod
    def _payment_view(record: PaymentRecord) -> PaymentView:
        return PaymentView(
            id=record.id,
            installment_id=record.installment_id,
            agreement_id=record.agreement_id,
            installment_number=record.installment.installment_number,
            amount=to_money(record.amount),
            payment_date=record.payment_date,
            payment_method=PaymentMethod(record.payment_method),
            late_fee=to_money(record.late_fee),
            interest=to_money(record.interest),
            discount=to_money(record.discount),
            reference=record.reference,
            notes=record.notes,
            recorded_by_id=record.recorded_by_id,
        )

    # ------------------------------------------------------------------
    # Agreements
    # ------------------------------------------------------------------

    def _load(self, agreement_id: UUID) -> FinancialAgreement:
        agreement = self.session.get(FinancialAgreement, agreement_id)
        if agreement is None:
            raise AgreementNotFoundError(str(agreement_id))
        return agreement

    def get_agreement(self, agreement_id: UUID, as_of: date | None = None) -> AgreementView:
        return self._agreement_view(self._load(agreement_id), as_of or self.clock.today())

    def get_installments(
        self, agreement_id: UUID, as_of: date | None = None
    ) -> tuple[InstallmentView, ...]:
        """Installments ordered by number, statuses derived as of ``as_of``."""
        agreement = self._load(agreement_id)
        as_of = as_of or self.clock.today()
        return tuple(self._installment_view(i, agreement, as_of) for i in agreement.installments)

    def installment_agreement_id(self, installment_id: UUID) -> UUID | None:
        return self.session.execute(
            select(Installment.agreement_id).where(Installment.id == installment_id)
        ).scalar_one_or_none()

    def list_case_agreements(
        self,
        case_id: UUID,
        origin: AgreementOrigin | None = None,
        as_of: date | None = None,
    ) -> tuple[AgreementView, ...]:
        stmt = select(FinancialAgreement).where(FinancialAgreement.case_id == case_id)
        if origin is not None:
            stmt = stmt.where(FinancialAgreement.origin == origin.value)
        stmt = stmt.order_by(FinancialAgreement.created_at, FinancialAgreement.renegotiation_count)
        as_of = as_of or self.clock.today()
        return tuple(
            self._agreement_view(a, as_of, with_installments=False)
            for a in self.session.execute(stmt).scalars().all()
        )

    def list_alvaras(
        self, case_id: UUID | None = None, live_only: bool = False
    ) -> tuple[AgreementView, ...]:
        """Alvará agreements, for one case or across all cases."""
        stmt = select(FinancialAgreement).where(
            FinancialAgreement.origin == AgreementOrigin.ALVARA.value
        )
        if case_id is not None:
            stmt = stmt.where(FinancialAgreement.case_id == case_id)
        if live_only:
            stmt = stmt.where(
                FinancialAgreement.status.notin_(
                    [AgreementStatus.CANCELLED.value, AgreementStatus.RENEGOTIATED.value]
                )
            )
        stmt = stmt.order_by(FinancialAgreement.start_date)
        as_of = self.clock.today()
        return tuple(
            self._agreement_view(a, as_of, with_installments=False)
            for a in self.session.execute(stmt).scalars().all()
        )

    # ------------------------------------------------------------------
    # Payments and month views
    # ------------------------------------------------------------------

    def get_payment_history(self, agreement_id: UUID) -> tuple[PaymentView, ...]:
        """Payments of one agreement, oldest first."""
        self._load(agreement_id)
        records = self.session.execute(
            select(PaymentRecord)
            .where(PaymentRecord.agreement_id == agreement_id)
            .order_by(PaymentRecord.payment_date, PaymentRecord.created_at)
        ).scalars().all()
        return tuple(self._payment_view(r) for r in records)

    def installments_due_in_month(
        self,
        year: int,
        month: int,
        status: InstallmentStatus | None = None,
        as_of: date | None = None,
    ) -> tuple[InstallmentView, ...]:
        """
        Installments falling due in the month, across agreements.

        ``status`` filters on the derived status, so OVERDUE selects Pending
        installments whose due date has passed by ``as_of``.
        """
        first, last = month_bounds(year, month)
        as_of = as_of or self.clock.today()
        installments = self.session.execute(
            select(Installment)
            .where(Installment.due_date >= first, Installment.due_date <= last)
            .options(selectinload(Installment.agreement))
            .order_by(Installment.due_date, Installment.installment_number)
        ).scalars().all()

        views = (self._installment_view(i, i.agreement, as_of) for i in installments)
        return tuple(v for v in views if status is None or v.status is status)

    def payments_in_month(self, year: int, month: int) -> tuple[PaymentView, ...]:
        first, last = month_bounds(year, month)
        records = self.session.execute(
            select(PaymentRecord)
            .where(PaymentRecord.payment_date >= first, PaymentRecord.payment_date <= last)
            .order_by(PaymentRecord.payment_date, PaymentRecord.created_at)
        ).scalars().all()
        return tuple(self._payment_view(r) for r in records)
