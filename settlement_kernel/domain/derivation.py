"""
Agreement State Deriver -- recompute aggregate fields from the installment set.

Pure.  Runs after every schedule generation and payment.  Cancelled and
Renegotiated are terminal labels set by explicit operations; derivation keeps
them and only recomputes the numbers.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from settlement_kernel.domain.dates import days_overdue
from settlement_kernel.domain.dtos import AgreementStatus, InstallmentStatus
from settlement_kernel.domain.money import CENT, HUNDRED, ONE_CENT_TOLERANCE, ZERO
from settlement_kernel.exceptions import LedgerInvariantViolationError


@dataclass(frozen=True)
class InstallmentState:
    """The financial facts of one installment, detached from the ORM."""

    installment_number: int
    due_date: date
    amount: Decimal
    status: InstallmentStatus
    amount_paid: Decimal = ZERO
    late_fee_paid: Decimal = ZERO
    interest_paid: Decimal = ZERO
    discount_granted: Decimal = ZERO

    def view_status(self, as_of: date) -> InstallmentStatus:
        """Stored status, with PENDING shown as OVERDUE past the due date."""
        if self.status is InstallmentStatus.PENDING and as_of > self.due_date:
            return InstallmentStatus.OVERDUE
        return self.status

    @property
    def is_open(self) -> bool:
        return self.status in (InstallmentStatus.PENDING, InstallmentStatus.OVERDUE)


@dataclass(frozen=True)
class AgreementState:
    status: AgreementStatus
    paid_amount: Decimal
    remaining_balance: Decimal
    completion_percentage: Decimal
    next_due_date: date | None
    days_overdue: int
    penalties_paid: Decimal


def derive_agreement_state(
    agreement_id: UUID | str,
    total_value: Decimal,
    current_status: AgreementStatus,
    installments: Sequence[InstallmentState],
    as_of: date,
    default_threshold_days: int,
) -> AgreementState:
    """
    Raises:
        LedgerInvariantViolationError: paid amount exceeds total value plus
            the penalties actually paid, beyond one cent.
    """
    paid_amount = sum((i.amount_paid for i in installments), ZERO)
    penalties_paid = sum((i.late_fee_paid + i.interest_paid for i in installments), ZERO)

    ceiling = total_value + penalties_paid
    if paid_amount > ceiling + ONE_CENT_TOLERANCE:
        raise LedgerInvariantViolationError(
            agreement_id=str(agreement_id),
            paid_amount=paid_amount,
            ceiling=ceiling,
        )

    open_items = sorted(
        (i for i in installments if i.is_open),
        key=lambda i: (i.due_date, i.installment_number),
    )
    next_due_date = open_items[0].due_date if open_items else None
    overdue = [i for i in open_items if as_of > i.due_date]
    worst_days = days_overdue(overdue[0].due_date, as_of) if overdue else 0

    live = [i for i in installments if i.status is not InstallmentStatus.CANCELLED]
    if not current_status.is_live:
        status = current_status
    elif live and all(i.status is InstallmentStatus.PAID for i in live):
        status = AgreementStatus.COMPLETED
    elif worst_days > default_threshold_days:
        status = AgreementStatus.DEFAULTED
    else:
        status = AgreementStatus.ACTIVE

    if status is AgreementStatus.COMPLETED:
        completion = HUNDRED.quantize(CENT)
        remaining = ZERO
    else:
        if total_value > ZERO:
            completion = min(HUNDRED, paid_amount / total_value * HUNDRED).quantize(CENT)
        else:
            completion = ZERO
        remaining = max(ZERO, total_value - paid_amount)

    return AgreementState(
        status=status,
        paid_amount=paid_amount,
        remaining_balance=remaining,
        completion_percentage=completion,
        next_due_date=next_due_date,
        days_overdue=worst_days,
        penalties_paid=penalties_paid,
    )
