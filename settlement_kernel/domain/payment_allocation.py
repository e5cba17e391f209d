"""
Payment allocation -- how one payment lands on an installment.

Pure.  Splits the cash into late fee, interest and the rest, using the
caller's split when given and the accrual as of the payment date otherwise.
Accrued penalties are capped by the cash received so a small partial payment
never books more penalty than it brought in.
"""

from dataclasses import dataclass
from decimal import Decimal

from settlement_kernel.domain.accrual import accrue_outstanding
from settlement_kernel.domain.derivation import InstallmentState
from settlement_kernel.domain.dtos import PaymentInput
from settlement_kernel.domain.money import ZERO


@dataclass(frozen=True)
class PaymentAllocation:
    amount: Decimal
    late_fee: Decimal
    interest: Decimal
    discount: Decimal
    settles: bool
    accrued_days: int

    @property
    def principal(self) -> Decimal:
        return self.amount - self.late_fee - self.interest


def allocate_payment(
    installment: InstallmentState,
    payment: PaymentInput,
    late_payment_fee_pct: Decimal,
    late_payment_daily_interest_pct: Decimal,
) -> PaymentAllocation:
    accrual = accrue_outstanding(
        amount=installment.amount,
        amount_paid=installment.amount_paid,
        late_fee_paid=installment.late_fee_paid,
        interest_paid=installment.interest_paid,
        discount_granted=installment.discount_granted,
        due_date=installment.due_date,
        as_of=payment.payment_date,
        late_payment_fee_pct=late_payment_fee_pct,
        late_payment_daily_interest_pct=late_payment_daily_interest_pct,
    )

    if payment.late_fee is not None:
        late_fee = payment.late_fee
    else:
        # An explicit interest portion leaves less cash for the prefilled fee.
        late_fee = min(accrual.late_fee, max(ZERO, payment.amount - (payment.interest or ZERO)))

    if payment.interest is not None:
        interest = payment.interest
    else:
        interest = min(accrual.interest, max(ZERO, payment.amount - late_fee))

    covered = (
        installment.amount_paid
        + payment.amount
        + installment.discount_granted
        + payment.discount
    )
    return PaymentAllocation(
        amount=payment.amount,
        late_fee=late_fee,
        interest=interest,
        discount=payment.discount,
        settles=covered >= installment.amount,
        accrued_days=accrual.days_overdue,
    )
