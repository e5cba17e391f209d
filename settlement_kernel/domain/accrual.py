"""
Accrual Calculator -- late fee and simple daily interest on overdue principal.

    days_overdue = max(0, as_of - due_date)
    late_fee     = base * fee_pct / 100             (flat, once)
    interest     = base * daily_pct / 100 * days    (simple, never compounded)
    total_due    = base + late_fee + interest

Pure and side-effect free.  Used for previews and to pre-fill the penalty
split of a payment when the caller does not supply one.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from settlement_kernel.domain.dates import days_overdue as _days_overdue
from settlement_kernel.domain.money import HUNDRED, ZERO, percent_of, round_money, to_money


@dataclass(frozen=True)
class Accrual:
    base: Decimal
    days_overdue: int
    late_fee: Decimal
    interest: Decimal

    @property
    def total_due(self) -> Decimal:
        return self.base + self.late_fee + self.interest

    @property
    def penalties(self) -> Decimal:
        return self.late_fee + self.interest


def compute_accrual(
    base: Decimal,
    due_date: date,
    as_of: date,
    late_payment_fee_pct: Decimal,
    late_payment_daily_interest_pct: Decimal,
) -> Accrual:
    amount = to_money(base)
    days = _days_overdue(due_date, as_of)
    if days == 0 or amount <= ZERO:
        return Accrual(base=amount, days_overdue=days, late_fee=ZERO, interest=ZERO)

    late_fee = percent_of(amount, late_payment_fee_pct)
    interest = round_money(amount * late_payment_daily_interest_pct / HUNDRED * days)
    return Accrual(base=amount, days_overdue=days, late_fee=late_fee, interest=interest)


def outstanding_principal(
    amount: Decimal,
    amount_paid: Decimal,
    discount_granted: Decimal,
) -> Decimal:
    """What is still owed on an installment: cash paid and discounts both count."""
    return max(ZERO, amount - amount_paid - discount_granted)


def accrue_outstanding(
    amount: Decimal,
    amount_paid: Decimal,
    late_fee_paid: Decimal,
    interest_paid: Decimal,
    discount_granted: Decimal,
    due_date: date,
    as_of: date,
    late_payment_fee_pct: Decimal,
    late_payment_daily_interest_pct: Decimal,
) -> Accrual:
    """
    Accrual still owed on a partially paid installment.

    The flat fee is charged once: if any late fee was already paid none is
    due again.  Interest runs on the outstanding amount and is reduced by
    interest already paid, never below zero.
    """
    base = outstanding_principal(amount, amount_paid, discount_granted)
    gross = compute_accrual(
        base, due_date, as_of, late_payment_fee_pct, late_payment_daily_interest_pct
    )
    late_fee = ZERO if late_fee_paid > ZERO else gross.late_fee
    interest = max(ZERO, gross.interest - interest_paid)
    return Accrual(
        base=base, days_overdue=gross.days_overdue, late_fee=late_fee, interest=interest
    )
