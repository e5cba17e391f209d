"""
Schedule Generator -- turns agreement terms into an installment plan.

Pure.  ``entry_value + sum(amounts) == total_value`` exactly: each
installment gets the floor of the even split and the leftover cents (at most
``count - 1``) go to the last one.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from settlement_kernel.domain.dates import (
    ScheduleInterval,
    first_step_on_or_after,
    step_date,
)
from settlement_kernel.domain.money import ZERO, floor_money, to_money
from settlement_kernel.exceptions import InvalidTermsError


@dataclass(frozen=True)
class ScheduledInstallment:
    installment_number: int
    due_date: date
    amount: Decimal


def validate_terms(
    total_value: Decimal,
    entry_value: Decimal,
    installment_count: int,
) -> None:
    """Raise InvalidTermsError if the terms cannot be scheduled."""
    if isinstance(installment_count, bool) or not isinstance(installment_count, int):
        raise InvalidTermsError("installment_count", "must be an integer")
    if installment_count < 1:
        raise InvalidTermsError("installment_count", "must be at least 1")
    if total_value <= ZERO:
        raise InvalidTermsError("total_value", "must be positive")
    if entry_value < ZERO:
        raise InvalidTermsError("entry_value", "cannot be negative")
    if entry_value > total_value:
        raise InvalidTermsError("entry_value", "cannot exceed total_value")


def installment_value(
    total_value: Decimal,
    entry_value: Decimal,
    installment_count: int,
) -> Decimal:
    """The regular (non-last) installment amount."""
    validate_terms(total_value, entry_value, installment_count)
    return floor_money((to_money(total_value) - to_money(entry_value)) / installment_count)


def generate_schedule(
    total_value: Decimal,
    entry_value: Decimal,
    installment_count: int,
    start_date: date,
    as_of: date | None = None,
    interval: ScheduleInterval = ScheduleInterval.MONTHLY,
) -> tuple[ScheduledInstallment, ...]:
    """
    Build installments 1..N on the cadence anchored at ``start_date``.

    When ``start_date`` is already behind ``as_of`` the plan starts at the
    first cadence date on or after ``as_of``.
    """
    total = to_money(total_value)
    entry = to_money(entry_value)
    validate_terms(total, entry, installment_count)

    financed = total - entry
    regular = floor_money(financed / installment_count)
    last = financed - regular * (installment_count - 1)

    offset = 0
    if as_of is not None:
        offset = first_step_on_or_after(start_date, as_of, interval)

    return tuple(
        ScheduledInstallment(
            installment_number=number,
            due_date=step_date(start_date, offset + number - 1, interval),
            amount=last if number == installment_count else regular,
        )
        for number in range(1, installment_count + 1)
    )
