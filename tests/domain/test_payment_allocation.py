"""
Payment allocation onto one installment.

Verifies:
- Accrued penalties pre-fill the split when the caller gives none
- Pre-filled penalties never exceed the cash received
- Explicit splits are taken as given
- Settlement counts cash and discounts together
"""

from datetime import date, timedelta
from decimal import Decimal

from settlement_kernel.domain.derivation import InstallmentState
from settlement_kernel.domain.dtos import InstallmentStatus, PaymentInput
from settlement_kernel.domain.payment_allocation import allocate_payment

DUE = date(2024, 1, 5)
FEE = Decimal("2")
DAILY = Decimal("0.033")


def _installment(amount="900.00", amount_paid="0.00", discount="0.00"):
    return InstallmentState(
        installment_number=1,
        due_date=DUE,
        amount=Decimal(amount),
        status=InstallmentStatus.PENDING,
        amount_paid=Decimal(amount_paid),
        discount_granted=Decimal(discount),
    )


def _allocate(installment, **payment):
    return allocate_payment(installment, PaymentInput(**payment), FEE, DAILY)


class TestAllocation:

    def test_on_time_payment_has_no_penalties(self):
        result = _allocate(_installment(), amount=Decimal("900.00"), payment_date=DUE)
        assert result.late_fee == Decimal("0.00")
        assert result.interest == Decimal("0.00")
        assert result.principal == Decimal("900.00")
        assert result.settles

    def test_late_payment_prefills_accrual(self):
        result = _allocate(
            _installment(), amount=Decimal("920.97"), payment_date=DUE + timedelta(days=10)
        )
        assert result.late_fee == Decimal("18.00")
        assert result.interest == Decimal("2.97")
        assert result.accrued_days == 10
        assert result.settles

    def test_small_payment_caps_penalties(self):
        result = _allocate(
            _installment(), amount=Decimal("10.00"), payment_date=DUE + timedelta(days=10)
        )
        assert result.late_fee == Decimal("10.00")
        assert result.interest == Decimal("0.00")
        assert result.principal == Decimal("0.00")
        assert not result.settles

    def test_explicit_split_used(self):
        result = _allocate(
            _installment(),
            amount=Decimal("900.00"),
            payment_date=DUE + timedelta(days=10),
            late_fee=Decimal("0"),
            interest=Decimal("0"),
        )
        assert result.late_fee == Decimal("0.00")
        assert result.interest == Decimal("0.00")

    def test_explicit_interest_caps_prefilled_fee(self):
        result = _allocate(
            _installment(),
            amount=Decimal("100.00"),
            payment_date=DUE + timedelta(days=10),
            interest=Decimal("100.00"),
        )
        assert result.late_fee == Decimal("0.00")
        assert result.interest == Decimal("100.00")
        assert result.principal == Decimal("0.00")

    def test_explicit_interest_leaves_room_for_fee(self):
        result = _allocate(
            _installment(),
            amount=Decimal("110.00"),
            payment_date=DUE + timedelta(days=10),
            interest=Decimal("100.00"),
        )
        assert result.late_fee == Decimal("10.00")
        assert result.late_fee + result.interest <= result.amount

    def test_partial_then_remainder_settles(self):
        result = _allocate(
            _installment(amount="600.00", amount_paid="400.00"),
            amount=Decimal("200.00"),
            payment_date=DUE,
        )
        assert result.settles

    def test_discount_completes_settlement(self):
        result = _allocate(
            _installment(amount="600.00"),
            amount=Decimal("550.00"),
            payment_date=DUE,
            discount=Decimal("50.00"),
        )
        assert result.discount == Decimal("50.00")
        assert result.settles

    def test_short_payment_does_not_settle(self):
        result = _allocate(_installment(amount="600.00"), amount=Decimal("400.00"), payment_date=DUE)
        assert not result.settles
