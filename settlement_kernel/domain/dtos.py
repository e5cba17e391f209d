"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable inputs validated at the boundary (AgreementTerms, PaymentInput,
    RenegotiationTerms) and read models returned to callers (AgreementView,
    InstallmentView, PaymentView, CaseStatusChangeView).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Services convert ORM
    rows to these DTOs; domain logic never sees ORM entities.

Invariants enforced:
    - All monetary fields are 2-place Decimal, never float.
    - Inputs reject malformed values in ``__post_init__`` with the typed
      ValidationError subclass for that input.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from settlement_kernel.domain.dates import ScheduleInterval
from settlement_kernel.domain.money import ZERO, to_money, to_percent
from settlement_kernel.exceptions import (
    InvalidPaymentError,
    InvalidRenegotiationError,
    InvalidTermsError,
)

MIN_RENEGOTIATION_REASON_LENGTH = 10


class AgreementType(str, Enum):
    JUDICIAL = "judicial"
    EXTRAJUDICIAL = "extrajudicial"
    IN_HEARING = "in_hearing"
    AT_STORE = "at_store"
    CASH_IN_FULL = "cash_in_full"


class AgreementStatus(str, Enum):
    """Agreement lifecycle. Cancelled and Renegotiated are set only explicitly."""

    ACTIVE = "active"
    COMPLETED = "completed"
    DEFAULTED = "defaulted"
    CANCELLED = "cancelled"
    RENEGOTIATED = "renegotiated"

    @property
    def is_live(self) -> bool:
        return self not in (AgreementStatus.CANCELLED, AgreementStatus.RENEGOTIATED)


class AgreementOrigin(str, Enum):
    """How an agreement came to exist. At most one live STANDARD per case."""

    STANDARD = "standard"
    ALVARA = "alvara"
    MANUAL = "manual"


class InstallmentStatus(str, Enum):
    """
    Stored statuses are PENDING, PAID and CANCELLED.  OVERDUE is the view of a
    PENDING installment past its due date.
    """

    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    PIX = "pix"
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"


class CaseStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    AGREEMENT = "agreement"
    EXTINGUISHED = "extinguished"
    PAID = "paid"


def _enum_value(enum_cls, value, error_factory):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as e:
        raise error_factory(f"unknown value {value!r}") from e


def _money_field(value, name: str, error_cls) -> Decimal:
    try:
        return to_money(value)
    except (TypeError, ValueError) as e:
        raise error_cls(name, str(e)) from e


def _percent_field(value, name: str, error_cls) -> Decimal:
    try:
        result = to_percent(value)
    except (TypeError, ValueError) as e:
        raise error_cls(name, str(e)) from e
    if result < 0:
        raise error_cls(name, "cannot be negative")
    return result


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AgreementTerms:
    """
    Terms of a settlement as negotiated.

    Percentages and interval left as None take the configured defaults.  Parties left as
    None are resolved from the case's parties at creation time.
    """

    case_id: UUID
    total_value: Decimal
    installment_count: int
    start_date: date
    entry_value: Decimal = ZERO
    agreement_type: AgreementType = AgreementType.JUDICIAL
    debtor_id: UUID | None = None
    creditor_id: UUID | None = None
    guarantor_id: UUID | None = None
    late_payment_fee_pct: Decimal | None = None
    late_payment_daily_interest_pct: Decimal | None = None
    payment_method: PaymentMethod = PaymentMethod.PIX
    interval: ScheduleInterval | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "total_value", _money_field(self.total_value, "total_value", InvalidTermsError)
        )
        object.__setattr__(
            self, "entry_value", _money_field(self.entry_value, "entry_value", InvalidTermsError)
        )
        if isinstance(self.installment_count, bool) or not isinstance(self.installment_count, int):
            raise InvalidTermsError("installment_count", "must be an integer")
        if not isinstance(self.start_date, date) or isinstance(self.start_date, datetime):
            raise InvalidTermsError("start_date", "must be a date")
        for name in ("late_payment_fee_pct", "late_payment_daily_interest_pct"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, _percent_field(value, name, InvalidTermsError))
        object.__setattr__(
            self,
            "agreement_type",
            _enum_value(AgreementType, self.agreement_type,
                        lambda msg: InvalidTermsError("agreement_type", msg)),
        )
        object.__setattr__(
            self,
            "payment_method",
            _enum_value(PaymentMethod, self.payment_method,
                        lambda msg: InvalidTermsError("payment_method", msg)),
        )
        if self.interval is not None:
            object.__setattr__(
                self,
                "interval",
                _enum_value(ScheduleInterval, self.interval,
                            lambda msg: InvalidTermsError("interval", msg)),
            )


@dataclass(frozen=True)
class PaymentInput:
    """
    A payment against one installment.

    ``late_fee`` and ``interest`` are the portions of ``amount`` attributed to
    penalties; None means "use the accrued values for payment_date".
    ``discount`` is principal forgiven on top of the cash paid.
    """

    amount: Decimal
    payment_date: date
    payment_method: PaymentMethod = PaymentMethod.PIX
    late_fee: Decimal | None = None
    interest: Decimal | None = None
    discount: Decimal = ZERO
    reference: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        amount = _money_field(self.amount, "amount", InvalidPaymentError)
        if amount <= ZERO:
            raise InvalidPaymentError("amount", "must be greater than zero")
        object.__setattr__(self, "amount", amount)

        if not isinstance(self.payment_date, date) or isinstance(self.payment_date, datetime):
            raise InvalidPaymentError("payment_date", "must be a date")

        object.__setattr__(
            self,
            "payment_method",
            _enum_value(PaymentMethod, self.payment_method,
                        lambda msg: InvalidPaymentError("payment_method", msg)),
        )

        discount = _money_field(self.discount, "discount", InvalidPaymentError)
        if discount < ZERO:
            raise InvalidPaymentError("discount", "cannot be negative")
        object.__setattr__(self, "discount", discount)

        for name in ("late_fee", "interest"):
            value = getattr(self, name)
            if value is None:
                continue
            portion = _money_field(value, name, InvalidPaymentError)
            if portion < ZERO:
                raise InvalidPaymentError(name, "cannot be negative")
            object.__setattr__(self, name, portion)

        explicit = (self.late_fee or ZERO) + (self.interest or ZERO)
        if explicit > amount:
            raise InvalidPaymentError("late_fee", "penalties cannot exceed the amount paid")


@dataclass(frozen=True)
class RenegotiationTerms:
    """New terms replacing a live agreement."""

    new_total_value: Decimal
    new_installment_count: int
    new_first_due_date: date
    reason: str
    new_entry_value: Decimal = ZERO
    discount_pct: Decimal = ZERO
    additional_fees: Decimal = ZERO

    def __post_init__(self) -> None:
        for name in ("new_total_value", "new_entry_value", "additional_fees"):
            value = _money_field(getattr(self, name), name, InvalidRenegotiationError)
            if value < ZERO:
                raise InvalidRenegotiationError(name, "cannot be negative")
            object.__setattr__(self, name, value)
        pct = _percent_field(self.discount_pct, "discount_pct", InvalidRenegotiationError)
        if pct > 100:
            raise InvalidRenegotiationError("discount_pct", "cannot exceed 100")
        object.__setattr__(self, "discount_pct", pct)
        if not self.reason or len(self.reason.strip()) < MIN_RENEGOTIATION_REASON_LENGTH:
            raise InvalidRenegotiationError(
                "reason",
                f"must have at least {MIN_RENEGOTIATION_REASON_LENGTH} characters",
            )


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InstallmentView:
    """An installment with its status derived as of a date."""

    id: UUID
    agreement_id: UUID
    installment_number: int
    due_date: date
    amount: Decimal
    status: InstallmentStatus
    amount_paid: Decimal
    late_fee_paid: Decimal
    interest_paid: Decimal
    discount_granted: Decimal
    paid_date: date | None
    days_overdue: int
    late_fee_due: Decimal
    interest_due: Decimal

    @property
    def outstanding(self) -> Decimal:
        return max(ZERO, self.amount - self.amount_paid - self.discount_granted)

    @property
    def total_due(self) -> Decimal:
        """What settles the installment today: outstanding plus open penalties."""
        if self.status in (InstallmentStatus.PAID, InstallmentStatus.CANCELLED):
            return ZERO
        return self.outstanding + self.late_fee_due + self.interest_due


@dataclass(frozen=True)
class AgreementView:
    id: UUID
    case_id: UUID
    debtor_id: UUID
    creditor_id: UUID
    guarantor_id: UUID | None
    agreement_type: AgreementType
    origin: AgreementOrigin
    status: AgreementStatus
    total_value: Decimal
    entry_value: Decimal
    installment_count: int
    installment_value: Decimal
    late_payment_fee_pct: Decimal
    late_payment_daily_interest_pct: Decimal
    start_date: date
    payment_method: PaymentMethod
    interval: ScheduleInterval
    renegotiation_count: int
    renegotiated_from_id: UUID | None
    paid_amount: Decimal
    remaining_balance: Decimal
    completion_percentage: Decimal
    next_due_date: date | None
    days_overdue: int
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    installments: tuple[InstallmentView, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PaymentView:
    id: UUID
    installment_id: UUID
    agreement_id: UUID
    installment_number: int
    amount: Decimal
    payment_date: date
    payment_method: PaymentMethod
    late_fee: Decimal
    interest: Decimal
    discount: Decimal
    reference: str | None
    notes: str | None
    recorded_by_id: UUID


@dataclass(frozen=True)
class CaseStatusChangeView:
    id: UUID
    case_id: UUID
    previous_status: CaseStatus | None
    new_status: CaseStatus
    changed_by_id: UUID
    changed_at: datetime
    notes: str | None = None
