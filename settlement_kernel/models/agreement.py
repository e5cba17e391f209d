"""
Module: settlement_kernel.models.agreement
Responsibility: ORM persistence for financial agreements and their
    installments.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - ``installment_number`` is unique within an agreement.
    - At most one live standard agreement per case: ``standard_case_id``
      carries the case id only while a standard agreement is live and is
      UNIQUE, so the database rejects a second one.
    - Installments are owned exclusively by their agreement
      (cascade="all, delete-orphan").
    - A Paid installment is frozen (db/immutability.py).

Failure modes:
    - IntegrityError on a second live standard agreement for a case.
    - ImmutabilityViolationError when editing a Paid installment.

Audit relevance:
    Derived aggregate columns (paid_amount, remaining_balance,
    completion_percentage, next_due_date, days_overdue) are snapshots
    written by AgreementService after each mutation; they are never edited
    by hand.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import TrackedBase, UUIDString
from settlement_kernel.domain.derivation import InstallmentState
from settlement_kernel.domain.dtos import (
    AgreementOrigin,
    AgreementStatus,
    InstallmentStatus,
)


class FinancialAgreement(TrackedBase):
    """
    A negotiated settlement of a legal case, payable in installments.

    Guarantees:
        - ``total_value == entry_value + sum(installment.amount)`` when the
          schedule is generated.
        - ``status`` is one of AgreementStatus; ``origin`` one of
          AgreementOrigin.
    """

    __tablename__ = "financial_agreements"

    __table_args__ = (
        UniqueConstraint("standard_case_id", name="uq_agreement_standard_case"),
        Index("idx_agreement_case", "case_id"),
        Index("idx_agreement_status", "status"),
        Index("idx_agreement_origin", "case_id", "origin"),
    )

    case_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    debtor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    creditor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    guarantor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    agreement_type: Mapped[str] = mapped_column(String(30), nullable=False)
    origin: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AgreementOrigin.MANUAL.value
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AgreementStatus.ACTIVE.value
    )
    standard_case_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Terms
    total_value: Mapped[Decimal] = mapped_column(nullable=False)
    entry_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    installment_count: Mapped[int] = mapped_column(Integer, nullable=False)
    installment_value: Mapped[Decimal] = mapped_column(nullable=False)
    late_payment_fee_pct: Mapped[Decimal] = mapped_column(nullable=False)
    late_payment_daily_interest_pct: Mapped[Decimal] = mapped_column(nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)
    schedule_interval: Mapped[str] = mapped_column(String(20), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Renegotiation lineage
    renegotiation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    renegotiated_from_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("financial_agreements.id"),
        nullable=True,
    )
    renegotiation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Derived snapshot
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    remaining_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    completion_percentage: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    next_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    days_overdue: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    installments: Mapped[list["Installment"]] = relationship(
        "Installment",
        back_populates="agreement",
        cascade="all, delete-orphan",
        order_by="Installment.installment_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<FinancialAgreement {self.id} case={self.case_id} {self.status}>"

    @property
    def status_enum(self) -> AgreementStatus:
        return AgreementStatus(self.status)

    @property
    def is_live(self) -> bool:
        return self.status_enum.is_live

    @property
    def has_payments(self) -> bool:
        return any(i.payments for i in self.installments)

    def installment_states(self) -> list[InstallmentState]:
        return [i.to_state() for i in self.installments]


class Installment(TrackedBase):
    """
    One scheduled payment obligation within an agreement.

    Guarantees:
        - ``amount_paid`` is the running sum of PaymentRecord amounts.
        - Stored ``status`` is pending, paid or cancelled; overdue is derived.
    """

    __tablename__ = "financial_installments"

    __table_args__ = (
        UniqueConstraint(
            "agreement_id", "installment_number", name="uq_installment_number"
        ),
        Index("idx_installment_due", "due_date"),
        Index("idx_installment_status", "status"),
    )

    agreement_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("financial_agreements.id"),
        nullable=False,
    )
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InstallmentStatus.PENDING.value
    )
    paid_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    late_fee_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    interest_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    discount_granted: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    agreement: Mapped["FinancialAgreement"] = relationship(
        "FinancialAgreement",
        back_populates="installments",
    )
    payments: Mapped[list["PaymentRecord"]] = relationship(  # noqa: F821
        "PaymentRecord",
        back_populates="installment",
        order_by="PaymentRecord.payment_date",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Installment {self.installment_number} of {self.agreement_id} {self.status}>"

    @property
    def status_enum(self) -> InstallmentStatus:
        return InstallmentStatus(self.status)

    def to_state(self) -> InstallmentState:
        return InstallmentState(
            installment_number=self.installment_number,
            due_date=self.due_date,
            amount=self.amount,
            status=self.status_enum,
            amount_paid=self.amount_paid or Decimal("0"),
            late_fee_paid=self.late_fee_paid or Decimal("0"),
            interest_paid=self.interest_paid or Decimal("0"),
            discount_granted=self.discount_granted or Decimal("0"),
        )
