"""
Module: settlement_kernel.models.payment
Responsibility: ORM persistence for payment records.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: UPDATE and DELETE are blocked by db/immutability.py.
      Corrections are new records.
    - ``late_fee + interest <= amount``.

Audit relevance:
    Payment history is reconstructed from these rows alone; the installment's
    running totals must always equal their sums.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import TrackedBase, UUIDString


class PaymentRecord(TrackedBase):
    """
    Cash received against one installment.

    ``created_by_id`` is the actor who recorded the payment.
    """

    __tablename__ = "financial_payments"

    __table_args__ = (
        Index("idx_payment_installment", "installment_id"),
        Index("idx_payment_agreement", "agreement_id"),
        Index("idx_payment_date", "payment_date"),
    )

    installment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("financial_installments.id"),
        nullable=False,
    )
    agreement_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("financial_agreements.id"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)
    late_fee: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    interest: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    discount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    installment: Mapped["Installment"] = relationship(  # noqa: F821
        "Installment",
        back_populates="payments",
    )

    def __repr__(self) -> str:
        return f"<PaymentRecord {self.amount} on {self.payment_date} -> {self.installment_id}>"

    @property
    def recorded_by_id(self) -> UUID:
        return self.created_by_id
