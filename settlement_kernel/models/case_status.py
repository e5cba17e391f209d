"""
Module: settlement_kernel.models.case_status
Responsibility: Append-only history of case status transitions observed by
    the engine.  The highest ``seq`` for a case is its current status as the
    engine knows it.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only (db/immutability.py).
    - ``seq`` is monotonic, allocated by SequenceService.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base, UUIDString


class CaseStatusChange(Base):
    """One observed case transition."""

    __tablename__ = "case_status_history"

    __table_args__ = (
        Index("idx_case_status_case_seq", "case_id", "seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    case_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    previous_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<CaseStatusChange {self.case_id} {self.previous_status}->{self.new_status}>"
