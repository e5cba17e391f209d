"""
Module: settlement_kernel.selectors.case_selector
Responsibility: Read-only access to the observed case status history.
"""

from uuid import UUID

from sqlalchemy import select

from settlement_kernel.domain.dtos import CaseStatus, CaseStatusChangeView
from settlement_kernel.models.case_status import CaseStatusChange
from settlement_kernel.selectors.base import BaseSelector


class CaseSelector(BaseSelector):

    @staticmethod
    def _view(row: CaseStatusChange) -> CaseStatusChangeView:
        return CaseStatusChangeView(
            id=row.id,
            case_id=row.case_id,
            previous_status=CaseStatus(row.previous_status) if row.previous_status else None,
            new_status=CaseStatus(row.new_status),
            changed_by_id=row.changed_by_id,
            changed_at=row.changed_at,
            notes=row.notes,
        )

    def case_history(self, case_id: UUID) -> tuple[CaseStatusChangeView, ...]:
        """Transitions of one case, oldest first."""
        rows = self.session.execute(
            select(CaseStatusChange)
            .where(CaseStatusChange.case_id == case_id)
            .order_by(CaseStatusChange.seq)
        ).scalars().all()
        return tuple(self._view(r) for r in rows)

    def current_case_status(self, case_id: UUID) -> CaseStatus | None:
        """Last status the engine observed for the case, None if never seen."""
        status = self.session.execute(
            select(CaseStatusChange.new_status)
            .where(CaseStatusChange.case_id == case_id)
            .order_by(CaseStatusChange.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        return CaseStatus(status) if status else None
