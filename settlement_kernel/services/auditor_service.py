"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Records every mutating ledger operation with actor identity and payload
    as a hash-chained, append-only AuditEvent.  Provides chain validation
    and per-entity traces.

Architecture position:
    Kernel > Services -- imperative shell, called by AgreementService,
    PaymentService and CaseLifecycleService.

Invariants enforced:
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
    - Sequence numbers come from SequenceService.
    - Audit failure never rolls back the business operation: each event is
      written inside its own savepoint and errors are logged, not raised.

Failure modes:
    - AuditChainBrokenError from validate_chain() on tampering.
    - audit_record_failed log line when an event could not be written.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import (
    AuditChainBrokenError,
    AuditRecordError,
    SettlementKernelError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.audit_event import AuditAction, AuditEvent
from settlement_kernel.services.sequence_service import SequenceService
from settlement_kernel.utils.hashing import (
    hash_audit_event,
    hash_payload,
    to_json_payload,
)

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: str
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """Complete audit trace for an entity, in chronological order."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(e.action for e in self.entries)


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        last_event = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last_event.hash if last_event else None

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Append one hash-linked event and flush it."""
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = to_json_payload(payload or {})
        computed_payload_hash = hash_payload(payload_data)
        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return audit_event

    def record(
        self,
        action: AuditAction,
        actor_id: UUID,
        entity_type: str,
        entity_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent | None:
        """
        Record an audit event without risking the caller's transaction.

        Returns the event, or None when it could not be written.
        """
        savepoint = self._session.begin_nested()
        try:
            event = self._create_audit_event(
                entity_type, entity_id, action, actor_id, payload
            )
            savepoint.commit()
            return event
        except (SQLAlchemyError, SettlementKernelError, TypeError, ValueError) as exc:
            savepoint.rollback()
            error = AuditRecordError(action=action.value, detail=str(exc))
            logger.warning(
                "audit_record_failed",
                extra={
                    "action": action.value,
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                    "error_code": error.code,
                    "detail": error.detail,
                },
            )
            return None

    # Domain-specific recording methods

    def record_agreement_created(
        self, agreement_id: UUID, actor_id: UUID, payload: dict[str, Any]
    ) -> AuditEvent | None:
        return self.record(
            AuditAction.AGREEMENT_CREATED, actor_id, "FinancialAgreement", agreement_id, payload
        )

    def record_agreement_updated(
        self, agreement_id: UUID, actor_id: UUID, payload: dict[str, Any]
    ) -> AuditEvent | None:
        return self.record(
            AuditAction.AGREEMENT_UPDATED, actor_id, "FinancialAgreement", agreement_id, payload
        )

    def record_agreement_deleted(
        self, agreement_id: UUID, actor_id: UUID, payload: dict[str, Any]
    ) -> AuditEvent | None:
        return self.record(
            AuditAction.AGREEMENT_DELETED, actor_id, "FinancialAgreement", agreement_id, payload
        )

    def record_agreement_cancelled(
        self, agreement_id: UUID, actor_id: UUID, reason: str | None
    ) -> AuditEvent | None:
        return self.record(
            AuditAction.AGREEMENT_CANCELLED,
            actor_id,
            "FinancialAgreement",
            agreement_id,
            {"reason": reason},
        )

    def record_agreement_renegotiated(
        self,
        agreement_id: UUID,
        replacement_id: UUID,
        actor_id: UUID,
        payload: dict[str, Any],
    ) -> AuditEvent | None:
        return self.record(
            AuditAction.AGREEMENT_RENEGOTIATED,
            actor_id,
            "FinancialAgreement",
            agreement_id,
            {"replacement_id": str(replacement_id), **payload},
        )

    def record_payment(
        self, installment_id: UUID, actor_id: UUID, payload: dict[str, Any]
    ) -> AuditEvent | None:
        return self.record(
            AuditAction.PAYMENT_RECORDED, actor_id, "Installment", installment_id, payload
        )

    def record_case_status_changed(
        self,
        case_id: UUID,
        previous_status: str | None,
        new_status: str,
        actor_id: UUID,
    ) -> AuditEvent | None:
        return self.record(
            AuditAction.CASE_STATUS_CHANGED,
            actor_id,
            "Case",
            case_id,
            {"previous_status": previous_status, "new_status": new_status},
        )

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            raise AuditChainBrokenError(
                str(events[0].id), "GENESIS", events[0].prev_hash
            )

        for i, event in enumerate(events):
            expected_payload_hash = hash_payload(event.payload or {})
            if event.payload_hash != expected_payload_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"audit_event_id": str(event.id), "field": "payload"},
                )
                raise AuditChainBrokenError(
                    str(event.id), expected_payload_hash, event.payload_hash
                )

            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action,
                payload_hash=event.payload_hash,
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"audit_event_id": str(event.id), "field": "hash"},
                )
                raise AuditChainBrokenError(str(event.id), expected_hash, event.hash)

            if i > 0:
                expected_prev = events[i - 1].hash
                if event.prev_hash != expected_prev:
                    logger.critical(
                        "audit_chain_broken",
                        extra={"audit_event_id": str(event.id), "field": "prev_hash"},
                    )
                    raise AuditChainBrokenError(
                        str(event.id), expected_prev, event.prev_hash or "None"
                    )

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        """All audit events for an entity, oldest first."""
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=event.seq,
                    action=event.action,
                    occurred_at=event.occurred_at,
                    actor_id=event.actor_id,
                    payload=event.payload or {},
                    hash=event.hash,
                )
                for event in events
            ),
        )
