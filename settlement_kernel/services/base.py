"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session-handling contract.  Concrete services
    receive a SQLAlchemy ``Session`` and use ``session.flush()`` -- never
    ``session.commit()``.

Invariants enforced:
    Services flush within the caller's transaction and never commit or
    roll back themselves.  The caller (SettlementEngine, CaseLifecycleService
    or a test) owns commit/rollback, so a payment and its aggregate
    recompute land together or not at all.
"""

from abc import ABC

from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read models -- those belong in selectors/.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
