"""
Module: settlement_kernel.selectors.base
Responsibility: Base class for read-only selectors.  Selectors are the query
    side of the kernel: they return frozen views from domain/dtos.py, never
    ORM rows.
Architecture position: Kernel > Selectors.  May import from models/ and the
    pure domain/ package.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: selectors never add, delete, flush or commit.
    - The caller owns the session and its transaction scope.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Contract:
        Selectors accept a Session from the caller, perform read-only queries
        and return DTOs.
    """

    def __init__(self, session: Session):
        self.session = session
