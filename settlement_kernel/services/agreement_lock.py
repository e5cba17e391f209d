"""
AgreementLockRegistry -- per-key mutual exclusion inside one process.

Responsibility:
    Serializes read-recompute-write cycles on one agreement (key
    ``agreement:<id>``) and standard-agreement creation on one case (key
    ``case:<id>``).  Different keys never block each other.

Architecture position:
    Kernel > Services.  Works together with the row lock AgreementService
    takes (``SELECT ... FOR UPDATE``); the row lock covers other processes,
    this registry covers threads sharing a database that ignores FOR UPDATE.

Failure modes:
    - AgreementLockedError when the lock is not acquired within the timeout.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from settlement_kernel.exceptions import AgreementLockedError
from settlement_kernel.logging_config import get_logger

logger = get_logger("services.agreement_lock")


def agreement_key(agreement_id: UUID) -> str:
    return f"agreement:{agreement_id}"


def case_key(case_id: UUID) -> str:
    return f"case:{case_id}"


class AgreementLockRegistry:
    """
    Guarantees:
        - At most one holder per key at a time.
        - Re-entrant for the thread already holding the key.
        - Entries are dropped once no thread holds or waits for them.
    """

    def __init__(self, timeout_seconds: float = 10.0):
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._users: dict[str, int] = {}

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, timeout_seconds: float | None = None) -> Iterator[None]:
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=timeout):
                logger.warning(
                    "agreement_lock_timeout",
                    extra={"lock_key": key, "timeout_seconds": timeout},
                )
                raise AgreementLockedError(key, timeout)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def held_keys(self) -> frozenset[str]:
        """Keys currently held or awaited. For diagnostics and tests."""
        with self._guard:
            return frozenset(self._locks)
