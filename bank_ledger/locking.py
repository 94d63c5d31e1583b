"""
Account Locking Module

Per-account locks for balance-mutating operations. Locks for a multi-account
operation are always taken in ascending account-id order, so two transfers
in opposite directions cannot deadlock.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Optional

from .errors import ConflictError


class AccountLockManager:
    """Hands out one re-entrant lock per account id"""

    def __init__(self, timeout: float = 10.0):
        """
        Args:
            timeout: Seconds to wait for each lock; negative waits forever
        """
        self.timeout = timeout
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, account_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[account_id] = lock
            return lock

    @contextmanager
    def hold(self, *account_ids: Optional[str]):
        """
        Hold the locks for the given accounts for the duration of the block

        Raises:
            ConflictError: If a lock is not acquired within the timeout
        """
        ordered = sorted({account_id for account_id in account_ids if account_id})
        acquired = []
        try:
            for account_id in ordered:
                lock = self._lock_for(account_id)
                if not lock.acquire(timeout=self.timeout):
                    raise ConflictError(
                        f"Timed out waiting for lock on account {account_id}",
                        {"account_id": account_id}
                    )
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def forget(self, account_id: str) -> None:
        """Drop the lock of a deleted account"""
        with self._registry_lock:
            self._locks.pop(account_id, None)
