"""
Process-local lock registry for per-account serialization.

Row locks (SELECT ... FOR UPDATE) serialize writers across processes on
PostgreSQL. This registry does the same for threads within one process, which
is what keeps SQLite deployments and the test suite free of lost updates.

Keys map onto a fixed set of lock stripes, so memory stays flat however many
accounts the process touches. Two keys may share a stripe.

Locks are re-entrant so a cascade step holding a customer lock can call the
distribution engine for the same customer.
"""
import threading
import zlib
from contextlib import contextmanager
from typing import Hashable, Iterable, List

from ..utils.exceptions import ConcurrencyConflict

DEFAULT_STRIPES = 256


class AccountLockRegistry:
    """Striped re-entrant locks, always acquired in ascending stripe order."""

    def __init__(self, stripes: int = DEFAULT_STRIPES):
        if stripes < 1:
            raise ValueError('stripes must be at least 1')
        self._stripes = [threading.RLock() for _ in range(stripes)]

    @property
    def size(self) -> int:
        return len(self._stripes)

    def stripe_for(self, key: Hashable) -> int:
        # crc32 rather than hash(): str hashes are salted per process
        return zlib.crc32(str(key).encode('utf-8')) % len(self._stripes)

    def _ordered_stripes(self, keys: Iterable[Hashable]) -> List[int]:
        return sorted({self.stripe_for(k) for k in keys if k is not None})

    @contextmanager
    def acquire(self, keys: Iterable[Hashable], timeout: float):
        """
        Hold the stripe of every key in `keys` for the duration of the block.

        Raises:
            ConcurrencyConflict: a lock could not be taken within `timeout`
                seconds. Locks already taken are released first.
        """
        held = []
        try:
            for index in self._ordered_stripes(keys):
                lock = self._stripes[index]
                if not lock.acquire(timeout=timeout):
                    raise ConcurrencyConflict("Timed out waiting for an account lock")
                held.append(lock)
            yield
        finally:
            for lock in reversed(held):
                lock.release()


account_locks = AccountLockRegistry()


def account_key(account_id: int) -> str:
    return f'account:{account_id}'


def sequence_key(name: str) -> str:
    return f'sequence:{name}'
