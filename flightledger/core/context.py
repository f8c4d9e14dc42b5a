"""
FlightLedger - Runtime context

Everything that would otherwise be process-wide mutable state (failure
counters, the cached signer nonce, per-flight locks) lives on a SyncContext
that is built once and handed to the ledger client, sync service, sweeper and
scheduler at construction time.
"""

import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from flightledger.core.config import Settings
from flightledger.models.flight import FlightKey


class KeyedLocks:
    """
    One asyncio.Lock per flight key; serializes poll and sweep for a key.

    A lock lives only while some task holds or waits on it, so the map does
    not grow with every departure date ever tracked.
    """

    def __init__(self) -> None:
        self._locks: dict[FlightKey, asyncio.Lock] = {}
        self._users: Counter = Counter()

    @asynccontextmanager
    async def hold(self, key: FlightKey) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class SignerState:
    """
    The signing credential is a single shared resource. Submissions hold
    `lock` for the whole estimate-sign-submit sequence so nonces are issued
    strictly in order.
    """
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    nonce: Optional[int] = None

    def invalidate_nonce(self) -> None:
        self.nonce = None


@dataclass
class SyncContext:
    settings: Settings
    key_locks: KeyedLocks = field(default_factory=KeyedLocks)
    signer: SignerState = field(default_factory=SignerState)
    counters: Counter = field(default_factory=Counter)

    def incr(self, name: str, amount: int = 1) -> None:
        self.counters[name] += amount

    def snapshot_counters(self) -> dict[str, int]:
        return dict(self.counters)
