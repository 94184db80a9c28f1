"""
castgate/signers.py

Live signer table + per-signer mutual exclusion.

The in-memory table is the working copy during the process lifetime; every
write is mirrored to the `sessions` namespace. A lookup that misses memory
falls back to the Session record, so signers survive a restart (and LRU
eviction) for as long as their Session record does.
"""

import asyncio
from collections import OrderedDict
from typing import Dict, Optional

from .errors import ValidationError
from .logger import logger
from .models import Signer
from .storage import SESSIONS, FlatFileStore


class SignerRepository:
    def __init__(self, store: FlatFileStore, max_size: int = 10000):
        self.store = store
        self.max_size = max_size
        self._signers: "OrderedDict[str, Signer]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._signers)

    def _remember(self, signer: Signer) -> None:
        self._signers[signer.signer_id] = signer
        self._signers.move_to_end(signer.signer_id)
        while len(self._signers) > self.max_size:
            evicted, _ = self._signers.popitem(last=False)
            logger.info("signer.evicted", extra={"signer_id": evicted})

    def add(self, signer: Signer) -> Signer:
        """Insert a new signer; ids are first-write-wins."""
        if self.get(signer.signer_id) is not None:
            raise ValidationError(f"signer {signer.signer_id} already exists")
        self._remember(signer)
        self.store.put(SESSIONS, signer.signer_id, signer.to_record())
        return signer

    def get(self, signer_id: str) -> Optional[Signer]:
        signer = self._signers.get(signer_id)
        if signer is not None:
            self._signers.move_to_end(signer_id)
            return signer

        record = self.store.get(SESSIONS, signer_id)
        if record is None:
            return None
        try:
            signer = Signer.from_record(record)
        except (KeyError, ValueError) as e:
            logger.error("signer.rehydrate_failed", extra={"signer_id": signer_id, "error": str(e)})
            return None
        logger.info("signer.rehydrated", extra={"signer_id": signer_id, "provider": signer.provider.value})
        self._remember(signer)
        return signer

    def save(self, signer: Signer) -> Signer:
        signer.touch()
        self._remember(signer)
        self.store.put(SESSIONS, signer.signer_id, signer.to_record())
        return signer

    def forget(self, signer_id: str) -> bool:
        """Drop a signer from memory and disk."""
        in_memory = self._signers.pop(signer_id, None) is not None
        on_disk = self.store.delete(SESSIONS, signer_id)
        return in_memory or on_disk


class KeyedLocks:
    """One asyncio.Lock per key; idle locks are dropped on release."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def hold(self, key: str) -> "_KeyedLock":
        return _KeyedLock(self, key)


class _KeyedLock:
    def __init__(self, owner: KeyedLocks, key: str):
        self.owner = owner
        self.key = key

    async def __aenter__(self):
        o = self.owner
        lock = o._locks.setdefault(self.key, asyncio.Lock())
        o._waiters[self.key] = o._waiters.get(self.key, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._release_ref()
            raise
        return self

    async def __aexit__(self, *exc):
        self.owner._locks[self.key].release()
        self._release_ref()
        return False

    def _release_ref(self) -> None:
        o = self.owner
        o._waiters[self.key] -= 1
        if o._waiters[self.key] == 0:
            del o._waiters[self.key]
            del o._locks[self.key]
