"""In-memory per-account cache of synchronized state.

The store owns one ``CacheEntry`` per account, each guarded by its own
``asyncio.Lock``.  Callers never hold a reference to an entry outside of a
store call: ``read``/``write`` take synchronous callables that run under the
lock, and ``get_or_default`` yields the entry only for the duration of an
``async with`` block.  Nothing awaits while an account lock is held, so a
slow database call can never stall other requests for the same account.

Nothing here is persisted.  After a restart (or ``clear()``) every account is
cold and readers fall back to the database.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, TypeVar

from afrodite.api_limits import AllApiLimits
from afrodite.errors import CacheInvariantError, NotCached
from afrodite.iterators import IteratorCursor, IteratorKind
from afrodite.models.resources import PAYLOAD_TYPES, ResourceKind
from afrodite.sync_version import VersionedResource

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry:
    resources: dict[ResourceKind, VersionedResource[Any]] = field(default_factory=dict)
    # Transient state, reset on restart or invalidation.
    api_limits: AllApiLimits = field(default_factory=AllApiLimits)
    iterators: dict[IteratorKind, IteratorCursor] = field(default_factory=dict)

    def resource(self, kind: ResourceKind) -> VersionedResource[Any]:
        try:
            return self.resources[kind]
        except KeyError:
            raise NotCached(f"Resource {kind} is not in cache") from None

    def set_resource(self, kind: ResourceKind, value: VersionedResource[Any]) -> None:
        expected = PAYLOAD_TYPES[kind]
        if not isinstance(value.payload, expected):
            raise CacheInvariantError(
                f"Cache for {kind} expects {expected.__name__}, got {type(value.payload).__name__}"
            )
        self.resources[kind] = value


class _AccountSlot:
    __slots__ = ("lock", "entry")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.entry = CacheEntry()


class CacheEntryStore:
    def __init__(self) -> None:
        self._slots: dict[int, _AccountSlot] = {}
        # Session ids from before a restart must not match new ones.
        self._next_session_id = secrets.randbits(32)
        self._counter = 0
        self._epochs: dict[int, int] = {}
        self._all_epoch = 0

    def __contains__(self, account_id: int) -> bool:
        return account_id in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def account_ids(self) -> list[int]:
        return list(self._slots)

    @asynccontextmanager
    async def _locked(self, account_id: int, *, create: bool) -> AsyncIterator[_AccountSlot]:
        while True:
            slot = self._slots.get(account_id)
            if slot is None:
                if not create:
                    raise NotCached(f"Account {account_id} is not in cache")
                slot = self._slots.setdefault(account_id, _AccountSlot())
            async with slot.lock:
                # The slot may have been invalidated while waiting for the lock.
                if self._slots.get(account_id) is slot:
                    yield slot
                    return
            if not create:
                raise NotCached(f"Account {account_id} is not in cache")

    @asynccontextmanager
    async def get_or_default(self, account_id: int) -> AsyncIterator[CacheEntry]:
        """Yield the account's entry, creating an empty one on first access.

        The entry is only valid inside the ``async with`` block.
        """
        async with self._locked(account_id, create=True) as slot:
            yield slot.entry

    async def read(self, account_id: int, selector: Callable[[CacheEntry], T]) -> T:
        async with self._locked(account_id, create=False) as slot:
            return selector(slot.entry)

    async def write(self, account_id: int, mutator: Callable[[CacheEntry], T]) -> T:
        async with self._locked(account_id, create=False) as slot:
            return mutator(slot.entry)

    async def write_all(self, mutator: Callable[[CacheEntry], Any]) -> None:
        """Apply ``mutator`` to every cached account, one lock at a time."""
        for account_id in self.account_ids():
            try:
                await self.write(account_id, mutator)
            except NotCached:
                continue

    # --- Write tokens ---
    #
    # Every database write to an account takes a token before it starts.  A
    # value loaded or written under a token only enters the cache if no
    # other write (or invalidation) for that account started since.  This
    # keeps a slow read or an earlier write from replacing a newer value.

    def _bump(self) -> int:
        self._counter += 1
        return self._counter

    def epoch(self, account_id: int) -> int:
        """Token of the latest write, invalidation or clear touching the account."""
        return max(self._epochs.get(account_id, 0), self._all_epoch)

    def begin_write(self, account_id: int) -> int:
        token = self._epochs[account_id] = self._bump()
        return token

    def begin_write_all(self) -> int:
        token = self._all_epoch = self._bump()
        return token

    async def fill(
        self, account_id: int, kind: ResourceKind, value: VersionedResource[Any], token: int
    ) -> VersionedResource[Any]:
        """Cache a value read from the database under ``token``.

        Returns the cached value if one is already present.
        """
        async with self.get_or_default(account_id) as entry:
            if kind in entry.resources:
                return entry.resources[kind]
            if self.epoch(account_id) == token:
                entry.set_resource(kind, value)
            return value

    async def store_written(
        self,
        account_id: int,
        kind: ResourceKind,
        value: VersionedResource[Any],
        token: int,
        *,
        create: bool = True,
    ) -> None:
        """Cache a committed value, or drop the resource if a newer write started."""
        try:
            async with self._locked(account_id, create=create) as slot:
                if self.epoch(account_id) == token:
                    slot.entry.set_resource(kind, value)
                else:
                    slot.entry.resources.pop(kind, None)
        except NotCached:
            # Account not cached: nothing to update.
            pass

    def drop(self, account_id: int, kind: ResourceKind) -> None:
        """Forget one cached resource after a write of unknown outcome."""
        self._epochs[account_id] = self._bump()
        slot = self._slots.get(account_id)
        if slot is not None:
            # Safe without the lock: critical sections never await.
            slot.entry.resources.pop(kind, None)

    def drop_all(self, kind: ResourceKind) -> None:
        self._all_epoch = self._bump()
        for slot in self._slots.values():
            slot.entry.resources.pop(kind, None)

    def invalidate(self, account_id: int) -> None:
        self._epochs[account_id] = self._bump()
        if self._slots.pop(account_id, None) is not None:
            log.info("Cache: invalidated account %d", account_id)

    def clear(self) -> None:
        self._slots.clear()
        self._epochs.clear()
        self._all_epoch = self._bump()

    def next_session_id(self) -> int:
        session_id = self._next_session_id
        self._next_session_id += 1
        return session_id
