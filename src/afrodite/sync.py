"""Cache-aside reads and write-through writes of versioned account resources.

Reads prefer the cache and fall back to one database read that fills it.
Writes go to the database first; only a committed result is copied into
the cache, and only if no newer write to the account started meanwhile.
A write that fails or is cancelled drops the cached value instead, because
its transaction may still have committed.

PUT is last-writer-wins: there is no expected-version check.  Read-modify-
write updates (counters) are serialized by the database, so they never lose
an increment.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from pydantic import BaseModel

from afrodite.access import AccessorRegistry, TransactionHook
from afrodite.cache import CacheEntryStore
from afrodite.errors import DataResetInProgress, NotCached, UnknownResource
from afrodite.lifecycle import BackendDataResetState
from afrodite.models.resources import ResourceKind
from afrodite.sync_version import SyncCheckResult, VersionedResource

log = logging.getLogger(__name__)


class SyncCoordinator:
    def __init__(
        self,
        cache: CacheEntryStore,
        accessors: AccessorRegistry,
        reset_state: BackendDataResetState,
    ) -> None:
        self.cache = cache
        self.accessors = accessors
        self.reset_state = reset_state

    def _accessor(self, kind: ResourceKind):
        try:
            return self.accessors[kind]
        except KeyError:
            raise UnknownResource(f"No accessor for {kind}") from None

    async def read(self, account_id: int, kind: ResourceKind) -> VersionedResource[Any]:
        accessor = self._accessor(kind)
        try:
            return await self.cache.read(account_id, lambda e: e.resource(kind))
        except NotCached:
            log.debug("Cache miss: %s for account %d", kind, account_id)

        token = self.cache.epoch(account_id)
        value = await accessor.read(account_id)
        return await self.cache.fill(account_id, kind, value, token)

    def _check_writable(self) -> None:
        if self.reset_state.is_ongoing():
            raise DataResetInProgress()

    async def _commit(
        self, account_id: int, kind: ResourceKind, pending: Awaitable[VersionedResource[Any]]
    ) -> VersionedResource[Any]:
        token = self.cache.begin_write(account_id)
        try:
            value = await pending
            await self.cache.store_written(account_id, kind, value, token)
        except BaseException:
            # The transaction may have committed before the error surfaced.
            self.cache.drop(account_id, kind)
            raise
        return value

    async def write(self, account_id: int, kind: ResourceKind, payload: BaseModel) -> VersionedResource[Any]:
        accessor = self._accessor(kind)
        self._check_writable()
        return await self._commit(account_id, kind, accessor.write(account_id, payload))

    async def update(
        self,
        account_id: int,
        kind: ResourceKind,
        fn: Callable[[Any], Any],
        before_commit: TransactionHook | None = None,
    ) -> VersionedResource[Any]:
        """Like ``write`` but computes the payload from the stored one.

        ``before_commit`` runs in the same transaction, so rows it adds are
        committed together with the new value or not at all.
        """
        accessor = self._accessor(kind)
        self._check_writable()
        return await self._commit(account_id, kind, accessor.update(account_id, fn, before_commit))

    async def update_all(
        self,
        kind: ResourceKind,
        fn: Callable[[Any], Any],
        before_commit: TransactionHook | None = None,
    ) -> dict[int, VersionedResource[Any]]:
        """Apply ``fn`` to the resource of every account in one transaction."""
        accessor = self._accessor(kind)
        self._check_writable()
        token = self.cache.begin_write_all()
        try:
            updated = await accessor.update_all(fn, before_commit)
            for account_id, value in updated.items():
                await self.cache.store_written(account_id, kind, value, token, create=False)
        except BaseException:
            self.cache.drop_all(kind)
            raise
        log.debug("Updated %s for %d accounts", kind, len(updated))
        return updated

    async def sync_check(
        self, account_id: int, client_versions: Iterable[tuple[ResourceKind, int]]
    ) -> list[tuple[ResourceKind, VersionedResource[Any]]]:
        """Return the current value of every resource the client has a stale copy of."""
        updates = []
        for kind, client_version in client_versions:
            current = await self.read(account_id, kind)
            if current.check_is_sync_required(client_version) is SyncCheckResult.SYNC:
                updates.append((kind, current))
        return updates
