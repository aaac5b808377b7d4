"""Transactional read/write access to synchronized account resources.

There is one generic accessor for every resource kind instead of one class
per table.  All kinds share the ``account_resources`` table: the payload is
stored as JSON and the sync version is computed here, inside the write
transaction, so numbering survives restarts.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Generic, Protocol, TypeVar

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from afrodite.db.engine import lock_for_write
from afrodite.db.models import AccountResource
from afrodite.errors import DatabaseError
from afrodite.models.resources import PAYLOAD_TYPES, ResourceKind
from afrodite.sync_version import SyncVersion, VersionedResource

log = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseModel)

# Extra statements run inside a write transaction, before the resource row
# is updated.  Anything they raise rolls the whole transaction back.
TransactionHook = Callable[[AsyncSession], Awaitable[None]]


@contextmanager
def database_errors(action: str) -> Iterator[None]:
    """Re-raise storage failures as ``DatabaseError``."""
    try:
        yield
    except SQLAlchemyError as exc:
        log.warning("%s failed: %s", action, exc)
        raise DatabaseError(f"{action} failed") from exc


class ResourceAccessor(Protocol[P]):
    async def read(self, account_id: int) -> VersionedResource[P]: ...

    async def write(self, account_id: int, payload: P) -> VersionedResource[P]: ...

    async def update(
        self,
        account_id: int,
        fn: Callable[[P], P],
        before_commit: TransactionHook | None = None,
    ) -> VersionedResource[P]:
        """Read-modify-write in one transaction.

        ``fn`` may return its argument unchanged to skip the write; the
        stored version is then left as is.  Concurrent updates of the same
        row are serialized.
        """
        ...

    async def update_all(
        self,
        fn: Callable[[P], P],
        before_commit: TransactionHook | None = None,
    ) -> dict[int, VersionedResource[P]]: ...



AccessorRegistry = Mapping[ResourceKind, ResourceAccessor]


class SqlResourceAccessor(Generic[P]):
    def __init__(
        self,
        kind: ResourceKind,
        payload_type: type[P],
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.kind = kind
        self.payload_type = payload_type
        self.session_factory = session_factory

    def _decode(self, row: AccountResource | None) -> VersionedResource[P]:
        if row is None:
            return VersionedResource(self.payload_type(), SyncVersion(0))
        return VersionedResource(
            self.payload_type.model_validate_json(row.payload),
            SyncVersion(row.sync_version),
        )

    async def _select(self, db: AsyncSession, account_id: int, *, for_update: bool = False) -> AccountResource | None:
        stmt = select(AccountResource).where(
            AccountResource.account_id == account_id,
            AccountResource.kind == self.kind.value,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def read(self, account_id: int) -> VersionedResource[P]:
        with database_errors(f"Reading {self.kind} for account {account_id}"):
            async with self.session_factory() as db:
                return self._decode(await self._select(db, account_id))

    async def write(self, account_id: int, payload: P) -> VersionedResource[P]:
        return await self.update(account_id, lambda _current: payload)

    async def update(
        self,
        account_id: int,
        fn: Callable[[P], P],
        before_commit: TransactionHook | None = None,
    ) -> VersionedResource[P]:
        with database_errors(f"Writing {self.kind} for account {account_id}"):
            async with self.session_factory() as db, db.begin():
                await lock_for_write(db)
                if before_commit is not None:
                    await before_commit(db)
                row = await self._select(db, account_id, for_update=True)
                current = self._decode(row)
                new_payload = fn(current.payload)
                if new_payload is current.payload:
                    return current

                new = current.with_incremented_version(new_payload)
                if row is None:
                    row = AccountResource(account_id=account_id, kind=self.kind.value)
                    db.add(row)
                self._store(row, new)
            return new

    async def update_all(
        self,
        fn: Callable[[P], P],
        before_commit: TransactionHook | None = None,
    ) -> dict[int, VersionedResource[P]]:
        """Apply ``fn`` to every account's stored value in one transaction.

        Returns the new values of the accounts whose payload changed.
        """
        with database_errors(f"Writing {self.kind} for all accounts"):
            async with self.session_factory() as db, db.begin():
                await lock_for_write(db)
                if before_commit is not None:
                    await before_commit(db)
                stmt = (
                    select(AccountResource)
                    .where(AccountResource.kind == self.kind.value)
                    .with_for_update()
                )
                updated = {}
                for row in (await db.execute(stmt)).scalars():
                    current = self._decode(row)
                    new_payload = fn(current.payload)
                    if new_payload is current.payload:
                        continue
                    updated[row.account_id] = current.with_incremented_version(new_payload)
                    self._store(row, updated[row.account_id])
            return updated

    @staticmethod
    def _store(row: AccountResource, value: VersionedResource[P]) -> None:
        row.payload = value.payload.model_dump_json()
        row.sync_version = value.version.value


def build_accessors(session_factory: async_sessionmaker[AsyncSession]) -> dict[ResourceKind, ResourceAccessor]:
    return {
        kind: SqlResourceAccessor(kind, payload_type, session_factory)
        for kind, payload_type in PAYLOAD_TYPES.items()
    }


def insert_default_resources(db: AsyncSession, account_id: int) -> None:
    """Create version-0 rows for a new account.

    The caller is responsible for calling ``await db.commit()``.
    """
    for kind, payload_type in PAYLOAD_TYPES.items():
        db.add(AccountResource(
            account_id=account_id,
            kind=kind.value,
            payload=payload_type().model_dump_json(),
            sync_version=0,
        ))
