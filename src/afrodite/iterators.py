"""Resumable forward-only paging over append-only per-account logs.

A client calls ``reset`` to get a session id, then pages backwards from the
newest item that existed at reset time.  Cursor state lives only in the
cache: after a restart or invalidation every old session id is rejected
and the client must reset again.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from afrodite.access import database_errors
from afrodite.db.models import News, ReceivedLike
from afrodite.errors import InvalidSession, NotCached
from afrodite.models.iterators import NewsItemSummary, ReceivedLikeItem

if TYPE_CHECKING:
    from afrodite.cache import CacheEntry, CacheEntryStore
    from afrodite.config import ServerConfig

log = logging.getLogger(__name__)


class IteratorKind(StrEnum):
    NEWS = "news"
    RECEIVED_LIKES = "received_likes"


@dataclass(frozen=True)
class IteratorCursor:
    session_id: int
    # Newest key when the session was reset; None if the log was empty.
    id_at_reset: int | None
    # Smallest key delivered so far in this session.
    last_seen_key: int | None = None


class OrderedSource(Protocol):
    async def head(self, account_id: int) -> int | None: ...

    async def page(
        self, account_id: int, id_at_reset: int, before: int | None, limit: int
    ) -> list[tuple[int, Any]]:
        """Items with ``key <= id_at_reset`` and ``key < before``, newest first."""
        ...


def _unix_ms(value: datetime) -> int:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


class NewsSource:
    """Published news, shared by every account, keyed by publication id."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def head(self, account_id: int) -> int | None:
        with database_errors("Reading news head"):
            async with self.session_factory() as db:
                result = await db.execute(select(func.max(News.publication_id)))
                return result.scalar_one_or_none()

    async def page(
        self, account_id: int, id_at_reset: int, before: int | None, limit: int
    ) -> list[tuple[int, NewsItemSummary]]:
        stmt = (
            select(News)
            .where(News.publication_id.is_not(None), News.publication_id <= id_at_reset)
            .order_by(News.publication_id.desc())
            .limit(limit)
        )
        if before is not None:
            stmt = stmt.where(News.publication_id < before)
        with database_errors("Reading news page"):
            async with self.session_factory() as db:
                rows = (await db.execute(stmt)).scalars().all()
        return [
            (row.publication_id, NewsItemSummary(
                publication_id=row.publication_id,
                title=row.title,
                time=_unix_ms(row.published_at),
            ))
            for row in rows
        ]


class ReceivedLikesSource:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def head(self, account_id: int) -> int | None:
        with database_errors(f"Reading received likes head for account {account_id}"):
            async with self.session_factory() as db:
                result = await db.execute(
                    select(func.max(ReceivedLike.id)).where(ReceivedLike.receiver_id == account_id)
                )
                return result.scalar_one_or_none()

    async def page(
        self, account_id: int, id_at_reset: int, before: int | None, limit: int
    ) -> list[tuple[int, ReceivedLikeItem]]:
        stmt = (
            select(ReceivedLike)
            .where(ReceivedLike.receiver_id == account_id, ReceivedLike.id <= id_at_reset)
            .order_by(ReceivedLike.id.desc())
            .limit(limit)
        )
        if before is not None:
            stmt = stmt.where(ReceivedLike.id < before)
        with database_errors(f"Reading received likes page for account {account_id}"):
            async with self.session_factory() as db:
                rows = (await db.execute(stmt)).scalars().all()
        return [
            (row.id, ReceivedLikeItem(
                like_id=row.id,
                account_id=row.sender_id,
                time=_unix_ms(row.created_at),
            ))
            for row in rows
        ]


class IteratorService:
    def __init__(
        self,
        cache: CacheEntryStore,
        sources: Mapping[IteratorKind, OrderedSource],
        config: ServerConfig,
    ) -> None:
        self.cache = cache
        self.sources = sources
        self.config = config

    async def reset(self, account_id: int, kind: IteratorKind) -> int:
        """Start a new session positioned at the current newest item."""
        head = await self.sources[kind].head(account_id)
        session_id = self.cache.next_session_id()
        async with self.cache.get_or_default(account_id) as entry:
            entry.iterators[kind] = IteratorCursor(session_id=session_id, id_at_reset=head)
        log.debug("Iterator %s reset for account %d (session %d)", kind, account_id, session_id)
        return session_id

    def _page_limit(self, page_size: int | None) -> int:
        limits = self.config.limits
        if page_size is None:
            page_size = limits.default_page_size
        return max(1, min(page_size, limits.page_limit_iterator))

    async def _cursor(self, account_id: int, kind: IteratorKind, session_id: int) -> IteratorCursor:
        try:
            cursor = await self.cache.read(account_id, lambda e: e.iterators.get(kind))
        except NotCached:
            raise InvalidSession() from None
        if cursor is None or cursor.session_id != session_id:
            raise InvalidSession()
        return cursor

    async def next_page(
        self, account_id: int, kind: IteratorKind, session_id: int, page_size: int | None = None
    ) -> list[Any]:
        limit = self._page_limit(page_size)
        source = self.sources[kind]

        while True:
            cursor = await self._cursor(account_id, kind, session_id)
            if cursor.id_at_reset is None:
                return []

            rows = await source.page(account_id, cursor.id_at_reset, cursor.last_seen_key, limit)
            if not rows:
                return []

            advanced = replace(cursor, last_seen_key=rows[-1][0])

            def _advance(entry: CacheEntry) -> bool:
                if entry.iterators.get(kind) != cursor:
                    return False
                entry.iterators[kind] = advanced
                return True

            try:
                if await self.cache.write(account_id, _advance):
                    return [item for _, item in rows]
            except NotCached:
                raise InvalidSession() from None
            # Another request moved the cursor while the page was loading.
