"""News publication.

Publishing inserts the news row and bumps every account's ``unread_news``
count in one transaction, so a failure leaves neither behind.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from afrodite.db.models import News
from afrodite.errors import DatabaseError
from afrodite.models.resources import ResourceKind, UnreadNewsCount

if TYPE_CHECKING:
    from afrodite.sync import SyncCoordinator

log = logging.getLogger(__name__)

PUBLISH_ATTEMPTS = 3


async def publish_news(sync: SyncCoordinator, creator_id: int, title: str, body: str) -> News:
    """Publish under the next free publication id and return the stored row."""
    attempt = 1
    while True:
        now = datetime.now(timezone.utc)
        news = News(creator_id=creator_id, title=title, body=body, created_at=now, published_at=now)

        async def insert(db: AsyncSession) -> None:
            latest = (await db.execute(select(func.max(News.publication_id)))).scalar_one_or_none()
            news.publication_id = (latest or 0) + 1
            db.add(news)
            await db.flush()

        try:
            await sync.update_all(
                ResourceKind.UNREAD_NEWS,
                lambda current: UnreadNewsCount(count=current.count + 1),
                before_commit=insert,
            )
        except DatabaseError as exc:
            # A concurrent publisher took the same publication id. SQLite
            # serializes writers, so this only happens on server databases.
            if not isinstance(exc.__cause__, IntegrityError) or attempt == PUBLISH_ATTEMPTS:
                raise
            log.info("Publication id %s taken, retrying", news.publication_id)
            attempt += 1
            continue
        log.info("Published news %d as publication %d", news.id, news.publication_id)
        return news
