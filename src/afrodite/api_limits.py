"""Per-account daily API limits kept in the cache.

Counters live in each account's ``CacheEntry`` and are lost on restart or
cache invalidation.  The app resets them on a timer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from afrodite.errors import ApiLimitReached

if TYPE_CHECKING:
    from afrodite.cache import CacheEntryStore
    from afrodite.config import ServerConfig

log = logging.getLogger(__name__)


class ApiLimitKind(StrEnum):
    NEWS_ITERATOR_RESET = "news_iterator_reset"
    NEWS_ITERATOR_NEXT_PAGE = "news_iterator_next_page"
    RECEIVED_LIKES_ITERATOR_RESET = "received_likes_iterator_reset"
    RECEIVED_LIKES_ITERATOR_NEXT_PAGE = "received_likes_iterator_next_page"


@dataclass
class ApiLimitState:
    MAX_VALUE = 0xFFFF

    counter: int = 0

    def increment_and_check_is_limit_reached(self, threshold: int) -> bool:
        self.counter = min(self.counter + 1, self.MAX_VALUE)
        return self.counter >= threshold

    def reset(self) -> None:
        self.counter = 0


@dataclass
class AllApiLimits:
    states: dict[ApiLimitKind, ApiLimitState] = field(
        default_factory=lambda: {kind: ApiLimitState() for kind in ApiLimitKind}
    )

    def __getitem__(self, kind: ApiLimitKind) -> ApiLimitState:
        return self.states[kind]

    def reset(self) -> None:
        for state in self.states.values():
            state.reset()


def _threshold(config: ServerConfig, kind: ApiLimitKind) -> int:
    return getattr(config.limits, f"{kind.value}_daily_max_count")


class ApiLimits:
    def __init__(self, cache: CacheEntryStore, config: ServerConfig) -> None:
        self.cache = cache
        self.config = config

    async def check(self, account_id: int, kind: ApiLimitKind) -> None:
        """Count one call of ``kind`` and raise ``ApiLimitReached`` at the limit."""
        threshold = _threshold(self.config, kind)
        async with self.cache.get_or_default(account_id) as entry:
            reached = entry.api_limits[kind].increment_and_check_is_limit_reached(threshold)

        if reached and not self.config.general.debug_disable_api_limits:
            log.info("API limit %s reached for account %d", kind, account_id)
            raise ApiLimitReached()

    async def reset(self, account_id: int) -> None:
        async with self.cache.get_or_default(account_id) as entry:
            entry.api_limits.reset()

    async def reset_all(self) -> None:
        await self.cache.write_all(lambda entry: entry.api_limits.reset())
