"""Process-wide application state: the cache and the services built on it."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from afrodite.access import build_accessors
from afrodite.api_limits import ApiLimits
from afrodite.cache import CacheEntryStore
from afrodite.config import ServerConfig
from afrodite.iterators import IteratorKind, IteratorService, NewsSource, ReceivedLikesSource
from afrodite.lifecycle import BackendDataResetState
from afrodite.sync import SyncCoordinator

_state: AppState | None = None


@dataclass
class AppState:
    session_factory: async_sessionmaker[AsyncSession]
    cache: CacheEntryStore
    reset_state: BackendDataResetState
    sync: SyncCoordinator
    iterators: IteratorService
    api_limits: ApiLimits


def build_state(session_factory: async_sessionmaker[AsyncSession], config: ServerConfig) -> AppState:
    cache = CacheEntryStore()
    reset_state = BackendDataResetState()
    sources = {
        IteratorKind.NEWS: NewsSource(session_factory),
        IteratorKind.RECEIVED_LIKES: ReceivedLikesSource(session_factory),
    }
    return AppState(
        session_factory=session_factory,
        cache=cache,
        reset_state=reset_state,
        sync=SyncCoordinator(cache, build_accessors(session_factory), reset_state),
        iterators=IteratorService(cache, sources, config),
        api_limits=ApiLimits(cache, config),
    )


def init_state(session_factory: async_sessionmaker[AsyncSession]) -> AppState:
    global _state
    from afrodite.config import config

    _state = build_state(session_factory, config)
    return _state


def get_state() -> AppState:
    if _state is None:
        raise RuntimeError("Application state not initialized. Call init_state() first.")
    return _state
