"""Sync versions and versioned resource values.

A sync version is a small counter stored next to a resource. Clients keep
the last version they saw and send it back; the server only checks whether
the two values are equal, never which one is newer.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import Generic, TypeVar

T = TypeVar("T")


class SyncCheckResult(enum.Enum):
    SYNC = "sync"
    DO_NOTHING = "do_nothing"


@dataclass(frozen=True)
class SyncVersion:
    """Sync version stored on the server. The value has range of [0, 255]."""

    value: int = 0

    MAX_VALUE = 255

    def __post_init__(self) -> None:
        clamped = min(max(int(self.value), 0), self.MAX_VALUE)
        object.__setattr__(self, "value", clamped)

    def incremented(self) -> SyncVersion:
        # Wraps to zero after MAX_VALUE.
        return SyncVersion((self.value + 1) % (self.MAX_VALUE + 1))

    def check_is_sync_required(self, client_version: int) -> SyncCheckResult:
        if client_version == self.value:
            return SyncCheckResult.DO_NOTHING
        return SyncCheckResult.SYNC

    def __int__(self) -> int:
        return self.value


@dataclass(frozen=True)
class VersionedResource(Generic[T]):
    payload: T
    version: SyncVersion = SyncVersion()

    def with_incremented_version(self, payload: T) -> VersionedResource[T]:
        return replace(self, payload=payload, version=self.version.incremented())

    def check_is_sync_required(self, client_version: int) -> SyncCheckResult:
        return self.version.check_is_sync_required(client_version)
