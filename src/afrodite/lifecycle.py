"""Process-wide lifecycle flags."""

from __future__ import annotations

import threading


class BackendDataResetState:
    """Set while an admin-triggered data reset deletes all account data.

    One writer (the reset endpoint) flips it; any number of readers check it
    before writing.  Owned by ``AppState`` and passed to whoever needs it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ongoing = False

    def is_ongoing(self) -> bool:
        return self._ongoing

    def try_begin(self) -> bool:
        """Set the flag. Returns True if a reset was already running."""
        with self._lock:
            previous = self._ongoing
            self._ongoing = True
            return previous

    def finish(self) -> None:
        with self._lock:
            self._ongoing = False
