"""Length checks for payload fields, read from the live ``limits`` section.

Used as ``Annotated[str, AfterValidator(max_len("profile_name_max"))]`` so
a limit changed through the admin API applies to the next request.
"""

from __future__ import annotations

from collections.abc import Callable, Sized
from typing import TypeVar

from afrodite.config import config

S = TypeVar("S", bound=Sized)


def max_len(limit_name: str, unit: str = "character") -> Callable[[S], S]:
    def _check(value: S) -> S:
        limit = getattr(config.limits, limit_name)
        if len(value) > limit:
            raise ValueError(f"Should have at most {limit} {unit}(s)")
        return value

    return _check
