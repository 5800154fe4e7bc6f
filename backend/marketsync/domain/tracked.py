"""Tagged values that make optimistic and stale UI data explicit."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Pending(Generic[T]):
    """An optimistic value shown while confirmation is in flight."""

    value: T | None = None


@dataclass(frozen=True, slots=True)
class Resolved(Generic[T]):
    """A confirmed value, either from the network or a fresh cache entry."""

    value: T
    from_cache: bool = False


@dataclass(frozen=True, slots=True)
class Stale(Generic[T]):
    """A previously confirmed value kept on screen after its TTL lapsed."""

    value: T


Tracked = Union[Pending[T], Resolved[T], Stale[T]]
