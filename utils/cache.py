from __future__ import annotations

from typing import Awaitable, Callable, Generic, Optional, TypeVar


T = TypeVar("T")


class OnceCache(Generic[T]):
    """Holds a single lazily fetched value for the lifetime of its owner.

    The value is populated on first use and never refreshed or invalidated.
    Concurrent first callers may both run the fetch; the last assignment wins,
    which is harmless because every fetch resolves the same value.
    """

    def __init__(self) -> None:
        self._value: Optional[T] = None
        self._populated = False

    @property
    def populated(self) -> bool:
        return self._populated

    def get(self) -> Optional[T]:
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self._populated = True

    async def get_or_fetch(self, fetch: Callable[[], Awaitable[T]]) -> T:
        if self._populated:
            return self._value  # type: ignore[return-value]
        value = await fetch()
        self.set(value)
        return value
