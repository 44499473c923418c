import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from .constants import APP_NAME
from .errors import InvalidKeyError

logger = logging.getLogger(APP_NAME)

T = TypeVar("T")


def split_key(key: str) -> tuple[str, str]:
    """Splits an ``owner/name`` cache key on the first slash.

    Args:
        key (str): The cache key, e.g. ``"octocat/Hello-World"``.

    Returns:
        tuple[str, str]: The (owner, name) pair.

    Raises:
        InvalidKeyError: If either segment is missing or empty.
    """
    owner, sep, name = key.partition("/")
    if not sep or not owner or not name:
        raise InvalidKeyError(key)
    return owner, name


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """The last successful fetch for one key."""

    fetched_at: float
    items: tuple[T, ...]


class TTLCache(Generic[T]):
    """A per-resource-kind store with stale reads and request de-duplication.

    Holds at most one entry and at most one in-flight task per key. Entries are
    only ever replaced wholesale by ``store``; reads never evict.

    Attributes:
        name (str): Label used in log messages (usually the resource kind).
    """

    def __init__(self, name: str = "cache"):
        self.name = name
        self._entries: dict[str, CacheEntry[T]] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def entry(self, key: str) -> CacheEntry[T] | None:
        return self._entries.get(key)

    def cached(self, key: str, now: float, max_age: float) -> list[T] | None:
        """Returns the items for ``key`` if they are at most ``max_age`` seconds old.

        Args:
            key (str): The cache key.
            now (float): The current time.
            max_age (float): The TTL to apply.

        Returns:
            list[T] | None: The items, or None if missing or expired.
        """
        entry = self._entries.get(key)
        if entry is None or now - entry.fetched_at > max_age:
            return None
        return list(entry.items)

    def stale(self, key: str) -> list[T] | None:
        """Returns the items for ``key`` regardless of age, or None if never fetched."""
        entry = self._entries.get(key)
        return list(entry.items) if entry is not None else None

    def needs_refresh(self, key: str, now: float, max_age: float) -> bool:
        """True if ``key`` has no entry or its age exceeds ``max_age``."""
        entry = self._entries.get(key)
        return entry is None or now - entry.fetched_at > max_age

    def count(self, key: str) -> int | None:
        """Number of stored items for ``key``, or None if never fetched."""
        entry = self._entries.get(key)
        return len(entry.items) if entry is not None else None

    def inflight(self, key: str) -> asyncio.Task | None:
        return self._inflight.get(key)

    def task(self, key: str, factory: Callable[[], Awaitable[list[T]]]) -> asyncio.Task:
        """Returns the in-flight task for ``key``, starting ``factory()`` if none.

        Every concurrent caller for the same key receives the same task and
        therefore the same result or exception. The factory is responsible for
        calling ``clear_inflight`` when it finishes.

        Args:
            key (str): The cache key.
            factory (Callable[[], Awaitable[list[T]]]): Produces the fetch coroutine.

        Returns:
            asyncio.Task: The shared task.
        """
        existing = self._inflight.get(key)
        if existing is not None and not existing.done():
            logger.debug(f"{self.name}: joining in-flight fetch for {key}")
            return existing

        task = asyncio.ensure_future(factory())
        task.add_done_callback(self._log_outcome(key))
        self._inflight[key] = task
        return task

    def _log_outcome(self, key: str) -> Callable[[asyncio.Task], None]:
        # Retrieving the exception here keeps a failure whose waiters were all
        # cancelled from surfacing as "exception was never retrieved".
        def callback(task: asyncio.Task) -> None:
            if task.cancelled():
                logger.debug(f"{self.name}: fetch for {key} cancelled")
            elif (error := task.exception()) is not None:
                logger.debug(f"{self.name}: fetch for {key} failed: {error}")

        return callback

    def clear_inflight(self, key: str) -> None:
        """Forgets the in-flight task for ``key`` so the next ``task`` call starts anew."""
        self._inflight.pop(key, None)

    def store(self, items: list[T], key: str, fetched_at: float) -> bool:
        """Replaces the entry for ``key`` with a successful fetch result.

        A result older than the current entry is dropped, so the entry always
        reflects the latest completion time.

        Args:
            items (list[T]): The fetched items, in display order.
            key (str): The cache key.
            fetched_at (float): Completion time of the fetch.

        Returns:
            bool: True if the entry was replaced.
        """
        current = self._entries.get(key)
        if current is not None and fetched_at < current.fetched_at:
            logger.debug(
                f"{self.name}: dropped out-of-order result for {key} "
                f"({fetched_at} < {current.fetched_at})"
            )
            return False
        self._entries[key] = CacheEntry(fetched_at=fetched_at, items=tuple(items))
        return True

    def clear(self) -> None:
        """Drops all entries. In-flight tasks keep running and may store again."""
        self._entries.clear()
