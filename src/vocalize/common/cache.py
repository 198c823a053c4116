"""
Time-boxed local cache for list resources.

One envelope type (CacheEntry) and one set of functions shared by every
cached collection:
- is_fresh: staleness check against the freshness window
- read_entry / write_entry: JSON (de)serialization through the store
- patch_entry: in-place mutation after a successful remote write

CachedCollection layers the fetch policy on top: remote when connected and
the entry is missing, stale or a refresh is forced; the cached entry
otherwise, stale or not.
"""

import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from vocalize.common.connectivity import ConnectivityProbe
from vocalize.common.errors import ErrorKind, VocalizeError, as_vocalize_error
from vocalize.common.models import CacheEntry
from vocalize.common.storage import KeyValueStore

logger = logging.getLogger(__name__)

FRESHNESS_WINDOW_MS = 24 * 60 * 60 * 1000

NO_CONNECTION_MESSAGE = "No connection and no cached data available"

Clock = Callable[[], int]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def is_fresh(
    entry: CacheEntry, now: int | None = None, window_ms: int = FRESHNESS_WINDOW_MS
) -> bool:
    """True iff the entry was written no more than ``window_ms`` ago."""
    current = now_ms() if now is None else now
    return current - entry.timestamp <= window_ms


async def read_entry(store: KeyValueStore, key: str) -> CacheEntry | None:
    """Load the entry under key. Missing or malformed data reads as a miss."""
    raw = await store.get(key)
    if raw is None:
        return None
    try:
        return CacheEntry.from_dict(json.loads(raw))
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning(
            f"Ignoring corrupt cache entry '{key}' "
            f"({ErrorKind.STORAGE_CORRUPTION.value}): {e}"
        )
        return None


async def write_entry(
    store: KeyValueStore, key: str, data: list[Any], now: int | None = None
) -> CacheEntry:
    """Overwrite the entry under key with data stamped at ``now``."""
    entry = CacheEntry(data=list(data), timestamp=now_ms() if now is None else now)
    await store.set(key, json.dumps(entry.to_dict(), ensure_ascii=False))
    return entry


async def patch_entry(
    store: KeyValueStore,
    key: str,
    transform: Callable[[list[Any]], list[Any]],
    create_if_missing: bool = False,
    now: int | None = None,
) -> CacheEntry | None:
    """
    Apply transform to the cached list and refresh its timestamp.

    Args:
        store: Backing store
        key: Cache key
        transform: Receives the current list, returns the new one
        create_if_missing: Start from an empty list when no entry exists
        now: Timestamp override (epoch ms)

    Returns:
        The written entry, or None when nothing was cached and
        create_if_missing is False
    """
    entry = await read_entry(store, key)
    if entry is None:
        if not create_if_missing:
            return None
        current: list[Any] = []
    else:
        current = entry.data
    return await write_entry(store, key, transform(current), now=now)


def _same_id(item: Any, item_id: Any) -> bool:
    return isinstance(item, dict) and str(item.get("id")) == str(item_id)


def upsert_by_id(item: dict[str, Any]) -> Callable[[list[Any]], list[Any]]:
    """Replace the element with the same id, or append if there is none."""

    def _apply(items: list[Any]) -> list[Any]:
        replaced = False
        result = []
        for existing in items:
            if _same_id(existing, item.get("id")):
                result.append(item)
                replaced = True
            else:
                result.append(existing)
        if not replaced:
            result.append(item)
        return result

    return _apply


def merge_by_id(item_id: Any, changes: dict[str, Any]) -> Callable[[list[Any]], list[Any]]:
    """Shallow-merge changes into the element with the given id."""

    def _apply(items: list[Any]) -> list[Any]:
        return [
            {**existing, **changes} if _same_id(existing, item_id) else existing
            for existing in items
        ]

    return _apply


def remove_by_id(item_id: Any) -> Callable[[list[Any]], list[Any]]:
    """Drop the element with the given id."""

    def _apply(items: list[Any]) -> list[Any]:
        return [existing for existing in items if not _same_id(existing, item_id)]

    return _apply


class CachedCollection:
    """Fetch policy shared by every cached list resource."""

    def __init__(
        self,
        store: KeyValueStore,
        connectivity: ConnectivityProbe,
        clock: Clock = now_ms,
        window_ms: int = FRESHNESS_WINDOW_MS,
    ):
        self.store = store
        self.connectivity = connectivity
        self.clock = clock
        self.window_ms = window_ms

    async def fetch(
        self,
        key: str,
        loader: Callable[[], Awaitable[list[Any]]],
        force_refresh: bool = False,
        fallback_message: str = "Failed to load data",
    ) -> list[Any]:
        """
        Return the collection under key, loading it remotely when needed.

        Args:
            key: Cache key
            loader: Coroutine factory that fetches the list from the server
            force_refresh: Skip a fresh cache entry when connected
            fallback_message: Message for unexpected, non-client errors

        Raises:
            VocalizeError: network_unavailable when offline with no cache,
                otherwise whatever the loader raised (normalized)
        """
        try:
            connected = await self.connectivity.is_connected()
            entry = await read_entry(self.store, key)
            stale = entry is None or not is_fresh(entry, self.clock(), self.window_ms)

            if connected and (entry is None or stale or force_refresh):
                logger.debug(
                    f"Loading '{key}' from server "
                    f"(cached={entry is not None}, stale={stale}, forced={force_refresh})"
                )
                data = await loader()
                if not isinstance(data, list):
                    raise VocalizeError(
                        ErrorKind.SERVER_REJECTED,
                        f"Unexpected response shape for '{key}'",
                    )
                await write_entry(self.store, key, data, now=self.clock())
                return data

            if entry is not None:
                if stale:
                    logger.info(f"Serving stale '{key}' from cache (offline)")
                return entry.data

            raise VocalizeError(ErrorKind.NETWORK_UNAVAILABLE, NO_CONNECTION_MESSAGE)

        except Exception as e:
            entry = await read_entry(self.store, key)
            if entry is not None:
                logger.warning(f"Falling back to cached '{key}' after error: {e}")
                return entry.data
            error = as_vocalize_error(e, fallback_message)
            if error is e:
                raise
            raise error from e
