"""
Persistent key-value storage for the Vocalize client.

All values are strings. Two backends are provided:
- JsonFileStore: one JSON document on disk, durable across restarts
- MemoryStore: process-local dict, for tests and throwaway sessions

Thread/process safety (JsonFileStore):
- Cross-process exclusion with filelock
- Atomic writes (write to temp file, then rename)
- File I/O runs in a worker thread so the event loop never blocks
"""

import asyncio
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from typing import Callable

from filelock import FileLock

from vocalize.common.errors import ErrorKind

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Async string-keyed store."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value for key, or None if absent."""

    @abstractmethod
    async def multi_get(self, keys: Iterable[str]) -> dict[str, str | None]:
        """Return values for several keys at once."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store value under key."""

    @abstractmethod
    async def multi_set(self, items: Iterable[tuple[str, str]]) -> None:
        """Store several key/value pairs in one write."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete key if present."""

    @abstractmethod
    async def multi_remove(self, keys: Iterable[str]) -> None:
        """Delete several keys in one write."""

    @abstractmethod
    async def keys(self) -> list[str]:
        """List every stored key."""


class MemoryStore(KeyValueStore):
    """In-memory store. Contents vanish with the process."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def multi_get(self, keys: Iterable[str]) -> dict[str, str | None]:
        return {key: self._data.get(key) for key in keys}

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def multi_set(self, items: Iterable[tuple[str, str]]) -> None:
        self._data.update(dict(items))

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def multi_remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._data)

    def snapshot(self) -> dict[str, str]:
        """Copy of the current contents."""
        return dict(self._data)


class JsonFileStore(KeyValueStore):
    """
    Store backed by a single JSON object on disk.

    The file is re-read on every access so separate processes sharing the
    same path observe each other's writes.
    """

    def __init__(self, store_path: Path):
        """
        Initialize the file store.

        Args:
            store_path: Path to the JSON file. Parent directories are created.
        """
        self.store_path = Path(store_path)
        self.lock_path = self.store_path.with_suffix(".lock")
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        self._file_lock = FileLock(self.lock_path)
        self._lock = asyncio.Lock()

    def _read_store(self) -> dict[str, str]:
        """
        Read the store file. A missing file reads as empty.

        A file that does not hold a JSON object of strings is moved aside
        before reading as empty, so the next write cannot destroy it.
        """
        if not self.store_path.exists():
            return {}
        try:
            with open(self.store_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self._quarantine(f"unreadable: {e}")
            return {}
        if not isinstance(data, dict):
            self._quarantine("not a JSON object")
            return {}
        if not all(isinstance(v, str) for v in data.values()):
            self._quarantine("holds non-string values")
            return {}
        return data

    def _quarantine(self, reason: str) -> Path:
        """Move a damaged store file out of the way, keeping it for recovery."""
        backup = self.store_path.with_name(
            f"{self.store_path.name}.corrupt-{time.time_ns() // 1_000_000}"
        )
        os.replace(self.store_path, backup)
        logger.error(
            f"[{ErrorKind.STORAGE_CORRUPTION.value}] Key-value store at "
            f"{self.store_path} {reason}; moved to {backup.name}"
        )
        return backup

    def _write_store(self, data: dict[str, str]) -> None:
        """Write the store file atomically."""
        temp_path = self.store_path.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(temp_path, self.store_path)

    def _locked_read(self) -> dict[str, str]:
        with self._file_lock:
            return self._read_store()

    def _locked_update(self, mutate: Callable[[dict[str, str]], None]) -> None:
        with self._file_lock:
            data = self._read_store()
            mutate(data)
            self._write_store(data)

    async def _update(self, mutate: Callable[[dict[str, str]], None]) -> None:
        async with self._lock:
            await asyncio.to_thread(self._locked_update, mutate)

    async def get(self, key: str) -> str | None:
        data = await asyncio.to_thread(self._locked_read)
        return data.get(key)

    async def multi_get(self, keys: Iterable[str]) -> dict[str, str | None]:
        data = await asyncio.to_thread(self._locked_read)
        return {key: data.get(key) for key in keys}

    async def set(self, key: str, value: str) -> None:
        await self._update(lambda data: data.__setitem__(key, value))

    async def multi_set(self, items: Iterable[tuple[str, str]]) -> None:
        pairs = dict(items)
        await self._update(lambda data: data.update(pairs))

    async def remove(self, key: str) -> None:
        await self._update(lambda data: data.pop(key, None))

    async def multi_remove(self, keys: Iterable[str]) -> None:
        doomed = list(keys)

        def _drop(data: dict[str, str]) -> None:
            for key in doomed:
                data.pop(key, None)

        await self._update(_drop)

    async def keys(self) -> list[str]:
        data = await asyncio.to_thread(self._locked_read)
        return list(data)
