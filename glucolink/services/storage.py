"""
Key-value stores backing the persistent cache.

Values are JSON-compatible objects, stored as JSON text so every backend
hands back the same plain types.
"""

import asyncio
import json
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import diskcache as dc
from loguru import logger


class KeyValueStore(ABC):
    """Async key-value store interface."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None when the key is missing."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    async def close(self) -> None:
        """Release any underlying resources."""


class MemoryStore(KeyValueStore):
    """Process-local store; values are deep-copied through JSON."""

    def __init__(self):
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None


class FileStore(KeyValueStore):
    """
    Durable store backed by a ``diskcache.Cache`` directory.

    diskcache commits each value in one SQLite transaction, so a reader sees
    either the old or the new value. Calls run in a worker thread.

    Usage:
        store = FileStore("~/.cache/glucolink")
        await store.set("glucose_readings", {"readings": [], "timestamp": 0})
        await store.close()
    """

    def __init__(self, directory: str | Path, timeout: float = 1.0):
        self._directory = Path(directory).expanduser()
        self._timeout = timeout
        self._cache: dc.Cache | None = None

    @property
    def directory(self) -> Path:
        return self._directory

    def _get_cache(self) -> dc.Cache:
        if self._cache is None:
            self._cache = dc.Cache(str(self._directory), timeout=self._timeout)
            logger.debug(f"[FileStore] opened disk cache at {self._cache.directory}")
        return self._cache

    async def get(self, key: str) -> Any | None:
        return await self._run(self._read, key)

    async def set(self, key: str, value: Any) -> None:
        await self._run(self._write, key, value)

    async def delete(self, key: str) -> bool:
        return await self._run(lambda: self._get_cache().delete(key))

    async def _run(self, fn, *args):
        """Run a blocking diskcache call; storage failures surface as OSError."""
        try:
            return await asyncio.to_thread(fn, *args)
        except (dc.Timeout, sqlite3.Error) as e:
            raise OSError(f"disk cache at {self._directory}: {e}") from e

    async def close(self) -> None:
        if self._cache is not None:
            await asyncio.to_thread(self._cache.close)
            self._cache = None

    def _read(self, key: str) -> Any | None:
        raw = self._get_cache().get(key)
        return json.loads(raw) if raw is not None else None

    def _write(self, key: str, value: Any) -> None:
        payload = json.dumps(value, separators=(",", ":"))
        self._get_cache().set(key, payload)
        logger.debug(f"[FileStore] wrote {key} ({len(payload)} bytes)")
