"""
Key-value store for deferred processing.

Values are JSON documents addressed by ``(namespace, key)``.  Each namespace is one JSON file under
the store's directory:

    {"<key>": {"value": <json>, "expires_at": <unix seconds> | null}, ...}
"""

import asyncio
import json
import logging
import re
import time
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
)

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


class KVRecord(BaseModel):
    """Result of a lookup."""

    exists: bool
    data: Any = None


class KVStore:
    """JSON-file backed key-value store with optional per-key TTL."""

    def __init__(self, root: str | Path, clock: Callable[[], float] = time.time) -> None:
        self._root = Path(root)
        self._clock = clock
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    async def get(self, namespace: str, key: str) -> KVRecord:
        """Return the value stored under *key*, or ``exists=False`` if absent or expired."""
        async with self._lock:
            entries = await asyncio.to_thread(self._load, namespace)
        entry = entries.get(key)
        if entry is None or self._expired(entry):
            return KVRecord(exists=False)
        return KVRecord(exists=True, data=entry["value"])

    async def set(self, namespace: str, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a JSON-serialisable *value*; *ttl* is in seconds."""
        json.dumps(value)  # fail early on values that cannot be stored
        expires_at = self._clock() + ttl if ttl is not None else None
        async with self._lock:
            entries = await asyncio.to_thread(self._load, namespace)
            entries = {k: v for k, v in entries.items() if not self._expired(v)}
            entries[key] = {"value": value, "expires_at": expires_at}
            await asyncio.to_thread(self._dump, namespace, entries)
        logger.debug("KV set %s/%s (ttl=%s)", namespace, key, ttl)

    async def update(
        self,
        namespace: str,
        key: str,
        fn: Callable[[Any], Any],
        ttl: float | None = None,
    ) -> Any:
        """
        Replace the value under *key* with ``fn(current)`` in one locked read-modify-write.

        *current* is ``None`` when the key is absent or expired.  Returns the stored value.
        """
        async with self._lock:
            entries = await asyncio.to_thread(self._load, namespace)
            entries = {k: v for k, v in entries.items() if not self._expired(v)}
            current = entries[key]["value"] if key in entries else None
            value = fn(current)
            json.dumps(value)
            expires_at = self._clock() + ttl if ttl is not None else None
            entries[key] = {"value": value, "expires_at": expires_at}
            await asyncio.to_thread(self._dump, namespace, entries)
        logger.debug("KV update %s/%s", namespace, key)
        return value

    async def delete(self, namespace: str, key: str) -> bool:
        """Remove *key*; return whether it existed."""
        async with self._lock:
            entries = await asyncio.to_thread(self._load, namespace)
            existed = entries.pop(key, None) is not None
            if existed:
                await asyncio.to_thread(self._dump, namespace, entries)
        return existed

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _path(self, namespace: str) -> Path:
        return self._root / f"{_UNSAFE.sub('_', namespace)}.json"

    def _expired(self, entry: Dict[str, Any]) -> bool:
        expires_at = entry.get("expires_at")
        return expires_at is not None and expires_at <= self._clock()

    def _load(self, namespace: str) -> Dict[str, Any]:
        path = self._path(namespace)
        if not path.exists():
            return {}
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.error("Corrupt KV namespace file %s; treating it as empty", path)
            return {}

    def _dump(self, namespace: str, entries: Dict[str, Any]) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        path = self._path(namespace)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(entries, indent=2), encoding="utf-8")
        tmp.replace(path)
