"""
Persistent translation cache.

The CacheStore keeps single translations and whole locale maps in a flat
key/value namespace. Every value is wrapped in an envelope::

    {"data": <value>, "timestamp": <ms since epoch>, "version": "1.0"}

Entries older than the caller's max age, written under another schema
version, or that fail to parse are treated as absent and evicted on read.

The backing store is pluggable:
- MemoryStorageAdapter: process-local dict (no persistence)
- FileStorageAdapter: JSON file on disk, survives restarts

Keys are derived from the literal text, not the fingerprint, so ad-hoc
runtime translations the extractor never saw are cached as well.
"""

from __future__ import annotations

import json
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from rustle.config import (
    CACHE_PREFIX,
    CACHE_VERSION,
    LOCALE_MAX_AGE_MS,
    TRANSLATION_MAX_AGE_MS,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def parse_envelope(raw: str) -> Optional[dict[str, Any]]:
    """Return the decoded envelope, or None if it is not well formed."""
    try:
        envelope = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(envelope, dict):
        return None
    timestamp = envelope.get("timestamp")
    if (
        not isinstance(envelope.get("data"), str)
        or not isinstance(envelope.get("version"), str)
        or isinstance(timestamp, bool)
        or not isinstance(timestamp, (int, float))
    ):
        return None
    return envelope


class StorageAdapter(ABC):
    """Minimal string key/value store used by CacheStore."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self) -> Iterator[str]:
        pass

    def clear(self) -> None:
        for key in list(self.keys()):
            self.remove_item(key)


class MemoryStorageAdapter(StorageAdapter):
    """In-memory fallback; contents are lost when the process exits."""

    def __init__(self):
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self._items))

    def clear(self) -> None:
        self._items.clear()


class FileStorageAdapter(StorageAdapter):
    """JSON-file backed store.

    The whole file is rewritten on every mutation (write to a temp file,
    then replace), which is fine for translation-cache sized data.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._items: dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable cache file %s: %s", self.path, e)
            return
        if isinstance(data, dict):
            self._items = {k: v for k, v in data.items() if isinstance(v, str)}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._items, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value
        self._save()

    def remove_item(self, key: str) -> None:
        if self._items.pop(key, None) is not None:
            self._save()

    def keys(self) -> Iterator[str]:
        return iter(list(self._items))

    def clear(self) -> None:
        self._items.clear()
        self._save()


@dataclass
class CacheStats:
    item_count: int
    approx_byte_size: int


class CacheStore:
    """Versioned, TTL-checked cache over a StorageAdapter.

    Usage:
        cache = CacheStore(MemoryStorageAdapter())
        cache.cache_translation("Hello", "en", "es", "Hola")
        cache.get_cached_translation("Hello", "en", "es")  # -> "Hola"
    """

    def __init__(
        self,
        adapter: Optional[StorageAdapter] = None,
        clock: Clock = time.time,
        prefix: str = CACHE_PREFIX,
        version: str = CACHE_VERSION,
    ):
        self.adapter = adapter or MemoryStorageAdapter()
        self.prefix = prefix
        self.version = version
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _key(self, kind: str, identifier: str) -> str:
        return f"{self.prefix}{kind}_{identifier}"

    def translation_key(self, text: str, source_locale: str, target_locale: str) -> str:
        return self._key("translation", f"{source_locale}_{target_locale}_{text}")

    def locale_key(self, locale: str) -> str:
        return self._key("locale", locale)

    def _write(self, key: str, data: str) -> None:
        envelope = {"data": data, "timestamp": self._now_ms(), "version": self.version}
        try:
            self.adapter.set_item(key, json.dumps(envelope, ensure_ascii=False))
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to write cache entry %s: %s", key, e)

    def _read(self, key: str, max_age_ms: int) -> Optional[str]:
        raw = self.adapter.get_item(key)
        if raw is None:
            return None
        envelope = parse_envelope(raw)
        if envelope is None:
            logger.debug("Evicting corrupt cache entry %s", key)
            self.adapter.remove_item(key)
            return None
        if envelope["version"] != self.version or self._now_ms() - envelope["timestamp"] > max_age_ms:
            self.adapter.remove_item(key)
            return None
        return envelope["data"]

    def cache_translation(self, text: str, source_locale: str, target_locale: str, translation: str) -> None:
        self._write(self.translation_key(text, source_locale, target_locale), translation)

    def get_cached_translation(
        self,
        text: str,
        source_locale: str,
        target_locale: str,
        max_age_ms: int = TRANSLATION_MAX_AGE_MS,
    ) -> Optional[str]:
        return self._read(self.translation_key(text, source_locale, target_locale), max_age_ms)

    def cache_locale_data(self, locale: str, data: dict[str, str]) -> None:
        self._write(self.locale_key(locale), json.dumps(data, ensure_ascii=False))

    def get_cached_locale_data(self, locale: str, max_age_ms: int = LOCALE_MAX_AGE_MS) -> Optional[dict[str, str]]:
        raw = self._read(self.locale_key(locale), max_age_ms)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            self.adapter.remove_item(self.locale_key(locale))
            return None
        return data if isinstance(data, dict) else None

    def namespace_keys(self) -> list[str]:
        return [key for key in self.adapter.keys() if key.startswith(self.prefix)]

    def raw_items(self) -> dict[str, str]:
        """Return every envelope in the namespace, keyed by storage key."""
        items = {}
        for key in self.namespace_keys():
            value = self.adapter.get_item(key)
            if value is not None:
                items[key] = value
        return items

    def restore_items(self, items: dict[str, str]) -> None:
        for key, value in items.items():
            self.adapter.set_item(key, value)

    def clear_cache(self) -> None:
        for key in self.namespace_keys():
            self.adapter.remove_item(key)

    def cleanup_old_cache(self, max_age_ms: int = TRANSLATION_MAX_AGE_MS) -> int:
        """Evict expired, outdated and corrupt entries. Returns the count removed."""
        removed = 0
        now = self._now_ms()
        for key, raw in self.raw_items().items():
            envelope = parse_envelope(raw)
            stale = (
                envelope is None
                or envelope["version"] != self.version
                or now - envelope["timestamp"] > max_age_ms
            )
            if stale:
                self.adapter.remove_item(key)
                removed += 1
        if removed:
            logger.info("Cleaned up %d old cache entries", removed)
        return removed

    def get_cache_stats(self) -> CacheStats:
        items = self.raw_items()
        size = sum(len(k.encode("utf-8")) + len(v.encode("utf-8")) for k, v in items.items())
        return CacheStats(item_count=len(items), approx_byte_size=size)
