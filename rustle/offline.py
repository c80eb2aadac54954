"""
Connectivity tracking and the offline translation queue.

While offline, translations that miss every local source are queued and the
caller gets the source text back immediately. When connectivity returns the
online callbacks fire and every queued item is re-resolved through the bound
resolver (normally ``TranslationEngine``); an item leaves the queue only once
it resolved successfully.

The manager also owns cache backup: the whole cache namespace can be exported
as one JSON document and imported again.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from rustle.errors import CacheImportError
from rustle.models import PendingTranslation
from rustle.storage import CacheStore, parse_envelope

logger = logging.getLogger(__name__)

Resolver = Callable[[PendingTranslation], Awaitable[Any]]


@dataclass
class SyncReport:
    """Outcome of flushing the offline queue."""
    resolved: int = 0
    failed: list[str] = field(default_factory=list)
    remaining: int = 0


class OfflineManager:
    """Tracks online/offline state and the pending translation queue.

    Usage:
        offline = OfflineManager(cache)
        offline.bind_resolver(engine.resolve_pending)
        await offline.set_online(False)
        ...
        report = await offline.set_online(True)
    """

    def __init__(
        self,
        cache: Optional[CacheStore] = None,
        online: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache or CacheStore()
        self._online = online
        self._clock = clock
        self._online_callbacks: list[Callable[[], Any]] = []
        self._offline_callbacks: list[Callable[[], Any]] = []
        self._pending: dict[str, PendingTranslation] = {}
        self._resolver: Optional[Resolver] = None

    @property
    def is_online(self) -> bool:
        return self._online

    def bind_resolver(self, resolver: Optional[Resolver]) -> None:
        self._resolver = resolver

    def on_online(self, callback: Callable[[], Any]) -> Callable[[], None]:
        """Register ``callback`` for offline -> online. Returns an unsubscribe function."""
        return _subscribe(self._online_callbacks, callback)

    def on_offline(self, callback: Callable[[], Any]) -> Callable[[], None]:
        return _subscribe(self._offline_callbacks, callback)

    async def set_online(self, online: bool) -> Optional[SyncReport]:
        """Record a connectivity transition.

        Going online fires the online callbacks and flushes the queue,
        returning its ``SyncReport``. Setting the current state is a no-op.
        """
        if online == self._online:
            return None
        self._online = online
        if not online:
            logger.info("Gone offline, using cached translations only")
            _fire(self._offline_callbacks, "offline")
            return None

        logger.info("Back online, syncing %d pending translations", len(self._pending))
        _fire(self._online_callbacks, "online")
        return await self.sync_pending()

    def add_pending_translation(self, text: str, source_locale: str, target_locale: str) -> PendingTranslation:
        item = PendingTranslation(
            text=text,
            source_locale=source_locale,
            target_locale=target_locale,
            timestamp=int(self._clock() * 1000),
        )
        # Re-queuing the same text keeps a single entry with the latest timestamp
        self._pending[item.key] = item
        logger.debug("Queued %r for %s while offline", text, target_locale)
        return item

    def get_pending_translations(self) -> list[PendingTranslation]:
        return list(self._pending.values())

    def get_pending_translations_count(self) -> int:
        return len(self._pending)

    def clear_pending_translations(self) -> None:
        self._pending.clear()

    async def sync_pending(self) -> SyncReport:
        """Re-resolve queued items, evicting only the ones that succeed."""
        report = SyncReport()
        if not self._pending:
            return report
        if self._resolver is None:
            logger.warning("No resolver bound, keeping %d pending translations", len(self._pending))
            report.remaining = len(self._pending)
            return report

        items = list(self._pending.items())
        results = await asyncio.gather(
            *(self._resolver(item) for _, item in items), return_exceptions=True
        )
        for (key, item), result in zip(items, results):
            if isinstance(result, BaseException):
                logger.warning("Pending translation %r failed to sync: %s", item.text, result)
                report.failed.append(key)
                continue
            self._pending.pop(key, None)
            report.resolved += 1

        report.remaining = len(self._pending)
        logger.info("Synced %d pending translations (%d failed)", report.resolved, len(report.failed))
        return report

    def preload_translations(self, locale_data: dict[str, dict[str, str]], source_locale: str) -> int:
        """Prime the cache with static translations so they survive going offline."""
        total = 0
        for locale, data in locale_data.items():
            if locale == source_locale:
                continue
            for key, translation in data.items():
                self.cache.cache_translation(key, source_locale, locale, translation)
                total += 1
        logger.debug("Preloaded %d translations for offline use", total)
        return total

    def export_cache(self) -> str:
        return json.dumps(self.cache.raw_items(), indent=2, ensure_ascii=False)

    def import_cache(self, payload: str) -> int:
        """Restore a backup made by ``export_cache``.

        The whole document is validated before anything is written.

        Raises:
            CacheImportError: if ``payload`` is not a valid export
        """
        try:
            items = json.loads(payload)
        except ValueError as e:
            raise CacheImportError(f"Invalid cache data: {e}") from e
        if not isinstance(items, dict):
            raise CacheImportError("Invalid cache data: expected a JSON object")
        for key, value in items.items():
            if not key.startswith(self.cache.prefix):
                raise CacheImportError(f"Invalid cache key: {key!r}")
            if not isinstance(value, str):
                raise CacheImportError(f"Invalid cache value for {key!r}")
            if parse_envelope(value) is None:
                raise CacheImportError(f"Invalid cache entry for {key!r}")

        self.cache.restore_items(items)
        logger.info("Imported %d cache entries", len(items))
        return len(items)

    def clear_cache(self) -> None:
        self.cache.clear_cache()

    def destroy(self) -> None:
        self._online_callbacks.clear()
        self._offline_callbacks.clear()
        self._pending.clear()
        self._resolver = None


def _subscribe(callbacks: list[Callable[[], Any]], callback: Callable[[], Any]) -> Callable[[], None]:
    callbacks.append(callback)

    def unsubscribe() -> None:
        if callback in callbacks:
            callbacks.remove(callback)

    return unsubscribe


def _fire(callbacks: list[Callable[[], Any]], label: str) -> None:
    for callback in list(callbacks):
        try:
            callback()
        except Exception:
            logger.exception("Error in %s callback", label)
