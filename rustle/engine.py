"""
Translation resolution engine.

``TranslationEngine.translate`` resolves one text into a target locale by
walking an ordered list of sources and stopping at the first hit:

1. static locale data (by fingerprint, then by literal text)
2. the persistent cache
3. an identical request already in flight (shared, not duplicated)
4. offline: queue the text and return it untranslated
5. the live API, through the batch collector, with exponential backoff

When the API is exhausted, a region locale (``es-MX``) falls back to its
base language's static data and then to the source text, unless fallback
is disabled in which case the error propagates. Cancellation is never
masked by fallback: it surfaces as ``TranslationCancelled``.

Collaborators (cache, offline manager, API client) are injected so that
each engine has an explicit lifecycle.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence

from rustle.api import APIClient
from rustle.batching import BatchCollector
from rustle.cleaner import clean_translation
from rustle.config import MAX_BATCH_SIZE, EngineConfig
from rustle.errors import RustleAPIError, TranslationCancelled, ValidationError
from rustle.fingerprint import fingerprint
from rustle.models import BatchEntry, PendingTranslation, read_locale_file
from rustle.offline import OfflineManager
from rustle.plugins import HookKind, Plugin, PluginManager
from rustle.security import generate_request_id
from rustle.storage import CacheStore

logger = logging.getLogger(__name__)

InflightKey = tuple[str, str, str]


class TranslationEngine:
    """Resolves translations for one site.

    Usage:
        engine = TranslationEngine(EngineConfig(api_key="...", locale_dir=Path("public/rustle/locales")))
        await engine.init()
        text = await engine.translate("Welcome", "es")
        await engine.destroy()
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        cache: Optional[CacheStore] = None,
        offline: Optional[OfflineManager] = None,
        api: Optional[APIClient] = None,
        plugins: Optional[PluginManager] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or EngineConfig()
        self.cache = cache or CacheStore()
        self.offline = offline or OfflineManager(self.cache)
        self.plugins = plugins or PluginManager()
        self._sleep = sleep

        if api is None and self.config.api_key:
            api = APIClient(self.config.api_key, self.config.api_url)
        self.api = api

        self.collector = BatchCollector(
            self._send_batch,
            wait=self.config.batch_wait,
            max_items=self.config.batch_max_items,
        )
        self.locale_data: dict[str, dict[str, str]] = {}
        self._inflight: dict[InflightKey, asyncio.Task] = {}
        self._batch_tasks: dict[str, tuple[str, asyncio.Task]] = {}
        self._cancelled_batches: set[asyncio.Task] = set()

        self.offline.bind_resolver(self.resolve_pending)

    @property
    def current_locale(self) -> str:
        return self.config.current_locale

    # Plugins

    def use(self, plugin: Plugin) -> None:
        self.plugins.use(plugin)

    def unuse(self, name: str) -> bool:
        return self.plugins.unuse(name)

    def get_plugin(self, name: str) -> Optional[Plugin]:
        return self.plugins.get_plugin(name)

    # Lifecycle

    async def init(self) -> None:
        """Load locale data and prime the cache for offline use."""
        if self.config.deactivate:
            logger.debug("Engine deactivated, skipping initialization")
            return
        await self.plugins.emit(HookKind.INIT, self)
        self.load_locale(self.config.current_locale)
        self.load_locale(self.config.source_language)
        if self.locale_data:
            self.offline.preload_translations(self.locale_data, self.config.source_language)

    async def destroy(self) -> None:
        await self.plugins.emit(HookKind.DESTROY, self)
        self.collector.cancel_all()
        for key in list(self._batch_tasks):
            self.cancel_batch(key)
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
        if self.api is not None:
            await self.api.close()
        self.offline.destroy()

    # Locale data

    def load_locale(self, locale: str) -> dict[str, str]:
        """Return static data for ``locale``, reading its locale file once."""
        if locale in self.locale_data:
            return self.locale_data[locale]

        data = self.cache.get_cached_locale_data(locale)
        if data is None and self.config.locale_dir is not None:
            path = Path(self.config.locale_dir) / f"{locale}.json"
            try:
                data = read_locale_file(path)
                self.cache.cache_locale_data(locale, data)
                logger.debug("Loaded locale %s with %d entries", locale, len(data))
            except FileNotFoundError:
                logger.debug("No locale file for %s at %s", locale, path)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load locale %s: %s", locale, e)

        self.locale_data[locale] = data or {}
        return self.locale_data[locale]

    def add_locale_data(self, locale: str, data: dict[str, str]) -> None:
        self.locale_data.setdefault(locale, {}).update(data)

    def _static_lookup(self, text: str, locale: str) -> Optional[str]:
        data = self.locale_data.get(locale) or {}
        return data.get(fingerprint(text)) or data.get(text)

    async def set_locale(self, locale: str) -> None:
        """Switch the current locale, cancelling work queued for the old one."""
        old = self.config.current_locale
        if locale == old:
            return
        self.collector.cancel_locale(old)
        for key, (target, _) in list(self._batch_tasks.items()):
            if target == old:
                self.cancel_batch(key)
        self.config.current_locale = locale
        await self.plugins.emit(HookKind.LOCALE_CHANGE, locale, old)
        self.load_locale(locale)

    # Resolution

    async def translate(self, text: str, target_locale: Optional[str] = None, use_cache: bool = True) -> str:
        """Resolve ``text`` into ``target_locale`` (default: current locale).

        Raises:
            TranslationCancelled: the request's batch was cancelled
            RustleAPIError: every source failed and fallback is disabled
        """
        target = target_locale or self.config.current_locale
        source = self.config.source_language
        if self.config.deactivate or target == source or not text.strip():
            return text

        text = await self.plugins.run_chain(HookKind.BEFORE_TRANSLATE, text, target)

        static = self._static_lookup(text, target)
        if static:
            await self.plugins.emit(HookKind.CACHE_HIT, text, target, static)
            return static

        if use_cache:
            cached = self.cache.get_cached_translation(
                text, source, target, self.config.translation_max_age_ms
            ) or self.cache.get_cached_translation(
                fingerprint(text), source, target, self.config.translation_max_age_ms
            )
            if cached:
                await self.plugins.emit(HookKind.CACHE_HIT, text, target, cached)
                return cached
            await self.plugins.emit(HookKind.CACHE_MISS, text, target)

        key = (text, source, target)
        if key not in self._inflight and not self.offline.is_online:
            self.offline.add_pending_translation(text, source, target)
            return text
        try:
            return await self._await_shared(key)
        except TranslationCancelled:
            raise
        except Exception as e:
            return self._fallback(text, target, e)

    async def _await_shared(self, key: InflightKey) -> str:
        """Join the live request for ``key``, starting one if none is in flight."""
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._resolve_live(key))
            self._inflight[key] = task
        try:
            # Shielded so that one caller going away does not cancel the shared work
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise TranslationCancelled(f"Translation of {key[0]!r} cancelled") from None
            raise

    async def _resolve_live(self, key: InflightKey) -> str:
        """Resolve ``key`` through the API; errors propagate to every waiter."""
        text, source, target = key
        try:
            if self.api is None:
                raise RustleAPIError("No API key configured", code="NO_API_KEY")
            try:
                raw = await self.collector.submit(text, source, target)
            except TranslationCancelled:
                raise
            except Exception as e:
                await self.plugins.emit(HookKind.ERROR, e, {"text": text, "locale": target})
                raise

            translation = clean_translation(raw)
            self.cache.cache_translation(text, source, target, translation)
            await self.plugins.emit(HookKind.CACHE_SET, text, target, translation)
            return await self.plugins.run_chain(HookKind.AFTER_TRANSLATE, translation, text, target)
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    def _fallback(self, text: str, target: str, error: Exception) -> str:
        base = target.split("-")[0]
        if base != target:
            self.load_locale(base)
            static = self._static_lookup(text, base)
            if static:
                logger.debug("Using %s static data for %r", base, text)
                return static
        if self.config.fallback:
            logger.debug("Falling back to source text for %r: %s", text, error)
            return text
        raise error

    async def _send_batch(
        self,
        entries: list[BatchEntry],
        source_locale: str,
        target_locale: str,
        request_key: Optional[str] = None,
    ) -> dict[str, str]:
        """Call the batch endpoint, retrying transport and server failures.

        Validation errors, cancellation and quota errors are raised at once.
        """
        attempt = 0
        while True:
            try:
                response = await self.api.translate_batch(
                    entries, source_locale, target_locale, self.config.model, request_key
                )
                if not response.success:
                    raise RustleAPIError(response.error or "Batch translation failed")
                return response.translations
            except (ValidationError, TranslationCancelled):
                raise
            except RustleAPIError as e:
                if e.is_quota_exceeded or attempt >= self.config.max_retries:
                    raise
                delay = 2 ** attempt * self.config.retry_base_delay
                attempt += 1
                logger.warning(
                    "Translation attempt %d failed (%s), retrying in %.1fs", attempt, e.message, delay
                )
                await self._sleep(delay)

    async def translate_batch(
        self,
        texts: Sequence[str],
        target_locale: Optional[str] = None,
        request_key: Optional[str] = None,
    ) -> dict[str, str]:
        """Resolve many texts with one API call for everything not found locally.

        A new call under the same ``request_key`` cancels the previous one.

        Returns:
            source text -> translation

        Raises:
            TranslationCancelled: the batch was cancelled via ``cancel_batch``
        """
        target = target_locale or self.config.current_locale
        source = self.config.source_language
        results: dict[str, str] = {}
        if self.config.deactivate or target == source:
            return {text: text for text in texts}

        missing: list[str] = []
        for text in dict.fromkeys(texts):
            found = self._static_lookup(text, target) or self.cache.get_cached_translation(
                text, source, target, self.config.translation_max_age_ms
            )
            if found:
                results[text] = found
            elif not self.offline.is_online:
                self.offline.add_pending_translation(text, source, target)
                results[text] = text
            else:
                missing.append(text)

        if not missing:
            return results
        if self.api is None:
            error = RustleAPIError("No API key configured", code="NO_API_KEY")
            results.update({text: self._fallback(text, target, error) for text in missing})
            return results

        if request_key:
            self.cancel_batch(request_key)
        key = request_key or generate_request_id()
        entries = [BatchEntry(id=f"t{i}", text=text) for i, text in enumerate(missing)]
        task = asyncio.ensure_future(self._send_chunks(entries, source, target, key))
        self._batch_tasks[key] = (target, task)
        try:
            translations = await task
        except asyncio.CancelledError:
            if task in self._cancelled_batches:
                raise TranslationCancelled(f"Batch {key} cancelled") from None
            raise
        except TranslationCancelled:
            raise
        except Exception as e:
            await self.plugins.emit(HookKind.ERROR, e, {"texts": missing, "locale": target})
            raise
        finally:
            self._cancelled_batches.discard(task)
            if self._batch_tasks.get(key, (None, None))[1] is task:
                del self._batch_tasks[key]

        for entry in entries:
            translation = translations.get(entry.id)
            if translation:
                translation = clean_translation(translation)
                self.cache.cache_translation(entry.text, source, target, translation)
                results[entry.text] = translation
            else:
                results[entry.text] = self._fallback(entry.text, target, RustleAPIError("No translation returned"))
        return results

    async def _send_chunks(
        self,
        entries: list[BatchEntry],
        source_locale: str,
        target_locale: str,
        request_key: str,
    ) -> dict[str, str]:
        """Send ``entries`` in slices of ``MAX_BATCH_SIZE`` under one request key.

        A failed slice is logged and left untranslated unless fallback is
        disabled, in which case the error propagates.
        """
        translations: dict[str, str] = {}
        for start in range(0, len(entries), MAX_BATCH_SIZE):
            chunk = entries[start:start + MAX_BATCH_SIZE]
            try:
                translations.update(await self._send_batch(chunk, source_locale, target_locale, request_key))
            except TranslationCancelled:
                raise
            except Exception as e:
                if not self.config.fallback:
                    raise
                logger.warning(
                    "Batch %s: %d texts left untranslated (%s)", request_key, len(chunk), e
                )
                await self.plugins.emit(
                    HookKind.ERROR, e, {"texts": [entry.text for entry in chunk], "locale": target_locale}
                )
        return translations

    def cancel_batch(self, request_key: str) -> bool:
        target_task = self._batch_tasks.pop(request_key, None)
        if target_task is None:
            return False
        _, task = target_task
        if task.done():
            return False
        self._cancelled_batches.add(task)
        task.cancel()
        logger.debug("Cancelled batch %s", request_key)
        return True

    async def resolve_pending(self, item: PendingTranslation) -> str:
        """Resolve a queued offline item; raises so the queue keeps failures."""
        return await self._await_shared((item.text, item.source_locale, item.target_locale))

    # Offline and cache

    def is_offline(self) -> bool:
        return not self.offline.is_online

    async def set_online(self, online: bool):
        return await self.offline.set_online(online)

    def get_pending_translations_count(self) -> int:
        return self.offline.get_pending_translations_count()

    def export_cache(self) -> str:
        return self.offline.export_cache()

    def import_cache(self, payload: str) -> int:
        return self.offline.import_cache(payload)

    def clear_cache(self) -> None:
        self.offline.clear_cache()
        logger.debug("Translation cache cleared")
