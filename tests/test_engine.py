"""
Tests for the translation resolution engine.

The API is replaced by FakeAPI (see conftest) and backoff sleeps are
recorded instead of awaited.

Run with: pytest tests/test_engine.py -v
"""

import asyncio
import json

import pytest

from rustle.api import APIClient
from rustle.config import EngineConfig
from rustle.engine import TranslationEngine
from rustle.errors import CacheImportError, RateLimitError, RustleAPIError, TranslationCancelled
from rustle.fingerprint import fingerprint
from rustle.plugins import HookKind, Plugin
from rustle.storage import CacheStore, MemoryStorageAdapter

from conftest import FakeAPI


def make_engine(api=None, sleeps=None, **overrides):
    overrides.setdefault("current_locale", "es")
    overrides.setdefault("batch_wait", 0.01)
    config = EngineConfig(**overrides)

    async def sleep(delay):
        if sleeps is not None:
            sleeps.append(delay)

    return TranslationEngine(config, cache=CacheStore(MemoryStorageAdapter()), api=api, sleep=sleep)


def server_error():
    return RustleAPIError("Internal Server Error", status=500)


class TestWaterfall:
    """Tests for the order in which sources are tried."""

    def test_source_locale_returns_text(self):
        api = FakeAPI()
        engine = make_engine(api)
        assert asyncio.run(engine.translate("Hello", "en")) == "Hello"
        assert api.calls == []

    def test_deactivated_returns_text(self):
        api = FakeAPI()
        engine = make_engine(api, deactivate=True)
        assert asyncio.run(engine.translate("Hello", "es")) == "Hello"
        assert api.calls == []

    def test_static_by_fingerprint(self):
        """Locale data keyed by fingerprint wins over everything else."""
        api = FakeAPI()
        engine = make_engine(api)
        engine.add_locale_data("es", {fingerprint("Welcome"): "Bienvenido"})

        assert asyncio.run(engine.translate("  welcome ")) == "Bienvenido"
        assert api.calls == []

    def test_static_by_literal_text(self):
        engine = make_engine(FakeAPI())
        engine.add_locale_data("es", {"Sign in": "Iniciar sesión"})
        assert asyncio.run(engine.translate("Sign in")) == "Iniciar sesión"

    def test_locale_file_loaded_on_init(self, tmp_path):
        (tmp_path / "es.json").write_text(
            json.dumps({fingerprint("Welcome"): "Bienvenido"}), encoding="utf-8"
        )
        api = FakeAPI()
        engine = make_engine(api, locale_dir=tmp_path)

        async def scenario():
            await engine.init()
            return await engine.translate("Welcome")

        assert asyncio.run(scenario()) == "Bienvenido"
        assert api.calls == []

    def test_cache_hit(self):
        hits = []
        api = FakeAPI()
        engine = make_engine(api)
        engine.use(Plugin("observer", {HookKind.CACHE_HIT: lambda *args: hits.append(args)}))
        engine.cache.cache_translation("Hello", "en", "es", "Hola")

        assert asyncio.run(engine.translate("Hello")) == "Hola"
        assert api.calls == []
        assert hits == [("Hello", "es", "Hola")]

    def test_live_result_is_cleaned_and_cached(self):
        api = FakeAPI({"Hello": '"Hola"'})
        engine = make_engine(api)

        assert asyncio.run(engine.translate("Hello")) == "Hola"
        assert engine.cache.get_cached_translation("Hello", "en", "es") == "Hola"

    def test_second_call_served_from_cache(self):
        api = FakeAPI({"Hello": "Hola"})
        engine = make_engine(api)

        async def scenario():
            await engine.translate("Hello")
            return await engine.translate("Hello")

        assert asyncio.run(scenario()) == "Hola"
        assert len(api.calls) == 1

    def test_no_api_key_falls_back(self):
        engine = make_engine(api=None)
        assert engine.api is None
        assert asyncio.run(engine.translate("Hello")) == "Hello"


class TestDeduplication:
    """Tests for in-flight sharing and batching."""

    def test_concurrent_identical_requests_share_one_call(self):
        api = FakeAPI({"Hello": "Hola"})
        engine = make_engine(api)

        async def scenario():
            return await asyncio.gather(engine.translate("Hello"), engine.translate("Hello"))

        assert asyncio.run(scenario()) == ["Hola", "Hola"]
        assert len(api.calls) == 1
        assert api.calls[0]["texts"] == ["Hello"]

    def test_concurrent_texts_batched(self):
        """Different texts inside one debounce window go out as one batch."""
        api = FakeAPI({"Hello": "Hola", "Goodbye": "Adiós"})
        engine = make_engine(api)

        async def scenario():
            return await asyncio.gather(engine.translate("Hello"), engine.translate("Goodbye"))

        assert asyncio.run(scenario()) == ["Hola", "Adiós"]
        assert len(api.calls) == 1
        assert api.calls[0]["ids"] == ["t0", "t1"]

    def test_max_items_fires_immediately(self):
        api = FakeAPI()
        engine = make_engine(api, batch_wait=10, batch_max_items=2)

        async def scenario():
            return await asyncio.wait_for(
                asyncio.gather(engine.translate("Hello"), engine.translate("Goodbye")),
                timeout=2,
            )

        asyncio.run(scenario())
        assert len(api.calls) == 1

    def test_inflight_map_cleared(self):
        """The in-flight entry is removed on success and on failure."""
        api = FakeAPI(failures=[RateLimitError()])
        engine = make_engine(api)

        asyncio.run(engine.translate("Hello"))
        assert engine._inflight == {}


class TestRetry:
    """Tests for exponential backoff."""

    def test_retries_then_succeeds(self):
        sleeps = []
        api = FakeAPI({"Hello": "Hola"}, failures=[server_error(), server_error()])
        engine = make_engine(api, sleeps)

        assert asyncio.run(engine.translate("Hello")) == "Hola"
        assert sleeps == [1.0, 2.0]
        assert len(api.calls) == 3

    def test_exhausted_falls_back_to_source(self):
        errors = []
        sleeps = []
        api = FakeAPI(failures=[server_error() for _ in range(4)])
        engine = make_engine(api, sleeps)
        engine.use(Plugin("errors", {HookKind.ERROR: lambda error, context: errors.append(error)}))

        assert asyncio.run(engine.translate("Hello")) == "Hello"
        assert sleeps == [1.0, 2.0, 4.0]
        assert len(api.calls) == 4
        assert len(errors) == 1

    def test_quota_not_retried(self):
        """A quota error is surfaced at once instead of retried."""
        sleeps = []
        api = FakeAPI(failures=[RustleAPIError("quota", status=429, is_quota_exceeded=True)])
        engine = make_engine(api, sleeps)

        assert asyncio.run(engine.translate("Hello")) == "Hello"
        assert sleeps == []
        assert len(api.calls) == 1

    def test_fallback_disabled_raises(self):
        api = FakeAPI(failures=[RateLimitError()])
        engine = make_engine(api, fallback=False)

        with pytest.raises(RateLimitError) as exc_info:
            asyncio.run(engine.translate("Hello"))
        assert exc_info.value.is_quota_exceeded

    def test_region_falls_back_to_base_language(self):
        api = FakeAPI(failures=[RateLimitError()])
        engine = make_engine(api, current_locale="es-MX")
        engine.add_locale_data("es", {fingerprint("Hello"): "Hola"})

        assert asyncio.run(engine.translate("Hello")) == "Hola"


class TestCancellation:
    """Tests for locale switches and batch cancellation."""

    def test_locale_switch_cancels_queued(self):
        changes = []
        api = FakeAPI()
        engine = make_engine(api, batch_wait=0.2)
        engine.use(Plugin("locale", {HookKind.LOCALE_CHANGE: lambda new, old: changes.append((new, old))}))

        async def scenario():
            pending = asyncio.ensure_future(engine.translate("Hello"))
            await asyncio.sleep(0.01)
            await engine.set_locale("fr")
            with pytest.raises(TranslationCancelled):
                await pending

        asyncio.run(scenario())
        assert api.calls == []
        assert changes == [("fr", "es")]
        assert engine.current_locale == "fr"

    def test_locale_switch_cancels_inflight(self):
        api = FakeAPI(delay=0.5)
        engine = make_engine(api)

        async def scenario():
            pending = asyncio.ensure_future(engine.translate("Hello"))
            await asyncio.sleep(0.05)
            await engine.set_locale("fr")
            with pytest.raises(TranslationCancelled) as exc_info:
                await pending
            return exc_info.value

        assert asyncio.run(scenario()).is_cancelled
        assert len(api.calls) == 1

    def test_other_locales_unaffected(self):
        api = FakeAPI({"Hello": "Bonjour"})
        engine = make_engine(api, batch_wait=0.05)

        async def scenario():
            pending = asyncio.ensure_future(engine.translate("Hello", "fr"))
            await asyncio.sleep(0.01)
            await engine.set_locale("de")
            return await pending

        assert asyncio.run(scenario()) == "Bonjour"

    def test_cancel_batch(self):
        api = FakeAPI(delay=0.5)
        engine = make_engine(api)

        async def scenario():
            pending = asyncio.ensure_future(
                engine.translate_batch(["Hello", "Goodbye"], "es", request_key="page")
            )
            await asyncio.sleep(0.05)
            assert engine.cancel_batch("page")
            with pytest.raises(TranslationCancelled):
                await pending

        asyncio.run(scenario())

    def test_destroy_cancels_pending_translation(self):
        """Callers waiting on a live request see TranslationCancelled on destroy."""
        api = FakeAPI(delay=0.5)
        engine = make_engine(api)

        async def scenario():
            pending = asyncio.ensure_future(engine.translate("Hello"))
            await asyncio.sleep(0.05)
            await engine.destroy()
            with pytest.raises(TranslationCancelled):
                await pending

        asyncio.run(scenario())
        assert api.closed

    def test_destroy_before_batch_fires(self):
        engine = make_engine(FakeAPI(), batch_wait=0.5)

        async def scenario():
            pending = asyncio.ensure_future(engine.translate("Hello"))
            await asyncio.sleep(0.01)
            await engine.destroy()
            with pytest.raises(TranslationCancelled):
                await pending

        asyncio.run(scenario())

    def test_cancel_unknown_batch(self):
        assert not make_engine(FakeAPI()).cancel_batch("missing")


class TestTranslateBatch:
    """Tests for many-text resolution."""

    def test_mixes_static_cache_and_api(self):
        api = FakeAPI({"Hello": "Hola", "Goodbye": "Adiós"})
        engine = make_engine(api)
        engine.add_locale_data("es", {"Welcome": "Bienvenido"})
        engine.cache.cache_translation("Thanks", "en", "es", "Gracias")

        result = asyncio.run(engine.translate_batch(["Welcome", "Thanks", "Hello", "Goodbye", "Hello"]))

        assert result == {"Welcome": "Bienvenido", "Thanks": "Gracias", "Hello": "Hola", "Goodbye": "Adiós"}
        assert len(api.calls) == 1
        assert api.calls[0]["texts"] == ["Hello", "Goodbye"]

    def test_retries_apply(self):
        sleeps = []
        api = FakeAPI({"Hello": "Hola"}, failures=[server_error()])
        engine = make_engine(api, sleeps)

        assert asyncio.run(engine.translate_batch(["Hello"])) == {"Hello": "Hola"}
        assert sleeps == [1.0]

    def test_failure_falls_back(self):
        api = FakeAPI(failures=[RateLimitError()])
        engine = make_engine(api)

        assert asyncio.run(engine.translate_batch(["Hello"])) == {"Hello": "Hello"}

    def test_large_batch_split_into_capped_requests(self, monkeypatch):
        """More texts than one request may carry go out in several requests."""
        client = APIClient("rk_test_0123456789", "https://api.example.com")
        sizes = []

        async def fake_request(method, endpoint, payload=None, request_key=None):
            sizes.append(len(payload["entries"]))
            return {
                "success": True,
                "translations": {e["id"]: f"es:{e['text']}" for e in payload["entries"]},
            }

        monkeypatch.setattr(client, "_request", fake_request)
        engine = make_engine(client)
        texts = [f"Sentence number {i}" for i in range(150)]

        result = asyncio.run(engine.translate_batch(texts, "es"))

        assert sizes == [100, 50]
        assert result == {text: f"es:{text}" for text in texts}

    def test_failed_slice_keeps_other_results(self):
        api = FakeAPI(failures=[RateLimitError()])
        engine = make_engine(api)
        texts = [f"Line {i}" for i in range(120)]

        result = asyncio.run(engine.translate_batch(texts, "es"))

        assert len(api.calls) == 2
        assert result["Line 0"] == "Line 0"
        assert result["Line 119"] == "[es] Line 119"


class TestOffline:
    """Tests for offline fallback and resubmission."""

    def test_offline_returns_source_and_queues_once(self):
        api = FakeAPI()
        engine = make_engine(api)

        async def scenario():
            await engine.set_online(False)
            return await engine.translate("Hello")

        assert asyncio.run(scenario()) == "Hello"
        assert engine.is_offline()
        assert engine.get_pending_translations_count() == 1
        assert api.calls == []

    def test_offline_cache_still_served(self):
        engine = make_engine(FakeAPI())
        engine.cache.cache_translation("Hello", "en", "es", "Hola")

        async def scenario():
            await engine.set_online(False)
            return await engine.translate("Hello")

        assert asyncio.run(scenario()) == "Hola"
        assert engine.get_pending_translations_count() == 0

    def test_reconnect_resolves_queue(self):
        api = FakeAPI({"Hello": "Hola"})
        engine = make_engine(api)

        async def scenario():
            await engine.set_online(False)
            await engine.translate("Hello")
            return await engine.set_online(True)

        report = asyncio.run(scenario())

        assert report.resolved == 1
        assert engine.get_pending_translations_count() == 0
        assert engine.cache.get_cached_translation("Hello", "en", "es") == "Hola"

    def test_reconnect_sends_one_batch(self):
        """Every queued text is resolved by a single API call."""
        api = FakeAPI()
        engine = make_engine(api)
        texts = [f"Item {i}" for i in range(5)]

        async def scenario():
            await engine.set_online(False)
            for text in texts:
                await engine.translate(text)
            return await engine.set_online(True)

        report = asyncio.run(scenario())

        assert report.resolved == 5
        assert len(api.calls) == 1
        assert sorted(api.calls[0]["texts"]) == texts

    def test_reconnect_shares_inflight_request(self):
        """A translate call racing the queue sync does not duplicate the request."""
        api = FakeAPI({"Hello": "Hola"})
        engine = make_engine(api)

        async def scenario():
            await engine.set_online(False)
            await engine.translate("Hello")
            return await asyncio.gather(engine.set_online(True), engine.translate("Hello"))

        report, translation = asyncio.run(scenario())

        assert translation == "Hola"
        assert report.resolved == 1
        assert len(api.calls) == 1
        assert api.calls[0]["texts"] == ["Hello"]

    def test_reconnect_failure_keeps_item(self):
        api = FakeAPI(failures=[RateLimitError()])
        engine = make_engine(api)

        async def scenario():
            await engine.set_online(False)
            await engine.translate("Hello")
            return await engine.set_online(True)

        report = asyncio.run(scenario())

        assert report.failed == ["Hello_en_es"]
        assert engine.get_pending_translations_count() == 1

    def test_preload_on_init(self, tmp_path):
        """init() copies static data into the cache for later offline use."""
        (tmp_path / "es.json").write_text(json.dumps({fingerprint("Hello"): "Hola"}), encoding="utf-8")
        engine = make_engine(FakeAPI(), locale_dir=tmp_path)
        asyncio.run(engine.init())

        fresh = TranslationEngine(EngineConfig(current_locale="es"), cache=engine.cache, api=FakeAPI())

        async def scenario():
            await fresh.set_online(False)
            return await fresh.translate("Hello")

        assert asyncio.run(scenario()) == "Hola"


class TestPlugins:
    """Tests for plugin hooks."""

    def test_before_and_after_chain(self):
        api = FakeAPI({"hello": "hola"})
        engine = make_engine(api)
        engine.use(Plugin("lower", {HookKind.BEFORE_TRANSLATE: lambda text, locale: text.lower()}))
        engine.use(Plugin("bang", {HookKind.AFTER_TRANSLATE: lambda t, original, locale: f"{t}!"}))

        assert asyncio.run(engine.translate("Hello")) == "hola!"
        assert api.calls[0]["texts"] == ["hello"]

    def test_async_hooks(self):
        misses = []

        async def on_miss(text, locale):
            misses.append((text, locale))

        engine = make_engine(FakeAPI({"Hello": "Hola"}))
        engine.use(Plugin("async", {HookKind.CACHE_MISS: on_miss}))

        asyncio.run(engine.translate("Hello"))
        assert misses == [("Hello", "es")]

    def test_failing_hook_isolated(self):
        """A raising hook is logged and skipped."""
        def broken(*args):
            raise RuntimeError("plugin bug")

        engine = make_engine(FakeAPI({"Hello": "Hola"}))
        engine.use(Plugin("broken", {
            HookKind.BEFORE_TRANSLATE: broken,
            HookKind.AFTER_TRANSLATE: broken,
            HookKind.CACHE_MISS: broken,
        }))

        assert asyncio.run(engine.translate("Hello")) == "Hola"

    def test_use_unuse(self):
        engine = make_engine(FakeAPI())
        plugin = Plugin("p", {HookKind.ERROR: lambda *a: None})
        engine.use(plugin)
        assert engine.get_plugin("p") is plugin
        assert engine.unuse("p")
        assert engine.get_plugin("p") is None
        assert engine.plugins.handlers(HookKind.ERROR) == []

    def test_init_and_destroy_hooks(self):
        events = []
        api = FakeAPI()
        engine = make_engine(api)
        engine.use(Plugin("life", {
            HookKind.INIT: lambda e: events.append("init"),
            HookKind.DESTROY: lambda e: events.append("destroy"),
        }))

        async def scenario():
            await engine.init()
            await engine.destroy()

        asyncio.run(scenario())
        assert events == ["init", "destroy"]
        assert api.closed


class TestCacheManagement:
    def test_export_import_clear(self):
        engine = make_engine(FakeAPI())
        engine.cache.cache_translation("Hello", "en", "es", "Hola")
        exported = engine.export_cache()

        engine.clear_cache()
        assert engine.cache.get_cached_translation("Hello", "en", "es") is None

        assert engine.import_cache(exported) == 1
        assert engine.cache.get_cached_translation("Hello", "en", "es") == "Hola"

    def test_bad_cache_entry_does_not_break_translate(self):
        api = FakeAPI({"Hi": "Hola"})
        engine = make_engine(api)
        key = engine.cache.translation_key("Hi", "en", "es")
        bad = json.dumps({"data": "Hola", "timestamp": "yesterday", "version": "1.0"})

        with pytest.raises(CacheImportError):
            engine.import_cache(json.dumps({key: bad}))

        engine.cache.adapter.set_item(key, bad)
        assert asyncio.run(engine.translate("Hi")) == "Hola"
        assert len(api.calls) == 1
