"""
Tests for the data model, validation helpers and key storage.

Run with: pytest tests/test_models.py -v
"""

import json
import stat

import pytest

from rustle.errors import ValidationError
from rustle.keys import KeyManager
from rustle.models import (
    BatchEntry,
    EntryStatus,
    MasterRecord,
    SourceLocation,
    TranslationEntry,
    TranslationResponse,
)
from rustle.security import (
    generate_request_id,
    obfuscate_api_key,
    sanitize_text_input,
    validate_locale,
)


def make_entry(**overrides):
    values = dict(
        fingerprint="05e918d2",
        source="Hello",
        file="App.tsx",
        loc=SourceLocation(start=10, end=24),
        content_hash="abc123def456",
    )
    values.update(overrides)
    return TranslationEntry(**values)


class TestTranslationEntry:
    """Tests for per-locale freshness."""

    def test_missing_translation(self):
        assert make_entry().needs_translation("es")

    def test_current_translation(self):
        entry = make_entry(translations={"es": "Hola"}, translated_versions={"es": 1})
        assert not entry.needs_translation("es")

    def test_outdated_translation(self):
        entry = make_entry(version=2, translations={"es": "Hola"}, translated_versions={"es": 1})
        assert entry.needs_translation("es")

    def test_legacy_entry_without_versions(self):
        """Entries from older master files fall back to their status."""
        assert not make_entry(translations={"es": "Hola"}).needs_translation("es")
        assert make_entry(translations={"es": "Hola"}, status=EntryStatus.UPDATED).needs_translation("es")


class TestMasterRecord:
    """Tests for the master file format."""

    def test_save_and_load(self, tmp_path):
        entry = make_entry(translations={"es": "Hola"}, tags=["h1"], status=EntryStatus.UPDATED, version=3)
        master = MasterRecord("en", ["es", "fr"], {entry.fingerprint: entry})
        path = tmp_path / "out" / "master.json"

        master.save(path)
        loaded = MasterRecord.load(path)

        assert loaded.entries[entry.fingerprint] == entry
        assert loaded.target_languages == ["es", "fr"]

    def test_camel_case_keys(self, tmp_path):
        entry = make_entry()
        path = tmp_path / "master.json"
        MasterRecord("en", ["es"], {entry.fingerprint: entry}).save(path)

        data = json.loads(path.read_text(encoding="utf-8"))
        assert set(data["metadata"]) == {"version", "sourceLanguage", "targetLanguages", "lastUpdated", "totalEntries"}
        stored = data["entries"][entry.fingerprint]
        assert stored["contentHash"] == "abc123def456"
        assert stored["loc"] == {"start": 10, "end": 24}
        assert stored["status"] == "new"


class TestWireTypes:
    def test_context_only_with_file_and_tags(self):
        assert BatchEntry(id="t0", text="Hi").to_dict() == {"id": "t0", "text": "Hi"}
        assert BatchEntry(id="t0", text="Hi", tags=["p"], file="a.html").to_dict()["context"] == {
            "tags": ["p"], "file": "a.html",
        }

    def test_response_ignores_non_strings(self):
        response = TranslationResponse.from_dict({"success": True, "translations": {"t0": "Hola", "t1": None}})
        assert response.translations == {"t0": "Hola"}


class TestSecurityHelpers:
    """Tests for validators and request helpers."""

    @pytest.mark.parametrize("locale", ["en", "es", "pt-BR", "zh-CN"])
    def test_valid_locales(self, locale):
        assert validate_locale(locale) == locale

    @pytest.mark.parametrize("locale", ["", "EN", "english", "pt_BR", "pt-br"])
    def test_invalid_locales(self, locale):
        with pytest.raises(ValidationError):
            validate_locale(locale)

    def test_sanitize_drops_control_chars(self):
        assert sanitize_text_input("Hel\x00lo\nworld") == "Hello\nworld"

    def test_sanitize_rejects_oversized(self):
        with pytest.raises(ValidationError):
            sanitize_text_input("x" * 10001)

    def test_obfuscate(self):
        assert obfuscate_api_key("rk_live_abcdefgh1234") == "rk_l************1234"
        assert obfuscate_api_key("short") == "****"

    def test_request_ids_unique(self):
        ids = {generate_request_id() for _ in range(50)}
        assert len(ids) == 50


class TestKeyManager:
    """Tests for API key storage."""

    def test_env_wins(self, tmp_path, monkeypatch):
        km = KeyManager(config_dir=tmp_path, use_keyring=False)
        km.set_key("rk_from_config_123")
        monkeypatch.setenv("RUSTLE_API_KEY", "rk_from_env_12345")

        assert km.get_key() == "rk_from_env_12345"
        assert km.get_key_info().source == "env"

    def test_config_file_fallback(self, tmp_path):
        km = KeyManager(config_dir=tmp_path, use_keyring=False)

        assert km.set_key("rk_from_config_123") == "config"
        assert km.get_key() == "rk_from_config_123"
        assert stat.S_IMODE((tmp_path / "keys.json").stat().st_mode) == 0o600

    def test_delete(self, tmp_path):
        km = KeyManager(config_dir=tmp_path, use_keyring=False)
        km.set_key("rk_from_config_123")

        assert km.delete_key()
        assert km.get_key() is None
        assert not km.get_key_info().is_set
