"""Shared fixtures for the Rustle test suite."""

import pytest
from keyring.errors import KeyringError

from rustle.models import TranslationResponse


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAPI:
    """Stand-in for APIClient.translate_batch.

    ``translate`` maps source text to its translation; unknown text gets a
    ``[locale] text`` rendering. ``failures`` errors are raised before the
    first success.
    """

    def __init__(self, translate=None, failures=None, delay: float = 0.0):
        self.translate = translate or {}
        self.failures = list(failures or [])
        self.delay = delay
        self.calls = []
        self.closed = False

    async def translate_batch(self, entries, source_language, target_language, model=None, request_key=None):
        import asyncio

        self.calls.append({
            "texts": [entry.text for entry in entries],
            "ids": [entry.id for entry in entries],
            "source": source_language,
            "target": target_language,
            "request_key": request_key,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        return TranslationResponse(
            success=True,
            translations={
                entry.id: self.translate.get(entry.text, f"[{target_language}] {entry.text}")
                for entry in entries
            },
        )

    async def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep tests away from real keys, keychains and cache directories."""
    monkeypatch.delenv("RUSTLE_API_KEY", raising=False)
    monkeypatch.delenv("RUSTLE_API_URL", raising=False)
    monkeypatch.delenv("RUSTLE_ENV", raising=False)
    monkeypatch.delenv("GITHUB_ACTIONS", raising=False)
    monkeypatch.setenv("RUSTLE_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setattr("rustle.keys.DEFAULT_CONFIG_DIR", tmp_path / "keys")
    monkeypatch.setattr("rustle.keys.KeyManager._from_keyring", lambda self, service: None)

    def no_keyring(*args):
        raise KeyringError("no keyring in tests")

    monkeypatch.setattr("rustle.keys.keyring.set_password", no_keyring)
    monkeypatch.setattr("rustle.keys.keyring.delete_password", no_keyring)
