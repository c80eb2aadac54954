"""
Project-wide configuration for Rustle.

This module defines the defaults shared by the runtime engine and the
extraction CLI, and the dataclasses that carry them. Environment variables
override the API endpoint, API key, hardened mode and cache location.

Module Contents:
    DEFAULT_API_URL: Production translation API endpoint
    DEFAULT_SOURCE_LANGUAGE / DEFAULT_TARGET_LANGUAGES: Language defaults
    DEFAULT_SRC_DIR / DEFAULT_OUTPUT_DIR: Extraction directories
    CACHE_PREFIX / CACHE_VERSION: Persisted cache namespace and schema
    EngineConfig: Runtime resolution engine settings
    ExtractorConfig: Extraction CLI settings

Example:
    >>> from rustle.config import ExtractorConfig
    >>> config = ExtractorConfig.from_env(target_languages=["es"])
    >>> print(config.output_dir)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

APP_NAME = "Rustle"

# Remote translation API
DEFAULT_API_URL = "https://api.rustle.dev/v1"
API_URL_ENV = "RUSTLE_API_URL"
API_KEY_ENV = "RUSTLE_API_KEY"
ENVIRONMENT_ENV = "RUSTLE_ENV"
CACHE_DIR_ENV = "RUSTLE_CACHE_DIR"
DEFAULT_MODEL = "gpt-3.5-turbo"
REQUEST_TIMEOUT = 30.0  # seconds
MAX_BATCH_SIZE = 100
MAX_TEXT_LENGTH = 10000
RATE_LIMIT_MAX_REQUESTS = 100
RATE_LIMIT_WINDOW_MS = 60_000

# Languages
DEFAULT_SOURCE_LANGUAGE = "en"
DEFAULT_TARGET_LANGUAGES = ["es", "fr", "de", "it", "pt"]

# Extraction
DEFAULT_SRC_DIR = Path("./src")
DEFAULT_OUTPUT_DIR = Path("./public/rustle")
MASTER_FILENAME = "master.json"
LOCALES_DIRNAME = "locales"
MASTER_SCHEMA_VERSION = "1.0.0"
DEFAULT_FILE_PATTERNS = ["**/*.tsx", "**/*.jsx", "**/*.ts", "**/*.js", "**/*.html"]
DEFAULT_EXCLUDE_PATTERNS = ["**/node_modules/**", "**/dist/**", "**/*.test.*", "**/*.spec.*"]

# Cache
CACHE_PREFIX = "rustle_"
CACHE_VERSION = "1.0"
TRANSLATION_MAX_AGE_MS = 7 * 24 * 60 * 60 * 1000  # 7 days
LOCALE_MAX_AGE_MS = 24 * 60 * 60 * 1000  # 24 hours
DEFAULT_CACHE_DIR = Path.home() / ".rustle" / "cache"

# Resolution
MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0  # seconds; delay = 2 ** attempt * base
BATCH_WAIT = 0.1  # seconds of debounce before a batch fires
BATCH_MAX_ITEMS = 50


def get_api_url() -> str:
    """Return the API base URL, honoring the ``RUSTLE_API_URL`` override."""
    return os.getenv(API_URL_ENV) or DEFAULT_API_URL


def is_hardened() -> bool:
    """Whether hardened (production) validation rules apply."""
    return os.getenv(ENVIRONMENT_ENV, "").lower() == "production"


def get_cache_dir() -> Path:
    value = os.getenv(CACHE_DIR_ENV)
    return Path(value) if value else DEFAULT_CACHE_DIR


@dataclass
class EngineConfig:
    """Configuration for the runtime TranslationEngine.

    Attributes:
        source_language: Language the page is authored in
        target_languages: Languages the site is published in
        current_locale: Locale the engine resolves into by default
        api_key: Translation API key (empty disables live API calls)
        api_url: Translation API base URL
        model: AI model requested from the API
        fallback: Return source text instead of raising on failure
        max_retries: Retries after the first failed API attempt
        retry_base_delay: Backoff base in seconds
        batch_wait: Debounce window for collecting concurrent requests
        batch_max_items: Items that force a batch to fire immediately
        locale_dir: Directory holding ``<locale>.json`` locale files
        translation_max_age_ms: Max age of cached single translations
        deactivate: Skip all work and return source text
    """
    source_language: str = DEFAULT_SOURCE_LANGUAGE
    target_languages: list[str] = field(default_factory=lambda: list(DEFAULT_TARGET_LANGUAGES))
    current_locale: str = DEFAULT_SOURCE_LANGUAGE
    api_key: str = ""
    api_url: Optional[str] = None
    model: str = DEFAULT_MODEL
    fallback: bool = True
    max_retries: int = MAX_RETRIES
    retry_base_delay: float = RETRY_BASE_DELAY
    batch_wait: float = BATCH_WAIT
    batch_max_items: int = BATCH_MAX_ITEMS
    locale_dir: Optional[Path] = None
    translation_max_age_ms: int = TRANSLATION_MAX_AGE_MS
    deactivate: bool = False
    debug: bool = False


@dataclass
class ExtractorConfig:
    """Configuration for the extraction CLI."""
    source_language: str = DEFAULT_SOURCE_LANGUAGE
    target_languages: list[str] = field(default_factory=lambda: list(DEFAULT_TARGET_LANGUAGES))
    src_dir: Path = DEFAULT_SRC_DIR
    output_dir: Path = DEFAULT_OUTPUT_DIR
    file_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_FILE_PATTERNS))
    exclude_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    model: str = DEFAULT_MODEL
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    debug: bool = False

    @classmethod
    def from_env(cls, **overrides) -> ExtractorConfig:
        """Build a config whose API settings come from the environment."""
        from rustle.keys import KeyManager

        config = cls(**overrides)
        if config.api_url is None:
            config.api_url = get_api_url()
        if config.api_key is None:
            config.api_key = KeyManager().get_key()
        return config

    @property
    def master_path(self) -> Path:
        return Path(self.output_dir) / MASTER_FILENAME

    @property
    def locales_dir(self) -> Path:
        return Path(self.output_dir) / LOCALES_DIRNAME
