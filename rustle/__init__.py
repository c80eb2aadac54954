"""
Rustle: fingerprinting, caching and translation resolution for web pages.

A build-time extractor assigns every translatable fragment a stable content
fingerprint and writes a master record plus per-locale files; at runtime the
translation engine resolves text through static data, a persistent cache,
an offline queue and finally the live translation API.
"""

__version__ = "0.1.0"

from rustle.config import EngineConfig, ExtractorConfig
from rustle.engine import TranslationEngine
from rustle.errors import (
    CacheImportError,
    RateLimitError,
    RustleAPIError,
    RustleError,
    TranslationCancelled,
    ValidationError,
)
from rustle.extractor import Extractor, ExtractionReport
from rustle.fingerprint import content_hash, fingerprint, is_translatable_text, normalize
from rustle.plugins import HookKind, Plugin

__all__ = [
    "EngineConfig",
    "ExtractorConfig",
    "TranslationEngine",
    "Extractor",
    "ExtractionReport",
    "fingerprint",
    "content_hash",
    "normalize",
    "is_translatable_text",
    "HookKind",
    "Plugin",
    "RustleError",
    "RustleAPIError",
    "RateLimitError",
    "TranslationCancelled",
    "ValidationError",
    "CacheImportError",
]
