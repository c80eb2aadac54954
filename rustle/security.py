"""
Input validation and request hygiene for the translation API client.

Validators raise ``ValidationError`` so bad configuration or input fails
before any network call. ``RateLimiter`` is a sliding-window limiter keyed
by API key.
"""

from __future__ import annotations

import ipaddress
import re
import secrets
import time
from typing import Callable, Optional
from urllib.parse import urlparse

from rustle.config import (
    MAX_TEXT_LENGTH,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_MS,
    is_hardened,
)
from rustle.errors import ValidationError

API_KEY_MIN_LENGTH = 10
API_KEY_MAX_LENGTH = 200

_LOCALE = re.compile(r"^[a-z]{2}(-[A-Z]{2})?$")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def validate_api_key(api_key: Optional[str]) -> str:
    """Return ``api_key`` or raise ValidationError describing the problem."""
    if not api_key or not isinstance(api_key, str):
        raise ValidationError("API key is required")
    if not api_key.strip():
        raise ValidationError("API key cannot be empty")
    if len(api_key) < API_KEY_MIN_LENGTH:
        raise ValidationError(f"API key too short (minimum {API_KEY_MIN_LENGTH} characters)")
    if len(api_key) > API_KEY_MAX_LENGTH:
        raise ValidationError(f"API key too long (maximum {API_KEY_MAX_LENGTH} characters)")
    if any(ch.isspace() for ch in api_key):
        raise ValidationError("API key contains invalid characters")
    return api_key


def _is_private_host(hostname: str) -> bool:
    if hostname in ("localhost", "localhost.localdomain"):
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local


def validate_url(url: str, hardened: Optional[bool] = None) -> str:
    """Validate the API base URL.

    Only http/https are accepted. In hardened mode (``RUSTLE_ENV=production``)
    localhost and private-network hosts are rejected as well.
    """
    if not url or not isinstance(url, str):
        raise ValidationError("API URL is required")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValidationError("Only HTTP and HTTPS URLs are allowed")
    if not parsed.hostname:
        raise ValidationError("Invalid URL format")
    if hardened is None:
        hardened = is_hardened()
    if hardened and _is_private_host(parsed.hostname):
        raise ValidationError("Private IP addresses not allowed in production")
    return url.rstrip("/")


def validate_locale(locale: str) -> str:
    if not locale or not isinstance(locale, str):
        raise ValidationError("Locale is required")
    if not _LOCALE.match(locale):
        raise ValidationError(f"Invalid locale format {locale!r} (expected: en, en-US, etc.)")
    return locale


def sanitize_text_input(text: str) -> str:
    """Reject oversized text and drop control characters (newlines and tabs kept)."""
    if not isinstance(text, str):
        raise ValidationError("Input must be a string")
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(f"Input text too long (max {MAX_TEXT_LENGTH} characters)")
    return _CONTROL_CHARS.sub("", text)


def obfuscate_api_key(api_key: str) -> str:
    """Mask an API key for logging, e.g. ``sk-1********wxyz``."""
    if not api_key or len(api_key) < 8:
        return "****"
    return f"{api_key[:4]}{'*' * (len(api_key) - 8)}{api_key[-4:]}"


def generate_request_id() -> str:
    """Return a correlation id: base36 millisecond timestamp + random suffix."""
    millis = int(time.time() * 1000)
    stamp = ""
    while millis:
        millis, rem = divmod(millis, 36)
        stamp = _BASE36[rem] + stamp
    return f"{stamp}-{secrets.token_hex(5)}"


class RateLimiter:
    """Sliding-window limiter: at most ``max_requests`` per ``window_ms``."""

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_ms: int = RATE_LIMIT_WINDOW_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._clock = clock
        self._requests: dict[str, list[float]] = {}

    def _recent(self, identifier: str, now: float) -> list[float]:
        window = self.window_ms / 1000
        return [t for t in self._requests.get(identifier, []) if now - t < window]

    def is_allowed(self, identifier: str) -> bool:
        """Record a request for ``identifier`` if the window has room."""
        now = self._clock()
        recent = self._recent(identifier, now)
        if len(recent) >= self.max_requests:
            self._requests[identifier] = recent
            return False
        recent.append(now)
        self._requests[identifier] = recent
        return True

    def get_remaining(self, identifier: str) -> int:
        return max(0, self.max_requests - len(self._recent(identifier, self._clock())))
