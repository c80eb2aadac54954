"""
Client for the Rustle translation API.

Endpoints:
    POST /translate/batch   translate many entries in one call
    GET  /health            service health
    GET  /models            supported models and languages

The client validates its configuration at construction time, rate limits
locally per API key, attaches bearer auth and a correlation id to every
request, enforces a hard timeout and lets callers cancel a request by key.
It never retries: every failure surfaces as a ``RustleAPIError`` and retry
policy belongs to the caller (see ``rustle.engine``).
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Optional, Sequence

import aiohttp

from rustle.cleaner import clean_batch, clean_translation
from rustle.config import MAX_BATCH_SIZE, REQUEST_TIMEOUT, get_api_url
from rustle.errors import (
    QuotaDetails,
    RateLimitError,
    RustleAPIError,
    TranslationCancelled,
    ValidationError,
)
from rustle.models import BatchEntry, TranslationResponse
from rustle.security import (
    RateLimiter,
    generate_request_id,
    obfuscate_api_key,
    sanitize_text_input,
    validate_api_key,
    validate_locale,
    validate_url,
)

logger = logging.getLogger(__name__)

QUOTA_ERROR_CODES = {"QUOTA_EXCEEDED", "RATE_LIMIT_EXCEEDED"}
CI_ENV_VARS = (
    "CI", "GITHUB_ACTIONS", "GITLAB_CI", "JENKINS_URL",
    "TRAVIS", "CIRCLECI", "BUILDKITE", "DRONE",
)


class APINotifier:
    """Reports quota and API errors once per kind.

    Under CI the message is also emitted as a GitHub Actions annotation so
    it shows up on the workflow run.
    """

    def __init__(self):
        self._history: set[str] = set()
        self.is_ci = any(os.getenv(var) for var in CI_ENV_VARS)

    def notify_quota_exceeded(self, error: RustleAPIError) -> None:
        limit = error.quota_details.limit if error.quota_details else None
        key = f"quota-exceeded-{limit or 'unknown'}"
        if key in self._history:
            return
        self._history.add(key)

        lines = ["Rustle quota exceeded."]
        if error.quota_details:
            lines.append(f"Quota limit: {error.quota_details.limit or 'unknown'}")
            lines.append(f"Used: {error.quota_details.used or 'unknown'}")
            if error.quota_details.reset_date:
                lines.append(f"Resets: {error.quota_details.reset_date}")
        lines.append("Check your usage at https://rustle.dev/dashboard or upgrade at https://rustle.dev/pricing")
        self._emit("\n".join(lines))

    def notify_api_error(self, error: RustleAPIError, context: Optional[str] = None) -> None:
        key = f"api-error-{error.code or error.status}-{context or 'general'}"
        if key in self._history:
            return
        self._history.add(key)

        lines = [f"Rustle API error: {error.message}"]
        if context:
            lines.append(f"Context: {context}")
        if error.code:
            lines.append(f"Code: {error.code}")
        if error.status:
            lines.append(f"Status: {error.status}")
        self._emit("\n".join(lines))

    def _emit(self, message: str) -> None:
        logger.error(message)
        if os.getenv("GITHUB_ACTIONS"):
            print(f"::error title=Rustle API Error::{message.replace(chr(10), '%0A')}")

    def clear_history(self) -> None:
        self._history.clear()


class APIClient:
    """Async client for the translation API.

    Usage:
        async with APIClient(api_key="rk_live_...") as client:
            text = await client.translate_single("Hello", "en", "es")

    Raises:
        ValidationError: on construction, for a malformed key or URL
    """

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: float = REQUEST_TIMEOUT,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        notifier: Optional[APINotifier] = None,
        hardened: Optional[bool] = None,
    ):
        self.api_key = validate_api_key(api_key)
        self.base_url = validate_url(base_url or get_api_url(), hardened=hardened)
        self.timeout = timeout
        self.rate_limiter = rate_limiter or RateLimiter()
        self.notifier = notifier or APINotifier()
        self._session: Optional[aiohttp.ClientSession] = None
        self._active: dict[str, asyncio.Task] = {}
        self._cancelled: set[asyncio.Task] = set()

        if not self.base_url.startswith("https://"):
            logger.warning("API calls should be made over HTTPS in production (%s)", self.base_url)
        logger.debug("API client initialized with key %s", obfuscate_api_key(self.api_key))

    async def __aenter__(self) -> APIClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        """Lazy initialization of the HTTP session (needs a running loop)."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        self.cancel_all_requests()
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def cancel_request(self, request_key: str) -> bool:
        """Abort the in-flight request registered under ``request_key``."""
        task = self._active.pop(request_key, None)
        if task is None or task.done():
            return False
        self._cancelled.add(task)
        task.cancel()
        return True

    def cancel_all_requests(self) -> None:
        for key in list(self._active):
            self.cancel_request(key)

    @property
    def active_request_keys(self) -> list[str]:
        return list(self._active)

    async def _request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[dict[str, Any]] = None,
        request_key: Optional[str] = None,
    ) -> Any:
        request_id = generate_request_id()

        if not self.rate_limiter.is_allowed(self.api_key):
            raise RateLimitError()

        # A new request under the same key supersedes the previous one
        if request_key:
            self.cancel_request(request_key)
        key = request_key or request_id

        task = asyncio.ensure_future(self._send(method, endpoint, payload, request_id))
        self._active[key] = task
        try:
            return await task
        except asyncio.CancelledError:
            if task in self._cancelled:
                raise TranslationCancelled(f"Request {key} cancelled", request_id=request_id) from None
            raise
        finally:
            self._cancelled.discard(task)
            if self._active.get(key) is task:
                del self._active[key]

    async def _send(
        self,
        method: str,
        endpoint: str,
        payload: Optional[dict[str, Any]],
        request_id: str,
    ) -> Any:
        url = f"{self.base_url}{endpoint}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            "X-Request-ID": request_id,
        }
        session = self._get_session()
        try:
            async with session.request(
                method,
                url,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status >= 400:
                    raise await self._error_from_response(response, endpoint, request_id)
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise RustleAPIError(
                        f"Invalid JSON response from {endpoint}",
                        status=response.status,
                        request_id=request_id,
                    ) from e
        except asyncio.TimeoutError:
            raise RustleAPIError(
                f"Request timed out after {self.timeout}s",
                code="TIMEOUT",
                request_id=request_id,
            ) from None
        except aiohttp.ClientError as e:
            raise RustleAPIError(f"Network error: {e}", code="NETWORK_ERROR", request_id=request_id) from e

    async def _error_from_response(
        self,
        response: aiohttp.ClientResponse,
        endpoint: str,
        request_id: str,
    ) -> RustleAPIError:
        try:
            error_data = await response.json(content_type=None)
        except ValueError:
            error_data = {}
        if not isinstance(error_data, dict):
            error_data = {}

        code = error_data.get("code")
        is_quota = response.status == 429 or code in QUOTA_ERROR_CODES
        error = RustleAPIError(
            error_data.get("message") or f"HTTP {response.status}: {response.reason}",
            status=response.status,
            code=code,
            is_quota_exceeded=is_quota,
            quota_details=QuotaDetails.from_payload(error_data.get("quota")),
            request_id=request_id,
        )
        if is_quota:
            self.notifier.notify_quota_exceeded(error)
        else:
            self.notifier.notify_api_error(error, endpoint)
        return error

    async def translate_batch(
        self,
        entries: Sequence[BatchEntry],
        source_language: str,
        target_language: str,
        model: Optional[str] = None,
        request_key: Optional[str] = None,
    ) -> TranslationResponse:
        """Translate up to ``MAX_BATCH_SIZE`` entries in one request.

        Every returned translation is passed through ``clean_translation``.

        Raises:
            ValidationError: empty/oversized batch, bad locale, oversized text
            RustleAPIError: transport failure or non-2xx response
            TranslationCancelled: ``request_key`` was cancelled
        """
        if not entries:
            raise ValidationError("No entries provided for translation")
        if len(entries) > MAX_BATCH_SIZE:
            raise ValidationError(f"Too many entries (max {MAX_BATCH_SIZE} per batch)")
        validate_locale(source_language)
        validate_locale(target_language)

        payload: dict[str, Any] = {
            "entries": [
                BatchEntry(
                    id=entry.id,
                    text=sanitize_text_input(entry.text),
                    tags=entry.tags,
                    file=entry.file,
                ).to_dict()
                for entry in entries
            ],
            "sourceLanguage": source_language,
            "targetLanguage": target_language,
        }
        if model:
            payload["model"] = model

        data = await self._request("POST", "/translate/batch", payload, request_key)
        if not isinstance(data, dict):
            raise RustleAPIError("Malformed batch response")

        response = TranslationResponse.from_dict(data)
        if response.success:
            response.translations = clean_batch(response.translations)
        return response

    async def translate_single(
        self,
        text: str,
        source_language: str,
        target_language: str,
        model: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> str:
        """Translate one text through a one-entry batch."""
        context = context or {}
        entry = BatchEntry(
            id="single",
            text=sanitize_text_input(text),
            tags=list(context.get("tags") or []),
            file=context.get("file"),
        )
        response = await self.translate_batch([entry], source_language, target_language, model)
        if not response.success:
            raise RustleAPIError(response.error or "Translation failed")
        translation = response.translations.get("single")
        if not translation:
            raise RustleAPIError("No translation returned")
        return clean_translation(translation)

    async def health_check(self) -> dict[str, Any]:
        return await self._request("GET", "/health")

    async def get_supported_models(self) -> dict[str, Any]:
        return await self._request("GET", "/models")
