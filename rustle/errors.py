"""
Error taxonomy for Rustle.

- ValidationError: bad input caught before any network call (never retried)
- RustleAPIError: transport failures, timeouts and non-2xx responses
- RateLimitError: local sliding-window limiter rejected the call
- TranslationCancelled: work deliberately cancelled (use fallback, not report)
- CacheImportError: malformed cache backup
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


class RustleError(Exception):
    """Base class for all Rustle errors."""


class ValidationError(RustleError, ValueError):
    """Input rejected before any network call."""


class CacheImportError(RustleError, ValueError):
    """Cache backup data is not a valid cache export."""


@dataclass
class QuotaDetails:
    limit: Optional[int] = None
    used: Optional[int] = None
    reset_date: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> Optional[QuotaDetails]:
        if not isinstance(payload, dict):
            return None
        return cls(
            limit=payload.get("limit"),
            used=payload.get("used"),
            reset_date=payload.get("resetDate"),
        )


class RustleAPIError(RustleError):
    """Failure talking to the translation API.

    Attributes:
        status: HTTP status, if a response was received
        code: Machine-readable error code (e.g. ``QUOTA_EXCEEDED``)
        is_quota_exceeded: True for HTTP 429 or a quota/rate-limit code
        quota_details: Quota payload returned by the API, if any
        request_id: Correlation id of the failed request
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
        is_quota_exceeded: bool = False,
        quota_details: Optional[QuotaDetails] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.is_quota_exceeded = is_quota_exceeded
        self.quota_details = quota_details
        self.request_id = request_id

    @property
    def is_cancelled(self) -> bool:
        return False


class RateLimitError(RustleAPIError):
    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message, status=429, code="RATE_LIMIT_EXCEEDED", is_quota_exceeded=True)


class TranslationCancelled(RustleAPIError):
    """Raised to every waiter of a cancelled request or batch."""

    def __init__(self, message: str = "Translation cancelled", request_id: Optional[str] = None):
        super().__init__(message, code="CANCELLED", request_id=request_id)

    @property
    def is_cancelled(self) -> bool:
        return True
