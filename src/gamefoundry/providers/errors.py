"""Provider error taxonomy.

Every vendor failure is classified at the adapter boundary into one of two
families: ``ProviderTransient`` (retried with backoff, eligible for the
fallback chain) or ``ProviderFatal`` (surfaced immediately). Vendor SDK
exception types are recognised by name and HTTP status, so nothing outside
the backend modules imports a vendor SDK.
"""

from __future__ import annotations


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        self.message = message
        super().__init__(f"[{provider}] {message}")


class ProviderTransient(ProviderError):
    """Temporary failure; the same call may succeed later."""


class RateLimited(ProviderTransient):
    """Provider rejected the call because of rate limiting."""

    def __init__(self, provider: str, message: str, retry_after: float | None = None) -> None:
        super().__init__(provider, message)
        self.retry_after = retry_after


class ProviderTimeout(ProviderTransient):
    """Call exceeded its hard deadline."""


class ProviderConnectionError(ProviderTransient):
    """Provider could not be reached."""


class ProviderFatal(ProviderError):
    """Failure that retrying cannot fix."""


class AuthenticationError(ProviderFatal):
    """Credentials missing, invalid or lacking permission."""


class QuotaExhausted(ProviderFatal):
    """Account quota or billing limit reached."""


class InvalidParams(ProviderFatal):
    """Generation parameters failed validation."""


class ProviderModelError(ProviderFatal):
    """Requested model or capability is unavailable."""


class ContentPolicyError(ProviderFatal):
    """Request rejected by the provider's content policy."""


_RATE_LIMIT_NAMES = frozenset({"RateLimitError", "TooManyRequestsError"})
_AUTH_NAMES = frozenset({"AuthenticationError", "PermissionDeniedError", "UnauthorizedError"})
_TIMEOUT_NAMES = frozenset({"APITimeoutError", "TimeoutError", "ReadTimeout", "ConnectTimeout"})
_CONNECTION_NAMES = frozenset({"APIConnectionError", "ConnectError", "ConnectionError"})
_QUOTA_MARKERS = ("insufficient_quota", "quota", "billing", "credit balance")


def _status_code(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _retry_after(exc: BaseException) -> float | None:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    try:
        value = headers.get("retry-after")
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def classify_exception(provider: str, exc: BaseException) -> ProviderError:
    """Map an arbitrary exception from a vendor call into the taxonomy.

    Walks the ``__cause__`` chain so wrapped SDK/httpx errors are detected.
    Unrecognised errors become a plain ``ProviderError`` which is neither
    retried nor handed to a fallback provider.
    """
    import httpx

    if isinstance(exc, ProviderError):
        return exc

    message = str(exc) or type(exc).__name__
    current: BaseException | None = exc
    while current is not None:
        name = type(current).__name__
        status = _status_code(current)
        lowered = str(current).lower()

        if any(marker in lowered for marker in _QUOTA_MARKERS) and status in (None, 402, 429):
            return QuotaExhausted(provider, message)
        if status == 429 or name in _RATE_LIMIT_NAMES:
            return RateLimited(provider, message, retry_after=_retry_after(current))
        if status in (401, 403) or name in _AUTH_NAMES:
            return AuthenticationError(provider, message)
        if status == 402:
            return QuotaExhausted(provider, message)
        if status == 404:
            return ProviderModelError(provider, message)
        if isinstance(current, httpx.TimeoutException | TimeoutError) or name in _TIMEOUT_NAMES:
            return ProviderTimeout(provider, message)
        if (
            isinstance(current, httpx.NetworkError | ConnectionError)
            or name in _CONNECTION_NAMES
            or (status is not None and status >= 500)
        ):
            return ProviderConnectionError(provider, message)

        cause = current.__cause__
        current = cause if isinstance(cause, BaseException) else None

    return ProviderError(provider, message)
