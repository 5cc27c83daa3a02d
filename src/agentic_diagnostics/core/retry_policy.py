"""Error classification and delay computation for model requests."""

from __future__ import annotations

import re

import groq
import openai

from agentic_diagnostics.errors import (
    RateLimitError,
    RetryableAgentError,
    describe_error,
)

DEFAULT_INITIAL_BACKOFF = 10.0
DEFAULT_BACKOFF_FACTOR = 3.0

_RETRY_DELAY_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"retry.*after\s+(\d+)\s*second",
        r"wait\s+(\d+)\s*second",
        r"retry.*in\s+(\d+)\s*second",
        r"try.*again.*in\s+(\d+)\s*second",
        r"please.*retry.*after\s+(\d+)\s*second",
    )
]

_RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests")
_TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "temporarily",
    "unavailable",
    "overloaded",
    "connection reset",
    "connection refused",
    "bad gateway",
    "internal server error",
)
_SERVER_ERROR_RE = re.compile(r"\b5\d{2}\b")

_SDK_RATE_LIMIT_ERRORS = (openai.RateLimitError, groq.RateLimitError)
_SDK_TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    groq.APIConnectionError,
    groq.APITimeoutError,
)
_SDK_STATUS_ERRORS = (openai.APIStatusError, groq.APIStatusError)
_RETRYABLE_STATUS_CODES = {408, 409, 425, 429}


def status_code_of(err: BaseException) -> int | None:
    code = getattr(err, "status_code", None)
    return code if isinstance(code, int) else None


def is_rate_limit_error(err: BaseException | None) -> bool:
    if err is None:
        return False
    if isinstance(err, (RateLimitError, *_SDK_RATE_LIMIT_ERRORS)):
        return True
    if status_code_of(err) == 429:
        return True
    text = str(err).lower()
    return any(marker in text for marker in _RATE_LIMIT_MARKERS)


def is_retryable_error(err: BaseException | None) -> bool:
    """Classify a failed attempt. Unknown exceptions are non-retryable unless transient-looking."""
    if err is None:
        return False
    if is_rate_limit_error(err):
        return True
    code = status_code_of(err)
    if code is not None:
        return code in _RETRYABLE_STATUS_CODES or code >= 500
    if isinstance(err, (*_SDK_TRANSIENT_ERRORS, ConnectionError, TimeoutError, RetryableAgentError)):
        return True
    if isinstance(err, _SDK_STATUS_ERRORS):
        return False
    text = str(err).lower()
    if any(marker in text for marker in _TRANSIENT_MARKERS):
        return True
    return bool(_SERVER_ERROR_RE.search(text))


def _retry_after_header(err: BaseException) -> float | None:
    response = getattr(err, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    raw = headers.get("retry-after") or headers.get("Retry-After")
    if raw is None:
        return None
    try:
        value = float(str(raw).strip())
    except ValueError:
        return None
    return value if value > 0 else None


def parse_retry_delay(err: BaseException | None) -> float | None:
    """Return the provider-suggested retry delay in seconds, or ``None``."""
    if err is None:
        return None
    explicit = getattr(err, "retry_after", None)
    if isinstance(explicit, (int, float)) and explicit > 0:
        return float(explicit)
    header = _retry_after_header(err)
    if header is not None:
        return header
    text = str(err)
    for pattern in _RETRY_DELAY_PATTERNS:
        match = pattern.search(text)
        if match is None:
            continue
        seconds = int(match.group(1))
        if seconds > 0:
            return float(seconds)
    return None


def exponential_backoff(
    attempt: int,
    initial: float = DEFAULT_INITIAL_BACKOFF,
    factor: float = DEFAULT_BACKOFF_FACTOR,
) -> float:
    """``initial * factor ** (attempt - 1)``; ``attempt`` counts retries from 1."""
    return initial * (factor ** max(0, attempt - 1))


def retry_delay_for(
    attempt: int,
    last_error: BaseException | None,
    initial: float = DEFAULT_INITIAL_BACKOFF,
    factor: float = DEFAULT_BACKOFF_FACTOR,
) -> float:
    parsed = parse_retry_delay(last_error)
    if parsed is not None:
        return parsed
    return exponential_backoff(attempt, initial, factor)


def format_rate_limit_report(
    err: BaseException,
    provider: str,
    model: str,
    max_retries: int,
) -> str:
    lines = [
        "Rate Limit Exceeded",
        f"Provider: {provider or 'unknown'}",
        f"Model: {model or 'unknown'}",
    ]
    if max_retries > 0:
        delay = parse_retry_delay(err)
        if delay is not None:
            lines.append(f"Retry after: {delay:g}s (parsed from provider response)")
        else:
            lines.append("Retry strategy: exponential backoff (couldn't parse provider delay)")
    lines.append(f"Raw error: {describe_error(err)}")
    lines.extend(
        [
            "",
            "Suggestions:",
            "  - Wait for the retry period to expire",
            "  - Consider using a different model or provider",
            "  - Check your API quota and billing status",
            "  - Lower DIAG_THROTTLE_REQUESTS_PER_MINUTE to pace requests",
        ]
    )
    return "\n".join(lines)
