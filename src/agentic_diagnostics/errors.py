# errors.py

from __future__ import annotations

import re


class AgentError(Exception):
    """Base class for agent-related errors."""
    pass


# ----- Control Classification -----

class RetryableAgentError(AgentError):
    """Errors that allow retry."""
    pass


class FatalAgentError(AgentError):
    """Errors that should stop execution immediately."""
    pass


class UserCancelError(AgentError):
    """The user cancelled the in-flight operation.

    Never retried and never wrapped; callers may treat it as "no answer".
    """

    def __init__(self, reason: str = "canceled by user") -> None:
        self.reason = reason
        super().__init__(reason.strip() or "user cancelled request")


# ----- Provider Errors -----

class ProviderError(RetryableAgentError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class RateLimitError(ProviderError):
    pass


class EmptyResponseError(RetryableAgentError):
    pass


class NonRetryableProviderError(FatalAgentError):
    pass


class RetriesExhaustedError(FatalAgentError):
    def __init__(self, message: str, *, attempts: int, last_error: BaseException | None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


# ----- Tool Errors -----

class ToolExecutionError(RetryableAgentError):
    pass


class UnknownToolError(FatalAgentError):
    pass


# ----- Orchestration Errors -----

class StateMachineError(FatalAgentError):
    pass


_CANCEL_MARKERS = ("context canceled", "canceled by user", "cancelled by user")

_STATUS_HINTS = {
    400: "Bad Request (invalid or missing params)",
    401: "Invalid credentials (OAuth session expired, disabled/invalid API key)",
    402: "Your account or API key has insufficient credits. Add more credits and retry the request.",
    403: "Your chosen model requires moderation and your input was flagged",
    408: "Your request timed out",
    502: "Your chosen model is down or we received an invalid response from it",
    503: "There is no available model provider that meets your routing requirements",
}

_STATUS_CODE_RE = re.compile(r"\b([4-5]\d{2})\b")


def is_user_cancel(err: BaseException | None) -> bool:
    if err is None:
        return False
    if isinstance(err, UserCancelError):
        return True
    text = str(err).lower()
    return any(marker in text for marker in _CANCEL_MARKERS)


def describe_error(err: BaseException | None) -> str:
    """Return the error text with a hint appended for a recognised HTTP status code."""
    if err is None:
        return ""
    text = str(err)
    code = getattr(err, "status_code", None)
    if not isinstance(code, int):
        match = _STATUS_CODE_RE.search(text)
        if match is None:
            return text
        code = int(match.group(1))
    hint = _STATUS_HINTS.get(code)
    if hint is None:
        return text
    return f"{text} ({code}: {hint})"
