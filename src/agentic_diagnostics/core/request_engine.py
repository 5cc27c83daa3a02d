"""Single logical model request with retries, backoff, pacing and cancellation."""

from __future__ import annotations

from collections.abc import Callable, Sequence

from agentic_diagnostics.config import EngineConfig
from agentic_diagnostics.core.cancellation import CancelToken, run_cancellable, sleep
from agentic_diagnostics.core.llm_provider import ChatMessage, ChatProvider
from agentic_diagnostics.core.rate_limiter import RateLimiter
from agentic_diagnostics.core.retry_policy import (
    format_rate_limit_report,
    is_rate_limit_error,
    is_retryable_error,
    retry_delay_for,
)
from agentic_diagnostics.errors import (
    EmptyResponseError,
    NonRetryableProviderError,
    RetriesExhaustedError,
    UserCancelError,
    describe_error,
    is_user_cancel,
)
from agentic_diagnostics.logger import get_logger
from agentic_diagnostics.observability import observe
from agentic_diagnostics.schemas import GenerateOptions, ModelResponse


class RequestEngine:
    """Issue ``generate`` calls against a provider until one succeeds or retries run out.

    Attempts run up to ``max_retries + 1`` times. The rate limiter is consulted
    before every attempt; the backoff delay only before retries. Rate-limit
    failures stay quiet until the last attempt, other retryable failures are
    reported each time, and non-retryable failures end the request at once.
    An empty response is retried, except on the last attempt where it is
    returned for the caller to judge.
    """

    def __init__(
        self,
        provider: ChatProvider,
        config: EngineConfig | None = None,
        rate_limiter: RateLimiter | None = None,
        *,
        sleeper: Callable[[float, CancelToken | None], None] = sleep,
        on_notice: Callable[[str], None] | None = None,
    ) -> None:
        self.provider = provider
        self.config = config or EngineConfig()
        self.rate_limiter = rate_limiter or RateLimiter.from_config(self.config)
        self._sleeper = sleeper
        self._on_notice = on_notice
        self.logger = get_logger("request_engine")

    @property
    def provider_name(self) -> str:
        return getattr(self.provider, "provider_name", "") or self.config.provider

    @property
    def model_name(self) -> str:
        return getattr(self.provider, "model", "") or self.config.model

    def _notify(self, text: str) -> None:
        if self._on_notice is not None:
            self._on_notice(text)
        else:
            self.logger.warning("%s", text)

    def _wait_before_retry(self, attempt: int, last_error: BaseException | None, cancel: CancelToken | None) -> None:
        cfg = self.config
        delay = retry_delay_for(attempt, last_error, cfg.initial_backoff_seconds, cfg.backoff_factor)
        label = "RATE LIMITED" if is_rate_limit_error(last_error) else "RETRYING"
        self.logger.info(
            "%s attempt=%s/%s delay=%.2fs provider=%s",
            label,
            attempt,
            cfg.max_retries,
            delay,
            self.provider_name,
        )
        if cfg.skip_waits:
            if cancel is not None:
                cancel.raise_if_cancelled()
            return
        self._sleeper(delay, cancel)

    @observe("request_engine.generate")
    def generate(
        self,
        messages: Sequence[ChatMessage],
        options: GenerateOptions | None = None,
        cancel: CancelToken | None = None,
    ) -> ModelResponse:
        max_retries = max(0, self.config.max_retries)
        payload = list(messages) or [{"role": "user", "content": ""}]
        last_error: BaseException | None = None

        for attempt in range(max_retries + 1):
            if attempt > 0:
                self._wait_before_retry(attempt, last_error, cancel)
            self.rate_limiter.acquire(cancel, skip_waits=self.config.skip_waits)

            try:
                response = run_cancellable(
                    lambda: self.provider.generate(payload, options),
                    cancel,
                    self.config.poll_interval_seconds,
                )
            except UserCancelError:
                raise
            except Exception as exc:  # noqa: BLE001
                if is_user_cancel(exc):
                    raise UserCancelError("canceled by user") from exc
                last_error = exc
                retries_left = max_retries - attempt

                if not is_retryable_error(exc):
                    self.logger.warning("PROVIDER ERROR non_retryable error=%s", exc)
                    raise NonRetryableProviderError(describe_error(exc)) from exc

                if is_rate_limit_error(exc):
                    if retries_left > 0:
                        self.logger.debug("RATE LIMIT retries_left=%s", retries_left)
                        continue
                    self._notify(
                        format_rate_limit_report(exc, self.provider_name, self.model_name, max_retries)
                    )
                elif retries_left > 0:
                    self._notify(describe_error(exc))
                    continue

                raise RetriesExhaustedError(
                    f"AI still returning error after {max_retries} retries: {describe_error(exc)}",
                    attempts=attempt + 1,
                    last_error=exc,
                ) from exc

            self.rate_limiter.record_response()
            if response.is_empty() and attempt < max_retries:
                self.logger.warning(
                    "EMPTY RESPONSE provider=%s model=%s attempt=%s",
                    self.provider_name,
                    self.model_name,
                    attempt + 1,
                )
                last_error = EmptyResponseError(f"no content generated from {self.provider_name}")
                continue
            return response
