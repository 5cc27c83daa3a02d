import unittest
from types import SimpleNamespace

from agentic_diagnostics.core.retry_policy import (
    exponential_backoff,
    format_rate_limit_report,
    is_rate_limit_error,
    is_retryable_error,
    parse_retry_delay,
    retry_delay_for,
)
from agentic_diagnostics.errors import (
    EmptyResponseError,
    ProviderError,
    RateLimitError,
    UserCancelError,
    describe_error,
    is_user_cancel,
)


class HeaderError(Exception):
    def __init__(self, message: str, headers: dict) -> None:
        super().__init__(message)
        self.response = SimpleNamespace(headers=headers)


class ClassificationTests(unittest.TestCase):
    def test_rate_limit_detection(self) -> None:
        self.assertTrue(is_rate_limit_error(RateLimitError("slow down")))
        self.assertTrue(is_rate_limit_error(ProviderError("nope", status_code=429)))
        self.assertTrue(is_rate_limit_error(RuntimeError("Error code: 429 Too Many Requests")))
        self.assertTrue(is_rate_limit_error(RuntimeError("rate limit reached for model")))
        self.assertFalse(is_rate_limit_error(RuntimeError("boom")))
        self.assertFalse(is_rate_limit_error(None))

    def test_status_code_decides_retryability(self) -> None:
        self.assertTrue(is_retryable_error(ProviderError("server", status_code=500)))
        self.assertTrue(is_retryable_error(ProviderError("timeout", status_code=408)))
        self.assertFalse(is_retryable_error(ProviderError("bad request", status_code=400)))
        self.assertFalse(is_retryable_error(ProviderError("unauthorized", status_code=401)))

    def test_transient_errors_are_retryable(self) -> None:
        self.assertTrue(is_retryable_error(ConnectionError("connection reset by peer")))
        self.assertTrue(is_retryable_error(TimeoutError()))
        self.assertTrue(is_retryable_error(EmptyResponseError("no content")))
        self.assertTrue(is_retryable_error(RuntimeError("service temporarily unavailable")))
        self.assertTrue(is_retryable_error(RuntimeError("upstream returned 502")))

    def test_unknown_errors_are_not_retryable(self) -> None:
        self.assertFalse(is_retryable_error(ValueError("invalid model name")))
        self.assertFalse(is_retryable_error(None))

    def test_user_cancel_detection(self) -> None:
        self.assertTrue(is_user_cancel(UserCancelError()))
        self.assertTrue(is_user_cancel(RuntimeError("context canceled")))
        self.assertFalse(is_user_cancel(RuntimeError("boom")))


class RetryDelayTests(unittest.TestCase):
    def test_explicit_retry_after_attribute(self) -> None:
        self.assertEqual(parse_retry_delay(RateLimitError("slow", retry_after=7)), 7.0)

    def test_retry_after_header(self) -> None:
        err = HeaderError("rate limited", {"retry-after": "12"})
        self.assertEqual(parse_retry_delay(err), 12.0)

    def test_message_patterns(self) -> None:
        self.assertEqual(parse_retry_delay(RuntimeError("Please retry after 30 seconds")), 30.0)
        self.assertEqual(parse_retry_delay(RuntimeError("Please wait 5 seconds")), 5.0)
        self.assertEqual(parse_retry_delay(RuntimeError("try again in 9 seconds")), 9.0)
        self.assertIsNone(parse_retry_delay(RuntimeError("no hint here")))
        self.assertIsNone(parse_retry_delay(None))

    def test_exponential_backoff(self) -> None:
        self.assertEqual(exponential_backoff(1, 10.0, 3.0), 10.0)
        self.assertEqual(exponential_backoff(2, 10.0, 3.0), 30.0)
        self.assertEqual(exponential_backoff(3, 10.0, 3.0), 90.0)

    def test_parsed_delay_preferred_over_backoff(self) -> None:
        self.assertEqual(retry_delay_for(3, RateLimitError("x", retry_after=2), 10.0, 3.0), 2.0)
        self.assertEqual(retry_delay_for(2, RuntimeError("boom"), 1.0, 2.0), 2.0)


class ReportingTests(unittest.TestCase):
    def test_rate_limit_report_with_parsed_delay(self) -> None:
        report = format_rate_limit_report(RateLimitError("slow", retry_after=5), "groq", "llama", 3)
        self.assertTrue(report.startswith("Rate Limit Exceeded"))
        self.assertIn("Provider: groq", report)
        self.assertIn("Model: llama", report)
        self.assertIn("Retry after: 5s", report)
        self.assertIn("Suggestions:", report)

    def test_rate_limit_report_without_retries(self) -> None:
        report = format_rate_limit_report(RateLimitError("slow"), "", "", 0)
        self.assertIn("Provider: unknown", report)
        self.assertNotIn("Retry after", report)
        self.assertNotIn("Retry strategy", report)

    def test_describe_error_adds_status_hint(self) -> None:
        self.assertIn("Invalid credentials", describe_error(ProviderError("nope", status_code=401)))
        self.assertIn("insufficient credits", describe_error(RuntimeError("Error code: 402")))
        self.assertEqual(describe_error(RuntimeError("plain failure")), "plain failure")
        self.assertEqual(describe_error(None), "")


if __name__ == "__main__":
    unittest.main()
