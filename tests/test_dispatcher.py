import asyncio
import unittest

from skillmaster_core.dispatcher import CompletionRequest, Dispatcher, Failure, RawResult, RetryPolicy
from skillmaster_core.errors import UpstreamRateLimitError, UpstreamRequestError, UpstreamTransientError
from tests.fakes import CountingLimiter, FakeClock, ScriptedProvider


def _request() -> CompletionRequest:
    return CompletionRequest(messages=[{"role": "user", "content": "hi"}], max_tokens=64, label="test")


class DispatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.limiter = CountingLimiter()

    def _dispatcher(self, provider, **policy) -> Dispatcher:
        return Dispatcher(
            provider,
            self.limiter,
            model="test-model",
            retry_policy=RetryPolicy(**{"base_delay": 1.0, "multiplier": 2.0, "jitter": 0.0, **policy}),
            sleep=self.clock.sleep,
        )

    def test_success_on_first_attempt(self) -> None:
        provider = ScriptedProvider("hello")
        result = asyncio.run(self._dispatcher(provider).execute(_request()))

        self.assertIsInstance(result, RawResult)
        self.assertTrue(result.ok)
        self.assertEqual("hello", result.text)
        self.assertEqual(1, result.attempts)
        self.assertEqual([{"model": "test-model", "messages": [{"role": "user", "content": "hi"}], "max_tokens": 64}], provider.calls)

    def test_request_model_overrides_default(self) -> None:
        provider = ScriptedProvider("x")
        request = CompletionRequest(messages=[], max_tokens=8, model="other-model")
        asyncio.run(self._dispatcher(provider).execute(request))
        self.assertEqual("other-model", provider.calls[0]["model"])

    def test_transient_failures_exhaust_budget(self) -> None:
        provider = ScriptedProvider(
            UpstreamTransientError("timeout"),
            UpstreamTransientError("timeout"),
            UpstreamTransientError("timeout"),
            "too late",
        )
        result = asyncio.run(self._dispatcher(provider, max_attempts=3).execute(_request()))

        self.assertIsInstance(result, Failure)
        self.assertFalse(result.ok)
        self.assertTrue(result.exhausted)
        self.assertEqual(3, result.attempts)
        self.assertEqual(3, len(provider.calls))
        self.assertEqual([1.0, 2.0], self.clock.sleeps)

    def test_recovers_after_transient_failures(self) -> None:
        provider = ScriptedProvider(UpstreamTransientError("503", status_code=503), "recovered")
        result = asyncio.run(self._dispatcher(provider).execute(_request()))

        self.assertIsInstance(result, RawResult)
        self.assertEqual("recovered", result.text)
        self.assertEqual(2, result.attempts)
        self.assertEqual([1.0], self.clock.sleeps)

    def test_every_attempt_takes_a_rate_limiter_slot(self) -> None:
        provider = ScriptedProvider(UpstreamTransientError("x"), UpstreamTransientError("x"), "ok")
        asyncio.run(self._dispatcher(provider).execute(_request()))
        self.assertEqual(3, self.limiter.acquired)

    def test_rejected_request_is_not_retried(self) -> None:
        provider = ScriptedProvider(UpstreamRequestError("bad request", status_code=400), "never")
        result = asyncio.run(self._dispatcher(provider).execute(_request()))

        self.assertIsInstance(result, Failure)
        self.assertFalse(result.exhausted)
        self.assertEqual(400, result.status_code)
        self.assertEqual(1, len(provider.calls))
        self.assertEqual([], self.clock.sleeps)

    def test_rate_limited_response_backs_off_longer(self) -> None:
        provider = ScriptedProvider(UpstreamRateLimitError("slow down"), "ok")
        result = asyncio.run(self._dispatcher(provider, rate_limit_factor=4.0).execute(_request()))

        self.assertTrue(result.ok)
        self.assertEqual([4.0], self.clock.sleeps)

    def test_retry_after_is_a_floor(self) -> None:
        provider = ScriptedProvider(UpstreamRateLimitError("slow down", retry_after=10.0), "ok")
        asyncio.run(self._dispatcher(provider).execute(_request()))
        self.assertEqual([10.0], self.clock.sleeps)

    def test_backoff_is_capped(self) -> None:
        provider = ScriptedProvider(*(UpstreamTransientError("x") for _ in range(5)), "ok")
        asyncio.run(self._dispatcher(provider, max_attempts=6, max_delay=3.0).execute(_request()))
        self.assertEqual([1.0, 2.0, 3.0, 3.0, 3.0], self.clock.sleeps)

    def test_programming_errors_propagate(self) -> None:
        provider = ScriptedProvider(KeyError("bug"))
        with self.assertRaises(KeyError):
            asyncio.run(self._dispatcher(provider).execute(_request()))


if __name__ == "__main__":
    unittest.main()
