import asyncio
import unittest
from types import SimpleNamespace

import httpx
import openai

from skillmaster_core.errors import UpstreamRateLimitError, UpstreamRequestError, UpstreamTransientError
from skillmaster_core.providers.openai_provider import OpenAIProvider, _first_choice_text

_REQUEST = httpx.Request("POST", "https://api.groq.com/openai/v1/chat/completions")


def _status_error(cls, status: int, headers: dict | None = None):
    return cls(f"status {status}", response=httpx.Response(status, headers=headers, request=_REQUEST), body=None)


class _FakeCompletions:
    def __init__(self, result):
        self._result = result
        self.kwargs: dict | None = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self._result, BaseException):
            raise self._result
        return self._result


class FirstChoiceTextTests(unittest.TestCase):
    def test_reads_first_choice(self) -> None:
        response = SimpleNamespace(choices=[
            SimpleNamespace(message=SimpleNamespace(content="first")),
            SimpleNamespace(message=SimpleNamespace(content="second")),
        ])
        self.assertEqual("first", _first_choice_text(response))

    def test_missing_parts_read_as_empty(self) -> None:
        self.assertEqual("", _first_choice_text(SimpleNamespace(choices=[])))
        self.assertEqual("", _first_choice_text(SimpleNamespace(choices=None)))
        self.assertEqual("", _first_choice_text(SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=None))])))


class OpenAIProviderTests(unittest.TestCase):
    def _make_provider(self, result) -> tuple[OpenAIProvider, _FakeCompletions]:
        completions = _FakeCompletions(result)
        provider = OpenAIProvider.__new__(OpenAIProvider)
        provider._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
        return provider, completions

    def _complete(self, provider: OpenAIProvider) -> str:
        return asyncio.run(provider.complete("llama3-8b-8192", [{"role": "user", "content": "hi"}], 128))

    def test_complete_sends_payload_and_returns_text(self) -> None:
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="hello"))])
        provider, completions = self._make_provider(response)

        self.assertEqual("hello", self._complete(provider))
        self.assertEqual(
            {"model": "llama3-8b-8192", "messages": [{"role": "user", "content": "hi"}], "max_tokens": 128},
            completions.kwargs,
        )

    def test_rate_limit_maps_to_rate_limit_error(self) -> None:
        provider, _ = self._make_provider(_status_error(openai.RateLimitError, 429, {"retry-after": "7"}))
        with self.assertRaises(UpstreamRateLimitError) as ctx:
            self._complete(provider)
        self.assertEqual(7.0, ctx.exception.retry_after)
        self.assertEqual(429, ctx.exception.status_code)

    def test_server_error_is_transient(self) -> None:
        provider, _ = self._make_provider(_status_error(openai.InternalServerError, 503))
        with self.assertRaises(UpstreamTransientError) as ctx:
            self._complete(provider)
        self.assertEqual(503, ctx.exception.status_code)

    def test_connection_error_is_transient(self) -> None:
        provider, _ = self._make_provider(openai.APITimeoutError(request=_REQUEST))
        with self.assertRaises(UpstreamTransientError):
            self._complete(provider)

    def test_bad_request_is_not_transient(self) -> None:
        provider, _ = self._make_provider(_status_error(openai.BadRequestError, 400))
        with self.assertRaises(UpstreamRequestError) as ctx:
            self._complete(provider)
        self.assertNotIsInstance(ctx.exception, UpstreamTransientError)
        self.assertEqual(400, ctx.exception.status_code)


if __name__ == "__main__":
    unittest.main()
