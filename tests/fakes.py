import asyncio
import inspect
from datetime import UTC, datetime

from skillmaster_core.dispatcher import Dispatcher, RetryPolicy
from skillmaster_core.rate_limiter import RateLimiter


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


class WallClock:
    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


class ScriptedProvider:
    """Returns (or raises) the scripted items in order, then ``default``."""

    def __init__(self, *script, default: str = "ok"):
        self._script = list(script)
        self._default = default
        self.calls: list[dict] = []

    async def complete(self, model: str, messages: list[dict], max_tokens: int) -> str:
        self.calls.append({"model": model, "messages": list(messages), "max_tokens": max_tokens})
        item = self._script.pop(0) if self._script else self._default
        if isinstance(item, BaseException):
            raise item
        return item


class CallbackProvider:
    """Delegates to ``handler(messages)``, which may be sync or async and may raise."""

    def __init__(self, handler):
        self._handler = handler
        self.calls: list[dict] = []

    async def complete(self, model: str, messages: list[dict], max_tokens: int) -> str:
        self.calls.append({"model": model, "messages": list(messages), "max_tokens": max_tokens})
        result = self._handler(messages)
        if inspect.isawaitable(result):
            result = await result
        return result


class CountingLimiter:
    def __init__(self) -> None:
        self.acquired = 0

    async def acquire(self) -> None:
        self.acquired += 1


def make_dispatcher(provider, *, max_attempts: int = 3, sleep=None, rate_limiter=None) -> Dispatcher:
    return Dispatcher(
        provider,
        rate_limiter or RateLimiter(1000),
        model="test-model",
        retry_policy=RetryPolicy(max_attempts=max_attempts, base_delay=1.0, multiplier=2.0, jitter=0.0),
        sleep=sleep or FakeClock().sleep,
    )


def last_user_content(messages: list[dict]) -> str:
    for message in reversed(messages):
        if message["role"] == "user":
            return message["content"]
    return ""
