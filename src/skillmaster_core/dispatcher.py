from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from skillmaster_core.errors import (
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamTransientError,
)
from skillmaster_core.logging_config import request_logger
from skillmaster_core.provider import CompletionProvider
from skillmaster_core.rate_limiter import RateLimiter


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 1.0
    rate_limit_factor: float = 4.0


@dataclass(frozen=True)
class CompletionRequest:
    messages: list[dict]
    max_tokens: int
    model: str | None = None
    label: str = "completion"
    conversation_id: str | None = None

    def to_payload(self, default_model: str) -> dict:
        return {
            "model": self.model or default_model,
            "messages": self.messages,
            "max_tokens": self.max_tokens,
        }


class FailureKind(str, Enum):
    UPSTREAM = "upstream"


@dataclass(frozen=True)
class RawResult:
    text: str
    attempts: int = 1

    ok = True


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    detail: str
    attempts: int = 1
    # True when every attempt failed transiently and the retry budget ran out.
    exhausted: bool = False
    status_code: int | None = field(default=None, compare=False)

    ok = False


DispatchResult = RawResult | Failure


class Dispatcher:
    """Runs one AI completion request to a single terminal outcome.

    Every attempt, retries included, first takes a slot from the shared
    RateLimiter. Transient failures are retried with jittered exponential
    backoff until ``max_attempts`` attempts have been made, so a budget of N
    means at most N upstream calls and N - 1 backoff sleeps. Rate-limit
    responses back off ``rate_limit_factor`` times longer and never less than
    the upstream's Retry-After. Rejected requests fail immediately.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        rate_limiter: RateLimiter,
        *,
        model: str,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._provider = provider
        self._rate_limiter = rate_limiter
        self._model = model
        self._policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._wait = wait_exponential_jitter(
            initial=self._policy.base_delay,
            max=self._policy.max_delay,
            exp_base=self._policy.multiplier,
            jitter=self._policy.jitter,
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    async def execute(self, request: CompletionRequest) -> DispatchResult:
        payload = request.to_payload(self._model)
        log = request_logger(request.label, conversation_id=request.conversation_id)
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(UpstreamTransientError),
            wait=self._backoff,
            stop=stop_after_attempt(max(1, self._policy.max_attempts)),
            before_sleep=self._on_retry(log),
            sleep=self._sleep,
            reraise=True,
        )
        attempts = 0

        async def attempt() -> str:
            nonlocal attempts
            attempts += 1
            await self._rate_limiter.acquire()
            return await self._provider.complete(
                payload["model"],
                payload["messages"],
                payload["max_tokens"],
            )

        try:
            text = await retrying(attempt)
        except UpstreamTransientError as ex:
            log.bind(event="upstream_failure", attempts=attempts, status_code=ex.status_code).error(
                f"Giving up after {attempts} attempt(s): {ex}"
            )
            return Failure(FailureKind.UPSTREAM, str(ex), attempts=attempts, exhausted=True, status_code=ex.status_code)
        except UpstreamError as ex:
            log.bind(event="upstream_failure", attempts=attempts, status_code=ex.status_code).error(
                f"Upstream rejected request: {ex}"
            )
            return Failure(FailureKind.UPSTREAM, str(ex), attempts=attempts, status_code=ex.status_code)

        if attempts > 1:
            log.info(f"Succeeded on attempt {attempts}")
        return RawResult(text=text, attempts=attempts)

    def _backoff(self, retry_state: RetryCallState) -> float:
        delay = self._wait(retry_state)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, UpstreamRateLimitError):
            delay = delay * self._policy.rate_limit_factor
            if exc.retry_after is not None:
                delay = max(delay, exc.retry_after)
        return delay

    def _on_retry(self, log) -> Callable[[RetryCallState], None]:
        budget = self._policy.max_attempts

        def warn(retry_state: RetryCallState) -> None:
            attempt = retry_state.attempt_number
            wait = retry_state.next_action.sleep if retry_state.next_action else 0
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            reason = type(exc).__name__ if exc else "Unknown"
            log.bind(event="upstream_retry", attempt=attempt, reason=reason).warning(
                f"{reason}. Retrying in {wait:.1f}s (attempt {attempt}/{budget})..."
            )

        return warn
