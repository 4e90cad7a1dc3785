from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from zoneinfo import ZoneInfo

from skillmaster_core.logging_config import audit
from skillmaster_core.models import Tier
from skillmaster_core.storage.usage_store import UsageStore

UNLIMITED = -1


class QuotaPeriod(str, Enum):
    DAY = "day"
    MONTH = "month"


@dataclass(frozen=True)
class QuotaPolicy:
    free_limit: int
    period: QuotaPeriod = QuotaPeriod.DAY

    def limit_for(self, tier: Tier) -> int:
        if tier is Tier.FREE:
            return max(0, self.free_limit)
        return UNLIMITED


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    remaining: int
    used: int
    limit: int

    @property
    def unlimited(self) -> bool:
        return self.limit < 0


class QuotaTracker:
    """Per-(user, endpoint, period) usage counters with tier-aware limits.

    The read-check-increment for one key runs under that key's lock and the
    store's ``increment`` is itself a conditional write, so two concurrent
    callers can never both take the last slot. Quota is consumed when a
    request starts and is never refunded.
    """

    def __init__(
        self,
        store: UsageStore,
        *,
        timezone: str = "UTC",
        clock: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._tz = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._locks: dict[tuple[str, str, str], asyncio.Lock] = {}
        self._locks_day: str | None = None

    def period_key(self, period: QuotaPeriod = QuotaPeriod.DAY) -> str:
        local = self._clock().astimezone(self._tz)
        if period is QuotaPeriod.MONTH:
            return f"{local.year:04d}-{local.month:02d}"
        return local.date().isoformat()

    async def check_and_consume(
        self,
        user_id: str,
        endpoint: str,
        tier_limit: int,
        *,
        period: QuotaPeriod = QuotaPeriod.DAY,
    ) -> QuotaDecision:
        key = (user_id, endpoint, self.period_key(period))
        async with self._lock_for(key):
            new_count = self._store.increment(*key, tier_limit)
            if new_count is None:
                used = self._store.get(*key)

        if new_count is None:
            audit("quota_denied", user_id=user_id, endpoint=endpoint, period=key[2]).warning(
                f"Quota exceeded: user={user_id} endpoint={endpoint} period={key[2]} limit={tier_limit}"
            )
            return QuotaDecision(allowed=False, remaining=0, used=used, limit=tier_limit)

        remaining = UNLIMITED if tier_limit < 0 else max(0, tier_limit - new_count)
        audit("quota_consumed", user_id=user_id, endpoint=endpoint, period=key[2]).debug(
            f"Quota consumed: user={user_id} endpoint={endpoint} used={new_count} remaining={remaining}"
        )
        return QuotaDecision(allowed=True, remaining=remaining, used=new_count, limit=tier_limit)

    def remaining(
        self,
        user_id: str,
        endpoint: str,
        tier_limit: int,
        *,
        period: QuotaPeriod = QuotaPeriod.DAY,
    ) -> int:
        if tier_limit < 0:
            return UNLIMITED
        used = self._store.get(user_id, endpoint, self.period_key(period))
        return max(0, tier_limit - used)

    def _lock_for(self, key: tuple[str, str, str]) -> asyncio.Lock:
        today = self.period_key(QuotaPeriod.DAY)
        if today != self._locks_day:
            # Locks for finished periods are never contended again.
            live = {today, today[:7]}
            self._locks = {k: v for k, v in self._locks.items() if k[2] in live}
            self._locks_day = today
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock
