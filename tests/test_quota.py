import asyncio
import unittest
from datetime import UTC, datetime, timedelta

from skillmaster_core.models import Tier
from skillmaster_core.quota import UNLIMITED, QuotaPeriod, QuotaPolicy, QuotaTracker
from skillmaster_core.storage import InMemoryUsageStore, SqliteUsageStore, Store
from tests.fakes import WallClock


class QuotaPolicyTests(unittest.TestCase):
    def test_only_free_tier_is_limited(self) -> None:
        policy = QuotaPolicy(free_limit=10)
        self.assertEqual(10, policy.limit_for(Tier.FREE))
        self.assertEqual(UNLIMITED, policy.limit_for(Tier.PAID))
        self.assertEqual(UNLIMITED, policy.limit_for(Tier.ELITE))

    def test_negative_free_limit_means_no_access(self) -> None:
        self.assertEqual(0, QuotaPolicy(free_limit=-5).limit_for(Tier.FREE))


class QuotaTrackerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = WallClock()
        self.store = InMemoryUsageStore()
        self.tracker = QuotaTracker(self.store, clock=self.clock)

    def _consume(self, n: int, limit: int, user_id: str = "u1"):
        async def scenario():
            return await asyncio.gather(
                *(self.tracker.check_and_consume(user_id, "tutor", limit) for _ in range(n))
            )

        return asyncio.run(scenario())

    def test_concurrent_requests_never_exceed_limit(self) -> None:
        decisions = self._consume(25, 10)
        self.assertEqual(10, sum(1 for d in decisions if d.allowed))
        self.assertEqual(10, self.store.get("u1", "tutor", "2026-03-01"))

    def test_fewer_requests_than_limit_all_pass(self) -> None:
        decisions = self._consume(4, 10)
        self.assertTrue(all(d.allowed for d in decisions))
        self.assertEqual([9, 8, 7, 6], sorted((d.remaining for d in decisions), reverse=True))

    def test_denied_decision_reports_zero_remaining(self) -> None:
        self._consume(10, 10)
        decision = self._consume(1, 10)[0]
        self.assertFalse(decision.allowed)
        self.assertEqual(0, decision.remaining)
        self.assertEqual(10, decision.used)

    def test_unlimited_tier_always_allowed(self) -> None:
        decisions = self._consume(50, UNLIMITED)
        self.assertTrue(all(d.allowed for d in decisions))
        self.assertTrue(all(d.remaining == UNLIMITED for d in decisions))
        self.assertTrue(decisions[0].unlimited)
        self.assertEqual(50, self.store.get("u1", "tutor", "2026-03-01"))

    def test_zero_limit_denies_everything(self) -> None:
        decision = self._consume(1, 0)[0]
        self.assertFalse(decision.allowed)
        self.assertEqual(0, self.store.get("u1", "tutor", "2026-03-01"))

    def test_users_and_endpoints_are_counted_separately(self) -> None:
        async def scenario():
            await self.tracker.check_and_consume("u1", "tutor", 1)
            a = await self.tracker.check_and_consume("u2", "tutor", 1)
            b = await self.tracker.check_and_consume("u1", "coach", 1)
            return a, b

        a, b = asyncio.run(scenario())
        self.assertTrue(a.allowed)
        self.assertTrue(b.allowed)

    def test_counter_resets_on_next_day(self) -> None:
        self._consume(10, 10)
        self.assertFalse(self._consume(1, 10)[0].allowed)

        self.clock.now = self.clock.now + timedelta(days=1)
        decision = self._consume(1, 10)[0]
        self.assertTrue(decision.allowed)
        self.assertEqual(9, decision.remaining)

    def test_remaining_does_not_consume(self) -> None:
        self._consume(3, 10)
        self.assertEqual(7, self.tracker.remaining("u1", "tutor", 10))
        self.assertEqual(7, self.tracker.remaining("u1", "tutor", 10))
        self.assertEqual(UNLIMITED, self.tracker.remaining("u1", "tutor", UNLIMITED))

    def test_period_keys(self) -> None:
        self.assertEqual("2026-03-01", self.tracker.period_key())
        self.assertEqual("2026-03", self.tracker.period_key(QuotaPeriod.MONTH))

    def test_day_boundary_follows_configured_timezone(self) -> None:
        clock = WallClock(datetime(2026, 3, 1, 20, 0, tzinfo=UTC))
        tokyo = QuotaTracker(self.store, timezone="Asia/Tokyo", clock=clock)
        self.assertEqual("2026-03-02", tokyo.period_key())

    def test_monthly_period_spans_days(self) -> None:
        async def consume():
            return await self.tracker.check_and_consume("u1", "roadmap", 3, period=QuotaPeriod.MONTH)

        for _ in range(3):
            self.assertTrue(asyncio.run(consume()).allowed)
        self.clock.now = self.clock.now + timedelta(days=5)
        self.assertFalse(asyncio.run(consume()).allowed)
        self.clock.now = datetime(2026, 4, 1, 0, 0, tzinfo=UTC)
        self.assertTrue(asyncio.run(consume()).allowed)


class SqliteQuotaTrackerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = Store(":memory:")
        self.usage = SqliteUsageStore(self.store)
        self.tracker = QuotaTracker(self.usage, clock=WallClock())

    def tearDown(self) -> None:
        self.store.close()

    def test_concurrent_requests_never_exceed_limit(self) -> None:
        async def scenario():
            return await asyncio.gather(
                *(self.tracker.check_and_consume("u1", "tutor", 10) for _ in range(30))
            )

        decisions = asyncio.run(scenario())
        self.assertEqual(10, sum(1 for d in decisions if d.allowed))
        self.assertEqual(10, self.usage.get("u1", "tutor", "2026-03-01"))


if __name__ == "__main__":
    unittest.main()
