from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from skillmaster_core.models import UsageCounter, utc_now
from skillmaster_core.storage.store import Store


@runtime_checkable
class UsageStore(Protocol):
    def get(self, user_id: str, endpoint: str, period: str) -> int:
        """Current count for the key; a missing record counts as 0."""
        ...

    def increment(self, user_id: str, endpoint: str, period: str, limit: int) -> int | None:
        """Add one to the counter unless that would exceed ``limit``.

        ``limit < 0`` means unlimited. Returns the new count, or None when the
        counter was already at the limit. Check and write happen as one step.
        """
        ...

    def save(self, counter: UsageCounter) -> None: ...

    def prune(self, before_day: str) -> int:
        """Drop counters whose period ended before ``before_day`` (YYYY-MM-DD)."""
        ...


class InMemoryUsageStore:
    def __init__(self) -> None:
        self._counts: dict[tuple[str, str, str], int] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str, endpoint: str, period: str) -> int:
        with self._lock:
            return self._counts.get((user_id, endpoint, period), 0)

    def increment(self, user_id: str, endpoint: str, period: str, limit: int) -> int | None:
        key = (user_id, endpoint, period)
        with self._lock:
            current = self._counts.get(key, 0)
            if limit >= 0 and current >= limit:
                return None
            self._counts[key] = current + 1
            return current + 1

    def save(self, counter: UsageCounter) -> None:
        with self._lock:
            self._counts[(counter.user_id, counter.endpoint, counter.period)] = counter.count

    def prune(self, before_day: str) -> int:
        with self._lock:
            stale = [key for key in self._counts if _is_stale(key[2], before_day)]
            for key in stale:
                del self._counts[key]
            return len(stale)

    def counters(self) -> list[UsageCounter]:
        with self._lock:
            return [UsageCounter(u, e, p, c) for (u, e, p), c in sorted(self._counts.items())]


class SqliteUsageStore:
    def __init__(self, store: Store):
        self._store = store

    def get(self, user_id: str, endpoint: str, period: str) -> int:
        row = self._store.execute(
            "SELECT count FROM usage_counters WHERE user_id = ? AND endpoint = ? AND period = ?",
            (user_id, endpoint, period),
        ).fetchone()
        return int(row["count"]) if row is not None else 0

    def increment(self, user_id: str, endpoint: str, period: str, limit: int) -> int | None:
        if limit == 0:
            return None
        now = utc_now().isoformat(timespec="seconds")
        with self._store.transaction():
            cursor = self._store.execute(
                """
                INSERT INTO usage_counters (user_id, endpoint, period, count, updated_at)
                VALUES (?, ?, ?, 1, ?)
                ON CONFLICT(user_id, endpoint, period) DO UPDATE
                    SET count = usage_counters.count + 1, updated_at = excluded.updated_at
                    WHERE ? < 0 OR usage_counters.count < ?
                """,
                (user_id, endpoint, period, now, limit, limit),
            )
            if cursor.rowcount == 0:
                return None
            row = self._store.execute(
                "SELECT count FROM usage_counters WHERE user_id = ? AND endpoint = ? AND period = ?",
                (user_id, endpoint, period),
            ).fetchone()
        return int(row["count"])

    def save(self, counter: UsageCounter) -> None:
        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO usage_counters (user_id, endpoint, period, count, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, endpoint, period) DO UPDATE
                    SET count = excluded.count, updated_at = excluded.updated_at
                """,
                (
                    counter.user_id,
                    counter.endpoint,
                    counter.period,
                    counter.count,
                    utc_now().isoformat(timespec="seconds"),
                ),
            )

    def prune(self, before_day: str) -> int:
        with self._store.transaction():
            cursor = self._store.execute(
                """
                DELETE FROM usage_counters
                WHERE (length(period) = 10 AND period < ?)
                   OR (length(period) = 7 AND period < ?)
                """,
                (before_day, before_day[:7]),
            )
        return cursor.rowcount


def _is_stale(period: str, before_day: str) -> bool:
    # Monthly keys (YYYY-MM) stay until their whole month is before the cutoff.
    if len(period) == 7:
        return period < before_day[:7]
    return period < before_day
