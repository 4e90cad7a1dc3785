from __future__ import annotations

from datetime import UTC, datetime, timedelta

from loguru import logger

from skillmaster_core.storage.usage_store import UsageStore


def prune_usage(
    usage_store: UsageStore,
    *,
    retention_days: int,
    now: datetime | None = None,
) -> int:
    """Garbage-collect usage counters for periods that ended long ago.

    Counters reset implicitly when the period key rolls over, so old rows are
    never read again; this only keeps the table from growing forever.
    """
    current = now or datetime.now(UTC)
    cutoff = (current - timedelta(days=max(1, retention_days))).date().isoformat()
    removed = usage_store.prune(cutoff)
    if removed:
        logger.info(f"Pruned {removed} usage counter(s) older than {cutoff}")
    return removed
