"""UsageMeter — buffers per-tenant store reads/writes and flushes them to a daily counter.

A tenant's bucket is flushed as soon as reads + writes reaches the threshold,
and every bucket with activity is flushed on a periodic timer. The bucket is
always replaced before the commit is awaited, so increments that arrive while
a commit is in flight land in the fresh bucket.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Set

from facility_ingest.errors import StoreError
from facility_ingest.storage import paths
from facility_ingest.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)

READ = "read"
WRITE = "write"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UsageCounter:
    reads: int = 0
    writes: int = 0
    last_flushed: datetime = field(default_factory=_utcnow)

    @property
    def total(self) -> int:
        return self.reads + self.writes


class UsageMeter:
    def __init__(
        self,
        store: DocumentStore,
        threshold: int = 2000,
        flush_interval_sec: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.threshold = threshold
        self.flush_interval_sec = flush_interval_sec
        self._clock = clock
        self._counters: Dict[str, UsageCounter] = {}
        self._pending: Set[asyncio.Task] = set()
        self._timer_task: Optional[asyncio.Task] = None

    def record_op(self, tenant: str, kind: str, count: int = 1) -> None:
        """Add ``count`` reads or writes for ``tenant``; flush the bucket at the threshold."""
        if kind not in (READ, WRITE):
            raise ValueError(f"Unknown usage kind: {kind}")
        current = self._counters.get(tenant)
        if current is None:
            current = UsageCounter(last_flushed=self._clock())
            self._counters[tenant] = current

        if kind == READ:
            current.reads += count
        else:
            current.writes += count

        if current.total >= self.threshold:
            delta = self._reset(tenant)
            self._spawn(self.flush(tenant, delta))

    def counter(self, tenant: str) -> UsageCounter:
        current = self._counters.get(tenant)
        if current is None:
            return UsageCounter(last_flushed=self._clock())
        return replace(current)

    @property
    def tenants(self) -> int:
        return sum(1 for c in self._counters.values() if c.total)

    def _reset(self, tenant: str) -> UsageCounter:
        delta = self._counters[tenant]
        self._counters[tenant] = UsageCounter(last_flushed=self._clock())
        return delta

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self, tenant: str, delta: UsageCounter) -> None:
        """Commit ``delta`` to today's usage counter for ``tenant``."""
        if not delta.total:
            return
        day = self._clock().date().isoformat()
        try:
            await self.store.increment(
                paths.usage_collection(tenant),
                day,
                {"reads": delta.reads, "writes": delta.writes},
            )
            logger.info(
                f"Flushed {delta.reads} reads and {delta.writes} writes for company: {tenant}"
            )
        except StoreError as e:
            logger.error(f"Usage flush failed for company {tenant}: {e}")

    async def flush_all(self) -> None:
        """Flush and reset every tenant bucket that has activity."""
        for tenant in [t for t, c in self._counters.items() if c.total]:
            delta = self._reset(tenant)
            self._spawn(self.flush(tenant, delta))
        await self.drain()

    async def drain(self) -> None:
        """Wait for in-flight flushes."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def start(self, flush_interval_sec: Optional[int] = None) -> None:
        """Start the periodic flush task."""
        if flush_interval_sec is not None:
            self.flush_interval_sec = flush_interval_sec

        async def _loop():
            while True:
                await asyncio.sleep(self.flush_interval_sec)
                try:
                    await self.flush_all()
                except Exception:
                    logger.exception("Periodic usage flush failed")

        self._timer_task = asyncio.create_task(_loop())
        logger.info(f"Usage meter started (interval={self.flush_interval_sec}s, threshold={self.threshold})")

    async def stop(self) -> None:
        if self._timer_task:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None
        await self.flush_all()
        logger.info("Usage meter stopped")
