"""Download counting.

Increments are kept in memory and written to the entry store in one
transaction when the flush interval has elapsed, when a flush is forced
(before a rebuild and at shutdown) or from the background loop. After each
flush the counters file is rewritten when one is configured. Losing at most
one interval of increments on a crash is acceptable.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Callable, Dict, Optional

import structlog

from storage.counters_file import read_counters, write_counters
from storage.entry_store import EntryStore

logger = structlog.get_logger(__name__)

DEFAULT_FLUSH_INTERVAL_S = 3600.0


class DownloadCounter:
    """Buffered per-entity download counter.

    Args:
        store: Entry store receiving flushed increments.
        interval_s: Minimum seconds between unforced flushes.
        counters_path: Optional counters file rewritten after each flush.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        store: EntryStore,
        *,
        interval_s: float = DEFAULT_FLUSH_INTERVAL_S,
        counters_path: Optional[Path] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.interval_s = interval_s
        self.counters_path = Path(counters_path) if counters_path else None
        self._clock = clock
        self._pending: Dict[int, int] = {}
        self._last_flush = clock()

    def increment(self, entity_id: int, by: int = 1) -> None:
        self._pending[entity_id] = self._pending.get(entity_id, 0) + by

    def pending(self, entity_id: int) -> int:
        return self._pending.get(entity_id, 0)

    @property
    def pending_total(self) -> int:
        return sum(self._pending.values())

    def due(self) -> bool:
        return self._clock() - self._last_flush >= self.interval_s

    def flush(self, *, force: bool = False) -> int:
        """Write pending increments to the store.

        Returns:
            Number of entities whose counter moved (0 when not due).
        """
        if not force and not self.due():
            return 0
        pending, self._pending = self._pending, {}
        if pending:
            try:
                with self.store.transaction():
                    for eid, by in sorted(pending.items()):
                        self.store.increment_downloads(eid, by)
            except Exception:
                # Rolled back; keep the increments for the next flush
                for eid, by in pending.items():
                    self._pending[eid] = self._pending.get(eid, 0) + by
                raise
        self._last_flush = self._clock()
        if self.counters_path is not None and (pending or not self.counters_path.exists()):
            written = write_counters(self.counters_path, self.store.list_all(include_deleted=True))
            logger.debug("counters_file_written", path=str(self.counters_path), rows=written)
        if pending:
            logger.info("downloads_flushed", entities=len(pending), total=sum(pending.values()))
        return len(pending)

    def merge_counters_file(self) -> int:
        """Raise store counters to the values persisted in the counters file.

        Returns:
            Number of entities adjusted.
        """
        if self.counters_path is None:
            return 0
        merged = 0
        counters = read_counters(self.counters_path)
        with self.store.transaction():
            for eid, entry in sorted(counters.items()):
                ent = self.store.get(eid)
                if ent is None:
                    logger.debug("counter_for_unknown_entity", entity_id=eid)
                    continue
                delta = entry.downloads - ent.downloads
                if delta > 0:
                    self.store.increment_downloads(eid, delta)
                    merged += 1
        if merged:
            logger.info("counters_merged", path=str(self.counters_path), entities=merged)
        return merged

    async def run_periodic_flush(self, stop: asyncio.Event) -> None:
        """Flush every ``interval_s`` seconds until ``stop`` is set."""
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                self.flush(force=True)


__all__ = ["DEFAULT_FLUSH_INTERVAL_S", "DownloadCounter"]
