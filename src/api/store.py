"""In-memory retention of recent batches for the report endpoint."""

from __future__ import annotations

import threading
from collections import OrderedDict

from core.ct_batch.models import BatchReport
from core.ct_batch.orchestrator import BatchRun


class ReportStore:
    def __init__(self, retention: int = 100) -> None:
        self._retention = max(1, retention)
        self._entries: OrderedDict[str, BatchRun | BatchReport] = OrderedDict()
        self._lock = threading.Lock()

    def register(self, batch_id: str, entry: BatchRun | BatchReport) -> None:
        evicted: list[BatchRun | BatchReport] = []
        with self._lock:
            self._entries[batch_id] = entry
            self._entries.move_to_end(batch_id)
            while len(self._entries) > self._retention:
                _, old = self._entries.popitem(last=False)
                evicted.append(old)
        for old in evicted:
            if isinstance(old, BatchRun):
                old.close()

    def __contains__(self, batch_id: object) -> bool:
        with self._lock:
            return batch_id in self._entries

    def get(self, batch_id: str) -> BatchReport | None:
        """Return the finished report; ``None`` while streaming.

        Raises :class:`KeyError` for unknown or evicted batches.
        """

        with self._lock:
            entry = self._entries[batch_id]
        if isinstance(entry, BatchRun):
            return entry.report
        return entry

    def close_all(self) -> None:
        with self._lock:
            entries = list(self._entries.values())
        for entry in entries:
            if isinstance(entry, BatchRun):
                entry.close()


__all__ = ["ReportStore"]
