from __future__ import annotations

import csv
import json
import threading
import time
from dataclasses import asdict, dataclass, field
from io import StringIO
from pathlib import Path
from typing import Any

from .utils import atomic_write


@dataclass(slots=True)
class StageTimings:
    validate_ms: float
    convert_ms: float


@dataclass(slots=True)
class RunLogEntry:
    batch_id: str
    source: str
    status: str
    reason: str
    error_code: str | None
    timings: StageTimings
    output_name: str | None
    size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timings"] = asdict(self.timings)
        return payload


class RunLogger:
    """Append-only JSONL log shared by every item of a batch."""

    def __init__(self, log_file: Path | None) -> None:
        self._log_file = log_file
        self._lock = threading.Lock()

    def append(self, entry: RunLogEntry) -> None:
        if self._log_file is None:
            return
        line = json.dumps(entry.to_dict(), ensure_ascii=False)
        with self._lock:
            self._log_file.parent.mkdir(parents=True, exist_ok=True)
            with self._log_file.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")


@dataclass(slots=True)
class BatchSummary:
    timestamp: float = field(default_factory=time.time)
    state: str = ""
    total: int = 0
    accepted: int = 0
    successes: int = 0
    failures: int = 0
    reasons: dict[str, int] = field(default_factory=dict)

    def as_row(self, batch_id: str) -> list[str]:
        reasons_json = json.dumps(self.reasons, sort_keys=True)
        return [
            batch_id,
            time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.timestamp)),
            self.state,
            str(self.total),
            str(self.accepted),
            str(self.successes),
            str(self.failures),
            reasons_json,
        ]


SUMMARY_HEADER = [
    "batch_id",
    "timestamp",
    "state",
    "total",
    "accepted",
    "successes",
    "failures",
    "reasons",
]

_summary_lock = threading.Lock()


def write_summary_csv(path: Path, header: list[str], rows: list[list[str]]) -> None:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(header)
    writer.writerows(rows)
    atomic_write(path, buffer.getvalue())


def append_batch_summary(path: Path, batch_id: str, summary: BatchSummary) -> None:
    with _summary_lock:
        header = SUMMARY_HEADER
        rows: list[list[str]] = []
        if path.exists():
            with path.open("r", encoding="utf-8", newline="") as handle:
                reader = list(csv.reader(handle))
            if reader:
                header = reader[0]
                rows = reader[1:]
        rows.append(summary.as_row(batch_id))
        write_summary_csv(path, header, rows)


__all__ = [
    "BatchSummary",
    "RunLogEntry",
    "RunLogger",
    "StageTimings",
    "append_batch_summary",
    "write_summary_csv",
]
