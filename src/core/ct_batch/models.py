"""Domain records flowing through the batch pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from .detection import ImageFormat


class VerdictReason(str, Enum):
    OK = "OK"
    BAD_EXTENSION = "BAD_EXTENSION"
    BAD_MIME = "BAD_MIME"
    DATA_MISMATCH = "DATA_MISMATCH"
    TOO_LARGE = "TOO_LARGE"
    BATCH_TOO_LARGE = "BATCH_TOO_LARGE"


class OutcomeStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    SKIPPED = "SKIPPED"


class BatchState(str, Enum):
    RECEIVING = "RECEIVING"
    VALIDATING = "VALIDATING"
    CONVERTING = "CONVERTING"
    ARCHIVING = "ARCHIVING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in {BatchState.COMPLETE, BatchState.FAILED}


REJECTED = "REJECTED"


@dataclass(frozen=True, slots=True)
class UploadItem:
    """One uploaded file, parsed once at the boundary."""

    original_name: str
    relative_path: str | None
    size_bytes: int
    content: BinaryIO = field(repr=False, compare=False)
    declared_mime: str | None = None

    @property
    def display_name(self) -> str:
        if self.relative_path:
            return f"{self.relative_path}/{self.original_name}"
        return self.original_name


@dataclass(frozen=True, slots=True)
class ValidationVerdict:
    item: UploadItem
    accepted: bool
    reason: VerdictReason
    detail: str | None = None
    image_format: ImageFormat | None = None


@dataclass(slots=True)
class ConversionOutcome:
    index: int
    source_item: UploadItem
    status: OutcomeStatus
    output_name: str | None = None
    output_path: Path | None = None
    error: str | None = None
    error_code: str | None = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    def open(self) -> BinaryIO:
        if self.output_path is None:
            raise FileNotFoundError(f"No output for {self.source_item.display_name}")
        return self.output_path.open("rb")

    def release(self) -> None:
        if self.output_path is not None:
            self.output_path.unlink(missing_ok=True)
            self.output_path = None


@dataclass(frozen=True, slots=True)
class ReportEntry:
    name: str
    status: str
    reason: str
    error: str | None = None
    output_name: str | None = None


@dataclass(frozen=True, slots=True)
class BatchReport:
    batch_id: str
    state: BatchState
    total_submitted: int
    accepted: int
    rejected: int
    succeeded: int
    failed: int
    per_item: tuple[ReportEntry, ...]
    error_code: str | None = None

    def to_payload(self) -> dict[str, object]:
        payload = asdict(self)
        payload["state"] = self.state.value
        payload["per_item"] = [asdict(entry) for entry in self.per_item]
        return payload


__all__ = [
    "BatchReport",
    "BatchState",
    "ConversionOutcome",
    "OutcomeStatus",
    "REJECTED",
    "ReportEntry",
    "UploadItem",
    "ValidationVerdict",
    "VerdictReason",
]
