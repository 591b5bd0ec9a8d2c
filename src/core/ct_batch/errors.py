"""Error taxonomy for the batch pipeline.

Validation and conversion errors are recovered per item and only surface in
the batch report. Archive and orchestration errors abort the whole batch.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:  # pragma: no cover
    from .models import BatchReport


class PipelineError(RuntimeError):
    codes: ClassVar[frozenset[str]] = frozenset()

    def __init__(self, code: str, message: str, *, report: BatchReport | None = None) -> None:
        if self.codes and code not in self.codes:
            raise ValueError(f"Unknown {type(self).__name__} code: {code}")
        super().__init__(message)
        self.code = code
        self.report = report


class ValidationError(PipelineError):
    codes = frozenset({"BAD_EXTENSION", "BAD_MIME", "DATA_MISMATCH", "TOO_LARGE", "BATCH_TOO_LARGE"})


class ConversionError(PipelineError):
    codes = frozenset({"TIMEOUT", "TRANSFORM_FAILED", "CANCELED"})

    def __init__(self, code: str = "TRANSFORM_FAILED", message: str = "", **kwargs) -> None:
        # Transforms may raise ConversionError("reason") without a code.
        if code not in self.codes and not message:
            code, message = "TRANSFORM_FAILED", code
        super().__init__(code, message or code, **kwargs)


class ArchiveError(PipelineError):
    codes = frozenset({"SINK_UNWRITABLE", "TRUNCATED"})


class OrchestrationError(PipelineError):
    codes = frozenset({"NO_VALID_FILES", "ALL_CONVERSIONS_FAILED", "CANCELLED"})


__all__ = [
    "ArchiveError",
    "ConversionError",
    "OrchestrationError",
    "PipelineError",
    "ValidationError",
]
