from __future__ import annotations

from .config import AppConfig
from .detection import DetectionError, detect_format, mime_matches, sniff_matches
from .models import UploadItem, ValidationVerdict, VerdictReason


class FileValidator:
    """Accept or reject uploads for one batch.

    The validator is batch-scoped: it tracks the bytes accepted so far to
    enforce the total batch limit, so a fresh instance is needed per batch.
    """

    def __init__(self, config: AppConfig) -> None:
        self._allowed = config.allowed_extensions
        self._max_file_bytes = config.runtime.limits.max_file_bytes
        self._max_batch_bytes = config.runtime.limits.max_batch_bytes
        self._sniff = config.runtime.sniff_magic
        self._accepted_bytes = 0

    @property
    def accepted_bytes(self) -> int:
        return self._accepted_bytes

    def validate(self, item: UploadItem) -> ValidationVerdict:
        try:
            detection = detect_format(item.original_name, self._allowed)
        except DetectionError as exc:
            return self._reject(item, VerdictReason.BAD_EXTENSION, str(exc))

        image_format = detection.image_format
        if item.size_bytes > self._max_file_bytes:
            return self._reject(
                item,
                VerdictReason.TOO_LARGE,
                f"{item.size_bytes} bytes exceeds the per-file limit of {self._max_file_bytes}",
            )
        if not mime_matches(image_format, item.declared_mime):
            return self._reject(
                item,
                VerdictReason.BAD_MIME,
                f"Declared type {item.declared_mime} does not match {image_format.value}",
            )
        if self._sniff and not sniff_matches(image_format, item.content):
            return self._reject(
                item,
                VerdictReason.DATA_MISMATCH,
                f"Content does not look like {image_format.value}",
            )
        if self._accepted_bytes + item.size_bytes > self._max_batch_bytes:
            return self._reject(
                item,
                VerdictReason.BATCH_TOO_LARGE,
                f"Batch would exceed the total limit of {self._max_batch_bytes} bytes",
            )
        self._accepted_bytes += item.size_bytes
        return ValidationVerdict(item=item, accepted=True, reason=VerdictReason.OK, image_format=image_format)

    def _reject(self, item: UploadItem, reason: VerdictReason, detail: str) -> ValidationVerdict:
        return ValidationVerdict(item=item, accepted=False, reason=reason, detail=detail)


__all__ = ["FileValidator"]
