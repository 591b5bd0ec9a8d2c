from __future__ import annotations

import inspect
import math
import threading
import time
from pathlib import Path
from typing import Any, Callable

from .detection import EXTENSION_MAP, split_extension
from .errors import ConversionError
from .models import ConversionOutcome, OutcomeStatus, UploadItem
from .utils import slugify, split_client_path

Transform = Callable[..., bytes]

_POLL_INTERVAL_S = 0.05


def derive_output_name(original_name: str, suffix: str) -> str:
    """Replace the (possibly compound) extension of the basename with *suffix*."""

    basename, _ = split_client_path(original_name)
    stem, _ = split_extension(basename)
    return f"{slugify(stem)}{suffix}"


def source_format_hint(original_name: str) -> str:
    _, extension = split_extension(split_client_path(original_name)[0])
    image_format = EXTENSION_MAP.get(extension)
    return image_format.value if image_format else "unknown"


def _accepts_cancel_event(transform: Transform) -> bool:
    try:
        parameters = inspect.signature(transform).parameters
    except (TypeError, ValueError):
        return False
    return "cancel_event" in parameters or any(
        parameter.kind is inspect.Parameter.VAR_KEYWORD for parameter in parameters.values()
    )


class ConversionWorker:
    """Run the injected transform for one item at a time.

    Every call returns exactly one :class:`ConversionOutcome`; nothing raised
    by the transform escapes. The transform runs on a daemon thread so a call
    that outlives its timeout can be abandoned.
    """

    def __init__(
        self,
        transform: Transform,
        *,
        work_dir: Path,
        output_suffix: str,
        timeout_s: float,
        cancel_grace_s: float = 5.0,
    ) -> None:
        self._transform = transform
        self._work_dir = work_dir
        self._suffix = output_suffix
        self._timeout_s = timeout_s
        self._grace_s = cancel_grace_s
        self._cancellable = _accepts_cancel_event(transform)
        self._work_dir.mkdir(parents=True, exist_ok=True)

    def convert(
        self,
        item: UploadItem,
        index: int,
        cancel: threading.Event | None = None,
    ) -> ConversionOutcome:
        output_name = derive_output_name(item.original_name, self._suffix)
        if cancel is not None and cancel.is_set():
            return ConversionOutcome(
                index=index,
                source_item=item,
                status=OutcomeStatus.SKIPPED,
                output_name=output_name,
                error="Batch cancelled before conversion started",
                error_code="CANCELED",
            )

        start = time.perf_counter()
        try:
            payload = self._read_source(item)
            result = self._call_with_timeout(payload, source_format_hint(item.original_name), cancel)
            output_path = self._work_dir / f"{index:05d}-{output_name}"
            output_path.write_bytes(result)
        except ConversionError as exc:
            status = {
                "TIMEOUT": OutcomeStatus.TIMEOUT,
                "CANCELED": OutcomeStatus.SKIPPED,
            }.get(exc.code, OutcomeStatus.FAILED)
            return self._failure(item, index, output_name, status, exc.code, str(exc), start)
        except Exception as exc:  # isolation: any fault becomes a per-item failure
            message = f"{type(exc).__name__}: {exc}"
            return self._failure(item, index, output_name, OutcomeStatus.FAILED, "TRANSFORM_FAILED", message, start)

        return ConversionOutcome(
            index=index,
            source_item=item,
            status=OutcomeStatus.SUCCESS,
            output_name=output_name,
            output_path=output_path,
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    def _read_source(self, item: UploadItem) -> bytes:
        try:
            item.content.seek(0)
            return item.content.read()
        finally:
            item.content.close()

    def _call_with_timeout(
        self,
        payload: bytes,
        source_format: str,
        cancel: threading.Event | None,
    ) -> bytes:
        done = threading.Event()
        call_cancel = threading.Event()
        box: dict[str, Any] = {}

        def _target() -> None:
            try:
                if self._cancellable:
                    box["result"] = self._transform(payload, source_format, cancel_event=call_cancel)
                else:
                    box["result"] = self._transform(payload, source_format)
            except Exception as exc:
                box["error"] = exc
            finally:
                done.set()

        thread = threading.Thread(target=_target, name="ct-transform", daemon=True)
        thread.start()
        # A non-positive timeout disables the per-item deadline.
        deadline = time.monotonic() + self._timeout_s if self._timeout_s > 0 else math.inf
        while not done.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                call_cancel.set()
                raise ConversionError("TIMEOUT", f"Transform exceeded {self._timeout_s:g}s")
            if cancel is not None and cancel.is_set():
                if done.wait(min(self._grace_s, max(remaining, 0.0))):
                    break
                call_cancel.set()
                raise ConversionError("CANCELED", "Batch cancelled during conversion")
            done.wait(min(_POLL_INTERVAL_S, remaining))

        if "error" in box:
            error = box["error"]
            if isinstance(error, ConversionError):
                raise error
            raise ConversionError("TRANSFORM_FAILED", f"{type(error).__name__}: {error}") from error
        if "result" not in box:
            raise ConversionError("TRANSFORM_FAILED", "Transform exited without a result")
        result = box["result"]
        if not isinstance(result, (bytes, bytearray, memoryview)):
            raise ConversionError("TRANSFORM_FAILED", f"Transform returned {type(result).__name__}, expected bytes")
        return bytes(result)

    def _failure(
        self,
        item: UploadItem,
        index: int,
        output_name: str,
        status: OutcomeStatus,
        code: str,
        message: str,
        start: float,
    ) -> ConversionOutcome:
        return ConversionOutcome(
            index=index,
            source_item=item,
            status=status,
            output_name=output_name,
            error=message,
            error_code=code,
            duration_ms=(time.perf_counter() - start) * 1000,
        )


__all__ = ["ConversionWorker", "Transform", "derive_output_name", "source_format_hint"]
