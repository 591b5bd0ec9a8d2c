from __future__ import annotations

import shutil
import tempfile
import threading
from pathlib import Path
from typing import BinaryIO

from .config import AppConfig
from .logging import RunLogger
from .models import UploadItem
from .utils import generate_run_id, split_client_path


class BatchContext:
    """Everything one batch owns, released together by :meth:`close`.

    Holds the batch id, the cancellation event, a private temporary
    directory for staged inputs and converted outputs, and the run logger.
    """

    def __init__(self, config: AppConfig, *, batch_id: str | None = None) -> None:
        self.batch_id = batch_id or generate_run_id("batch")
        self.cancel = threading.Event()
        self._tmp = tempfile.TemporaryDirectory(prefix=f"{self.batch_id}-")
        self.root = Path(self._tmp.name)
        self.input_dir = self.root / "input"
        self.output_dir = self.root / "output"
        self.input_dir.mkdir()
        self.output_dir.mkdir()
        log_dir = config.runtime.output_dir
        self.logger = RunLogger(log_dir / config.runtime.log_file if log_dir else None)
        self.summary_path = log_dir / config.runtime.summary_csv if log_dir else None
        self._handles: list[BinaryIO] = []
        self._staged = 0
        self._lock = threading.Lock()
        self._closed = False
        self._timer: threading.Timer | None = None
        self.timed_out = False

    @property
    def closed(self) -> bool:
        return self._closed

    def stage(
        self,
        filename: str,
        source: BinaryIO,
        *,
        declared_mime: str | None = None,
        relative_path: str | None = None,
        chunk_size: int = 1024 * 1024,
    ) -> UploadItem:
        """Copy an incoming stream into batch storage and wrap it as an item."""

        original_name, client_dir = split_client_path(filename)
        with self._lock:
            self._staged += 1
            target = self.input_dir / f"{self._staged:05d}"
        with target.open("wb") as handle:
            shutil.copyfileobj(source, handle, chunk_size)
        return self._open_item(target, original_name, relative_path or client_dir, declared_mime)

    def stage_path(self, path: Path, *, relative_path: str | None = None) -> UploadItem:
        """Wrap a local file without copying it."""

        return self._open_item(path, path.name, relative_path, None)

    def _open_item(
        self,
        path: Path,
        original_name: str,
        relative_path: str | None,
        declared_mime: str | None,
    ) -> UploadItem:
        content = path.open("rb")
        with self._lock:
            self._handles.append(content)
        return UploadItem(
            original_name=original_name,
            relative_path=relative_path,
            size_bytes=path.stat().st_size,
            content=content,
            declared_mime=declared_mime,
        )

    def start_timer(self, timeout_s: float | None) -> None:
        if not timeout_s or self._timer is not None:
            return
        self._timer = threading.Timer(timeout_s, self._expire)
        self._timer.daemon = True
        self._timer.start()

    def _expire(self) -> None:
        self.timed_out = True
        self.cancel.set()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            handles, self._handles = self._handles, []
        if self._timer is not None:
            self._timer.cancel()
        for handle in handles:
            handle.close()
        self._tmp.cleanup()

    def __enter__(self) -> BatchContext:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["BatchContext"]
