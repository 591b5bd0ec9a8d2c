from __future__ import annotations

import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Iterator, Sequence

from .models import ConversionOutcome, OutcomeStatus, UploadItem
from .worker import ConversionWorker, derive_output_name


class WorkerPool:
    """Run a :class:`ConversionWorker` over a batch with bounded concurrency.

    ``iter_outcomes`` is a generator: work is only scheduled while the
    consumer pulls, so no more than ``concurrency`` items are ever running or
    waiting to be consumed.

    The bound covers pool slots, not transform threads. A transform that
    times out (or outlives a cancellation grace period) without honouring
    its ``cancel_event`` is abandoned on its daemon thread and keeps running
    after its slot is reused, so transforms that hang repeatedly can push
    the number of live transform calls above ``concurrency``. Injected
    transforms should accept ``cancel_event`` to avoid this.
    """

    def __init__(self, worker: ConversionWorker, *, concurrency: int = 1, output_suffix: str = "") -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._worker = worker
        self._concurrency = concurrency
        self._suffix = output_suffix

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def run_batch(
        self,
        items: Sequence[UploadItem],
        concurrency: int | None = None,
        cancel: threading.Event | None = None,
    ) -> list[ConversionOutcome]:
        outcomes = list(self.iter_outcomes(items, concurrency=concurrency, cancel=cancel))
        outcomes.sort(key=lambda outcome: outcome.index)
        return outcomes

    def iter_outcomes(
        self,
        items: Sequence[UploadItem],
        *,
        concurrency: int | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[ConversionOutcome]:
        """Yield one outcome per item in completion order."""

        window = max(1, concurrency or self._concurrency)
        if cancel is None:
            cancel = threading.Event()
        queue: deque[tuple[int, UploadItem]] = deque(enumerate(items))
        pending: dict[Future[ConversionOutcome], tuple[int, UploadItem]] = {}
        executor = ThreadPoolExecutor(max_workers=window, thread_name_prefix="ct-worker")
        try:
            while queue or pending:
                while queue and len(pending) < window and not cancel.is_set():
                    index, item = queue.popleft()
                    future = executor.submit(self._worker.convert, item, index, cancel)
                    pending[future] = (index, item)
                if not pending:
                    break
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: pending[f][0]):
                    index, item = pending.pop(future)
                    yield self._resolve(future, index, item)
            while queue:
                index, item = queue.popleft()
                yield self._skipped(index, item)
        finally:
            # Abandoned before every item was yielded.
            if queue or pending:
                cancel.set()
            executor.shutdown(wait=True, cancel_futures=True)

    def _resolve(self, future: Future[ConversionOutcome], index: int, item: UploadItem) -> ConversionOutcome:
        try:
            return future.result()
        except Exception as exc:  # isolation: a broken worker only fails its own item
            return ConversionOutcome(
                index=index,
                source_item=item,
                status=OutcomeStatus.FAILED,
                output_name=derive_output_name(item.original_name, self._suffix),
                error=f"{type(exc).__name__}: {exc}",
                error_code="TRANSFORM_FAILED",
            )

    def _skipped(self, index: int, item: UploadItem) -> ConversionOutcome:
        return ConversionOutcome(
            index=index,
            source_item=item,
            status=OutcomeStatus.SKIPPED,
            output_name=derive_output_name(item.original_name, self._suffix),
            error="Batch cancelled before conversion started",
            error_code="CANCELED",
        )


__all__ = ["WorkerPool"]
