from __future__ import annotations

import time
from typing import BinaryIO, Iterable, Iterator, Sequence

from .archive import ArchiveBuilder
from .config import AppConfig
from .context import BatchContext
from .errors import ArchiveError, OrchestrationError, PipelineError
from .logging import BatchSummary, RunLogEntry, StageTimings, append_batch_summary
from .models import (
    REJECTED,
    BatchReport,
    BatchState,
    ConversionOutcome,
    OutcomeStatus,
    ReportEntry,
    UploadItem,
    ValidationVerdict,
    VerdictReason,
)
from .pool import WorkerPool
from .validation import FileValidator
from .worker import ConversionWorker, Transform, derive_output_name

_TRANSITIONS: dict[BatchState, frozenset[BatchState]] = {
    BatchState.RECEIVING: frozenset({BatchState.VALIDATING, BatchState.FAILED}),
    BatchState.VALIDATING: frozenset({BatchState.CONVERTING, BatchState.FAILED}),
    BatchState.CONVERTING: frozenset({BatchState.ARCHIVING, BatchState.FAILED}),
    BatchState.ARCHIVING: frozenset({BatchState.COMPLETE, BatchState.FAILED}),
    BatchState.COMPLETE: frozenset(),
    BatchState.FAILED: frozenset(),
}


def _outcome_reason(outcome: ConversionOutcome) -> str:
    if outcome.succeeded:
        return VerdictReason.OK.value
    return outcome.error_code or outcome.status.value


def _close_iterator(iterator: Iterator[object] | None, wait_s: float = 0.0) -> bool:
    """Close a generator, waiting up to *wait_s* if another thread is running it."""

    close = getattr(iterator, "close", None)
    if close is None:
        return True
    deadline = time.monotonic() + wait_s
    while True:
        try:
            close()
            return True
        except ValueError:
            # "generator already executing": a response thread is mid-chunk.
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.01)


class BatchRun:
    """A batch in flight: iterate it for archive bytes, read ``report`` after.

    The run owns its :class:`BatchContext`; closing the run (or abandoning
    the byte stream) cancels outstanding conversions and removes every
    temporary file.
    """

    def __init__(
        self,
        context: BatchContext,
        items: Sequence[UploadItem],
        suffix: str,
        *,
        close_wait_s: float = 5.0,
    ) -> None:
        self.context = context
        self.items = tuple(items)
        self.state = BatchState.RECEIVING
        self.error_code: str | None = None
        self._suffix = suffix
        self._close_wait_s = close_wait_s
        self._entries: list[ReportEntry | None] = [None] * len(self.items)
        self._validate_ms: list[float] = [0.0] * len(self.items)
        self._accepted_positions: list[int] = []
        self._planned_names: list[str] = []
        self._outcomes_by_position: dict[int, ConversionOutcome] = {}
        self._report: BatchReport | None = None
        self._stream: Iterator[bytes] | None = None
        self._outcomes: Iterator[ConversionOutcome] | None = None
        self._released = False

    @property
    def batch_id(self) -> str:
        return self.context.batch_id

    @property
    def total_submitted(self) -> int:
        return len(self.items)

    @property
    def accepted(self) -> int:
        return len(self._accepted_positions)

    @property
    def rejected(self) -> int:
        return self.total_submitted - self.accepted

    @property
    def report(self) -> BatchReport | None:
        """The finalized report, or ``None`` while the batch is still running."""

        return self._report

    def transition(self, target: BatchState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal batch transition {self.state.value} -> {target.value}")
        self.state = target
        if target.terminal:
            self._report = self._build_report()

    @property
    def accepted_items(self) -> list[UploadItem]:
        return [self.items[position] for position in self._accepted_positions]

    def fail(self, code: str) -> None:
        if not self.state.terminal:
            self.error_code = code
            self.transition(BatchState.FAILED)

    def error(self, code: str, message: str) -> OrchestrationError:
        self.fail(code)
        return OrchestrationError(code, message, report=self._report)

    def record_verdict(self, position: int, verdict: ValidationVerdict, elapsed_ms: float) -> None:
        self._validate_ms[position] = elapsed_ms
        if verdict.accepted:
            self._accepted_positions.append(position)
            return
        item = verdict.item
        self._entries[position] = ReportEntry(
            name=item.display_name,
            status=REJECTED,
            reason=verdict.reason.value,
            error=verdict.detail,
        )
        self._log(position, REJECTED, verdict.reason.value, verdict.reason.value, 0.0, None)

    def plan_output_names(self, names: Sequence[str]) -> None:
        """Fix each accepted item's archive name, indexed like ``accepted_items``."""

        self._planned_names = list(names)

    def record_outcome(self, outcome: ConversionOutcome) -> None:
        position = self._accepted_positions[outcome.index]
        if position in self._outcomes_by_position:
            return
        if outcome.index < len(self._planned_names):
            outcome.output_name = self._planned_names[outcome.index]
        self._outcomes_by_position[position] = outcome
        self._log(
            position,
            outcome.status.value,
            _outcome_reason(outcome),
            outcome.error_code,
            outcome.duration_ms,
            outcome.output_name,
        )

    def attach_outcomes(self, outcomes: Iterator[ConversionOutcome]) -> None:
        self._outcomes = outcomes

    def attach_stream(self, stream: Iterator[bytes]) -> None:
        self._stream = stream

    def __iter__(self) -> Iterator[bytes]:
        if self._stream is None:
            return iter(())
        return self._stream

    def write_to(self, sink: BinaryIO) -> int:
        written = 0
        for chunk in self:
            sink.write(chunk)
            written += len(chunk)
        return written

    def close(self) -> None:
        if not self.state.terminal:
            self.context.cancel.set()
        if not _close_iterator(self._stream, self._close_wait_s):
            return
        if not self.state.terminal:
            self.fail("CANCELLED")
        self.release()

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        if not self.state.terminal:
            self.context.cancel.set()
        _close_iterator(self._outcomes, self._close_wait_s)
        if self._report is not None and self.context.summary_path is not None:
            append_batch_summary(self.context.summary_path, self.batch_id, self._summary(self._report))
        self.context.close()

    def __enter__(self) -> BatchRun:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _build_report(self) -> BatchReport:
        entries: list[ReportEntry] = []
        for position, entry in enumerate(self._entries):
            outcome = self._outcomes_by_position.get(position)
            if entry is None and outcome is not None:
                entry = ReportEntry(
                    name=outcome.source_item.display_name,
                    status=outcome.status.value,
                    reason=_outcome_reason(outcome),
                    error=outcome.error,
                    output_name=outcome.output_name if outcome.succeeded else None,
                )
                self._entries[position] = entry
            if entry is None:
                item = self.items[position]
                entry = ReportEntry(
                    name=item.display_name,
                    status=OutcomeStatus.SKIPPED.value,
                    reason="CANCELLED",
                    error="Batch ended before this item was converted",
                )
                self._entries[position] = entry
                self._log(position, entry.status, entry.reason, "CANCELLED", 0.0, None)
            entries.append(entry)
        succeeded = sum(1 for entry in entries if entry.status == OutcomeStatus.SUCCESS.value)
        return BatchReport(
            batch_id=self.batch_id,
            state=self.state,
            total_submitted=self.total_submitted,
            accepted=self.accepted,
            rejected=self.rejected,
            succeeded=succeeded,
            failed=self.accepted - succeeded,
            per_item=tuple(entries),
            error_code=self.error_code,
        )

    def _summary(self, report: BatchReport) -> BatchSummary:
        reasons: dict[str, int] = {}
        for entry in report.per_item:
            if entry.reason != VerdictReason.OK.value:
                reasons[entry.reason] = reasons.get(entry.reason, 0) + 1
        return BatchSummary(
            state=report.state.value,
            total=report.total_submitted,
            accepted=report.accepted,
            successes=report.succeeded,
            failures=report.failed,
            reasons=reasons,
        )

    def _log(
        self,
        position: int,
        status: str,
        reason: str,
        error_code: str | None,
        convert_ms: float,
        output_name: str | None,
    ) -> None:
        item = self.items[position]
        self.context.logger.append(
            RunLogEntry(
                batch_id=self.batch_id,
                source=item.display_name,
                status=status,
                reason=reason,
                error_code=error_code,
                timings=StageTimings(validate_ms=self._validate_ms[position], convert_ms=convert_ms),
                output_name=output_name or derive_output_name(item.original_name, self._suffix),
                size_bytes=item.size_bytes,
            )
        )


class BatchOrchestrator:
    """Drive uploads through validation, conversion and archiving."""

    def __init__(self, config: AppConfig, transform: Transform) -> None:
        self._config = config
        self._transform = transform
        self._archiver = ArchiveBuilder(config.output)

    @property
    def config(self) -> AppConfig:
        return self._config

    def new_context(self) -> BatchContext:
        return BatchContext(self._config)

    def process_batch(
        self,
        items: Iterable[UploadItem],
        *,
        context: BatchContext | None = None,
        concurrency: int | None = None,
    ) -> BatchRun:
        """Validate and start converting *items*.

        Returns once the first conversion has succeeded, so every batch-level
        failure (nothing accepted, every conversion failed) is raised as an
        :class:`OrchestrationError` before any archive byte exists. Iterate
        the returned run to stream the archive.
        """

        context = context or self.new_context()
        run = BatchRun(
            context,
            list(items),
            self._config.output.suffix,
            close_wait_s=self._config.runtime.cancel_grace_s + 1.0,
        )
        try:
            self._validate(run)
            if run.accepted == 0:
                raise run.error("NO_VALID_FILES", "No submitted file passed validation")
            run.transition(BatchState.CONVERTING)
            suffix = self._config.output.suffix
            run.plan_output_names(
                self._archiver.plan_names(derive_output_name(item.original_name, suffix) for item in run.accepted_items)
            )
            context.start_timer(self._config.runtime.batch_timeout_s)
            pool = self._build_pool(context, concurrency)
            outcomes = pool.iter_outcomes(run.accepted_items, cancel=context.cancel)
            run.attach_outcomes(outcomes)
            primed = self._prime(run, outcomes)
            run.attach_stream(self._stream(run, primed, outcomes))
        except BaseException:
            run.close()
            raise
        return run

    def _validate(self, run: BatchRun) -> None:
        run.transition(BatchState.VALIDATING)
        validator = FileValidator(self._config)
        for position, item in enumerate(run.items):
            start = time.perf_counter()
            verdict = validator.validate(item)
            run.record_verdict(position, verdict, (time.perf_counter() - start) * 1000)
            if not verdict.accepted:
                item.content.close()

    def _build_pool(self, context: BatchContext, concurrency: int | None) -> WorkerPool:
        runtime = self._config.runtime
        worker = ConversionWorker(
            self._transform,
            work_dir=context.output_dir,
            output_suffix=self._config.output.suffix,
            timeout_s=runtime.item_timeout_s,
            cancel_grace_s=runtime.cancel_grace_s,
        )
        return WorkerPool(
            worker,
            concurrency=runtime.effective_concurrency(concurrency),
            output_suffix=self._config.output.suffix,
        )

    def _prime(self, run: BatchRun, outcomes: Iterator[ConversionOutcome]) -> list[ConversionOutcome]:
        primed: list[ConversionOutcome] = []
        for outcome in outcomes:
            run.record_outcome(outcome)
            primed.append(outcome)
            if outcome.succeeded:
                return primed
        if run.context.cancel.is_set():
            raise run.error("CANCELLED", self._cancel_message(run))
        raise run.error("ALL_CONVERSIONS_FAILED", "Every accepted file failed to convert")

    def _stream(
        self,
        run: BatchRun,
        primed: list[ConversionOutcome],
        outcomes: Iterator[ConversionOutcome],
    ) -> Iterator[bytes]:
        def _ready() -> Iterator[ConversionOutcome]:
            yield from primed
            for outcome in outcomes:
                run.record_outcome(outcome)
                yield outcome
            if run.context.cancel.is_set():
                raise run.error("CANCELLED", self._cancel_message(run))
            run.transition(BatchState.ARCHIVING)

        try:
            yield from self._archiver.stream_archive(_ready())
            run.transition(BatchState.COMPLETE)
        except GeneratorExit:
            run.context.cancel.set()
            run.fail("CANCELLED")
            raise
        except PipelineError as exc:
            run.fail(exc.code)
            exc.report = exc.report or run.report
            raise
        except Exception as exc:
            run.fail("TRUNCATED")
            raise ArchiveError("TRUNCATED", f"Archive aborted: {exc}", report=run.report) from exc
        finally:
            run.release()

    def _cancel_message(self, run: BatchRun) -> str:
        if run.context.timed_out:
            return f"Batch exceeded {self._config.runtime.batch_timeout_s:g}s"
        return "Batch cancelled"


__all__ = ["BatchOrchestrator", "BatchRun"]
