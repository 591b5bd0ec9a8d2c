"""Translation of pipeline failures into HTTP responses."""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from core.ct_batch.errors import PipelineError
from core.ct_batch.models import BatchReport, VerdictReason
from models.schemas import BatchReportModel, ErrorResponse

STATUS_BY_CODE: dict[str, int] = {
    "NO_VALID_FILES": 422,
    "ALL_CONVERSIONS_FAILED": 422,
    "CANCELLED": 504,
    "SINK_UNWRITABLE": 500,
    "TRUNCATED": 500,
}

_SIZE_REASONS = {VerdictReason.TOO_LARGE.value, VerdictReason.BATCH_TOO_LARGE.value}


def status_for(code: str, report: BatchReport | None) -> int:
    if code == "NO_VALID_FILES" and report is not None:
        if report.total_submitted == 0:
            return 400
        if all(entry.reason in _SIZE_REASONS for entry in report.per_item):
            return 413
    return STATUS_BY_CODE.get(code, 500)


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    report = exc.report
    body = ErrorResponse(
        error=str(exc),
        reason=exc.code,
        batch_id=report.batch_id if report is not None else None,
        report=BatchReportModel.from_report(report) if report is not None else None,
    )
    return JSONResponse(status_code=status_for(exc.code, report), content=body.model_dump())


__all__ = ["STATUS_BY_CODE", "pipeline_error_handler", "status_for"]
