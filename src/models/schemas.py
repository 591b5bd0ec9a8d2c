from __future__ import annotations

from pydantic import BaseModel

from core.ct_batch.models import BatchReport


class HealthStatus(BaseModel):
    status: str
    version: str


class ReportEntryModel(BaseModel):
    name: str
    status: str
    reason: str
    error: str | None = None
    output_name: str | None = None


class BatchReportModel(BaseModel):
    batch_id: str
    state: str
    total_submitted: int
    accepted: int
    rejected: int
    succeeded: int
    failed: int
    per_item: list[ReportEntryModel]
    error_code: str | None = None

    @classmethod
    def from_report(cls, report: BatchReport) -> BatchReportModel:
        return cls.model_validate(report.to_payload())


class ErrorResponse(BaseModel):
    error: str
    reason: str
    batch_id: str | None = None
    report: BatchReportModel | None = None
