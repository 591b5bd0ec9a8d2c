from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from core.ct_batch.config import AppConfig
from core.ct_batch.errors import PipelineError
from core.ct_batch.orchestrator import BatchOrchestrator
from models.schemas import BatchReportModel

from ..dependencies import get_config, get_orchestrator, get_report_store
from ..store import ReportStore
from ..utils import run_sync, stage_uploads

router = APIRouter(prefix="/api/v1", tags=["batches"])


@router.post(
    "/batches",
    summary="Convert a batch of MRI volumes and stream back a zip of CT volumes",
    response_class=StreamingResponse,
)
async def create_batch(
    files: list[UploadFile] | None = File(None),
    relative_paths: list[str] | None = Form(None),
    config: AppConfig = Depends(get_config),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
    store: ReportStore = Depends(get_report_store),
) -> StreamingResponse:
    context = orchestrator.new_context()
    try:
        items = await stage_uploads(context, files or [], relative_paths)
    except BaseException:
        context.close()
        raise

    try:
        run = await run_sync(orchestrator.process_batch, items, context=context)
    except PipelineError as exc:
        if exc.report is not None:
            store.register(exc.report.batch_id, exc.report)
        raise

    store.register(run.batch_id, run)
    headers = {
        "Content-Disposition": f'attachment; filename="{config.output.archive_name}"',
        "X-Batch-Id": run.batch_id,
        "X-Batch-Submitted": str(run.total_submitted),
        "X-Batch-Accepted": str(run.accepted),
        "X-Batch-Rejected": str(run.rejected),
        "X-Batch-Report": f"/api/v1/batches/{run.batch_id}/report",
    }
    return StreamingResponse(
        run,
        media_type="application/zip",
        headers=headers,
        background=BackgroundTask(run.close),
    )


@router.get(
    "/batches/{batch_id}/report",
    summary="Per-file report for a finished batch",
    response_model=BatchReportModel,
)
def get_batch_report(
    batch_id: str,
    store: ReportStore = Depends(get_report_store),
) -> BatchReportModel:
    try:
        report = store.get(batch_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="BATCH_NOT_FOUND") from exc
    if report is None:
        raise HTTPException(status_code=409, detail="BATCH_NOT_FINISHED")
    return BatchReportModel.from_report(report)


__all__ = ["router"]
