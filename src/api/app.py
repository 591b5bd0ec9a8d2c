from __future__ import annotations

from fastapi import FastAPI

from core.ct_batch.config import AppConfig, load_config
from core.ct_batch.errors import PipelineError
from core.ct_batch.orchestrator import BatchOrchestrator
from core.ct_batch.transforms import load_transform
from core.ct_batch.worker import Transform
from core.constraint import APP_VERSION
from core.settings import Settings, get_settings

from .errors import pipeline_error_handler
from .routers import batches, health
from .store import ReportStore


def create_app(
    config: AppConfig | None = None,
    *,
    transform: Transform | None = None,
    require_enabled: bool = True,
) -> FastAPI:
    settings = get_settings()
    config = config or _prepare_config(settings)
    if require_enabled and not config.runtime.enable_local_api:
        raise RuntimeError("Local API is disabled. Enable it via configuration or environment.")
    if transform is None:
        transform = load_transform(settings.transform or config.runtime.transform)

    app = FastAPI(title="CT Batch Converter", version=APP_VERSION)
    app.state.config = config
    app.state.orchestrator = BatchOrchestrator(config, transform)
    app.state.report_store = ReportStore(config.runtime.report_retention)

    app.include_router(health.router)
    app.include_router(batches.router)
    app.add_exception_handler(PipelineError, pipeline_error_handler)

    @app.on_event("shutdown")
    async def _shutdown() -> None:  # pragma: no cover - FastAPI lifecycle
        store: ReportStore = app.state.report_store
        store.close_all()

    return app

def _prepare_config(settings: Settings) -> AppConfig:
    config = load_config(settings.config_path)
    if settings.enable_local_api is not None:
        config.runtime.enable_local_api = settings.enable_local_api
    return config

__all__ = ["create_app"]
