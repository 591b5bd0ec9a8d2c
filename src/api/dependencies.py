"""FastAPI dependency providers for application services."""

from __future__ import annotations

from fastapi import HTTPException, Request

from core.ct_batch.config import AppConfig
from core.ct_batch.orchestrator import BatchOrchestrator

from .store import ReportStore


def get_config(request: Request) -> AppConfig:
    config = getattr(request.app.state, "config", None)
    if config is None:
        raise HTTPException(status_code=503, detail="CONFIG_UNAVAILABLE")
    return config


def get_orchestrator(request: Request) -> BatchOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="SERVICE_UNAVAILABLE")
    return orchestrator


def get_report_store(request: Request) -> ReportStore:
    store = getattr(request.app.state, "report_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="STORE_UNAVAILABLE")
    return store


__all__ = ["get_config", "get_orchestrator", "get_report_store"]
