"""Batch MRI-to-CT conversion pipeline."""

from .archive import ArchiveBuilder
from .config import AppConfig, load_config
from .context import BatchContext
from .errors import ArchiveError, ConversionError, OrchestrationError, PipelineError, ValidationError
from .models import BatchReport, BatchState, ConversionOutcome, OutcomeStatus, UploadItem, VerdictReason
from .orchestrator import BatchOrchestrator, BatchRun
from .pool import WorkerPool
from .validation import FileValidator
from .worker import ConversionWorker

__all__ = [
    "AppConfig",
    "ArchiveBuilder",
    "ArchiveError",
    "BatchContext",
    "BatchOrchestrator",
    "BatchReport",
    "BatchRun",
    "BatchState",
    "ConversionError",
    "ConversionOutcome",
    "ConversionWorker",
    "FileValidator",
    "OrchestrationError",
    "OutcomeStatus",
    "PipelineError",
    "UploadItem",
    "ValidationError",
    "VerdictReason",
    "WorkerPool",
    "load_config",
]
