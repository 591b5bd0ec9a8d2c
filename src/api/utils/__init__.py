from .executors import run_sync, stage_uploads

__all__ = ["run_sync", "stage_uploads"]
