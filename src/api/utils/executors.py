"""Execution helpers bridging synchronous services into async contexts."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from fastapi import UploadFile

from core.ct_batch.context import BatchContext
from core.ct_batch.models import UploadItem

T = TypeVar("T")


async def run_sync(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Execute *func* in a worker thread and return the result."""

    return await asyncio.to_thread(func, *args, **kwargs)


async def stage_uploads(
    context: BatchContext,
    uploads: Sequence[UploadFile],
    relative_paths: Sequence[str] | None = None,
) -> list[UploadItem]:
    """Copy multipart uploads into the batch's private storage.

    ``relative_paths`` is matched to ``uploads`` by position; a blank or
    missing value falls back to the directory carried in the filename.
    """

    items: list[UploadItem] = []
    for position, upload in enumerate(uploads):
        relative = None
        if relative_paths and position < len(relative_paths):
            relative = relative_paths[position].strip().strip("/") or None
        item = await run_sync(
            context.stage,
            upload.filename or "upload",
            upload.file,
            declared_mime=upload.content_type,
            relative_path=relative,
        )
        items.append(item)
    return items


__all__ = ["run_sync", "stage_uploads"]
