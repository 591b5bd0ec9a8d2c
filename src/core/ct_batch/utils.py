from __future__ import annotations

import hashlib
import os
import re
import tempfile
import time
from pathlib import Path, PurePosixPath
from typing import BinaryIO


SAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def slugify(value: str, max_length: int = 120) -> str:
    normalized = SAFE_FILENAME_RE.sub("-", value.strip())
    normalized = re.sub("-+", "-", normalized)
    normalized = normalized.replace("-.", ".")
    normalized = normalized.strip("-._")
    if not normalized:
        normalized = "file"
    if len(normalized) > max_length:
        normalized = normalized[:max_length]
    return normalized


def generate_run_id(prefix: str = "batch") -> str:
    epoch_ms = int(time.time() * 1000)
    random_bits = hashlib.sha256(os.urandom(16)).hexdigest()[:8]
    return f"{prefix}-{epoch_ms}-{random_bits}"


def split_client_path(filename: str) -> tuple[str, str | None]:
    """Split a client supplied filename into ``(basename, relative_dir)``.

    Browsers send folder uploads as ``dir/sub/file.nii``; Windows clients may
    use backslashes. Empty, ``.`` and ``..`` segments are discarded.
    """

    parts = [part for part in filename.replace("\\", "/").split("/") if part not in {"", ".", ".."}]
    if not parts:
        return "upload", None
    relative = str(PurePosixPath(*parts[:-1])) if len(parts) > 1 else None
    return parts[-1], relative


def atomic_write(path: Path, data: str, encoding: str = "utf-8") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", delete=False, dir=path.parent, encoding=encoding) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
    os.replace(tmp.name, path)


def peek_prefix(stream: BinaryIO, size: int) -> bytes:
    """Read up to *size* bytes from the start of *stream* and rewind it."""

    position = stream.tell()
    try:
        stream.seek(0)
        return stream.read(size)
    finally:
        stream.seek(position)


__all__ = [
    "atomic_write",
    "generate_run_id",
    "peek_prefix",
    "slugify",
    "split_client_path",
]
