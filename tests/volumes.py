"""Synthetic medical volumes and transforms shared by the test-suite."""

from __future__ import annotations

import gzip
import io
import struct
import threading

from core.ct_batch.errors import ConversionError
from core.ct_batch.models import UploadItem

VOXELS = bytes(range(256)) * 4


def nifti_bytes(body: bytes = VOXELS, *, big_endian: bool = False) -> bytes:
    order = ">" if big_endian else "<"
    header = bytearray(348)
    header[0:4] = struct.pack(f"{order}i", 348)
    header[344:348] = b"n+1\x00"
    return bytes(header) + b"\x00" * 4 + body


def nifti2_bytes(body: bytes = VOXELS) -> bytes:
    header = bytearray(540)
    header[0:4] = struct.pack("<i", 540)
    header[4:8] = b"n+2\x00"
    return bytes(header) + body


def nifti_gz_bytes(body: bytes = VOXELS) -> bytes:
    return gzip.compress(nifti_bytes(body))


def dicom_bytes(body: bytes = VOXELS) -> bytes:
    return b"\x00" * 128 + b"DICM" + body


def nrrd_bytes(body: bytes = VOXELS) -> bytes:
    return b"NRRD0004\ntype: short\ndimension: 1\n\n" + body


def make_item(
    name: str,
    payload: bytes,
    *,
    mime: str | None = None,
    relative_path: str | None = None,
) -> UploadItem:
    return UploadItem(
        original_name=name,
        relative_path=relative_path,
        size_bytes=len(payload),
        content=io.BytesIO(payload),
        declared_mime=mime,
    )


def tagging_transform(data: bytes, source_format: str) -> bytes:
    """Prefix the volume with its source format; payloads containing FAIL raise."""

    if b"FAIL" in data:
        raise ConversionError("synthetic failure")
    return b"CT:" + source_format.encode() + b":" + data


def slow_transform(data: bytes, source_format: str, cancel_event: threading.Event) -> bytes:
    """Block until cancelled when the payload contains SLOW."""

    if b"SLOW" in data:
        cancel_event.wait(5)
    return tagging_transform(data, source_format)
