from __future__ import annotations

import gzip
import io
import struct
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO

from .utils import peek_prefix


class ImageFormat(str, Enum):
    NIFTI = "nifti"
    NIFTI_GZ = "nifti-gz"
    DICOM = "dicom"
    NRRD = "nrrd"
    METAIMAGE = "metaimage"
    MGZ = "mgz"


@dataclass(slots=True)
class DetectionResult:
    image_format: ImageFormat
    extension: str
    stem: str


EXTENSION_MAP: dict[str, ImageFormat] = {
    ".nii.gz": ImageFormat.NIFTI_GZ,
    ".nii": ImageFormat.NIFTI,
    ".dcm": ImageFormat.DICOM,
    ".dicom": ImageFormat.DICOM,
    ".nrrd": ImageFormat.NRRD,
    ".mha": ImageFormat.METAIMAGE,
    ".mgz": ImageFormat.MGZ,
}

MIME_MAP: dict[ImageFormat, frozenset[str]] = {
    ImageFormat.NIFTI: frozenset({"application/x-nifti", "image/x-nifti", "application/nifti"}),
    ImageFormat.NIFTI_GZ: frozenset(
        {"application/gzip", "application/x-gzip", "application/x-nifti", "application/x-nifti-gz"}
    ),
    ImageFormat.DICOM: frozenset({"application/dicom", "application/x-dicom", "image/dicom"}),
    ImageFormat.NRRD: frozenset({"image/x-nrrd", "application/x-nrrd"}),
    ImageFormat.METAIMAGE: frozenset({"application/x-metaimage", "image/x-metaimage"}),
    ImageFormat.MGZ: frozenset({"application/gzip", "application/x-gzip", "application/x-mgh"}),
}

# Declared types that carry no format information.
GENERIC_MIME_TYPES = frozenset({"", "application/octet-stream", "binary/octet-stream", "application/unknown"})

NIFTI1_HEADER_SIZE = 348
NIFTI2_HEADER_SIZE = 540
DICOM_PREAMBLE = 128
SNIFF_BYTES = NIFTI1_HEADER_SIZE


class DetectionError(RuntimeError):
    """Raised when format detection fails."""


def split_extension(filename: str, known: tuple[str, ...] | None = None) -> tuple[str, str]:
    """Split *filename* into stem and extension, preferring compound suffixes.

    ``known`` restricts the match to the given extensions; otherwise every
    extension in :data:`EXTENSION_MAP` is considered. Unknown names fall back
    to their last suffix.
    """

    lowered = filename.lower()
    candidates = known if known is not None else tuple(EXTENSION_MAP)
    for extension in sorted(candidates, key=len, reverse=True):
        if lowered.endswith(extension) and len(filename) > len(extension):
            return filename[: -len(extension)], extension
    dot = filename.rfind(".")
    if dot <= 0:
        return filename, ""
    return filename[:dot], filename[dot:].lower()


def detect_format(filename: str, allowed: tuple[str, ...] | None = None) -> DetectionResult:
    stem, extension = split_extension(filename, allowed)
    if allowed is not None and extension not in allowed:
        raise DetectionError(f"Unsupported file extension: {extension or '<none>'}")
    image_format = EXTENSION_MAP.get(extension)
    if image_format is None:
        raise DetectionError(f"Unsupported file extension: {extension or '<none>'}")
    return DetectionResult(image_format=image_format, extension=extension, stem=stem)


def mime_matches(image_format: ImageFormat, declared: str | None) -> bool:
    if declared is None:
        return True
    normalized = declared.split(";", 1)[0].strip().lower()
    if normalized in GENERIC_MIME_TYPES:
        return True
    return normalized in MIME_MAP[image_format]


def _is_nifti_header(header: bytes) -> bool:
    if len(header) >= NIFTI1_HEADER_SIZE:
        for order in ("<", ">"):
            (size,) = struct.unpack(f"{order}i", header[:4])
            if size == NIFTI1_HEADER_SIZE and header[344:348] in {b"n+1\x00", b"ni1\x00"}:
                return True
    if len(header) >= 8:
        for order in ("<", ">"):
            (size,) = struct.unpack(f"{order}i", header[:4])
            if size == NIFTI2_HEADER_SIZE and header[4:8] in {b"n+2\x00", b"ni2\x00"}:
                return True
    return False


def _gunzip_prefix(stream: BinaryIO, size: int) -> bytes | None:
    position = stream.tell()
    try:
        stream.seek(0)
        with gzip.GzipFile(fileobj=stream, mode="rb") as archive:
            return archive.read(size)
    except (OSError, EOFError, zlib.error):
        return None
    finally:
        stream.seek(position)


def sniff_matches(image_format: ImageFormat, stream: BinaryIO) -> bool:
    """Check the leading bytes of *stream* against the format's signature.

    The stream position is restored. Formats without a reliable signature
    always match.
    """

    if image_format is ImageFormat.DICOM:
        prefix = peek_prefix(stream, DICOM_PREAMBLE + 4)
        return prefix[DICOM_PREAMBLE : DICOM_PREAMBLE + 4] == b"DICM"
    if image_format is ImageFormat.NIFTI:
        return _is_nifti_header(peek_prefix(stream, SNIFF_BYTES))
    if image_format is ImageFormat.NRRD:
        return peek_prefix(stream, 4) == b"NRRD"
    if image_format in {ImageFormat.NIFTI_GZ, ImageFormat.MGZ}:
        if peek_prefix(stream, 2) != b"\x1f\x8b":
            return False
        inner = _gunzip_prefix(stream, SNIFF_BYTES)
        if inner is None:
            return False
        if image_format is ImageFormat.NIFTI_GZ:
            return _is_nifti_header(inner)
        return True
    return True


def sniff_bytes(image_format: ImageFormat, payload: bytes) -> bool:
    return sniff_matches(image_format, io.BytesIO(payload))


__all__ = [
    "DetectionError",
    "DetectionResult",
    "EXTENSION_MAP",
    "ImageFormat",
    "MIME_MAP",
    "detect_format",
    "mime_matches",
    "sniff_bytes",
    "sniff_matches",
    "split_extension",
]
