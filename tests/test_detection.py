import gzip
import io

import pytest

from core.ct_batch.config import DEFAULT_EXTENSIONS
from core.ct_batch.detection import (
    DetectionError,
    ImageFormat,
    detect_format,
    mime_matches,
    sniff_bytes,
    sniff_matches,
    split_extension,
)
from volumes import dicom_bytes, nifti2_bytes, nifti_bytes, nifti_gz_bytes, nrrd_bytes


def test_split_extension_prefers_compound_suffix() -> None:
    assert split_extension("scan.NII.GZ") == ("scan", ".nii.gz")
    assert split_extension("archive.tar.gz") == ("archive.tar", ".gz")
    assert split_extension("README") == ("README", "")


def test_detect_format_by_extension() -> None:
    result = detect_format("brain.nii.gz", DEFAULT_EXTENSIONS)
    assert result.image_format is ImageFormat.NIFTI_GZ
    assert result.stem == "brain"


@pytest.mark.parametrize("filename", ["notes.txt", "scan.dicom", "noextension"])
def test_detect_format_rejects_outside_allowlist(filename: str) -> None:
    with pytest.raises(DetectionError):
        detect_format(filename, DEFAULT_EXTENSIONS)


def test_mime_matching_treats_generic_types_as_unspecified() -> None:
    assert mime_matches(ImageFormat.NIFTI, None)
    assert mime_matches(ImageFormat.NIFTI, "application/octet-stream")
    assert mime_matches(ImageFormat.DICOM, "application/dicom; charset=binary")
    assert not mime_matches(ImageFormat.NIFTI, "text/plain")
    assert not mime_matches(ImageFormat.DICOM, "application/gzip")


def test_sniff_recognises_signatures() -> None:
    assert sniff_bytes(ImageFormat.NIFTI, nifti_bytes())
    assert sniff_bytes(ImageFormat.NIFTI, nifti_bytes(big_endian=True))
    assert sniff_bytes(ImageFormat.NIFTI, nifti2_bytes())
    assert sniff_bytes(ImageFormat.NIFTI_GZ, nifti_gz_bytes())
    assert sniff_bytes(ImageFormat.DICOM, dicom_bytes())
    assert sniff_bytes(ImageFormat.NRRD, nrrd_bytes())
    assert sniff_bytes(ImageFormat.MGZ, gzip.compress(b"mgh volume"))
    assert sniff_bytes(ImageFormat.METAIMAGE, b"ObjectType = Image\n")


def test_sniff_rejects_mismatched_content() -> None:
    png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 400
    assert not sniff_bytes(ImageFormat.NIFTI, png)
    assert not sniff_bytes(ImageFormat.DICOM, png)
    assert not sniff_bytes(ImageFormat.NIFTI_GZ, nifti_bytes())
    assert not sniff_bytes(ImageFormat.NIFTI_GZ, gzip.compress(b"not a nifti header" * 40))
    assert not sniff_bytes(ImageFormat.MGZ, b"plain bytes")


def test_sniff_does_not_consume_stream() -> None:
    stream = io.BytesIO(nifti_gz_bytes())
    stream.seek(5)
    assert sniff_matches(ImageFormat.NIFTI_GZ, stream)
    assert stream.tell() == 5
