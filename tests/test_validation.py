from core.ct_batch.config import AppConfig, LimitConfig, RuntimeConfig
from core.ct_batch.detection import ImageFormat
from core.ct_batch.models import VerdictReason
from core.ct_batch.validation import FileValidator
from volumes import dicom_bytes, make_item, nifti_bytes, nifti_gz_bytes

KB = 1 / 1024


def build_validator(*, file_kb: float = 1024, batch_kb: float = 4096, sniff: bool = True) -> FileValidator:
    runtime = RuntimeConfig(
        sniff_magic=sniff,
        limits=LimitConfig(max_file_size_mb=file_kb * KB, max_batch_size_mb=batch_kb * KB),
    )
    return FileValidator(AppConfig(runtime=runtime))


def test_accepts_known_formats() -> None:
    validator = build_validator()
    for name, payload in [("a.nii", nifti_bytes()), ("b.NII.GZ", nifti_gz_bytes()), ("c.dcm", dicom_bytes())]:
        verdict = validator.validate(make_item(name, payload))
        assert verdict.accepted, verdict.detail
        assert verdict.reason is VerdictReason.OK
    assert validator.accepted_bytes > 0


def test_rejects_unknown_extension() -> None:
    verdict = build_validator().validate(make_item("notes.txt", b"hello"))
    assert not verdict.accepted
    assert verdict.reason is VerdictReason.BAD_EXTENSION


def test_rejects_oversized_file_before_mime_check() -> None:
    validator = build_validator(file_kb=1)
    verdict = validator.validate(make_item("big.nii", nifti_bytes(b"\x00" * 2048), mime="text/plain"))
    assert verdict.reason is VerdictReason.TOO_LARGE


def test_rejects_conflicting_mime() -> None:
    verdict = build_validator().validate(make_item("scan.dcm", dicom_bytes(), mime="image/png"))
    assert verdict.reason is VerdictReason.BAD_MIME


def test_accepts_generic_mime() -> None:
    verdict = build_validator().validate(make_item("scan.dcm", dicom_bytes(), mime="application/octet-stream"))
    assert verdict.accepted
    assert verdict.image_format is ImageFormat.DICOM


def test_rejects_content_that_does_not_match_extension() -> None:
    item = make_item("fake.nii", b"just some text pretending to be a volume")
    verdict = build_validator().validate(item)
    assert verdict.reason is VerdictReason.DATA_MISMATCH
    assert item.content.tell() == 0


def test_sniffing_can_be_disabled() -> None:
    verdict = build_validator(sniff=False).validate(make_item("fake.nii", b"text"))
    assert verdict.accepted


def test_batch_limit_counts_only_accepted_bytes() -> None:
    validator = build_validator(file_kb=4, batch_kb=4)
    first = validator.validate(make_item("a.nii", nifti_bytes(b"\x00" * 2500)))
    second = validator.validate(make_item("b.nii", nifti_bytes(b"\x00" * 2500)))
    rejected = validator.validate(make_item("c.txt", b"x" * 100))
    third = validator.validate(make_item("c.nii", nifti_bytes(b"\x00" * 100)))
    assert first.accepted
    assert second.reason is VerdictReason.BATCH_TOO_LARGE
    assert rejected.reason is VerdictReason.BAD_EXTENSION
    assert third.accepted
    assert validator.accepted_bytes == first.item.size_bytes + third.item.size_bytes
