import threading
from pathlib import Path

from core.ct_batch.errors import ConversionError
from core.ct_batch.models import OutcomeStatus
from core.ct_batch.worker import ConversionWorker, derive_output_name, source_format_hint
from volumes import dicom_bytes, make_item, nifti_bytes, tagging_transform


def build_worker(tmp_path: Path, transform, *, timeout_s: float = 5.0, grace_s: float = 0.05) -> ConversionWorker:
    return ConversionWorker(
        transform,
        work_dir=tmp_path / "out",
        output_suffix="_ct.nii.gz",
        timeout_s=timeout_s,
        cancel_grace_s=grace_s,
    )


def test_derive_output_name_replaces_compound_extension() -> None:
    assert derive_output_name("brain.nii.gz", "_ct.nii.gz") == "brain_ct.nii.gz"
    assert derive_output_name("study/Brain Scan.NII", "_ct.nii.gz") == "Brain-Scan_ct.nii.gz"
    assert source_format_hint("a/b/scan.dcm") == "dicom"


def test_successful_conversion_writes_output(tmp_path: Path) -> None:
    item = make_item("scan.dcm", dicom_bytes())
    outcome = build_worker(tmp_path, tagging_transform).convert(item, 3)
    assert outcome.status is OutcomeStatus.SUCCESS
    assert outcome.index == 3
    assert outcome.output_name == "scan_ct.nii.gz"
    assert outcome.output_path is not None
    assert outcome.output_path.read_bytes().startswith(b"CT:dicom:")
    assert item.content.closed
    outcome.release()
    assert outcome.output_path is None


def test_transform_exception_is_isolated(tmp_path: Path) -> None:
    def broken(data: bytes, source_format: str) -> bytes:
        raise ValueError("boom")

    outcome = build_worker(tmp_path, broken).convert(make_item("a.nii", nifti_bytes()), 0)
    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.error_code == "TRANSFORM_FAILED"
    assert outcome.error == "ValueError: boom"
    assert outcome.output_path is None


def test_conversion_error_message_is_preserved(tmp_path: Path) -> None:
    outcome = build_worker(tmp_path, tagging_transform).convert(make_item("a.nii", nifti_bytes(b"FAIL")), 0)
    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.error == "synthetic failure"


def test_non_bytes_result_fails(tmp_path: Path) -> None:
    outcome = build_worker(tmp_path, lambda data, source_format: "text").convert(
        make_item("a.nii", nifti_bytes()), 0
    )
    assert outcome.status is OutcomeStatus.FAILED
    assert "expected bytes" in (outcome.error or "")


def test_timeout_signals_cancellable_transform(tmp_path: Path) -> None:
    seen: dict[str, threading.Event] = {}

    def stuck(data: bytes, source_format: str, cancel_event: threading.Event) -> bytes:
        seen["event"] = cancel_event
        cancel_event.wait(5)
        raise ConversionError("CANCELED", "gave up")

    outcome = build_worker(tmp_path, stuck, timeout_s=0.2).convert(make_item("a.nii", nifti_bytes()), 0)
    assert outcome.status is OutcomeStatus.TIMEOUT
    assert outcome.error_code == "TIMEOUT"
    assert seen["event"].is_set()


def test_preset_cancel_skips_without_calling_transform(tmp_path: Path) -> None:
    calls: list[bytes] = []

    def recording(data: bytes, source_format: str) -> bytes:
        calls.append(data)
        return data

    cancel = threading.Event()
    cancel.set()
    outcome = build_worker(tmp_path, recording).convert(make_item("a.nii", nifti_bytes()), 0, cancel)
    assert outcome.status is OutcomeStatus.SKIPPED
    assert outcome.error_code == "CANCELED"
    assert calls == []


def test_cancel_during_conversion_is_abandoned_after_grace(tmp_path: Path) -> None:
    seen: dict[str, threading.Event] = {}

    def waiting(data: bytes, source_format: str, cancel_event: threading.Event) -> bytes:
        seen["event"] = cancel_event
        cancel_event.wait(5)
        return data

    cancel = threading.Event()
    timer = threading.Timer(0.1, cancel.set)
    timer.start()
    try:
        outcome = build_worker(tmp_path, waiting).convert(make_item("a.nii", nifti_bytes()), 0, cancel)
    finally:
        timer.cancel()
    assert outcome.status is OutcomeStatus.SKIPPED
    assert outcome.error_code == "CANCELED"
    assert seen["event"].is_set()


def test_zero_timeout_disables_item_deadline(tmp_path: Path) -> None:
    def unhurried(data: bytes, source_format: str) -> bytes:
        threading.Event().wait(0.1)
        return data

    outcome = build_worker(tmp_path, unhurried, timeout_s=0).convert(make_item("a.nii", nifti_bytes()), 0)
    assert outcome.status is OutcomeStatus.SUCCESS
    assert outcome.error_code is None
