import io
import zipfile

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from core.constraint import APP_VERSION
from core.ct_batch.config import AppConfig, LimitConfig
from volumes import dicom_bytes, nifti_bytes, tagging_transform


@pytest.fixture
def client(config: AppConfig):
    app = create_app(config, transform=tagging_transform)
    with TestClient(app) as test_client:
        yield test_client


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": APP_VERSION}


def test_create_app_requires_enabled_api(config: AppConfig) -> None:
    config.runtime.enable_local_api = False
    with pytest.raises(RuntimeError):
        create_app(config, transform=tagging_transform)


def test_batch_upload_streams_zip_and_report(client: TestClient) -> None:
    files = [
        ("files", ("scan.nii", nifti_bytes(), "application/octet-stream")),
        ("files", ("series.dcm", dicom_bytes(), "application/dicom")),
        ("files", ("notes.txt", b"hello", "text/plain")),
    ]
    response = client.post("/api/v1/batches", files=files, data={"relative_paths": ["study1", "", ""]})

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert 'filename="converted_ct.zip"' in response.headers["content-disposition"]
    assert response.headers["x-batch-submitted"] == "3"
    assert response.headers["x-batch-accepted"] == "2"
    assert response.headers["x-batch-rejected"] == "1"
    with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
        assert sorted(archive.namelist()) == ["scan_ct.nii.gz", "series_ct.nii.gz"]

    report_url = response.headers["x-batch-report"]
    assert report_url == f"/api/v1/batches/{response.headers['x-batch-id']}/report"
    report = client.get(report_url).json()
    assert report["state"] == "COMPLETE"
    assert report["succeeded"] == 2
    assert [(entry["name"], entry["status"]) for entry in report["per_item"]] == [
        ("study1/scan.nii", "SUCCESS"),
        ("series.dcm", "SUCCESS"),
        ("notes.txt", "REJECTED"),
    ]


def test_batch_without_files_is_bad_request(client: TestClient) -> None:
    response = client.post("/api/v1/batches")
    assert response.status_code == 400
    body = response.json()
    assert body["reason"] == "NO_VALID_FILES"
    assert body["report"]["total_submitted"] == 0


def test_batch_with_only_invalid_files_is_unprocessable(client: TestClient) -> None:
    response = client.post("/api/v1/batches", files=[("files", ("notes.txt", b"hello", "text/plain"))])
    assert response.status_code == 422
    body = response.json()
    assert body["reason"] == "NO_VALID_FILES"
    assert body["report"]["per_item"][0]["reason"] == "BAD_EXTENSION"

    report = client.get(f"/api/v1/batches/{body['batch_id']}/report")
    assert report.status_code == 200
    assert report.json()["state"] == "FAILED"


def test_oversized_batch_is_payload_too_large(config: AppConfig) -> None:
    config.runtime.limits = LimitConfig(max_file_size_mb=1 / 1024)
    app = create_app(config, transform=tagging_transform)
    with TestClient(app) as client:
        response = client.post(
            "/api/v1/batches",
            files=[("files", ("big.nii", nifti_bytes(bytes(4096)), "application/octet-stream"))],
        )
    assert response.status_code == 413
    assert response.json()["report"]["per_item"][0]["reason"] == "TOO_LARGE"


def test_all_conversions_failing_is_unprocessable(client: TestClient) -> None:
    response = client.post(
        "/api/v1/batches",
        files=[("files", ("bad.nii", nifti_bytes(b"FAIL"), "application/octet-stream"))],
    )
    assert response.status_code == 422
    body = response.json()
    assert body["reason"] == "ALL_CONVERSIONS_FAILED"
    assert body["report"]["failed"] == 1


def test_unknown_report_is_not_found(client: TestClient) -> None:
    response = client.get("/api/v1/batches/batch-missing/report")
    assert response.status_code == 404
    assert response.json()["detail"] == "BATCH_NOT_FOUND"
