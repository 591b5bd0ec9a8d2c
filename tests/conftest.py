from __future__ import annotations

from pathlib import Path

import pytest

from core.ct_batch.config import AppConfig, RuntimeConfig


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    runtime = RuntimeConfig(
        output_dir=tmp_path / "runs",
        enable_local_api=True,
        max_concurrency=2,
        item_timeout_s=5.0,
        cancel_grace_s=0.1,
    )
    return AppConfig(runtime=runtime)
