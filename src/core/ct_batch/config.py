from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Literal, Mapping


CONFIG_FILE = Path("config.toml")

DEFAULT_EXTENSIONS: tuple[str, ...] = (".nii", ".nii.gz", ".dcm", ".nrrd", ".mha", ".mgz")


@dataclass(slots=True)
class LimitConfig:
    max_file_size_mb: float = 512
    max_batch_size_mb: float = 2048

    @property
    def max_file_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)

    @property
    def max_batch_bytes(self) -> int:
        return int(self.max_batch_size_mb * 1024 * 1024)


@dataclass(slots=True)
class OutputConfig:
    suffix: str = "_ct.nii.gz"
    archive_name: str = "converted_ct.zip"
    compression: Literal["deflated", "stored"] = "deflated"
    compresslevel: int | None = None
    chunk_size_kb: int = 256


@dataclass(slots=True)
class RuntimeConfig:
    output_dir: Path | None = Path("runs")
    log_file: str = "log.jsonl"
    summary_csv: str = "summary.csv"
    enable_local_api: bool = False
    concurrency: int = 0
    max_concurrency: int = 4
    item_timeout_s: float = 300.0
    batch_timeout_s: float | None = None
    cancel_grace_s: float = 5.0
    sniff_magic: bool = True
    report_retention: int = 100
    transform: str = "core.ct_batch.transforms:passthrough"
    limits: LimitConfig = field(default_factory=LimitConfig)

    def effective_concurrency(self, requested: int | None = None) -> int:
        cap = max(1, self.max_concurrency)
        candidate = requested if requested is not None and requested > 0 else self.concurrency
        if candidate <= 0:
            candidate = min(cap, max(1, os.cpu_count() or 1))
        return max(1, min(candidate, cap))


@dataclass(slots=True)
class APIConfig:
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass(slots=True)
class AppConfig:
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    formats: tuple[str, ...] = DEFAULT_EXTENSIONS
    api: APIConfig = field(default_factory=APIConfig)

    @property
    def allowed_extensions(self) -> tuple[str, ...]:
        return tuple(_normalize_extension(ext) for ext in self.formats)


def _normalize_extension(value: str) -> str:
    value = value.strip().lower()
    return value if value.startswith(".") else f".{value}"


def _read_toml(path: Path) -> Mapping[str, object]:
    if not path.exists():
        return {}
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _optional_float(value: object | None) -> float | None:
    if value is None or value == "" or value == 0:
        return None
    return float(value)  # type: ignore[arg-type]


def _build_limits(data: Mapping[str, object] | None) -> LimitConfig:
    if not data:
        return LimitConfig()
    return LimitConfig(
        max_file_size_mb=float(data.get("max_file_size_mb", 512)),
        max_batch_size_mb=float(data.get("max_batch_size_mb", 2048)),
    )


def _build_runtime(data: Mapping[str, object] | None) -> RuntimeConfig:
    if not data:
        return RuntimeConfig()
    limits = _build_limits(data.get("limits") if isinstance(data.get("limits"), Mapping) else None)
    output_dir = data.get("output_dir", "runs")
    return RuntimeConfig(
        output_dir=Path(str(output_dir)) if output_dir else None,
        log_file=str(data.get("log_file", "log.jsonl")),
        summary_csv=str(data.get("summary_csv", "summary.csv")),
        enable_local_api=bool(data.get("enable_local_api", False)),
        concurrency=int(data.get("concurrency", 0)),
        max_concurrency=int(data.get("max_concurrency", 4)),
        item_timeout_s=float(data.get("item_timeout_s", 300.0)),
        batch_timeout_s=_optional_float(data.get("batch_timeout_s")),
        cancel_grace_s=float(data.get("cancel_grace_s", 5.0)),
        sniff_magic=bool(data.get("sniff_magic", True)),
        report_retention=int(data.get("report_retention", 100)),
        transform=str(data.get("transform", RuntimeConfig().transform)),
        limits=limits,
    )


def _build_output(data: Mapping[str, object] | None) -> OutputConfig:
    if not data:
        return OutputConfig()
    compression = str(data.get("compression", "deflated"))
    if compression not in {"deflated", "stored"}:
        raise ValueError(f"Unsupported archive compression: {compression!r}")
    level = data.get("compresslevel")
    return OutputConfig(
        suffix=str(data.get("suffix", "_ct.nii.gz")),
        archive_name=str(data.get("archive_name", "converted_ct.zip")),
        compression=compression,  # type: ignore[arg-type]
        compresslevel=int(level) if level is not None else None,
        chunk_size_kb=int(data.get("chunk_size_kb", 256)),
    )


def _build_api(data: Mapping[str, object] | None) -> APIConfig:
    if not data:
        return APIConfig()
    return APIConfig(host=str(data.get("host", "127.0.0.1")), port=int(data.get("port", 8000)))


def _tuple_of_strings(value: object | None, default: Iterable[str]) -> tuple[str, ...]:
    if not value:
        return tuple(default)
    if isinstance(value, str):
        return (value,)
    if isinstance(value, Iterable):
        return tuple(str(item) for item in value)
    raise TypeError(f"Unsupported formats configuration: {value!r}")


def load_config(path: Path | None = None) -> AppConfig:
    path = path or CONFIG_FILE
    raw = _read_toml(path)
    runtime_data = raw.get("runtime") if isinstance(raw, Mapping) else None
    output_data = raw.get("output") if isinstance(raw, Mapping) else None
    formats_data = raw.get("formats") if isinstance(raw, Mapping) else None
    api_data = raw.get("api") if isinstance(raw, Mapping) else None
    runtime = _build_runtime(runtime_data if isinstance(runtime_data, Mapping) else None)
    output = _build_output(output_data if isinstance(output_data, Mapping) else None)
    formats = _tuple_of_strings(formats_data if isinstance(formats_data, Iterable) else None, DEFAULT_EXTENSIONS)
    api = _build_api(api_data if isinstance(api_data, Mapping) else None)
    return AppConfig(runtime=runtime, output=output, formats=formats, api=api)


def dump_config(config: AppConfig) -> str:
    payload = {
        "runtime": {
            "output_dir": str(config.runtime.output_dir) if config.runtime.output_dir else "",
            "log_file": config.runtime.log_file,
            "summary_csv": config.runtime.summary_csv,
            "enable_local_api": config.runtime.enable_local_api,
            "concurrency": config.runtime.concurrency,
            "max_concurrency": config.runtime.max_concurrency,
            "item_timeout_s": config.runtime.item_timeout_s,
            "batch_timeout_s": config.runtime.batch_timeout_s,
            "cancel_grace_s": config.runtime.cancel_grace_s,
            "sniff_magic": config.runtime.sniff_magic,
            "report_retention": config.runtime.report_retention,
            "transform": config.runtime.transform,
            "limits": {
                "max_file_size_mb": config.runtime.limits.max_file_size_mb,
                "max_batch_size_mb": config.runtime.limits.max_batch_size_mb,
            },
        },
        "output": {
            "suffix": config.output.suffix,
            "archive_name": config.output.archive_name,
            "compression": config.output.compression,
            "compresslevel": config.output.compresslevel,
            "chunk_size_kb": config.output.chunk_size_kb,
        },
        "formats": list(config.allowed_extensions),
        "api": {
            "host": config.api.host,
            "port": config.api.port,
        },
    }
    return json.dumps(payload, indent=2)


__all__ = [
    "APIConfig",
    "AppConfig",
    "LimitConfig",
    "OutputConfig",
    "RuntimeConfig",
    "dump_config",
    "load_config",
]
