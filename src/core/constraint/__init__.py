from __future__ import annotations

from pathlib import Path

APP_VERSION = "0.1.0"
DEFAULT_CONFIG_PATH = Path("config.toml")
ENV_PREFIX = "CTB_"

__all__ = ["APP_VERSION", "DEFAULT_CONFIG_PATH", "ENV_PREFIX"]
