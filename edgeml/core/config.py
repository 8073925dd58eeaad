"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _split_names(raw: str) -> tuple[str, ...]:
    return tuple(name.strip() for name in raw.split(",") if name.strip())


@dataclass(frozen=True)
class Settings:
    model_store_dir: str = field(
        default_factory=lambda: os.getenv("MODEL_STORE_DIR", "./models")
    )
    max_resident_models: int = field(
        default_factory=lambda: int(os.getenv("MAX_RESIDENT_MODELS", "3"))
    )
    default_thread_count: int = field(
        default_factory=lambda: int(os.getenv("DEFAULT_THREAD_COUNT", "2"))
    )
    load_workers: int = field(
        default_factory=lambda: int(os.getenv("LOAD_WORKERS", "2"))
    )
    inference_workers: int = field(
        default_factory=lambda: int(os.getenv("INFERENCE_WORKERS", "4"))
    )
    preload_models: tuple[str, ...] = field(
        default_factory=lambda: _split_names(os.getenv("PRELOAD_MODELS", ""))
    )
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO")
    )
    app_version: str = "0.1.0"


def get_settings() -> Settings:
    """Return a Settings instance populated from env vars."""
    return Settings()
