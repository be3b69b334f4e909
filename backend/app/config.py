"""Application configuration from environment variables."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from pydantic_settings import BaseSettings


def _default_concurrency() -> int:
    return min(4, os.cpu_count() or 1)


class Settings(BaseSettings):
    particles_env: str = "development"
    particles_log_level: str = "debug"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    # Sample cache
    cache_dir: Path = Path(tempfile.gettempdir()) / "ParticleGenerator"
    cache_max_bytes: int = 100 * 1024 * 1024

    # Execution
    max_concurrency: int = _default_concurrency()
    default_quality: str = "standard"
    execution_strategy: str = "adaptive"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
