"""API response models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    stages_registered: int = 0
    execution_strategy: str = ""
    sampling_strategies: list[str] = Field(default_factory=list)


class ParticleModel(BaseModel):
    position: tuple[float, float]
    color: tuple[float, float, float, float]
    size: float
    velocity: tuple[float, float] = (0.0, 0.0)


class GenerateResponse(BaseModel):
    particles: list[ParticleModel] = Field(default_factory=list)
    sample_count: int = 0
    processing_time_ms: float = 0.0
    from_cache: bool = False
    image_width: int = 0
    image_height: int = 0
    strategy: str = ""
    analysis: dict[str, object] | None = None


class CancelResponse(BaseModel):
    cancelled: bool


class CacheStatsResponse(BaseModel):
    enabled: bool
    entries: int = 0
    size_bytes: int = 0
    max_bytes: int = 0
