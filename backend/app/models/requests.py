"""API request models."""

from __future__ import annotations

from pydantic import BaseModel, Field

from app.engine.config import DisplayMode, QualityPreset, SamplingAlgorithm


class GenerateRequest(BaseModel):
    image: str = Field(..., description="Base64-encoded PNG/JPEG image (a data: URL prefix is accepted)")
    target_count: int | None = Field(default=None, description="Number of particles; preset default if omitted")
    quality: QualityPreset | None = Field(default=None, description="Quality preset; server default if omitted")
    strategy: str | None = Field(
        default=None,
        description="uniform, importance, adaptive, hybrid or advanced (optionally 'advanced:<algorithm>')",
    )
    algorithm: SamplingAlgorithm | None = Field(default=None, description="Algorithm for the advanced strategy")
    screen_width: float | None = Field(default=None, description="Destination width; image width if omitted")
    screen_height: float | None = Field(default=None, description="Destination height; image height if omitted")
    display_mode: DisplayMode = Field(default=DisplayMode.FIT)
    enable_caching: bool | None = Field(default=None, description="Override the preset's caching flag")
    seed: int | None = Field(default=None, description="RNG seed for the randomised fills")
    include_particles: bool = Field(default=True, description="Return the particle list, not only the summary")
