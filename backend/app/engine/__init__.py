"""Particle generation engine: image analysis, pixel sampling, particle assembly, sample cache."""

from app.engine.config import GenerationConfig, QualityPreset, SamplingAlgorithm, SamplingStrategy
from app.engine.coordinator import GenerationCoordinator, GenerationResult, create_coordinator
from app.engine.errors import GeneratorError
from app.engine.pipeline import GenerationPipeline, create_pipeline
from app.engine.pixels import PixelAccessor

__all__ = [
    "GenerationConfig",
    "GenerationCoordinator",
    "GenerationPipeline",
    "GenerationResult",
    "GeneratorError",
    "PixelAccessor",
    "QualityPreset",
    "SamplingAlgorithm",
    "SamplingStrategy",
    "create_coordinator",
    "create_pipeline",
]
