"""Generator error hierarchy.

Input problems (bad image, bad config) are raised immediately and never retried.
Algorithmic shortfalls are recovered inside the sampling layer; only an
unrecoverable shortfall surfaces as InsufficientSamplesError.
"""

from __future__ import annotations


class GeneratorError(Exception):
    """Base class for everything the generation engine raises on purpose."""


class InvalidImageError(GeneratorError):
    def __init__(self, reason: str = "image has zero width or height") -> None:
        super().__init__(f"Invalid image: {reason}")
        self.reason = reason


class InvalidConfigurationError(GeneratorError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid configuration: {reason}")
        self.reason = reason


class AnalysisFailedError(GeneratorError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"Analysis failed: {reason}")
        self.reason = reason


class InsufficientSamplesError(GeneratorError):
    def __init__(self, produced: int, expected: int) -> None:
        super().__init__(f"Insufficient samples: produced {produced}, expected {expected}")
        self.produced = produced
        self.expected = expected


class CacheCreationFailedError(GeneratorError):
    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Cache creation failed: {cause}")
        self.cause = cause


class StageFailedError(GeneratorError):
    """A pipeline stage raised something that is not a GeneratorError."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"Stage '{stage}' failed: {cause}")
        self.stage = stage
        self.cause = cause


class GenerationCancelledError(GeneratorError):
    def __init__(self) -> None:
        super().__init__("Generation cancelled")


class GenerationInProgressError(GeneratorError):
    def __init__(self) -> None:
        super().__init__("A generation is already in progress on this coordinator")
