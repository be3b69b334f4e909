"""Stage registry: each pipeline stage is a plain function over the GenerationContext.

Usage:
    registry = StageRegistry()
    registry.register(StageSpec(stage=Stage.ANALYSIS, fn=run_analysis))

Which stages depend on which, and which may run concurrently, is decided by the
ExecutionStrategy, not by the registry.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from app.engine.context import GenerationContext

logger = logging.getLogger(__name__)


class Stage(enum.IntEnum):
    ANALYSIS = 0
    SAMPLING = 1
    ASSEMBLY = 2
    CACHING = 3

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    Stage.ANALYSIS: "Image Analysis",
    Stage.SAMPLING: "Pixel Sampling",
    Stage.ASSEMBLY: "Particle Assembly",
    Stage.CACHING: "Result Caching",
}


class Priority(enum.IntEnum):
    VERY_LOW = 0
    LOW = 1
    NORMAL = 2
    HIGH = 3
    VERY_HIGH = 4


@dataclass
class StageSpec:
    stage: Stage
    fn: Callable[["GenerationContext"], None]
    description: str = ""

    def __post_init__(self) -> None:
        if not self.description:
            self.description = self.stage.description


class StageRegistry:
    """Maps each Stage to the function that executes it."""

    def __init__(self) -> None:
        self._stages: dict[Stage, StageSpec] = {}

    def register(self, spec: StageSpec) -> None:
        if spec.stage in self._stages:
            raise ValueError(f"Duplicate stage: {spec.stage.name}")
        self._stages[spec.stage] = spec
        logger.debug("Registered stage %s", spec.stage.name)

    def replace(self, spec: StageSpec) -> None:
        self._stages[spec.stage] = spec

    def get(self, stage: Stage) -> StageSpec:
        return self._stages[stage]

    def __contains__(self, stage: object) -> bool:
        return stage in self._stages

    def all(self) -> list[StageSpec]:
        return sorted(self._stages.values(), key=lambda s: s.stage)

    @property
    def count(self) -> int:
        return len(self._stages)
