"""Execution strategies: decide stage dependencies, priority and permitted parallelism.

Stage order is always Analysis -> Sampling -> Assembly -> Caching. A strategy only
controls intra-stage parallelism (how many workers the analyzer, the importance
scorer and hash-based sampling may use) and whether independent ready stages may
share a level of the execution plan.
"""

from __future__ import annotations

import enum
import functools
import logging
import os
from dataclasses import dataclass

from app.engine.config import GenerationConfig, QualityPreset, StrategyKind
from app.engine.errors import InvalidConfigurationError
from app.engine.registry import Priority, Stage

logger = logging.getLogger(__name__)

# Worker pool ceiling, whatever the config asks for
MAX_WORKERS = 4

# Parallel strategy engages only above both thresholds
PARALLEL_MIN_PIXELS = 1_000_000
PARALLEL_MIN_PARTICLES = 10_000

# Sequential is considered best below this many particles
SEQUENTIAL_OPTIMAL_PARTICLES = 100_000

_KIND_COMPLEXITY = {
    StrategyKind.UNIFORM: 1.0,
    StrategyKind.IMPORTANCE: 1.2,
    StrategyKind.ADAPTIVE: 1.3,
    StrategyKind.HYBRID: 1.5,
    StrategyKind.ADVANCED: 1.8,
}

_PRESET_COMPLEXITY = {
    QualityPreset.DRAFT: 0.5,
    QualityPreset.STANDARD: 1.0,
    QualityPreset.HIGH: 1.4,
    QualityPreset.ULTRA: 1.8,
}

_CHAIN = {
    Stage.ANALYSIS: [],
    Stage.SAMPLING: [Stage.ANALYSIS],
    Stage.ASSEMBLY: [Stage.SAMPLING],
    Stage.CACHING: [Stage.ASSEMBLY],
}

_PRIORITY = {
    Stage.ANALYSIS: Priority.VERY_HIGH,
    Stage.SAMPLING: Priority.HIGH,
    Stage.ASSEMBLY: Priority.NORMAL,
    Stage.CACHING: Priority.LOW,
}


def estimate_complexity(config: GenerationConfig) -> float:
    return _KIND_COMPLEXITY[config.sampling_strategy.kind] * _PRESET_COMPLEXITY[config.quality_preset]


@dataclass(frozen=True)
class DeviceCapabilities:
    cpu_count: int
    performance_class: str  # low | medium | high

    @property
    def supports_concurrency(self) -> bool:
        return self.cpu_count > 1


@functools.lru_cache(maxsize=1)
def device_capabilities() -> DeviceCapabilities:
    """Snapshot taken once per process."""
    cpus = os.cpu_count() or 1
    if cpus >= 6:
        perf = "high"
    elif cpus >= 3:
        perf = "medium"
    else:
        perf = "low"
    return DeviceCapabilities(cpu_count=cpus, performance_class=perf)


class ExecutionStrategy:
    """Base strategy: strict chain, no parallelism."""

    name = "base"
    execution_order: tuple[Stage, ...] = (Stage.ANALYSIS, Stage.SAMPLING, Stage.ASSEMBLY, Stage.CACHING)

    def can_parallelize(self, stage: Stage) -> bool:
        return False

    def dependencies(self, stage: Stage) -> list[Stage]:
        return list(_CHAIN[stage])

    def priority(self, stage: Stage) -> Priority:
        return _PRIORITY[stage]

    def validate(self, config: GenerationConfig) -> None:
        config.validate()

    def workers_for(self, stage: Stage, config: GenerationConfig, image_pixels: int = 0) -> int:
        return 1

    def estimate_execution_time(self, config: GenerationConfig, image_pixels: int = 0) -> float:
        """Heuristic wall-clock estimate in seconds."""
        sampling = config.target_particle_count * 0.0001 * estimate_complexity(config)
        analysis = image_pixels * 2e-8
        assembly = config.target_particle_count * 0.00005
        caching = config.target_particle_count * 0.00002 if config.enable_caching else 0.0
        return analysis + sampling + assembly + caching

    def is_optimal(self, config: GenerationConfig, image_pixels: int = 0) -> bool:
        return False

    def execution_plan(self, stages: list[Stage]) -> list[list[Stage]]:
        """Group stages into levels: each level's dependencies are met by earlier levels.

        Ready stages are ordered by priority (then logical order). A stage that
        cannot be parallelised forms a level on its own.
        """
        present = set(stages)
        order = {s: i for i, s in enumerate(stages)}
        remaining = list(stages)
        done: set[Stage] = set()
        plan: list[list[Stage]] = []

        while remaining:
            ready = [
                s for s in remaining
                if all(d in done for d in self.dependencies(s) if d in present)
            ]
            if not ready:
                raise InvalidConfigurationError(
                    f"unresolvable stage dependencies among {[s.name for s in remaining]}"
                )
            ready.sort(key=lambda s: (-self.priority(s), order[s]))
            first = ready[0]
            if not self.can_parallelize(first):
                level = [first]
            else:
                level = [s for s in ready if self.can_parallelize(s)]
            plan.append(level)
            done.update(level)
            remaining = [s for s in remaining if s not in level]
        return plan


class SequentialStrategy(ExecutionStrategy):
    name = "sequential"

    def is_optimal(self, config: GenerationConfig, image_pixels: int = 0) -> bool:
        return config.target_particle_count < SEQUENTIAL_OPTIMAL_PARTICLES


class ParallelStrategy(ExecutionStrategy):
    """Analysis and Sampling may use up to ``max_concurrent_operations`` workers
    on large workloads; Assembly and Caching stay single-threaded."""

    name = "parallel"

    def can_parallelize(self, stage: Stage) -> bool:
        return stage in (Stage.ANALYSIS, Stage.SAMPLING)

    def validate(self, config: GenerationConfig) -> None:
        super().validate(config)
        if config.max_concurrent_operations <= 1:
            raise InvalidConfigurationError("parallel execution requires max_concurrent_operations > 1")

    def workers_for(self, stage: Stage, config: GenerationConfig, image_pixels: int = 0) -> int:
        if not self.can_parallelize(stage):
            return 1
        if image_pixels < PARALLEL_MIN_PIXELS or config.target_particle_count < PARALLEL_MIN_PARTICLES:
            return 1
        return max(1, min(config.max_concurrent_operations, MAX_WORKERS))

    def estimate_execution_time(self, config: GenerationConfig, image_pixels: int = 0) -> float:
        base = super().estimate_execution_time(config, image_pixels)
        workers = min(config.max_concurrent_operations, MAX_WORKERS)
        # Only analysis and sampling scale
        scalable = base - config.target_particle_count * 0.00007
        return base - scalable + scalable / max(1.0, min(workers, 2.5))

    def is_optimal(self, config: GenerationConfig, image_pixels: int = 0) -> bool:
        return (
            config.target_particle_count > PARALLEL_MIN_PARTICLES or image_pixels > PARALLEL_MIN_PIXELS
        ) and config.max_concurrent_operations > 1


class Workload(str, enum.Enum):
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"


@dataclass(frozen=True)
class AdaptivePlan:
    workload: Workload
    max_concurrency: int
    reason: str
    estimated_time: float


class AdaptiveStrategy(ExecutionStrategy):
    """Classifies the request and behaves like Sequential, Parallel(2) or Parallel(full)."""

    name = "adaptive"

    LIGHT_MAX_PIXELS = 500_000
    LIGHT_MAX_PARTICLES = 5_000
    HEAVY_MIN_PIXELS = 4_000_000
    HEAVY_MIN_PARTICLES = 50_000

    def __init__(self, capabilities: DeviceCapabilities | None = None) -> None:
        self.capabilities = capabilities or device_capabilities()

    def can_parallelize(self, stage: Stage) -> bool:
        return stage in (Stage.ANALYSIS, Stage.SAMPLING) and self.capabilities.supports_concurrency

    def classify(self, config: GenerationConfig, image_pixels: int) -> Workload:
        particles = config.target_particle_count
        if image_pixels > self.HEAVY_MIN_PIXELS or particles > self.HEAVY_MIN_PARTICLES:
            return Workload.HEAVY
        if image_pixels < self.LIGHT_MAX_PIXELS and particles < self.LIGHT_MAX_PARTICLES:
            return Workload.LIGHT
        return Workload.MEDIUM

    def adapt(self, config: GenerationConfig, image_pixels: int) -> AdaptivePlan:
        workload = self.classify(config, image_pixels)
        cpus = self.capabilities.cpu_count
        seq_time = super().estimate_execution_time(config, image_pixels)
        if workload is Workload.LIGHT or cpus < 2:
            return AdaptivePlan(workload, 1, "small workload", seq_time)
        if workload is Workload.MEDIUM or cpus < 3:
            return AdaptivePlan(workload, 2, "medium workload", seq_time / 2)
        full = max(2, min(config.max_concurrent_operations, cpus, MAX_WORKERS))
        return AdaptivePlan(workload, full, "heavy workload", seq_time / min(full, 2.5))

    def workers_for(self, stage: Stage, config: GenerationConfig, image_pixels: int = 0) -> int:
        if not self.can_parallelize(stage):
            return 1
        return max(1, min(self.adapt(config, image_pixels).max_concurrency, config.max_concurrent_operations))

    def estimate_execution_time(self, config: GenerationConfig, image_pixels: int = 0) -> float:
        return self.adapt(config, image_pixels).estimated_time

    def is_optimal(self, config: GenerationConfig, image_pixels: int = 0) -> bool:
        return True


STRATEGY_TYPES: dict[str, type[ExecutionStrategy]] = {
    SequentialStrategy.name: SequentialStrategy,
    ParallelStrategy.name: ParallelStrategy,
    AdaptiveStrategy.name: AdaptiveStrategy,
}


def create_strategy(name: str) -> ExecutionStrategy:
    try:
        return STRATEGY_TYPES[name.lower()]()
    except KeyError as e:
        raise InvalidConfigurationError(f"unknown execution strategy '{name}'") from e
