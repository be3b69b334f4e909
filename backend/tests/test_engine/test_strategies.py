"""Tests for the execution strategies."""

import pytest

from app.engine.config import GenerationConfig
from app.engine.errors import InvalidConfigurationError
from app.engine.registry import Priority, Stage
from app.engine.strategies import (
    AdaptiveStrategy,
    DeviceCapabilities,
    ExecutionStrategy,
    ParallelStrategy,
    SequentialStrategy,
    Workload,
    create_strategy,
    device_capabilities,
)

ALL_STAGES = [Stage.ANALYSIS, Stage.SAMPLING, Stage.ASSEMBLY, Stage.CACHING]


@pytest.mark.parametrize("strategy", [SequentialStrategy(), ParallelStrategy(), AdaptiveStrategy()])
def test_plan_keeps_logical_order(strategy):
    plan = strategy.execution_plan(ALL_STAGES)
    flat = [stage for level in plan for stage in level]
    assert flat == ALL_STAGES


def test_dependencies_and_priorities():
    s = SequentialStrategy()
    assert s.dependencies(Stage.ANALYSIS) == []
    assert s.dependencies(Stage.CACHING) == [Stage.ASSEMBLY]
    assert s.priority(Stage.ANALYSIS) is Priority.VERY_HIGH
    assert s.priority(Stage.CACHING) is Priority.LOW


def test_plan_skips_absent_stages():
    plan = SequentialStrategy().execution_plan([Stage.ANALYSIS, Stage.SAMPLING, Stage.ASSEMBLY])
    assert plan == [[Stage.ANALYSIS], [Stage.SAMPLING], [Stage.ASSEMBLY]]


def test_independent_stages_share_a_level():
    class Independent(ExecutionStrategy):
        def can_parallelize(self, stage):
            return True

        def dependencies(self, stage):
            return []

    plan = Independent().execution_plan([Stage.ASSEMBLY, Stage.ANALYSIS])
    assert plan == [[Stage.ANALYSIS, Stage.ASSEMBLY]]


def test_cyclic_dependencies_rejected():
    class Cyclic(ExecutionStrategy):
        def dependencies(self, stage):
            return [Stage.SAMPLING] if stage is Stage.ANALYSIS else [Stage.ANALYSIS]

    with pytest.raises(InvalidConfigurationError):
        Cyclic().execution_plan([Stage.ANALYSIS, Stage.SAMPLING])


def test_sequential_never_parallel():
    s = SequentialStrategy()
    config = GenerationConfig(target_particle_count=50_000, max_concurrent_operations=8)
    assert not any(s.can_parallelize(stage) for stage in ALL_STAGES)
    assert s.workers_for(Stage.SAMPLING, config, 10_000_000) == 1
    assert s.is_optimal(config)
    assert not s.is_optimal(GenerationConfig(target_particle_count=200_000))


def test_parallel_validate_requires_concurrency():
    with pytest.raises(InvalidConfigurationError):
        ParallelStrategy().validate(GenerationConfig(max_concurrent_operations=1))
    ParallelStrategy().validate(GenerationConfig(max_concurrent_operations=2))


def test_parallel_workers_thresholds():
    p = ParallelStrategy()
    big = GenerationConfig(target_particle_count=20_000, max_concurrent_operations=16)
    small = GenerationConfig(target_particle_count=500, max_concurrent_operations=16)
    assert p.workers_for(Stage.SAMPLING, big, 2_000_000) == 4
    assert p.workers_for(Stage.SAMPLING, small, 2_000_000) == 1
    assert p.workers_for(Stage.ANALYSIS, big, 1000) == 1
    assert p.workers_for(Stage.ASSEMBLY, big, 2_000_000) == 1


def test_adaptive_classification():
    a = AdaptiveStrategy(DeviceCapabilities(cpu_count=8, performance_class="high"))
    assert a.classify(GenerationConfig(target_particle_count=1000), 100_000) is Workload.LIGHT
    assert a.classify(GenerationConfig(target_particle_count=20_000), 100_000) is Workload.MEDIUM
    assert a.classify(GenerationConfig(target_particle_count=1000), 5_000_000) is Workload.HEAVY

    light = GenerationConfig(target_particle_count=1000, max_concurrent_operations=8)
    medium = GenerationConfig(target_particle_count=20_000, max_concurrent_operations=8)
    heavy = GenerationConfig(target_particle_count=60_000, max_concurrent_operations=8)
    assert a.workers_for(Stage.SAMPLING, light, 100_000) == 1
    assert a.workers_for(Stage.SAMPLING, medium, 100_000) == 2
    assert a.workers_for(Stage.SAMPLING, heavy, 100_000) == 4
    assert a.workers_for(Stage.ASSEMBLY, heavy, 100_000) == 1


def test_adaptive_single_core_stays_sequential():
    a = AdaptiveStrategy(DeviceCapabilities(cpu_count=1, performance_class="low"))
    heavy = GenerationConfig(target_particle_count=60_000, max_concurrent_operations=8)
    assert a.workers_for(Stage.SAMPLING, heavy, 5_000_000) == 1
    assert len(a.execution_plan(ALL_STAGES)) == 4


def test_estimates_are_positive_and_scale():
    s = SequentialStrategy()
    small = s.estimate_execution_time(GenerationConfig(target_particle_count=100), 10_000)
    large = s.estimate_execution_time(GenerationConfig(target_particle_count=100_000), 10_000)
    assert 0 < small < large
    assert ParallelStrategy().estimate_execution_time(GenerationConfig(target_particle_count=100_000, max_concurrent_operations=4), 10_000) <= large


def test_device_capabilities_cached():
    assert device_capabilities() is device_capabilities()


def test_factory():
    assert isinstance(create_strategy("Parallel"), ParallelStrategy)
    assert isinstance(create_strategy("adaptive"), AdaptiveStrategy)
    with pytest.raises(InvalidConfigurationError):
        create_strategy("quantum")
