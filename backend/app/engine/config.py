"""Generation configuration: presets, sampling parameters, strategy selection."""

from __future__ import annotations

import enum
import hashlib
import json
import os
from dataclasses import asdict, dataclass, field, replace
from typing import TYPE_CHECKING, Any

from app.engine.errors import InvalidConfigurationError

if TYPE_CHECKING:
    from app.engine.analyzer import ImageAnalysis


class QualityPreset(str, enum.Enum):
    DRAFT = "draft"
    STANDARD = "standard"
    HIGH = "high"
    ULTRA = "ultra"


class StrategyKind(str, enum.Enum):
    UNIFORM = "uniform"
    IMPORTANCE = "importance"
    ADAPTIVE = "adaptive"
    HYBRID = "hybrid"
    ADVANCED = "advanced"


class SamplingAlgorithm(str, enum.Enum):
    UNIFORM = "uniform"
    BLUE_NOISE = "blue_noise"
    VAN_DER_CORPUT = "van_der_corput"
    HASH_BASED = "hash_based"
    ADAPTIVE = "adaptive"


class DisplayMode(str, enum.Enum):
    FIT = "fit"
    FILL = "fill"
    STRETCH = "stretch"
    CENTER = "center"


@dataclass(frozen=True)
class SamplingStrategy:
    """Tagged union: a strategy kind plus, for ``advanced``, the algorithm."""

    kind: StrategyKind
    algorithm: SamplingAlgorithm | None = None

    @classmethod
    def uniform(cls) -> SamplingStrategy:
        return cls(StrategyKind.UNIFORM)

    @classmethod
    def importance(cls) -> SamplingStrategy:
        return cls(StrategyKind.IMPORTANCE)

    @classmethod
    def adaptive(cls) -> SamplingStrategy:
        return cls(StrategyKind.ADAPTIVE)

    @classmethod
    def hybrid(cls) -> SamplingStrategy:
        return cls(StrategyKind.HYBRID)

    @classmethod
    def advanced(cls, algorithm: SamplingAlgorithm) -> SamplingStrategy:
        return cls(StrategyKind.ADVANCED, algorithm)

    @classmethod
    def parse(cls, text: str) -> SamplingStrategy:
        """Parse ``"hybrid"`` or ``"advanced:blue_noise"``."""
        kind, _, algo = text.strip().lower().partition(":")
        try:
            strategy = cls(StrategyKind(kind), SamplingAlgorithm(algo) if algo else None)
        except ValueError as e:
            raise InvalidConfigurationError(f"unknown sampling strategy '{text}'") from e
        return strategy

    @property
    def name(self) -> str:
        if self.algorithm is not None:
            return f"{self.kind.value}:{self.algorithm.value}"
        return self.kind.value


@dataclass(frozen=True)
class SamplingParams:
    """Knobs for the content-aware strategies. Immutable per request."""

    importance_threshold: float = 0.15
    contrast_weight: float = 0.6
    saturation_weight: float = 0.4
    edge_radius: int = 2
    important_sampling_ratio: float = 1.0
    top_bottom_ratio: float = 0.5
    anti_clustering: bool = False

    @property
    def is_valid(self) -> bool:
        return (
            0.0 <= self.importance_threshold <= 1.0
            and self.contrast_weight >= 0.0
            and self.saturation_weight >= 0.0
            and self.edge_radius >= 1
            and 0.0 <= self.important_sampling_ratio <= 1.0
            and 0.0 <= self.top_bottom_ratio <= 1.0
        )

    def scaled(
        self,
        threshold: float = 1.0,
        contrast: float = 1.0,
        saturation: float = 1.0,
        radius_delta: int = 0,
    ) -> SamplingParams:
        return replace(
            self,
            importance_threshold=min(1.0, max(0.0, self.importance_threshold * threshold)),
            contrast_weight=self.contrast_weight * contrast,
            saturation_weight=self.saturation_weight * saturation,
            edge_radius=max(1, self.edge_radius + radius_delta),
        )


@dataclass
class ValidationConfig:
    """Thresholds for the artifact-prevention pass."""

    coverage_grid: int = 4  # 4x4 occupancy grid
    min_coverage: float = 0.85  # fraction of occupied cells required
    cluster_cell: int = 6  # px per clustering cell
    cluster_min_samples: int = 10  # below this, skip cluster detection
    cluster_neighbors: int = 3  # neighbours within a cell to count as clustered
    cluster_fraction: float = 0.10  # clustered share that triggers correction
    vertical_tolerance: float = 0.15  # allowed drift from top_bottom_ratio
    corner_margin: float = 0.10  # corner region size as fraction of each side


# (threshold, contrast, saturation, radius delta)
_PRESET_SCALING: dict[QualityPreset, tuple[float, float, float, int]] = {
    QualityPreset.DRAFT: (0.5, 0.7, 0.5, -1),
    QualityPreset.STANDARD: (1.0, 1.0, 1.0, 0),
    QualityPreset.HIGH: (1.2, 1.3, 1.2, 1),
    QualityPreset.ULTRA: (1.5, 1.5, 1.4, 2),
}


def _cpu_count() -> int:
    return os.cpu_count() or 1


def _standard_params() -> SamplingParams:
    return SamplingParams(
        importance_threshold=0.3,
        contrast_weight=0.4,
        saturation_weight=0.3,
        edge_radius=2,
        important_sampling_ratio=0.7,
        top_bottom_ratio=0.5,
        anti_clustering=True,
    )


@dataclass
class GenerationConfig:
    """Caller-supplied configuration for one generation. Treat as immutable once submitted."""

    target_particle_count: int = 1000
    quality_preset: QualityPreset = QualityPreset.STANDARD
    sampling_strategy: SamplingStrategy = field(default_factory=SamplingStrategy.importance)
    enable_caching: bool = True
    max_concurrent_operations: int = field(default_factory=_cpu_count)
    display_mode: DisplayMode = DisplayMode.FIT
    particle_size_range: tuple[float, float] = (2.0, 8.0)
    cache_size_limit_mb: int = 100
    sampling_params: SamplingParams = field(default_factory=_standard_params)
    # Importance output is trusted as-is unless this is set
    validate_importance_output: bool = False
    seed: int = 42

    @classmethod
    def for_preset(cls, preset: QualityPreset, **overrides: Any) -> GenerationConfig:
        cpu = _cpu_count()
        if preset is QualityPreset.DRAFT:
            base = cls(
                target_particle_count=500,
                quality_preset=preset,
                sampling_strategy=SamplingStrategy.uniform(),
                enable_caching=False,
                max_concurrent_operations=2,
                particle_size_range=(3.0, 6.0),
                cache_size_limit_mb=10,
                sampling_params=replace(
                    _standard_params(),
                    importance_threshold=0.1,
                    contrast_weight=0.2,
                    saturation_weight=0.1,
                    edge_radius=1,
                ),
            )
        elif preset is QualityPreset.HIGH:
            base = cls(
                target_particle_count=2000,
                quality_preset=preset,
                sampling_strategy=SamplingStrategy.hybrid(),
                max_concurrent_operations=cpu,
                particle_size_range=(1.5, 10.0),
                cache_size_limit_mb=300,
                sampling_params=replace(
                    _standard_params(),
                    importance_threshold=0.45,
                    contrast_weight=0.45,
                    saturation_weight=0.35,
                    edge_radius=3,
                ),
            )
        elif preset is QualityPreset.ULTRA:
            base = cls(
                target_particle_count=5000,
                quality_preset=preset,
                sampling_strategy=SamplingStrategy.hybrid(),
                max_concurrent_operations=cpu * 2,
                particle_size_range=(1.0, 12.0),
                cache_size_limit_mb=500,
                sampling_params=replace(
                    _standard_params(),
                    importance_threshold=0.5,
                    contrast_weight=0.5,
                    saturation_weight=0.4,
                    edge_radius=3,
                ),
            )
        else:
            base = cls(quality_preset=QualityPreset.STANDARD, max_concurrent_operations=cpu)
        return replace(base, **overrides)

    def validate(self) -> None:
        if self.target_particle_count <= 0:
            raise InvalidConfigurationError(
                f"target_particle_count must be positive, got {self.target_particle_count}"
            )
        if self.max_concurrent_operations < 1:
            raise InvalidConfigurationError("max_concurrent_operations must be at least 1")
        lo, hi = self.particle_size_range
        if lo <= 0 or hi < lo:
            raise InvalidConfigurationError(f"bad particle size range {self.particle_size_range}")
        if not self.sampling_params.is_valid:
            raise InvalidConfigurationError(f"sampling params out of range: {self.sampling_params}")
        strategy = self.sampling_strategy
        if (strategy.kind is StrategyKind.ADVANCED) != (strategy.algorithm is not None):
            raise InvalidConfigurationError(
                f"advanced strategy requires exactly one algorithm, got {strategy.name}"
            )

    def effective_sampling_params(self) -> SamplingParams:
        """Base params scaled for the quality preset."""
        t, c, s, r = _PRESET_SCALING[self.quality_preset]
        return self.sampling_params.scaled(t, c, s, r)

    def tuned_sampling_params(self, analysis: ImageAnalysis | None) -> SamplingParams:
        """Preset params, additionally tuned from image analysis for High/Ultra only."""
        params = self.effective_sampling_params()
        if analysis is None or self.quality_preset not in (QualityPreset.HIGH, QualityPreset.ULTRA):
            return params

        contrast = 1.0
        saturation = 1.0
        threshold = 1.0
        if analysis.complexity > 5.0:
            contrast += 0.2 * min(1.0, (analysis.complexity - 5.0) / 5.0)
        if analysis.saturation < 0.2:
            saturation += 0.2 * (0.2 - analysis.saturation) / 0.2
        if analysis.edge_density > 0.1:
            threshold = 0.9
        return params.scaled(threshold, contrast, saturation)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["quality_preset"] = self.quality_preset.value
        data["sampling_strategy"] = self.sampling_strategy.name
        data["display_mode"] = self.display_mode.value
        data["particle_size_range"] = list(self.particle_size_range)
        return data

    def fingerprint(self) -> str:
        payload = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(payload.encode()).hexdigest()
