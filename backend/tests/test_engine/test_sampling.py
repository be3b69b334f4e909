"""Tests for the sampling strategies and the PixelSampler dispatcher."""

import numpy as np
import pytest
from scipy.spatial import cKDTree

from app.engine.analyzer import ImageAnalyzer
from app.engine.cancellation import CancellationToken
from app.engine.config import GenerationConfig, SamplingAlgorithm, SamplingParams, SamplingStrategy, StrategyKind
from app.engine.coordinator import GenerationCoordinator
from app.engine.errors import GenerationCancelledError, InvalidConfigurationError
from app.engine.importance import importance_at, importance_map
from app.engine.pixels import PixelAccessor
from app.engine.sampling import PixelSampler
from app.engine.sampling.advanced import (
    hash_positions,
    radical_inverse,
    sample_blue_noise,
    sample_hash_based,
    sample_van_der_corput,
)
from app.engine.sampling.base import SamplerOptions
from app.engine.sampling.importance import Candidate, balance_top_bottom, sample_importance
from app.engine.sampling.stratified import stratified_select
from app.engine.sampling.uniform import sample_uniform
from tests.conftest import noise_image, scene_image, solid_image

ALL_STRATEGIES = [
    SamplingStrategy.uniform(),
    SamplingStrategy.importance(),
    SamplingStrategy.adaptive(),
    SamplingStrategy.hybrid(),
    SamplingStrategy.advanced(SamplingAlgorithm.UNIFORM),
    SamplingStrategy.advanced(SamplingAlgorithm.BLUE_NOISE),
    SamplingStrategy.advanced(SamplingAlgorithm.VAN_DER_CORPUT),
    SamplingStrategy.advanced(SamplingAlgorithm.HASH_BASED),
    SamplingStrategy.advanced(SamplingAlgorithm.ADAPTIVE),
]


def _positions(samples):
    return [(s.x, s.y) for s in samples]


@pytest.mark.parametrize("strategy", ALL_STRATEGIES, ids=lambda s: s.name)
def test_exact_unique_in_bounds(strategy):
    acc = scene_image()
    config = GenerationConfig(target_particle_count=300, sampling_strategy=strategy)
    analysis = ImageAnalyzer().analyze(acc)
    samples = PixelSampler().sample(acc, config, analysis)

    assert len(samples) == 300
    assert len(set(_positions(samples))) == 300
    assert all(0 <= s.x < acc.width and 0 <= s.y < acc.height for s in samples)
    # Colour comes from the image
    s = samples[0]
    assert s.color == acc.color_at(s.x, s.y)


@pytest.mark.parametrize("size", [(2000, 10, 20), (300, 7, 2), (7, 300, 2), (50, 3, 1)], ids=str)
@pytest.mark.parametrize("strategy", ALL_STRATEGIES, ids=lambda s: s.name)
def test_strip_images_fill_target(strategy, size):
    width, height, target = size
    acc = noise_image(width, height)
    config = GenerationConfig(target_particle_count=target, sampling_strategy=strategy)
    samples = PixelSampler().sample(acc, config, ImageAnalyzer().analyze(acc))

    assert len(samples) == target
    assert len(set(_positions(samples))) == target
    assert all(0 <= s.x < width and 0 <= s.y < height for s in samples)


def test_stratified_adaptive_on_single_grid_row():
    acc = noise_image(2000, 10)
    config = GenerationConfig(
        target_particle_count=20,
        sampling_strategy=SamplingStrategy.advanced(SamplingAlgorithm.ADAPTIVE),
        enable_caching=False,
    )
    result = GenerationCoordinator().generate_result(acc, config)
    assert len(result.particles) == 20


@pytest.mark.parametrize("strategy", ALL_STRATEGIES, ids=lambda s: s.name)
def test_target_above_pixel_count_returns_every_pixel(strategy):
    acc = solid_image(10, 8)
    config = GenerationConfig(target_particle_count=500, sampling_strategy=strategy)
    samples = PixelSampler().sample(acc, config)
    assert len(samples) == 80
    assert set(_positions(samples)) == {(x, y) for y in range(8) for x in range(10)}


def test_all_pixels_at_exact_count():
    acc = solid_image(100, 100)
    config = GenerationConfig(target_particle_count=10_000, sampling_strategy=SamplingStrategy.uniform())
    samples = PixelSampler().sample(acc, config)
    assert len(samples) == 10_000
    assert len(set(_positions(samples))) == 10_000


def test_uniform_stride():
    acc = solid_image(100, 100)
    samples = sample_uniform(acc, 50)
    assert len(samples) == 50
    indices = [s.y * 100 + s.x for s in samples]
    assert indices == list(range(0, 10_000, 200))


def test_importance_keeps_red_pixel(red_dot):
    params = SamplingParams(importance_threshold=0.5, important_sampling_ratio=1.0)
    samples = sample_importance(red_dot, 4, params, dominant_colors=[(0.0, 0.0, 0.0)])
    assert len(samples) == 4
    assert (1, 1) in _positions(samples)


def test_importance_through_sampler_keeps_red_pixel(red_dot):
    config = GenerationConfig(
        target_particle_count=4,
        sampling_strategy=SamplingStrategy.importance(),
        sampling_params=SamplingParams(importance_threshold=0.5),
    )
    analysis = ImageAnalyzer().analyze(red_dot)
    samples = PixelSampler().sample(red_dot, config, analysis)
    assert (1, 1) in _positions(samples)


def test_importance_at_matches_map(scene):
    params = SamplingParams()
    dominant = [(0.0, 0.0, 0.0)]
    scores, ys, xs = importance_map(scene, params, dominant)
    for x, y in [(0, 0), (10, 5), (31, 20), (63, 47)]:
        assert importance_at(scene, x, y, params, dominant) == pytest.approx(float(scores[y, x]), abs=1e-6)
    assert importance_at(scene, -1, 0, params) == 0.0
    assert importance_at(scene, 64, 0, params) == 0.0


def test_mostly_transparent_image_still_fills_target():
    pixels = np.zeros((40, 40, 4), dtype=np.float32)
    pixels[:3, :3] = (1.0, 0.0, 0.0, 1.0)
    acc = PixelAccessor.from_array(pixels)
    for strategy in (SamplingStrategy.importance(), SamplingStrategy.hybrid(), SamplingStrategy.adaptive()):
        config = GenerationConfig(target_particle_count=100, sampling_strategy=strategy)
        samples = PixelSampler().sample(acc, config)
        assert len(samples) == 100
        assert len(set(_positions(samples))) == 100


def test_van_der_corput_is_deterministic():
    acc = solid_image(90, 70)
    first = sample_van_der_corput(acc, 400)
    second = sample_van_der_corput(acc, 400)
    assert first == second
    assert len(first) == 400


def test_radical_inverse():
    assert radical_inverse(1, 2) == 0.5
    assert radical_inverse(2, 2) == 0.25
    assert radical_inverse(3, 2) == 0.75
    assert radical_inverse(1, 3) == pytest.approx(1 / 3)
    assert radical_inverse(0, 2) == 0.0


def test_blue_noise_spreads_better_than_random():
    acc = solid_image(64, 64)
    rng = np.random.default_rng(1234)
    count = 50
    blue, random = [], []
    for trial in range(100):
        pts = _positions(sample_blue_noise(acc, count, options=SamplerOptions(seed=trial)))
        blue.append(cKDTree(pts).query(pts, k=2)[0][:, 1].mean())
        flat = rng.choice(64 * 64, size=count, replace=False)
        rnd = np.column_stack([flat % 64, flat // 64])
        random.append(cKDTree(rnd).query(rnd, k=2)[0][:, 1].mean())
    assert np.mean(blue) > np.mean(random)


def test_blue_noise_observes_cancellation():
    token = CancellationToken()
    token.cancel()
    with pytest.raises(GenerationCancelledError):
        sample_blue_noise(solid_image(64, 64), 500, options=SamplerOptions(cancel=token))


def test_hash_based_independent_of_worker_count():
    acc = solid_image(100, 100)
    single = sample_hash_based(acc, 5000, options=SamplerOptions(workers=1))
    threaded = sample_hash_based(acc, 5000, options=SamplerOptions(workers=4))
    assert single == threaded
    assert len(set(_positions(single))) == 5000


def test_hash_positions_in_bounds():
    xs, ys = hash_positions(np.arange(10_000, dtype=np.uint32), 37, 11)
    assert xs.min() >= 0 and xs.max() < 37
    assert ys.min() >= 0 and ys.max() < 11


def test_stratified_select_quota_and_uniqueness():
    ys = list(range(100))
    weights = [1.0] * 50 + [3.0] * 50
    idx = stratified_select(ys, weights, 20, height=100, bands=4)
    assert len(idx) == 20
    assert len(set(idx)) == 20
    # Heavier lower half receives the larger share
    assert sum(1 for i in idx if ys[i] >= 50) > sum(1 for i in idx if ys[i] < 50)


def test_stratified_select_zero_mass_uses_counts():
    idx = stratified_select([0, 1, 2, 3], [0.0] * 4, 2, height=4, bands=2)
    assert len(idx) == 2


def test_balance_top_bottom_ratio():
    top = [Candidate(x, 1, 0.9) for x in range(20)]
    bottom = [Candidate(x, 9, 0.8) for x in range(20)]
    chosen = balance_top_bottom(top + bottom, 10, height=10, top_bottom_ratio=0.3)
    assert sum(1 for c in chosen if c.y < 5) == 3
    assert len(chosen) == 10


def test_balance_odd_slot_goes_to_stronger_half():
    top = [Candidate(0, 1, 1.0)]
    bottom = [Candidate(x, 9, 0.1) for x in range(5)]
    chosen = balance_top_bottom(top + bottom, 1, height=10, top_bottom_ratio=0.5)
    assert chosen == [top[0]]

    chosen = balance_top_bottom(top + bottom, 3, height=10, top_bottom_ratio=0.5)
    assert top[0] in chosen
    assert len(chosen) == 3


@pytest.mark.parametrize("pos", [(0, 0), (1, 1), (3, 0), (2, 1)])
def test_importance_single_sample_keeps_red_pixel(pos):
    pixels = np.zeros((4, 4, 4), dtype=np.float32)
    pixels[..., 3] = 1.0
    x, y = pos
    pixels[y, x] = (1.0, 0.0, 0.0, 1.0)
    acc = PixelAccessor.from_array(pixels)
    params = SamplingParams(importance_threshold=0.5, important_sampling_ratio=1.0)
    samples = sample_importance(acc, 1, params, dominant_colors=[(0.0, 0.0, 0.0)])
    assert _positions(samples) == [pos]


def test_advanced_without_algorithm_rejected():
    config = GenerationConfig(target_particle_count=10, sampling_strategy=SamplingStrategy(StrategyKind.ADVANCED))
    with pytest.raises(InvalidConfigurationError):
        PixelSampler().sample(noise_image(20, 20), config)
