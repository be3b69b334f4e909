"""Tests for particle assembly."""

import pytest

from app.engine.assembler import ParticleAssembler, display_transform
from app.engine.config import DisplayMode, GenerationConfig, QualityPreset
from app.engine.errors import InvalidConfigurationError
from app.engine.sampling.base import Sample

RED = (1.0, 0.0, 0.0, 1.0)


def test_corners_map_to_ndc():
    config = GenerationConfig(display_mode=DisplayMode.STRETCH)
    samples = [Sample(0, 0, RED), Sample(9, 9, RED)]
    top_left, bottom_right = ParticleAssembler().assemble(samples, config, (10.0, 10.0), (10, 10))
    # y axis points up in NDC
    assert top_left.position == pytest.approx((-0.9, 0.9))
    assert bottom_right.position == pytest.approx((0.9, -0.9))
    assert top_left.color == RED
    assert top_left.original_color == RED


def test_fit_letterboxes():
    t = display_transform((200.0, 100.0), (10, 10), DisplayMode.FIT)
    assert t.scale_x == t.scale_y == 10.0
    assert t.offset_x == 50.0
    assert t.offset_y == 0.0


def test_fill_crops():
    t = display_transform((200.0, 100.0), (10, 10), DisplayMode.FILL)
    assert t.scale_x == 20.0
    assert t.offset_y == -50.0


def test_center_keeps_native_size():
    t = display_transform((30.0, 30.0), (10, 10), DisplayMode.CENTER)
    assert (t.scale_x, t.offset_x, t.offset_y) == (1.0, 10.0, 10.0)


def test_size_follows_preset_and_range():
    samples = [Sample(1, 1, RED)]
    draft = GenerationConfig.for_preset(QualityPreset.DRAFT)
    ultra = GenerationConfig.for_preset(QualityPreset.ULTRA)
    assembler = ParticleAssembler()
    (d,) = assembler.assemble(samples, draft, (10.0, 10.0), (10, 10))
    (u,) = assembler.assemble(samples, ultra, (10.0, 10.0), (10, 10))
    assert d.size == 3.0  # 1px x 2.0, raised to the draft minimum
    assert u.size == 1.0
    (big,) = assembler.assemble(samples, ultra, (1000.0, 1000.0), (10, 10))
    assert big.size == 12.0


def test_velocity_is_deterministic_and_small():
    samples = [Sample(x, 0, RED) for x in range(10)]
    config = GenerationConfig()
    a = ParticleAssembler().assemble(samples, config, (10.0, 10.0), (10, 10))
    b = ParticleAssembler().assemble(samples, config, (10.0, 10.0), (10, 10))
    assert [p.velocity for p in a] == [p.velocity for p in b]
    assert all(abs(v) < 0.5 for p in a for v in p.velocity)


def test_bad_sizes_rejected():
    with pytest.raises(InvalidConfigurationError):
        ParticleAssembler().assemble([], GenerationConfig(), (0.0, 10.0), (10, 10))
