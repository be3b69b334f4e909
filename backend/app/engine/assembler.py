"""Particle assembly: map validated samples into display space (NDC)."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from app.engine.config import DisplayMode, GenerationConfig, QualityPreset
from app.engine.errors import InvalidConfigurationError
from app.engine.pixels import RGBA
from app.engine.sampling.base import Sample

logger = logging.getLogger(__name__)

# Velocity jitter, NDC units per frame
MAX_SPEED_NDC = 0.5
VELOCITY_BASE = 0.1
CHAOS_FACTOR = 0.5
CHAOS_RANGE = 200
VELOCITY_RANGE = 500

QUALITY_SIZE_MULTIPLIER: dict[QualityPreset, float] = {
    QualityPreset.ULTRA: 1.0,
    QualityPreset.HIGH: 1.2,
    QualityPreset.STANDARD: 1.5,
    QualityPreset.DRAFT: 2.0,
}


@dataclass
class Particle:
    position: tuple[float, float]
    color: RGBA
    original_color: RGBA
    size: float
    velocity: tuple[float, float] = (0.0, 0.0)

    def to_dict(self) -> dict[str, object]:
        return {
            "position": list(self.position),
            "color": list(self.color),
            "size": self.size,
            "velocity": list(self.velocity),
        }


@dataclass(frozen=True)
class Transform:
    scale_x: float
    scale_y: float
    offset_x: float
    offset_y: float


def display_transform(
    screen: tuple[float, float],
    image: tuple[int, int],
    mode: DisplayMode,
) -> Transform:
    sw, sh = screen
    iw, ih = image
    if mode is DisplayMode.STRETCH:
        return Transform(sw / iw, sh / ih, 0.0, 0.0)
    if mode is DisplayMode.CENTER:
        return Transform(1.0, 1.0, (sw - iw) / 2, (sh - ih) / 2)
    if mode is DisplayMode.FILL:
        scale = sh / ih if iw / ih > sw / sh else sw / iw
    else:
        scale = min(sw / iw, sh / ih)
    return Transform(scale, scale, (sw - iw * scale) / 2, (sh - ih * scale) / 2)


def _xorshift32(value: int) -> int:
    value ^= (value << 13) & 0xFFFFFFFF
    value ^= value >> 17
    value ^= (value << 5) & 0xFFFFFFFF
    return value & 0xFFFFFFFF


class ParticleAssembler:
    def assemble(
        self,
        samples: list[Sample],
        config: GenerationConfig,
        screen_size: tuple[float, float],
        image_size: tuple[int, int],
    ) -> list[Particle]:
        sw, sh = screen_size
        iw, ih = image_size
        if sw <= 0 or sh <= 0:
            raise InvalidConfigurationError(f"screen size must be positive, got {screen_size}")
        if iw <= 0 or ih <= 0:
            raise InvalidConfigurationError(f"image size must be positive, got {image_size}")

        t = display_transform((sw, sh), (iw, ih), config.display_mode)
        lo, hi = config.particle_size_range
        pixel = max(1.0, math.ceil(min(t.scale_x, t.scale_y)))
        size = min(hi, max(lo, pixel * QUALITY_SIZE_MULTIPLIER[config.quality_preset]))

        particles: list[Particle] = []
        for index, s in enumerate(samples):
            # Pixel centre in image-normalised space, then screen, then NDC (y up)
            nx = (s.x + 0.5) / iw
            ny = (s.y + 0.5) / ih
            px = t.offset_x + nx * iw * t.scale_x
            py = t.offset_y + ny * ih * t.scale_y
            ndc_x = px / sw * 2.0 - 1.0
            ndc_y = (1.0 - py / sh) * 2.0 - 1.0

            seed = ((s.x * 73856093) ^ (s.y * 19349663) ^ index) & 0xFFFFFFFF or 1
            seed = _xorshift32(seed)
            chaos = CHAOS_FACTOR + (seed % CHAOS_RANGE) / 1000.0
            seed = _xorshift32(seed)
            vx = -VELOCITY_BASE + (seed % VELOCITY_RANGE) / 1000.0
            seed = _xorshift32(seed)
            vy = -VELOCITY_BASE + (seed % VELOCITY_RANGE) / 1000.0

            particles.append(
                Particle(
                    position=(ndc_x, ndc_y),
                    color=s.color,
                    original_color=s.color,
                    size=size,
                    velocity=(vx * MAX_SPEED_NDC * chaos, vy * MAX_SPEED_NDC * chaos),
                )
            )

        logger.debug("Assembler: %d particles, size %.2f, mode %s", len(particles), size, config.display_mode.value)
        return particles
