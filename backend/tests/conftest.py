"""Shared test fixtures and image builders."""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from app.engine.pixels import PixelAccessor


def solid_image(width: int, height: int, color=(0.5, 0.5, 0.5, 1.0)) -> PixelAccessor:
    pixels = np.empty((height, width, 4), dtype=np.float32)
    pixels[...] = color
    return PixelAccessor.from_array(pixels)


def red_dot_image() -> PixelAccessor:
    """4x4 black image with one fully saturated red pixel at (1, 1)."""
    pixels = np.zeros((4, 4, 4), dtype=np.float32)
    pixels[..., 3] = 1.0
    pixels[1, 1] = (1.0, 0.0, 0.0, 1.0)
    return PixelAccessor.from_array(pixels)


def scene_image(width: int = 64, height: int = 48) -> PixelAccessor:
    """Blue-to-green gradient with a red square and a white stripe."""
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float32)
    pixels = np.zeros((height, width, 4), dtype=np.float32)
    pixels[..., 1] = xs / max(1, width - 1)
    pixels[..., 2] = 1.0 - ys / max(1, height - 1)
    pixels[..., 3] = 1.0
    pixels[height // 3 : height // 2, width // 3 : width // 2] = (1.0, 0.0, 0.0, 1.0)
    pixels[height - 4 :, :] = (1.0, 1.0, 1.0, 1.0)
    return PixelAccessor.from_array(pixels)


def noise_image(width: int = 80, height: int = 80, seed: int = 0) -> PixelAccessor:
    rng = np.random.default_rng(seed)
    pixels = rng.random((height, width, 4), dtype=np.float32)
    pixels[..., 3] = 1.0
    return PixelAccessor.from_array(pixels)


def png_bytes(width: int = 32, height: int = 24) -> bytes:
    image = Image.new("RGB", (width, height), (30, 60, 200))
    for x in range(width // 4, width // 2):
        for y in range(height // 4, height // 2):
            image.putpixel((x, y), (250, 20, 20))
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def scene() -> PixelAccessor:
    return scene_image()


@pytest.fixture
def red_dot() -> PixelAccessor:
    return red_dot_image()


@pytest.fixture
def noise() -> PixelAccessor:
    return noise_image()


@pytest.fixture
def cache_dir(tmp_path):
    return tmp_path / "particle-cache"
