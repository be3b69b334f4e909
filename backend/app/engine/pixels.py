"""PixelAccessor: byte-order normalised, bounds-checked read access to a decoded image.

The channel permutation is resolved once at construction; afterwards every read
is a plain array lookup on a read-only float32 RGBA buffer, so one accessor can
be shared by any number of sampling threads without locking.
"""

from __future__ import annotations

import enum
import io

import numpy as np
from numpy.typing import NDArray
from PIL import Image, UnidentifiedImageError

from app.engine.errors import InvalidImageError

RGBA = tuple[float, float, float, float]
Rect = tuple[int, int, int, int]  # x, y, width, height

# Returned for reads that fall outside the image
FALLBACK_COLOR: RGBA = (0.0, 0.0, 0.0, 1.0)

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float32)

# Pixels at or below this alpha are treated as transparent everywhere
ALPHA_THRESHOLD = 0.1
LOW_ALPHA_THRESHOLD = 0.05

# 8-connected ring offsets (scaled by radius)
_RING = ((-1, -1), (0, -1), (1, -1), (-1, 0), (1, 0), (-1, 1), (0, 1), (1, 1))


class ByteOrder(str, enum.Enum):
    RGBA = "rgba"
    BGRA = "bgra"
    ARGB = "argb"


# Memory byte index for each of R, G, B, A
_PERMUTATION: dict[ByteOrder, list[int]] = {
    ByteOrder.RGBA: [0, 1, 2, 3],
    ByteOrder.BGRA: [2, 1, 0, 3],
    ByteOrder.ARGB: [1, 2, 3, 0],
}


def luma(rgb: NDArray[np.float32]) -> NDArray[np.float32]:
    """Perceived brightness of ``(..., 3+)`` colours, BT.601."""
    return rgb[..., :3] @ LUMA_WEIGHTS


def hsv_saturation(rgb: NDArray[np.float32]) -> NDArray[np.float32]:
    """(max - min) / max per colour, 0 for black."""
    hi = rgb[..., :3].max(axis=-1)
    lo = rgb[..., :3].min(axis=-1)
    return np.where(hi > 0, (hi - lo) / np.maximum(hi, 1e-12), 0.0).astype(np.float32)


def _unpremultiply(pixels: NDArray[np.float32]) -> NDArray[np.float32]:
    alpha = pixels[..., 3:4]
    rgb = np.where(alpha > 0, pixels[..., :3] / np.maximum(alpha, 1e-12), 0.0)
    return np.concatenate([np.clip(rgb, 0.0, 1.0), alpha], axis=-1).astype(np.float32)


class PixelAccessor:
    """Read-only RGBA view of an image with O(1) random access."""

    def __init__(self, pixels: NDArray[np.float32]) -> None:
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise InvalidImageError(f"expected HxWx4 pixel array, got shape {pixels.shape}")
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise InvalidImageError()
        self._pixels = np.ascontiguousarray(pixels, dtype=np.float32)
        self._pixels.setflags(write=False)

    # --- Constructors ---

    @classmethod
    def from_bytes(
        cls,
        buffer: bytes,
        width: int,
        height: int,
        byte_order: ByteOrder = ByteOrder.RGBA,
        premultiplied: bool = False,
        bytes_per_row: int | None = None,
    ) -> PixelAccessor:
        """Wrap a raw 8-bit-per-channel buffer. Row padding is honoured via ``bytes_per_row``."""
        if width <= 0 or height <= 0:
            raise InvalidImageError()
        row = bytes_per_row or width * 4
        if row < width * 4:
            raise InvalidImageError(f"bytes_per_row {row} is shorter than {width * 4}")
        raw = np.frombuffer(buffer, dtype=np.uint8)
        if raw.size < row * height:
            raise InvalidImageError(f"buffer holds {raw.size} bytes, need {row * height}")

        grid = raw[: row * height].reshape(height, row)[:, : width * 4].reshape(height, width, 4)
        pixels = grid[..., _PERMUTATION[ByteOrder(byte_order)]].astype(np.float32) / 255.0
        if premultiplied:
            pixels = _unpremultiply(pixels)
        return cls(pixels)

    @classmethod
    def from_pil(cls, image: Image.Image) -> PixelAccessor:
        if image.width == 0 or image.height == 0:
            raise InvalidImageError()
        rgba = image if image.mode == "RGBA" else image.convert("RGBA")
        return cls(np.asarray(rgba, dtype=np.float32) / 255.0)

    @classmethod
    def from_encoded(cls, data: bytes) -> PixelAccessor:
        """Decode PNG/JPEG/... bytes."""
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise InvalidImageError(f"cannot decode image: {e}") from e
        return cls.from_pil(image)

    @classmethod
    def from_array(cls, array: NDArray) -> PixelAccessor:
        """Accept HxWx3 / HxWx4 arrays, either uint8 or float in [0, 1]."""
        arr = np.asarray(array)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise InvalidImageError(f"unsupported array shape {arr.shape}")
        data = arr.astype(np.float32)
        if arr.dtype == np.uint8:
            data /= 255.0
        if data.shape[2] == 3:
            data = np.concatenate([data, np.ones(data.shape[:2] + (1,), dtype=np.float32)], axis=-1)
        return cls(data)

    # --- Geometry ---

    @property
    def width(self) -> int:
        return int(self._pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self._pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def pixels(self) -> NDArray[np.float32]:
        """The full HxWx4 straight-alpha RGBA array (read-only)."""
        return self._pixels

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def index_of(self, x: int, y: int) -> int:
        return y * self.width + x

    # --- Reads ---

    def color_at(self, x: int, y: int) -> RGBA:
        if not self.in_bounds(x, y):
            return FALLBACK_COLOR
        r, g, b, a = self._pixels[y, x]
        return (float(r), float(g), float(b), float(a))

    def brightness_at(self, x: int, y: int) -> float:
        r, g, b, _ = self.color_at(x, y)
        return 0.299 * r + 0.587 * g + 0.114 * b

    def neighbors(self, x: int, y: int, radius: int = 1) -> list[RGBA]:
        out: list[RGBA] = []
        for dx, dy in _RING:
            nx, ny = x + dx * radius, y + dy * radius
            if self.in_bounds(nx, ny):
                out.append(self.color_at(nx, ny))
        return out

    def _clip_rect(self, rect: Rect | None) -> tuple[int, int, int, int]:
        if rect is None:
            return (0, 0, self.width, self.height)
        x, y, w, h = rect
        x0, y0 = max(0, x), max(0, y)
        x1, y1 = min(self.width, x + w), min(self.height, y + h)
        return (x0, y0, max(x0, x1), max(y0, y1))

    def colors_in(self, rect: Rect | None = None, step: int = 1) -> list[RGBA]:
        x0, y0, x1, y1 = self._clip_rect(rect)
        step = max(1, step)
        block = self._pixels[y0:y1:step, x0:x1:step].reshape(-1, 4)
        return [tuple(float(c) for c in px) for px in block]  # type: ignore[misc]

    def average_color(self, rect: Rect | None = None) -> RGBA:
        x0, y0, x1, y1 = self._clip_rect(rect)
        block = self._pixels[y0:y1, x0:x1].reshape(-1, 4)
        if block.size == 0:
            return FALLBACK_COLOR
        r, g, b, a = block.mean(axis=0)
        return (float(r), float(g), float(b), float(a))
