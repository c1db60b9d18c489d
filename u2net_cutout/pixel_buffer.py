"""
Fixed-format pixel buffers used as the boundary type of the inference call.

Buffers are rasterized through a `BitmapContext` whose user space is y-up
with the origin at the bottom-left corner, while image rows run top-down.
`buffer_from_image` flips the context before drawing so the rows land in
the buffer in the same order as in the source image.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Iterator

import cv2
import numpy as np

from .errors import PixelBufferAllocationError, RasterizationError
from .geometry import Rect

logger = logging.getLogger(__name__)

ROW_ALIGNMENT = 16


class PixelFormat(Enum):
    ARGB32 = "32ARGB"  # 8 bits per component, first byte skipped
    GRAY8 = "OneComponent8"

    @property
    def bytes_per_pixel(self) -> int:
        return 4 if self is PixelFormat.ARGB32 else 1


def _aligned_row_bytes(width: int, bytes_per_pixel: int) -> int:
    raw = width * bytes_per_pixel
    return (raw + ROW_ALIGNMENT - 1) // ROW_ALIGNMENT * ROW_ALIGNMENT


@dataclass
class PixelBuffer:
    width: int
    height: int
    pixel_format: PixelFormat
    bytes_per_row: int
    data: np.ndarray  # (height, bytes_per_row) uint8, row padding included
    bottom_up: bool = False
    locked: bool = field(default=False, repr=False)

    def memory_pixels(self) -> np.ndarray:
        """Pixels in memory order (first stored row first), padding stripped."""
        n = self.pixel_format.bytes_per_pixel
        return self.data[:, : self.width * n].reshape(self.height, self.width, n)

    def _store_memory_pixels(self, pixels: np.ndarray) -> None:
        n = self.pixel_format.bytes_per_pixel
        self.data[:, : self.width * n] = pixels.reshape(self.height, self.width * n)

    def pixels(self) -> np.ndarray:
        """Pixels with the top image row first, whatever the stored row order."""
        memory = self.memory_pixels()
        return memory[::-1] if self.bottom_up else memory

    def rgb_array(self) -> np.ndarray:
        pixels = self.pixels()
        if self.pixel_format is PixelFormat.GRAY8:
            return np.repeat(pixels, 3, axis=2)
        return np.ascontiguousarray(pixels[..., 1:4])

    def gray_array(self) -> np.ndarray:
        if self.pixel_format is PixelFormat.GRAY8:
            return np.ascontiguousarray(self.pixels()[..., 0])
        return cv2.cvtColor(self.rgb_array(), cv2.COLOR_RGB2GRAY)

    def tobytes(self) -> bytes:
        return self.data.tobytes()


def allocate_pixel_buffer(
    width: int, height: int, pixel_format: PixelFormat = PixelFormat.ARGB32
) -> PixelBuffer:
    """Allocate a zeroed buffer. Allocation failures are fatal for the call."""
    if width <= 0 or height <= 0:
        raise PixelBufferAllocationError(f"Cannot allocate a {width}x{height} pixel buffer")
    bytes_per_row = _aligned_row_bytes(width, pixel_format.bytes_per_pixel)
    try:
        data = np.zeros((height, bytes_per_row), dtype=np.uint8)
    except MemoryError as exc:
        raise PixelBufferAllocationError(
            f"Out of memory allocating a {width}x{height} {pixel_format.value} buffer"
        ) from exc
    return PixelBuffer(
        width=width,
        height=height,
        pixel_format=pixel_format,
        bytes_per_row=bytes_per_row,
        data=data,
    )


def _translation(tx: float, ty: float) -> np.ndarray:
    return np.array([[1.0, 0.0, tx], [0.0, 1.0, ty], [0.0, 0.0, 1.0]])


class BitmapContext:
    """Off-screen drawing surface over a locked ARGB32 buffer."""

    def __init__(self, buffer: PixelBuffer) -> None:
        self._buffer = buffer
        self._ctm = np.eye(3)
        # User space is y-up; memory row 0 is the top edge of the surface.
        self._device = np.array([[1.0, 0.0, 0.0], [0.0, -1.0, float(buffer.height)], [0.0, 0.0, 1.0]])

    @property
    def ctm(self) -> np.ndarray:
        return self._ctm.copy()

    def translate(self, tx: float, ty: float) -> None:
        self._ctm = self._ctm @ _translation(tx, ty)

    def scale(self, sx: float, sy: float) -> None:
        self._ctm = self._ctm @ np.diag([sx, sy, 1.0])

    def draw(self, rgba: np.ndarray, rect: Rect) -> None:
        """
        Draw an RGBA image (top row first) into `rect` in user space.

        Image row `r` is placed at user y `rect.y + r * scale`, so the current
        transform decides which way the rows end up in memory. The buffer's
        skipped alpha byte means the image is composited over black.
        """
        buffer = self._buffer
        if not buffer.locked:
            raise RasterizationError("Drawing into a pixel buffer outside of its bitmap context")
        if rgba.ndim != 3 or rgba.shape[2] != 4:
            raise RasterizationError(f"Expected an RGBA array, got shape {rgba.shape}")

        src_h, src_w = rgba.shape[:2]
        placement = np.array(
            [
                [rect.width / src_w, 0.0, rect.x],
                [0.0, rect.height / src_h, rect.y],
                [0.0, 0.0, 1.0],
            ]
        )
        continuous = self._device @ self._ctm @ placement
        # warpAffine indexes pixel centres; the transforms above use pixel edges.
        matrix = _translation(-0.5, -0.5) @ continuous @ _translation(0.5, 0.5)

        src = rgba.astype(np.float32)
        coverage = src[..., 3:4] / 255.0
        premultiplied = np.concatenate([src[..., :3] * coverage, src[..., 3:4]], axis=2)
        warped = cv2.warpAffine(
            premultiplied,
            matrix[:2],
            (buffer.width, buffer.height),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0,
        )

        memory = buffer.memory_pixels().copy()
        drawn_alpha = warped[..., 3:4] / 255.0
        rgb = warped[..., :3] + memory[..., 1:4].astype(np.float32) * (1.0 - drawn_alpha)
        memory[..., 0] = 255
        memory[..., 1:4] = np.clip(rgb + 0.5, 0, 255).astype(np.uint8)
        buffer._store_memory_pixels(memory)


@contextmanager
def bitmap_context(buffer: PixelBuffer) -> Iterator[BitmapContext]:
    """Lock `buffer` for drawing; it is always unlocked on exit."""
    if buffer.pixel_format is not PixelFormat.ARGB32:
        raise RasterizationError(f"Cannot draw into a {buffer.pixel_format.value} buffer")
    if buffer.locked:
        raise RasterizationError("Pixel buffer is already locked by another context")
    buffer.locked = True
    try:
        yield BitmapContext(buffer)
    finally:
        buffer.locked = False


def buffer_from_image(rgba: np.ndarray) -> PixelBuffer:
    """Rasterize an RGBA image into an ARGB32 buffer of the same size."""
    height, width = rgba.shape[:2]
    buffer = allocate_pixel_buffer(width, height, PixelFormat.ARGB32)
    with bitmap_context(buffer) as context:
        context.translate(0, height)
        context.scale(1.0, -1.0)
        context.draw(rgba, Rect(0, 0, width, height))
    logger.debug("rasterized %dx%d image into %s buffer", width, height, buffer.pixel_format.value)
    return buffer


def buffer_from_gray(
    mask: np.ndarray,
    pixel_format: PixelFormat = PixelFormat.ARGB32,
    bottom_up: bool = False,
) -> PixelBuffer:
    """Pack a single-channel uint8 mask, replicating it across colour channels."""
    mask = np.asarray(mask)
    if mask.ndim != 2:
        raise ValueError(f"Expected a 2D mask, got shape {mask.shape}")
    height, width = mask.shape
    buffer = allocate_pixel_buffer(width, height, pixel_format)
    buffer.bottom_up = bottom_up

    rows = mask[::-1] if bottom_up else mask
    rows = rows.astype(np.uint8)
    if pixel_format is PixelFormat.GRAY8:
        pixels = rows[..., None]
    else:
        pixels = np.empty((height, width, 4), dtype=np.uint8)
        pixels[..., 0] = 255
        pixels[..., 1:4] = rows[..., None]
    buffer._store_memory_pixels(pixels)
    return buffer
