"""
Graphics backends for the background-removal pipeline.

The pipeline only talks to a `GraphicsBackend`, so it works on whichever
native image type the caller already has:

 - `PillowBackend` takes and returns `PIL.Image.Image` objects.
 - `OpenCVBackend` takes and returns numpy arrays in OpenCV channel order
   (gray, BGR or BGRA) and always returns BGRA.

Both keep images top-row-first. They differ in how they turn a pixel buffer
into an image: Pillow's raw decoder honours a bottom-up row order, the
OpenCV backend maps buffer memory as-is.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from typing import Any, Dict, Optional, Type

import cv2
import numpy as np
from PIL import Image, ImageOps

from . import config
from .errors import RasterizationError
from .geometry import ScalingMode, Size, scaled_rect
from .pixel_buffer import PixelBuffer, PixelFormat

logger = logging.getLogger(__name__)


def _stencil_alpha(alpha: np.ndarray, luminance: np.ndarray) -> np.ndarray:
    """Image-mask rule: luminance 0 keeps the pixel, 255 clears it."""
    alpha = alpha.astype(np.uint32)
    keep = 255 - luminance.astype(np.uint32)
    return ((alpha * keep + 127) // 255).astype(np.uint8)


class GraphicsBackend(ABC):
    name: str = ""
    # Whether image_from_pixel_buffer honours PixelBuffer.bottom_up.
    handles_bottom_up_buffers: bool = False

    @abstractmethod
    def size(self, image: Any) -> Size:
        ...

    @abstractmethod
    def scaled(self, image: Any, size: Size, mode: ScalingMode = ScalingMode.ASPECT_FILL) -> Any:
        """Draw `image` centered into a transparent canvas of `size`, keeping its aspect."""

    @abstractmethod
    def resized(self, image: Any, width: int, height: int) -> Any:
        """Stretch to exactly `width` x `height`; aspect ratio is not kept."""

    @abstractmethod
    def rgba_array(self, image: Any) -> np.ndarray:
        """HxWx4 uint8 RGBA copy of the pixels, top row first."""

    @abstractmethod
    def image_from_pixel_buffer(self, buffer: PixelBuffer) -> Any:
        ...

    @abstractmethod
    def rotated(self, image: Any, degrees: float) -> Any:
        """Rotate counter-clockwise about the centre into the rotated bounds."""

    @abstractmethod
    def flipped_horizontally(self, image: Any) -> Any:
        ...

    @abstractmethod
    def inverted(self, image: Any) -> Any:
        """Colour-invert every channel except alpha."""

    @abstractmethod
    def masked(self, image: Any, mask: Any) -> Any:
        """
        Composite `image` through `mask` as an image mask.

        Dark mask pixels let the image through and light ones cut it away;
        the result keeps the image's colours with alpha scaled accordingly.
        """


class PillowBackend(GraphicsBackend):
    name = "pillow"
    handles_bottom_up_buffers = True

    def _coerce(self, image: Any) -> Image.Image:
        if not isinstance(image, Image.Image):
            raise ValueError(f"PillowBackend expects a PIL image, got {type(image).__name__}")
        if image.width == 0 or image.height == 0:
            raise ValueError("Image has no pixels")
        return image if image.mode == "RGBA" else image.convert("RGBA")

    def size(self, image: Any) -> Size:
        width, height = self._coerce(image).size
        return Size(width, height)

    def scaled(self, image: Any, size: Size, mode: ScalingMode = ScalingMode.ASPECT_FILL) -> Image.Image:
        rgba = self._coerce(image)
        x, y, w, h = scaled_rect(self.size(rgba), size, mode).integral()
        canvas = Image.new("RGBA", size.as_int(), (0, 0, 0, 0))
        drawn = rgba if (w, h) == rgba.size else rgba.resize((w, h), Image.BILINEAR)
        canvas.paste(drawn, (x, y))
        return canvas

    def resized(self, image: Any, width: int, height: int) -> Image.Image:
        return self._coerce(image).resize((width, height), Image.BILINEAR)

    def rgba_array(self, image: Any) -> np.ndarray:
        return np.array(self._coerce(image), dtype=np.uint8)

    def image_from_pixel_buffer(self, buffer: PixelBuffer) -> Image.Image:
        ystep = -1 if buffer.bottom_up else 1
        size = (buffer.width, buffer.height)
        if buffer.pixel_format is PixelFormat.GRAY8:
            image = Image.frombuffer("L", size, buffer.tobytes(), "raw", "L", buffer.bytes_per_row, ystep)
        else:
            # Read the four bytes as-is, then drop the leading skipped byte.
            raw = Image.frombuffer("RGBA", size, buffer.tobytes(), "raw", "RGBA", buffer.bytes_per_row, ystep)
            _, red, green, blue = raw.split()
            image = Image.merge("RGB", (red, green, blue))
        return image.convert("RGBA")

    def rotated(self, image: Any, degrees: float) -> Image.Image:
        return self._coerce(image).rotate(degrees, resample=Image.BILINEAR, expand=True)

    def flipped_horizontally(self, image: Any) -> Image.Image:
        return ImageOps.mirror(self._coerce(image))

    def inverted(self, image: Any) -> Image.Image:
        rgba = self._coerce(image)
        out = ImageOps.invert(rgba.convert("RGB")).convert("RGBA")
        out.putalpha(rgba.getchannel("A"))
        return out

    def masked(self, image: Any, mask: Any) -> Image.Image:
        base = self._coerce(image)
        stencil = self._coerce(mask)
        if base.size != stencil.size:
            raise RasterizationError(f"Mask size {stencil.size} does not match image size {base.size}")
        out = np.array(base, dtype=np.uint8)
        luminance = np.asarray(stencil.convert("L"))
        out[..., 3] = _stencil_alpha(out[..., 3], luminance)
        return Image.fromarray(out)


class OpenCVBackend(GraphicsBackend):
    name = "opencv"
    handles_bottom_up_buffers = False

    def _coerce(self, image: Any) -> np.ndarray:
        if not isinstance(image, np.ndarray):
            raise ValueError(f"OpenCVBackend expects a numpy array, got {type(image).__name__}")
        if image.size == 0:
            raise ValueError("Image has no pixels")
        if image.dtype != np.uint8:
            raise ValueError(f"Expected uint8 pixels, got {image.dtype}")
        if image.ndim == 2:
            return cv2.cvtColor(image, cv2.COLOR_GRAY2BGRA)
        if image.ndim == 3 and image.shape[2] == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2BGRA)
        if image.ndim == 3 and image.shape[2] == 4:
            return image
        raise ValueError(f"Unsupported image shape {image.shape}")

    def size(self, image: Any) -> Size:
        height, width = self._coerce(image).shape[:2]
        return Size(width, height)

    def scaled(self, image: Any, size: Size, mode: ScalingMode = ScalingMode.ASPECT_FILL) -> np.ndarray:
        bgra = self._coerce(image)
        x, y, w, h = scaled_rect(self.size(bgra), size, mode).integral()
        canvas_w, canvas_h = size.as_int()
        canvas = np.zeros((canvas_h, canvas_w, 4), dtype=np.uint8)
        if (w, h) == (bgra.shape[1], bgra.shape[0]):
            drawn = bgra
        else:
            drawn = cv2.resize(bgra, (w, h), interpolation=cv2.INTER_LINEAR)

        # Clip the drawn rect to the canvas (aspect-fill overflows it).
        dst_x0, dst_y0 = max(x, 0), max(y, 0)
        dst_x1, dst_y1 = min(x + w, canvas_w), min(y + h, canvas_h)
        if dst_x1 > dst_x0 and dst_y1 > dst_y0:
            canvas[dst_y0:dst_y1, dst_x0:dst_x1] = drawn[dst_y0 - y : dst_y1 - y, dst_x0 - x : dst_x1 - x]
        return canvas

    def resized(self, image: Any, width: int, height: int) -> np.ndarray:
        return cv2.resize(self._coerce(image), (width, height), interpolation=cv2.INTER_LINEAR)

    def rgba_array(self, image: Any) -> np.ndarray:
        return cv2.cvtColor(self._coerce(image), cv2.COLOR_BGRA2RGBA)

    def image_from_pixel_buffer(self, buffer: PixelBuffer) -> np.ndarray:
        # Memory rows map straight onto image rows; buffer.bottom_up is not consulted.
        pixels = np.ascontiguousarray(buffer.memory_pixels())
        if buffer.pixel_format is PixelFormat.GRAY8:
            return cv2.cvtColor(np.ascontiguousarray(pixels[..., 0]), cv2.COLOR_GRAY2BGRA)
        return cv2.cvtColor(np.ascontiguousarray(pixels[..., 1:4]), cv2.COLOR_RGB2BGRA)

    def rotated(self, image: Any, degrees: float) -> np.ndarray:
        bgra = self._coerce(image)
        angle = degrees % 360.0
        if angle == 0:
            return bgra.copy()
        if angle == 90:
            return cv2.rotate(bgra, cv2.ROTATE_90_COUNTERCLOCKWISE)
        if angle == 180:
            return cv2.rotate(bgra, cv2.ROTATE_180)
        if angle == 270:
            return cv2.rotate(bgra, cv2.ROTATE_90_CLOCKWISE)

        height, width = bgra.shape[:2]
        matrix = cv2.getRotationMatrix2D(((width - 1) / 2.0, (height - 1) / 2.0), angle, 1.0)
        cos, sin = abs(matrix[0, 0]), abs(matrix[0, 1])
        bound_w = int(round(height * sin + width * cos))
        bound_h = int(round(height * cos + width * sin))
        matrix[0, 2] += (bound_w - width) / 2.0
        matrix[1, 2] += (bound_h - height) / 2.0
        return cv2.warpAffine(
            bgra,
            matrix,
            (bound_w, bound_h),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=(0, 0, 0, 0),
        )

    def flipped_horizontally(self, image: Any) -> np.ndarray:
        return cv2.flip(self._coerce(image), 1)

    def inverted(self, image: Any) -> np.ndarray:
        bgra = self._coerce(image)
        out = cv2.bitwise_not(bgra)
        out[..., 3] = bgra[..., 3]
        return out

    def masked(self, image: Any, mask: Any) -> np.ndarray:
        base = self._coerce(image)
        stencil = self._coerce(mask)
        if base.shape[:2] != stencil.shape[:2]:
            raise RasterizationError(
                f"Mask size {stencil.shape[1::-1]} does not match image size {base.shape[1::-1]}"
            )
        out = base.copy()
        luminance = cv2.cvtColor(stencil, cv2.COLOR_BGRA2GRAY)
        out[..., 3] = _stencil_alpha(base[..., 3], luminance)
        return out


BACKENDS: Dict[str, Type[GraphicsBackend]] = {
    PillowBackend.name: PillowBackend,
    OpenCVBackend.name: OpenCVBackend,
}


def get_backend(name: Optional[str] = None) -> GraphicsBackend:
    """Instantiate a backend by name, defaulting to GRAPHICS_BACKEND."""
    name = (name or config.get_settings().graphics_backend).lower()
    try:
        backend_cls = BACKENDS[name]
    except KeyError as exc:
        raise ValueError(f"Unknown graphics backend '{name}'; expected one of {sorted(BACKENDS)}") from exc
    logger.debug("using %s graphics backend", name)
    return backend_cls()
