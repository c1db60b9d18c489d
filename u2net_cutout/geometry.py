"""
Size/rect arithmetic shared by every graphics backend.

The original image and the model's mask are both drawn into the same square
computed by `square_size`, so the rect math must stay backend independent.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


@dataclass(frozen=True)
class Size:
    width: float
    height: float

    def as_int(self) -> Tuple[int, int]:
        return int(round(self.width)), int(round(self.height))


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def size(self) -> Size:
        return Size(self.width, self.height)

    def integral(self) -> Tuple[int, int, int, int]:
        """Round to whole pixels as (x, y, width, height); never collapses below 1px."""
        x = int(round(self.x))
        y = int(round(self.y))
        w = max(1, int(round(self.width)))
        h = max(1, int(round(self.height)))
        return x, y, w, h


class ScalingMode(Enum):
    ASPECT_FILL = "aspect_fill"
    ASPECT_FIT = "aspect_fit"

    def aspect_ratio(self, size: Size, other_size: Size) -> float:
        """
        Ratio that maps `other_size` onto `size` while keeping its aspect.

        Aspect-fit picks the smaller of the two axis ratios so the source is
        fully contained; aspect-fill picks the larger so it covers the box.
        """
        _check_positive(size)
        _check_positive(other_size)
        aspect_width = size.width / other_size.width
        aspect_height = size.height / other_size.height
        if self is ScalingMode.ASPECT_FILL:
            return max(aspect_width, aspect_height)
        return min(aspect_width, aspect_height)


def _check_positive(size: Size) -> None:
    if size.width <= 0 or size.height <= 0:
        raise ValueError(f"Size must be positive, got {size.width}x{size.height}")


def square_size(size: Size) -> Size:
    """Square box whose side is the longer edge of `size`."""
    _check_positive(size)
    longer = max(size.width, size.height)
    return Size(longer, longer)


def scaled_rect(source: Size, target: Size, mode: ScalingMode = ScalingMode.ASPECT_FILL) -> Rect:
    """Rect that `source` occupies when scaled into `target` and centered."""
    ratio = mode.aspect_ratio(target, source)
    width = source.width * ratio
    height = source.height * ratio
    return Rect(
        x=(target.width - width) / 2.0,
        y=(target.height - height) / 2.0,
        width=width,
        height=height,
    )
