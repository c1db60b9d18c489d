"""Shared fixtures: clean settings and weight-free segmentation models."""

from __future__ import annotations

from typing import Optional

import cv2
import numpy as np
import pytest
from PIL import Image

from u2net_cutout.config import get_settings
from u2net_cutout.graphics import GraphicsBackend, get_backend
from u2net_cutout.pixel_buffer import PixelBuffer, buffer_from_gray

SETTINGS_ENV = (
    "U2NET_MODEL_PATH",
    "U2NET_INPUT_SIZE",
    "INFERENCE_DEVICE",
    "GRAPHICS_BACKEND",
    "ORIENTATION_CORRECTION",
    "LOG_LEVEL",
    "DEBUG",
    "DEBUG_OUTPUT_DIR",
)


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(params=["pillow", "opencv"])
def backend(request: pytest.FixtureRequest) -> GraphicsBackend:
    return get_backend(request.param)


def make_image(backend: GraphicsBackend, rgb: np.ndarray):
    """Native image for `backend` from an HxWx3 RGB array."""
    if backend.name == "pillow":
        return Image.fromarray(rgb)
    return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)


def alpha_at(backend: GraphicsBackend, image, x: int, y: int) -> int:
    return int(backend.rgba_array(image)[y, x, 3])


class ThresholdModel:
    """Marks pixels with a bright red channel as subject (white)."""

    def __init__(self, input_size: int = 320, bottom_up: Optional[bool] = None) -> None:
        self.input_size = input_size
        self.bottom_up = bottom_up
        self.calls = 0

    def predict(self, buffer: PixelBuffer) -> Optional[PixelBuffer]:
        self.calls += 1
        rgb = buffer.rgb_array()
        mask = np.where(rgb[..., 0] > 128, 255, 0).astype(np.uint8)
        bottom_up = buffer.bottom_up if self.bottom_up is None else self.bottom_up
        return buffer_from_gray(mask, bottom_up=bottom_up)


class EmptyModel:
    input_size = 320

    def predict(self, buffer: PixelBuffer) -> Optional[PixelBuffer]:
        return None


class BrokenModel:
    input_size = 320

    def predict(self, buffer: PixelBuffer) -> Optional[PixelBuffer]:
        raise RuntimeError("runtime crashed")
