"""Tests for the Pillow and OpenCV graphics backends."""

from __future__ import annotations

import numpy as np
import pytest
from PIL import Image

from conftest import alpha_at, make_image
from u2net_cutout.errors import ErrorKind, RasterizationError
from u2net_cutout.geometry import ScalingMode, Size
from u2net_cutout.graphics import OpenCVBackend, PillowBackend, get_backend
from u2net_cutout.pixel_buffer import PixelFormat, buffer_from_gray


def _gradient(width: int = 6, height: int = 4) -> np.ndarray:
    rgb = np.zeros((height, width, 3), dtype=np.uint8)
    rgb[..., 0] = np.arange(width, dtype=np.uint8)[None, :] * 40
    rgb[..., 1] = np.arange(height, dtype=np.uint8)[:, None] * 60
    rgb[..., 2] = 17
    return rgb


def test_get_backend_by_name() -> None:
    assert isinstance(get_backend("pillow"), PillowBackend)
    assert isinstance(get_backend("OpenCV"), OpenCVBackend)
    with pytest.raises(ValueError):
        get_backend("skia")


def test_get_backend_defaults_to_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    from u2net_cutout.config import get_settings

    monkeypatch.setenv("GRAPHICS_BACKEND", "opencv")
    get_settings.cache_clear()

    assert isinstance(get_backend(), OpenCVBackend)


def test_scaled_letterboxes_with_transparency(backend) -> None:
    rgb = np.full((200, 100, 3), 200, dtype=np.uint8)
    image = make_image(backend, rgb)

    scaled = backend.scaled(image, Size(200, 200), ScalingMode.ASPECT_FIT)

    assert backend.size(scaled) == Size(200, 200)
    rgba = backend.rgba_array(scaled)
    # 50px margins left and right, image in between.
    assert rgba[100, 49, 3] == 0
    assert rgba[100, 50, 3] == 255
    assert rgba[100, 149, 3] == 255
    assert rgba[100, 150, 3] == 0
    assert tuple(rgba[100, 100, :3]) == (200, 200, 200)


def test_scaled_fill_crops_overflow(backend) -> None:
    image = make_image(backend, np.full((200, 100, 3), 90, dtype=np.uint8))

    scaled = backend.scaled(image, Size(100, 100), ScalingMode.ASPECT_FILL)

    assert backend.size(scaled) == Size(100, 100)
    assert (backend.rgba_array(scaled)[..., 3] == 255).all()


def test_resized_stretches_without_keeping_aspect(backend) -> None:
    image = make_image(backend, np.full((300, 400, 3), 10, dtype=np.uint8))

    resized = backend.resized(image, 32, 32)

    assert backend.size(resized) == Size(32, 32)


def test_rgba_array_is_rgb_ordered(backend) -> None:
    rgb = _gradient()
    rgba = backend.rgba_array(make_image(backend, rgb))

    assert rgba.shape == (4, 6, 4)
    np.testing.assert_array_equal(rgba[..., :3], rgb)
    assert (rgba[..., 3] == 255).all()


def test_inversion_is_an_involution(backend) -> None:
    image = backend.scaled(make_image(backend, _gradient()), Size(6, 6), ScalingMode.ASPECT_FIT)

    once = backend.inverted(image)
    twice = backend.inverted(once)

    original = backend.rgba_array(image)
    np.testing.assert_array_equal(backend.rgba_array(twice), original)
    np.testing.assert_array_equal(backend.rgba_array(once)[..., :3], 255 - original[..., :3])
    np.testing.assert_array_equal(backend.rgba_array(once)[..., 3], original[..., 3])


def test_rotate_180_then_mirror_is_vertical_flip(backend) -> None:
    rgb = _gradient()
    image = make_image(backend, rgb)

    corrected = backend.flipped_horizontally(backend.rotated(image, 180))

    np.testing.assert_array_equal(backend.rgba_array(corrected)[..., :3], rgb[::-1])


def test_rotate_arbitrary_angle_expands_bounds(backend) -> None:
    image = make_image(backend, np.full((10, 20, 3), 255, dtype=np.uint8))

    rotated = backend.rotated(image, 90)
    assert backend.size(rotated) == Size(10, 20)

    tilted = backend.rotated(image, 45)
    size = backend.size(tilted)
    assert size.width > 20
    assert size.height > 10


def test_masked_keeps_dark_mask_pixels(backend) -> None:
    image = make_image(backend, np.full((4, 4, 3), 120, dtype=np.uint8))
    mask_rgb = np.zeros((4, 4, 3), dtype=np.uint8)
    mask_rgb[:, 2:] = 255
    mask = make_image(backend, mask_rgb)

    out = backend.masked(image, mask)

    assert alpha_at(backend, out, 0, 0) == 255
    assert alpha_at(backend, out, 3, 3) == 0
    assert tuple(backend.rgba_array(out)[0, 0, :3]) == (120, 120, 120)


def test_masked_respects_existing_transparency(backend) -> None:
    image = backend.scaled(
        make_image(backend, np.full((4, 2, 3), 120, dtype=np.uint8)), Size(4, 4), ScalingMode.ASPECT_FIT
    )
    mask = make_image(backend, np.zeros((4, 4, 3), dtype=np.uint8))

    out = backend.masked(image, mask)

    assert alpha_at(backend, out, 0, 0) == 0
    assert alpha_at(backend, out, 1, 0) == 255


def test_masked_rejects_mismatched_sizes(backend) -> None:
    image = make_image(backend, np.zeros((4, 4, 3), dtype=np.uint8))
    mask = make_image(backend, np.zeros((5, 4, 3), dtype=np.uint8))

    with pytest.raises(RasterizationError) as excinfo:
        backend.masked(image, mask)
    assert excinfo.value.kind is ErrorKind.RASTERIZATION


def test_pillow_honours_bottom_up_buffers() -> None:
    mask = np.zeros((4, 3), dtype=np.uint8)
    mask[0] = 255  # top row lit
    buffer = buffer_from_gray(mask, bottom_up=True)

    image = PillowBackend().image_from_pixel_buffer(buffer)

    rgba = np.array(image)
    assert (rgba[0, :, 0] == 255).all()
    assert (rgba[3, :, 0] == 0).all()


def test_opencv_maps_buffer_memory_as_is() -> None:
    mask = np.zeros((4, 3), dtype=np.uint8)
    mask[0] = 255
    buffer = buffer_from_gray(mask, bottom_up=True)

    image = OpenCVBackend().image_from_pixel_buffer(buffer)

    # Memory holds the top row last, so it shows up at the bottom.
    assert (image[3, :, 2] == 255).all()
    assert (image[0, :, 2] == 0).all()


@pytest.mark.parametrize("pixel_format", [PixelFormat.ARGB32, PixelFormat.GRAY8])
def test_image_from_top_down_buffer(backend, pixel_format: PixelFormat) -> None:
    mask = np.arange(12, dtype=np.uint8).reshape(3, 4) * 20
    buffer = buffer_from_gray(mask, pixel_format=pixel_format)

    rgba = backend.rgba_array(backend.image_from_pixel_buffer(buffer))

    np.testing.assert_array_equal(rgba[..., 0], mask)
    np.testing.assert_array_equal(rgba[..., 2], mask)


def test_pillow_rejects_foreign_images() -> None:
    with pytest.raises(ValueError):
        PillowBackend().size(np.zeros((2, 2, 3), dtype=np.uint8))


def test_opencv_rejects_foreign_images() -> None:
    with pytest.raises(ValueError):
        OpenCVBackend().size(Image.new("RGB", (2, 2)))
    with pytest.raises(ValueError):
        OpenCVBackend().size(np.zeros((2, 2, 3), dtype=np.float32))
