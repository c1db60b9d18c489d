"""
High-level background-removal pipeline.

`remove_background` is the only entry point. Orchestration is strictly
linear: square the image, stretch it to the model input, rasterize, infer,
scale the mask back to the square, invert it and cut the image out.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import cv2

from . import config
from .errors import BackgroundRemovalError, InferenceError, RasterizationError
from .geometry import ScalingMode, square_size
from .graphics import GraphicsBackend, get_backend
from .inference import SegmentationModel
from .model_loader import get_segmentation_model
from .pixel_buffer import PixelBuffer, buffer_from_image

logger = logging.getLogger(__name__)


def _rasterize(stage: str, func: Callable[..., Any], *args: Any) -> Any:
    """Run a drawing step, reporting failures as RasterizationError."""
    try:
        result = func(*args)
    except BackgroundRemovalError:
        raise
    except (cv2.error, OSError, ValueError) as exc:
        raise RasterizationError(f"{stage} failed: {exc}") from exc
    if result is None:
        raise RasterizationError(f"{stage} produced no image")
    return result


def _run_inference(model: SegmentationModel, buffer: PixelBuffer) -> PixelBuffer:
    try:
        result = model.predict(buffer)
    except BackgroundRemovalError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise InferenceError(f"Segmentation model failed: {exc}") from exc
    if result is None:
        raise InferenceError("Segmentation model returned no result")
    return result


def needs_orientation_correction(
    backend: GraphicsBackend, buffer: PixelBuffer, settings: Optional[config.Settings] = None
) -> bool:
    """
    Whether the mask decoded from `buffer` comes out upside down and mirrored.

    ORIENTATION_CORRECTION forces the answer; otherwise only bottom-up
    buffers decoded by a backend that ignores row order need it.
    """
    settings = settings or config.get_settings()
    if settings.orientation_correction is not None:
        return settings.orientation_correction
    return buffer.bottom_up and not backend.handles_bottom_up_buffers


def _correct_orientation(backend: GraphicsBackend, image: Any) -> Any:
    rotated = _rasterize("rotate mask", backend.rotated, image, 180)
    return _rasterize("flip mask", backend.flipped_horizontally, rotated)


def _maybe_dump_debug(backend: GraphicsBackend, images: Dict[str, Any], debug_dir: Path) -> None:
    """Optionally write intermediate images when DEBUG is enabled."""
    try:
        debug_dir.mkdir(parents=True, exist_ok=True)
        for name, image in images.items():
            bgra = cv2.cvtColor(backend.rgba_array(image), cv2.COLOR_RGBA2BGRA)
            cv2.imwrite(str(debug_dir / f"{name}.png"), bgra)
        logger.debug("pipeline: wrote debug outputs to %s", debug_dir)
    except Exception as exc:  # noqa: BLE001
        logger.warning("pipeline: failed to write debug outputs: %s", exc)


def remove_background(
    image: Any,
    mask_only: bool = False,
    *,
    backend: Optional[Union[GraphicsBackend, str]] = None,
    model: Optional[SegmentationModel] = None,
) -> Any:
    """
    Cut the subject out of `image`.

    The result is a square, sized to the longer edge of the input, with the
    input aspect-fitted inside it. With `mask_only` the upright, rescaled
    mask is returned as produced by the model (subject light, background
    dark) instead of the cutout.

    Raises:
        ValueError: when the image is not usable by the backend.
        BackgroundRemovalError: the first stage failure, by kind.
    """
    settings = config.get_settings()
    if backend is None or isinstance(backend, str):
        backend = get_backend(backend)
    if model is None:
        model = get_segmentation_model()

    sz = square_size(backend.size(image))
    scaled_image = backend.scaled(image, sz, ScalingMode.ASPECT_FIT)

    side = model.input_size
    resized = _rasterize("resize to model input", backend.resized, scaled_image, side, side)
    buffer = buffer_from_image(_rasterize("read pixels", backend.rgba_array, resized))
    logger.debug("pipeline: square=%s model_input=%d backend=%s", sz.as_int(), side, backend.name)

    result = _run_inference(model, buffer)

    out = _rasterize("decode mask buffer", backend.image_from_pixel_buffer, result)
    scaled_out = _rasterize("scale mask", backend.scaled, out, sz, ScalingMode.ASPECT_FIT)
    if needs_orientation_correction(backend, result, settings):
        logger.debug("pipeline: correcting mask orientation for %s backend", backend.name)
        scaled_out = _correct_orientation(backend, scaled_out)

    if mask_only:
        if settings.debug:
            _maybe_dump_debug(backend, {"mask": scaled_out}, Path(settings.debug_output_dir))
        return scaled_out

    inverted = _rasterize("invert mask", backend.inverted, scaled_out)
    cutout = _rasterize("apply mask", backend.masked, scaled_image, inverted)
    if settings.debug:
        _maybe_dump_debug(
            backend,
            {"mask": scaled_out, "inverted_mask": inverted, "cutout": cutout},
            Path(settings.debug_output_dir),
        )
    return cutout
