"""Failure kinds raised by the background-removal pipeline."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    PIXEL_BUFFER_ALLOCATION = "pixel_buffer_allocation"
    MODEL_LOAD = "model_load"
    INFERENCE = "inference"
    RASTERIZATION = "rasterization"


class BackgroundRemovalError(RuntimeError):
    """Base class; the pipeline aborts at the first stage raising one of these."""

    kind: ErrorKind


class PixelBufferAllocationError(BackgroundRemovalError):
    kind = ErrorKind.PIXEL_BUFFER_ALLOCATION


class ModelLoadError(BackgroundRemovalError):
    kind = ErrorKind.MODEL_LOAD


class InferenceError(BackgroundRemovalError):
    kind = ErrorKind.INFERENCE


class RasterizationError(BackgroundRemovalError):
    kind = ErrorKind.RASTERIZATION
