"""
Model loading utilities for U2-Net-P.

The loader:
 - loads the TorchScript export from `U2NET_MODEL_PATH`,
 - keeps a single shared instance on the preferred device,
 - exposes `get_segmentation_model()` for pipeline callers.
"""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import Optional

import torch

from . import config
from .errors import ModelLoadError
from .inference import U2NetSegmentationModel

logger = logging.getLogger(__name__)

_MODEL: Optional[U2NetSegmentationModel] = None
_LOCK = Lock()


def get_device(settings: Optional[config.Settings] = None) -> torch.device:
    """Return the inference device: INFERENCE_DEVICE, else CUDA -> MPS -> CPU."""
    settings = settings or config.get_settings()
    if settings.inference_device:
        return torch.device(settings.inference_device)
    if torch.cuda.is_available():
        return torch.device("cuda")
    if torch.backends.mps.is_available():  # type: ignore[attr-defined]
        return torch.device("mps")
    return torch.device("cpu")


def _load_torchscript(model_path: Path, device: torch.device) -> torch.nn.Module:
    module = torch.jit.load(str(model_path), map_location=device)
    module.eval()
    return module


def _load_model(settings: config.Settings) -> U2NetSegmentationModel:
    model_path = settings.u2net_model_path
    if model_path is None:
        raise ModelLoadError("U2NET_MODEL_PATH is required to load the segmentation model")
    if not model_path.exists():
        raise ModelLoadError(f"U2-Net checkpoint not found at {model_path}")

    device = get_device(settings)
    logger.info("Loading TorchScript model from %s", model_path)
    try:
        module = _load_torchscript(model_path, device)
    except Exception as exc:  # noqa: BLE001
        raise ModelLoadError(f"Could not load TorchScript model from {model_path}: {exc}") from exc
    return U2NetSegmentationModel(module, device, input_size=settings.u2net_input_size)


def get_segmentation_model() -> U2NetSegmentationModel:
    """
    Return the singleton segmentation model.

    The model is loaded once on first access; later calls share it. Callers
    that run the pipeline from several threads should hand each thread its
    own model via `remove_background(..., model=...)` if the runtime is not
    thread-safe.
    """
    global _MODEL
    if _MODEL is not None:
        return _MODEL

    with _LOCK:
        if _MODEL is None:
            _MODEL = _load_model(config.get_settings())
            logger.info("U2-Net loaded on device: %s", _MODEL.device)
    return _MODEL


def reset_model() -> None:
    """Drop the cached model so the next call reloads it."""
    global _MODEL
    with _LOCK:
        _MODEL = None
