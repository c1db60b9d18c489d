"""
Segmentation model adapters.

The pipeline only needs something that satisfies `SegmentationModel`: take
one fixed-size ARGB32 pixel buffer, return one mask buffer (or None). The
U2-Net-P network itself is an opaque TorchScript artifact.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import numpy as np
import torch

from .errors import InferenceError
from .pixel_buffer import PixelBuffer, buffer_from_gray

logger = logging.getLogger(__name__)

IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)


class SegmentationModel(Protocol):
    input_size: int

    def predict(self, buffer: PixelBuffer) -> Optional[PixelBuffer]:
        ...


def _normalize_prediction(pred: np.ndarray) -> np.ndarray:
    """Min-max stretch the saliency map into [0, 1]."""
    lo = float(pred.min())
    hi = float(pred.max())
    if hi - lo < 1e-8:
        return np.clip(pred, 0.0, 1.0)
    return (pred - lo) / (hi - lo)


class U2NetSegmentationModel:
    """Runs a TorchScript U2-Net(-P) module on a square ARGB32 buffer."""

    def __init__(self, module: torch.nn.Module, device: torch.device, input_size: int = 320) -> None:
        self.module = module
        self.device = device
        self.input_size = input_size

    def _to_tensor(self, buffer: PixelBuffer) -> torch.Tensor:
        im = buffer.rgb_array().astype(np.float32)
        # U2-Net scales by the image maximum before the ImageNet normalization.
        peak = float(im.max())
        if peak > 0:
            im = im / peak
        im = (im - IMAGENET_MEAN) / IMAGENET_STD
        im = np.transpose(im, (2, 0, 1))  # HWC -> CHW
        return torch.from_numpy(np.ascontiguousarray(im)).unsqueeze(0).to(self.device)

    def predict(self, buffer: PixelBuffer) -> Optional[PixelBuffer]:
        if (buffer.width, buffer.height) != (self.input_size, self.input_size):
            raise InferenceError(
                f"Model expects {self.input_size}x{self.input_size} input, got {buffer.width}x{buffer.height}"
            )

        tensor = self._to_tensor(buffer)
        with torch.no_grad():
            outputs = self.module(tensor)
        # U2-Net returns the fused map d0 followed by its side outputs.
        pred = outputs[0] if isinstance(outputs, (tuple, list)) else outputs
        if pred is None or pred.dim() != 4:
            return None

        matte = _normalize_prediction(pred[0, 0].detach().cpu().numpy())
        mask = np.clip(matte * 255.0 + 0.5, 0, 255).astype(np.uint8)
        logger.debug("inference produced %dx%d mask", mask.shape[1], mask.shape[0])
        return buffer_from_gray(mask, bottom_up=buffer.bottom_up)
