from __future__ import annotations

import logging
from typing import Optional

import cv2
import numpy as np

from .buffers import ScratchPool
from .config import BLUR_WINDOW
from .errors import InvalidMask

logger = logging.getLogger(__name__)


def as_mask_u8(mask: Optional[np.ndarray]) -> np.ndarray:
    """
    Validate a mask and return it as contiguous uint8.
    Float masks are treated as probabilities in [0,1].
    """
    if mask is None:
        raise InvalidMask("Mask is missing.")
    mask = np.asarray(mask)
    if mask.ndim != 2:
        raise InvalidMask(f"Expected 2D mask, got shape={mask.shape}")
    if mask.size == 0:
        raise InvalidMask("Mask is empty.")
    if mask.dtype != np.uint8:
        if np.issubdtype(mask.dtype, np.floating):
            mask = (np.clip(mask, 0.0, 1.0) * 255.0).astype(np.uint8)
        else:
            mask = np.clip(mask, 0, 255).astype(np.uint8)
    return np.ascontiguousarray(mask)


class MaskUpsampler:
    """
    Bring a mask from inference resolution to image resolution:
      1) bilinear resize
      2) separable box blur (BLUR_WINDOW wide, horizontal then vertical)

    Intermediates live in pooled scratch buffers; only the result is allocated.
    """

    def __init__(self, pool: Optional[ScratchPool] = None, window: int = BLUR_WINDOW):
        if window < 1:
            raise ValueError(f"Blur window must be >= 1, got {window}")
        self.pool = pool if pool is not None else ScratchPool()
        self.window = int(window)

    def resize_blur(self, mask: np.ndarray, width: int, height: int) -> np.ndarray:
        src = as_mask_u8(mask)
        if width <= 0 or height <= 0:
            raise InvalidMask(f"Invalid target size: {(width, height)}")

        k = self.window
        out = np.empty((height, width), dtype=np.uint8)
        with self.pool.lease(width * height) as buf:
            # Flat scratch viewed as row-major (row * width + col).
            tmp = buf.tmp.reshape(height, width)
            h_pass = buf.h_pass.reshape(height, width)

            if src.shape == (height, width):
                np.copyto(tmp, src)
            else:
                cv2.resize(src, (width, height), dst=tmp, interpolation=cv2.INTER_LINEAR)
            cv2.blur(tmp, (k, 1), dst=h_pass, borderType=cv2.BORDER_REPLICATE)
            cv2.blur(h_pass, (1, k), dst=out, borderType=cv2.BORDER_REPLICATE)

        logger.debug("resize_blur %s -> %s", src.shape, out.shape)
        return out


def restore_mask_to_original(mask: np.ndarray, width: int, height: int, upsampler: Optional[MaskUpsampler] = None) -> np.ndarray:
    """Model-space mask -> (height, width) refined mask."""
    upsampler = upsampler if upsampler is not None else MaskUpsampler()
    return upsampler.resize_blur(mask, width, height)
