"""
Pixel access over the image kinds the pipeline accepts.

Fast path: packed uint8 arrays (H,W,4), (H,W,3), (H,W) and PIL images, read as
numpy views. Anything else exposing ``size`` and ``getpixel((x, y))`` goes
through the per-pixel fallback.
"""

from __future__ import annotations

from typing import Any, Optional, Tuple

import numpy as np
from PIL import Image

_PACKED_PIL_MODES = ("RGBA", "RGB", "L")

RGBA = Tuple[int, int, int, int]


def packed_array(img: Any) -> Optional[np.ndarray]:
    """
    Return the packed uint8 pixel array behind ``img``:
      - (H,W,4) RGBA, (H,W,3) RGB or (H,W) intensity
    or None when the image only supports per-pixel access.
    """
    if isinstance(img, np.ndarray):
        if img.dtype != np.uint8:
            raise ValueError(f"Expected uint8 image array, got dtype={img.dtype}")
        if img.ndim == 2 or (img.ndim == 3 and img.shape[2] in (3, 4)):
            return img
        raise ValueError(f"Unsupported image array shape {img.shape}")
    if isinstance(img, Image.Image):
        if img.mode not in _PACKED_PIL_MODES:
            img = img.convert("RGBA")
        return np.asarray(img)
    return None


def image_size(img: Any) -> Tuple[int, int]:
    """(width, height)"""
    if isinstance(img, np.ndarray):
        return int(img.shape[1]), int(img.shape[0])
    w, h = img.size
    return int(w), int(h)


def _normalize_pixel(px: Any) -> RGBA:
    if isinstance(px, (int, float, np.integer, np.floating)):
        v = int(px)
        return v, v, v, 255
    px = tuple(int(c) for c in px)
    if len(px) == 1:
        return px[0], px[0], px[0], 255
    if len(px) == 2:
        return px[0], px[0], px[0], px[1]
    if len(px) == 3:
        return px[0], px[1], px[2], 255
    return px[0], px[1], px[2], px[3]


def pixel_at(img: Any, x: int, y: int, packed: Optional[np.ndarray] = None) -> RGBA:
    """Single RGBA sample; pass ``packed`` to skip the lookup when already resolved."""
    arr = packed if packed is not None else packed_array(img)
    if arr is None:
        return _normalize_pixel(img.getpixel((x, y)))
    if arr.ndim == 2:
        v = int(arr[y, x])
        return v, v, v, 255
    px = arr[y, x]
    if arr.shape[2] == 3:
        return int(px[0]), int(px[1]), int(px[2]), 255
    return int(px[0]), int(px[1]), int(px[2]), int(px[3])


def to_rgba_array(img: Any) -> np.ndarray:
    """Materialize any supported image as a (H,W,4) uint8 array."""
    arr = packed_array(img)
    if arr is not None:
        if arr.ndim == 2:
            out = np.empty(arr.shape + (4,), dtype=np.uint8)
            out[..., :3] = arr[..., None]
            out[..., 3] = 255
            return out
        if arr.shape[2] == 3:
            out = np.empty(arr.shape[:2] + (4,), dtype=np.uint8)
            out[..., :3] = arr
            out[..., 3] = 255
            return out
        return arr

    w, h = image_size(img)
    out = np.empty((h, w, 4), dtype=np.uint8)
    for y in range(h):
        for x in range(w):
            out[y, x] = _normalize_pixel(img.getpixel((x, y)))
    return out


def to_rgb_array(img: Any) -> np.ndarray:
    """(H,W,3) uint8; alpha is dropped, not flattened."""
    arr = packed_array(img)
    if arr is not None and arr.ndim == 3 and arr.shape[2] == 3:
        return arr
    return np.ascontiguousarray(to_rgba_array(img)[..., :3])
