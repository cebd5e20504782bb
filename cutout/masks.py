"""
Mask strategies that do not need the model:
  - alpha channel
  - distance to a reference background colour
  - Sobel edges
and ``auto_mask`` which picks among them.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence, Tuple

import cv2
import numpy as np

from .config import (
    BACKGROUND_TOLERANCE,
    EDGE_PRE_BLUR_SIGMA,
    EDGE_THRESHOLD,
    UNIFORM_VARIANCE_LIMIT,
)
from .pixels import image_size, packed_array, pixel_at, to_rgba_array

logger = logging.getLogger(__name__)

Mask = Callable[[Any], np.ndarray]

# 8-bit -> 16-bit channel scale.
_WIDE = 257

_LUMA_R, _LUMA_G, _LUMA_B = 299, 587, 114


def _sample_steps(w: int, h: int) -> Tuple[int, int]:
    return max(1, w // 10), max(1, h // 10)


def has_alpha(img: Any) -> bool:
    """True if any pixel on a sparse grid is not fully opaque."""
    w, h = image_size(img)
    sx, sy = _sample_steps(w, h)
    arr = packed_array(img)
    if arr is not None:
        if arr.ndim == 2 or arr.shape[2] == 3:
            return False
        return bool((arr[::sy, ::sx, 3] < 255).any())

    for y in range(0, h, sy):
        for x in range(0, w, sx):
            if pixel_at(img, x, y)[3] < 255:
                return True
    return False


def detect_uniform_background(img: Any) -> Tuple[Tuple[int, int, int], bool]:
    """
    Sample the four corners plus the top and bottom edge midpoints and decide
    whether they share one colour.

    Returns:
      - (r, g, b) centroid of the samples
      - True if the background looks uniform
    """
    w, h = image_size(img)
    if w <= 0 or h <= 0:
        raise ValueError(f"Invalid image size: {(w, h)}")
    arr = packed_array(img)
    points = [
        (0, 0),
        (w - 1, 0),
        (0, h - 1),
        (w - 1, h - 1),
        (w // 2, 0),
        (w // 2, h - 1),
    ]
    samples = np.array(
        [pixel_at(img, x, y, packed=arr)[:3] for x, y in points],
        dtype=np.float64,
    ) * _WIDE

    centroid = samples.mean(axis=0)
    variance = float(((samples - centroid) ** 2).sum()) / len(points)
    color = tuple(int(c / _WIDE) for c in centroid)
    return color, variance < UNIFORM_VARIANCE_LIMIT


def mask_from_alpha(img: Any) -> np.ndarray:
    """Alpha channel as mask; 255 everywhere for sources without alpha."""
    arr = packed_array(img)
    if arr is not None:
        if arr.ndim == 2 or arr.shape[2] == 3:
            return np.full(arr.shape[:2], 255, dtype=np.uint8)
        return arr[..., 3].copy()

    w, h = image_size(img)
    mask = np.empty((h, w), dtype=np.uint8)
    for y in range(h):
        for x in range(w):
            mask[y, x] = pixel_at(img, x, y)[3]
    return mask


def mask_from_background(img: Any, color: Sequence[int], tolerance: float) -> np.ndarray:
    """
    255 where a pixel is farther than ``tolerance`` (8-bit units) from ``color``.
    Compared squared, in 16-bit channel space.
    """
    ref = np.asarray(color[:3], dtype=np.int64) * _WIDE
    limit = float(tolerance) ** 2 * _WIDE**2

    arr = packed_array(img)
    if arr is not None:
        if arr.ndim == 2:
            rgb = np.repeat(arr[..., None], 3, axis=2)
        else:
            rgb = arr[..., :3]
        diff = rgb.astype(np.int64) * _WIDE - ref
        dist2 = (diff * diff).sum(axis=2)
        return np.where(dist2 > limit, 255, 0).astype(np.uint8)

    w, h = image_size(img)
    rr, rg, rb = (int(c) for c in ref)
    mask = np.zeros((h, w), dtype=np.uint8)
    for y in range(h):
        for x in range(w):
            r, g, b, _a = pixel_at(img, x, y)
            dr, dg, db = r * _WIDE - rr, g * _WIDE - rg, b * _WIDE - rb
            if dr * dr + dg * dg + db * db > limit:
                mask[y, x] = 255
    return mask


def to_grayscale(img: Any) -> np.ndarray:
    """BT.601 integer luma: (299 R + 587 G + 114 B) // 1000."""
    arr = packed_array(img)
    if arr is not None:
        if arr.ndim == 2:
            return arr.copy()
        rgb = arr[..., :3].astype(np.uint32)
        luma = (_LUMA_R * rgb[..., 0] + _LUMA_G * rgb[..., 1] + _LUMA_B * rgb[..., 2]) // 1000
        return luma.astype(np.uint8)

    w, h = image_size(img)
    gray = np.empty((h, w), dtype=np.uint8)
    for y in range(h):
        for x in range(w):
            r, g, b, _a = pixel_at(img, x, y)
            gray[y, x] = (_LUMA_R * r + _LUMA_G * g + _LUMA_B * b) // 1000
    return gray


def mask_from_edges(img: Any, threshold: float) -> np.ndarray:
    """
    Sobel gradient magnitude > threshold -> 255.
    The 1px border is never classified and stays 0.
    """
    gray = to_grayscale(img)
    h, w = gray.shape
    mask = np.zeros((h, w), dtype=np.uint8)
    if h < 3 or w < 3:
        return mask

    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    mag2 = gx[1:-1, 1:-1] ** 2 + gy[1:-1, 1:-1] ** 2
    mask[1:-1, 1:-1] = np.where(mag2 > float(threshold) ** 2, 255, 0)
    return mask


def auto_mask(img: Any) -> np.ndarray:
    """
    Pick the most reliable signal:
      1) alpha channel if the image has transparency
      2) distance to the background colour if the border is uniform
      3) Sobel edges on a lightly blurred copy
    """
    if has_alpha(img):
        logger.debug("auto_mask: using alpha channel")
        return mask_from_alpha(img)

    color, uniform = detect_uniform_background(img)
    if uniform:
        logger.debug("auto_mask: uniform background %s", color)
        return mask_from_background(img, color, BACKGROUND_TOLERANCE)

    logger.debug("auto_mask: falling back to edges")
    rgba = np.ascontiguousarray(to_rgba_array(img))
    blurred = cv2.GaussianBlur(rgba, (0, 0), sigmaX=EDGE_PRE_BLUR_SIGMA, sigmaY=EDGE_PRE_BLUR_SIGMA)
    return mask_from_edges(blurred, EDGE_THRESHOLD)
