from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .contracts import CropConfig


@dataclass(frozen=True)
class ObjectBounds:
    """Inclusive pixel extent of the object; width/height are max - min."""

    min_x: int
    min_y: int
    max_x: int
    max_y: int
    width: int
    height: int
    center_x: int
    center_y: int

    @classmethod
    def from_extent(cls, min_x: int, min_y: int, max_x: int, max_y: int) -> "ObjectBounds":
        width = max_x - min_x
        height = max_y - min_y
        return cls(
            min_x=min_x,
            min_y=min_y,
            max_x=max_x,
            max_y=max_y,
            width=width,
            height=height,
            center_x=min_x + width // 2,
            center_y=min_y + height // 2,
        )


@dataclass(frozen=True)
class CropBox:
    """Half-open crop rectangle [x0, x1) x [y0, y1) in image space."""

    x0: int
    y0: int
    x1: int
    y1: int

    @property
    def width(self) -> int:
        return self.x1 - self.x0

    @property
    def height(self) -> int:
        return self.y1 - self.y0

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return self.x0, self.y0, self.x1, self.y1


def clamp(v, lo, hi):
    if v < lo:
        return lo
    if v > hi:
        return hi
    return v


def detect_object_bounds(mask: np.ndarray, min_threshold: int) -> Optional[ObjectBounds]:
    """
    Smallest rectangle containing every mask pixel >= min_threshold.
    None when no pixel qualifies.
    """
    if mask.ndim != 2:
        raise ValueError(f"Expected 2D mask, got shape={mask.shape}")
    hit = mask >= min_threshold
    cols = np.flatnonzero(hit.any(axis=0))
    if cols.size == 0:
        return None
    rows = np.flatnonzero(hit.any(axis=1))
    return ObjectBounds.from_extent(int(cols[0]), int(rows[0]), int(cols[-1]), int(rows[-1]))


def scale_bounds(bounds: ObjectBounds, scale_x: float, scale_y: float) -> ObjectBounds:
    """Mask space -> image space, truncating each coordinate."""
    if scale_x == 1.0 and scale_y == 1.0:
        return bounds
    return ObjectBounds.from_extent(
        int(bounds.min_x * scale_x),
        int(bounds.min_y * scale_y),
        int(bounds.max_x * scale_x),
        int(bounds.max_y * scale_y),
    )


def compute_margin(bounds: ObjectBounds, config: CropConfig) -> int:
    """
    Fixed margin, or with margin_percent > 0 the larger per-axis percent margin
    in place of it. One value is applied to all four sides.
    """
    if config.margin_percent > 0:
        margin_x = int(round(config.margin_percent * bounds.width))
        margin_y = int(round(config.margin_percent * bounds.height))
        return max(margin_x, margin_y)
    return int(config.margin)


def _grow_axis(lo: int, hi: int, diff: int, limit: int) -> Tuple[int, int]:
    lo = max(0, lo - diff // 2)
    hi = min(limit, hi + diff - diff // 2)
    return lo, hi


def compute_crop_box(
    bounds: ObjectBounds,
    image_size: Tuple[int, int],
    config: CropConfig,
    scale_x: float = 1.0,
    scale_y: float = 1.0,
) -> CropBox:
    """
    Object bounds (mask space) -> clipped crop rectangle (image space).

    With square_crop the shorter side is grown by the difference, split across
    both ends; clipping at an image edge can still leave it non-square.
    """
    img_w, img_h = image_size
    b = scale_bounds(bounds, scale_x, scale_y)
    margin = compute_margin(b, config)

    x0 = max(0, b.min_x - margin)
    y0 = max(0, b.min_y - margin)
    x1 = min(img_w, b.max_x + margin)
    y1 = min(img_h, b.max_y + margin)

    if config.square_crop:
        crop_w, crop_h = x1 - x0, y1 - y0
        if crop_w > crop_h:
            y0, y1 = _grow_axis(y0, y1, crop_w - crop_h, img_h)
        elif crop_h > crop_w:
            x0, x1 = _grow_axis(x0, x1, crop_h - crop_w, img_w)

    return CropBox(x0=x0, y0=y0, x1=x1, y1=y1)
