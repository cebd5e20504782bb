from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, List, Optional, Tuple

import numpy as np
from PIL import Image

from .config import BACKGROUND_FILL
from .contracts import CropConfig
from .errors import InvalidMask, NoObjectDetected
from .geometry import CropBox, compute_crop_box, detect_object_bounds
from .pixels import image_size, packed_array, to_rgb_array, to_rgba_array
from .postprocess import as_mask_u8

logger = logging.getLogger(__name__)


def _row_chunks(height: int, workers: int) -> List[Tuple[int, int]]:
    """Contiguous, non-overlapping [y0, y1) ranges covering every row once."""
    workers = max(1, min(workers, height))
    step, extra = divmod(height, workers)
    chunks = []
    y0 = 0
    for i in range(workers):
        y1 = y0 + step + (1 if i < extra else 0)
        chunks.append((y0, y1))
        y0 = y1
    return chunks


def _blend_rows(out: np.ndarray, rgb: np.ndarray, mask: np.ndarray, y0: int, y1: int, background: int) -> None:
    alpha = mask[y0:y1, :, None].astype(np.float32) * (1.0 / 255.0)
    src = rgb[y0:y1].astype(np.float32)
    blended = alpha * src + (1.0 - alpha) * float(background)
    out[y0:y1, :, :3] = np.clip(blended, 0.0, 255.0).astype(np.uint8)
    out[y0:y1, :, 3] = 255


def composite_parallel(
    src: Any,
    mask: np.ndarray,
    background: int = BACKGROUND_FILL,
    workers: Optional[int] = None,
) -> np.ndarray:
    """
    Alpha-blend ``src`` over a solid background using ``mask`` as alpha.

    Rows are split into one contiguous chunk per worker; each chunk is blended
    by exactly one worker and the call returns after all of them finish.

    Output: (H,W,4) uint8, alpha 255.
    """
    rgb = to_rgb_array(src)
    m = as_mask_u8(mask)
    if m.shape != rgb.shape[:2]:
        raise InvalidMask(f"Mask shape {m.shape} does not match image {rgb.shape[:2]}")

    h, w = m.shape
    out = np.empty((h, w, 4), dtype=np.uint8)
    if workers is None:
        workers = os.cpu_count() or 1
    chunks = _row_chunks(h, workers)
    if len(chunks) == 1:
        _blend_rows(out, rgb, m, 0, h, background)
        return out

    with ThreadPoolExecutor(max_workers=len(chunks)) as executor:
        futures = [executor.submit(_blend_rows, out, rgb, m, y0, y1, background) for y0, y1 in chunks]
        for f in futures:
            f.result()
    return out


def inject_alpha(src: Any, mask: np.ndarray) -> Image.Image:
    """
    RGBA cut-out: RGB from ``src``, alpha from ``mask``.
    """
    rgb = to_rgb_array(src)
    a8 = as_mask_u8(mask)
    if a8.shape != rgb.shape[:2]:
        raise InvalidMask(f"Alpha shape {a8.shape} does not match RGB {rgb.shape[:2]}")
    rgba = np.dstack([rgb, a8])
    return Image.fromarray(rgba)


def apply_crop(img: Any, box: CropBox) -> Any:
    """Crop keeping the image kind: PIL stays PIL, arrays stay arrays, pixel sources become RGBA arrays."""
    if isinstance(img, Image.Image):
        return img.crop(box.as_tuple())
    arr = packed_array(img)
    if arr is None:
        arr = to_rgba_array(img)
    return arr[box.y0 : box.y1, box.x0 : box.x1].copy()


def crop(
    img: Any,
    mask: Optional[np.ndarray],
    config: Optional[CropConfig] = None,
    scale_x: float = 1.0,
    scale_y: float = 1.0,
) -> Any:
    """
    Crop ``img`` around the object found in ``mask``.

    ``scale_x``/``scale_y`` map mask coordinates to image coordinates
    (1.0 when both share a resolution).
    """
    if config is None:
        config = CropConfig()
    m = as_mask_u8(mask)
    w, h = image_size(img)
    mh, mw = m.shape
    if round(mw * scale_x) > w or round(mh * scale_y) > h:
        raise InvalidMask(f"Mask {(mh, mw)} at scale ({scale_x}, {scale_y}) does not fit image {(h, w)}")

    bounds = detect_object_bounds(m, config.min_threshold)
    if bounds is None:
        raise NoObjectDetected("No object detected in image.")

    box = compute_crop_box(bounds, (w, h), config, scale_x, scale_y)
    if box.width <= 0 or box.height <= 0:
        raise InvalidMask(f"Object bounds {bounds} fall outside image {(h, w)}")
    logger.debug("crop: bounds=%s box=%s", bounds, box)
    return apply_crop(img, box)


def to_pil(img: Any) -> Image.Image:
    if isinstance(img, Image.Image):
        return img
    arr = packed_array(img)
    if arr is None:
        arr = to_rgba_array(img)
    return Image.fromarray(np.ascontiguousarray(arr))


def save_png(img: Any, out_path: str) -> None:
    """
    Save as lossless PNG, creating parent directories.
    """
    p = Path(out_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    to_pil(img).save(str(p), format="PNG", optimize=False)
