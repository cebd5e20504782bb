from __future__ import annotations

from typing import Any, Optional, Tuple

import cv2
import numpy as np
import torch
from PIL import Image

from .config import IMAGENET, INPUT_SIZE, Normalization
from .pixels import image_size, to_rgb_array


def load_image(path: str) -> Image.Image:
    """
    Decode an image file; alpha (if any) is kept.
    """
    try:
        img = Image.open(path)
        img.load()
    except FileNotFoundError:
        raise
    except OSError as e:
        raise ValueError(f"Could not read image: {path}") from e
    return img


def resize_to_input(img: Any, size: int = INPUT_SIZE) -> Tuple[np.ndarray, float, float]:
    """
    Stretch to (size, size) RGB.

    Returns:
      - resized: uint8 ndarray (size, size, 3)
      - scale_x, scale_y: original / size, to map model-space coordinates back
    """
    orig_w, orig_h = image_size(img)
    if orig_h <= 0 or orig_w <= 0:
        raise ValueError(f"Invalid image size: {(orig_w, orig_h)}")

    rgb = np.ascontiguousarray(to_rgb_array(img))
    if (orig_w, orig_h) == (size, size):
        resized = rgb
    else:
        resized = cv2.resize(rgb, (size, size), interpolation=cv2.INTER_LINEAR)
    return resized, orig_w / float(size), orig_h / float(size)


def normalize(
    img: np.ndarray,
    normalization: Normalization = IMAGENET,
    out: Optional[np.ndarray] = None,
) -> torch.Tensor:
    """
    uint8 RGB (S,S,3) -> float32 torch tensor (1,3,S,S), per-channel (x/255 - mean) / std.

    When ``out`` is given (a float32 (1,3,S,S) array) it is filled in place and
    the returned tensor shares its memory.
    """
    if img.ndim != 3 or img.shape[2] != 3 or img.shape[0] != img.shape[1]:
        raise ValueError(f"Expected square RGB image (S,S,3), got {img.shape}")
    s = img.shape[0]
    if out is None:
        out = np.empty((1, 3, s, s), dtype=np.float32)
    elif out.shape != (1, 3, s, s) or out.dtype != np.float32:
        raise ValueError(f"Expected float32 buffer (1,3,{s},{s}), got {out.dtype} {out.shape}")

    chw = out[0]
    np.copyto(chw, np.transpose(img, (2, 0, 1)), casting="unsafe")  # CHW
    for c in range(3):
        plane = chw[c]
        plane /= 255.0
        plane -= normalization.mean[c]
        plane /= normalization.std[c]
    return torch.from_numpy(out)
