"""
Centralized configuration constants for the cut-out pipeline.

Ground rules:
- float32 model input, batch size 1
- masks are uint8 (0..255)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

# Square resolution shared by preprocessing, inference and the model mask.
INPUT_SIZE = 320

DEFAULT_MARGIN = 20
DEFAULT_MIN_THRESHOLD = 10

# Auto mask policy.
BACKGROUND_TOLERANCE = 200.0
EDGE_THRESHOLD = 200.0
EDGE_PRE_BLUR_SIGMA = 1.0
# Summed squared deviation of the border samples (16-bit channel space) divided by the sample count.
UNIFORM_VARIANCE_LIMIT = 2e8

# Mask refinement: box blur window, applied once per axis.
BLUR_WINDOW = 5

# Solid white fill used by the compositor.
BACKGROUND_FILL = 255


@dataclass(frozen=True)
class Normalization:
    """Per-channel mean/std applied to [0,1] RGB before inference."""

    mean: Tuple[float, float, float]
    std: Tuple[float, float, float]


IMAGENET = Normalization(mean=(0.485, 0.456, 0.406), std=(0.229, 0.224, 0.225))
