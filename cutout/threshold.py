"""
Adaptive binarization of the model's logit field (Otsu's method).
"""

from __future__ import annotations

import numpy as np

LUT_SIZE = 256
LOGIT_RANGE = 6.0


def build_sigmoid_lut(size: int = LUT_SIZE, logit_range: float = LOGIT_RANGE) -> np.ndarray:
    """
    Logistic sigmoid sampled at ``size`` evenly spaced logits in [-range, range].
    The returned table is read-only.
    """
    xs = np.linspace(-logit_range, logit_range, size, dtype=np.float64)
    lut = (1.0 / (1.0 + np.exp(-xs))).astype(np.float32)
    lut.setflags(write=False)
    return lut


# Built once at import; never mutated.
SIGMOID_LUT = build_sigmoid_lut()


def sigmoid(x: np.ndarray) -> np.ndarray:
    x = np.asarray(x, dtype=np.float32)
    return (1.0 / (1.0 + np.exp(-x))).astype(np.float32, copy=False)


def sigmoid_bins(logits: np.ndarray, lut: np.ndarray = SIGMOID_LUT) -> np.ndarray:
    """Map logits to 8-bit probability bins via the lookup table."""
    n = lut.shape[0]
    x = np.asarray(logits, dtype=np.float32).ravel()
    x = np.nan_to_num(x, nan=0.0, posinf=LOGIT_RANGE, neginf=-LOGIT_RANGE)
    pos = (np.clip(x, -LOGIT_RANGE, LOGIT_RANGE) + LOGIT_RANGE) * ((n - 1) / (2.0 * LOGIT_RANGE))
    idx = np.clip(pos.astype(np.int64), 0, n - 1)
    bins = (lut[idx] * 255.0).astype(np.int64)
    return np.clip(bins, 0, 255)


def otsu_threshold(logits: np.ndarray, lut: np.ndarray = SIGMOID_LUT) -> float:
    """
    Otsu split of the sigmoid histogram of ``logits``.

    Returns t/255 where t maximizes the between-class variance
    wB*wF*(mB-mF)^2 over t in [0, 255); ties keep the first t.
    0.0 when no split has mass on both sides. Also 0.0 when the low mode
    saturates into bin 0 (logits at or below about -6): the first-tie split
    is then t = 0, which ``binarize_logits`` still separates correctly.
    """
    bins = sigmoid_bins(logits, lut)
    if bins.size == 0:
        return 0.0
    hist = np.bincount(bins, minlength=256).astype(np.float64)

    levels = np.arange(256, dtype=np.float64)
    total = hist.sum()
    total_sum = float((hist * levels).sum())

    w_b = np.cumsum(hist)[:255]
    sum_b = np.cumsum(hist * levels)[:255]
    w_f = total - w_b
    valid = (w_b > 0) & (w_f > 0)
    if not valid.any():
        return 0.0

    with np.errstate(divide="ignore", invalid="ignore"):
        m_b = sum_b / w_b
        m_f = (total_sum - sum_b) / w_f
        between = w_b * w_f * (m_b - m_f) ** 2
    between = np.where(valid, between, 0.0)

    t = int(np.argmax(between))
    return t / 255.0


def binarize_logits(logits: np.ndarray, threshold: float, lut: np.ndarray = SIGMOID_LUT) -> np.ndarray:
    """
    255 for pixels in the upper Otsu class, 0 otherwise.
    Same shape as ``logits``.
    """
    logits = np.asarray(logits)
    split = int(round(float(threshold) * 255.0))
    bins = sigmoid_bins(logits, lut).reshape(logits.shape)
    return np.where(bins > split, 255, 0).astype(np.uint8)
