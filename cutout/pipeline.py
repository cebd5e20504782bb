from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, Optional, Tuple

import numpy as np
from PIL import Image

from .buffers import TensorPool
from .composite import composite_parallel, crop, inject_alpha, save_png
from .config import EDGE_THRESHOLD, IMAGENET, INPUT_SIZE, Normalization
from .contracts import CropConfig, EngineConfig
from .errors import InvalidMask
from .inference import InferenceEngine, TorchEngine, predict_logits
from .masks import Mask, auto_mask, mask_from_alpha, mask_from_edges
from .model import configure_threads, get_device, load_torchscript_model
from .pixels import image_size
from .postprocess import MaskUpsampler, as_mask_u8, restore_mask_to_original
from .preprocess import load_image, normalize, resize_to_input
from .threshold import binarize_logits, otsu_threshold

logger = logging.getLogger(__name__)

# Model-free mask sources selectable by name.
MASK_SOURCES: Dict[str, Mask] = {
    "auto": auto_mask,
    "alpha": mask_from_alpha,
    "edges": partial(mask_from_edges, threshold=EDGE_THRESHOLD),
}


class BackgroundRemover:
    """
    Model-backed cut-out and smart crop.

    Safe to share between threads: engine calls are serialized by one lock,
    everything else works on per-call or pooled buffers.
    """

    def __init__(
        self,
        engine: Optional[InferenceEngine],
        input_size: int = INPUT_SIZE,
        normalization: Normalization = IMAGENET,
        upsampler: Optional[MaskUpsampler] = None,
        workers: Optional[int] = None,
    ):
        self.engine = engine
        self.input_size = int(input_size)
        self.normalization = normalization
        self.upsampler = upsampler if upsampler is not None else MaskUpsampler()
        self.workers = workers
        self.tensors = TensorPool(self.input_size)
        self._engine_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: EngineConfig, **kwargs) -> "BackgroundRemover":
        configure_threads(config.intra_op_threads, config.inter_op_threads)
        device = get_device(config.device)
        module = load_torchscript_model(config.model_path, device=device)
        return cls(TorchEngine(module, device), input_size=config.input_size, **kwargs)

    def __enter__(self) -> "BackgroundRemover":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        with self._engine_lock:
            engine, self.engine = self.engine, None
        if engine is not None and hasattr(engine, "close"):
            engine.close()

    def predict_mask(self, img: Any) -> Tuple[np.ndarray, float, float]:
        """
        Run the model and binarize its output with Otsu's threshold.

        Returns:
          - mask: uint8 (S,S), 0 or 255
          - scale_x, scale_y: mask -> image coordinate scale
        """
        resized, scale_x, scale_y = resize_to_input(img, self.input_size)
        with self.tensors.input() as in_buf, self.tensors.output() as out_buf:
            x = normalize(resized, self.normalization, out=in_buf)
            with self._engine_lock:
                if self.engine is None:
                    raise RuntimeError("BackgroundRemover has no inference engine (closed or model-free).")
                logits = predict_logits(self.engine, x, out=out_buf)
            threshold = otsu_threshold(logits)
            mask = binarize_logits(logits, threshold)
        logger.debug("predict_mask: otsu=%.4f foreground=%.3f", threshold, float((mask > 0).mean()))
        return mask, scale_x, scale_y

    def _finish(self, img: Any, full_mask: np.ndarray, transparent: bool) -> Image.Image:
        if transparent:
            return inject_alpha(img, full_mask)
        return Image.fromarray(composite_parallel(img, full_mask, workers=self.workers))

    def remove_background(self, img: Any, transparent: bool = False) -> Image.Image:
        """
        Cut the subject out: white background by default, or an RGBA cut-out
        with the refined mask as alpha when ``transparent``.
        """
        mask, _sx, _sy = self.predict_mask(img)
        w, h = image_size(img)
        full = restore_mask_to_original(mask, w, h, self.upsampler)
        return self._finish(img, full, transparent)

    def remove_background_from_mask(self, img: Any, mask_fn: Mask, transparent: bool = False) -> Image.Image:
        """Like ``remove_background`` but with a caller supplied, full resolution mask."""
        full = self._native_mask(img, mask_fn)
        return self._finish(img, full, transparent)

    def smart_crop(self, img: Any, config: Optional[CropConfig] = None) -> Any:
        mask, scale_x, scale_y = self.predict_mask(img)
        return crop(img, mask, config, scale_x, scale_y)

    def smart_crop_from_mask(self, img: Any, mask_fn: Mask, config: Optional[CropConfig] = None) -> Any:
        return crop(img, self._native_mask(img, mask_fn), config)

    @staticmethod
    def _native_mask(img: Any, mask_fn: Mask) -> np.ndarray:
        mask = as_mask_u8(mask_fn(img))
        w, h = image_size(img)
        if mask.shape != (h, w):
            raise InvalidMask(f"Mask shape {mask.shape} does not match image {(h, w)}")
        return mask


@dataclass(frozen=True)
class StageTimings:
    load_s: float
    process_s: float
    save_s: float
    total_s: float


def process_file(
    remover: BackgroundRemover,
    image_path: str,
    out_path: str,
    *,
    mode: str = "remove",
    mask_source: str = "model",
    crop_config: Optional[CropConfig] = None,
    transparent: bool = False,
) -> StageTimings:
    """
    Linear pipeline:
      1) Load image
      2) Remove background or smart crop
      3) Save PNG
    """
    if mode not in ("remove", "crop"):
        raise ValueError(f"mode must be 'remove' or 'crop', got {mode!r}")
    if mask_source != "model" and mask_source not in MASK_SOURCES:
        raise ValueError(f"Unknown mask source {mask_source!r}")

    t0 = time.perf_counter()
    img = load_image(image_path)
    t1 = time.perf_counter()

    mask_fn = MASK_SOURCES.get(mask_source)
    if mode == "remove":
        if mask_fn is None:
            result = remover.remove_background(img, transparent=transparent)
        else:
            result = remover.remove_background_from_mask(img, mask_fn, transparent=transparent)
    else:
        if mask_fn is None:
            result = remover.smart_crop(img, crop_config)
        else:
            result = remover.smart_crop_from_mask(img, mask_fn, crop_config)
    t2 = time.perf_counter()

    save_png(result, out_path)
    t3 = time.perf_counter()
    return StageTimings(load_s=t1 - t0, process_s=t2 - t1, save_s=t3 - t2, total_s=t3 - t0)


def load_remover_default(model_path: Optional[str] = None, device: Optional[str] = None) -> BackgroundRemover:
    """TorchScript-backed remover from CUTOUT_* environment settings plus explicit overrides."""
    config = EngineConfig.from_env(model_path=model_path, device=device)
    return BackgroundRemover.from_config(config)
