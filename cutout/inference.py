from __future__ import annotations

from typing import Any, Optional, Protocol

import numpy as np
import torch

from .errors import InferenceFailure
from .model import forward_model


class InferenceEngine(Protocol):
    """Opaque model call: normalized (1,3,S,S) tensor -> logits (1,1,S,S) or side outputs."""

    def __call__(self, x: torch.Tensor) -> Any: ...


class TorchEngine:
    """Runs a torch module on ``device`` without autograd."""

    def __init__(self, module: torch.nn.Module, device: torch.device):
        self.module = module
        self.device = device

    def __call__(self, x: torch.Tensor) -> Any:
        return forward_model(self.module, x.to(self.device))

    def close(self) -> None:
        self.module = None


def _collect_logits(y: Any) -> torch.Tensor:
    """
    Segmentation models may return:
      - a single tensor
      - (tensor, ...) side outputs, as U2-Net does: averaged
      - dict / ModelOutput with tensor fields
    """
    if isinstance(y, torch.Tensor):
        return y
    if isinstance(y, dict):
        for k in ("logits", "pred", "alpha", "mask"):
            v = y.get(k, None)
            if isinstance(v, torch.Tensor):
                return v
        y = list(y.values())
    if isinstance(y, (list, tuple)):
        tensors = [t for t in y if isinstance(t, torch.Tensor)]
        if tensors:
            if len(tensors) == 1:
                return tensors[0]
            shape = tensors[0].shape
            if all(t.shape == shape for t in tensors):
                return torch.stack([t.float() for t in tensors]).mean(dim=0)
            return tensors[0]
    raise InferenceFailure(f"Model output is not a tensor: {type(y)}")


def predict_logits(engine: InferenceEngine, x: torch.Tensor, out: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Forward pass -> (S,S) float32 logits on CPU.

    When ``out`` (float32, (1,1,S,S)) is given the logits are copied into it and
    a view of it is returned.
    """
    if x.ndim != 4 or x.shape[0] != 1 or x.shape[1] != 3:
        raise ValueError(f"Expected input tensor (1,3,H,W), got {tuple(x.shape)}")
    size = tuple(x.shape[-2:])

    try:
        y = engine(x)
    except InferenceFailure:
        raise
    except Exception as e:  # noqa: BLE001 - engine errors are reported as InferenceFailure
        raise InferenceFailure(f"Inference failed: {e}") from e

    y = _collect_logits(y)
    # Expect either (1,1,H,W) or (1,H,W) or (H,W)
    if y.ndim == 4:
        y = y[0, 0]
    elif y.ndim == 3:
        y = y[0]
    elif y.ndim != 2:
        raise InferenceFailure(f"Unexpected output tensor shape: {tuple(y.shape)}")
    if tuple(y.shape) != size:
        raise InferenceFailure(f"Output size {tuple(y.shape)} does not match input size {size}")

    logits = y.detach().to("cpu").float().numpy()
    if np.isnan(logits).any():
        raise InferenceFailure("NaNs detected in model output.")

    if out is None:
        return logits.astype(np.float32, copy=True)
    view = out[0, 0]
    np.copyto(view, logits)
    return view
