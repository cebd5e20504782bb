from __future__ import annotations

import logging
import os
from typing import Any, Optional

import torch

logger = logging.getLogger(__name__)


def get_device(preferred: Optional[str] = None) -> torch.device:
    """
    Explicit device if given, otherwise MPS, then CUDA, then CPU.
    """
    if preferred:
        return torch.device(preferred)
    if torch.backends.mps.is_available():
        return torch.device("mps")
    if torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


def configure_threads(intra_op_threads: int = 0, inter_op_threads: int = 0) -> None:
    """0 leaves the torch default untouched."""
    if intra_op_threads > 0:
        torch.set_num_threads(intra_op_threads)
    if inter_op_threads > 0:
        try:
            torch.set_num_interop_threads(inter_op_threads)
        except RuntimeError as e:
            # Only settable before the first parallel work in the process.
            logger.warning("Could not set inter-op threads to %d: %s", inter_op_threads, e)


def load_torchscript_model(model_path: str, device: Optional[torch.device] = None) -> torch.nn.Module:
    """
    Load a TorchScript segmentation model (saved via torch.jit.save; extension can be .pt/.pth).

    The model must take a (1,3,S,S) float32 tensor and return logits at (1,1,S,S),
    optionally alongside side outputs.
    """
    if device is None:
        device = get_device()

    if not os.path.exists(model_path):
        raise FileNotFoundError(f"Model not found: {model_path}")

    try:
        # Load on CPU first, then cast; float64 attributes do not move to MPS.
        model = torch.jit.load(model_path, map_location="cpu")
    except Exception as e:  # noqa: BLE001 - surface a helpful error
        raise RuntimeError(
            "Failed to load model. This pipeline expects a TorchScript model saved with "
            "torch.jit.save(); export state_dict checkpoints to TorchScript first."
        ) from e

    model.eval()
    for p in model.parameters():
        p.requires_grad_(False)
    model = model.to(dtype=torch.float32)
    model.to(device)
    logger.info("Loaded %s on %s", model_path, device)
    return model


def forward_model(model: torch.nn.Module, x: torch.Tensor) -> Any:
    with torch.no_grad():
        return model(x)
