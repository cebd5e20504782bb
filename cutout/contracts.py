from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import DEFAULT_MARGIN, DEFAULT_MIN_THRESHOLD, INPUT_SIZE


class CropConfig(BaseModel):
    """Smart crop policy. Immutable per call."""

    model_config = ConfigDict(frozen=True)

    # Margin in pixels around the detected object.
    margin: int = Field(default=DEFAULT_MARGIN, ge=0)
    # Fraction of the object's size; when > 0 it replaces the fixed margin.
    margin_percent: float = Field(default=0.0, ge=0.0)
    # Mask values >= this count as part of the object.
    min_threshold: int = Field(default=DEFAULT_MIN_THRESHOLD, ge=0, le=255)
    square_crop: bool = False


class EngineConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    model_path: str
    device: Optional[str] = None
    input_size: int = Field(default=INPUT_SIZE, gt=0)
    # 0 keeps the torch defaults.
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=0, ge=0)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "EngineConfig":
        """
        Build from CUTOUT_* environment variables:
          CUTOUT_MODEL_PATH, CUTOUT_DEVICE, CUTOUT_INPUT_SIZE,
          CUTOUT_INTRA_OP_THREADS, CUTOUT_INTER_OP_THREADS
        Explicit keyword overrides (that are not None) win over the environment.
        """
        env = os.environ if environ is None else environ
        values = {
            "model_path": env.get("CUTOUT_MODEL_PATH"),
            "device": env.get("CUTOUT_DEVICE"),
            "input_size": env.get("CUTOUT_INPUT_SIZE"),
            "intra_op_threads": env.get("CUTOUT_INTRA_OP_THREADS"),
            "inter_op_threads": env.get("CUTOUT_INTER_OP_THREADS"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**{k: v for k, v in values.items() if v not in (None, "")})
