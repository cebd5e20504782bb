from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import torch

from cutout.errors import InferenceFailure
from cutout.inference import TorchEngine, _collect_logits, predict_logits
from cutout.model import get_device, load_torchscript_model


class _RedLogits(torch.nn.Module):
    """Logit +6 where the normalized red channel is positive, -6 elsewhere."""

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return torch.where(x[:, :1] > 0, torch.full_like(x[:, :1], 6.0), torch.full_like(x[:, :1], -6.0))


def test_collect_logits_variants():
    a = torch.zeros(1, 1, 4, 4)
    b = torch.ones(1, 1, 4, 4)
    assert _collect_logits(a) is a
    assert torch.allclose(_collect_logits((a, b)), torch.full((1, 1, 4, 4), 0.5))
    assert _collect_logits({"logits": b, "aux": a}) is b
    assert _collect_logits({"x": a}) is a
    with pytest.raises(InferenceFailure):
        _collect_logits("nope")


def test_predict_logits_shapes_and_buffer():
    x = torch.zeros(1, 3, 8, 8)
    x[0, 0, 2:4, 2:4] = 1.0
    logits = predict_logits(lambda t: _RedLogits()(t), x)
    assert logits.shape == (8, 8)
    assert logits.dtype == np.float32
    assert logits[3, 3] == 6.0 and logits[0, 0] == -6.0

    out = np.zeros((1, 1, 8, 8), dtype=np.float32)
    view = predict_logits(lambda t: _RedLogits()(t)[0], x, out=out)
    assert view.base is out or np.shares_memory(view, out)
    assert out[0, 0, 3, 3] == 6.0


def test_predict_logits_wraps_engine_errors():
    def broken(_x):
        raise RuntimeError("session exploded")

    with pytest.raises(InferenceFailure) as info:
        predict_logits(broken, torch.zeros(1, 3, 4, 4))
    assert isinstance(info.value.__cause__, RuntimeError)


def test_predict_logits_rejects_bad_outputs():
    x = torch.zeros(1, 3, 4, 4)
    with pytest.raises(InferenceFailure):
        predict_logits(lambda _t: torch.zeros(1, 1, 8, 8), x)
    with pytest.raises(InferenceFailure):
        predict_logits(lambda _t: torch.full((4, 4), float("nan")), x)
    with pytest.raises(ValueError):
        predict_logits(lambda _t: torch.zeros(4, 4), torch.zeros(3, 4, 4))


def test_torch_engine_runs_without_grad():
    engine = TorchEngine(_RedLogits(), torch.device("cpu"))
    y = engine(torch.ones(1, 3, 4, 4, requires_grad=True))
    assert not y.requires_grad


def test_get_device_explicit():
    assert get_device("cpu") == torch.device("cpu")


def test_load_torchscript_model(tmp_path: Path):
    path = tmp_path / "model.pt"
    torch.jit.save(torch.jit.script(torch.nn.Conv2d(3, 1, kernel_size=1)), str(path))
    model = load_torchscript_model(str(path), device=torch.device("cpu"))
    engine = TorchEngine(model, torch.device("cpu"))
    logits = predict_logits(engine, torch.zeros(1, 3, 6, 6))
    assert logits.shape == (6, 6)


def test_load_torchscript_model_errors(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_torchscript_model(str(tmp_path / "missing.pt"), device=torch.device("cpu"))
    bad = tmp_path / "bad.pt"
    bad.write_bytes(b"garbage")
    with pytest.raises(RuntimeError):
        load_torchscript_model(str(bad), device=torch.device("cpu"))
