from __future__ import annotations

import threading
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from cutout import composite as composite_mod
from cutout.composite import (
    _row_chunks,
    apply_crop,
    composite_parallel,
    crop,
    inject_alpha,
    save_png,
)
from cutout.contracts import CropConfig
from cutout.errors import InvalidMask, NoObjectDetected
from cutout.geometry import CropBox


def _red(h: int, w: int) -> np.ndarray:
    img = np.zeros((h, w, 4), dtype=np.uint8)
    img[..., 0] = 255
    img[..., 3] = 255
    return img


def _half_mask(h: int, w: int) -> np.ndarray:
    mask = np.zeros((h, w), dtype=np.uint8)
    mask[:, w // 2 :] = 255
    return mask


@pytest.mark.parametrize("height, workers", [(10, 4), (7, 3), (3, 8), (1, 1), (100, 16)])
def test_row_chunks_cover_every_row_once(height, workers):
    chunks = _row_chunks(height, workers)
    rows = [y for y0, y1 in chunks for y in range(y0, y1)]
    assert rows == list(range(height))
    assert len(chunks) == min(height, workers)


def test_composite_object_and_background():
    out = composite_parallel(_red(10, 10), _half_mask(10, 10), workers=4)
    assert out.shape == (10, 10, 4)
    assert tuple(out[5, 7]) == (255, 0, 0, 255)
    assert tuple(out[5, 2]) == (255, 255, 255, 255)


def test_composite_partial_alpha():
    src = np.zeros((2, 2, 3), dtype=np.uint8)
    mask = np.full((2, 2), 51, dtype=np.uint8)  # alpha 0.2
    out = composite_parallel(src, mask, workers=2)
    assert all(203 <= int(v) <= 204 for v in out[..., :3].ravel())


def test_composite_parallel_matches_single_worker():
    rng = np.random.default_rng(1)
    src = rng.integers(0, 256, size=(37, 23, 3), dtype=np.uint8)
    mask = rng.integers(0, 256, size=(37, 23), dtype=np.uint8)
    np.testing.assert_array_equal(
        composite_parallel(src, mask, workers=1),
        composite_parallel(src, mask, workers=6),
    )


def test_composite_each_row_blended_once(monkeypatch):
    calls = []
    lock = threading.Lock()
    real = composite_mod._blend_rows

    def spy(out, rgb, mask, y0, y1, background):
        with lock:
            calls.append((y0, y1))
        real(out, rgb, mask, y0, y1, background)

    monkeypatch.setattr(composite_mod, "_blend_rows", spy)
    composite_parallel(_red(20, 5), _half_mask(20, 5), workers=4)
    rows = sorted(y for y0, y1 in calls for y in range(y0, y1))
    assert rows == list(range(20))


def test_composite_worker_error_propagates(monkeypatch):
    def boom(*_args):
        raise RuntimeError("worker failed")

    monkeypatch.setattr(composite_mod, "_blend_rows", boom)
    with pytest.raises(RuntimeError, match="worker failed"):
        composite_parallel(_red(8, 8), _half_mask(8, 8), workers=2)


def test_composite_shape_mismatch():
    with pytest.raises(InvalidMask):
        composite_parallel(_red(8, 8), np.zeros((4, 4), dtype=np.uint8))


def test_inject_alpha():
    img = inject_alpha(_red(6, 6), _half_mask(6, 6))
    assert img.mode == "RGBA"
    assert img.getpixel((0, 0)) == (255, 0, 0, 0)
    assert img.getpixel((5, 0)) == (255, 0, 0, 255)


def _object_mask(size: int = 10) -> np.ndarray:
    mask = np.zeros((size, size), dtype=np.uint8)
    mask[4:7, 4:7] = 255
    return mask


def test_crop_scaled_mask():
    img = np.zeros((100, 100, 4), dtype=np.uint8)
    res = crop(img, _object_mask(), CropConfig(margin=0), 10.0, 10.0)
    assert res.shape[:2] == (20, 20)

    res = crop(img, _object_mask(), CropConfig(margin=5), 10.0, 10.0)
    assert res.shape[:2] == (30, 30)

    res = crop(img, _object_mask(), CropConfig(margin=0, margin_percent=0.5), 10.0, 10.0)
    assert res.shape[:2] == (40, 40)

    res = crop(img, _object_mask(), CropConfig(margin_percent=0.5), 10.0, 10.0)
    assert res.shape[:2] == (40, 40)


@pytest.mark.parametrize("as_pil", [False, True])
def test_crop_rejects_mask_larger_than_image(as_pil):
    img = np.zeros((10, 10, 3), dtype=np.uint8)
    if as_pil:
        img = Image.fromarray(img)
    mask = np.zeros((100, 100), dtype=np.uint8)
    mask[50:61, 50:61] = 255
    with pytest.raises(InvalidMask):
        crop(img, mask, CropConfig(margin=0))
    with pytest.raises(InvalidMask):
        crop(img, _object_mask(), CropConfig(margin=0), 10.0, 10.0)


def test_crop_square():
    mask = np.zeros((10, 10), dtype=np.uint8)
    mask[4, 4:6] = 255
    res = crop(Image.new("RGB", (100, 100)), mask, CropConfig(margin=0, square_crop=True), 10.0, 10.0)
    assert isinstance(res, Image.Image)
    assert res.size[0] == res.size[1]


def test_crop_native_resolution_keeps_pixels():
    img = np.zeros((100, 100, 3), dtype=np.uint8)
    img[40:61, 40:61] = (9, 8, 7)
    mask = np.zeros((100, 100), dtype=np.uint8)
    mask[40:61, 40:61] = 255
    res = crop(img, mask, CropConfig(margin=0))
    assert res.shape == (20, 20, 3)
    assert tuple(res[0, 0]) == (9, 8, 7)


def test_crop_errors():
    img = np.zeros((10, 10, 4), dtype=np.uint8)
    with pytest.raises(NoObjectDetected):
        crop(img, np.zeros((10, 10), dtype=np.uint8))
    with pytest.raises(InvalidMask):
        crop(img, None)
    with pytest.raises(InvalidMask):
        crop(img, np.zeros((0, 10), dtype=np.uint8))


def test_apply_crop_generic_source_returns_rgba_array():
    class Grid:
        size = (4, 3)

        def getpixel(self, xy):
            return (xy[0], xy[1], 0)

    res = apply_crop(Grid(), CropBox(1, 1, 3, 3))
    assert res.shape == (2, 2, 4)
    assert tuple(res[0, 0]) == (1, 1, 0, 255)


def test_save_png(tmp_path: Path):
    out = tmp_path / "nested" / "out.png"
    save_png(_red(4, 4), str(out))
    with Image.open(out) as img:
        assert img.size == (4, 4)
        assert img.getpixel((0, 0)) == (255, 0, 0, 255)
