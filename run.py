from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path

from dotenv import load_dotenv
from tqdm import tqdm

from cutout.contracts import CropConfig
from cutout.errors import CutoutError
from cutout.pipeline import MASK_SOURCES, BackgroundRemover, load_remover_default, process_file


def _iter_images(input_dir: Path):
    exts = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff"}
    for p in sorted(input_dir.rglob("*")):
        if p.is_file() and p.suffix.lower() in exts:
            yield p


def main() -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Background removal and smart crop over a directory of images.")
    parser.add_argument("--input", required=True, type=str, help="Input directory containing images.")
    parser.add_argument("--output", required=True, type=str, help="Output directory for PNGs.")
    parser.add_argument("--mode", choices=("remove", "crop"), default="remove")
    parser.add_argument(
        "--mask",
        choices=("model",) + tuple(MASK_SOURCES),
        default="model",
        help="Mask source. 'model' needs a TorchScript model (--model or CUTOUT_MODEL_PATH).",
    )
    parser.add_argument("--model", default=None, type=str, help="TorchScript model path (overrides CUTOUT_MODEL_PATH).")
    parser.add_argument("--device", default=None, type=str, help="torch device, e.g. cpu, cuda, mps.")
    parser.add_argument("--transparent", action="store_true", help="Write RGBA cut-outs instead of compositing on white.")
    parser.add_argument("--margin", type=int, default=20, help="Crop margin in pixels.")
    parser.add_argument("--margin-percent", type=float, default=0.0, help="Crop margin as a fraction of the object size; replaces --margin when > 0.")
    parser.add_argument("--min-threshold", type=int, default=10, help="Mask cutoff (0-255) for the crop.")
    parser.add_argument("--square", action="store_true", help="Force square crops.")
    parser.add_argument("--keep-going", action="store_true", help="Report failed images instead of stopping.")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    input_dir = Path(args.input)
    output_dir = Path(args.output)
    if not input_dir.exists():
        raise FileNotFoundError(f"Input dir not found: {input_dir}")

    crop_config = CropConfig(
        margin=args.margin,
        margin_percent=args.margin_percent,
        min_threshold=args.min_threshold,
        square_crop=args.square,
    )

    images = list(_iter_images(input_dir))
    if not images:
        print(f"No images found under {input_dir}")
        return 0

    if args.mask == "model":
        remover = load_remover_default(args.model, device=args.device)
    else:
        remover = BackgroundRemover(engine=None)

    failed = 0
    total0 = time.perf_counter()
    with remover:
        for img_path in tqdm(images, desc="Processing", unit="img"):
            rel = img_path.relative_to(input_dir)
            out_path = (output_dir / rel).with_suffix(".png")
            try:
                timings = process_file(
                    remover,
                    str(img_path),
                    str(out_path),
                    mode=args.mode,
                    mask_source=args.mask,
                    crop_config=crop_config,
                    transparent=args.transparent,
                )
            except (CutoutError, ValueError) as e:
                if not args.keep_going:
                    raise
                failed += 1
                logging.getLogger("run").warning("%s: %s", img_path.name, e)
                continue

            print(
                f"{img_path.name}: total={timings.total_s:.3f}s "
                f"(load={timings.load_s:.3f}s proc={timings.process_s:.3f}s save={timings.save_s:.3f}s)"
            )

    total1 = time.perf_counter()
    print(f"Done. {len(images) - failed} images in {total1-total0:.2f}s, {failed} failed")
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
