from __future__ import annotations

import argparse
import logging
import os
import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from collage_codec import ImageRef, PillowCodec, RenderedLayer, normalize_format
from collage_layouts import (
    FIT_MODES,
    CanvasSpec,
    CorruptImageError,
    ImageCountError,
    LayoutOptions,
    NoValidImagesError,
    Placement,
    list_layouts,
    parse_color,
    plan_bounds,
    plan_layout,
    resolve_layout,
)

SUPPORTED_EXTS = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff", ".gif", ".avif"}

DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080
DEFAULT_SPACING = 10
DEFAULT_QUALITY = 85
DEFAULT_FORMAT = "jpg"

LOGGER_NAME = "collage"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

log = logging.getLogger(LOGGER_NAME)


def setup_logging(level: str = "INFO", name: str = LOGGER_NAME) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)

    return logger


def _effective_workers(workers: int) -> int:
    if workers <= 0:
        cpu = os.cpu_count() or 4
        return min(32, max(1, cpu * 2))
    return max(1, int(workers))


@dataclass(frozen=True)
class SkippedImage:
    index: int
    name: str
    reason: str


@dataclass
class CollageResult:
    layout: str
    canvas: CanvasSpec
    placements: List[Placement] = field(default_factory=list)
    skipped: List[SkippedImage] = field(default_factory=list)
    data: bytes = b""
    format: str = DEFAULT_FORMAT

    @property
    def placed_count(self) -> int:
        return len(self.placements)


def build_collage(
    images: Sequence[ImageRef],
    layout_name: str,
    canvas: CanvasSpec,
    spacing: int = DEFAULT_SPACING,
    options: LayoutOptions | None = None,
    *,
    codec: PillowCodec | None = None,
    output_format: str = DEFAULT_FORMAT,
    quality: int = DEFAULT_QUALITY,
    workers: int = 0,
    rng: random.Random | None = None,
    logger: logging.Logger | None = None,
) -> CollageResult:
    """Plan, render and encode one collage.

    Unknown layouts, image counts outside the layout's range, unsupported
    output formats and canvases too small for the layout raise before any
    image is decoded. Images the codec cannot read are reported in
    ``CollageResult.skipped``; if none can be read ``NoValidImagesError`` is raised.
    """
    logger = logger or log
    desc = resolve_layout(layout_name)
    count = len(images)
    if not desc.accepts(count):
        raise ImageCountError(desc.name, desc.min_images, desc.max_images, count)

    ext, _ = normalize_format(output_format)
    if not 1 <= quality <= 100:
        raise ValueError(f"quality must be between 1 and 100, got {quality}")

    codec = codec or PillowCodec()
    plan = plan_layout(desc.layout, count, canvas, spacing, options, rng)
    logger.debug(
        "Planned %s: %d images, %d decorations, bounds %s",
        plan.layout,
        len(plan.images),
        len(plan.decorations),
        plan_bounds(plan.images),
    )

    def render_one(p: Placement) -> Tuple[Optional[RenderedLayer], Optional[CorruptImageError]]:
        try:
            return codec.render_layer(images[p.image_index], p), None
        except CorruptImageError as exc:
            return None, exc

    targets = plan.images
    n_workers = _effective_workers(workers)
    if n_workers <= 1 or len(targets) <= 2:
        outcomes = [render_one(p) for p in targets]
    else:
        with ThreadPoolExecutor(max_workers=n_workers) as ex:
            outcomes = list(ex.map(render_one, targets))

    rendered: Dict[int, RenderedLayer] = {}
    placed: List[Placement] = []
    skipped: List[SkippedImage] = []
    for p, (layer, err) in zip(targets, outcomes):
        if layer is None:
            logger.warning("Skipping corrupted image: %s (%s)", err.source, err.reason)
            skipped.append(SkippedImage(index=p.image_index, name=err.source, reason=err.reason))
            continue
        rendered[p.image_index] = layer
        placed.append(p)

    if not placed:
        raise NoValidImagesError("No valid images could be processed")

    layers = [
        p if p.is_decoration else rendered[p.image_index]
        for p in plan.placements
        if p.is_decoration or p.image_index in rendered
    ]
    data = codec.composite(canvas, plan.background, layers, output_format=ext, quality=quality)

    return CollageResult(
        layout=desc.name,
        canvas=canvas,
        placements=placed,
        skipped=skipped,
        data=data,
        format=ext,
    )


def iter_image_files(folder: Path) -> List[Path]:
    if not folder.exists() or not folder.is_dir():
        raise FileNotFoundError(f"input folder not found: {folder}")

    files: List[Path] = []
    for p in folder.iterdir():
        if p.name.startswith("."):
            continue
        if p.is_file() and p.suffix.lower() in SUPPORTED_EXTS:
            files.append(p)
    return files


def select_images(
    source: str,
    max_files: int | None = None,
    shuffle: bool = False,
    seed: int | None = None,
    logger: logging.Logger | None = None,
) -> List[ImageRef]:
    logger = logger or log
    files: List[Path] = []

    path = Path(source)
    if path.exists():
        files = iter_image_files(path) if path.is_dir() else [path]
    else:
        for item in source.split(","):
            p = Path(item.strip())
            if p.is_file():
                files.append(p)
            else:
                logger.warning("File not found: %s", item.strip())

    if not files:
        raise FileNotFoundError("No valid image files found")

    files.sort(key=lambda p: p.name.lower())
    if shuffle:
        random.Random(seed).shuffle(files)
    if max_files is not None and max_files > 0:
        files = files[:max_files]

    return [ImageRef.from_path(p) for p in files]


def format_file_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def print_layouts() -> None:
    print("Available collage layouts:\n")
    for desc in list_layouts():
        print(f"{desc.name}: {desc.description}")
        print(f"  Images: {desc.min_images}-{desc.max_images}\n")
    print("Usage examples:")
    print("  photo-collage ./photos --layout grid --width 1920 --height 1080")
    print("  photo-collage img1.jpg,img2.jpg,img3.jpg --layout polaroid")
    print("  photo-collage ./vacation --layout filmstrip --shuffle")


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Combine photos into a collage. Pick a layout and canvas size; corrupt images are skipped."
    )

    parser.add_argument(
        "input",
        nargs="?",
        help="Folder containing photos, or a comma-separated list of image files.",
    )
    parser.add_argument(
        "--layout",
        type=str,
        default="grid",
        help="Layout name (see --list-layouts).",
    )
    parser.add_argument("--list-layouts", action="store_true", help="Print available layouts and exit")

    parser.add_argument("--width", type=int, default=DEFAULT_WIDTH, help="Canvas width in pixels (200-8000).")
    parser.add_argument("--height", type=int, default=DEFAULT_HEIGHT, help="Canvas height in pixels (200-8000).")
    parser.add_argument("--spacing", type=int, default=DEFAULT_SPACING, help="Gap between images in pixels.")
    parser.add_argument(
        "--background",
        type=str,
        default=None,
        help="Background color: name, #rgb, #rrggbb or rgb(r,g,b). Defaults depend on layout.",
    )

    parser.add_argument("--cols", type=int, default=None, help="Grid columns (grid only).")
    parser.add_argument(
        "--direction",
        type=str,
        default="horizontal",
        choices=["horizontal", "vertical"],
        help="Strip direction (strip only).",
    )
    parser.add_argument(
        "--fit",
        type=str,
        default="cover",
        choices=list(FIT_MODES),
        help="cover: crop to fill each cell. contain: letterbox. fill: stretch. (grid and strip)",
    )

    parser.add_argument("--format", type=str, default=DEFAULT_FORMAT, help="Output format: jpg, png or webp.")
    parser.add_argument("--quality", type=int, default=DEFAULT_QUALITY, help="JPEG/WebP quality (1-100).")
    parser.add_argument("--output", type=str, default=None, help="Output file path.")

    parser.add_argument("--max-files", type=int, default=None, help="Use at most this many images.")
    parser.add_argument("--shuffle", action="store_true", help="Shuffle image order before truncating")
    parser.add_argument("--seed", type=int, default=None, help="Random seed (for reproducible results)")
    parser.add_argument(
        "--workers",
        type=int,
        default=0,
        help="Thread workers for image IO/resize. 0 means auto.",
    )

    parser.add_argument("-v", "--verbose", action="store_true", help="Log planning details")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")

    args = parser.parse_args(argv)

    level = "DEBUG" if args.verbose else "WARNING" if args.quiet else "INFO"
    logger = setup_logging(level)

    if args.list_layouts:
        print_layouts()
        return 0

    if not args.input:
        parser.error("input is required unless --list-layouts is given")

    try:
        desc = resolve_layout(args.layout)
        images = select_images(args.input, args.max_files, args.shuffle, args.seed, logger=logger)
        background = parse_color(args.background) if args.background else None
        canvas = CanvasSpec(args.width, args.height, background)
        options = LayoutOptions(cols=args.cols, direction=args.direction, fit=args.fit, seed=args.seed)

        logger.info("Creating %s collage with %d images", desc.name, len(images))
        result = build_collage(
            images,
            desc.name,
            canvas,
            spacing=args.spacing,
            options=options,
            output_format=args.format,
            quality=args.quality,
            workers=args.workers,
            logger=logger,
        )
    except (ValueError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1

    out_path = Path(args.output or f"collage_{result.layout}.{result.format}")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(result.data)

    logger.info("Layout: %s (%s)", desc.name, desc.description)
    logger.info("Images: %d combined, %d skipped", result.placed_count, len(result.skipped))
    logger.info("Canvas: %dx%d pixels", canvas.width, canvas.height)
    logger.info("Format: %s", result.format.upper())
    logger.info("Size: %s", format_file_size(len(result.data)))
    print(f"Saved: {out_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
