from __future__ import annotations

import math
import random
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

RGB = Tuple[int, int, int]

MIN_CANVAS = 200
MAX_CANVAS = 8000
MIN_CELL = 50

WHITE: RGB = (255, 255, 255)

NAMED_COLORS: Dict[str, RGB] = {
    "white": (255, 255, 255),
    "black": (0, 0, 0),
    "gray": (128, 128, 128),
    "grey": (128, 128, 128),
    "red": (255, 0, 0),
    "green": (0, 255, 0),
    "blue": (0, 0, 255),
    "yellow": (255, 255, 0),
    "magenta": (255, 0, 255),
    "cyan": (0, 255, 255),
}

FIT_MODES = ("cover", "contain", "fill", "inside", "outside")
DIRECTIONS = ("horizontal", "vertical")

IMAGE = "image"
DECORATION = "decoration"

POLAROID_MARGIN = 50
POLAROID_GAP = 20
POLAROID_ATTEMPTS = 100
POLAROID_TILT = 15.0

PERFORATION_WIDTH = 15
PERFORATION_STEP = 30
FILMSTRIP_CANVAS: RGB = (64, 64, 64)


class CollageError(ValueError):
    pass


class InvalidLayoutError(CollageError):
    pass


class ImageCountError(CollageError):
    def __init__(self, layout: str, minimum: int, maximum: int, actual: int) -> None:
        super().__init__(f"{layout} requires {minimum}-{maximum} images, got {actual}")
        self.layout = layout
        self.minimum = minimum
        self.maximum = maximum
        self.actual = actual


class CanvasTooSmallError(CollageError):
    pass


class InvalidCanvasError(CollageError):
    pass


class CorruptImageError(CollageError):
    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"cannot read image {source}: {reason}")
        self.source = source
        self.reason = reason


class NoValidImagesError(CollageError):
    pass


class UnsupportedOutputFormatError(CollageError):
    pass


def parse_color(value: str | None, fallback: RGB = WHITE) -> RGB:
    """Resolve a named, #rgb, #rrggbb or rgb(r, g, b) color; unparseable input yields ``fallback``."""
    if not value:
        return fallback
    s = value.strip().lower()

    if s in NAMED_COLORS:
        return NAMED_COLORS[s]

    if s.startswith("#"):
        h = s[1:]
        if len(h) == 3:
            h = "".join(c * 2 for c in h)
        if len(h) == 6 and all(c in "0123456789abcdef" for c in h):
            return (int(h[0:2], 16), int(h[2:4], 16), int(h[4:6], 16))
        return fallback

    m = re.search(r"rgb\((\d+),\s*(\d+),\s*(\d+)\)", s)
    if m:
        r, g, b = (max(0, min(255, int(v))) for v in m.groups())
        return (r, g, b)

    return fallback


@dataclass(frozen=True)
class CanvasSpec:
    width: int
    height: int
    background: RGB | None = None

    def __post_init__(self) -> None:
        if not (MIN_CANVAS <= self.width <= MAX_CANVAS and MIN_CANVAS <= self.height <= MAX_CANVAS):
            raise InvalidCanvasError(
                f"Canvas dimensions must be between {MIN_CANVAS}x{MIN_CANVAS} and "
                f"{MAX_CANVAS}x{MAX_CANVAS} pixels, got {self.width}x{self.height}"
            )

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    @property
    def aspect(self) -> float:
        return self.width / self.height


@dataclass(frozen=True)
class Border:
    side: int
    bottom: int
    color: RGB = WHITE


@dataclass(frozen=True)
class Placement:
    x: int
    y: int
    width: int
    height: int
    image_index: int | None = None
    rotation: float = 0.0
    fit: str = "cover"
    kind: str = IMAGE
    border: Border | None = None
    fill: RGB | None = None
    fallback: bool = False

    @property
    def is_decoration(self) -> bool:
        return self.kind == DECORATION

    @property
    def outer_size(self) -> Tuple[int, int]:
        # frame size before rotation
        if self.border is None:
            return (self.width, self.height)
        b = self.border
        return (self.width + 2 * b.side, self.height + b.side + b.bottom)


@dataclass
class PlacementPlan:
    layout: str
    placements: List[Placement] = field(default_factory=list)
    background: RGB = WHITE

    @property
    def images(self) -> List[Placement]:
        return [p for p in self.placements if not p.is_decoration]

    @property
    def decorations(self) -> List[Placement]:
        return [p for p in self.placements if p.is_decoration]


@dataclass
class LayoutOptions:
    cols: int | None = None
    direction: str = "horizontal"
    fit: str = "cover"
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.cols is not None and self.cols < 1:
            raise ValueError("cols must be a positive integer")
        if self.direction not in DIRECTIONS:
            raise ValueError(f"direction must be one of {', '.join(DIRECTIONS)}")
        if self.fit not in FIT_MODES:
            raise ValueError(f"fit must be one of {', '.join(FIT_MODES)}")


class Layout(str, Enum):
    GRID = "grid"
    STRIP = "strip"
    POLAROID = "polaroid"
    MOSAIC = "mosaic"
    FILMSTRIP = "filmstrip"
    MAGAZINE = "magazine"


@dataclass(frozen=True)
class LayoutDescriptor:
    layout: Layout
    description: str
    min_images: int
    max_images: int
    default_background: RGB = WHITE

    @property
    def name(self) -> str:
        return self.layout.value

    def accepts(self, count: int) -> bool:
        return self.min_images <= count <= self.max_images


LAYOUTS: Dict[Layout, LayoutDescriptor] = {
    Layout.GRID: LayoutDescriptor(Layout.GRID, "Equal-sized grid layout (2x2, 3x3, etc.)", 4, 25),
    Layout.STRIP: LayoutDescriptor(Layout.STRIP, "Horizontal or vertical strip of images", 2, 10),
    Layout.POLAROID: LayoutDescriptor(
        Layout.POLAROID, "Scattered polaroid-style photos with rotation", 2, 12, (245, 245, 245)
    ),
    Layout.MOSAIC: LayoutDescriptor(Layout.MOSAIC, "Irregular mosaic layout with varying sizes", 3, 20),
    Layout.FILMSTRIP: LayoutDescriptor(
        Layout.FILMSTRIP, "Classic film strip layout with perforations", 3, 8, (26, 26, 26)
    ),
    Layout.MAGAZINE: LayoutDescriptor(Layout.MAGAZINE, "Magazine-style layout with featured image", 3, 8),
}


def resolve_layout(name: str | Layout | None) -> LayoutDescriptor:
    if isinstance(name, Layout):
        return LAYOUTS[name]
    key = (name or "").strip().lower()
    for layout, desc in LAYOUTS.items():
        if layout.value == key:
            return desc
    available = ", ".join(l.value for l in Layout)
    raise InvalidLayoutError(f"Unknown layout: {name}. Available: {available}")


def list_layouts() -> List[LayoutDescriptor]:
    return list(LAYOUTS.values())


def _background(canvas: CanvasSpec, layout: Layout) -> RGB:
    if canvas.background is not None:
        return canvas.background
    return LAYOUTS[layout].default_background


def plan_grid(
    count: int,
    canvas: CanvasSpec,
    spacing: int,
    options: LayoutOptions,
    rng: random.Random,
) -> PlacementPlan:
    cols = options.cols or int(math.ceil(math.sqrt(count)))
    rows = int(math.ceil(count / cols))

    cell_w = (canvas.width - spacing * (cols + 1)) // cols
    cell_h = (canvas.height - spacing * (rows + 1)) // rows
    if cell_w < MIN_CELL or cell_h < MIN_CELL:
        raise CanvasTooSmallError(
            f"Canvas too small for grid layout ({cols}x{rows} cells of {cell_w}x{cell_h}px). "
            "Increase canvas size or reduce number of images."
        )

    plan = PlacementPlan(Layout.GRID.value, background=_background(canvas, Layout.GRID))
    for i in range(count):
        row, col = divmod(i, cols)
        plan.placements.append(
            Placement(
                x=spacing + col * (cell_w + spacing),
                y=spacing + row * (cell_h + spacing),
                width=cell_w,
                height=cell_h,
                image_index=i,
                fit=options.fit,
            )
        )
    return plan


def plan_strip(
    count: int,
    canvas: CanvasSpec,
    spacing: int,
    options: LayoutOptions,
    rng: random.Random,
) -> PlacementPlan:
    vertical = options.direction == "vertical"
    if vertical:
        img_w = canvas.width - 2 * spacing
        img_h = (canvas.height - spacing * (count + 1)) // count
    else:
        img_w = (canvas.width - spacing * (count + 1)) // count
        img_h = canvas.height - 2 * spacing

    if img_w < MIN_CELL or img_h < MIN_CELL:
        raise CanvasTooSmallError(
            f"Canvas too small for strip layout ({img_w}x{img_h}px per image). "
            "Increase canvas size or reduce number of images."
        )

    plan = PlacementPlan(Layout.STRIP.value, background=_background(canvas, Layout.STRIP))
    for i in range(count):
        x = spacing if vertical else spacing + i * (img_w + spacing)
        y = spacing + i * (img_h + spacing) if vertical else spacing
        plan.placements.append(Placement(x=x, y=y, width=img_w, height=img_h, image_index=i, fit=options.fit))
    return plan


@dataclass(frozen=True)
class Slot:
    x: int
    y: int
    fallback: bool = False


class CollisionAvoider:
    """Hands out top-left slots for ``size`` x ``size`` squares that keep ``gap`` px of clearance.

    Each slot comes from up to ``attempts`` uniform samples inside the margins; a sample
    is rejected only if it lies within ``size + gap`` of an accepted slot on both axes.
    When every sample is rejected the slot is taken from a grid sized for the
    number of slots handed out so far.
    """

    def __init__(
        self,
        canvas_w: int,
        canvas_h: int,
        size: int,
        rng: random.Random,
        margin: int = POLAROID_MARGIN,
        gap: int = POLAROID_GAP,
        attempts: int = POLAROID_ATTEMPTS,
    ) -> None:
        self.canvas_w = canvas_w
        self.canvas_h = canvas_h
        self.size = size
        self.rng = rng
        self.margin = margin
        self.gap = gap
        self.attempts = attempts
        self.placed: List[Slot] = []

    def _span(self, extent: int) -> Tuple[int, int]:
        lo = self.margin
        hi = extent - self.size - self.margin
        if hi < lo:
            return (0, max(0, extent - self.size))
        return (lo, hi)

    def overlaps(self, x: int, y: int) -> bool:
        reach = self.size + self.gap
        return any(abs(x - p.x) < reach and abs(y - p.y) < reach for p in self.placed)

    def try_random(self) -> Optional[Slot]:
        x_lo, x_hi = self._span(self.canvas_w)
        y_lo, y_hi = self._span(self.canvas_h)
        for _ in range(self.attempts):
            x = int(round(x_lo + self.rng.random() * (x_hi - x_lo)))
            y = int(round(y_lo + self.rng.random() * (y_hi - y_lo)))
            if not self.overlaps(x, y):
                return Slot(x, y)
        return None

    def grid_fallback(self) -> Slot:
        k = len(self.placed)
        cols = int(math.ceil(math.sqrt(k + 1)))
        step = self.size + self.gap
        x = (k % cols) * step + self.margin
        y = (k // cols) * step + self.margin
        x = max(0, min(x, self.canvas_w - self.size))
        y = max(0, min(y, self.canvas_h - self.size))
        return Slot(x, y, fallback=True)

    def place(self) -> Slot:
        slot = self.try_random() or self.grid_fallback()
        self.placed.append(slot)
        return slot


def polaroid_size(count: int, canvas: CanvasSpec) -> int:
    base = min(canvas.width, canvas.height) / math.ceil(math.sqrt(count))
    return max(150, min(300, int(math.floor(base * 0.8))))


def plan_polaroid(
    count: int,
    canvas: CanvasSpec,
    spacing: int,
    options: LayoutOptions,
    rng: random.Random,
) -> PlacementPlan:
    size = polaroid_size(count, canvas)
    image_size = int(math.floor(size * 0.75))
    side = (size - image_size) // 2
    border = Border(side=side, bottom=side * 2)

    avoider = CollisionAvoider(canvas.width, canvas.height, size, rng)
    plan = PlacementPlan(Layout.POLAROID.value, background=_background(canvas, Layout.POLAROID))
    for i in range(count):
        slot = avoider.place()
        tilt = rng.random() * 2 * POLAROID_TILT - POLAROID_TILT
        plan.placements.append(
            Placement(
                x=slot.x,
                y=slot.y,
                width=image_size,
                height=image_size,
                image_index=i,
                rotation=tilt,
                border=border,
                fallback=slot.fallback,
            )
        )
    return plan


@dataclass(frozen=True)
class NormRect:
    x: float
    y: float
    width: float
    height: float


def mosaic_pattern(count: int, canvas: CanvasSpec, rng: random.Random) -> List[NormRect]:
    aspect = canvas.aspect
    out: List[NormRect] = []
    for _ in range(count):
        base_w = 0.2 + rng.random() * 0.3
        base_h = 0.2 + rng.random() * 0.3
        w = base_w if aspect > 1 else base_w * aspect
        h = base_h if aspect < 1 else base_h / aspect
        x = rng.random() * (1 - w)
        y = rng.random() * (1 - h)
        out.append(NormRect(x, y, w, h))
    return out


def plan_mosaic(
    count: int,
    canvas: CanvasSpec,
    spacing: int,
    options: LayoutOptions,
    rng: random.Random,
) -> PlacementPlan:
    W, H = canvas.size
    plan = PlacementPlan(Layout.MOSAIC.value, background=_background(canvas, Layout.MOSAIC))
    for i, r in enumerate(mosaic_pattern(count, canvas, rng)):
        w = min(W, max(100, int(math.floor(W * r.width))))
        h = min(H, max(100, int(math.floor(H * r.height))))
        x = max(0, min(W - w, int(math.floor(W * r.x))))
        y = max(0, min(H - h, int(math.floor(H * r.y))))
        plan.placements.append(Placement(x=x, y=y, width=w, height=h, image_index=i))
    return plan


def plan_filmstrip(
    count: int,
    canvas: CanvasSpec,
    spacing: int,
    options: LayoutOptions,
    rng: random.Random,
) -> PlacementPlan:
    W, H = canvas.size
    band_h = int(H * 0.6)
    perf_h = int(band_h * 0.15)
    frame_area_h = band_h - 2 * perf_h

    avail_w = W - 2 * spacing
    gap = int(avail_w * 0.02)
    frame_w = (avail_w - gap * (count - 1)) // count
    frame_h = int(frame_area_h * 0.85)
    if frame_w < MIN_CELL or frame_h < MIN_CELL:
        raise CanvasTooSmallError(
            f"Canvas too small for filmstrip layout ({frame_w}x{frame_h}px frames). "
            "Increase canvas size or reduce number of images."
        )

    band_top = (H - band_h) // 2
    frame_top = band_top + perf_h + (frame_area_h - frame_h) // 2

    plan = PlacementPlan(Layout.FILMSTRIP.value, background=FILMSTRIP_CANVAS)
    band = _background(canvas, Layout.FILMSTRIP)
    plan.placements.append(Placement(x=0, y=band_top, width=W, height=band_h, kind=DECORATION, fill=band))

    for x in range(PERFORATION_STEP, W - PERFORATION_WIDTH, PERFORATION_STEP):
        for y in (band_top, band_top + band_h - perf_h):
            plan.placements.append(
                Placement(x=x, y=y, width=PERFORATION_WIDTH, height=perf_h, kind=DECORATION, fill=WHITE)
            )

    for i in range(count):
        plan.placements.append(
            Placement(
                x=spacing + i * (frame_w + gap),
                y=frame_top,
                width=frame_w,
                height=frame_h,
                image_index=i,
            )
        )
    return plan


def plan_magazine(
    count: int,
    canvas: CanvasSpec,
    spacing: int,
    options: LayoutOptions,
    rng: random.Random,
) -> PlacementPlan:
    W, H = canvas.size
    main_w = int(W * 0.55)
    main_h = int(H * 0.8)
    main_top = (H - main_h) // 2

    plan = PlacementPlan(Layout.MAGAZINE.value, background=_background(canvas, Layout.MAGAZINE))
    plan.placements.append(Placement(x=spacing, y=main_top, width=main_w, height=main_h, image_index=0))

    rest = count - 1
    if rest <= 0:
        return plan

    area_w = W - main_w - 3 * spacing
    cols = min(2, rest)
    rows = int(math.ceil(rest / cols))
    cell_w = (area_w - spacing * (cols - 1)) // cols
    cell_h = (main_h - spacing * (rows - 1)) // rows
    if cell_w < MIN_CELL or cell_h < MIN_CELL:
        raise CanvasTooSmallError(
            f"Canvas too small for magazine layout ({cell_w}x{cell_h}px secondary cells). "
            "Increase canvas size or reduce number of images."
        )

    for i in range(rest):
        row, col = divmod(i, cols)
        plan.placements.append(
            Placement(
                x=main_w + 2 * spacing + col * (cell_w + spacing),
                y=main_top + row * (cell_h + spacing),
                width=cell_w,
                height=cell_h,
                image_index=i + 1,
            )
        )
    return plan


Planner = Callable[[int, CanvasSpec, int, LayoutOptions, random.Random], PlacementPlan]

PLANNERS: Dict[Layout, Planner] = {
    Layout.GRID: plan_grid,
    Layout.STRIP: plan_strip,
    Layout.POLAROID: plan_polaroid,
    Layout.MOSAIC: plan_mosaic,
    Layout.FILMSTRIP: plan_filmstrip,
    Layout.MAGAZINE: plan_magazine,
}


def plan_layout(
    layout: Layout | str,
    count: int,
    canvas: CanvasSpec,
    spacing: int = 10,
    options: LayoutOptions | None = None,
    rng: random.Random | None = None,
) -> PlacementPlan:
    desc = resolve_layout(layout)
    if count < 1:
        raise ValueError("count must be positive")
    if spacing < 0:
        raise ValueError("spacing must not be negative")
    options = options or LayoutOptions()
    if rng is None:
        rng = random.Random(options.seed)
    return PLANNERS[desc.layout](count, canvas, spacing, options, rng)


def plan_bounds(placements: Sequence[Placement]) -> Tuple[int, int, int, int]:
    if not placements:
        return (0, 0, 0, 0)
    x0 = min(p.x for p in placements)
    y0 = min(p.y for p in placements)
    x1 = max(p.x + p.outer_size[0] for p in placements)
    y1 = max(p.y + p.outer_size[1] for p in placements)
    return (x0, y0, x1, y1)
