from __future__ import annotations

import io
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Sequence, Tuple, Union

from PIL import Image, ImageDraw, ImageOps

from collage_layouts import (
    RGB,
    Border,
    CanvasSpec,
    CorruptImageError,
    Placement,
    UnsupportedOutputFormatError,
)

# allow large images; keep a very high limit to avoid PIL warning spam
Image.MAX_IMAGE_PIXELS = max(int(getattr(Image, "MAX_IMAGE_PIXELS", 0) or 0), 250_000_000)

OUTPUT_FORMATS: Dict[str, str] = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
}

DECODE_ERRORS = (OSError, ValueError, SyntaxError, Image.DecompressionBombError)


@dataclass(frozen=True)
class ImageRef:
    source: Union[Path, bytes]
    name: str = ""

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ImageRef":
        p = Path(path)
        return cls(source=p, name=p.name)

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        if isinstance(self.source, Path):
            return str(self.source)
        return f"<{len(self.source)} bytes>"

    def open(self) -> Image.Image:
        if isinstance(self.source, Path):
            return Image.open(self.source)
        return Image.open(io.BytesIO(self.source))


@dataclass(frozen=True)
class ImageMeta:
    width: int
    height: int
    format: str | None = None

    @property
    def aspect(self) -> float:
        return self.width / self.height if self.height else 1.0


@dataclass
class RenderedLayer:
    image: Image.Image
    x: int
    y: int
    index: int | None = None


Layer = Union[Placement, RenderedLayer]


def normalize_format(output_format: str) -> Tuple[str, str]:
    ext = (output_format or "").strip().lower().lstrip(".")
    if ext not in OUTPUT_FORMATS:
        raise UnsupportedOutputFormatError(
            f"Unsupported output format: {output_format}. Supported: {', '.join(OUTPUT_FORMATS)}"
        )
    return ext, OUTPUT_FORMATS[ext]


def open_image(ref: ImageRef) -> Image.Image:
    img = ref.open()
    img = ImageOps.exif_transpose(img)
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA" if "A" in img.getbands() or "transparency" in img.info else "RGB")
    return img


def safe_resize(
    img: Image.Image,
    size: Tuple[int, int],
    resample: Image.Resampling = Image.Resampling.LANCZOS,
) -> Image.Image:
    w, h = size
    if w <= 0 or h <= 0:
        raise ValueError("resize size must be positive")
    return img.resize((w, h), resample=resample)


def fit_image(
    img: Image.Image,
    box_w: int,
    box_h: int,
    fit: str,
    resample: Image.Resampling = Image.Resampling.LANCZOS,
) -> Image.Image:
    ow, oh = img.size
    if ow <= 0 or oh <= 0:
        raise ValueError("image has no pixels")

    if fit == "fill":
        return safe_resize(img, (box_w, box_h), resample=resample)

    if fit in ("cover", "outside"):
        scale = max(box_w / ow, box_h / oh)
        new_w = max(box_w, int(math.ceil(ow * scale)))
        new_h = max(box_h, int(math.ceil(oh * scale)))
        resized = safe_resize(img, (new_w, new_h), resample=resample)
        if fit == "outside":
            return resized
        left = max(0, (new_w - box_w) // 2)
        top = max(0, (new_h - box_h) // 2)
        return resized.crop((left, top, left + box_w, top + box_h))

    scale = min(box_w / ow, box_h / oh)
    new_w = min(box_w, max(1, int(math.floor(ow * scale))))
    new_h = min(box_h, max(1, int(math.floor(oh * scale))))
    resized = safe_resize(img, (new_w, new_h), resample=resample)
    if fit == "inside":
        return resized

    # contain: letterbox onto a transparent box so the canvas shows through
    boxed = Image.new("RGBA", (box_w, box_h), (0, 0, 0, 0))
    boxed.paste(resized, ((box_w - new_w) // 2, (box_h - new_h) // 2))
    return boxed


def add_border(img: Image.Image, border: Border) -> Image.Image:
    w, h = img.size
    color = border.color + (255,) if img.mode == "RGBA" else border.color
    framed = Image.new(img.mode, (w + 2 * border.side, h + border.side + border.bottom), color)
    framed.paste(img, (border.side, border.side))
    return framed


def rotate_layer(img: Image.Image, degrees: float) -> Image.Image:
    # positive degrees turn clockwise; PIL rotates counter-clockwise
    if img.mode != "RGBA":
        img = img.convert("RGBA")
    return img.rotate(-degrees, resample=Image.Resampling.BICUBIC, expand=True, fillcolor=(0, 0, 0, 0))


class PillowCodec:
    def __init__(self, resample: Image.Resampling = Image.Resampling.LANCZOS) -> None:
        self.resample = resample

    def decode_metadata(self, ref: ImageRef) -> ImageMeta:
        try:
            with ref.open() as img:
                fmt = img.format
                img = ImageOps.exif_transpose(img)
                w, h = img.size
        except DECODE_ERRORS as exc:
            raise CorruptImageError(ref.label, str(exc) or type(exc).__name__) from exc
        if w <= 1 or h <= 1:
            raise CorruptImageError(ref.label, f"degenerate size {w}x{h}")
        return ImageMeta(w, h, fmt)

    def render_layer(self, ref: ImageRef, placement: Placement) -> RenderedLayer:
        try:
            img = open_image(ref)
            img = fit_image(img, placement.width, placement.height, placement.fit, resample=self.resample)
        except DECODE_ERRORS as exc:
            raise CorruptImageError(ref.label, str(exc) or type(exc).__name__) from exc

        if placement.border is not None:
            img = add_border(img, placement.border)
        if placement.rotation:
            img = rotate_layer(img, placement.rotation)
        return RenderedLayer(image=img, x=placement.x, y=placement.y, index=placement.image_index)

    def composite(
        self,
        canvas: CanvasSpec,
        background: RGB,
        layers: Sequence[Layer],
        output_format: str = "jpg",
        quality: int = 85,
    ) -> bytes:
        _, pil_format = normalize_format(output_format)

        out = Image.new("RGB", canvas.size, color=background)
        draw = ImageDraw.Draw(out)
        for layer in layers:
            if isinstance(layer, Placement):
                draw.rectangle(
                    (layer.x, layer.y, layer.x + layer.width - 1, layer.y + layer.height - 1),
                    fill=layer.fill or background,
                )
                continue
            img = layer.image
            if img.mode == "RGBA":
                out.paste(img, (layer.x, layer.y), mask=img)
            else:
                out.paste(img, (layer.x, layer.y))

        return encode_image(out, pil_format, quality)


def encode_image(img: Image.Image, pil_format: str, quality: int = 85) -> bytes:
    buf = io.BytesIO()
    if pil_format == "JPEG":
        img.save(buf, format="JPEG", quality=quality, progressive=True, optimize=True)
    elif pil_format == "PNG":
        img.save(buf, format="PNG", compress_level=6)
    else:
        img.save(buf, format="WEBP", quality=quality, method=4)
    return buf.getvalue()
