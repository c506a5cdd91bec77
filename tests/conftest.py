from __future__ import annotations

import random
from pathlib import Path
from typing import Callable, List, Tuple

import pytest
from PIL import Image

from collage_codec import ImageRef, RenderedLayer
from collage_layouts import CorruptImageError

COLORS = [(200, 30, 30), (30, 200, 30), (30, 30, 200), (220, 220, 40), (40, 200, 200), (120, 60, 160)]


@pytest.fixture
def make_image(tmp_path: Path) -> Callable[..., Path]:
    def _make(name: str, size: Tuple[int, int] = (64, 48), color=(200, 30, 30), fmt: str | None = None) -> Path:
        path = tmp_path / name
        Image.new("RGB", size, color).save(path, format=fmt)
        return path

    return _make


@pytest.fixture
def make_refs(make_image) -> Callable[[int], List[ImageRef]]:
    def _make(count: int, size: Tuple[int, int] = (64, 48)) -> List[ImageRef]:
        return [
            ImageRef.from_path(make_image(f"img_{i:02d}.png", size, COLORS[i % len(COLORS)]))
            for i in range(count)
        ]

    return _make


@pytest.fixture
def corrupt_ref(tmp_path: Path) -> ImageRef:
    path = tmp_path / "broken.jpg"
    path.write_bytes(b"definitely not a jpeg")
    return ImageRef.from_path(path)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


class FakeCodec:
    """Codec double: fails for chosen indices and records what gets composited."""

    def __init__(self, bad: set[int] | None = None) -> None:
        self.bad = bad or set()
        self.rendered: List[int] = []
        self.composited: list | None = None
        self.composite_calls = 0

    def render_layer(self, ref: ImageRef, placement) -> RenderedLayer:
        if placement.image_index in self.bad:
            raise CorruptImageError(ref.label, "bad header")
        self.rendered.append(placement.image_index)
        img = Image.new("RGB", (placement.width, placement.height))
        return RenderedLayer(image=img, x=placement.x, y=placement.y, index=placement.image_index)

    def composite(self, canvas, background, layers, output_format="jpg", quality=85) -> bytes:
        self.composite_calls += 1
        self.composited = list(layers)
        return b"fake-bytes"


@pytest.fixture
def fake_codec_factory() -> Callable[..., FakeCodec]:
    return FakeCodec
