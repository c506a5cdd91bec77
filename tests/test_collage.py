"""
Tests for collage orchestration, image selection and the command line entry point.
"""

import io
import logging
import random

import pytest
from PIL import Image

from collage import (
    CollageResult,
    build_collage,
    format_file_size,
    main,
    select_images,
)
from collage_codec import RenderedLayer
from collage_layouts import (
    CanvasSpec,
    CanvasTooSmallError,
    ImageCountError,
    InvalidLayoutError,
    LayoutOptions,
    NoValidImagesError,
    Placement,
    UnsupportedOutputFormatError,
    list_layouts,
)


class TestValidation:
    def test_grid_needs_four_images(self, make_refs, fake_codec_factory):
        codec = fake_codec_factory()
        with pytest.raises(ImageCountError) as info:
            build_collage(make_refs(2), "grid", CanvasSpec(900, 900), codec=codec)
        err = info.value
        assert (err.minimum, err.maximum, err.actual) == (4, 25, 2)
        assert "grid requires 4-25 images, got 2" in str(err)
        assert codec.rendered == [] and codec.composite_calls == 0

    def test_too_many_images(self, make_refs, fake_codec_factory):
        with pytest.raises(ImageCountError):
            build_collage(make_refs(9), "filmstrip", CanvasSpec(900, 900), codec=fake_codec_factory())

    def test_unknown_layout(self, make_refs, fake_codec_factory):
        with pytest.raises(InvalidLayoutError):
            build_collage(make_refs(4), "hexagon", CanvasSpec(900, 900), codec=fake_codec_factory())

    def test_unsupported_format_fails_before_rendering(self, make_refs, fake_codec_factory):
        codec = fake_codec_factory()
        with pytest.raises(UnsupportedOutputFormatError):
            build_collage(make_refs(4), "grid", CanvasSpec(900, 900), codec=codec, output_format="bmp")
        assert codec.rendered == []

    def test_canvas_too_small_fails_before_rendering(self, make_refs, fake_codec_factory):
        codec = fake_codec_factory()
        with pytest.raises(CanvasTooSmallError):
            build_collage(make_refs(25), "grid", CanvasSpec(200, 200), codec=codec)
        assert codec.rendered == []

    def test_quality_range(self, make_refs, fake_codec_factory):
        with pytest.raises(ValueError):
            build_collage(make_refs(4), "grid", CanvasSpec(900, 900), codec=fake_codec_factory(), quality=0)


class TestSkipHandling:
    def test_corrupt_image_in_mosaic_is_skipped(self, make_refs, corrupt_ref, caplog):
        refs = make_refs(4)
        refs.insert(2, corrupt_ref)
        with caplog.at_level(logging.WARNING, logger="collage"):
            result = build_collage(refs, "mosaic", CanvasSpec(800, 600), options=LayoutOptions(seed=4))

        assert isinstance(result, CollageResult)
        assert result.placed_count == 4
        assert [(s.index, s.name) for s in result.skipped] == [(2, "broken.jpg")]
        assert 2 not in [p.image_index for p in result.placements]
        assert "Skipping corrupted image: broken.jpg" in caplog.text

        out = Image.open(io.BytesIO(result.data))
        assert out.format == "JPEG"
        assert out.size == (800, 600)

    def test_all_corrupt_raises(self, make_refs, fake_codec_factory):
        codec = fake_codec_factory(bad={0, 1, 2})
        with pytest.raises(NoValidImagesError):
            build_collage(make_refs(3), "magazine", CanvasSpec(900, 600), codec=codec)
        assert codec.composite_calls == 0

    @pytest.mark.parametrize("desc", list_layouts(), ids=lambda d: d.name)
    def test_placed_plus_skipped_equals_inputs(self, desc, make_refs, fake_codec_factory):
        count = desc.min_images + 1
        bad = {0, count - 1}
        result = build_collage(
            make_refs(count),
            desc.name,
            CanvasSpec(1600, 1000),
            options=LayoutOptions(seed=2),
            codec=fake_codec_factory(bad=bad),
        )
        assert result.placed_count + len(result.skipped) == count
        assert {s.index for s in result.skipped} == bad


class TestLayerOrder:
    def test_worker_pool_keeps_plan_order(self, make_refs, fake_codec_factory):
        codec = fake_codec_factory(bad={3})
        build_collage(make_refs(9), "grid", CanvasSpec(900, 900), codec=codec, workers=4)
        indices = [layer.index for layer in codec.composited]
        assert indices == [0, 1, 2, 4, 5, 6, 7, 8]

    def test_filmstrip_decorations_drawn_first(self, make_refs, fake_codec_factory):
        codec = fake_codec_factory()
        build_collage(make_refs(3), "filmstrip", CanvasSpec(900, 600), codec=codec)
        layers = codec.composited
        kinds = ["decoration" if isinstance(l, Placement) else "image" for l in layers]
        first_image = kinds.index("image")
        assert first_image > 0
        assert kinds[first_image:] == ["image"] * 3
        assert all(isinstance(l, RenderedLayer) for l in layers[first_image:])

    def test_seeded_polaroid_is_reproducible(self, make_refs, fake_codec_factory):
        refs = make_refs(5)
        a = build_collage(refs, "polaroid", CanvasSpec(1200, 900), codec=fake_codec_factory(), rng=random.Random(6))
        b = build_collage(refs, "polaroid", CanvasSpec(1200, 900), codec=fake_codec_factory(), rng=random.Random(6))
        assert a.placements == b.placements


class TestRealRender:
    def test_polaroid_png(self, make_refs):
        result = build_collage(
            make_refs(3), "polaroid", CanvasSpec(900, 700), options=LayoutOptions(seed=1), output_format="png"
        )
        out = Image.open(io.BytesIO(result.data))
        assert result.format == "png"
        assert out.size == (900, 700)
        assert result.skipped == []

    def test_strip_webp(self, make_refs):
        result = build_collage(make_refs(3), "Strip", CanvasSpec(930, 300), output_format="webp", workers=1)
        assert result.layout == "strip"
        assert Image.open(io.BytesIO(result.data)).format == "WEBP"
        assert [p.x for p in result.placements] == [10, 316, 622]


class TestSelectImages:
    def test_folder_scan_sorted_and_filtered(self, tmp_path, make_image):
        make_image("b.png")
        make_image("A.jpg", fmt="JPEG")
        make_image(".hidden.png")
        (tmp_path / "notes.txt").write_text("hello")

        refs = select_images(str(tmp_path))
        assert [r.name for r in refs] == ["A.jpg", "b.png"]

    def test_max_files_and_shuffle(self, tmp_path, make_image):
        for i in range(6):
            make_image(f"p{i}.png")
        assert [r.name for r in select_images(str(tmp_path), max_files=2)] == ["p0.png", "p1.png"]

        a = [r.name for r in select_images(str(tmp_path), shuffle=True, seed=3)]
        b = [r.name for r in select_images(str(tmp_path), shuffle=True, seed=3)]
        assert a == b
        assert sorted(a) == [f"p{i}.png" for i in range(6)]

    def test_comma_list_warns_on_missing(self, tmp_path, make_image, caplog):
        one = make_image("one.png")
        two = make_image("two.png")
        spec = f"{two},{tmp_path / 'missing.png'},{one}"
        with caplog.at_level(logging.WARNING, logger="collage"):
            refs = select_images(spec)
        assert [r.name for r in refs] == ["one.png", "two.png"]
        assert "File not found" in caplog.text

    def test_nothing_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            select_images(str(tmp_path / "nope.png") + "," + str(tmp_path / "nada.png"))


class TestMain:
    def test_writes_collage(self, tmp_path, make_refs):
        make_refs(3)
        out = tmp_path / "out" / "strip.png"
        code = main(
            [str(tmp_path), "--layout", "strip", "--width", "930", "--height", "300", "--format", "png",
             "--output", str(out), "--quiet"]
        )
        assert code == 0
        assert Image.open(out).size == (930, 300)

    def test_default_output_name(self, tmp_path, make_refs, monkeypatch):
        make_refs(4)
        monkeypatch.chdir(tmp_path)
        assert main([str(tmp_path), "--layout", "grid", "--width", "400", "--height", "400", "-q"]) == 0
        assert (tmp_path / "collage_grid.jpg").exists()

    def test_fatal_error_exit_code(self, tmp_path, make_refs, caplog):
        make_refs(3)
        assert main([str(tmp_path), "--layout", "grid", "-q"]) == 1
        assert "grid requires 4-25 images, got 3" in caplog.text

    def test_list_layouts(self, capsys):
        assert main(["--list-layouts"]) == 0
        printed = capsys.readouterr().out
        for desc in list_layouts():
            assert f"{desc.name}: {desc.description}" in printed


def test_format_file_size():
    assert format_file_size(512) == "512 B"
    assert format_file_size(2048) == "2.0 KB"
    assert format_file_size(5 * 1024 * 1024) == "5.0 MB"
