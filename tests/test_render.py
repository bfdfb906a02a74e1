"""Tests for svgclip.render: layer pipeline and frame compositing."""

import numpy as np
import pytest
from PIL import Image

from svgclip.common import to_data_uri
from svgclip.errors import DrawError
from svgclip.frames import FrameCache
from svgclip.model import Clip, ClipFilter, CropWindow, ShapeDescriptor, Timeline, Track
from svgclip.render import (
    MediaLibrary,
    apply_filter,
    composite_at,
    crop_region,
    crop_zoom,
    draw_mask,
    draw_text,
    mask_path_matrix,
    render_clip,
    render_frame,
    shape_region,
)

LEFT_HALF = "M 0 0 L 50 0 L 50 100 L 0 100 Z"


def _rect(clip_id, color, **kwargs):
    defaults = dict(x=0, y=0, width=100, height=100, src="Rectangle", color=color)
    defaults.update(kwargs)
    return Clip(id=clip_id, type="shape", **defaults)


def _timeline(*clips):
    return Timeline(tuple(Track(f"track-{i}", clips=(c,)) for i, c in enumerate(clips)))


@pytest.fixture
def media():
    with MediaLibrary() as library:
        yield library


def _frame(*clips, size=(100, 100), canvas=(100, 100), time=0.0, **kwargs):
    surface = Image.new("RGBA", size)
    skipped = render_frame(surface, time, canvas, _timeline(*clips), **kwargs)
    return surface, skipped


# ── Geometry helpers ───────────────────────────────────────────────

class TestMaskPathMatrix:
    def test_stretches_view_box_to_box(self):
        clip = Clip(id="m", type="mask", width=200, height=100, view_box="0 0 100 100")
        m = mask_path_matrix(clip)
        assert (m.a, m.d) == (2, 1)
        assert m.apply(100, 100) == (200, 100)

    def test_view_box_origin_removed(self):
        clip = Clip(id="m", type="mask", width=10, height=10, view_box="5 5 10 10")
        assert mask_path_matrix(clip).apply(5, 5) == (0, 0)

    def test_explicit_size(self):
        clip = Clip(id="m", type="mask", width=10, height=10, view_box="0 0 10 10")
        assert mask_path_matrix(clip, 40, 20).apply(10, 10) == (40, 20)


class TestRegions:
    def test_shape_region_union(self):
        clip = Clip(id="m", type="mask", width=100, height=100, view_box="0 0 100 100",
                    shapes=(ShapeDescriptor(id="s", kind="rect", d=LEFT_HALF),))
        region = shape_region(clip, (100, 100))
        assert region.getpixel((25, 50)) == 255
        assert region.getpixel((75, 50)) == 0

    def test_shape_region_without_shapes(self):
        assert shape_region(Clip(id="m", type="mask"), (10, 10)) is None

    def test_circle_crop(self):
        clip = Clip(id="m", type="mask", crop=CropWindow(shape="circle"))
        region = crop_region(clip, (100, 100))
        assert region.getpixel((50, 50)) == 255
        assert region.getpixel((1, 1)) == 0

    def test_rounded_crop(self):
        clip = Clip(id="m", type="mask", crop=CropWindow(corner_radius=50))
        region = crop_region(clip, (100, 100))
        assert region.getpixel((0, 0)) == 0
        assert region.getpixel((50, 50)) == 255

    def test_plain_crop_has_no_region(self):
        assert crop_region(Clip(id="m", type="mask", crop=CropWindow()), (10, 10)) is None

    def test_crop_zoom_cuts_window(self):
        def content(size):
            image = Image.new("RGBA", size, (255, 0, 0, 255))
            image.paste((0, 0, 255, 255), (size[0] // 2, 0, size[0], size[1]))
            return image

        clip = Clip(id="m", type="mask", crop=CropWindow(x=50, width=50))
        window = crop_zoom(content, clip, (100, 100))
        assert window.size == (100, 100)
        assert window.getpixel((10, 50)) == (0, 0, 255, 255)


class TestCompositeAt:
    def test_negative_offset_clipped(self):
        surface = Image.new("RGBA", (10, 10))
        composite_at(surface, Image.new("RGBA", (4, 4), (255, 0, 0, 255)), -2, -2)
        assert surface.getpixel((0, 0)) == (255, 0, 0, 255)
        assert surface.getpixel((2, 2)) == (0, 0, 0, 0)

    def test_offscreen_ignored(self):
        surface = Image.new("RGBA", (10, 10))
        composite_at(surface, Image.new("RGBA", (4, 4), (255, 0, 0, 255)), 20, 20)
        assert surface.getbbox() is None


# ── Per-type drawing ───────────────────────────────────────────────

class TestDrawing:
    def test_mask_uses_frame_cache(self, media):
        cache = FrameCache()
        cache.put("clip.mp4", 3, Image.new("RGB", (8, 8), (0, 255, 0)))
        clip = Clip(id="v", type="mask", src="clip.mp4", width=20, height=20)
        layer = draw_mask(clip, (20, 20), 0.1, media, frame_index=3, frame_cache=cache)
        assert layer.getpixel((10, 10)) == (0, 255, 0, 255)

    def test_mask_without_source(self, media):
        with pytest.raises(DrawError, match="has no source"):
            draw_mask(Clip(id="v", type="mask"), (10, 10), 0.0, media)

    def test_mask_still_image(self, png_data_uri, media):
        clip = Clip(id="i", type="mask", src=png_data_uri, width=8, height=8)
        layer = draw_mask(clip, (8, 8), 0.0, media)
        assert layer.getpixel((4, 4))[:3] == (0, 255, 0)

    def test_text_draws_something(self):
        clip = Clip(id="t", type="text", text="Hello\nWorld", font_size=30,
                    color="#ffffff", width=200, height=100)
        layer = draw_text(clip, (200, 100))
        assert layer.getchannel("A").getbbox() is not None

    def test_apply_filter_brightness(self):
        layer = Image.new("RGBA", (4, 4), (200, 100, 50, 128))
        out = apply_filter(layer, Clip(id="c", type="shape", filter=ClipFilter(brightness=0.0)))
        assert out.getpixel((0, 0)) == (0, 0, 0, 128)

    def test_neutral_filter_is_noop(self):
        layer = Image.new("RGBA", (4, 4), (200, 100, 50, 128))
        assert apply_filter(layer, Clip(id="c", type="shape", filter=ClipFilter())) is layer

    def test_video_frame_from_file(self, source_video):
        with MediaLibrary() as media:
            frame = media.video_frame(str(source_video), 1.0)
        assert frame.size == (320, 240)
        r, g, b, _ = frame.getpixel((160, 120))
        assert b > 200 and r < 50


class TestRenderClip:
    def test_rotation_swaps_box(self, media):
        clip = _rect("r", "#ffffff", width=100, height=50, rotation=90)
        layer, left, top = render_clip(clip, 0.0, media=media)
        assert layer.size == (50, 100)
        assert (left, top) == (25, -25)

    def test_zero_size_skipped(self, media):
        assert render_clip(_rect("r", "#ffffff", width=0), 0.0, media=media) is None

    def test_audio_not_drawn(self, media):
        assert render_clip(Clip(id="a", type="audio", width=10, height=10), 0.0, media=media) is None


# ── Frame ──────────────────────────────────────────────────────────

class TestRenderFrame:
    def test_track_zero_on_top(self):
        surface, skipped = _frame(_rect("red", "#ff0000"), _rect("blue", "#0000ff"))
        assert surface.getpixel((50, 50)) == (255, 0, 0, 255)
        assert skipped == []

    def test_background_fill(self):
        surface, _ = _frame(background=(10, 20, 30))
        assert surface.getpixel((0, 0)) == (10, 20, 30, 255)

    def test_inactive_clip_not_drawn(self):
        surface, _ = _frame(_rect("later", "#ff0000", start=1.0, duration=1.0))
        assert surface.getpixel((50, 50)) == (0, 0, 0, 255)

    def test_broken_clip_skipped(self):
        broken = Clip(id="broken", type="icon", src=to_data_uri(b"<svg", "image/svg+xml"),
                      width=100, height=100)
        surface, skipped = _frame(broken, _rect("blue", "#0000ff"))
        assert skipped == ["broken"]
        assert surface.getpixel((50, 50)) == (0, 0, 255, 255)

    def test_surface_must_be_rgba(self):
        with pytest.raises(ValueError, match="must be RGBA"):
            render_frame(Image.new("RGB", (10, 10)), 0.0, (10, 10), Timeline())

    def test_opacity(self):
        surface, _ = _frame(_rect("half", "#ffffff", opacity=0.5))
        assert surface.getpixel((50, 50))[0] == pytest.approx(127, abs=2)

    def test_circle_crop_shows_background(self):
        surface, _ = _frame(_rect("round", "#ffffff", crop=CropWindow(shape="circle")))
        assert surface.getpixel((1, 1)) == (0, 0, 0, 255)
        assert surface.getpixel((50, 50)) == (255, 255, 255, 255)

    def test_custom_path_flipped(self):
        clip = _rect("half", "#ffffff", src=None, custom_path=LEFT_HALF,
                     view_box="0 0 100 100", flip_h=True)
        surface, _ = _frame(clip)
        assert surface.getpixel((25, 50)) == (0, 0, 0, 255)
        assert surface.getpixel((75, 50)) == (255, 255, 255, 255)

    def test_geometry_scaled_to_surface(self):
        surface, _ = _frame(_rect("r", "#ff0000", x=50, y=50, width=50, height=50),
                            size=(200, 200))
        assert surface.getpixel((150, 150)) == (255, 0, 0, 255)
        assert surface.getpixel((50, 50)) == (0, 0, 0, 255)

    def test_mask_shapes_clip_media(self, png_data_uri):
        clip = Clip(id="m", type="mask", src=png_data_uri, width=100, height=100,
                    view_box="0 0 100 100",
                    shapes=(ShapeDescriptor(id="s", kind="rect", d=LEFT_HALF),))
        surface, _ = _frame(clip)
        assert surface.getpixel((25, 50))[:3] == (0, 255, 0)
        assert surface.getpixel((75, 50)) == (0, 0, 0, 255)

    def test_prefetched_video_frame(self):
        cache = FrameCache()
        cache.put("clip.mp4", 7, Image.new("RGB", (8, 8), (0, 255, 0)))
        clip = Clip(id="v", type="mask", src="clip.mp4", width=100, height=100)
        surface, skipped = _frame(clip, frame_index=7, frame_cache=cache)
        assert skipped == []
        assert surface.getpixel((50, 50)) == (0, 255, 0, 255)

    def test_video_mask_seeks_without_shared_media(self, source_video):
        clip = Clip(id="v", type="mask", src=str(source_video), media_type="video",
                    media_start=2.0, width=100, height=100)
        surface, skipped = _frame(clip, time=1.0)
        assert skipped == []
        r, _, b, _ = surface.getpixel((50, 50))
        assert b > 200 and r < 50

    def test_icon(self):
        svg = (b'<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 10 10">'
               b'<rect width="10" height="10" fill="#00ff00"/></svg>')
        clip = Clip(id="i", type="icon", src=to_data_uri(svg, "image/svg+xml"),
                    width=100, height=100)
        surface, _ = _frame(clip)
        assert surface.getpixel((50, 50)) == (0, 255, 0, 255)

    def test_text(self):
        clip = Clip(id="t", type="text", text="Hi", font_size=60, color="#ffffff",
                    width=100, height=100)
        surface, _ = _frame(clip)
        assert np.asarray(surface)[..., :3].max() > 0
