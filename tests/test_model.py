"""Tests for svgclip.model: clips, tracks, timeline edits and JSON interchange."""

import pytest

from svgclip.model import (
    Clip,
    ClipFilter,
    CropWindow,
    ElementOverride,
    Project,
    ShapeDescriptor,
    Timeline,
    Track,
    active_clips,
    clip_from_dict,
    clip_to_dict,
    parse_flag,
    read_project,
    source_time,
    write_project,
)


def _clip(clip_id, **kwargs):
    kwargs.setdefault("type", "shape")
    return Clip(id=clip_id, **kwargs)


class TestClipValidation:
    def test_invalid_type(self):
        with pytest.raises(ValueError, match="invalid type"):
            _clip("a", type="video")

    def test_zero_duration(self):
        with pytest.raises(ValueError, match="duration must be > 0"):
            _clip("a", duration=0)

    def test_opacity_range(self):
        with pytest.raises(ValueError, match="opacity"):
            _clip("a", opacity=1.5)

    def test_negative_size(self):
        with pytest.raises(ValueError, match="size"):
            _clip("a", width=-1)

    def test_crop_needs_positive_size(self):
        with pytest.raises(ValueError, match="positive size"):
            CropWindow(width=0)

    def test_shape_kind(self):
        with pytest.raises(ValueError, match="invalid kind"):
            ShapeDescriptor(id="s", kind="star", d="")


class TestClipTiming:
    def test_half_open_interval(self):
        clip = _clip("a", start=1, duration=2)
        assert not clip.is_active(0.5)
        assert clip.is_active(1)
        assert clip.is_active(2.999)
        assert not clip.is_active(3)

    def test_source_time(self):
        clip = _clip("v", type="mask", start=0, duration=10, media_start=2, src="a.mp4")
        assert source_time(clip, 3) == 5.0

    def test_source_time_with_offset_start(self):
        clip = _clip("v", type="mask", start=4, duration=10, media_start=1)
        assert source_time(clip, 6) == 3.0


class TestClipProperties:
    def test_is_video(self):
        assert _clip("a", type="mask", src="media/clip.MP4?token=1").is_video
        assert _clip("a", type="mask", src="data:video/mp4;base64,AAAA").is_video
        assert _clip("a", type="mask", src="photo.png", media_type="video").is_video
        assert not _clip("a", type="mask", src="photo.png").is_video
        assert not _clip("a", type="mask").is_video

    def test_view_box_fallback(self):
        assert _clip("a").view_box_values() == (0, 0, 100, 100)
        assert _clip("a", view_box="0 0 0 10").view_box_values() == (0, 0, 100, 100)
        assert _clip("a", view_box="0 0 abc 10").view_box_values() == (0, 0, 100, 100)
        assert _clip("a", view_box="5,5,20,10").view_box_values() == (5, 5, 20, 10)

    def test_center(self):
        assert _clip("a", x=10, y=20, width=100, height=50).center == (60, 45)

    def test_filter_neutral(self):
        assert ClipFilter().is_neutral
        assert not ClipFilter(blur=2).is_neutral


class TestActiveClips:
    def test_back_track_first(self):
        front = _clip("front", start=0, duration=5)
        back = _clip("back", start=0, duration=5)
        tracks = [Track("t0", clips=(front,)), Track("t1", clips=(back,))]
        assert [c.id for _, c in active_clips(tracks, 2)] == ["back", "front"]

    def test_inactive_excluded(self):
        tracks = [Track("t0", clips=(_clip("a", start=5, duration=1),))]
        assert active_clips(tracks, 2) == []


class TestTimeline:
    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValueError, match="Duplicate clip id"):
            Timeline((Track("t0", clips=(_clip("a"),)), Track("t1", clips=(_clip("a"),))))

    def test_from_clips_one_track_each(self):
        timeline = Timeline.from_clips([_clip("a"), _clip("b", type="text")])
        assert [t.id for t in timeline.tracks] == ["track-0", "track-1"]
        assert timeline.tracks[1].type == "text"
        assert timeline.find_clip("b").track_id == "track-1"

    def test_duration(self):
        timeline = Timeline.from_clips([_clip("a", duration=3), _clip("b", start=2, duration=4)])
        assert timeline.duration == 6
        assert Timeline().duration == 0.0

    def test_add_mask_gets_default_shape(self):
        timeline = Timeline((Track("t0"),))
        timeline = timeline.add_clip("t0", _clip("m", type="mask", width=300, height=150))
        clip = timeline.find_clip("m")
        assert clip.view_box == "0 0 300 150"
        assert clip.shapes[0].editor_kind == "rect"
        assert clip.shapes[0].d == "M 0 0 L 300 0 L 300 150 L 0 150 Z"

    def test_edits_return_new_snapshot(self):
        original = Timeline.from_clips([_clip("a", x=1)])
        edited = original.update_clip("a", x=50)
        assert original.find_clip("a").x == 1
        assert edited.find_clip("a").x == 50

    def test_update_unknown_is_noop(self):
        timeline = Timeline.from_clips([_clip("a")])
        assert timeline.update_clip("zzz", x=5) == timeline

    def test_remove_clip(self):
        timeline = Timeline.from_clips([_clip("a"), _clip("b")]).remove_clip("a")
        assert [c.id for c in timeline.clips()] == ["b"]

    def test_move_clip(self):
        timeline = Timeline.from_clips([_clip("a"), _clip("b")])
        moved = timeline.move_clip("a", "track-1", start=3)
        assert moved.tracks[0].clips == ()
        assert [c.id for c in moved.tracks[1].clips] == ["b", "a"]
        assert moved.find_clip("a").start == 3
        assert moved.find_clip("a").track_id == "track-1"

    def test_add_track_front_by_default(self):
        timeline = Timeline.from_clips([_clip("a")]).add_track("text")
        assert timeline.tracks[0].type == "text"
        assert timeline.tracks[0].id.startswith("text-1-")
        assert timeline.tracks[1].id == "track-0"

    def test_unknown_track(self):
        with pytest.raises(ValueError, match="Unknown track"):
            Timeline().track_index("nope")

    def test_swap_track_contents(self):
        timeline = Timeline.from_clips([_clip("a"), _clip("b")])
        swapped = timeline.swap_track_contents("track-0", "track-1")
        assert swapped.tracks[0].clips[0].id == "b"
        assert swapped.tracks[0].clips[0].track_id == "track-0"
        assert swapped.tracks[1].clips[0].id == "a"


class TestJsonInterchange:
    def test_clip_round_trip(self):
        clip = Clip(
            id="m1", type="mask", x=10, y=20, width=200, height=100,
            src="clip.mp4", media_start=1.5, view_box="0 0 200 100",
            crop=CropWindow(x=10, y=5, width=50, height=50, shape="circle"),
            filter=ClipFilter(brightness=1.2),
            shapes=(ShapeDescriptor(id="s1", kind="rect", d="M 0 0 L 10 0 L 10 10 Z",
                                    width=10, height=10, editor_kind="rect",
                                    attributes=(("stroke", "red"),)),),
            overrides=(ElementOverride(id="label", text="Hi", stroke_width=2.0),),
            editor_move=True,
        )
        data = clip_to_dict(clip)
        assert data["mediaStart"] == 1.5
        assert data["mask"]["shape"] == "circle"
        assert data["templateData"]["s1"]["data-shape-type"] == "rect"
        assert data["templateData"]["label"] == {"text": "Hi", "strokeWidth": 2.0}
        assert clip_from_dict(data) == clip

    def test_string_flags(self):
        clip = clip_from_dict({"id": "a", "type": "text", "editor_move": "true",
                               "editor_scale": "false"})
        assert clip.editor_move is True
        assert clip.editor_scale is False

    def test_missing_required_key(self):
        with pytest.raises(ValueError, match="missing required key 'type'"):
            clip_from_dict({"id": "a"})

    def test_parse_flag(self):
        assert parse_flag("TRUE")
        assert not parse_flag("no")
        assert parse_flag(True)

    def test_override_attributes(self):
        override = ElementOverride(id="r", fill="#fff", stroke_width=3.0)
        assert override.svg_attributes() == {"fill": "#fff", "stroke-width": "3.0"}


class TestProjectFile:
    def test_write_read(self, tmp_path):
        project = Project(
            timeline=Timeline.from_clips([_clip("a", duration=4)]),
            canvas_width=1080, canvas_height=1920,
            font_manifest={"Arial": ["a"]},
        )
        path = tmp_path / "project.json"
        write_project(path, project)
        loaded = read_project(path)
        assert loaded.canvas_width == 1080
        assert loaded.duration == 4
        assert loaded.font_manifest == {"Arial": ["a"]}
        assert loaded.timeline == project.timeline

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_project(tmp_path / "nope.json")

    def test_malformed(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError, match="'tracks'"):
            read_project(path)
