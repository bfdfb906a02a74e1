"""Tests for svgclip.frames: prefetch planning, batching and extractors."""

import io

import pytest
import requests
from PIL import Image

from svgclip.common import to_data_uri
from svgclip.errors import CollaboratorError, ExportCancelled
from svgclip.export import CancelToken
from svgclip.frames import (
    FrameCache,
    HttpFrameExtractor,
    LocalFrameExtractor,
    plan_frame_requests,
    prefetch_video_frames,
    total_frames,
)
from svgclip.model import Clip, Timeline, Track


def _video(clip_id, src="clip.mp4", **kwargs):
    return Clip(id=clip_id, type="mask", src=src, width=10, height=10, **kwargs)


def _tracks(*clips):
    return Timeline(tuple(Track(f"track-{i}", clips=(c,)) for i, c in enumerate(clips)))


def _png_uri(color=(255, 0, 0)):
    buf = io.BytesIO()
    Image.new("RGB", (2, 2), color).save(buf, format="PNG")
    return to_data_uri(buf.getvalue(), "image/png")


class RecordingExtractor:
    """Returns a solid frame per timestamp and records every call."""

    def __init__(self, fail_on=()):
        self.calls = []
        self.fail_on = set(fail_on)

    def extract(self, source, timestamps, fps, size=None):
        self.calls.append((source, list(timestamps), size))
        if source in self.fail_on:
            raise CollaboratorError("extract_frames", "boom")
        return [Image.new("RGBA", (2, 2), (0, 0, 255, 255)) for _ in timestamps]


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._payload = payload
        self.text = text
        self.reason = "Internal Server Error" if status_code >= 500 else "OK"

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        if self.error is not None:
            raise self.error
        return self.response


# ── Planning ───────────────────────────────────────────────────────

class TestPlanFrameRequests:
    def test_total_frames(self):
        assert total_frames(2.5, 10) == 25
        assert total_frames(0.01, 30) == 1

    def test_timestamps_follow_media_start(self):
        tracks = _tracks(_video("v", start=0.5, duration=0.5, media_start=2.0))
        (request,) = plan_frame_requests(tracks, fps=10, duration=1.0)
        assert request.source == "clip.mp4"
        assert request.timestamps == [2.0, 2.1, 2.2, 2.3, 2.4]
        assert request.frame_indices[2.0] == [5]

    def test_repeated_timestamps_deduplicated(self):
        tracks = _tracks(_video("a", start=0, duration=1), _video("b", start=1, duration=1))
        (request,) = plan_frame_requests(tracks, fps=10, duration=2.0)
        assert len(request.timestamps) == 10
        assert request.frame_indices[0.3] == [3, 13]

    def test_images_excluded(self):
        tracks = _tracks(_video("i", src="photo.png"), Clip(id="t", type="text"))
        assert plan_frame_requests(tracks, fps=10, duration=1.0) == []

    def test_media_type_marks_video(self):
        tracks = _tracks(_video("v", src="blob-1", media_type="video", duration=0.2))
        (request,) = plan_frame_requests(tracks.tracks, fps=10, duration=0.2)
        assert request.timestamps == [0.0, 0.1]


# ── Prefetch ───────────────────────────────────────────────────────

class TestPrefetch:
    def test_batches(self):
        extractor = RecordingExtractor()
        cache = prefetch_video_frames(_tracks(_video("v", duration=2.5)), 10, 2.5,
                                      extractor, batch_size=10)
        assert [len(ts) for _, ts, _ in extractor.calls] == [10, 10, 5]
        assert len(cache) == 25
        assert ("clip.mp4", 24) in cache

    def test_size_forwarded(self):
        extractor = RecordingExtractor()
        prefetch_video_frames(_tracks(_video("v", duration=0.1)), 10, 0.1,
                              extractor, size="640x360")
        assert extractor.calls[0][2] == "640x360"

    def test_failing_source_isolated(self):
        extractor = RecordingExtractor(fail_on={"bad.mp4"})
        tracks = _tracks(_video("bad", src="bad.mp4", duration=0.5),
                         _video("good", src="good.mp4", duration=0.5))
        cache = prefetch_video_frames(tracks, 10, 0.5, extractor, batch_size=2)
        assert set(cache.failed_sources) == {"bad.mp4"}
        assert "boom" in cache.failed_sources["bad.mp4"]
        assert cache.get("good.mp4", 4) is not None
        assert cache.get("bad.mp4", 0) is None
        # Remaining batches of a failed source are not attempted.
        assert sum(1 for src, _, _ in extractor.calls if src == "bad.mp4") == 1

    def test_cancelled(self):
        token = CancelToken()
        token.cancel()
        with pytest.raises(ExportCancelled):
            prefetch_video_frames(_tracks(_video("v")), 10, 1.0, RecordingExtractor(),
                                  cancel=token)

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError, match="batch_size"):
            prefetch_video_frames(_tracks(), 10, 1.0, RecordingExtractor(), batch_size=0)


class TestFrameCache:
    def test_put_get(self):
        cache = FrameCache()
        image = Image.new("RGBA", (1, 1))
        cache.put("a.mp4", 3, image)
        assert cache.get("a.mp4", 3) is image
        assert cache.get("a.mp4", 4) is None
        assert ("a.mp4", 3) in cache
        assert len(cache) == 1


# ── Extractors ─────────────────────────────────────────────────────

class TestHttpFrameExtractor:
    def test_success(self):
        session = FakeSession(FakeResponse(payload={"images": [_png_uri(), _png_uri((0, 255, 0))]}))
        extractor = HttpFrameExtractor("http://svc/extract", timeout=5, session=session)
        frames = extractor.extract("http://cdn/v.mp4", [0.0, 0.5], 30, size="64x36")
        assert [f.getpixel((0, 0)) for f in frames] == [(255, 0, 0, 255), (0, 255, 0, 255)]
        url, payload, timeout = session.posts[0]
        assert url == "http://svc/extract"
        assert payload == {"videoPath": "http://cdn/v.mp4", "timestamps": [0.0, 0.5],
                           "fps": 30, "size": "64x36"}
        assert timeout == 5

    def test_count_mismatch(self):
        session = FakeSession(FakeResponse(payload={"images": [_png_uri()]}))
        with pytest.raises(CollaboratorError, match="expected 2 frames, got 1"):
            HttpFrameExtractor("http://svc", session=session).extract("v.mp4", [0, 1], 30)

    def test_http_error_uses_error_field(self):
        session = FakeSession(FakeResponse(500, payload={"error": "decoder crashed"}))
        with pytest.raises(CollaboratorError, match="HTTP 500: decoder crashed") as exc_info:
            HttpFrameExtractor("http://svc", session=session).extract("v.mp4", [0], 30)
        assert exc_info.value.service == "extract_frames"

    def test_http_error_text(self):
        session = FakeSession(FakeResponse(502, text="bad gateway"))
        with pytest.raises(CollaboratorError, match="HTTP 502: bad gateway"):
            HttpFrameExtractor("http://svc", session=session).extract("v.mp4", [0], 30)

    def test_transport_error(self):
        session = FakeSession(error=requests.ConnectionError("refused"))
        with pytest.raises(CollaboratorError, match="request failed"):
            HttpFrameExtractor("http://svc", session=session).extract("v.mp4", [0], 30)

    def test_malformed_response(self):
        session = FakeSession(FakeResponse(payload={"frames": []}))
        with pytest.raises(CollaboratorError, match="malformed response"):
            HttpFrameExtractor("http://svc", session=session).extract("v.mp4", [0], 30)


class TestLocalFrameExtractor:
    def test_extracts_frames(self, source_video):
        frames = LocalFrameExtractor().extract(str(source_video), [0.0, 1.0], 10)
        assert len(frames) == 2
        assert frames[0].size == (320, 240)
        r, _, b, _ = frames[1].getpixel((160, 120))
        assert b > 200 and r < 50

    def test_resized(self, source_video):
        (frame,) = LocalFrameExtractor().extract(str(source_video), [0.5], 10, size="160x120")
        assert frame.size == (160, 120)

    def test_relative_to_base(self, source_video):
        extractor = LocalFrameExtractor(base=source_video.parent)
        (frame,) = extractor.extract(source_video.name, [0.0], 10)
        assert frame.size == (320, 240)

    def test_missing_source(self, tmp_path):
        with pytest.raises(CollaboratorError, match="cannot read"):
            LocalFrameExtractor().extract(str(tmp_path / "nope.mp4"), [0.0], 10)

    def test_prefetch_end_to_end(self, source_video):
        tracks = _tracks(_video("v", src=str(source_video), duration=0.3))
        cache = prefetch_video_frames(tracks, 10, 0.3, LocalFrameExtractor())
        assert cache.failed_sources == {}
        assert len(cache) == 3
