"""
Unit tests for frame sampling and the frame archive.
"""

import os
import subprocess

import ffmpeg
import pytest

from conftest import FakeCapture, FakeProbe, frames_dir, probe_payload
from video_screener.errors import ExtractionError, ProbeError
from video_screener.pipeline import frames as frames_module
from video_screener.pipeline.frames import FrameSampler, list_archived_frames, sample_timestamps
from video_screener.pipeline.metadata import MetadataExtractor


class TestSampleTimestamps:

    def test_evenly_spaced_inside_the_video(self):
        assert sample_timestamps(12.0, 5) == [2.0, 4.0, 6.0, 8.0, 10.0]

    def test_never_touches_the_endpoints(self):
        stamps = sample_timestamps(60.0, 3)

        assert stamps[0] > 0
        assert stamps[-1] < 60.0
        assert stamps == sorted(stamps)

    def test_zero_count_gives_nothing(self):
        assert sample_timestamps(10.0, 0) == []

    def test_unknown_duration_samples_the_start(self):
        assert sample_timestamps(0.0, 2) == [0.0, 0.0]


class TestFrameSampler:

    def make_sampler(self, config, capture=None, probe=None):
        return FrameSampler(
            config.DATA_DIR,
            size=(640, 480),
            timeout=7,
            extractor=MetadataExtractor(probe_fn=probe or FakeProbe()),
            capture_fn=capture or FakeCapture(),
        )

    def test_writes_numbered_frames_and_reads_them_back(self, config):
        """Given a 12s video, when 5 frames are extracted, then each is archived 1-indexed."""
        capture = FakeCapture()
        sampler = self.make_sampler(config, capture)

        frames = sampler.extract("/videos/a.mp4", "job-1", n=5, duration=12.0)

        assert [frame.index for frame in frames] == [1, 2, 3, 4, 5]
        assert [frame.timestamp for frame in frames] == [2.0, 4.0, 6.0, 8.0, 10.0]
        for frame in frames:
            assert frame.path == os.path.join(frames_dir(config, "job-1"), f"frame-{frame.index}.jpg")
            assert frame.data.startswith(b"\xff\xd8")
        assert capture.calls[0]["size"] == (640, 480)
        assert capture.calls[0]["timeout"] == 7

    def test_probes_when_duration_unknown(self, config):
        probe = FakeProbe(probe_payload(duration="30.0"))
        sampler = self.make_sampler(config, probe=probe)

        frames = sampler.extract("/videos/a.mp4", "job-1", n=2)

        assert len(probe.calls) == 1
        assert [frame.timestamp for frame in frames] == [10.0, 20.0]

    def test_probe_failure_is_an_extraction_error(self, config):
        probe = FakeProbe(error=ffmpeg.Error("ffprobe", b"", b"bad file"))
        sampler = self.make_sampler(config, probe=probe)

        with pytest.raises(ExtractionError) as excinfo:
            sampler.extract("/videos/a.mp4", "job-1", n=2)
        assert isinstance(excinfo.value.__cause__, ProbeError)

    @pytest.mark.parametrize("error", [
        ffmpeg.Error("ffmpeg", b"", b"Invalid data found"),
        subprocess.TimeoutExpired("ffmpeg", 60),
        FileNotFoundError("ffmpeg"),
    ])
    def test_ffmpeg_failures_raise_extraction_error(self, config, error):
        sampler = self.make_sampler(config, FakeCapture(error=error))

        with pytest.raises(ExtractionError):
            sampler.extract("/videos/a.mp4", "job-1", n=3, duration=9.0)

    def test_missing_frame_file_is_skipped(self, config):
        """A capture that produced no file drops that frame only."""
        sampler = self.make_sampler(config, FakeCapture(skip_indices={2}))

        frames = sampler.extract("/videos/a.mp4", "job-1", n=3, duration=9.0)

        assert [frame.index for frame in frames] == [1, 3]

    def test_corrupt_frame_file_is_skipped(self, config):
        class CorruptCapture(FakeCapture):
            def __call__(self, video_path, timestamp, frame_path, width, height, timeout):
                with open(frame_path, "wb") as frame_file:
                    frame_file.write(b"not a jpeg")

        sampler = self.make_sampler(config, CorruptCapture())

        assert sampler.extract("/videos/a.mp4", "job-1", n=2, duration=4.0) == []

    def test_unreadable_frame_after_validation_is_an_extraction_error(self, config, monkeypatch):
        """A frame removed between validation and read-back fails the extraction."""
        monkeypatch.setattr(frames_module, "validate_frame_file", lambda frame_path: True)
        sampler = self.make_sampler(config, FakeCapture(skip_indices={1}))

        with pytest.raises(ExtractionError, match="Could not read frame 1") as excinfo:
            sampler.extract("/videos/a.mp4", "job-1", n=2, duration=4.0)
        assert isinstance(excinfo.value.__cause__, OSError)


class TestListArchivedFrames:

    def test_lists_frames_in_numeric_order(self, config):
        sampler = FrameSampler(config.DATA_DIR, capture_fn=FakeCapture(),
                               extractor=MetadataExtractor(probe_fn=FakeProbe()))
        sampler.extract("/videos/a.mp4", "job-1", n=11, duration=24.0)

        entries = list_archived_frames(config.DATA_DIR, "job-1")

        assert [entry["filename"] for entry in entries][:3] == ["frame-1.jpg", "frame-2.jpg", "frame-3.jpg"]
        assert entries[-1]["filename"] == "frame-11.jpg"
        assert [entry["id"] for entry in entries] == list(range(1, 12))
        assert entries[0]["data"].startswith("data:image/jpeg;base64,")

    def test_unknown_job_has_no_frames(self, config):
        assert list_archived_frames(config.DATA_DIR, "missing") == []
        assert not os.path.exists(frames_dir(config, "missing"))
