"""
Unit tests for the job record and its status transitions.
"""

from datetime import datetime, timezone

import pytest

from video_screener.errors import InvalidTransitionError
from video_screener.models import (
    JobStatus,
    SensitivityFlag,
    VideoJob,
    VideoMetadata,
    Verdict,
    ensure_transition,
)


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------

class TestTransitions:
    """Jobs only move forward: pending -> processing -> completed/failed."""

    @pytest.mark.parametrize("current,new", [
        (JobStatus.PENDING, JobStatus.PROCESSING),
        (JobStatus.PROCESSING, JobStatus.COMPLETED),
        (JobStatus.PROCESSING, JobStatus.FAILED),
    ])
    def test_forward_moves_are_allowed(self, current, new):
        ensure_transition(current, new)

    @pytest.mark.parametrize("current,new", [
        (JobStatus.PENDING, JobStatus.COMPLETED),
        (JobStatus.PENDING, JobStatus.FAILED),
        (JobStatus.PROCESSING, JobStatus.PENDING),
        (JobStatus.COMPLETED, JobStatus.PROCESSING),
        (JobStatus.FAILED, JobStatus.PROCESSING),
        (JobStatus.COMPLETED, JobStatus.FAILED),
    ])
    def test_other_moves_are_rejected(self, current, new):
        with pytest.raises(InvalidTransitionError):
            ensure_transition(current, new)

    def test_accepts_plain_strings(self):
        """Values read back from a store may be plain strings."""
        ensure_transition("pending", "processing")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class TestVideoMetadata:

    def test_resolution_formats_width_by_height(self):
        assert VideoMetadata(width=1280, height=720).resolution == "1280x720"

    def test_resolution_unknown_without_dimensions(self):
        assert VideoMetadata(width=1280).resolution == "unknown"

    def test_from_dict_of_empty_value_is_none(self):
        assert VideoMetadata.from_dict(None) is None
        assert VideoMetadata.from_dict({}) is None


class TestVideoJob:

    def test_new_job_is_pending(self):
        job = VideoJob(id="job-1", path="/videos/a.mp4")

        assert job.status == JobStatus.PENDING
        assert job.sensitivity_flag == SensitivityFlag.PENDING
        assert job.process_progress == 0
        assert not job.is_terminal

    def test_coerces_strings_and_metadata_dict(self):
        """Rows loaded from a store arrive as plain values."""
        job = VideoJob(
            id="job-1",
            path="/videos/a.mp4",
            status="completed",
            sensitivity_flag="flagged",
            metadata={"duration": 3.5, "width": 640, "height": 480, "codec": "h264"},
        )

        assert job.status is JobStatus.COMPLETED
        assert job.sensitivity_flag is SensitivityFlag.FLAGGED
        assert job.metadata.resolution == "640x480"
        assert job.is_terminal

    def test_to_dict_uses_camel_case_and_hides_path(self):
        processed = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        job = VideoJob(id="job-1", path="/secret/a.mp4", title="Demo", size_bytes=10,
                       processed_at=processed)

        data = job.to_dict()

        assert data["processProgress"] == 0
        assert data["sensitivityFlag"] == "pending"
        assert data["processedAt"] == processed.isoformat()
        assert data["size"] == 10
        assert "path" not in data


class TestVerdict:

    def test_is_mock_reads_details(self):
        assert Verdict(SensitivityFlag.SAFE, 0.8, details={"mock": True}).is_mock
        assert not Verdict(SensitivityFlag.SAFE, 0.8).is_mock
