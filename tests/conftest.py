"""
Shared fixtures for the unit tests.

Nothing here touches the network, ffmpeg or a database: probing and frame
capture are replaced by fakes that produce real JPEG files with Pillow.
"""

import io
import os

import pytest
from PIL import Image

from video_screener.broadcast import ProgressBroadcaster
from video_screener.config import WorkerConfig
from video_screener.errors import ClassificationError
from video_screener.models import ClassificationResult
from video_screener.orchestrator import PipelineOrchestrator
from video_screener.pipeline.classifier import ClassifierAvailability, MockClassifier
from video_screener.pipeline.frames import FrameSampler
from video_screener.pipeline.metadata import MetadataExtractor
from video_screener.processor import SensitivityAnalyzer


def make_jpeg(color=(40, 90, 160), size=(16, 12)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="JPEG")
    return buffer.getvalue()


def probe_payload(duration="12.0", width=1920, height=1080, frame_rate="30000/1001",
                  codec="h264", bit_rate="4000000", with_video=True):
    streams = [{"codec_type": "audio", "codec_name": "aac"}]
    if with_video:
        streams.append({
            "codec_type": "video",
            "codec_name": codec,
            "width": width,
            "height": height,
            "r_frame_rate": frame_rate,
        })
    return {"streams": streams, "format": {"duration": duration, "bit_rate": bit_rate}}


class FakeProbe:
    """Stands in for ffmpeg.probe; returns a payload or raises"""

    def __init__(self, payload=None, error=None):
        self.payload = payload if payload is not None else probe_payload()
        self.error = error
        self.calls = []

    def __call__(self, video_path, timeout=None):
        self.calls.append((video_path, timeout))
        if self.error is not None:
            raise self.error
        return self.payload


class FakeCapture:
    """Stands in for capture_frame; writes a small JPEG per call"""

    def __init__(self, error=None, skip_indices=()):
        self.error = error
        self.skip_indices = set(skip_indices)
        self.calls = []

    def __call__(self, video_path, timestamp, frame_path, width, height, timeout):
        self.calls.append({
            "timestamp": timestamp,
            "frame_path": frame_path,
            "size": (width, height),
            "timeout": timeout,
        })
        if self.error is not None:
            raise self.error
        if len(self.calls) in self.skip_indices:
            return
        with open(frame_path, "wb") as frame_file:
            frame_file.write(make_jpeg())


class FakeClassifier:
    """Returns queued results in order; an Exception entry is raised instead"""

    model = "fake/nsfw-model"

    def __init__(self, results):
        self.results = list(results)
        self.calls = 0

    def classify(self, image):
        self.calls += 1
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FixedRandom:
    """Deterministic replacement for random.Random with scripted values"""

    def __init__(self, *values):
        self.values = list(values)

    def random(self):
        return self.values.pop(0)


class RecordingListener:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    @property
    def messages(self):
        return [event.to_message() for event in self.events]

    @property
    def progress_values(self):
        return [event.progress for event in self.events if event.event == "progress"]

    @property
    def terminal_events(self):
        return [event for event in self.events if event.event in ("completed", "failed")]


def result(nsfw, normal=None):
    return ClassificationResult(nsfw_score=nsfw, normal_score=1 - nsfw if normal is None else normal)


def failure(message="classifier unreachable"):
    return ClassificationError(message)


@pytest.fixture
def config(tmp_path):
    return WorkerConfig(
        DATA_DIR=str(tmp_path / "data"),
        CLASSIFIER_DELAY_MS=0,
        MOCK_STEP_DELAY_MS=0,
        ENABLE_HTTP_SERVER=False,
    )


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(bytes(range(256)) * 4)
    return str(path)


@pytest.fixture
def broadcaster():
    return ProgressBroadcaster()


@pytest.fixture
def listener():
    return RecordingListener()


def frames_dir(config, job_id):
    return os.path.join(config.DATA_DIR, "frames", job_id)


def make_orchestrator(config, store, broadcaster, probe=None):
    """Real pipeline wired to fakes; the classifier is unconfigured so jobs use the mock path"""
    extractor = MetadataExtractor(probe_fn=probe or FakeProbe())
    analyzer = SensitivityAnalyzer(
        config,
        FrameSampler(config.DATA_DIR, extractor=extractor, capture_fn=FakeCapture()),
        ClassifierAvailability.unavailable("no key"),
        mock=MockClassifier(rng=FixedRandom(*[0.9, 0.5] * 20)),
        sleep=lambda seconds: None,
    )
    return PipelineOrchestrator(store, broadcaster, extractor, analyzer)
