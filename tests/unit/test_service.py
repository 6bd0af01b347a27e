"""
Unit tests for the worker service and its dispatch pool.
"""

import threading
from concurrent.futures import CancelledError

import pytest

from conftest import make_orchestrator
from video_screener.adapters.memory_adapter import InMemoryJobStore
from video_screener.models import JobStatus, VideoJob
from video_screener.service import WorkerService, build_orchestrator


class BlockingOrchestrator:
    """Holds every run until released"""

    def __init__(self):
        self.store = None
        self.closed = False
        self.store_open_after_run = None
        self.release = threading.Event()
        self.started = threading.Event()
        self.runs = []

    def run(self, video_path, job_id):
        self.runs.append(job_id)
        self.started.set()
        self.release.wait(5)
        if self.store is not None:
            self.store_open_after_run = not self.store.closed

    def get_stats(self):
        return {}

    def close(self):
        self.closed = True


class ClosableStore(InMemoryJobStore):
    def __init__(self):
        super().__init__()
        self.closed = False

    def close(self):
        self.closed = True


@pytest.fixture
def service(config, broadcaster):
    store = InMemoryJobStore()
    service = WorkerService(
        config,
        store=store,
        broadcaster=broadcaster,
        orchestrator=make_orchestrator(config, store, broadcaster),
    )
    service.initialize()
    yield service
    service.stop()


class TestSubmitUpload:

    def test_returns_pending_job_and_processes_in_background(self, service, video_file):
        job = service.submit_upload(video_file, title="Clip")

        assert job.status == JobStatus.PENDING
        assert job.title == "Clip"
        assert job.size_bytes == 1024
        assert job.mime_type == "video/mp4"

        service.executor.shutdown(wait=True)
        stored = service.store.find_by_id(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.process_progress == 100

    def test_title_defaults_to_file_name(self, service, video_file):
        assert service.submit_upload(video_file).title == "clip.mp4"

    def test_missing_file_is_rejected(self, service, tmp_path):
        with pytest.raises(FileNotFoundError):
            service.submit_upload(str(tmp_path / "missing.mp4"))

        assert service.store.get_stats()["totalVideos"] == 0


class TestDispatch:

    def make_service(self, config, orchestrator):
        config.MAX_CONCURRENT_JOBS = 1
        service = WorkerService(config, store=InMemoryJobStore(), orchestrator=orchestrator)
        service.initialize()
        return service

    def test_duplicate_dispatch_returns_existing_future(self, config):
        orchestrator = BlockingOrchestrator()
        service = self.make_service(config, orchestrator)
        try:
            first = service.dispatch("/videos/a.mp4", "job-1")
            second = service.dispatch("/videos/a.mp4", "job-1")

            assert first is second
            assert service.inflight_jobs() == ["job-1"]
        finally:
            orchestrator.release.set()
            service.stop()

        assert orchestrator.runs == ["job-1"]
        assert service.inflight_jobs() == []

    def test_queued_job_can_be_cancelled(self, config):
        orchestrator = BlockingOrchestrator()
        service = self.make_service(config, orchestrator)
        try:
            service.dispatch("/videos/a.mp4", "job-1")
            assert orchestrator.started.wait(5)
            service.dispatch("/videos/b.mp4", "job-2")

            assert service.cancel("job-2") is True
            assert service.cancel("job-1") is False
            assert service.inflight_jobs() == ["job-1"]
        finally:
            orchestrator.release.set()
            service.stop()

        assert orchestrator.runs == ["job-1"]

    def test_rejected_run_surfaces_on_the_future(self, config, video_file):
        """A pipeline error is logged by the done callback and left on the future."""
        store = InMemoryJobStore()
        service = WorkerService(config, store=store)
        service.initialize()
        store.create(VideoJob(id="done", path=video_file, status=JobStatus.COMPLETED))
        try:
            future = service.dispatch(video_file, "done")
            assert future.exception(timeout=5) is not None
        finally:
            service.stop()

    def test_dispatch_requires_initialize(self, config):
        with pytest.raises(RuntimeError):
            WorkerService(config, store=InMemoryJobStore()).dispatch("/videos/a.mp4", "job-1")


class TestBuildOrchestrator:

    def test_without_key_uses_mock_path(self, config, broadcaster):
        config.HUGGINGFACE_API_KEY = ""

        orchestrator = build_orchestrator(config, InMemoryJobStore(), broadcaster)

        assert not orchestrator.analyzer.availability.available
        assert orchestrator.analyzer.classifier is None

    def test_with_key_builds_client(self, config, broadcaster):
        config.HUGGINGFACE_API_KEY = "hf_real_key"

        orchestrator = build_orchestrator(config, InMemoryJobStore(), broadcaster)

        assert orchestrator.analyzer.classifier.url.endswith(config.CLASSIFIER_MODEL)
        assert orchestrator.analyzer.sampler.width == 640
        orchestrator.close()
        assert orchestrator.analyzer.classifier._client.is_closed


class TestShutdown:

    def make_service(self, config):
        config.MAX_CONCURRENT_JOBS = 1
        orchestrator = BlockingOrchestrator()
        store = ClosableStore()
        orchestrator.store = store
        service = WorkerService(config, store=store, orchestrator=orchestrator)
        service.initialize()
        return service, orchestrator, store

    def test_stop_drains_running_job_before_closing_store(self, config):
        service, orchestrator, store = self.make_service(config)
        service.dispatch("/videos/a.mp4", "job-1")
        assert orchestrator.started.wait(5)
        queued = service.dispatch("/videos/b.mp4", "job-2")

        stopper = threading.Thread(target=service.stop)
        stopper.start()
        try:
            with pytest.raises(CancelledError):
                queued.result(timeout=5)
            assert not store.closed
        finally:
            orchestrator.release.set()
            stopper.join(5)

        assert not stopper.is_alive()
        assert orchestrator.runs == ["job-1"]
        assert orchestrator.store_open_after_run is True
        assert store.closed
        assert orchestrator.closed

    def test_request_stop_only_wakes_start(self, config):
        service, orchestrator, store = self.make_service(config)
        try:
            service.dispatch("/videos/a.mp4", "job-1")
            assert orchestrator.started.wait(5)

            service.request_stop()

            assert service._stopped.is_set()
            assert not service.running
            assert not store.closed
            assert service.executor is not None
        finally:
            orchestrator.release.set()
            service.stop()

        assert orchestrator.store_open_after_run is True


class TestStats:

    def test_stats_include_orchestrator(self, service):
        stats = service.get_stats()

        assert stats["config"]["store_type"] == "memory"
        assert stats["orchestrator"]["jobs_completed"] == 0
        assert stats["inflight_jobs"] == []
