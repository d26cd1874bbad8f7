"""Tests for the drop-oldest FrameQueue."""

import threading

import numpy as np
import pytest

from conftest import project_all
from monovo import (
    BootstrapConfig,
    CameraModel,
    EstimationStatus,
    Features,
    FrameQueue,
    MonocularVisualOdometry,
    OdometryConfig,
    PointModel,
)


@pytest.fixture
def odometry(camera: CameraModel, model: PointModel) -> MonocularVisualOdometry:
    config = OdometryConfig(
        bootstrap=BootstrapConfig(assume_index_alignment=True), random_seed=0
    )
    return MonocularVisualOdometry(camera, model, config=config)


class TestFrameQueue:
    """Test suite for FrameQueue."""

    def test_drops_oldest_when_full(self, odometry: MonocularVisualOdometry):
        """Only the newest frame survives a burst into a size-one queue."""
        queue = FrameQueue(odometry, maxsize=1)
        for ts in (1, 2, 3):
            queue.submit_features(Features.empty(), ts)

        assert queue.num_dropped == 2
        assert queue.num_pending == 1

        results = queue.process_pending()

        assert [r.timestamp_ns for r in results] == [3]
        assert queue.num_processed == 1
        assert queue.num_pending == 0

    def test_processes_in_order(self, odometry: MonocularVisualOdometry):
        """Queued frames are processed oldest first."""
        queue = FrameQueue(odometry, maxsize=5)
        for ts in (10, 20, 30):
            queue.submit_features(Features.empty(), ts)

        results = queue.process_pending()

        assert [r.timestamp_ns for r in results] == [10, 20, 30]
        assert [r.frame_id for r in results] == [0, 1, 2]
        assert queue.num_dropped == 0

    def test_default_size_from_config(self, odometry: MonocularVisualOdometry):
        """The queue size defaults to the odometry config."""
        queue = FrameQueue(odometry)
        queue.submit_features(Features.empty(), 1)
        queue.submit_features(Features.empty(), 2)
        assert queue.num_dropped == odometry.config.queue_size

    def test_background_worker(
        self,
        odometry: MonocularVisualOdometry,
        camera: CameraModel,
        model: PointModel,
        true_pose,
    ):
        """The worker thread processes frames and reports them."""
        done = threading.Event()
        results = []

        def on_frame(frame):
            results.append(frame)
            done.set()

        queue = FrameQueue(odometry, maxsize=1, on_frame=on_frame)
        queue.start()
        try:
            assert queue.is_running
            queue.submit_features(project_all(camera, model, true_pose), 42)
            assert done.wait(timeout=10.0)
        finally:
            queue.stop()

        assert not queue.is_running
        assert results[0].timestamp_ns == 42
        assert results[0].status == EstimationStatus.OK

    def test_worker_survives_failing_frame(self, camera: CameraModel, model: PointModel):
        """A frame that raises is skipped and later frames still run."""

        class FlakyDetector:
            def __init__(self):
                self.calls = 0

            def detect(self, image):
                self.calls += 1
                if self.calls == 1:
                    raise RuntimeError("sensor glitch")
                return Features.empty()

        done = threading.Event()
        results = []

        def on_frame(frame):
            results.append(frame)
            done.set()

        odometry = MonocularVisualOdometry(camera, model, detector=FlakyDetector())
        queue = FrameQueue(odometry, maxsize=2, on_frame=on_frame)
        image = np.zeros((480, 640), dtype=np.uint8)
        queue.start()
        try:
            queue.submit_image(image, 1)
            queue.submit_image(image, 2)
            assert done.wait(timeout=10.0)
            assert queue.is_running
        finally:
            queue.stop()

        assert [r.timestamp_ns for r in results] == [2]
        assert queue.num_failed == 1
        assert queue.num_processed == 1
        assert queue.num_pending == 0

    def test_submit_image(self, camera: CameraModel, model: PointModel):
        """Raw images are detected when processed."""

        class BlankDetector:
            def detect(self, image):
                return Features.empty()

        odometry = MonocularVisualOdometry(camera, model, detector=BlankDetector())
        queue = FrameQueue(odometry, maxsize=2)
        queue.submit_image(np.zeros((480, 640), dtype=np.uint8), 5)

        (result,) = queue.process_pending()

        assert result.status == EstimationStatus.NO_CORRESPONDENCES
        assert result.num_features == 0
