"""Tests for the MonocularVisualOdometry state machine."""

from pathlib import Path

import numpy as np
import pytest

from conftest import make_pose, project_all, project_visible
from monovo import (
    SE3,
    BootstrapConfig,
    CameraModel,
    EstimationStatus,
    Features,
    ModelLoadError,
    MonocularVisualOdometry,
    OdometryConfig,
    PointModel,
    TrackingState,
)


class RecordingSink:
    """Pose sink that remembers every call."""

    def __init__(self):
        self.calls: list[tuple[SE3, int]] = []

    def __call__(self, pose: SE3, timestamp_ns: int) -> None:
        self.calls.append((pose, timestamp_ns))


class FixedDetector:
    """Detector stub returning preset features for any image."""

    def __init__(self, features: Features):
        self.features = features
        self.images = 0

    def detect(self, image: np.ndarray) -> Features:
        self.images += 1
        return self.features


@pytest.fixture
def config() -> OdometryConfig:
    return OdometryConfig(
        bootstrap=BootstrapConfig(min_inliers=10, assume_index_alignment=True),
        random_seed=0,
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def odometry(
    camera: CameraModel, model: PointModel, config: OdometryConfig, sink: RecordingSink
) -> MonocularVisualOdometry:
    return MonocularVisualOdometry(camera, model, config=config, pose_sink=sink)


class TestMonocularVisualOdometry:
    """Test suite for MonocularVisualOdometry."""

    def test_initial_state(self, odometry: MonocularVisualOdometry):
        """A new pipeline has no pose and has seen no frames."""
        assert odometry.state == TrackingState.UNINITIALIZED
        assert odometry.current_pose is None
        assert odometry.num_frames == 0
        assert len(odometry.get_trajectory()) == 0

    def test_bootstrap_then_track(
        self,
        odometry: MonocularVisualOdometry,
        camera: CameraModel,
        model: PointModel,
        true_pose: SE3,
        sink: RecordingSink,
    ):
        """The first frame bootstraps and later frames track."""
        first = odometry.process_frame(project_all(camera, model, true_pose), 100)

        assert first.status == EstimationStatus.OK
        assert first.state == TrackingState.TRACKING
        assert first.has_pose
        assert true_pose.translation_distance_to(first.pose) < 1e-4

        moved = make_pose([0.035, -0.02, 0.012], [0.12, -0.05, 0.19])
        second = odometry.process_frame(project_visible(camera, model, moved), 200)

        assert second.status == EstimationStatus.OK
        assert second.state == TrackingState.TRACKING
        assert moved.translation_distance_to(second.pose) < 1e-5
        assert moved.rotation_angle_to(odometry.current_pose) < 1e-5

        assert [ts for _, ts in sink.calls] == [100, 200]
        assert [ts for ts, _ in odometry.get_trajectory()] == [100, 200]
        positions = odometry.get_trajectory_positions()
        np.testing.assert_allclose(positions[1], moved.position, atol=1e-4)

    def test_empty_frame_while_bootstrapping(
        self, odometry: MonocularVisualOdometry, sink: RecordingSink
    ):
        """An empty frame cannot bootstrap and no pose is published."""
        frame = odometry.process_frame(Features.empty(), 1)

        assert frame.status == EstimationStatus.NO_CORRESPONDENCES
        assert frame.state == TrackingState.BOOTSTRAPPING
        assert frame.pose is None
        assert sink.calls == []
        assert odometry.consecutive_failures == 1

    def test_lost_tracking_falls_back_to_bootstrap(
        self,
        odometry: MonocularVisualOdometry,
        camera: CameraModel,
        model: PointModel,
        true_pose: SE3,
        sink: RecordingSink,
    ):
        """Tracking loss invalidates the pose and re-enters bootstrapping."""
        odometry.process_frame(project_all(camera, model, true_pose), 1)

        lost = odometry.process_frame(Features.empty(), 2)

        assert lost.status == EstimationStatus.TRACKING_LOST
        assert lost.state == TrackingState.BOOTSTRAPPING
        assert lost.pose is None
        assert odometry.current_pose is None
        assert len(sink.calls) == 1

        recovered = odometry.process_frame(project_all(camera, model, true_pose), 3)
        assert recovered.status == EstimationStatus.OK
        assert odometry.state == TrackingState.TRACKING
        assert odometry.consecutive_failures == 0

    def test_lost_without_auto_rebootstrap(
        self, camera: CameraModel, model: PointModel, true_pose: SE3, sink: RecordingSink
    ):
        """With auto re-bootstrap disabled the pipeline waits in LOST."""
        config = OdometryConfig(
            bootstrap=BootstrapConfig(assume_index_alignment=True),
            auto_rebootstrap=False,
            random_seed=0,
        )
        odometry = MonocularVisualOdometry(camera, model, config=config, pose_sink=sink)
        features = project_all(camera, model, true_pose)
        odometry.process_frame(features, 1)

        odometry.process_frame(Features.empty(), 2)
        assert odometry.state == TrackingState.LOST

        ignored = odometry.process_frame(features, 3)
        assert ignored.status == EstimationStatus.TRACKING_LOST
        assert ignored.pose is None
        assert odometry.state == TrackingState.LOST

        odometry.request_bootstrap()
        assert odometry.state == TrackingState.BOOTSTRAPPING
        assert odometry.process_frame(features, 4).status == EstimationStatus.OK
        assert [ts for _, ts in sink.calls] == [1, 4]

    def test_initial_pose_skips_bootstrap(
        self, camera: CameraModel, model: PointModel, config: OdometryConfig, true_pose: SE3
    ):
        """A known starting pose goes straight to tracking."""
        odometry = MonocularVisualOdometry(
            camera, model, config=config, initial_pose=true_pose
        )
        assert odometry.state == TrackingState.TRACKING

        frame = odometry.process_frame(project_visible(camera, model, true_pose), 5)

        assert frame.status == EstimationStatus.OK
        assert frame.timing.bootstrap_ms == 0.0
        assert true_pose.translation_distance_to(frame.pose) < 1e-6

    def test_reset(
        self,
        odometry: MonocularVisualOdometry,
        camera: CameraModel,
        model: PointModel,
        true_pose: SE3,
    ):
        """Reset clears the pose, trajectory and frame counter."""
        odometry.process_frame(project_all(camera, model, true_pose), 1)

        odometry.reset()

        assert odometry.state == TrackingState.UNINITIALIZED
        assert odometry.current_pose is None
        assert odometry.num_frames == 0
        assert odometry.get_trajectory_positions().shape == (0, 3)

    def test_current_pose_is_a_copy(
        self,
        odometry: MonocularVisualOdometry,
        camera: CameraModel,
        model: PointModel,
        true_pose: SE3,
    ):
        """Callers cannot mutate the pose in force."""
        odometry.process_frame(project_all(camera, model, true_pose), 1)
        pose = odometry.current_pose
        pose.translation[:] = 100.0
        assert odometry.current_pose.translation[0] != 100.0

    def test_mutating_sink_cannot_corrupt_pose(
        self, camera: CameraModel, model: PointModel, config: OdometryConfig, true_pose: SE3
    ):
        """A sink that edits its argument leaves the pipeline pose intact."""

        def vandal(pose: SE3, timestamp_ns: int) -> None:
            pose.translation[:] = 100.0
            pose.rotation[:] = 0.0

        odometry = MonocularVisualOdometry(camera, model, config=config, pose_sink=vandal)
        first = odometry.process_frame(project_all(camera, model, true_pose), 1)

        assert true_pose.translation_distance_to(odometry.current_pose) < 1e-4
        assert true_pose.translation_distance_to(first.pose) < 1e-4
        _, stored = odometry.get_trajectory()[0]
        assert true_pose.translation_distance_to(stored) < 1e-4

        second = odometry.process_frame(project_visible(camera, model, true_pose), 2)

        assert second.status == EstimationStatus.OK
        assert odometry.state == TrackingState.TRACKING

    def test_process_image_uses_detector(
        self, camera: CameraModel, model: PointModel, config: OdometryConfig, true_pose: SE3
    ):
        """Images are passed through the configured detector."""
        detector = FixedDetector(project_all(camera, model, true_pose))
        odometry = MonocularVisualOdometry(camera, model, config=config, detector=detector)

        frame = odometry.process_image(np.zeros((480, 640), dtype=np.uint8), 7)

        assert detector.images == 1
        assert frame.status == EstimationStatus.OK
        assert frame.num_features == len(model)
        assert frame.timing.total_ms >= frame.timing.detection_ms

    def test_frame_accessors(
        self,
        odometry: MonocularVisualOdometry,
        camera: CameraModel,
        model: PointModel,
        true_pose: SE3,
    ):
        """OdometryFrame exposes the camera pose in the model frame."""
        frame = odometry.process_frame(project_all(camera, model, true_pose), 1)
        np.testing.assert_allclose(
            frame.camera_pose_world.translation, frame.position, atol=1e-12
        )

    def test_from_files(self, tmp_path: Path, model: PointModel):
        """The pipeline can be assembled from calibration, model and config files."""
        (tmp_path / "sensor.yaml").write_text(
            "intrinsics: [500.0, 500.0, 320.0, 240.0]\nresolution: [640, 480]\n"
        )
        np.save(tmp_path / "model.npy", model.points)
        (tmp_path / "config.yaml").write_text(
            "bootstrap:\n  min_inliers: 12\nauto_rebootstrap: false\n"
        )

        odometry = MonocularVisualOdometry.from_files(
            tmp_path / "sensor.yaml", tmp_path / "model.npy", tmp_path / "config.yaml"
        )

        assert len(odometry.model) == len(model)
        assert odometry.config.bootstrap.min_inliers == 12
        assert odometry.config.auto_rebootstrap is False
        assert odometry.camera.image_size == (640, 480)

    def test_from_files_missing_model(self, tmp_path: Path):
        """A missing model is fatal."""
        (tmp_path / "sensor.yaml").write_text(
            "intrinsics: [500.0, 500.0, 320.0, 240.0]\nresolution: [640, 480]\n"
        )
        with pytest.raises(ModelLoadError):
            MonocularVisualOdometry.from_files(
                tmp_path / "sensor.yaml", tmp_path / "missing.npy"
            )
