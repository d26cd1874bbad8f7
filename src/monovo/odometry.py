"""Model-based monocular visual odometry pipeline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

import numpy as np

from .config import OdometryConfig
from .errors import EstimationStatus
from .geometry import SE3, CameraModel, DLTPoseSolver
from .io.model_loader import load_model
from .model import PointModel
from .tracking import (
    CorrespondenceFinder,
    Correspondences,
    FeatureDetector,
    Features,
    PoseBootstrapper,
    PoseTracker,
    reprojection_errors,
)

logger = logging.getLogger(__name__)

PoseSink = Callable[[SE3, int], None]


class TrackingState(Enum):
    """Mode of the odometry state machine."""

    UNINITIALIZED = "UNINITIALIZED"
    BOOTSTRAPPING = "BOOTSTRAPPING"
    TRACKING = "TRACKING"
    LOST = "LOST"  # Tracking lost and automatic re-bootstrap disabled


@dataclass
class OdometryTiming:
    """Timing breakdown for a single frame."""

    detection_ms: float = 0.0
    bootstrap_ms: float = 0.0
    tracking_ms: float = 0.0
    total_ms: float = 0.0


@dataclass
class OdometryFrame:
    """Output of the odometry for a single frame.

    Attributes:
        frame_id: Sequential frame identifier
        timestamp_ns: Source timestamp of the frame
        status: Estimation outcome for this frame
        state: State machine mode after the frame
        pose: Extrinsic T_camera_world, None if no pose was produced
        num_features: Detected features in the frame
        num_correspondences: Correspondences the pose was estimated from
        num_inliers: Inliers supporting the pose
        reprojection_error: Mean inlier reprojection error (pixels)
        timing: Processing time breakdown
    """

    frame_id: int
    timestamp_ns: int
    status: EstimationStatus
    state: TrackingState
    pose: SE3 | None
    num_features: int = 0
    num_correspondences: int = 0
    num_inliers: int = 0
    reprojection_error: float = float("inf")
    timing: OdometryTiming = field(default_factory=OdometryTiming)

    @property
    def has_pose(self) -> bool:
        """Return True if this frame produced a pose."""
        return self.status == EstimationStatus.OK and self.pose is not None

    @property
    def camera_pose_world(self) -> SE3 | None:
        """Return T_world_camera (camera pose in the model frame)."""
        return self.pose.inverse() if self.pose is not None else None

    @property
    def position(self) -> np.ndarray | None:
        """Return camera center in the model frame."""
        return self.pose.position if self.pose is not None else None


class MonocularVisualOdometry:
    """Tracks a camera against a known sparse 3D model.

    State machine:
    - UNINITIALIZED / BOOTSTRAPPING: run the RANSAC bootstrap on each frame
      until it succeeds, then switch to TRACKING
    - TRACKING: refine the previous frame's pose with incremental PnP; on
      tracking lost fall back to BOOTSTRAPPING (or LOST when automatic
      re-bootstrap is disabled)

    The current pose is owned here and replaced only by a successful
    estimate, so a failed frame never leaves it half-updated. Frames must
    be fed one at a time; ``FrameQueue`` serializes asynchronous arrivals.
    """

    def __init__(
        self,
        camera: CameraModel,
        model: PointModel,
        config: OdometryConfig | None = None,
        detector: FeatureDetector | None = None,
        pose_sink: PoseSink | None = None,
        initial_pose: SE3 | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        """Initialize the odometry pipeline.

        Args:
            camera: Calibrated camera model
            model: Sparse 3D model to localize against
            config: Pipeline configuration
            detector: Feature detector used by ``process_image``
            pose_sink: Called with (pose, timestamp_ns) for every frame
                that produced a pose
            initial_pose: Known starting extrinsic; skips the bootstrap
            rng: Random source for RANSAC (default seeded from
                ``config.random_seed``)
        """
        self._config = config or OdometryConfig()
        self._camera = camera
        self._model = model
        self._detector = detector
        self._pose_sink = pose_sink
        self._initial_pose = initial_pose.copy() if initial_pose is not None else None

        if rng is None:
            rng = np.random.default_rng(self._config.random_seed)

        self._finder = CorrespondenceFinder(
            camera, self._config.max_descriptor_space_distance
        )
        self._bootstrapper = PoseBootstrapper(
            camera, self._config.bootstrap, solver=DLTPoseSolver(), rng=rng
        )
        self._tracker = PoseTracker(self._finder, self._config.tracker)

        # State
        self._state = TrackingState.UNINITIALIZED
        self._pose: SE3 | None = None
        self._trajectory: list[tuple[int, SE3]] = []
        self._frame_id = 0
        self._consecutive_failures = 0
        self._apply_initial_pose()

    @classmethod
    def from_files(
        cls,
        camera_yaml: str | Path,
        model_path: str | Path,
        config_yaml: str | Path | None = None,
        **kwargs,
    ) -> MonocularVisualOdometry:
        """Create the odometry from calibration, model and config files.

        Raises:
            ModelLoadError: If the model cannot be loaded
        """
        camera = CameraModel.from_yaml(camera_yaml)
        model = load_model(model_path)
        config = OdometryConfig.from_yaml(config_yaml) if config_yaml else None
        return cls(camera=camera, model=model, config=config, **kwargs)

    def _apply_initial_pose(self) -> None:
        if self._initial_pose is not None:
            self._pose = self._initial_pose.copy()
            self._state = TrackingState.TRACKING
            logger.info("Starting from the assumed initial pose")

    def process_image(self, image: np.ndarray, timestamp_ns: int) -> OdometryFrame:
        """Detect features in ``image`` and run the pipeline on them."""
        if self._detector is None:
            self._detector = FeatureDetector()

        t0 = time.perf_counter()
        features = self._detector.detect(image)
        detection_ms = (time.perf_counter() - t0) * 1000

        frame = self.process_frame(features, timestamp_ns)
        frame.timing.detection_ms = detection_ms
        frame.timing.total_ms += detection_ms
        return frame

    def process_frame(self, features: Features, timestamp_ns: int) -> OdometryFrame:
        """Run one frame through bootstrap or tracking.

        Args:
            features: The frame's detected features
            timestamp_ns: Source timestamp, forwarded to the pose sink

        Returns:
            OdometryFrame describing the outcome
        """
        timing = OdometryTiming()
        t_start = time.perf_counter()

        frame_id = self._frame_id
        self._frame_id += 1

        if self._state == TrackingState.LOST:
            frame = OdometryFrame(
                frame_id=frame_id,
                timestamp_ns=timestamp_ns,
                status=EstimationStatus.TRACKING_LOST,
                state=self._state,
                pose=None,
                num_features=len(features),
                timing=timing,
            )
        elif self._state == TrackingState.TRACKING:
            frame = self._track(frame_id, features, timestamp_ns, timing)
        else:
            frame = self._bootstrap(frame_id, features, timestamp_ns, timing)

        timing.total_ms = (time.perf_counter() - t_start) * 1000

        if frame.has_pose:
            self._consecutive_failures = 0
            self._trajectory.append((timestamp_ns, frame.pose.copy()))
            if self._pose_sink is not None:
                self._pose_sink(frame.pose.copy(), timestamp_ns)
        else:
            self._consecutive_failures += 1

        return frame

    def _bootstrap(
        self,
        frame_id: int,
        features: Features,
        timestamp_ns: int,
        timing: OdometryTiming,
    ) -> OdometryFrame:
        """Attempt RANSAC pose recovery for a frame with no prior."""
        self._state = TrackingState.BOOTSTRAPPING

        t0 = time.perf_counter()
        result = self._bootstrapper.estimate_first_pose(self._model, features)
        timing.bootstrap_ms = (time.perf_counter() - t0) * 1000

        if result.success:
            self._pose = result.pose.copy()
            self._state = TrackingState.TRACKING
            logger.info(
                "Frame %d: bootstrapped with %d inliers", frame_id, result.num_inliers
            )
            inliers = result.correspondences.subset(result.inliers)
            reprojection_error = self._mean_error(result.pose, inliers)
        else:
            logger.warning(
                "Frame %d: bootstrap failed (%s)", frame_id, result.status.value
            )
            reprojection_error = float("inf")

        return OdometryFrame(
            frame_id=frame_id,
            timestamp_ns=timestamp_ns,
            status=result.status,
            state=self._state,
            pose=result.pose if result.success else None,
            num_features=len(features),
            num_correspondences=len(result.correspondences),
            num_inliers=result.num_inliers,
            reprojection_error=reprojection_error,
            timing=timing,
        )

    def _track(
        self,
        frame_id: int,
        features: Features,
        timestamp_ns: int,
        timing: OdometryTiming,
    ) -> OdometryFrame:
        """Refine the previous frame's pose against this frame."""
        t0 = time.perf_counter()
        result = self._tracker.estimate_motion(self._pose, self._model, features)
        timing.tracking_ms = (time.perf_counter() - t0) * 1000

        if result.success:
            self._pose = result.pose.copy()
        else:
            self._pose = None
            if self._config.auto_rebootstrap:
                self._state = TrackingState.BOOTSTRAPPING
            else:
                self._state = TrackingState.LOST
            logger.warning(
                "Frame %d: tracking lost (%d correspondences), now %s",
                frame_id,
                len(result.correspondences),
                self._state.value,
            )

        return OdometryFrame(
            frame_id=frame_id,
            timestamp_ns=timestamp_ns,
            status=result.status,
            state=self._state,
            pose=result.pose if result.success else None,
            num_features=len(features),
            num_correspondences=len(result.correspondences),
            num_inliers=result.num_inliers,
            reprojection_error=result.reprojection_error,
            timing=timing,
        )

    def _mean_error(self, pose: SE3, correspondences: Correspondences) -> float:
        errors = reprojection_errors(
            correspondences.points_3d,
            correspondences.points_2d,
            pose,
            self._camera.camera_matrix,
        )
        return float(np.mean(errors)) if len(errors) else float("inf")

    def request_bootstrap(self) -> None:
        """Invalidate the pose and bootstrap again on the next frame."""
        self._pose = None
        self._state = TrackingState.BOOTSTRAPPING

    def reset(self) -> None:
        """Reset to the initial state (keeps the model and configuration)."""
        self._state = TrackingState.UNINITIALIZED
        self._pose = None
        self._trajectory.clear()
        self._frame_id = 0
        self._consecutive_failures = 0
        self._apply_initial_pose()

    def get_trajectory(self) -> list[tuple[int, SE3]]:
        """Return (timestamp_ns, extrinsic) for every frame that produced a pose."""
        return self._trajectory.copy()

    def get_trajectory_positions(self) -> np.ndarray:
        """Return camera centers in the model frame as an Nx3 array."""
        if len(self._trajectory) == 0:
            return np.empty((0, 3), dtype=np.float64)
        positions = [pose.position for _, pose in self._trajectory]
        return np.array(positions, dtype=np.float64)

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def current_pose(self) -> SE3 | None:
        """Return the pose in force, None while no valid pose exists."""
        return self._pose.copy() if self._pose is not None else None

    @property
    def model(self) -> PointModel:
        return self._model

    @property
    def camera(self) -> CameraModel:
        return self._camera

    @property
    def config(self) -> OdometryConfig:
        return self._config

    @property
    def num_frames(self) -> int:
        return self._frame_id

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures
