"""Incremental pose refinement from a prior estimate."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..config import TrackerConfig
from ..errors import EstimationStatus
from ..geometry import SE3
from ..model import PointModel
from .correspondence import CorrespondenceFinder, Correspondences
from .features import Features
from .pnp import MIN_PNP_POINTS, PnPSolver

logger = logging.getLogger(__name__)


@dataclass
class TrackingResult:
    """Result of one frame of incremental tracking.

    Attributes:
        status: OK or TRACKING_LOST
        pose: Refined extrinsic on success; the untouched prior on failure
        correspondences: Correspondences of the last round
        num_inliers: PnP inliers of the last round
        reprojection_error: Mean reprojection error of the last round (pixels)
        iterations: Correspondence/PnP rounds run
    """

    status: EstimationStatus
    pose: SE3
    correspondences: Correspondences
    num_inliers: int = 0
    reprojection_error: float = float("inf")
    iterations: int = 0

    @property
    def success(self) -> bool:
        return self.status == EstimationStatus.OK


class PoseTracker:
    """Refines a known pose by alternating correspondence search and PnP.

    Every round re-projects the model with the current estimate, matches
    the projections to the frame's features and solves PnP seeded with the
    estimate. The last round always prunes repeated matches because its
    correspondences produce the pose passed downstream.
    """

    def __init__(
        self,
        finder: CorrespondenceFinder,
        config: TrackerConfig | None = None,
        pnp_solver: PnPSolver | None = None,
    ) -> None:
        """Initialize tracker.

        Args:
            finder: Correspondence finder bound to the camera model
            config: Tracking parameters
            pnp_solver: PnP backend (default built from ``config``)
        """
        self._finder = finder
        self._config = config or TrackerConfig()
        self._pnp = pnp_solver or PnPSolver(
            use_ransac=self._config.use_ransac,
            ransac_iterations=self._config.ransac_iterations,
            reprojection_error=self._config.reprojection_error,
            min_inliers_count=self._config.min_inliers_count,
        )

    def estimate_motion(
        self,
        prior_pose: SE3,
        model: PointModel,
        features: Features,
        max_pnp_iterations: int | None = None,
    ) -> TrackingResult:
        """Refine ``prior_pose`` against the current frame.

        Args:
            prior_pose: Extrinsic produced by the previous frame
            model: Sparse 3D model
            features: Current frame's detected features
            max_pnp_iterations: Override for the configured round count

        Returns:
            TrackingResult; on TRACKING_LOST ``pose`` is ``prior_pose``

        Raises:
            ValueError: If ``max_pnp_iterations`` is below 1
        """
        rounds = (
            self._config.max_pnp_iterations
            if max_pnp_iterations is None
            else max_pnp_iterations
        )
        if rounds < 1:
            raise ValueError(f"max_pnp_iterations must be at least 1, got {rounds}")
        camera_matrix = self._finder.camera.camera_matrix
        tolerance = self._config.convergence_tolerance

        pose = prior_pose.copy()
        correspondences = Correspondences.empty()
        num_inliers = 0
        reprojection_error = float("inf")

        for iteration in range(rounds):
            last_iteration = iteration == rounds - 1
            prune = last_iteration or self._config.prune_repeated_matches

            correspondences = self._finder.find(
                model, pose, features, prune_repeats=prune
            )
            if len(correspondences) < MIN_PNP_POINTS:
                logger.debug(
                    "Tracking lost: %d correspondences on round %d",
                    len(correspondences),
                    iteration,
                )
                return self._lost(prior_pose, correspondences, iteration + 1)

            result = self._pnp.solve(
                correspondences.points_3d,
                correspondences.points_2d,
                camera_matrix,
                initial_pose=pose,
            )
            if not result.success or not result.pose.is_finite():
                logger.debug("Tracking lost: PnP failed on round %d", iteration)
                return self._lost(prior_pose, correspondences, iteration + 1)

            step = result.pose.rotation_angle_to(pose)
            step += result.pose.translation_distance_to(pose)
            pose = result.pose
            num_inliers = result.num_inliers
            reprojection_error = result.reprojection_error

            if tolerance > 0 and step < tolerance and prune:
                return self._ok(
                    pose, correspondences, num_inliers, reprojection_error, iteration + 1
                )

        return self._ok(pose, correspondences, num_inliers, reprojection_error, rounds)

    @staticmethod
    def _ok(
        pose: SE3,
        correspondences: Correspondences,
        num_inliers: int,
        reprojection_error: float,
        iterations: int,
    ) -> TrackingResult:
        return TrackingResult(
            status=EstimationStatus.OK,
            pose=pose,
            correspondences=correspondences,
            num_inliers=num_inliers,
            reprojection_error=reprojection_error,
            iterations=iterations,
        )

    @staticmethod
    def _lost(
        prior_pose: SE3, correspondences: Correspondences, iterations: int
    ) -> TrackingResult:
        return TrackingResult(
            status=EstimationStatus.TRACKING_LOST,
            pose=prior_pose,
            correspondences=correspondences,
            iterations=iterations,
        )

    @property
    def config(self) -> TrackerConfig:
        return self._config
