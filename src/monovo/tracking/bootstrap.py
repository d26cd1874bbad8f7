"""RANSAC recovery of the first camera pose with no prior estimate."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import cv2
import numpy as np

from ..config import BootstrapConfig
from ..errors import EstimationStatus
from ..geometry import SE3, CameraModel, DLTPoseSolver
from ..model import PointModel
from .correspondence import Correspondences
from .features import Features
from .pnp import PnPSolver, reprojection_errors
from .spatial_matcher import NO_MATCH, prune_repeated_matches

logger = logging.getLogger(__name__)


@dataclass
class PoseHypothesis:
    """A RANSAC pose candidate and the correspondences that support it."""

    pose: SE3
    inliers: np.ndarray  # (N,) bool over the putative correspondences
    num_inliers: int


@dataclass
class BootstrapResult:
    """Result of the bootstrap search.

    Attributes:
        status: OK, NO_CORRESPONDENCES or BOOTSTRAP_FAILED
        pose: Best extrinsic T_camera_world, None on failure
        correspondences: Putative 3D-2D pairs the search ran on
        inliers: Inlier mask of the best hypothesis over ``correspondences``
        num_inliers: Inlier count of the best hypothesis
        iterations: RANSAC iterations actually run
        degenerate_samples: Samples the minimal solver rejected
    """

    status: EstimationStatus
    pose: SE3 | None
    correspondences: Correspondences
    inliers: np.ndarray
    num_inliers: int = 0
    iterations: int = 0
    degenerate_samples: int = 0

    @property
    def success(self) -> bool:
        return self.status == EstimationStatus.OK


def fitness(
    pose: SE3,
    points_3d: np.ndarray,
    points_2d: np.ndarray,
    camera_matrix: np.ndarray,
    distance_threshold: float,
) -> np.ndarray:
    """Inlier mask of the pairs that ``pose`` reprojects within the threshold.

    A pair is an inlier when its 3D point lies in front of the camera and
    projects no farther than ``distance_threshold`` pixels from its 2D point.
    """
    errors = reprojection_errors(points_3d, points_2d, pose, camera_matrix)
    return errors <= distance_threshold


def _required_iterations(inlier_ratio: float, sample_size: int, confidence: float) -> float:
    """Standard RANSAC bound on the iterations needed at ``confidence``."""
    if confidence >= 1.0 or inlier_ratio <= 0.0:
        return math.inf
    p_good = inlier_ratio**sample_size
    if p_good >= 1.0:
        return 0.0
    return math.log(1.0 - confidence) / math.log(1.0 - p_good)


class PoseBootstrapper:
    """Finds an initial extrinsic by RANSAC over 3D-2D correspondences.

    Each iteration solves the pose from a random minimal sample (six
    pairs for the DLT solver) and scores it by how many putative pairs it
    reprojects within ``distance_threshold`` pixels. The best hypothesis
    wins if it reaches ``min_inliers``.

    Putative pairs come from descriptor matching when both the model and
    the features carry descriptors. Without descriptors, model point i is
    paired with feature i only if ``assume_index_alignment`` is set and
    the counts agree.
    """

    def __init__(
        self,
        camera: CameraModel,
        config: BootstrapConfig | None = None,
        solver: DLTPoseSolver | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        """Initialize bootstrapper.

        Args:
            camera: Camera model providing the intrinsic matrix
            config: RANSAC parameters
            solver: Minimal-sample pose solver (default: 6-point DLT)
            rng: Random source for sampling; seed it for reproducible runs
        """
        self._camera = camera
        self._config = config or BootstrapConfig()
        self._solver = solver or DLTPoseSolver()
        self._rng = rng if rng is not None else np.random.default_rng()
        self._refiner = PnPSolver()

    def putative_correspondences(
        self, model: PointModel, features: Features
    ) -> Correspondences:
        """Pair model points with detected features without a pose prior."""
        if len(model) == 0 or len(features) == 0:
            return Correspondences.empty()

        if model.has_descriptors and features.has_descriptors:
            return self._match_descriptors(model, features)

        if self._config.assume_index_alignment:
            if len(features) != len(model):
                logger.warning(
                    "Index alignment needs one feature per model point "
                    "(got %d features for %d points)",
                    len(features),
                    len(model),
                )
                return Correspondences.empty()
            indices = np.arange(len(model), dtype=np.int64)
            return Correspondences(
                points_3d=model.points.copy(),
                points_2d=features.points.copy(),
                model_indices=indices,
                feature_indices=indices.copy(),
                distances=np.zeros(len(model), dtype=np.float64),
            )

        logger.warning(
            "No descriptors to match and index alignment disabled; "
            "cannot form bootstrap correspondences"
        )
        return Correspondences.empty()

    def _match_descriptors(
        self, model: PointModel, features: Features
    ) -> Correspondences:
        """Match model descriptors to frame descriptors with a ratio test."""
        model_desc = model.descriptors
        frame_desc = features.descriptors
        if model_desc.dtype == np.uint8 and frame_desc.dtype == np.uint8:
            norm = cv2.NORM_HAMMING
        else:
            norm = cv2.NORM_L2
            model_desc = model_desc.astype(np.float32)
            frame_desc = frame_desc.astype(np.float32)

        matcher = cv2.BFMatcher(norm, crossCheck=False)
        knn_matches = matcher.knnMatch(model_desc, frame_desc, k=2)

        feature_of_point = np.full(len(model), NO_MATCH, dtype=np.int64)
        distance_of_point = np.full(len(model), np.inf, dtype=np.float64)
        for match_pair in knn_matches:
            if len(match_pair) == 0:
                continue
            best = match_pair[0]
            if (
                len(match_pair) > 1
                and best.distance > self._config.ratio_threshold * match_pair[1].distance
            ):
                continue
            if best.distance > self._config.max_descriptor_distance:
                continue
            feature_of_point[best.queryIdx] = best.trainIdx
            distance_of_point[best.queryIdx] = best.distance

        feature_of_point = prune_repeated_matches(feature_of_point, distance_of_point)
        model_indices = np.flatnonzero(feature_of_point != NO_MATCH)
        if len(model_indices) == 0:
            return Correspondences.empty()

        feature_indices = feature_of_point[model_indices]
        return Correspondences(
            points_3d=model.points[model_indices],
            points_2d=features.points[feature_indices],
            model_indices=model_indices.astype(np.int64),
            feature_indices=feature_indices,
            distances=distance_of_point[model_indices],
        )

    def estimate_first_pose(
        self, model: PointModel, features: Features
    ) -> BootstrapResult:
        """Recover the camera extrinsic for a frame with no prior pose."""
        correspondences = self.putative_correspondences(model, features)
        return self.estimate_from_correspondences(correspondences)

    def estimate_from_correspondences(
        self, correspondences: Correspondences
    ) -> BootstrapResult:
        """Run RANSAC over already paired 3D-2D points."""
        cfg = self._config
        n = len(correspondences)
        sample_size = self._solver.sample_size

        if n < max(sample_size, cfg.min_inliers):
            logger.debug(
                "Bootstrap needs at least %d correspondences, got %d",
                max(sample_size, cfg.min_inliers),
                n,
            )
            status = (
                EstimationStatus.NO_CORRESPONDENCES
                if n == 0
                else EstimationStatus.BOOTSTRAP_FAILED
            )
            return BootstrapResult(
                status=status,
                pose=None,
                correspondences=correspondences,
                inliers=np.zeros(n, dtype=bool),
            )

        K = self._camera.camera_matrix
        points_3d = correspondences.points_3d
        points_2d = correspondences.points_2d
        early_accept = max(cfg.min_inliers, math.ceil(cfg.early_accept_ratio * n))

        best: PoseHypothesis | None = None
        iterations = 0
        degenerate = 0
        required = math.inf

        while iterations < cfg.max_iterations and iterations < required:
            iterations += 1
            sample = self._rng.choice(n, size=sample_size, replace=False)
            pose = self._solver.solve(points_3d[sample], points_2d[sample], K)
            if pose is None:
                degenerate += 1
                continue

            inliers = fitness(pose, points_3d, points_2d, K, cfg.distance_threshold)
            num_inliers = int(inliers.sum())
            if num_inliers < cfg.min_inliers:
                continue
            if best is not None and num_inliers <= best.num_inliers:
                continue

            best = PoseHypothesis(pose=pose, inliers=inliers, num_inliers=num_inliers)
            if num_inliers >= early_accept:
                break
            required = _required_iterations(num_inliers / n, sample_size, cfg.confidence)

        if best is None:
            logger.debug(
                "Bootstrap failed after %d iterations (%d degenerate samples)",
                iterations,
                degenerate,
            )
            return BootstrapResult(
                status=EstimationStatus.BOOTSTRAP_FAILED,
                pose=None,
                correspondences=correspondences,
                inliers=np.zeros(n, dtype=bool),
                iterations=iterations,
                degenerate_samples=degenerate,
            )

        if cfg.refine:
            best = self._refine(best, points_3d, points_2d)

        logger.info(
            "Bootstrap pose found: %d/%d inliers after %d iterations",
            best.num_inliers,
            n,
            iterations,
        )
        return BootstrapResult(
            status=EstimationStatus.OK,
            pose=best.pose,
            correspondences=correspondences,
            inliers=best.inliers,
            num_inliers=best.num_inliers,
            iterations=iterations,
            degenerate_samples=degenerate,
        )

    def _refine(
        self,
        hypothesis: PoseHypothesis,
        points_3d: np.ndarray,
        points_2d: np.ndarray,
    ) -> PoseHypothesis:
        """Polish a hypothesis with iterative PnP over its inliers.

        The refined pose replaces the hypothesis only if it keeps at least
        as many inliers.
        """
        K = self._camera.camera_matrix
        result = self._refiner.solve(
            points_3d[hypothesis.inliers],
            points_2d[hypothesis.inliers],
            K,
            initial_pose=hypothesis.pose,
        )
        if not result.success:
            return hypothesis

        inliers = fitness(
            result.pose, points_3d, points_2d, K, self._config.distance_threshold
        )
        num_inliers = int(inliers.sum())
        if num_inliers < hypothesis.num_inliers:
            return hypothesis
        return PoseHypothesis(pose=result.pose, inliers=inliers, num_inliers=num_inliers)

    @property
    def config(self) -> BootstrapConfig:
        return self._config
