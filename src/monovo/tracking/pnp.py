"""Perspective-n-Point pose solving with OpenCV."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from ..geometry import SE3

logger = logging.getLogger(__name__)

MIN_PNP_POINTS = 4


@dataclass
class PnPResult:
    """Result of PnP pose estimation.

    Attributes:
        success: True if pose estimation succeeded
        pose: Estimated extrinsic T_camera_world. None if failed.
        inliers: Boolean mask indicating which correspondences are inliers
        num_inliers: Number of inlier correspondences
        reprojection_error: Mean reprojection error of inliers (pixels)
    """

    success: bool
    pose: SE3 | None
    inliers: np.ndarray  # (N,) bool
    num_inliers: int
    reprojection_error: float

    @classmethod
    def failure(cls, n_points: int, num_inliers: int = 0) -> PnPResult:
        return cls(
            success=False,
            pose=None,
            inliers=np.zeros(n_points, dtype=bool),
            num_inliers=num_inliers,
            reprojection_error=float("inf"),
        )


def reprojection_errors(
    points_3d: np.ndarray,
    points_2d: np.ndarray,
    pose: SE3,
    camera_matrix: np.ndarray,
) -> np.ndarray:
    """Per-point pixel reprojection error for an extrinsic pose.

    Points behind the camera get an infinite error.
    """
    points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
    points_2d = np.asarray(points_2d, dtype=np.float64).reshape(-1, 2)
    if len(points_3d) == 0:
        return np.empty(0, dtype=np.float64)

    points_cam = pose.transform_points(points_3d)
    errors = np.full(len(points_3d), np.inf, dtype=np.float64)
    in_front = points_cam[:, 2] > 0
    if not in_front.any():
        return errors

    projected = (camera_matrix @ points_cam[in_front].T).T
    projected = projected[:, :2] / projected[:, 2:3]
    errors[in_front] = np.linalg.norm(projected - points_2d[in_front], axis=1)
    return errors


class PnPSolver:
    """Refines a camera extrinsic from 3D-2D correspondences.

    By default runs OpenCV's iterative (Levenberg-Marquardt) PnP over all
    correspondences, seeded with the current estimate. With ``use_ransac``
    the correspondences are first screened with cv2.solvePnPRansac and the
    result is refined on the inliers.
    """

    def __init__(
        self,
        use_ransac: bool = False,
        ransac_iterations: int = 100,
        reprojection_error: float = 8.0,
        min_inliers_count: int = 20,
        ransac_confidence: float = 0.99,
    ) -> None:
        """Initialize PnP solver.

        Args:
            use_ransac: Screen outliers with RANSAC before refinement
            ransac_iterations: Maximum RANSAC iterations
            reprojection_error: RANSAC inlier threshold in pixels
            min_inliers_count: Minimum RANSAC inliers for a valid pose
            ransac_confidence: Desired probability of finding a good model
        """
        self._use_ransac = use_ransac
        self._ransac_iterations = ransac_iterations
        self._reprojection_error = reprojection_error
        self._min_inliers = min_inliers_count
        self._confidence = ransac_confidence

    def solve(
        self,
        points_3d: np.ndarray,
        points_2d: np.ndarray,
        camera_matrix: np.ndarray,
        initial_pose: SE3 | None = None,
    ) -> PnPResult:
        """Estimate the camera extrinsic from correspondences.

        Args:
            points_3d: Nx3 array of 3D points in world frame
            points_2d: Nx2 array of corresponding 2D pixel coordinates
            camera_matrix: 3x3 camera intrinsic matrix K
            initial_pose: Optional extrinsic used as the starting guess

        Returns:
            PnPResult with the estimated extrinsic and inlier information
        """
        points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
        points_2d = np.asarray(points_2d, dtype=np.float64).reshape(-1, 2)
        n_points = len(points_3d)
        if n_points < MIN_PNP_POINTS:
            return PnPResult.failure(n_points)

        # OpenCV wants (N, 1, 3) / (N, 1, 2)
        obj = points_3d.reshape(-1, 1, 3)
        img = points_2d.reshape(-1, 1, 2)
        camera_matrix = np.asarray(camera_matrix, dtype=np.float64)

        use_guess = initial_pose is not None
        rvec = tvec = None
        if use_guess:
            rvec, tvec = initial_pose.to_rvec_tvec()
            rvec = rvec.reshape(3, 1)
            tvec = tvec.reshape(3, 1)

        inlier_mask = np.ones(n_points, dtype=bool)

        if self._use_ransac:
            try:
                success, rvec, tvec, inliers = cv2.solvePnPRansac(
                    objectPoints=obj,
                    imagePoints=img,
                    cameraMatrix=camera_matrix,
                    distCoeffs=None,
                    rvec=rvec,
                    tvec=tvec,
                    useExtrinsicGuess=use_guess,
                    iterationsCount=self._ransac_iterations,
                    reprojectionError=self._reprojection_error,
                    confidence=self._confidence,
                    flags=cv2.SOLVEPNP_ITERATIVE,
                )
            except cv2.error as e:
                logger.debug("solvePnPRansac failed: %s", e)
                return PnPResult.failure(n_points)

            if not success or inliers is None or len(inliers) < self._min_inliers:
                return PnPResult.failure(n_points, 0 if inliers is None else len(inliers))

            inlier_mask = np.zeros(n_points, dtype=bool)
            inlier_mask[inliers.flatten()] = True
            use_guess = True

        if int(inlier_mask.sum()) >= MIN_PNP_POINTS:
            try:
                success, rvec_refined, tvec_refined = cv2.solvePnP(
                    objectPoints=obj[inlier_mask],
                    imagePoints=img[inlier_mask],
                    cameraMatrix=camera_matrix,
                    distCoeffs=None,
                    rvec=rvec,
                    tvec=tvec,
                    useExtrinsicGuess=use_guess,
                    flags=cv2.SOLVEPNP_ITERATIVE,
                )
            except cv2.error as e:
                logger.debug("solvePnP failed: %s", e)
                success = False

            if success:
                rvec, tvec = rvec_refined, tvec_refined
            elif not self._use_ransac:
                return PnPResult.failure(n_points)

        if rvec is None or not np.isfinite(rvec).all() or not np.isfinite(tvec).all():
            return PnPResult.failure(n_points)

        pose = SE3.from_rvec_tvec(rvec, tvec)
        errors = reprojection_errors(
            points_3d[inlier_mask], points_2d[inlier_mask], pose, camera_matrix
        )
        mean_error = float(np.mean(errors)) if len(errors) else 0.0

        return PnPResult(
            success=True,
            pose=pose,
            inliers=inlier_mask,
            num_inliers=int(inlier_mask.sum()),
            reprojection_error=mean_error,
        )

    @property
    def use_ransac(self) -> bool:
        return self._use_ransac
