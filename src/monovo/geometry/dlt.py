"""Linear (DLT) pose solver for minimal 6-point samples.

The Direct Linear Transform estimates the 3x4 projection matrix P from
n >= 6 correspondences by solving

    x_i ~ P @ X_i

as a homogeneous linear system A @ p = 0 with SVD. Working in normalized
image coordinates (K^-1 applied to the pixels) makes P = s * [R | t], so
the extrinsic is recovered by fixing the sign (det > 0), projecting the
left 3x3 block onto SO(3) and dividing out the scale s.

Degenerate samples (coplanar or collinear points, a rank-deficient
system, non-finite results, the sample ending up behind the camera)
return None and the caller simply draws another sample.
"""

from __future__ import annotations

import numpy as np

from .pose import SE3


def _normalization_2d(points: np.ndarray) -> np.ndarray:
    """Similarity transform moving 2D points to zero mean, mean norm sqrt(2)."""
    centroid = points.mean(axis=0)
    mean_dist = np.linalg.norm(points - centroid, axis=1).mean()
    scale = np.sqrt(2.0) / mean_dist if mean_dist > 0 else 1.0
    return np.array(
        [
            [scale, 0.0, -scale * centroid[0]],
            [0.0, scale, -scale * centroid[1]],
            [0.0, 0.0, 1.0],
        ]
    )


def _normalization_3d(points: np.ndarray) -> np.ndarray:
    """Similarity transform moving 3D points to zero mean, mean norm sqrt(3)."""
    centroid = points.mean(axis=0)
    mean_dist = np.linalg.norm(points - centroid, axis=1).mean()
    scale = np.sqrt(3.0) / mean_dist if mean_dist > 0 else 1.0
    T = np.eye(4)
    T[:3, :3] *= scale
    T[:3, 3] = -scale * centroid
    return T


class DLTPoseSolver:
    """Minimal-sample extrinsic solver used inside the RANSAC bootstrap.

    Any object exposing ``sample_size`` and
    ``solve(points_3d, points_2d, camera_matrix) -> SE3 | None`` can take
    its place in ``PoseBootstrapper``.
    """

    sample_size = 6

    def __init__(
        self,
        planarity_tolerance: float = 1e-3,
        rank_tolerance: float = 1e-8,
    ) -> None:
        """Initialize solver.

        Args:
            planarity_tolerance: Samples whose smallest/largest spatial
                singular value ratio falls below this are rejected as
                coplanar (or collinear).
            rank_tolerance: The DLT system is rejected when its second
                smallest singular value is below this fraction of the
                largest, i.e. the null space is not one dimensional.
        """
        self._planarity_tolerance = planarity_tolerance
        self._rank_tolerance = rank_tolerance

    def solve(
        self,
        points_3d: np.ndarray,
        points_2d: np.ndarray,
        camera_matrix: np.ndarray,
    ) -> SE3 | None:
        """Solve for the extrinsic T_camera_world.

        Args:
            points_3d: Nx3 world points (N >= 6)
            points_2d: Nx2 pixel observations of those points
            camera_matrix: 3x3 intrinsic matrix K

        Returns:
            Extrinsic pose, or None for a degenerate sample
        """
        points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
        points_2d = np.asarray(points_2d, dtype=np.float64).reshape(-1, 2)
        n_points = len(points_3d)

        if n_points < self.sample_size or len(points_2d) != n_points:
            return None
        if not (np.isfinite(points_3d).all() and np.isfinite(points_2d).all()):
            return None

        # Coplanar / collinear structure leaves the DLT underdetermined
        spread = np.linalg.svd(points_3d - points_3d.mean(axis=0), compute_uv=False)
        if spread[0] <= 0 or spread[2] / spread[0] < self._planarity_tolerance:
            return None

        # Pixels -> normalized image coordinates
        K_inv = np.linalg.inv(camera_matrix)
        pixels_h = np.hstack([points_2d, np.ones((n_points, 1))])
        normalized = (K_inv @ pixels_h.T).T
        normalized = normalized[:, :2] / normalized[:, 2:3]

        T2 = _normalization_2d(normalized)
        T3 = _normalization_3d(points_3d)
        x = (T2 @ np.hstack([normalized, np.ones((n_points, 1))]).T).T
        X = (T3 @ np.hstack([points_3d, np.ones((n_points, 1))]).T).T

        A = np.zeros((2 * n_points, 12))
        for i in range(n_points):
            u, v = x[i, 0] / x[i, 2], x[i, 1] / x[i, 2]
            A[2 * i, 0:4] = X[i]
            A[2 * i, 8:12] = -u * X[i]
            A[2 * i + 1, 4:8] = X[i]
            A[2 * i + 1, 8:12] = -v * X[i]

        _, s, Vt = np.linalg.svd(A)
        if s[0] <= 0 or s[-2] / s[0] < self._rank_tolerance:
            return None

        P = np.linalg.inv(T2) @ Vt[-1].reshape(3, 4) @ T3
        M = P[:, :3]
        det = np.linalg.det(M)
        if not np.isfinite(det) or abs(det) < 1e-12:
            return None
        if det < 0:
            P = -P
            M = P[:, :3]

        U, S, Vt_m = np.linalg.svd(M)
        rotation = U @ Vt_m
        if np.linalg.det(rotation) < 0:
            return None
        scale = S.mean()
        translation = P[:, 3] / scale

        pose = SE3(rotation=rotation, translation=translation)
        if not pose.is_finite():
            return None

        # Cheirality: the sample must be seen from the front
        depths = pose.transform_points(points_3d)[:, 2]
        if np.count_nonzero(depths > 0) * 2 <= n_points:
            return None

        return pose
