"""Camera extrinsics as SE(3) rigid transforms."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


@dataclass
class SE3:
    """Rigid transform p_out = R @ p_in + t.

    The odometry pipeline stores the camera *extrinsic* T_camera_world,
    which maps model (world) points into the camera frame:

        p_camera = R @ p_world + t

    Use ``inverse()`` to get T_world_camera, i.e. the camera pose expressed
    in the world frame.

    Attributes:
        rotation: 3x3 orthonormal rotation matrix (det = +1)
        translation: 3D translation vector
    """

    rotation: np.ndarray  # 3x3 rotation matrix
    translation: np.ndarray  # (3,) translation vector

    def __post_init__(self) -> None:
        """Coerce to float arrays and check shapes."""
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).flatten()

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(
                f"Translation must be (3,), got {self.translation.shape}"
            )

    @classmethod
    def identity(cls) -> SE3:
        """Create identity transformation (no rotation, no translation)."""
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Create SE3 from a 4x4 homogeneous or 3x4 extrinsic matrix.

        Args:
            T: Matrix of the form [[R, t]] (3x4) or [[R, t], [0, 1]] (4x4)

        Returns:
            SE3 transformation
        """
        T = np.asarray(T)
        if T.shape not in ((4, 4), (3, 4)):
            raise ValueError(f"Transform must be 4x4 or 3x4, got {T.shape}")

        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Wrap an OpenCV (rvec, tvec) pair.

        cv2.solvePnP returns exactly this form for T_camera_world, so its
        output can be wrapped directly as an extrinsic.

        Args:
            rvec: 3D Rodrigues rotation vector (axis * angle)
            tvec: 3D translation vector

        Returns:
            SE3 transformation
        """
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).flatten())
        t = np.asarray(tvec).flatten()
        return cls(rotation=R, translation=t)

    def to_matrix(self) -> np.ndarray:
        """Convert to 4x4 homogeneous transformation matrix."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def to_extrinsic(self) -> np.ndarray:
        """Return the 3x4 extrinsic matrix [R | t]."""
        return self.to_matrix()[:3, :]

    def to_rvec_tvec(self) -> tuple[np.ndarray, np.ndarray]:
        """Convert to OpenCV Rodrigues vector and translation."""
        rvec, _ = cv2.Rodrigues(self.rotation)
        return rvec.flatten(), self.translation.copy()

    def inverse(self) -> SE3:
        """Compute the inverse transformation.

        For T = [R, t], the inverse is [R^T, -R^T @ t].
        """
        R_inv = self.rotation.T
        t_inv = -R_inv @ self.translation
        return SE3(rotation=R_inv, translation=t_inv)

    def compose(self, other: SE3) -> SE3:
        """Chain transforms: apply ``other`` first, then ``self``.

        Example:
            T_camera_world.compose(T_world_object) gives T_camera_object
        """
        R = self.rotation @ other.rotation
        t = self.rotation @ other.translation + self.translation
        return SE3(rotation=R, translation=t)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Apply the transformation to an Nx3 array of points."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)

        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")

        return (self.rotation @ points.T).T + self.translation

    def transform_point(self, point: np.ndarray) -> np.ndarray:
        """Apply the transformation to a single 3D point."""
        point = np.asarray(point, dtype=np.float64).flatten()
        return self.rotation @ point + self.translation

    def rotation_angle_to(self, other: SE3) -> float:
        """Return the angle (radians) of the relative rotation to ``other``."""
        R_rel = self.rotation.T @ other.rotation
        cos_angle = np.clip((np.trace(R_rel) - 1.0) / 2.0, -1.0, 1.0)
        return float(np.arccos(cos_angle))

    def translation_distance_to(self, other: SE3) -> float:
        """Return the Euclidean distance between the two translations."""
        return float(np.linalg.norm(self.translation - other.translation))

    def is_finite(self) -> bool:
        """Return True if every rotation and translation entry is finite."""
        return bool(
            np.isfinite(self.rotation).all() and np.isfinite(self.translation).all()
        )

    def copy(self) -> SE3:
        """Return a deep copy."""
        return SE3(rotation=self.rotation.copy(), translation=self.translation.copy())

    @property
    def position(self) -> np.ndarray:
        """Return the camera center in world coordinates.

        For an extrinsic T_camera_world the camera center is -R^T @ t.
        """
        return -self.rotation.T @ self.translation

    def __repr__(self) -> str:
        """Show the translation only; rotations print poorly."""
        t = self.translation
        return f"SE3(translation=[{t[0]:.3f}, {t[1]:.3f}, {t[2]:.3f}])"

    def __matmul__(self, other: SE3) -> SE3:
        """Matrix multiplication operator for composition."""
        return self.compose(other)
