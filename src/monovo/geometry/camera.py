"""Pinhole camera model: intrinsic calibration, projection and visibility."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import yaml

from .pose import SE3


@dataclass(frozen=True)
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model)."""

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    @classmethod
    def from_matrix(cls, K: np.ndarray) -> CameraIntrinsics:
        """Build intrinsics from a 3x3 matrix K."""
        K = np.asarray(K, dtype=np.float64)
        if K.shape != (3, 3):
            raise ValueError(f"Intrinsic matrix must be 3x3, got {K.shape}")
        return cls(
            fx=float(K[0, 0]), fy=float(K[1, 1]), cx=float(K[0, 2]), cy=float(K[1, 2])
        )


class CameraModel:
    """Monocular pinhole camera used to project the model into the image.

    Images are assumed to be undistorted already. The model holds no
    mutable state beyond its calibration, so one instance can be shared
    by every component of the pipeline.
    """

    def __init__(
        self, intrinsics: CameraIntrinsics, image_size: tuple[int, int]
    ) -> None:
        """Initialize camera model.

        Args:
            intrinsics: Pinhole intrinsics
            image_size: Sensor resolution as (width, height) in pixels
        """
        width, height = image_size
        if width <= 0 or height <= 0:
            raise ValueError(f"Image size must be positive, got {image_size}")

        self._intrinsics = intrinsics
        self._image_size = (int(width), int(height))
        self._K = intrinsics.to_matrix()
        self._K.setflags(write=False)

    @classmethod
    def from_matrix(cls, K: np.ndarray, image_size: tuple[int, int]) -> CameraModel:
        """Create a camera model from a 3x3 intrinsic matrix."""
        return cls(CameraIntrinsics.from_matrix(K), image_size)

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> CameraModel:
        """Load a camera model from a sensor.yaml calibration file.

        Expected keys (EuRoC layout):
            intrinsics: [fu, fv, cu, cv]
            resolution: [width, height]

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the calibration data is invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        intrinsics_list = data.get("intrinsics")
        if intrinsics_list is None or len(intrinsics_list) != 4:
            raise ValueError(f"Invalid intrinsics in {yaml_path}")

        resolution = data.get("resolution")
        if resolution is None or len(resolution) != 2:
            raise ValueError(f"Invalid resolution in {yaml_path}")

        intrinsics = CameraIntrinsics(
            fx=float(intrinsics_list[0]),
            fy=float(intrinsics_list[1]),
            cx=float(intrinsics_list[2]),
            cy=float(intrinsics_list[3]),
        )
        return cls(intrinsics, (int(resolution[0]), int(resolution[1])))

    def project(
        self, points_3d: np.ndarray, pose: SE3
    ) -> tuple[np.ndarray, np.ndarray]:
        """Project world points into pixel coordinates.

        Applies the extrinsic transform, then the intrinsic projection.

        Args:
            points_3d: Nx3 points in world (model) frame
            pose: Extrinsic T_camera_world

        Returns:
            Tuple of (pixels, in_front) where pixels is Nx2 (NaN for points
            behind the camera) and in_front is an (N,) bool mask of points
            with strictly positive depth.
        """
        points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
        if len(points_3d) == 0:
            return np.empty((0, 2), dtype=np.float64), np.zeros(0, dtype=bool)

        points_cam = pose.transform_points(points_3d)
        depth = points_cam[:, 2]
        in_front = depth > 0.0

        pixels = np.full((len(points_3d), 2), np.nan, dtype=np.float64)
        front = points_cam[in_front]
        k = self._intrinsics
        pixels[in_front, 0] = k.fx * front[:, 0] / front[:, 2] + k.cx
        pixels[in_front, 1] = k.fy * front[:, 1] / front[:, 2] + k.cy

        return pixels, in_front

    def is_visible(self, pixels: np.ndarray) -> np.ndarray:
        """Return an (N,) bool mask of pixels that lie on the sensor."""
        pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
        width, height = self._image_size
        with np.errstate(invalid="ignore"):
            return (
                np.isfinite(pixels).all(axis=1)
                & (pixels[:, 0] >= 0.0)
                & (pixels[:, 0] < width)
                & (pixels[:, 1] >= 0.0)
                & (pixels[:, 1] < height)
            )

    def visible_points(
        self, points_3d: np.ndarray, pose: SE3
    ) -> tuple[np.ndarray, np.ndarray]:
        """Project points and keep those in front of the camera and on the sensor.

        Returns:
            Tuple of (indices, pixels): indices into ``points_3d`` of the
            visible points and their Mx2 pixel coordinates.
        """
        pixels, in_front = self.project(points_3d, pose)
        visible = in_front & self.is_visible(pixels)
        indices = np.flatnonzero(visible)
        return indices, pixels[visible]

    @property
    def intrinsics(self) -> CameraIntrinsics:
        return self._intrinsics

    @property
    def camera_matrix(self) -> np.ndarray:
        """Return the read-only 3x3 intrinsic matrix K."""
        return self._K

    @property
    def image_size(self) -> tuple[int, int]:
        """Return image size as (width, height)."""
        return self._image_size
