"""3D-2D correspondence search between the projected model and a frame."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..geometry import SE3, CameraModel
from ..model import PointModel
from .features import Features
from .spatial_matcher import SpatialMatcher


@dataclass
class Correspondences:
    """Paired model points and image features for one pose estimate.

    Attributes:
        points_3d: Nx3 model points (world frame)
        points_2d: Nx2 matched feature pixels
        model_indices: (N,) index of each pair's point in the model
        feature_indices: (N,) index of each pair's feature in the frame
        distances: (N,) pixel distance between projection and feature
    """

    points_3d: np.ndarray
    points_2d: np.ndarray
    model_indices: np.ndarray
    feature_indices: np.ndarray
    distances: np.ndarray

    @classmethod
    def empty(cls) -> Correspondences:
        return cls(
            points_3d=np.empty((0, 3), dtype=np.float64),
            points_2d=np.empty((0, 2), dtype=np.float64),
            model_indices=np.empty(0, dtype=np.int64),
            feature_indices=np.empty(0, dtype=np.int64),
            distances=np.empty(0, dtype=np.float64),
        )

    def subset(self, mask: np.ndarray) -> Correspondences:
        """Return the correspondences selected by a bool mask or index array."""
        return Correspondences(
            points_3d=self.points_3d[mask],
            points_2d=self.points_2d[mask],
            model_indices=self.model_indices[mask],
            feature_indices=self.feature_indices[mask],
            distances=self.distances[mask],
        )

    @property
    def is_empty(self) -> bool:
        return len(self.model_indices) == 0

    def __len__(self) -> int:
        """Return number of correspondences."""
        return len(self.model_indices)


class CorrespondenceFinder:
    """Finds which detected features the model points project onto.

    For a pose hypothesis, every model point is projected into the image;
    points behind the camera or off the sensor are discarded, and each
    remaining projection is matched to its nearest detected feature.
    """

    def __init__(
        self,
        camera: CameraModel,
        max_descriptor_space_distance: float = 10.0,
    ) -> None:
        """Initialize correspondence finder.

        Args:
            camera: Camera model used for projection and visibility
            max_descriptor_space_distance: Largest accepted pixel distance
                between a projected model point and its matched feature
        """
        if max_descriptor_space_distance <= 0:
            raise ValueError("max_descriptor_space_distance must be positive")

        self._camera = camera
        self._max_distance = float(max_descriptor_space_distance)
        self._matcher = SpatialMatcher()
        self._indexed_features: Features | None = None

    def find(
        self,
        model: PointModel,
        pose: SE3,
        features: Features,
        prune_repeats: bool = True,
    ) -> Correspondences:
        """Find 3D-2D correspondences for ``pose``.

        Args:
            model: Sparse 3D model
            pose: Extrinsic T_camera_world hypothesis
            features: Current frame's detected features
            prune_repeats: Keep each feature only for its closest model point

        Returns:
            Correspondences (possibly empty; empty means no pose can be
            estimated for this frame)
        """
        if len(model) == 0 or len(features) == 0:
            return Correspondences.empty()

        visible_indices, projected = self._camera.visible_points(model.points, pose)
        if len(visible_indices) == 0:
            return Correspondences.empty()

        # Features are immutable, so the index is rebuilt only for a new object
        if self._indexed_features is not features:
            self._matcher.build(features.points)
            self._indexed_features = features

        matches = self._matcher.match(projected, self._max_distance, prune_repeats)
        keep = matches.matched & (matches.distances <= self._max_distance)
        if not keep.any():
            return Correspondences.empty()

        model_indices = visible_indices[keep]
        feature_indices = matches.indices[keep]

        return Correspondences(
            points_3d=model.points[model_indices],
            points_2d=features.points[feature_indices],
            model_indices=model_indices.astype(np.int64),
            feature_indices=feature_indices.astype(np.int64),
            distances=matches.distances[keep],
        )

    @property
    def max_descriptor_space_distance(self) -> float:
        return self._max_distance

    @property
    def camera(self) -> CameraModel:
        return self._camera
