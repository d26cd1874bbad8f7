"""2D feature containers and the default ORB feature detector."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


@dataclass(frozen=True)
class Features:
    """Container for one frame's detected image features.

    Immutable: the arrays are private read-only copies, so a KD-tree built
    over one Features object stays valid for as long as the object lives.

    Attributes:
        points: Nx2 array of (x, y) pixel coordinates
        descriptors: NxD descriptor array (rows aligned with ``points``),
            or None when the detector provides no descriptors
    """

    points: np.ndarray  # (N, 2) float64
    descriptors: np.ndarray | None = None

    def __post_init__(self) -> None:
        """Copy the arrays, check descriptor alignment and freeze them."""
        points = np.array(self.points, dtype=np.float64).reshape(-1, 2)
        points.setflags(write=False)
        object.__setattr__(self, "points", points)

        if self.descriptors is not None:
            descriptors = np.array(self.descriptors)
            if len(descriptors) != len(points):
                raise ValueError(
                    f"Got {len(descriptors)} descriptors for {len(points)} points"
                )
            descriptors.setflags(write=False)
            object.__setattr__(self, "descriptors", descriptors)

    @classmethod
    def empty(cls) -> Features:
        """Return a feature set with no points."""
        return cls(points=np.empty((0, 2), dtype=np.float64))

    @classmethod
    def from_keypoints(
        cls,
        keypoints: tuple[cv2.KeyPoint, ...] | list[cv2.KeyPoint],
        descriptors: np.ndarray | None = None,
    ) -> Features:
        """Build features from OpenCV keypoints."""
        if len(keypoints) == 0:
            return cls.empty()
        points = np.array([kp.pt for kp in keypoints], dtype=np.float64)
        return cls(points=points, descriptors=descriptors)

    @property
    def has_descriptors(self) -> bool:
        return self.descriptors is not None and len(self.descriptors) > 0

    def __len__(self) -> int:
        """Return number of detected features."""
        return len(self.points)


class FeatureDetector:
    """ORB feature detector for sparse feature extraction.

    ORB (Oriented FAST and Rotated BRIEF) is a fast, rotation-invariant
    detector with binary descriptors. Any object with a compatible
    ``detect(image) -> Features`` method can replace it in the odometry.
    """

    def __init__(
        self,
        n_features: int = 1000,
        scale_factor: float = 1.2,
        n_levels: int = 8,
        edge_threshold: int = 31,
        fast_threshold: int = 20,
    ) -> None:
        """Initialize ORB detector with configurable parameters.

        Args:
            n_features: Maximum number of features to retain (sorted by score)
            scale_factor: Pyramid decimation ratio (>1.0)
            n_levels: Number of pyramid levels for multi-scale detection
            edge_threshold: Border margin (pixels) where features are not detected
            fast_threshold: Threshold for FAST corner detection
        """
        self._orb = cv2.ORB_create(
            nfeatures=n_features,
            scaleFactor=scale_factor,
            nlevels=n_levels,
            edgeThreshold=edge_threshold,
            fastThreshold=fast_threshold,
        )
        self._n_features = n_features

    def detect(self, image: np.ndarray, mask: np.ndarray | None = None) -> Features:
        """Detect ORB features in an image.

        Args:
            image: Grayscale (uint8) or BGR image
            mask: Optional binary mask where 255 = detect, 0 = ignore

        Returns:
            Features with pixel coordinates and ORB descriptors
        """
        if image.ndim == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

        keypoints, descriptors = self._orb.detectAndCompute(image, mask)

        if keypoints is None or len(keypoints) == 0:
            return Features.empty()

        return Features.from_keypoints(tuple(keypoints), descriptors)

    @property
    def n_features(self) -> int:
        """Return maximum number of features to detect."""
        return self._n_features
