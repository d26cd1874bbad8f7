"""Sparse 3D point model (the map) that the camera is localized against."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class PointModel:
    """Ordered, append-only set of labeled 3D points.

    The model is loaded once at startup and stays read-only while the
    odometry runs, so it can be shared freely between readers.

    Attributes:
        points: Nx3 array of point positions in the world frame
        labels: (N,) integer labels (defaults to the point index)
        descriptors: Optional NxD appearance descriptors, one per point,
            used to form putative matches during bootstrap
    """

    points: np.ndarray  # (N, 3) float64
    labels: np.ndarray | None = None  # (N,) int64
    descriptors: np.ndarray | None = None

    def __post_init__(self) -> None:
        """Validate shapes and freeze the arrays."""
        self.points = np.array(self.points, dtype=np.float64).reshape(-1, 3)
        if not np.isfinite(self.points).all():
            raise ValueError("Model points must be finite")

        if self.labels is None:
            self.labels = np.arange(len(self.points), dtype=np.int64)
        else:
            self.labels = np.array(self.labels, dtype=np.int64).flatten()
            if len(self.labels) != len(self.points):
                raise ValueError(
                    f"Got {len(self.labels)} labels for {len(self.points)} points"
                )

        if self.descriptors is not None:
            self.descriptors = np.array(self.descriptors)
            if len(self.descriptors) != len(self.points):
                raise ValueError(
                    f"Got {len(self.descriptors)} descriptors for {len(self.points)} points"
                )
            self.descriptors.setflags(write=False)

        self.points.setflags(write=False)
        self.labels.setflags(write=False)

    def append(
        self,
        points: np.ndarray,
        labels: np.ndarray | None = None,
        descriptors: np.ndarray | None = None,
    ) -> PointModel:
        """Return a new model with ``points`` appended after the existing ones.

        Existing indices and labels are preserved.
        """
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if labels is None:
            start = int(self.labels.max()) + 1 if len(self.labels) else 0
            labels = np.arange(start, start + len(points), dtype=np.int64)

        if (self.descriptors is None) != (descriptors is None) and len(self.points) > 0:
            raise ValueError("Appended points must match the model's descriptor layout")

        merged_descriptors = None
        if descriptors is not None:
            merged_descriptors = (
                descriptors
                if self.descriptors is None
                else np.vstack([self.descriptors, descriptors])
            )

        return PointModel(
            points=np.vstack([self.points, points]),
            labels=np.concatenate([self.labels, np.asarray(labels, dtype=np.int64)]),
            descriptors=merged_descriptors,
        )

    @property
    def has_descriptors(self) -> bool:
        return self.descriptors is not None and len(self.descriptors) > 0

    @property
    def num_points(self) -> int:
        return len(self.points)

    def __len__(self) -> int:
        """Return number of model points."""
        return len(self.points)
