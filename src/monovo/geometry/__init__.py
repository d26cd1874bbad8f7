"""Geometric primitives: poses, the pinhole camera and the minimal solver."""

from .camera import CameraIntrinsics, CameraModel
from .dlt import DLTPoseSolver
from .pose import SE3

__all__ = [
    "SE3",
    "CameraIntrinsics",
    "CameraModel",
    "DLTPoseSolver",
]
