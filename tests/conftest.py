"""Shared fixtures: a synthetic camera, model and ground-truth pose."""

import cv2
import numpy as np
import pytest

from monovo import SE3, CameraModel, Features, PointModel


def make_pose(rvec, tvec) -> SE3:
    """Build an extrinsic from a Rodrigues vector and translation."""
    R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64))
    return SE3(rotation=R, translation=np.asarray(tvec, dtype=np.float64))


def project_all(camera: CameraModel, model: PointModel, pose: SE3) -> Features:
    """Features at the exact projection of every model point, in model order."""
    pixels, in_front = camera.project(model.points, pose)
    assert in_front.all(), "synthetic model must lie in front of the camera"
    return Features(points=pixels)


def project_visible(camera: CameraModel, model: PointModel, pose: SE3) -> Features:
    """Features at the exact projection of every visible model point."""
    _, pixels = camera.visible_points(model.points, pose)
    return Features(points=pixels)


@pytest.fixture
def camera() -> CameraModel:
    """640x480 pinhole camera with a 500 px focal length."""
    K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])
    return CameraModel.from_matrix(K, (640, 480))


@pytest.fixture
def model() -> PointModel:
    """80 random points spread in front of the camera."""
    rng = np.random.default_rng(7)
    points = np.column_stack(
        [
            rng.uniform(-2.0, 2.0, 80),
            rng.uniform(-1.5, 1.5, 80),
            rng.uniform(4.0, 8.0, 80),
        ]
    )
    return PointModel(points=points)


@pytest.fixture
def true_pose() -> SE3:
    """Ground-truth extrinsic with a small rotation and translation."""
    return make_pose([0.03, -0.02, 0.01], [0.1, -0.05, 0.2])
