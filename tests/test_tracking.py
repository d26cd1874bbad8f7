"""Tests for PnPSolver and PoseTracker."""

import numpy as np
import pytest

from conftest import make_pose, project_all, project_visible
from monovo import (
    SE3,
    CameraModel,
    CorrespondenceFinder,
    EstimationStatus,
    Features,
    PnPSolver,
    PointModel,
    PoseTracker,
    TrackerConfig,
)
from monovo.tracking import reprojection_errors


@pytest.fixture
def tracker(camera: CameraModel) -> PoseTracker:
    finder = CorrespondenceFinder(camera, max_descriptor_space_distance=10.0)
    return PoseTracker(finder, TrackerConfig(max_pnp_iterations=10))


class TestReprojectionErrors:
    """Test suite for reprojection_errors."""

    def test_zero_for_exact_projection(
        self, camera: CameraModel, model: PointModel, true_pose: SE3
    ):
        """Exact projections have no error."""
        pixels = project_all(camera, model, true_pose).points
        errors = reprojection_errors(
            model.points, pixels, true_pose, camera.camera_matrix
        )
        np.testing.assert_allclose(errors, 0.0, atol=1e-9)

    def test_infinite_behind_camera(self, camera: CameraModel):
        """Points behind the camera have infinite error."""
        errors = reprojection_errors(
            np.array([[0.0, 0.0, -1.0], [0.0, 0.0, 5.0]]),
            np.array([[320.0, 240.0], [323.0, 244.0]]),
            SE3.identity(),
            camera.camera_matrix,
        )
        assert np.isinf(errors[0])
        assert errors[1] == pytest.approx(5.0)


class TestPnPSolver:
    """Test suite for PnPSolver."""

    def test_solves_without_guess(
        self, camera: CameraModel, model: PointModel, true_pose: SE3
    ):
        """Exact correspondences give the true extrinsic."""
        pixels = project_all(camera, model, true_pose).points

        result = PnPSolver().solve(model.points, pixels, camera.camera_matrix)

        assert result.success
        assert result.num_inliers == len(model)
        np.testing.assert_allclose(result.pose.rotation, true_pose.rotation, atol=1e-6)
        np.testing.assert_allclose(
            result.pose.translation, true_pose.translation, atol=1e-6
        )
        assert result.reprojection_error < 1e-6

    def test_refines_from_guess(
        self, camera: CameraModel, model: PointModel, true_pose: SE3
    ):
        """A nearby guess converges to the true extrinsic."""
        pixels = project_all(camera, model, true_pose).points
        guess = make_pose([0.04, -0.01, 0.0], [0.15, -0.1, 0.3])

        result = PnPSolver().solve(
            model.points, pixels, camera.camera_matrix, initial_pose=guess
        )

        assert result.success
        np.testing.assert_allclose(
            result.pose.translation, true_pose.translation, atol=1e-6
        )

    def test_ransac_rejects_outliers(
        self, camera: CameraModel, model: PointModel, true_pose: SE3
    ):
        """RANSAC screening marks gross outliers."""
        rng = np.random.default_rng(4)
        pixels = project_all(camera, model, true_pose).points.copy()
        pixels[:10] += rng.uniform(50.0, 100.0, (10, 2))

        solver = PnPSolver(use_ransac=True, reprojection_error=4.0, min_inliers_count=20)
        result = solver.solve(model.points, pixels, camera.camera_matrix)

        assert result.success
        assert not result.inliers[:10].any()
        assert result.num_inliers == len(model) - 10
        np.testing.assert_allclose(
            result.pose.translation, true_pose.translation, atol=1e-4
        )

    def test_too_few_points(self, camera: CameraModel):
        """Three correspondences cannot determine a pose."""
        result = PnPSolver().solve(
            np.ones((3, 3)), np.ones((3, 2)), camera.camera_matrix
        )
        assert not result.success
        assert result.pose is None


class TestPoseTracker:
    """Test suite for incremental tracking."""

    def test_zero_motion_is_idempotent(
        self, tracker: PoseTracker, camera: CameraModel, model: PointModel, true_pose: SE3
    ):
        """Tracking from the converged pose leaves it in place."""
        features = project_visible(camera, model, true_pose)

        result = tracker.estimate_motion(true_pose, model, features)

        assert result.status == EstimationStatus.OK
        assert true_pose.rotation_angle_to(result.pose) < 1e-6
        assert true_pose.translation_distance_to(result.pose) < 1e-6
        assert len(np.unique(result.correspondences.feature_indices)) == len(
            result.correspondences
        )

    def test_small_motion(
        self, tracker: PoseTracker, camera: CameraModel, model: PointModel, true_pose: SE3
    ):
        """A slightly stale prior converges to the new pose."""
        features = project_visible(camera, model, true_pose)
        rvec, tvec = true_pose.to_rvec_tvec()
        prior = make_pose(rvec + [0.004, -0.003, 0.002], tvec + [0.01, 0.0, -0.01])

        result = tracker.estimate_motion(prior, model, features)

        assert result.success
        assert result.iterations == 10
        assert true_pose.rotation_angle_to(result.pose) < 1e-5
        assert true_pose.translation_distance_to(result.pose) < 1e-5
        assert result.reprojection_error < 1e-3

    def test_convergence_tolerance_stops_early(
        self, camera: CameraModel, model: PointModel, true_pose: SE3
    ):
        """Rounds stop once the pose no longer moves."""
        finder = CorrespondenceFinder(camera)
        tracker = PoseTracker(
            finder, TrackerConfig(max_pnp_iterations=10, convergence_tolerance=1e-6)
        )
        features = project_visible(camera, model, true_pose)

        result = tracker.estimate_motion(true_pose, model, features)

        assert result.success
        assert result.iterations < 10

    def test_empty_features_lose_tracking(
        self, tracker: PoseTracker, model: PointModel, true_pose: SE3
    ):
        """No features means tracking is lost and the prior is untouched."""
        prior = true_pose.copy()

        result = tracker.estimate_motion(prior, model, Features.empty())

        assert result.status == EstimationStatus.TRACKING_LOST
        assert result.pose is prior
        np.testing.assert_array_equal(prior.to_matrix(), true_pose.to_matrix())
        assert result.correspondences.is_empty

    def test_features_out_of_reach_lose_tracking(
        self, tracker: PoseTracker, model: PointModel, true_pose: SE3
    ):
        """Features far from every projection give no correspondences."""
        features = Features(points=[[1.0, 1.0], [2.0, 1.0], [1.0, 2.0], [2.0, 2.0]])
        result = tracker.estimate_motion(true_pose, model, features)
        assert result.status == EstimationStatus.TRACKING_LOST

    def test_iteration_override(
        self, tracker: PoseTracker, camera: CameraModel, model: PointModel, true_pose: SE3
    ):
        """max_pnp_iterations can be overridden per call."""
        features = project_visible(camera, model, true_pose)
        result = tracker.estimate_motion(true_pose, model, features, max_pnp_iterations=2)
        assert result.iterations == 2

    @pytest.mark.parametrize("rounds", [0, -3])
    def test_iteration_override_must_be_positive(
        self, tracker: PoseTracker, model: PointModel, true_pose: SE3, rounds: int
    ):
        """A non-positive round count is rejected, not replaced by the default."""
        with pytest.raises(ValueError, match="max_pnp_iterations"):
            tracker.estimate_motion(
                true_pose, model, Features.empty(), max_pnp_iterations=rounds
            )

    def test_last_round_prunes_without_pruning_enabled(
        self, camera: CameraModel, model: PointModel, true_pose: SE3
    ):
        """Final correspondences never share a feature, even with pruning off."""
        # Twins half a pixel from the first ten points compete for their features
        crowded = model.append(model.points[:10] + [0.005, 0.0, 0.0])
        features = project_visible(camera, model, true_pose)
        finder = CorrespondenceFinder(camera, max_descriptor_space_distance=10.0)
        tracker = PoseTracker(
            finder, TrackerConfig(max_pnp_iterations=3, prune_repeated_matches=False)
        )

        assert len(finder.find(crowded, true_pose, features, prune_repeats=False)) > len(
            features
        )

        result = tracker.estimate_motion(true_pose, crowded, features)

        assert result.success
        indices = result.correspondences.feature_indices
        assert len(np.unique(indices)) == len(indices)
