"""Correspondence search, RANSAC bootstrap and incremental PnP tracking.

Components:
- Features/FeatureDetector: per-frame 2D features (ORB by default)
- SpatialMatcher: KD-tree nearest-neighbor search over feature pixels
- CorrespondenceFinder: projected model <-> feature correspondences
- PoseBootstrapper: RANSAC over 6-point samples for the first pose
- PnPSolver: iterative (optionally RANSAC) PnP
- PoseTracker: correspondence/PnP rounds refining a prior pose
"""

from .bootstrap import BootstrapResult, PoseBootstrapper, PoseHypothesis, fitness
from .correspondence import CorrespondenceFinder, Correspondences
from .features import FeatureDetector, Features
from .pnp import PnPResult, PnPSolver, reprojection_errors
from .pose_tracker import PoseTracker, TrackingResult
from .spatial_matcher import NO_MATCH, SpatialMatcher, SpatialMatches

__all__ = [
    # Features
    "Features",
    "FeatureDetector",
    # Matching
    "SpatialMatcher",
    "SpatialMatches",
    "NO_MATCH",
    "CorrespondenceFinder",
    "Correspondences",
    # Bootstrap
    "PoseBootstrapper",
    "PoseHypothesis",
    "BootstrapResult",
    "fitness",
    # Tracking
    "PnPSolver",
    "PnPResult",
    "reprojection_errors",
    "PoseTracker",
    "TrackingResult",
]
