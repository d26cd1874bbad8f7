"""monovo - model-based monocular visual odometry in Python."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .config import BootstrapConfig, OdometryConfig, TrackerConfig
from .errors import ConfigError, EstimationStatus, ModelLoadError
from .geometry import SE3, CameraIntrinsics, CameraModel, DLTPoseSolver
from .io import load_model
from .model import PointModel
from .tracking import (
    BootstrapResult,
    CorrespondenceFinder,
    Correspondences,
    FeatureDetector,
    Features,
    PnPSolver,
    PoseBootstrapper,
    PoseTracker,
    SpatialMatcher,
    TrackingResult,
)
from .odometry import (
    MonocularVisualOdometry,
    OdometryFrame,
    OdometryTiming,
    TrackingState,
)
from .frame_queue import FrameQueue
from .utils import setup_logger

__all__ = [
    "__version__",
    # Configuration / errors
    "OdometryConfig",
    "BootstrapConfig",
    "TrackerConfig",
    "ConfigError",
    "ModelLoadError",
    "EstimationStatus",
    # Geometry
    "SE3",
    "CameraIntrinsics",
    "CameraModel",
    "DLTPoseSolver",
    # Model
    "PointModel",
    "load_model",
    # Tracking
    "Features",
    "FeatureDetector",
    "SpatialMatcher",
    "CorrespondenceFinder",
    "Correspondences",
    "PoseBootstrapper",
    "BootstrapResult",
    "PnPSolver",
    "PoseTracker",
    "TrackingResult",
    # Odometry
    "MonocularVisualOdometry",
    "OdometryFrame",
    "OdometryTiming",
    "TrackingState",
    "FrameQueue",
    # Logging
    "setup_logger",
]
