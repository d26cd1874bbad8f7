"""Error types and recoverable estimation outcomes."""

from enum import Enum


class EstimationStatus(Enum):
    """Outcome of a pose estimation attempt.

    Everything except OK is recoverable: the frame is skipped and the
    shared pose is left untouched.
    """

    OK = "OK"
    NO_CORRESPONDENCES = "NO_CORRESPONDENCES"
    BOOTSTRAP_FAILED = "BOOTSTRAP_FAILED"
    TRACKING_LOST = "TRACKING_LOST"


class ConfigError(ValueError):
    """Raised for invalid or unknown configuration values."""


class ModelLoadError(RuntimeError):
    """Raised when the 3D model cannot be loaded.

    Fatal: without a model no correspondence can ever be found.
    """
