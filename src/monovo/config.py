"""Configuration for the model-based monocular odometry pipeline.

Values can be built in code or loaded from YAML:

    bootstrap:
      min_inliers: 12
      max_iterations: 500
      distance_threshold: 2.0
    tracker:
      max_pnp_iterations: 10
      prune_repeated_matches: true
    max_descriptor_space_distance: 10.0
    auto_rebootstrap: true
    random_seed: 0
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError


def _build(cls, data: dict[str, Any] | None, section: str):
    """Instantiate a config dataclass, rejecting unknown keys."""
    data = dict(data or {})
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown keys in '{section}' config: {', '.join(unknown)}")
    return cls(**data)


@dataclass
class BootstrapConfig:
    """RANSAC bootstrap parameters.

    Attributes:
        min_inliers: Inliers a hypothesis needs to be accepted
        max_iterations: Maximum RANSAC iterations
        distance_threshold: Inlier reprojection threshold in pixels
        early_accept_ratio: Stop as soon as this fraction of the putative
            correspondences (and at least min_inliers) are inliers
        confidence: Probability used for the adaptive iteration bound;
            1.0 disables adaptive termination
        assume_index_alignment: Pair model point i with feature i when no
            descriptors are available. Only valid when the detector emits
            features in model order.
        ratio_threshold: Lowe's ratio test threshold for descriptor matching
        max_descriptor_distance: Largest accepted descriptor distance
        refine: Refine the winning hypothesis with iterative PnP on its inliers
    """

    min_inliers: int = 10
    max_iterations: int = 500
    distance_threshold: float = 2.0
    early_accept_ratio: float = 0.9
    confidence: float = 0.999
    assume_index_alignment: bool = False
    ratio_threshold: float = 0.75
    max_descriptor_distance: float = 64.0
    refine: bool = True

    def __post_init__(self) -> None:
        if self.min_inliers < 6:
            raise ConfigError("bootstrap.min_inliers must be at least 6")
        if self.max_iterations < 1:
            raise ConfigError("bootstrap.max_iterations must be at least 1")
        if self.distance_threshold <= 0:
            raise ConfigError("bootstrap.distance_threshold must be positive")
        if not 0.0 < self.early_accept_ratio <= 1.0:
            raise ConfigError("bootstrap.early_accept_ratio must be in (0, 1]")
        if not 0.0 < self.confidence <= 1.0:
            raise ConfigError("bootstrap.confidence must be in (0, 1]")
        if not 0.0 < self.ratio_threshold <= 1.0:
            raise ConfigError("bootstrap.ratio_threshold must be in (0, 1]")


@dataclass
class TrackerConfig:
    """Incremental PnP tracking parameters.

    Attributes:
        max_pnp_iterations: Correspondence/PnP rounds per frame
        prune_repeated_matches: Prune repeated matches on every round; the
            final round always prunes
        convergence_tolerance: Stop early once a round moves the pose by
            less than this (radians + translation units). 0 disables it.
        use_ransac: Screen correspondences with RANSAC PnP before refining
        ransac_iterations: RANSAC PnP iterations
        reprojection_error: RANSAC PnP inlier threshold in pixels
        min_inliers_count: Minimum RANSAC PnP inliers
    """

    max_pnp_iterations: int = 10
    prune_repeated_matches: bool = True
    convergence_tolerance: float = 0.0
    use_ransac: bool = False
    ransac_iterations: int = 100
    reprojection_error: float = 8.0
    min_inliers_count: int = 20

    def __post_init__(self) -> None:
        if self.max_pnp_iterations < 1:
            raise ConfigError("tracker.max_pnp_iterations must be at least 1")
        if self.convergence_tolerance < 0:
            raise ConfigError("tracker.convergence_tolerance must be non-negative")
        if self.reprojection_error <= 0:
            raise ConfigError("tracker.reprojection_error must be positive")


@dataclass
class OdometryConfig:
    """Top-level odometry configuration.

    Attributes:
        bootstrap: RANSAC bootstrap parameters
        tracker: Incremental tracking parameters
        max_descriptor_space_distance: Largest pixel distance between a
            projected model point and the feature it is matched to
        auto_rebootstrap: Fall back to bootstrapping when tracking is lost;
            otherwise stay LOST until a bootstrap is requested
        random_seed: Seed for the RANSAC sampler (None = nondeterministic)
        queue_size: Frames buffered ahead of the pipeline before the oldest
            is dropped
    """

    bootstrap: BootstrapConfig = field(default_factory=BootstrapConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    max_descriptor_space_distance: float = 10.0
    auto_rebootstrap: bool = True
    random_seed: int | None = None
    queue_size: int = 1

    def __post_init__(self) -> None:
        if self.max_descriptor_space_distance <= 0:
            raise ConfigError("max_descriptor_space_distance must be positive")
        if self.queue_size < 1:
            raise ConfigError("queue_size must be at least 1")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> OdometryConfig:
        """Build a config from nested dictionaries."""
        data = dict(data or {})
        bootstrap = _build(BootstrapConfig, data.pop("bootstrap", None), "bootstrap")
        tracker = _build(TrackerConfig, data.pop("tracker", None), "tracker")
        unknown = sorted(set(data) - {f.name for f in fields(cls)})
        if unknown:
            raise ConfigError(f"Unknown keys in odometry config: {', '.join(unknown)}")
        return cls(bootstrap=bootstrap, tracker=tracker, **data)

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> OdometryConfig:
        """Load a config from a YAML file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ConfigError: If the file content is invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {yaml_path}")

        with open(path, "r") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {yaml_path}: {e}") from e

        if data is not None and not isinstance(data, dict):
            raise ConfigError(f"Expected a mapping at the top of {yaml_path}")

        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Return the config as nested dictionaries."""
        return asdict(self)

