"""Configuration dataclasses, YAML loading and command-line parsing."""

import argparse
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Sequence,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

import yaml

from ..exceptions import ConfigurationError

_POSE_TYPE_NAMES = ("se2", "se3")


def _coerce(name: str, hint: Any, value: Any) -> Any:
    """Convert a raw YAML value to the annotated type of a configuration field.

    Raises:
        ConfigurationError: If the value cannot represent the field type.
    """
    if get_origin(hint) is Union:
        if value is None:
            return None
        hint = next(arg for arg in get_args(hint) if arg is not type(None))

    if get_origin(hint) is list:
        if not isinstance(value, (list, tuple)):
            raise ConfigurationError(f"{name} must be a list, got {value!r}")
        (item_hint,) = get_args(hint)
        return [_coerce(name, item_hint, item) for item in value]
    if hint is bool:
        if not isinstance(value, bool):
            raise ConfigurationError(f"{name} must be true or false, got {value!r}")
        return value
    if hint is str:
        if not isinstance(value, str):
            raise ConfigurationError(f"{name} must be a string, got {value!r}")
        return value
    if hint is int:
        integral = isinstance(value, (int, float)) and float(value).is_integer()
        if isinstance(value, bool) or not integral:
            raise ConfigurationError(f"{name} must be an integer, got {value!r}")
        return int(value)
    if hint is float:
        if isinstance(value, bool):
            raise ConfigurationError(f"{name} must be a number, got {value!r}")
        # PyYAML reads exponents without a decimal point (1e-6) as strings
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc
    return value


@dataclass
class NodeDeciderConfig:
    """Thresholds of the node registration deciders."""

    linear_distance_threshold: float = 0.5  # m
    angular_distance_threshold: float = 0.5236  # rad (30 deg)
    odometry_sigmas: Optional[List[float]] = None  # per DoF, pose-type default if None

    def validate(self) -> None:
        if self.linear_distance_threshold <= 0:
            raise ConfigurationError("linear_distance_threshold must be positive")
        if self.angular_distance_threshold <= 0:
            raise ConfigurationError("angular_distance_threshold must be positive")
        if self.odometry_sigmas is not None and any(s <= 0 for s in self.odometry_sigmas):
            raise ConfigurationError("odometry_sigmas must all be positive")


@dataclass
class AlignmentConfig:
    """Observation alignment parameters shared by all alignment-based deciders."""

    alignment_quality_threshold: float = 0.6
    max_correspondence_distance: float = 0.5  # m
    max_iterations: int = 50
    tolerance: float = 1e-6
    min_correspondences: int = 10

    def validate(self) -> None:
        if not 0.0 <= self.alignment_quality_threshold <= 1.0:
            raise ConfigurationError("alignment_quality_threshold must lie in [0, 1]")
        if self.max_correspondence_distance <= 0:
            raise ConfigurationError("max_correspondence_distance must be positive")
        if self.max_iterations < 1:
            raise ConfigurationError("alignment max_iterations must be at least 1")
        if self.tolerance <= 0:
            raise ConfigurationError("alignment tolerance must be positive")
        if self.min_correspondences < 3:
            raise ConfigurationError("min_correspondences must be at least 3")


@dataclass
class LoopCloserConfig:
    """Parameters of the pairwise-consistency loop closer."""

    partition_radius: float = 3.0  # m
    consistency_tolerance: float = 0.1  # minimum pairwise score in (0, 1]
    min_node_id_gap: int = 10
    max_candidates: int = 5

    def validate(self) -> None:
        if self.partition_radius <= 0:
            raise ConfigurationError("partition_radius must be positive")
        if not 0.0 < self.consistency_tolerance <= 1.0:
            raise ConfigurationError("consistency_tolerance must lie in (0, 1]")
        if self.min_node_id_gap < 1:
            raise ConfigurationError("min_node_id_gap must be at least 1")
        if self.max_candidates < 1:
            raise ConfigurationError("max_candidates must be at least 1")


@dataclass
class OptimizerConfig:
    """Optimizer parameters and trigger policy."""

    max_iterations: int = 100
    convergence_tolerance: float = 1e-6
    initial_damping: float = 1e-3
    optimize_every_n_edges: int = 10  # 0 disables the periodic trigger

    def validate(self) -> None:
        if self.max_iterations < 1:
            raise ConfigurationError("optimizer max_iterations must be at least 1")
        if self.convergence_tolerance <= 0:
            raise ConfigurationError("convergence_tolerance must be positive")
        if self.initial_damping <= 0:
            raise ConfigurationError("initial_damping must be positive")
        if self.optimize_every_n_edges < 0:
            raise ConfigurationError("optimize_every_n_edges must be non-negative")


@dataclass
class EngineConfig:
    """Engine-level selection of components."""

    pose_type: str = "se2"
    node_decider: str = "fixed_intervals"
    edge_decider: str = "alignment_criteria"
    optimizer: str = "levenberg_marquardt"
    visualize: bool = True  # push snapshots to an attached sink

    def validate(self) -> None:
        if self.pose_type not in _POSE_TYPE_NAMES:
            raise ConfigurationError(
                f"pose_type must be one of {', '.join(_POSE_TYPE_NAMES)}, got '{self.pose_type}'"
            )


@dataclass
class GraphSlamConfig:
    """Complete engine configuration."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    node_decider: NodeDeciderConfig = field(default_factory=NodeDeciderConfig)
    alignment: AlignmentConfig = field(default_factory=AlignmentConfig)
    loop_closer: LoopCloserConfig = field(default_factory=LoopCloserConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)

    def validate(self) -> "GraphSlamConfig":
        """Validate every section.

        Returns:
            The configuration itself.

        Raises:
            ConfigurationError: If any parameter is out of range.
        """
        self.engine.validate()
        self.node_decider.validate()
        self.alignment.validate()
        self.loop_closer.validate()
        self.optimizer.validate()

        sigmas = self.node_decider.odometry_sigmas
        dof = 3 if self.engine.pose_type == "se2" else 6
        if sigmas is not None and len(sigmas) != dof:
            raise ConfigurationError(
                f"odometry_sigmas must have {dof} entries for pose_type '{self.engine.pose_type}'"
            )
        return self

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GraphSlamConfig":
        """Build a configuration from nested dictionaries.

        Args:
            data: Mapping of section name to a mapping of parameters.

        Returns:
            GraphSlamConfig with defaults for missing values.

        Raises:
            ConfigurationError: On unknown sections or parameters.
        """
        config = cls()
        if not data:
            return config
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a mapping of sections")

        sections = {f.name for f in fields(cls)}
        for section, values in data.items():
            if section not in sections:
                raise ConfigurationError(f"Unknown configuration section '{section}'")
            if values is None:
                continue
            if not isinstance(values, dict):
                raise ConfigurationError(f"Section '{section}' must be a mapping")
            target = getattr(config, section)
            hints = get_type_hints(type(target))
            for key, value in values.items():
                if key not in hints:
                    raise ConfigurationError(f"Unknown parameter '{section}.{key}'")
                setattr(target, key, _coerce(f"{section}.{key}", hints[key], value))
        return config

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(path: Union[str, Path]) -> GraphSlamConfig:
    """Load a YAML configuration file.

    Args:
        path: Path to the YAML file.

    Returns:
        Validated GraphSlamConfig.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")
    with open(path, "r") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    return GraphSlamConfig.from_dict(data).validate()


def build_parser() -> argparse.ArgumentParser:
    """Create the command-line parser of the ``graphslam-engine`` application."""
    parser = argparse.ArgumentParser(
        description="Incremental pose-graph SLAM over a recorded stream"
    )

    # Input
    parser.add_argument("--config", type=str, default=None, help="YAML configuration file")
    parser.add_argument(
        "--records", type=str, default=None, help="JSON-lines file with stream records"
    )
    parser.add_argument(
        "--ground-truth",
        type=str,
        default=None,
        help="Ground-truth file (timestamp x y z qx qy qz qw per line)",
    )

    # Component selection
    parser.add_argument("--node-reg", type=str, default=None, help="Node registration decider")
    parser.add_argument("--edge-reg", type=str, default=None, help="Edge registration decider")
    parser.add_argument("--optimizer", type=str, default=None, help="Graph optimizer")
    parser.add_argument(
        "--pose-type", type=str, default=None, choices=list(_POSE_TYPE_NAMES), help="Pose type"
    )

    # Listings
    parser.add_argument(
        "--list-node-regs", action="store_true", help="List node registration deciders"
    )
    parser.add_argument(
        "--list-edge-regs", action="store_true", help="List edge registration deciders"
    )
    parser.add_argument("--list-regs", action="store_true", help="List all deciders")
    parser.add_argument("--list-optimizers", action="store_true", help="List graph optimizers")

    # Output
    parser.add_argument(
        "--output-dir", type=str, default=None, help="Directory for poses, statistics and figures"
    )
    parser.add_argument(
        "--disable-visuals", action="store_true", help="Run headless (no snapshot rendering)"
    )
    parser.add_argument("--progress", action="store_true", help="Show a progress bar")

    # Verbose
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    return build_parser().parse_args(argv)
