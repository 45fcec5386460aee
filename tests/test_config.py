"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest

from graphslam.exceptions import ConfigurationError
from graphslam.utils.config import GraphSlamConfig, load_config, parse_args


class TestGraphSlamConfig:
    """Test configuration dataclasses."""

    def test_defaults_are_valid(self) -> None:
        """Test that the default configuration validates."""
        config = GraphSlamConfig().validate()

        assert config.engine.pose_type == "se2"
        assert config.node_decider.linear_distance_threshold == 0.5
        assert config.engine.visualize

    def test_from_dict(self) -> None:
        """Test overriding values from nested dictionaries."""
        config = GraphSlamConfig.from_dict(
            {"engine": {"edge_decider": "loop_closer"}, "loop_closer": {"max_candidates": 2}}
        )

        assert config.engine.edge_decider == "loop_closer"
        assert config.loop_closer.max_candidates == 2
        assert config.loop_closer.partition_radius == 3.0

    def test_from_empty(self) -> None:
        """Test that an empty document gives the defaults."""
        assert GraphSlamConfig.from_dict(None) == GraphSlamConfig()

    def test_unknown_section(self) -> None:
        """Test that unknown sections are rejected."""
        with pytest.raises(ConfigurationError, match="section 'sensor'"):
            GraphSlamConfig.from_dict({"sensor": {}})

    def test_unknown_parameter(self) -> None:
        """Test that unknown parameters are rejected."""
        with pytest.raises(ConfigurationError, match="engine.speed"):
            GraphSlamConfig.from_dict({"engine": {"speed": 2}})

    @pytest.mark.parametrize(
        "section, key, value",
        [
            ("node_decider", "linear_distance_threshold", -1.0),
            ("alignment", "alignment_quality_threshold", 1.5),
            ("alignment", "min_correspondences", 2),
            ("loop_closer", "min_node_id_gap", 0),
            ("optimizer", "optimize_every_n_edges", -1),
            ("engine", "pose_type", "se4"),
        ],
    )
    def test_invalid_values(self, section: str, key: str, value: object) -> None:
        """Test that out-of-range parameters are rejected."""
        config = GraphSlamConfig.from_dict({section: {key: value}})
        with pytest.raises(ConfigurationError):
            config.validate()

    @pytest.mark.parametrize(
        "section, key, value",
        [
            ("node_decider", "linear_distance_threshold", "abc"),
            ("node_decider", "odometry_sigmas", 0.1),
            ("node_decider", "odometry_sigmas", [0.1, "x", 0.1]),
            ("alignment", "max_iterations", 2.5),
            ("loop_closer", "min_node_id_gap", "ten"),
            ("optimizer", "initial_damping", True),
            ("engine", "visualize", "yes"),
            ("engine", "pose_type", 2),
        ],
    )
    def test_wrong_value_types(self, section: str, key: str, value: object) -> None:
        """Test that values of the wrong type are configuration errors."""
        with pytest.raises(ConfigurationError, match=f"{section}.{key}"):
            GraphSlamConfig.from_dict({section: {key: value}})

    def test_values_are_converted(self) -> None:
        """Test that numbers are converted to the field types."""
        config = GraphSlamConfig.from_dict(
            {
                "optimizer": {"max_iterations": 20.0, "convergence_tolerance": "1e-8"},
                "node_decider": {"linear_distance_threshold": 1, "odometry_sigmas": [1, 1, 1]},
            }
        )

        assert config.optimizer.max_iterations == 20
        assert isinstance(config.optimizer.max_iterations, int)
        assert config.optimizer.convergence_tolerance == 1e-8
        assert isinstance(config.node_decider.linear_distance_threshold, float)
        assert config.node_decider.odometry_sigmas == [1.0, 1.0, 1.0]

    def test_sigmas_must_match_pose_type(self) -> None:
        """Test that odometry sigmas have one entry per degree of freedom."""
        config = GraphSlamConfig.from_dict(
            {"engine": {"pose_type": "se3"}, "node_decider": {"odometry_sigmas": [0.1, 0.1, 0.1]}}
        )
        with pytest.raises(ConfigurationError, match="6 entries"):
            config.validate()

    def test_to_dict_roundtrip(self) -> None:
        """Test that to_dict output is accepted by from_dict."""
        config = GraphSlamConfig()
        config.optimizer.max_iterations = 7
        assert GraphSlamConfig.from_dict(config.to_dict()) == config


class TestLoadConfig:
    """Test YAML configuration files."""

    def test_load_yaml(self, tmp_path: Path) -> None:
        """Test loading a YAML file."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "engine:\n"
            "  node_decider: alignment_criteria\n"
            "alignment:\n"
            "  alignment_quality_threshold: 0.8\n"
        )

        config = load_config(path)

        assert config.engine.node_decider == "alignment_criteria"
        assert config.alignment.alignment_quality_threshold == 0.8

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test that a missing file is a configuration error."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Test that malformed YAML is a configuration error."""
        path = tmp_path / "broken.yaml"
        path.write_text("engine: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(path)

    def test_wrong_type_in_file(self, tmp_path: Path) -> None:
        """Test that a non-numeric threshold in a file is a configuration error."""
        path = tmp_path / "config.yaml"
        path.write_text("node_decider:\n  linear_distance_threshold: abc\n")
        with pytest.raises(ConfigurationError, match="linear_distance_threshold"):
            load_config(path)

    def test_invalid_values_in_file(self, tmp_path: Path) -> None:
        """Test that loaded values are validated."""
        path = tmp_path / "config.yaml"
        path.write_text("optimizer:\n  max_iterations: 0\n")
        with pytest.raises(ConfigurationError, match="max_iterations"):
            load_config(path)


class TestParseArgs:
    """Test command-line parsing."""

    def test_defaults(self) -> None:
        """Test that no arguments leave everything unset."""
        args = parse_args([])
        assert args.records is None
        assert not args.disable_visuals

    def test_component_selection(self) -> None:
        """Test component and pose type flags."""
        args = parse_args(
            ["--node-reg", "empty", "--edge-reg", "loop_closer", "--pose-type", "se3"]
        )

        assert args.node_reg == "empty"
        assert args.edge_reg == "loop_closer"
        assert args.pose_type == "se3"

    def test_invalid_pose_type(self) -> None:
        """Test that argparse rejects unknown pose types."""
        with pytest.raises(SystemExit):
            parse_args(["--pose-type", "se4"])
