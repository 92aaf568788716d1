"""Tests for configuration loading and validation."""

import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from dem_change_detection.utils.config import load_config, AppConfig


def test_default_config_values():
    """Test that config/default.yaml carries the documented defaults."""
    cfg = load_config(None)  # Load default.yaml

    assert cfg.raster.target_format == "GTiff"
    assert cfg.raster.nodata_value == -1e10
    assert cfg.raster.create_options == {"compress": "lzw"}
    assert cfg.preprocessing.blur == "3x3_middle_4"
    assert cfg.preprocessing.elimination_threshold == 1.5
    assert cfg.preprocessing.seed_range == 7
    assert cfg.morphology.erosion_threshold == 6
    assert cfg.morphology.dilation_threshold == 0
    assert cfg.morphology.min_cluster_size == 16
    assert cfg.pairing.method == "hausdorff"
    assert cfg.pairing.maximum_distance is None
    assert cfg.buildings.minimum_difference == 1.0
    assert cfg.buildings.noise_range == 2
    assert cfg.buildings.cluster_size_threshold == 400
    assert cfg.buildings.majority_ranges == [1, 2]
    assert cfg.debug is False


def test_model_defaults_match_yaml():
    """Test that the pydantic defaults agree with default.yaml."""
    assert load_config(None) == AppConfig()


def test_custom_yaml_partial_override(tmp_path):
    """Test that a partial YAML overrides only the given fields."""
    cfg_file = tmp_path / "custom.yaml"
    cfg_file.write_text(
        "pairing:\n"
        "  method: centroid\n"
        "  maximum_distance: 5.0\n"
        "parallel:\n"
        "  enabled: false\n"
        "debug: true\n",
        encoding="utf-8",
    )

    cfg = load_config(cfg_file)

    assert cfg.pairing.method == "centroid"
    assert cfg.pairing.maximum_distance == 5.0
    assert cfg.parallel.enabled is False
    assert cfg.debug is True
    # Untouched sections keep their defaults
    assert cfg.morphology.iterations == 3


def test_invalid_config_raises_value_error(tmp_path):
    """Test that invalid values are reported as ValueError."""
    cfg_file = tmp_path / "invalid.yaml"
    cfg_file.write_text("pairing:\n  method: nearest\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid configuration"):
        load_config(cfg_file)


def test_interpolation_ratio_bounds(tmp_path):
    """Test that the interpolation ratio must be within [0, 1]."""
    cfg_file = tmp_path / "ratio.yaml"
    cfg_file.write_text("preprocessing:\n  interpolation_ratio: 1.5\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(cfg_file)


def test_buildings_noise_range_must_be_positive(tmp_path):
    """Test that the noise filter of the building workflow needs a neighbourhood."""
    cfg_file = tmp_path / "noise.yaml"
    cfg_file.write_text("buildings:\n  noise_range: 0\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid configuration"):
        load_config(cfg_file)


def test_missing_config(tmp_path):
    """Test missing files: defaults when allowed, FileNotFoundError otherwise."""
    missing = tmp_path / "missing.yaml"

    assert load_config(missing) == AppConfig()
    with pytest.raises(FileNotFoundError):
        load_config(missing, allow_missing=False)


def test_empty_yaml_gives_defaults(tmp_path):
    """Test that an empty YAML file yields the default configuration."""
    cfg_file = tmp_path / "empty.yaml"
    cfg_file.write_text("", encoding="utf-8")

    assert load_config(cfg_file) == AppConfig()
