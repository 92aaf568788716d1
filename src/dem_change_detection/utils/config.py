"""
Configuration management for dem-change-detection.

Provides a typed pydantic model and YAML loader with sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, Any, Dict, List

from pydantic import BaseModel, Field, ValidationError
import yaml


# -----------------------
# Typed config structures
# -----------------------


class PathsConfig(BaseModel):
    output_dir: str = Field(default="output")


class RasterConfig(BaseModel):
    target_format: str = Field(default="GTiff", description="rasterio driver for written rasters")
    nodata_value: float = Field(default=-1e10, description="Nodata value of float targets")
    create_options: Dict[str, Any] = Field(
        default_factory=lambda: {"compress": "lzw"},
        description="Creation options passed to rasterio.open",
    )
    spatial_reference: Optional[str] = Field(
        default=None,
        description="CRS override (e.g. 'EPSG:28992'); None = take it from the sources",
    )


class PreprocessingConfig(BaseModel):
    minimum_difference: float = Field(default=0.0, description="CHM values with |d| <= this become nodata")
    maximum_difference: float = Field(default=1000.0, description="CHM values with |d| >= this become nodata")
    blur: Literal["3x3_middle_4", "3x3_middle_12", "5x5_middle_36", "none"] = Field(default="3x3_middle_4")
    elimination_threshold: float = Field(default=1.5, description="Heights below this are not vegetation")
    interpolation_range: int = Field(default=1, ge=0)
    interpolation_ratio: float = Field(default=0.5, ge=0.0, le=1.0)
    seed_range: int = Field(default=7, ge=0, description="Window range of the local maximum seed search")
    max_horizontal_distance: float = Field(default=8.0, description="Crown radius limit from the cluster centre")
    max_vertical_distance: float = Field(default=10.0)
    vertical_increment: float = Field(default=1.0, gt=0.0)


class MorphologyConfig(BaseModel):
    iterations: int = Field(default=3, ge=0, description="Erosion + dilation rounds")
    erosion_threshold: int = Field(default=6)
    dilation_threshold: int = Field(default=0)
    include_center: bool = Field(default=True, description="Count the centre cell in neighbour counts")
    min_cluster_size: int = Field(default=16, description="Clusters smaller than this are removed")
    remove_deformed: bool = Field(default=True)


class PairingConfig(BaseModel):
    method: Literal["centroid", "hausdorff"] = Field(default="hausdorff")
    maximum_distance: Optional[float] = Field(
        default=None,
        description="Pairing cutoff in pixels (None = strategy default: centroid 10, hausdorff 16)",
    )
    seed: Optional[int] = Field(default=42, description="Seed of the point shuffling before Hausdorff")


class BuildingsConfig(BaseModel):
    minimum_difference: float = Field(default=1.0, description="Height changes with |d| <= this are ignored")
    maximum_difference: float = Field(default=1000.0, description="Height changes with |d| >= this are ignored")
    noise_range: int = Field(default=2, ge=1, description="Window range of the noise filter")
    noise_threshold: float = Field(default=1.0, gt=0.0, description="Mean relative difference above which a cell is noise")
    cluster_size_threshold: int = Field(default=400, ge=1, description="Smallest connected change region kept, in cells")
    diagonal_connectivity: bool = Field(default=False, description="Connect change regions diagonally (8-connectivity)")
    majority_ranges: List[int] = Field(default_factory=lambda: [1, 2], description="Window ranges of the closing majority filters")


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class AppConfig(BaseModel):
    class ParallelConfig(BaseModel):
        enabled: bool = Field(default=True, description="Preprocess the two epochs in parallel")
        n_workers: Optional[int] = Field(default=None, description="Number of worker processes (None = auto-detect, at most 2 epochs)")

    paths: PathsConfig = Field(default_factory=PathsConfig)
    raster: RasterConfig = Field(default_factory=RasterConfig)
    preprocessing: PreprocessingConfig = Field(default_factory=PreprocessingConfig)
    morphology: MorphologyConfig = Field(default_factory=MorphologyConfig)
    pairing: PairingConfig = Field(default_factory=PairingConfig)
    buildings: BuildingsConfig = Field(default_factory=BuildingsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    parallel: ParallelConfig = Field(default_factory=ParallelConfig)
    debug: bool = Field(default=False, description="Keep intermediate rasters and write GeoJSON points")


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/dem_change_detection/utils/config.py
    parents sequence:
      0 -> .../src/dem_change_detection/utils
      1 -> .../src/dem_change_detection
      2 -> .../src
      3 -> repo_root
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        # Re-raise with context to help users fix the YAML
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}")
