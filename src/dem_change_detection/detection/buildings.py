"""
Building change detection: from two surface models (DSM) to a cleaned
raster of the significant height changes.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np

from ..clustering.morphology import MorphologyMethod
from ..filters.cluster_filter import ClusterFilter
from ..filters.comparison import Difference, FilteredDifference
from ..filters.neighborhood import MajorityFilter, MorphologyFilter, NoiseFilter
from ..raster.io import RasterSource, SourceLike
from ..raster.operation import Operation, ProgressCallback, sub_progress
from ..utils.config import AppConfig
from ..utils.logging import logging_progress, setup_logger

logger = setup_logger(__name__)

PathLike = Union[str, os.PathLike]

CHANGES_FILE = "building_changes.tif"


@dataclass
class BuildingChangeResult:
    """
    Outcome of a building change detection run.

    Attributes:
        changed_cells: Cells with a height change
        raised_cells: Cells that got higher (construction)
        lowered_cells: Cells that got lower (demolition)
        files: Written output files by name
    """

    changed_cells: int
    raised_cells: int
    lowered_cells: int
    files: Dict[str, Path] = field(default_factory=dict)


class BuildingChangeDetection(Operation):
    """
    Height changes of buildings between two epochs.

    Steps:
    1. changeset = DSM B - DSM A, keeping changes above the minimum
       difference; with filter layers only their area is compared
    2. noise filtering
    3. removal of connected change regions smaller than the size threshold
    4. morphological dilation closing the gaps of the regions
    5. majority filtering with growing window ranges smoothing the outlines

    The last step is written to `building_changes.tif` in `output_dir`.
    Intermediate rasters stay in memory unless `config.debug` is set; debug
    runs also write them as `buildings_<step>.tif`.

    Args:
        dsm_a: Surface model of epoch A
        dsm_b: Surface model of epoch B
        output_dir: Directory of the written files; None writes nothing
        config: Application configuration (defaults when None)
        progress: Optional progress callback
        filter_a: Optional filter layer of epoch A (e.g. building footprints)
        filter_b: Optional filter layer of epoch B

    Raises:
        ValueError: If only one of the filter layers is given
    """

    def __init__(
        self,
        dsm_a: SourceLike,
        dsm_b: SourceLike,
        output_dir: Optional[PathLike] = None,
        config: Optional[AppConfig] = None,
        progress: Optional[ProgressCallback] = None,
        *,
        filter_a: Optional[SourceLike] = None,
        filter_b: Optional[SourceLike] = None,
    ):
        super().__init__(progress)
        if (filter_a is None) != (filter_b is None):
            raise ValueError("Filter layers must be given for both epochs or for neither.")
        self.dsm_a = dsm_a
        self.dsm_b = dsm_b
        self.filter_a = filter_a
        self.filter_b = filter_b
        self.output_dir = Path(output_dir) if output_dir is not None else None
        self.config = config if config is not None else AppConfig()
        self._result: Optional[BuildingChangeResult] = None
        self._target: Optional[RasterSource] = None
        self._opened: List[RasterSource] = []

    @property
    def debug(self) -> bool:
        return self.config.debug and self.output_dir is not None

    def result(self) -> BuildingChangeResult:
        """
        Raises:
            RuntimeError: If the detection was not executed
        """
        self._require_executed()
        return self._result

    def target(self) -> RasterSource:
        """
        Hand over the change raster; the caller becomes responsible for closing it.

        Raises:
            RuntimeError: If the detection was not executed
        """
        self._require_executed()
        if self._target is None:
            raise RuntimeError("The change raster was already handed over.")
        target, self._target = self._target, None
        return target

    def _on_prepare(self) -> None:
        if self.output_dir is not None:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        ranges = self.config.buildings.majority_ranges
        if not ranges or min(ranges) < 1:
            raise ValueError(f"Majority filter ranges must be positive, got {ranges}.")

    def _path(self, name: str) -> Optional[Path]:
        if not self.debug:
            return None
        return self.output_dir / f"buildings_{name}.tif"

    def _configure(self, operation, start: float, end: float, message: str) -> None:
        raster_cfg = self.config.raster
        operation.progress = sub_progress(self.progress, start, end, message)
        operation.spatial_reference = raster_cfg.spatial_reference
        operation.nodata_value = raster_cfg.nodata_value
        if operation.target_path is not None:
            operation.target_format = raster_cfg.target_format
            operation.create_options = dict(raster_cfg.create_options)
        self._report(start, message)

    def _transform(self, operation, start: float, end: float, message: str) -> RasterSource:
        """Run a raster transformation and take over its output."""
        self._configure(operation, start, end, message)
        with operation:
            operation.execute()
            target = operation.target()
        self._opened.append(target)
        return target

    def _on_execute(self) -> None:
        start_time = time.time()
        cfg = self.config.buildings
        logger.info("Detecting building changes")

        if self._target is not None:
            self._target.close()
            self._target = None
        try:
            if self.filter_a is not None:
                comparison = FilteredDifference(
                    [self.dsm_a, self.dsm_b, self.filter_a, self.filter_b], self._path("changeset"),
                    minimum_threshold=cfg.minimum_difference,
                    maximum_threshold=cfg.maximum_difference,
                )
            else:
                comparison = Difference(
                    [self.dsm_a, self.dsm_b], self._path("changeset"),
                    minimum_threshold=cfg.minimum_difference,
                    maximum_threshold=cfg.maximum_difference,
                )
            changes = self._transform(comparison, 0.0, 0.2, "Creating changeset")

            changes = self._transform(
                NoiseFilter(changes, self._path("noise"), cfg.noise_range, threshold=cfg.noise_threshold),
                0.2, 0.4, "Noise filtering",
            )

            sieve = ClusterFilter(
                changes, self._path("cluster"), cfg.cluster_size_threshold, cfg.diagonal_connectivity,
            )
            self._configure(sieve, 0.4, 0.6, "Cluster filtering")
            changes = sieve.filter()
            self._opened.append(changes)

            changes = self._transform(
                MorphologyFilter(changes, self._path("dilation"), MorphologyMethod.DILATION),
                0.6, 0.7, "Morphology dilation",
            )

            ranges = cfg.majority_ranges
            step = 0.3 / len(ranges)
            for i, window_range in enumerate(ranges):
                last = i == len(ranges) - 1
                path = self._changes_path() if last else self._path(f"majority_{window_range}")
                changes = self._transform(
                    MajorityFilter(changes, path, window_range),
                    0.7 + i * step, 0.7 + (i + 1) * step, f"Majority filtering / r={window_range}",
                )

            self._opened.remove(changes)
            self._target = changes
            self._result = self._summarize(changes)
            self._report(1.0, "Building change detection finished")
        finally:
            for raster in self._opened:
                raster.close()
            self._opened = []

        logger.info(
            f"Building changes: {self._result.raised_cells} raised and "
            f"{self._result.lowered_cells} lowered cells in {time.time() - start_time:.1f}s"
        )

    def _changes_path(self) -> Optional[Path]:
        return self.output_dir / CHANGES_FILE if self.output_dir is not None else None

    def _summarize(self, changes: RasterSource) -> BuildingChangeResult:
        values = changes.read(1)
        nodata = changes.nodata(1)
        valid = ~np.isnan(values)
        if nodata is not None:
            valid &= values != nodata
        files = {}
        if self.output_dir is not None:
            files["changes"] = self._changes_path()
        return BuildingChangeResult(
            changed_cells=int(np.count_nonzero(valid)),
            raised_cells=int(np.count_nonzero(valid & (values > 0))),
            lowered_cells=int(np.count_nonzero(valid & (values < 0))),
            files=files,
        )


def run_building_change_detection(
    dsm_a: PathLike,
    dsm_b: PathLike,
    output_dir: Optional[PathLike] = None,
    config: Optional[AppConfig] = None,
    filter_a: Optional[PathLike] = None,
    filter_b: Optional[PathLike] = None,
) -> BuildingChangeResult:
    """
    Detect building changes between two epochs and write the change raster.

    Args:
        dsm_a: Surface model of epoch A
        dsm_b: Surface model of epoch B
        output_dir: Output directory (default: config.paths.output_dir)
        config: Application configuration (defaults when None)
        filter_a: Optional filter layer of epoch A
        filter_b: Optional filter layer of epoch B

    Returns:
        BuildingChangeResult
    """
    config = config if config is not None else AppConfig()
    output_dir = Path(output_dir if output_dir is not None else config.paths.output_dir)

    detection = BuildingChangeDetection(
        str(dsm_a), str(dsm_b), output_dir, config,
        progress=logging_progress(logger, step=0.25),
        filter_a=str(filter_a) if filter_a is not None else None,
        filter_b=str(filter_b) if filter_b is not None else None,
    )
    detection.execute()
    detection.target().close()
    return detection.result()
