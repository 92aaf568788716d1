"""
Post-processing: pairing of the epoch cluster maps and change reporting.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from ..clustering.cluster_map import ClusterMap
from ..clustering.distance import CentroidDistance, DistanceCalculation, HausdorffDistance, PairingResult
from ..clustering.writer import write_cluster_pairs
from ..raster.io import SourceLike
from ..raster.metadata import RasterMetadata
from ..raster.operation import Operation, ProgressCallback, sub_progress
from ..raster.sweepline import SweepLineTransformation
from ..raster.window import Window
from ..utils.config import AppConfig
from ..utils.logging import setup_logger
from .difference import HeightDifference, VolumeDifference

logger = setup_logger(__name__)

PathLike = Union[str, os.PathLike]
PairKey = Tuple[int, int]

PAIRS_FILE = "cluster_pairs.tif"
HEIGHTS_FILE = "cluster_heights.tif"


@dataclass
class ChangeDetectionResult:
    """
    Outcome of a change detection run.

    Attributes:
        pairing: Cluster pairing of the two epochs
        cluster_count_a: Number of clusters in epoch A
        cluster_count_b: Number of clusters in epoch B
        full_volume_a: Summed cluster volume of epoch A
        full_volume_b: Summed cluster volume of epoch B
        volume_differences: (a, b) -> volume change per pair
        height_differences: (a, b) -> highest point change per pair
        files: Written output files by name
    """

    pairing: PairingResult
    cluster_count_a: int
    cluster_count_b: int
    full_volume_a: float
    full_volume_b: float
    volume_differences: Dict[PairKey, float] = field(default_factory=dict)
    height_differences: Dict[PairKey, float] = field(default_factory=dict)
    files: Dict[str, Path] = field(default_factory=dict)

    @property
    def volume_difference(self) -> float:
        return self.full_volume_b - self.full_volume_a


def average_height_changes(cluster_map_a: ClusterMap, cluster_map_b: ClusterMap,
                           pairing: PairingResult) -> Dict[Tuple[int, int], float]:
    """
    Mean height change per grid point of the paired clusters.

    The change of a pair is (sum z of B - sum z of A) / max(size A, size B)
    and is assigned to every point of both clusters.
    """
    heights: Dict[Tuple[int, int], float] = {}
    for a, b in sorted(pairing.closest):
        points_a = cluster_map_a.points(a)
        points_b = cluster_map_b.points(b)
        change = (sum(p.z for p in points_b) - sum(p.z for p in points_a)) / max(len(points_a), len(points_b))
        for point in points_a + points_b:
            heights[(int(point.x), int(point.y))] = change
    return heights


class PostProcess(Operation):
    """
    Pair the clusters of two epochs and quantify their change.

    Writes `cluster_pairs.tif` (shared label per pair, -2 / -3 for lonely
    A / B clusters) and `cluster_heights.tif` (mean height change of the pair
    on each clustered cell where both surface models hold data) into
    `output_dir`, when given.

    Args:
        cluster_map_a: Clusters of epoch A
        cluster_map_b: Clusters of epoch B
        dsm_a: Surface model of epoch A
        dsm_b: Surface model of epoch B
        metadata: Grid of the cluster coordinates
        output_dir: Output directory; None writes nothing
        config: Application configuration (defaults when None)
        progress: Optional progress callback
    """

    def __init__(
        self,
        cluster_map_a: ClusterMap,
        cluster_map_b: ClusterMap,
        dsm_a: SourceLike,
        dsm_b: SourceLike,
        metadata: RasterMetadata,
        output_dir: Optional[PathLike] = None,
        config: Optional[AppConfig] = None,
        progress: Optional[ProgressCallback] = None,
    ):
        super().__init__(progress)
        self.cluster_map_a = cluster_map_a
        self.cluster_map_b = cluster_map_b
        self.dsm_a = dsm_a
        self.dsm_b = dsm_b
        self.metadata = metadata
        self.output_dir = Path(output_dir) if output_dir is not None else None
        self.config = config if config is not None else AppConfig()
        self._result: Optional[ChangeDetectionResult] = None
        self._heights: Dict[Tuple[int, int], float] = {}
        self._height_offset = (0, 0)

    def result(self) -> ChangeDetectionResult:
        """
        Raises:
            RuntimeError: If the post-processing was not executed
        """
        self._require_executed()
        return self._result

    def _distance_calculation(self) -> DistanceCalculation:
        pairing_cfg = self.config.pairing
        progress = sub_progress(self.progress, 0.0, 0.5)
        if pairing_cfg.method == "hausdorff":
            self._report(0.0, "Hausdorff distance calculation to pair up clusters")
            return HausdorffDistance(
                self.cluster_map_a, self.cluster_map_b, pairing_cfg.maximum_distance, progress,
                seed=pairing_cfg.seed,
            )
        self._report(0.0, "Centroid distance calculation to pair up clusters")
        return CentroidDistance(self.cluster_map_a, self.cluster_map_b, pairing_cfg.maximum_distance, progress)

    def _on_prepare(self) -> None:
        if self.output_dir is not None:
            self.output_dir.mkdir(parents=True, exist_ok=True)

    def _on_execute(self) -> None:
        start_time = time.time()
        files: Dict[str, Path] = {}
        raster_cfg = self.config.raster

        distance = self._distance_calculation()
        distance.execute()
        pairing = distance.result()

        if self.output_dir is not None:
            files["pairs"] = self.output_dir / PAIRS_FILE
            write_cluster_pairs(
                pairing, self.cluster_map_a, self.cluster_map_b, files["pairs"], self.metadata,
                driver=raster_cfg.target_format, options=dict(raster_cfg.create_options),
            )
        self._report(0.55, "Cluster pairs written")

        volume = VolumeDifference(
            self.cluster_map_a, self.cluster_map_b, pairing,
            abs(self.metadata.pixel_size_x * self.metadata.pixel_size_y),
        )
        volume.execute()
        height = HeightDifference(self.cluster_map_a, self.cluster_map_b, pairing)
        height.execute()
        self._report(0.6, "Volume and height differences calculated")

        logger.info(f"Clusters in epoch A: {len(self.cluster_map_a)}")
        logger.info(f"Clusters in epoch B: {len(self.cluster_map_b)}")
        logger.info(f"Cluster pairs: {pairing.pair_count}")
        logger.info(f"Lonely clusters in epoch A: {len(pairing.lonely_a)}")
        logger.info(f"Lonely clusters in epoch B: {len(pairing.lonely_b)}")
        logger.info(f"Full volume of epoch A: {volume.full_volume_a:.2f}")
        logger.info(f"Full volume of epoch B: {volume.full_volume_b:.2f}")
        logger.info(f"Volume difference: {volume.total_difference:.2f}")

        if self.output_dir is not None:
            files["heights"] = self.output_dir / HEIGHTS_FILE
            self._write_heights(pairing, files["heights"], 0.6, 1.0)
        self._report(1.0, "Post-processing finished")

        self._result = ChangeDetectionResult(
            pairing=pairing,
            cluster_count_a=len(self.cluster_map_a),
            cluster_count_b=len(self.cluster_map_b),
            full_volume_a=volume.full_volume_a,
            full_volume_b=volume.full_volume_b,
            volume_differences=dict(volume.differences),
            height_differences=dict(height.differences),
            files=files,
        )
        logger.info(f"Post-processing finished in {time.time() - start_time:.1f}s")

    def _write_heights(self, pairing: PairingResult, path: Path, start: float, end: float) -> None:
        raster_cfg = self.config.raster
        self._heights = average_height_changes(self.cluster_map_a, self.cluster_map_b, pairing)
        with SweepLineTransformation(
            [self.dsm_a, self.dsm_b], path, 0, self._height_value,
            sub_progress(self.progress, start, end, "Cluster heights"),
            nodata_value=raster_cfg.nodata_value, bands=[1, 1],
        ) as operation:
            operation.spatial_reference = raster_cfg.spatial_reference
            operation.target_format = raster_cfg.target_format
            operation.create_options = dict(raster_cfg.create_options)
            operation.prepare()
            # Cluster coordinates are relative to the cluster grid, not the DSM union grid
            target = operation.target_metadata
            self._height_offset = (
                int(round((self.metadata.origin_x - target.origin_x) / abs(target.pixel_size_x))),
                int(round((target.origin_y - self.metadata.origin_y) / abs(target.pixel_size_y))),
            )
            operation.execute()
        self._heights = {}

    def _height_value(self, x: int, y: int, sources: List[Window]):
        dsm_a, dsm_b = sources
        if not dsm_a.has_data() or not dsm_b.has_data():
            return None
        offset_x, offset_y = self._height_offset
        return self._heights.get((x - offset_x, y - offset_y))
