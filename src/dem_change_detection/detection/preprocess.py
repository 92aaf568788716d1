"""
Preprocessing of one epoch: from terrain (DTM) and surface (DSM) models to
a cluster map of tree crowns.
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from ..clustering.cluster_map import ClusterMap, ClusterPoint
from ..clustering.morphology import MorphologyClusterFilter, MorphologyMethod
from ..clustering.segmentation import SeedPointCollection, TreeCrownSegmentation, remove_deformed_clusters
from ..clustering.writer import write_cluster_map
from ..filters.comparison import Difference
from ..filters.matrix import BLUR_KERNELS
from ..filters.neighborhood import EliminateNonTrees, InterpolateNoData
from ..raster.io import RasterSource, SourceLike
from ..raster.metadata import RasterMetadata
from ..raster.operation import Operation, ProgressCallback, sub_progress
from ..utils.config import AppConfig
from ..utils.export import export_points_to_geojson
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

PathLike = Union[str, os.PathLike]


class PreProcess(Operation):
    """
    Tree crown clusters of one epoch.

    Steps:
    1. canopy height model (CHM) = DSM - DTM
    2. blur
    3. elimination of low vegetation
    4. interpolation of small holes
    5. seed point (local maximum) collection
    6. tree crown segmentation, written to `<prefix>_segmentation.tif`
    7. rounds of cluster erosion followed by dilation
    8. removal of small and deformed clusters, written to
       `<prefix>_morphology.tif`

    Intermediate rasters stay in memory unless `config.debug` is set; debug
    runs also write them as `<prefix>_<step>.tif` together with the seed
    points and cluster centres as GeoJSON.

    Args:
        prefix: Epoch name used in file names and messages (e.g. "A")
        dtm: Digital terrain model
        dsm: Digital surface model
        output_dir: Directory of the written files; None writes nothing
        config: Application configuration (defaults when None)
        progress: Optional progress callback
    """

    def __init__(
        self,
        prefix: str,
        dtm: SourceLike,
        dsm: SourceLike,
        output_dir: Optional[PathLike] = None,
        config: Optional[AppConfig] = None,
        progress: Optional[ProgressCallback] = None,
    ):
        super().__init__(progress)
        self.prefix = prefix
        self.dtm = dtm
        self.dsm = dsm
        self.output_dir = Path(output_dir) if output_dir is not None else None
        self.config = config if config is not None else AppConfig()
        self.seed_points: List[ClusterPoint] = []
        self._metadata: Optional[RasterMetadata] = None
        self._clusters: Optional[ClusterMap] = None
        self._opened: List[RasterSource] = []

    @property
    def debug(self) -> bool:
        return self.config.debug and self.output_dir is not None

    def cluster_map(self) -> ClusterMap:
        """
        Raises:
            RuntimeError: If the preprocessing was not executed
        """
        self._require_executed()
        return self._clusters

    @property
    def metadata(self) -> RasterMetadata:
        """Grid of the cluster map coordinates (the CHM grid)."""
        self._require_executed()
        return self._metadata

    def _on_prepare(self) -> None:
        if self.output_dir is not None:
            self.output_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, name: str) -> Optional[Path]:
        if not self.debug:
            return None
        return self.output_dir / f"{self.prefix}_{name}.tif"

    def _transform(self, operation, start: float, end: float, message: str) -> RasterSource:
        """Run a raster transformation and take over its output."""
        raster_cfg = self.config.raster
        operation.progress = sub_progress(self.progress, start, end, f"{message} ({self.prefix})")
        operation.spatial_reference = raster_cfg.spatial_reference
        operation.nodata_value = raster_cfg.nodata_value
        if operation.target_path is not None:
            operation.target_format = raster_cfg.target_format
            operation.create_options = dict(raster_cfg.create_options)
        self._report(start, f"{message} ({self.prefix})")
        with operation:
            operation.execute()
            target = operation.target()
        self._opened.append(target)
        return target

    def _on_execute(self) -> None:
        start_time = time.time()
        pre = self.config.preprocessing
        morph = self.config.morphology
        logger.info(f"Preprocessing epoch {self.prefix}")

        try:
            chm = self._transform(
                Difference(
                    [self.dtm, self.dsm], self._path("chm"),
                    minimum_threshold=pre.minimum_difference,
                    maximum_threshold=pre.maximum_difference,
                ),
                0.0, 0.1, "Creating CHM",
            )
            self._metadata = chm.metadata

            blurred = chm
            if pre.blur != "none":
                blurred = self._transform(BLUR_KERNELS[pre.blur](chm, self._path("blur")), 0.1, 0.2, "Blurring CHM")

            trees = self._transform(
                EliminateNonTrees(blurred, self._path("trees"), threshold=pre.elimination_threshold),
                0.2, 0.3, "Eliminating non-trees",
            )
            interpolated = self._transform(
                InterpolateNoData(trees, self._path("interpolation"), pre.interpolation_range,
                                  ratio=pre.interpolation_ratio),
                0.3, 0.4, "Interpolating nodata",
            )

            self._report(0.4, f"Collecting seed points ({self.prefix})")
            with SeedPointCollection(
                interpolated, pre.seed_range,
                sub_progress(self.progress, 0.4, 0.5, f"Collecting seed points ({self.prefix})"),
            ) as seeds:
                seeds.spatial_reference = self.config.raster.spatial_reference
                seeds.execute()
                self.seed_points = seeds.seed_points

            self._report(0.5, f"Tree crown segmentation ({self.prefix})")
            with TreeCrownSegmentation(
                interpolated, self.seed_points,
                sub_progress(self.progress, 0.5, 0.7, f"Tree crown segmentation ({self.prefix})"),
                max_horizontal_distance=pre.max_horizontal_distance,
                vertical_increment=pre.vertical_increment,
                max_vertical_distance=pre.max_vertical_distance,
            ) as segmentation:
                segmentation.spatial_reference = self.config.raster.spatial_reference
                segmentation.execute()
                clusters = segmentation.cluster_map()
            self._write_clusters(clusters, "segmentation")

            clusters = self._morphology(clusters, interpolated, 0.7, 0.95)

            small = clusters.remove_small_clusters(morph.min_cluster_size)
            deformed = remove_deformed_clusters(clusters) if morph.remove_deformed else 0
            logger.info(
                f"Epoch {self.prefix}: removed {small} small and {deformed} deformed clusters, "
                f"{len(clusters)} remain"
            )
            self._report(0.95, f"Removing small and deformed clusters ({self.prefix})")
            self._write_clusters(clusters, "morphology")
            self._clusters = clusters

            if self.debug:
                self._export_points(clusters)
            self._report(1.0, f"Preprocessing finished ({self.prefix})")
        finally:
            for raster in self._opened:
                raster.close()
            self._opened = []

        logger.info(f"Epoch {self.prefix} preprocessed in {time.time() - start_time:.1f}s")

    def _morphology(self, clusters: ClusterMap, source: RasterSource, start: float, end: float) -> ClusterMap:
        morph = self.config.morphology
        rounds = morph.iterations
        span = (end - start) / max(1, 2 * rounds)
        for n in range(rounds):
            for k, (method, threshold) in enumerate((
                (MorphologyMethod.EROSION, morph.erosion_threshold),
                (MorphologyMethod.DILATION, morph.dilation_threshold),
            )):
                offset = start + (2 * n + k) * span
                message = f"Morphological {method.value} #{n + 1} ({self.prefix})"
                self._report(offset, message)
                with MorphologyClusterFilter(
                    clusters, source, method,
                    sub_progress(self.progress, offset, offset + span, message),
                    threshold=threshold, include_center=morph.include_center,
                ) as operation:
                    operation.spatial_reference = self.config.raster.spatial_reference
                    operation.execute()
                    clusters = operation.target()
            logger.debug(f"Epoch {self.prefix}: {len(clusters)} clusters after morphology round {n + 1}")
        return clusters

    def _write_clusters(self, clusters: ClusterMap, name: str) -> None:
        if self.output_dir is None:
            return
        raster_cfg = self.config.raster
        write_cluster_map(
            clusters,
            self.output_dir / f"{self.prefix}_{name}.tif",
            self._metadata,
            driver=raster_cfg.target_format,
            options=dict(raster_cfg.create_options),
        )

    def _export_points(self, clusters: ClusterMap) -> None:
        metadata = self._metadata
        crs = metadata.crs.to_string() if metadata.crs is not None else None

        seeds = [(*metadata.pixel_to_world(p.x, p.y), p.z) for p in self.seed_points]
        export_points_to_geojson(
            np.array(seeds).reshape(-1, 3),
            self.output_dir / f"{self.prefix}_seed_points.geojson",
            crs=crs,
        )

        indexes = clusters.cluster_indexes()
        centers = []
        for index in indexes:
            x, y, z = clusters.center_3d(index)
            centers.append((*metadata.pixel_to_world(x, y), z))
        export_points_to_geojson(
            np.array(centers).reshape(-1, 3),
            self.output_dir / f"{self.prefix}_cluster_centers.geojson",
            properties={
                "cluster": np.array(indexes, dtype=np.int64),
                "size": np.array([clusters.cluster_size(i) for i in indexes], dtype=np.int64),
            },
            crs=crs,
        )
