"""
Agglomerative clustering of an elevation model.

Every cell holding data starts as its own cluster. Each pass merges the
clusters of neighbouring cells whose heights differ by less than a
threshold, so the result approximates the connected flat or smoothly
sloping regions of the surface (roofs, crowns, terrain patches).
"""

from __future__ import annotations

import os
from typing import Optional, Union

import numpy as np

from ..raster.dataset import DatasetTransformation
from ..raster.io import SourceLike
from ..raster.operation import ProgressCallback
from ..utils.logging import setup_logger
from .cluster_map import ClusterMap
from .writer import LABEL_NODATA

logger = setup_logger(__name__)

# Right, down and diagonal neighbours; the other directions are covered
# when the neighbour itself is visited.
_MERGE_OFFSETS = ((0, 1), (1, 0), (1, 1))


class HierarchicalClustering(DatasetTransformation):
    """
    Cluster the cells of a raster by bottom-up merging.

    A pass visits every cell with data and merges its cluster with the
    cluster of each right, down and diagonal neighbour when both cells hold
    data and their heights differ by less than `threshold`. Passes repeat
    until one makes no change or `max_iterations` is reached. Clusters with
    fewer than `minimum_size` cells are dropped, then the cluster indexes
    are written to the target as an int32 label raster with nodata -1.

    Args:
        source: Elevation model
        target_path: Output label raster (None = in-memory raster)
        progress: Optional progress callback
        threshold: Height difference below which neighbours are merged
        max_iterations: Upper limit of merging passes (at least 1)
        minimum_size: Smallest cluster kept, in cells (1 keeps everything)

    Example:
        clustering = HierarchicalClustering("dsm.tif", "segments.tif", threshold=0.3)
        clustering.execute()
        segments = clustering.cluster_map()
    """

    def __init__(
        self,
        source: SourceLike,
        target_path: Optional[Union[str, os.PathLike]] = None,
        progress: Optional[ProgressCallback] = None,
        *,
        threshold: float = 0.5,
        max_iterations: int = 100,
        minimum_size: int = 4,
    ):
        super().__init__(
            [source], target_path, None, progress,
            target_dtype=np.int32, nodata_value=LABEL_NODATA,
        )
        if threshold <= 0:
            raise ValueError(f"Merge threshold must be positive, got {threshold}.")
        self.threshold = threshold
        self.max_iterations = max(1, int(max_iterations))
        self.minimum_size = int(minimum_size)
        self.iterations = 0
        self.computation = self._cluster
        self._clusters: Optional[ClusterMap] = None

    def cluster_map(self) -> ClusterMap:
        """
        Raises:
            RuntimeError: If the clustering was not executed
        """
        self._require_executed()
        return self._clusters

    def _step(self, fraction: float, message: str) -> None:
        # The computation sits between source loading and target writing
        steps = self.source_count + 2
        start = self.source_count / steps
        self._report(start + fraction / steps, message)

    def _cluster(self, size_x: int, size_y: int) -> None:
        clusters = ClusterMap(size_x, size_y)
        for x in range(size_x):
            for y in range(size_y):
                if self.has_source_data(0, x, y):
                    clusters.create_cluster(x, y, self.source_data(0, x, y))
        self._step(0.1, "Cluster map created")

        self.iterations = 0
        changes = 1
        while changes > 0 and self.iterations < self.max_iterations:
            changes = 0
            self.iterations += 1
            for x in range(size_x):
                for y in range(size_y):
                    if not self.has_source_data(0, x, y):
                        continue
                    merged = False
                    for dx, dy in _MERGE_OFFSETS:
                        merged |= self._merge(clusters, x, y, x + dx, y + dy)
                    if merged:
                        changes += 1
            self._step(
                0.1 + 0.8 * self.iterations / self.max_iterations,
                f"Finished clustering round #{self.iterations} with {changes} changes",
            )
        self._step(0.9, "Clustering completed")

        if self.minimum_size > 1:
            removed = clusters.remove_small_clusters(self.minimum_size)
            logger.debug(f"Removed {removed} clusters smaller than {self.minimum_size} cells")
            self._step(0.95, "Small clusters removed")

        for index in clusters.cluster_indexes():
            for point in clusters.points(index):
                self.set_target_data(point.x, point.y, index)

        self._clusters = clusters
        logger.info(f"Formed {len(clusters)} clusters in {self.iterations} rounds")

    def _merge(self, clusters: ClusterMap, x1: int, y1: int, x2: int, y2: int) -> bool:
        if not (self.has_source_data(0, x1, y1) and self.has_source_data(0, x2, y2)):
            return False
        a = clusters.cluster_index(x1, y1)
        b = clusters.cluster_index(x2, y2)
        if a == b:
            return False
        if abs(self.source_data(0, x1, y1) - self.source_data(0, x2, y2)) >= self.threshold:
            return False
        clusters.merge_clusters(a, b)
        return True
