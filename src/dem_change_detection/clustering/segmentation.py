"""
Tree crown segmentation

- SeedPointCollection: local maxima of a canopy height model
- TreeCrownSegmentation: region growing from the seed points into a
  ClusterMap, with a vertical tolerance that widens pass by pass
- remove_deformed_clusters: drops elongated or sparse clusters
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence

from ..raster.dataset import DatasetCalculation
from ..raster.io import SourceLike
from ..raster.operation import ProgressCallback
from ..raster.sweepline import SweepLineCalculation
from ..raster.window import Window
from ..utils.logging import setup_logger
from .cluster_map import ClusterMap, ClusterPoint

logger = setup_logger(__name__)


class SeedPointCollection(SweepLineCalculation):
    """
    Collect the local maxima of a raster.

    A cell with data is a seed point when no cell within `window_range`
    is strictly higher. Seed coordinates are target grid (x, y) with the
    cell value as z.
    """

    def __init__(self, source: SourceLike, window_range: int = 7,
                 progress: Optional[ProgressCallback] = None):
        super().__init__([source], window_range, None, progress)
        self.computation = self._collect
        self.seed_points: List[ClusterPoint] = []

    def _on_execute(self) -> None:
        self.seed_points = []
        super()._on_execute()
        logger.info(f"Collected {len(self.seed_points)} seed points (range {self.window_range})")

    def _collect(self, x: int, y: int, sources: List[Window]) -> None:
        source = sources[0]
        if not source.has_data():
            return
        value = source.data()
        r = self.window_range
        for i in range(-r, r + 1):
            for j in range(-r, r + 1):
                if source.has_data(i, j) and source.data(i, j) > value:
                    return
        self.seed_points.append(ClusterPoint(x, y, value))


class TreeCrownSegmentation(DatasetCalculation):
    """
    Grow one cluster per seed point over a canopy height model.

    In each pass every cluster admits its free neighbour cells holding data
    that are within `max_horizontal_distance` of the cluster centre and
    whose height differs from the seed height by at most the current
    vertical tolerance. The tolerance starts at `initial_vertical_distance`
    and grows by `vertical_increment` after each pass; growing stops when a
    pass admits nothing or the tolerance exceeds `max_vertical_distance`.

    Args:
        source: Canopy height model
        seed_points: Seeds in the grid coordinates of the source
        progress: Optional progress callback
    """

    def __init__(
        self,
        source: SourceLike,
        seed_points: Sequence[ClusterPoint],
        progress: Optional[ProgressCallback] = None,
        *,
        max_horizontal_distance: float = 8.0,
        initial_vertical_distance: float = 0.5,
        vertical_increment: float = 1.0,
        max_vertical_distance: float = 10.0,
    ):
        super().__init__([source], None, progress)
        if vertical_increment <= 0:
            raise ValueError("The vertical increment must be positive.")
        self.seed_points = list(seed_points)
        self.max_horizontal_distance = max_horizontal_distance
        self.initial_vertical_distance = initial_vertical_distance
        self.vertical_increment = vertical_increment
        self.max_vertical_distance = max_vertical_distance
        self.computation = self._segment
        self._clusters: Optional[ClusterMap] = None

    def cluster_map(self) -> ClusterMap:
        """
        Raises:
            RuntimeError: If the segmentation was not executed
        """
        self._require_executed()
        return self._clusters

    def _segment(self, size_x: int, size_y: int) -> None:
        clusters = ClusterMap(size_x, size_y)
        for seed in self.seed_points:
            x, y = int(seed.x), int(seed.y)
            if (x, y) in clusters or not self.has_source_data(0, x, y):
                continue
            clusters.create_cluster(x, y, self.source_data(0, x, y))

        tolerance = self.initial_vertical_distance
        passes = 0
        has_changed = True
        while has_changed and tolerance <= self.max_vertical_distance:
            has_changed = False
            passes += 1
            for index in clusters.cluster_indexes():
                center_x, center_y = clusters.center_2d(index)
                seed_z = clusters.seed_point(index).z
                for x, y in sorted(clusters.neighbors(index)):
                    if (x, y) in clusters or not self.has_source_data(0, x, y):
                        continue
                    if math.hypot(center_x - x, center_y - y) > self.max_horizontal_distance:
                        continue
                    z = self.source_data(0, x, y)
                    if abs(z - seed_z) <= tolerance:
                        clusters.add_point(index, x, y, z)
                        has_changed = True
            tolerance += self.vertical_increment
            self._report(
                0.5 + 0.5 * min(1.0, tolerance / self.max_vertical_distance),
                "Tree crown segmentation",
            )

        self._clusters = clusters
        logger.info(f"Segmented {len(clusters)} tree crowns in {passes} passes")


def remove_deformed_clusters(cluster_map: ClusterMap) -> int:
    """
    Remove clusters whose shape does not resemble a crown.

    A cluster is removed when one side of its bounding box is shorter than
    half of the other, or when it fills less than half of its bounding box.

    Returns:
        Number of removed clusters
    """
    removed = 0
    for index in cluster_map.cluster_indexes():
        corners = cluster_map.bounding_box(index)
        xs = [p.x for p in corners]
        ys = [p.y for p in corners]
        size_x = max(xs) - min(xs)
        size_y = max(ys) - min(ys)
        if (
            size_x < size_y * 0.5
            or size_y < size_x * 0.5
            or cluster_map.cluster_size(index) < size_x * size_y * 0.5
        ):
            cluster_map.remove_cluster(index)
            removed += 1
    return removed
