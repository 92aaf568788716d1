"""
Morphological cluster filter

Erosion and dilation applied to the clusters of a ClusterMap, driven by the
number of 3x3 neighbours that belong to the same cluster. The backing
raster supplies the elevation of the points admitted by dilation and tells
which cells hold data at all.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence

from ..raster.dataset import DatasetCalculation
from ..raster.io import SourceLike
from ..raster.operation import ProgressCallback
from ..utils.logging import setup_logger
from .cluster_map import ClusterMap

logger = setup_logger(__name__)


class MorphologyMethod(str, Enum):
    EROSION = "erosion"
    DILATION = "dilation"


class MorphologyClusterFilter(DatasetCalculation):
    """
    Shrink or grow every cluster of a cluster map.

    Erosion removes a point when fewer than `threshold` cells of its 3x3
    neighbourhood belong to its cluster. Dilation admits a free neighbour
    cell holding data when more than `threshold` of its 8 neighbours belong
    to the cluster. In both cases the changes of a cluster are applied after
    the whole cluster was scanned.

    The input map is copied; the filtered map is returned by target().

    Args:
        cluster_map: Clusters to filter (grid coordinates of the source)
        source: Backing raster (elevation)
        method: MorphologyMethod.EROSION or MorphologyMethod.DILATION
        progress: Optional progress callback
        threshold: Neighbour count threshold; None selects the default
            (erosion: 9 including the centre, 8 excluding it; dilation: 0)
        include_center: Whether the centre cell is counted
    """

    def __init__(
        self,
        cluster_map: ClusterMap,
        source: SourceLike,
        method: MorphologyMethod = MorphologyMethod.DILATION,
        progress: Optional[ProgressCallback] = None,
        *,
        threshold: Optional[int] = None,
        include_center: bool = True,
    ):
        sources: Sequence[SourceLike] = source if isinstance(source, (list, tuple)) else [source]
        super().__init__(sources, None, progress)
        self.method = MorphologyMethod(method)
        self.include_center = include_center
        if threshold is None:
            if self.method == MorphologyMethod.EROSION:
                threshold = 9 if include_center else 8
            else:
                threshold = 0
        self.threshold = threshold
        self._clusters = cluster_map.copy()
        self.computation = self._erode if self.method == MorphologyMethod.EROSION else self._dilate

        if include_center:
            self._offsets = [(i, j) for i in (-1, 0, 1) for j in (-1, 0, 1)]
        else:
            self._offsets = [(i, j) for i in (-1, 0, 1) for j in (-1, 0, 1) if (i, j) != (0, 0)]

    def target(self) -> ClusterMap:
        """
        The filtered cluster map.

        Raises:
            RuntimeError: If the filter was not executed
        """
        self._require_executed()
        return self._clusters

    def _count(self, index: int, x: int, y: int) -> int:
        get = self._clusters.get
        return sum(1 for i, j in self._offsets if get(x + i, y + j) == index)

    def _erode(self, size_x: int, size_y: int) -> None:
        indexes = self._clusters.cluster_indexes()
        removed = 0
        for n, index in enumerate(indexes):
            marked = [
                point for point in self._clusters.points(index)
                if self._count(index, point.x, point.y) < self.threshold
            ]
            for point in marked:
                self._clusters.remove_point(index, point.x, point.y)
            removed += len(marked)
            self._report(0.5 + 0.5 * (n + 1) / len(indexes), "Morphological erosion")
        logger.debug(
            f"Erosion (threshold {self.threshold}) removed {removed} points, "
            f"{len(indexes) - len(self._clusters)} clusters vanished"
        )

    def _dilate(self, size_x: int, size_y: int) -> None:
        indexes = self._clusters.cluster_indexes()
        added = 0
        for n, index in enumerate(indexes):
            admitted = []
            for x, y in sorted(self._clusters.neighbors(index)):
                if not self.has_source_data(0, x, y) or (x, y) in self._clusters:
                    continue
                if self._count(index, x, y) > self.threshold:
                    admitted.append((x, y))
            for x, y in admitted:
                self._clusters.add_point(index, x, y, self.source_data(0, x, y))
            added += len(admitted)
            self._report(0.5 + 0.5 * (n + 1) / len(indexes), "Morphological dilation")
        logger.debug(f"Dilation (threshold {self.threshold}) added {added} points")
