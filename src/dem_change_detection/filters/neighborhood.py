"""
Neighbourhood filters

Single-source sweep-line filters deciding each cell from its window of
(2 * range + 1)^2 neighbours:
- NoiseFilter: drops cells deviating too much from their neighbours
- MajorityFilter: drops cells in sparse neighbourhoods, fills dense holes
- MorphologyFilter: raster dilation (hole filling) / erosion (isolated cells)
- EliminateNonTrees: drops cells below a height threshold
- InterpolateNoData: fills nodata cells from their valid neighbours
"""

from __future__ import annotations

import math
import os
from typing import List, Optional, Union

from ..clustering.morphology import MorphologyMethod
from ..raster.io import SourceLike
from ..raster.operation import ProgressCallback
from ..raster.sweepline import SweepLineTransformation
from ..raster.window import Window

PathLike = Union[str, os.PathLike]


class _NeighborhoodFilter(SweepLineTransformation):
    """Single-source transformation whose computation is the `_filter` method."""

    def __init__(self, source: SourceLike, target_path: Optional[PathLike] = None,
                 window_range: int = 1, progress: Optional[ProgressCallback] = None):
        super().__init__([source], target_path, window_range, None, progress)
        self.computation = self._filter

    def _offsets(self):
        r = self.window_range
        return ((i, j) for i in range(-r, r + 1) for j in range(-r, r + 1))

    def _filter(self, x: int, y: int, sources: List[Window]):
        raise NotImplementedError


class NoiseFilter(_NeighborhoodFilter):
    """
    Remove noisy cells.

    The noise of a cell is the mean relative difference to its valid
    neighbours; cells with noise above `threshold`, or without any valid
    neighbour, become nodata.
    """

    def __init__(self, source: SourceLike, target_path: Optional[PathLike] = None,
                 window_range: int = 1, progress: Optional[ProgressCallback] = None,
                 *, threshold: float = 0.5):
        super().__init__(source, target_path, window_range, progress)
        self.threshold = threshold

    def _filter(self, x: int, y: int, sources: List[Window]):
        source = sources[0]
        if not source.has_data():
            return None
        center = source.data()

        noise = 0.0
        counter = -1  # the centre is visited too
        for i, j in self._offsets():
            if source.has_data(i, j):
                value = source.data(i, j)
                difference = abs(center - value)
                if difference:
                    denominator = min(abs(center), abs(value))
                    noise += difference / denominator if denominator else math.inf
                counter += 1

        if counter == 0 or noise / counter > self.threshold:
            return None
        return center


class MajorityFilter(_NeighborhoodFilter):
    """
    Majority filter.

    A cell whose window holds data in fewer than half of its cells becomes
    nodata; otherwise valid cells are kept and nodata cells get the mean of
    the valid cells.
    """

    def _filter(self, x: int, y: int, sources: List[Window]):
        source = sources[0]
        total = 0.0
        counter = 0
        for i, j in self._offsets():
            if source.has_data(i, j):
                total += source.data(i, j)
                counter += 1

        if counter < (2 * self.window_range + 1) ** 2 / 2:
            return None
        return source.data() if source.has_data() else total / counter


class MorphologyFilter(_NeighborhoodFilter):
    """
    Raster morphology over the 3x3 neighbourhood.

    Dilation fills a nodata cell with the mean of its valid neighbours;
    erosion removes a valid cell that has no valid neighbour.
    """

    def __init__(self, source: SourceLike, target_path: Optional[PathLike] = None,
                 method: MorphologyMethod = MorphologyMethod.DILATION,
                 progress: Optional[ProgressCallback] = None):
        super().__init__(source, target_path, 1, progress)
        self.method = MorphologyMethod(method)

    def _filter(self, x: int, y: int, sources: List[Window]):
        source = sources[0]
        total = 0.0
        counter = 0
        for i, j in self._offsets():
            if source.has_data(i, j):
                total += source.data(i, j)
                counter += 1

        if self.method == MorphologyMethod.DILATION and not source.has_data() and counter > 0:
            return total / counter
        if self.method == MorphologyMethod.EROSION and source.has_data() and counter == 1:
            return None
        return source.data() if source.has_data() else None


class EliminateNonTrees(_NeighborhoodFilter):
    """Cells lower than `threshold` (e.g. 1.5 m of canopy height) become nodata."""

    def __init__(self, source: SourceLike, target_path: Optional[PathLike] = None,
                 progress: Optional[ProgressCallback] = None, *, threshold: float = 1.5):
        super().__init__(source, target_path, 0, progress)
        self.threshold = threshold

    def _filter(self, x: int, y: int, sources: List[Window]):
        source = sources[0]
        if not source.has_data() or source.data() < self.threshold:
            return None
        return source.data()


class InterpolateNoData(_NeighborhoodFilter):
    """
    Fill nodata cells with the mean of their valid neighbours.

    A hole is filled only when at least `ratio` of its (2r+1)^2 - 1
    neighbours hold data; valid cells are copied unchanged.

    Raises:
        ValueError: If ratio is outside [0, 1]
    """

    def __init__(self, source: SourceLike, target_path: Optional[PathLike] = None,
                 window_range: int = 1, progress: Optional[ProgressCallback] = None,
                 *, ratio: float = 0.5):
        if not 0.0 <= ratio <= 1.0:
            raise ValueError(f"Interpolation ratio must be within [0, 1], got {ratio}.")
        super().__init__(source, target_path, window_range, progress)
        self.ratio = ratio

    def _filter(self, x: int, y: int, sources: List[Window]):
        source = sources[0]
        if source.has_data():
            return source.data()

        total = 0.0
        counter = 0
        for i, j in self._offsets():
            if source.has_data(i, j):
                total += source.data(i, j)
                counter += 1

        if counter == 0 or counter < ((2 * self.window_range + 1) ** 2 - 1) * self.ratio:
            return None
        return total / counter
