"""
Difference comparison of two elevation models.
"""

from __future__ import annotations

import os
from typing import List, Optional, Sequence, Union

from ..raster.io import SourceLike
from ..raster.operation import ProgressCallback
from ..raster.sweepline import SweepLineTransformation
from ..raster.window import Window


class Difference(SweepLineTransformation):
    """
    Pixelwise difference `B - A` of two rasters.

    A cell is nodata when either input is missing or the absolute
    difference is outside (minimum_threshold, maximum_threshold).

    Args:
        sources: [A, B]
        target_path: Output file (None = in-memory raster)
        progress: Optional progress callback
        minimum_threshold: Differences with |d| <= this are dropped
        maximum_threshold: Differences with |d| >= this are dropped

    Example:
        # canopy height model from terrain (DTM) and surface (DSM) models
        chm = Difference(["dtm.tif", "dsm.tif"], "chm.tif")
        chm.execute()
    """

    _SOURCES = 2

    def __init__(
        self,
        sources: Sequence[SourceLike],
        target_path: Optional[Union[str, os.PathLike]] = None,
        progress: Optional[ProgressCallback] = None,
        *,
        minimum_threshold: float = 0.0,
        maximum_threshold: float = 1000.0,
    ):
        if len(sources) != self._SOURCES:
            raise ValueError(
                f"{type(self).__name__} needs exactly {self._SOURCES} sources, got {len(sources)}."
            )
        super().__init__(sources, target_path, 0, None, progress)
        self.minimum_threshold = minimum_threshold
        self.maximum_threshold = maximum_threshold
        self.computation = self._difference

    def _difference(self, x: int, y: int, sources: List[Window]):
        a, b = sources
        if not a.has_data() or not b.has_data():
            return None
        return self._thresholded(b.data() - a.data())

    def _thresholded(self, difference: float):
        if abs(difference) >= self.maximum_threshold or abs(difference) <= self.minimum_threshold:
            return None
        return difference


class FilteredDifference(Difference):
    """
    Difference `B - A` restricted to the area of two filter layers.

    The filter layers (e.g. building footprints of each epoch) mark the
    cells of interest. A cell is nodata when neither filter layer holds data
    there or B is missing. Where only A is missing, the value of B is taken
    as the change. The thresholds apply as in Difference.

    Args:
        sources: [A, B, filter of A, filter of B]
        target_path: Output file (None = in-memory raster)
        progress: Optional progress callback
        minimum_threshold: Differences with |d| <= this are dropped
        maximum_threshold: Differences with |d| >= this are dropped
    """

    _SOURCES = 4

    def _difference(self, x: int, y: int, sources: List[Window]):
        a, b, filter_a, filter_b = sources
        if not (filter_a.has_data() or filter_b.has_data()) or not b.has_data():
            return None
        if not a.has_data():
            return self._thresholded(b.data())
        return self._thresholded(b.data() - a.data())
