"""
Removal of small connected data regions of a raster.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
from rasterio.crs import CRS
from rasterio.features import sieve

from ..raster.io import MemoryRaster, RasterSource, SourceLike
from ..raster.operation import DEFAULT_NODATA, Operation, ProgressCallback, sub_progress
from ..raster.sweepline import SweepLineTransformation
from ..raster.window import Window
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

DATA_VALUE = 255
NODATA_VALUE = 1


class ClusterFilter(Operation):
    """
    Remove connected regions of valid cells smaller than `size_threshold`.

    The source is binarized into data / nodata cells, regions below the
    size threshold are sieved out with rasterio, and the source values are
    kept only where the sieved mask still holds data.

    Args:
        source: Input raster
        target_path: Output file (None = in-memory raster)
        size_threshold: Minimum region size in cells
        diagonal: Treat diagonal neighbours as connected (8-connectivity)
        progress: Optional progress callback

    Raises:
        ValueError: If size_threshold is not positive
    """

    def __init__(
        self,
        source: SourceLike,
        target_path: Optional[Union[str, os.PathLike]] = None,
        size_threshold: int = 400,
        diagonal: bool = False,
        progress: Optional[ProgressCallback] = None,
        *,
        target_dtype=np.float32,
        nodata_value: float = DEFAULT_NODATA,
    ):
        super().__init__(progress)
        if size_threshold < 1:
            raise ValueError(f"Size threshold must be positive, got {size_threshold}.")
        self.source = source
        self.target_path = Path(target_path) if target_path is not None else None
        self.size_threshold = int(size_threshold)
        self.diagonal = diagonal
        self.target_dtype = np.dtype(target_dtype)
        self.nodata_value = nodata_value
        self.spatial_reference: Optional[Union[str, CRS]] = None
        self.create_options: Dict[str, Any] = {}
        self.removed_cells = 0
        self._target: Optional[RasterSource] = None

    def filter(self) -> RasterSource:
        """Execute the filter and hand over its output raster."""
        self.execute()
        return self.target()

    def target(self) -> RasterSource:
        """
        Raises:
            RuntimeError: If the filter was not executed
        """
        if not self.is_executed or self._target is None:
            raise RuntimeError("The computation is not executed.")
        target, self._target = self._target, None
        return target

    def _on_execute(self) -> None:
        with SweepLineTransformation(
            [self.source], None, 0, self._binarize,
            sub_progress(self.progress, 0.0, 0.25, "Binarization"),
            target_dtype=np.uint8, nodata_value=0,
        ) as binarization:
            binarization.spatial_reference = self.spatial_reference
            binarization.execute()
            binary = binarization.target()

        mask = binary.read(1)
        sieved = sieve(mask, size=self.size_threshold, connectivity=8 if self.diagonal else 4)
        self.removed_cells = int(np.count_nonzero((mask == DATA_VALUE) & (sieved != DATA_VALUE)))
        self._report(0.75, "Sieving")
        logger.info(
            f"Sieved {self.removed_cells} cells in regions smaller than {self.size_threshold} "
            f"({8 if self.diagonal else 4}-connectivity)"
        )

        sieve_raster = MemoryRaster(sieved, binary.metadata, nodata=0, name="sieve")
        with SweepLineTransformation(
            [self.source, sieve_raster], self.target_path, 0, self._apply,
            sub_progress(self.progress, 0.75, 1.0, "Applying"),
            target_dtype=self.target_dtype, nodata_value=self.nodata_value, bands=[1, 1],
        ) as application:
            application.spatial_reference = self.spatial_reference
            application.create_options = dict(self.create_options)
            application.execute()
            self._target = application.target()

    @staticmethod
    def _binarize(x: int, y: int, sources: List[Window]):
        return DATA_VALUE if sources[0].has_data() else NODATA_VALUE

    @staticmethod
    def _apply(x: int, y: int, sources: List[Window]):
        source, mask = sources
        if source.has_data() and mask.data() == DATA_VALUE:
            return source.data()
        return None
