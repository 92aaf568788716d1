"""
Raster Module

Georeferenced raster access and the computation engine built on it:
- RasterMetadata and raster sources/sinks (rasterio files, in-memory arrays)
- Window: bounds-checked neighbourhood view used by computations
- Operation lifecycle (prepare/execute, progress, cancellation)
- Sweep-line (row streaming) and dataset (whole raster) operations
"""

from .metadata import RasterMetadata
from .window import Window, cast_nodata
from .io import RasterSource, RasterFile, MemoryRaster, open_source, create_raster
from .operation import (
    DEFAULT_NODATA,
    Operation,
    OperationAborted,
    Calculation,
    Creation,
    ProgressCallback,
    sub_progress,
)
from .sweepline import SweepLineCalculation, SweepLineTransformation
from .dataset import DatasetCalculation, DatasetTransformation

__all__ = [
    "RasterMetadata",
    "Window",
    "cast_nodata",
    "RasterSource",
    "RasterFile",
    "MemoryRaster",
    "open_source",
    "create_raster",
    "DEFAULT_NODATA",
    "Operation",
    "OperationAborted",
    "Calculation",
    "Creation",
    "ProgressCallback",
    "sub_progress",
    "SweepLineCalculation",
    "SweepLineTransformation",
    "DatasetCalculation",
    "DatasetTransformation",
]
