"""
Whole-raster operations

Operations that need random access over the full extent (segmentation,
cluster morphology, statistics) load every source into memory once and call
their computation a single time with the size of the target grid:

- DatasetCalculation: computation(size_x, size_y), no output raster
- DatasetTransformation: the computation fills a target array through
  set_target_data(), written out after the computation returns
"""

from __future__ import annotations

import os
from typing import Any, Callable, List, Optional, Sequence, Union

import numpy as np

from ..utils.logging import setup_logger
from .io import SourceLike
from .operation import DEFAULT_NODATA, Calculation, Creation, ProgressCallback
from .window import cast_nodata

logger = setup_logger(__name__)

DatasetComputation = Callable[[int, int], None]


class _Dataset(Calculation):
    """
    Shared source loading of the whole-raster operations.

    Source accessors take coordinates in the source's own grid.
    """

    def __init__(
        self,
        sources: Sequence[SourceLike],
        computation: Optional[DatasetComputation] = None,
        progress: Optional[ProgressCallback] = None,
        *,
        bands: Optional[Sequence[int]] = None,
        dtype=None,
    ):
        super().__init__(sources, progress)
        self.computation = computation
        self.bands = list(bands) if bands is not None else None
        self.dtype = np.dtype(dtype) if dtype is not None else None
        self._source_bands: List[int] = []
        self._source_data: List[np.ndarray] = []
        self._source_nodata: List[Any] = []

    def _on_prepare(self) -> None:
        super()._on_prepare()
        if self.computation is None:
            raise ValueError("Computation is not given.")
        self._source_bands = self._resolve_bands(self.bands)

    def _load_sources(self, total_steps: int) -> None:
        self._source_data = []
        self._source_nodata = []
        for index, (source, band) in enumerate(zip(self._sources, self._source_bands)):
            data = source.read(band)
            if self.dtype is not None and data.dtype != self.dtype:
                data = data.astype(self.dtype)
            self._source_data.append(data)
            self._source_nodata.append(cast_nodata(source.nodata(band), data.dtype))
            self._report((index + 1) / total_steps, f"Done reading source #{index + 1}")

    def _unload_sources(self) -> None:
        self._source_data = []
        self._source_nodata = []

    def source_array(self, index: int) -> np.ndarray:
        """Loaded data of source `index` as a (rows, cols) array."""
        return self._source_data[index]

    def source_nodata(self, index: int) -> Any:
        return self._source_nodata[index]

    def source_data(self, index: int, x: int, y: int) -> Any:
        """Value of source `index` at (x, y); nodata outside the source."""
        data = self._source_data[index]
        if 0 <= y < data.shape[0] and 0 <= x < data.shape[1]:
            return data.item(y, x)
        nodata = self._source_nodata[index]
        return nodata if nodata is not None else np.nan

    def has_source_data(self, index: int, x: int, y: int) -> bool:
        data = self._source_data[index]
        if not (0 <= y < data.shape[0] and 0 <= x < data.shape[1]):
            return False
        value = data.item(y, x)
        return not (value == self._source_nodata[index] or value != value)


class DatasetCalculation(_Dataset):
    """
    Whole-raster operation without output raster.

    Every source is loaded into memory, then computation(size_x, size_y) is
    called once with the size of the target grid.
    """

    def _on_execute(self) -> None:
        metadata = self.target_metadata
        steps = self.source_count + 1
        self._load_sources(steps)
        try:
            self.computation(metadata.raster_size_x, metadata.raster_size_y)
            self._report(1.0, "Computation performed")
        finally:
            self._unload_sources()


class DatasetTransformation(Creation, _Dataset):
    """
    Whole-raster operation writing one output raster.

    The target is prefilled with nodata; the computation sets values with
    set_target_data(x, y, value) in target-grid coordinates.
    """

    def __init__(
        self,
        sources: Sequence[SourceLike],
        target_path: Optional[Union[str, os.PathLike]] = None,
        computation: Optional[DatasetComputation] = None,
        progress: Optional[ProgressCallback] = None,
        *,
        target_dtype=np.float32,
        nodata_value: float = DEFAULT_NODATA,
        bands: Optional[Sequence[int]] = None,
        dtype=None,
    ):
        _Dataset.__init__(self, sources, computation, progress, bands=bands, dtype=dtype)
        self._init_creation(target_path, target_dtype, nodata_value)
        self._target_data: Optional[np.ndarray] = None
        self._target_nodata: Any = None

    def target_data(self, x: int, y: int) -> Any:
        return self._target_data.item(y, x)

    def set_target_data(self, x: int, y: int, value: Any) -> None:
        self._target_data[y, x] = value

    def has_target_data(self, x: int, y: int) -> bool:
        data = self._target_data
        if not (0 <= y < data.shape[0] and 0 <= x < data.shape[1]):
            return False
        value = data.item(y, x)
        return not (value == self._target_nodata or value != value)

    def _on_execute(self) -> None:
        metadata = self.target_metadata
        steps = self.source_count + 2
        self._target_nodata = cast_nodata(self.nodata_value, self.target_dtype)
        self._target_data = np.full(
            metadata.shape,
            self._target_nodata if self._target_nodata is not None else 0,
            dtype=self.target_dtype,
        )
        self._load_sources(steps)
        try:
            self.computation(metadata.raster_size_x, metadata.raster_size_y)
            self._report((steps - 1) / steps, "Computation performed")
        finally:
            self._unload_sources()

        sink = self._open_target()
        try:
            sink.write_rows(1, 0, self._target_data)
            self._report(1.0, "Target written")
        except Exception:
            self._abandon_target(sink)
            raise
        finally:
            self._target_data = None
        self._commit_target(sink)
