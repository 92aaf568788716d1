"""
Sweep-line computation engine

Streams the target grid one row at a time. For every target row each
source contributes a Window holding the rows [y - range, y + range] that it
covers, re-aligned to the target grid, and a computation callback is
invoked once per target pixel with these windows.

- SweepLineCalculation: the callback accumulates state, no output raster
- SweepLineTransformation: the callback returns the target pixel value
"""

from __future__ import annotations

import os
import time
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..utils.logging import setup_logger
from .io import SourceLike
from .operation import DEFAULT_NODATA, Calculation, Creation, ProgressCallback
from .window import Window

logger = setup_logger(__name__)

Computation = Callable[[int, int, List[Window]], Any]

# Number of progress reports per sweep
PROGRESS_STEPS = 199


class _SweepLine(Calculation):
    """
    Shared row iteration of the sweep-line operations.

    Args:
        sources: Raster sources (paths, datasets or RasterSource objects)
        window_range: Number of context rows and columns around the centre
        computation: Callback (x, y, windows)
        progress: Optional progress callback
        bands: Band per source; by default a source listed k times is read
            from bands 1..k in order of appearance
        dtype: Data type the windows are converted to (None = source type)
        strict_types: Refuse sources whose type differs from `dtype`

    Raises:
        ValueError: If the range is negative or no source is given
    """

    # Rows read from a source at once; windows are slices of this block
    BLOCK_ROWS = 64

    def __init__(
        self,
        sources: Sequence[SourceLike],
        window_range: int = 0,
        computation: Optional[Computation] = None,
        progress: Optional[ProgressCallback] = None,
        *,
        bands: Optional[Sequence[int]] = None,
        dtype=None,
        strict_types: bool = False,
    ):
        if window_range < 0:
            raise ValueError(f"Range must be non-negative, got {window_range}.")
        super().__init__(sources, progress)
        self._range = int(window_range)
        self.computation = computation
        self.bands = list(bands) if bands is not None else None
        self.dtype = np.dtype(dtype) if dtype is not None else None
        self.strict_types = strict_types
        self._source_bands: List[int] = []
        self._cache: List[Optional[Tuple[int, np.ndarray]]] = []

    @property
    def window_range(self) -> int:
        return self._range

    def _on_prepare(self) -> None:
        super()._on_prepare()
        if self.computation is None:
            raise ValueError("Computation is not given.")

        self._source_bands = self._resolve_bands(self.bands)
        for index, (source, band) in enumerate(zip(self._sources, self._source_bands)):
            if self.strict_types and self.dtype is not None and source.dtype(band) != self.dtype:
                raise TypeError(
                    f"Source #{index} ({source.name}) has data type {source.dtype(band)}, "
                    f"expected {self.dtype}."
                )

    def _read_strip(self, index: int, first: int, count: int) -> np.ndarray:
        """Rows [first, first + count) of source `index`, served from a row block cache."""
        cached = self._cache[index]
        if cached is not None:
            cached_first, block = cached
            if first >= cached_first and first + count <= cached_first + block.shape[0]:
                return block[first - cached_first:first - cached_first + count]

        source = self._sources[index]
        n_rows = min(source.metadata.raster_size_y - first, max(count, self.BLOCK_ROWS))
        block = source.read_rows(self._source_bands[index], first, n_rows)
        if self.dtype is not None and block.dtype != self.dtype:
            block = block.astype(self.dtype)
        self._cache[index] = (first, block)
        return block[:count]

    def _row_window(self, index: int, y: int) -> Window:
        source = self._sources[index]
        band = self._source_bands[index]
        offset_x, offset_y = self._source_offsets[index]
        nodata = source.nodata(band)

        start = max(y - self._range, offset_y)
        end = min(y + self._range, offset_y + source.metadata.raster_size_y - 1)
        if start > end:
            # Source does not cover these rows
            return Window.empty(nodata, offset_x, y, dtype=self.dtype if self.dtype is not None else source.dtype(band))

        strip = self._read_strip(index, start - offset_y, end - start + 1)
        return Window(strip, nodata, offset_x, start, offset_x, y)

    def _sweep(self, process_row: Callable[[int, List[Window]], None], message: str) -> None:
        """Invoke `process_row(y, windows)` for every target row in increasing order."""
        metadata = self.target_metadata
        rows = metadata.raster_size_y
        step = max(1, rows // PROGRESS_STEPS)
        self._cache = [None] * self.source_count

        logger.debug(
            f"{type(self).__name__}: {rows} rows x {metadata.raster_size_x} columns, "
            f"{self.source_count} source(s), range {self._range}"
        )
        start_time = time.time()
        try:
            for y in range(rows):
                windows = [self._row_window(i, y) for i in range(self.source_count)]
                process_row(y, windows)

                done = y + 1
                if done % step == 0 or done == rows:
                    self._report(done / rows, message)
        finally:
            self._cache = []
        logger.debug(f"{type(self).__name__} finished in {time.time() - start_time:.2f}s")


class SweepLineCalculation(_SweepLine):
    """
    Sweep-line operation without output raster.

    The computation callback is called as computation(x, y, windows) for
    every pixel of the target grid; its return value is ignored, results
    are collected by the callback itself.

    Example:
        total = []
        calc = SweepLineCalculation(["dem.tif"], 0,
                                    lambda x, y, w: total.append(w[0].data()) if w[0].has_data() else None)
        calc.execute()
    """

    def _on_execute(self) -> None:
        columns = self.target_metadata.raster_size_x
        computation = self.computation

        def process_row(y: int, windows: List[Window]) -> None:
            for x in range(columns):
                for window in windows:
                    window.center_x = x
                computation(x, y, windows)

        self._sweep(process_row, "Computing")


class SweepLineTransformation(Creation, _SweepLine):
    """
    Sweep-line operation writing one output raster.

    The computation callback returns the value of target pixel (x, y);
    None stands for nodata. Rows are written in increasing order as soon
    as they are complete.

    Args:
        sources: Raster sources
        target_path: Output file (None = in-memory raster)
        window_range: Number of context rows and columns around the centre
        computation: Callback (x, y, windows) -> value
        progress: Optional progress callback
        target_dtype: Output data type (default float32)
        nodata_value: Output nodata value (default -1e10)
        bands, dtype, strict_types: See _SweepLine
    """

    def __init__(
        self,
        sources: Sequence[SourceLike],
        target_path: Optional[Union[str, os.PathLike]] = None,
        window_range: int = 0,
        computation: Optional[Computation] = None,
        progress: Optional[ProgressCallback] = None,
        *,
        target_dtype=np.float32,
        nodata_value: float = DEFAULT_NODATA,
        bands: Optional[Sequence[int]] = None,
        dtype=None,
        strict_types: bool = False,
    ):
        _SweepLine.__init__(
            self, sources, window_range, computation, progress,
            bands=bands, dtype=dtype, strict_types=strict_types,
        )
        self._init_creation(target_path, target_dtype, nodata_value)

    def _on_execute(self) -> None:
        columns = self.target_metadata.raster_size_x
        computation = self.computation
        nodata = self.nodata_value
        row = np.empty(columns, dtype=self.target_dtype)

        sink = self._open_target()
        try:
            def process_row(y: int, windows: List[Window]) -> None:
                for x in range(columns):
                    for window in windows:
                        window.center_x = x
                    value = computation(x, y, windows)
                    row[x] = nodata if value is None else value
                sink.write_rows(1, y, row)

            self._sweep(process_row, "Transforming")
        except Exception:
            self._abandon_target(sink)
            raise
        self._commit_target(sink)
