"""
Raster I/O

Sources and sinks consumed by the raster operations:
- RasterFile: a georeferenced file opened with rasterio (GeoTIFF by default)
- MemoryRaster: a numpy-backed raster, the in-memory counterpart of a file
- open_source / create_raster: coercion and creation helpers
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.errors import RasterioError
from rasterio.io import DatasetReader
from rasterio.windows import Window as RioWindow

from ..utils.logging import setup_logger
from .metadata import RasterMetadata
from .window import cast_nodata

logger = setup_logger(__name__)

MEMORY_DRIVER = "MEM"


class RasterSource:
    """
    Band-addressable raster with row-range access.

    Subclasses provide `metadata`, nodata lookup, typed row reads and,
    for writable rasters, row writes. Bands are numbered from 1.
    """

    metadata: RasterMetadata
    name: str = "<raster>"

    @property
    def band_count(self) -> int:
        raise NotImplementedError

    def dtype(self, band: int = 1) -> np.dtype:
        raise NotImplementedError

    def nodata(self, band: int = 1) -> Optional[float]:
        raise NotImplementedError

    def read_rows(self, band: int, row_off: int, count: int) -> np.ndarray:
        """Read `count` full rows starting at `row_off` as a (count, columns) array."""
        raise NotImplementedError

    def read(self, band: int = 1) -> np.ndarray:
        """Read a whole band as a (rows, columns) array."""
        return self.read_rows(band, 0, self.metadata.raster_size_y)

    def write_rows(self, band: int, row_off: int, data: np.ndarray) -> None:
        raise NotImplementedError(f"{type(self).__name__} is read-only")

    def close(self) -> None:
        pass

    def _check_band(self, band: int) -> None:
        if band < 1 or band > self.band_count:
            raise IndexError(f"Band {band} out of range for {self.name} ({self.band_count} bands)")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class MemoryRaster(RasterSource):
    """
    Raster held in a numpy array.

    Args:
        data: (rows, cols) or (bands, rows, cols) array, used without copying
        metadata: Georeferencing. If None, a unit grid anchored at (0, 0) is used
        nodata: Nodata value, or one value per band
        crs: CRS used when metadata is None
        name: Label for log messages
    """

    def __init__(
        self,
        data: np.ndarray,
        metadata: Optional[RasterMetadata] = None,
        nodata: Union[None, float, Sequence[Optional[float]]] = None,
        *,
        crs: Optional[Union[str, CRS]] = None,
        name: str = MEMORY_DRIVER,
    ):
        array = np.asarray(data)
        if array.ndim == 2:
            array = array[np.newaxis, :, :]
        if array.ndim != 3:
            raise ValueError(f"Raster data must be 2D or 3D, got shape {array.shape}")
        self._data = array
        bands, rows, cols = array.shape

        if metadata is None:
            metadata = RasterMetadata(
                origin_x=0.0, origin_y=0.0,
                pixel_size_x=1.0, pixel_size_y=-1.0,
                raster_size_x=cols, raster_size_y=rows,
                crs=CRS.from_user_input(crs) if crs is not None else None,
            )
        elif metadata.shape != (rows, cols):
            raise ValueError(
                f"Data shape {(rows, cols)} does not match metadata shape {metadata.shape}"
            )
        self.metadata = metadata
        self.name = name

        if nodata is None or np.isscalar(nodata):
            self._nodata = [nodata] * bands
        else:
            self._nodata = list(nodata)
            if len(self._nodata) != bands:
                raise ValueError(f"Expected {bands} nodata values, got {len(self._nodata)}")

    @property
    def data(self) -> np.ndarray:
        """The backing (bands, rows, cols) array."""
        return self._data

    @property
    def band_count(self) -> int:
        return self._data.shape[0]

    def dtype(self, band: int = 1) -> np.dtype:
        return self._data.dtype

    def nodata(self, band: int = 1) -> Optional[float]:
        self._check_band(band)
        return self._nodata[band - 1]

    def read_rows(self, band: int, row_off: int, count: int) -> np.ndarray:
        self._check_band(band)
        return self._data[band - 1, row_off:row_off + count, :]

    def read(self, band: int = 1) -> np.ndarray:
        self._check_band(band)
        return self._data[band - 1].copy()

    def write_rows(self, band: int, row_off: int, data: np.ndarray) -> None:
        self._check_band(band)
        data = np.asarray(data)
        if data.ndim == 1:
            data = data[np.newaxis, :]
        self._data[band - 1, row_off:row_off + data.shape[0], :] = data

    def __repr__(self) -> str:
        return f"MemoryRaster({self.name}, {self.metadata})"


class RasterFile(RasterSource):
    """
    Raster file opened through rasterio.

    Read mode ("r") is used for sources; write mode ("w") creates a new
    file from the profile keywords (driver, width, height, count, dtype,
    crs, transform, nodata and driver creation options).

    Raises:
        FileNotFoundError: If a file opened for reading does not exist
        RuntimeError: If rasterio fails to open or create the file
    """

    def __init__(self, path: Union[str, Path], mode: str = "r", **profile: Any):
        self.path = Path(path)
        self.name = str(self.path)
        self.mode = mode
        if mode == "r" and not self.path.exists():
            raise FileNotFoundError(f"Raster file not found: {self.path}")
        try:
            self._dataset = rasterio.open(self.path, mode, **profile)
        except RasterioError as e:
            raise RuntimeError(f"Cannot open raster {self.path} (mode '{mode}'): {e}") from e
        self.metadata = RasterMetadata.from_dataset(self._dataset)

    @classmethod
    def create(
        cls,
        path: Union[str, Path],
        metadata: RasterMetadata,
        dtype,
        nodata: Optional[float],
        *,
        driver: str = "GTiff",
        count: int = 1,
        options: Optional[Dict[str, Any]] = None,
    ) -> "RasterFile":
        """Create a new raster file; an existing file at `path` is replaced."""
        path = Path(path)
        if path.exists():
            logger.debug(f"Removing previously created target {path}")
            path.unlink()
        path.parent.mkdir(parents=True, exist_ok=True)
        return cls(
            path, "w",
            driver=driver,
            width=metadata.raster_size_x,
            height=metadata.raster_size_y,
            count=count,
            dtype=np.dtype(dtype).name,
            crs=metadata.crs,
            transform=metadata.transform,
            nodata=cast_nodata(nodata, dtype),
            **(options or {}),
        )

    @property
    def dataset(self):
        return self._dataset

    @property
    def closed(self) -> bool:
        return self._dataset.closed

    @property
    def band_count(self) -> int:
        return self._dataset.count

    def dtype(self, band: int = 1) -> np.dtype:
        self._check_band(band)
        return np.dtype(self._dataset.dtypes[band - 1])

    def nodata(self, band: int = 1) -> Optional[float]:
        self._check_band(band)
        return self._dataset.nodatavals[band - 1]

    def read_rows(self, band: int, row_off: int, count: int) -> np.ndarray:
        self._check_band(band)
        window = RioWindow(0, row_off, self.metadata.raster_size_x, count)
        try:
            return self._dataset.read(band, window=window)
        except RasterioError as e:
            raise RuntimeError(f"Read error in {self.path} (rows {row_off}..{row_off + count}): {e}") from e

    def write_rows(self, band: int, row_off: int, data: np.ndarray) -> None:
        self._check_band(band)
        data = np.asarray(data)
        if data.ndim == 1:
            data = data[np.newaxis, :]
        window = RioWindow(0, row_off, self.metadata.raster_size_x, data.shape[0])
        try:
            self._dataset.write(data, band, window=window)
        except RasterioError as e:
            raise RuntimeError(f"Write error in {self.path} (row {row_off}): {e}") from e

    def close(self) -> None:
        if not self._dataset.closed:
            self._dataset.close()

    def __repr__(self) -> str:
        return f"RasterFile({self.path}, mode='{self.mode}')"


class _DatasetSource(RasterFile):
    """Non-owning wrapper of a rasterio dataset opened by the caller."""

    def __init__(self, dataset: DatasetReader):
        self.path = Path(dataset.name)
        self.name = dataset.name
        self.mode = dataset.mode
        self._dataset = dataset
        self.metadata = RasterMetadata.from_dataset(dataset)

    def close(self) -> None:
        # The caller opened the dataset and keeps responsibility for it
        pass


SourceLike = Union[RasterSource, DatasetReader, str, "os.PathLike[str]"]


def open_source(source: SourceLike) -> Tuple[RasterSource, bool]:
    """
    Coerce a path, rasterio dataset or RasterSource into a RasterSource.

    Returns:
        (source, owned): owned is True when the source was opened here and
        must be closed by the caller
    """
    if isinstance(source, RasterSource):
        return source, False
    if isinstance(source, DatasetReader):
        return _DatasetSource(source), False
    if isinstance(source, (str, os.PathLike)):
        return RasterFile(source), True
    raise TypeError(f"Unsupported raster source type: {type(source).__name__}")


def create_raster(
    path: Optional[Union[str, Path]],
    metadata: RasterMetadata,
    dtype,
    nodata: Optional[float],
    *,
    driver: str = "GTiff",
    count: int = 1,
    options: Optional[Dict[str, Any]] = None,
) -> RasterSource:
    """
    Create a writable raster.

    A None path or the "MEM" driver gives a MemoryRaster prefilled with
    nodata; anything else is created on disk through rasterio and must be
    written completely by the caller.
    """
    if path is None or driver.upper() == MEMORY_DRIVER:
        fill = cast_nodata(nodata, dtype)
        data = np.full((count,) + metadata.shape, fill if fill is not None else 0, dtype=dtype)
        return MemoryRaster(data, metadata, nodata=fill, name=str(path) if path else MEMORY_DRIVER)
    return RasterFile.create(path, metadata, dtype, nodata, driver=driver, count=count, options=options)
