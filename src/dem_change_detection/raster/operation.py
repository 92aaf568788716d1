"""
Operation lifecycle for raster computations

- Operation: two-phase prepare()/execute() lifecycle with progress reporting
  and cooperative cancellation
- Calculation: an operation over N raster sources sharing one target grid
- Creation: ownership of the output raster of a transformation
"""

from __future__ import annotations

import math
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import numpy as np
from rasterio.crs import CRS

from ..utils.logging import setup_logger
from .io import MEMORY_DRIVER, RasterFile, RasterSource, SourceLike, create_raster, open_source
from .metadata import RasterMetadata

logger = setup_logger(__name__)

ProgressCallback = Callable[[float, str], Optional[bool]]

DEFAULT_NODATA = -1e10


class OperationAborted(RuntimeError):
    """Raised when a progress callback requests cancellation."""


def sub_progress(progress: Optional[ProgressCallback], start: float, end: float,
                 prefix: Optional[str] = None) -> Optional[ProgressCallback]:
    """
    Map the [0, 1] progress of a nested operation onto [start, end] of its parent.

    Args:
        progress: Parent callback (None gives None)
        start: Parent progress when the nested operation starts
        end: Parent progress when the nested operation completes
        prefix: Optional text put in front of the nested messages
    """
    if progress is None:
        return None

    def report(complete: float, message: str) -> Optional[bool]:
        text = f"{prefix}: {message}" if prefix else message
        return progress(start + (end - start) * complete, text)

    return report


class Operation:
    """
    Base class of all operations.

    prepare() validates the configuration and computes whatever the
    execution needs; execute() prepares when required and then performs
    the work. Invoking either again is a no-op unless `force` is set.

    Attributes:
        progress: Optional callback (complete, message) -> continue?.
            Returning exactly False aborts the operation.
    """

    def __init__(self, progress: Optional[ProgressCallback] = None):
        self.progress = progress
        self._is_prepared = False
        self._is_executed = False

    @property
    def is_prepared(self) -> bool:
        return self._is_prepared

    @property
    def is_executed(self) -> bool:
        return self._is_executed

    def prepare(self, force: bool = False) -> None:
        if self._is_prepared and not force:
            return
        self._on_prepare()
        self._is_prepared = True
        self._is_executed = False

    def execute(self, force: bool = False) -> None:
        if self._is_executed and not force:
            return
        if not self._is_prepared or force:
            self.prepare(force)
        self._on_execute()
        self._is_executed = True

    def _on_prepare(self) -> None:
        pass

    def _on_execute(self) -> None:
        raise NotImplementedError

    def _report(self, complete: float, message: str) -> None:
        """Forward progress; raise OperationAborted if the callback says stop."""
        if self.progress is not None and self.progress(complete, message) is False:
            raise OperationAborted(f"{type(self).__name__} aborted by the user ({message}).")

    def _require_executed(self) -> None:
        if not self._is_executed:
            raise RuntimeError(f"{type(self).__name__} is not executed.")


class Calculation(Operation):
    """
    Operation over one or more raster sources.

    On prepare the sources' metadata are validated and merged into the
    target grid: the union bounding box of all sources with their common
    pixel size.

    Args:
        sources: Paths, rasterio datasets or RasterSource objects
        progress: Optional progress callback

    Attributes:
        spatial_reference: CRS override; when None the sources must agree

    Raises:
        ValueError: If no source is given
    """

    def __init__(self, sources: Sequence[SourceLike], progress: Optional[ProgressCallback] = None):
        super().__init__(progress)
        if isinstance(sources, (str, os.PathLike, RasterSource)):
            sources = [sources]
        if len(sources) == 0:
            raise ValueError("At least 1 source must be given.")

        self.spatial_reference: Optional[Union[str, CRS]] = None
        self._source_keys: List[Any] = []
        self._sources: List[RasterSource] = []
        self._owned: List[RasterSource] = []
        opened: Dict[str, RasterSource] = {}
        try:
            for source in sources:
                key = str(Path(source).resolve()) if isinstance(source, (str, os.PathLike)) else id(source)
                if isinstance(key, str) and key in opened:
                    # Same file listed twice: read it through one handle
                    raster = opened[key]
                else:
                    raster, owned = open_source(source)
                    if owned:
                        self._owned.append(raster)
                        opened[key] = raster
                self._source_keys.append(key)
                self._sources.append(raster)
        except Exception:
            self.close()
            raise

        self._target_metadata: Optional[RasterMetadata] = None
        self._source_offsets: List[tuple] = []

    @property
    def source_count(self) -> int:
        return len(self._sources)

    @property
    def sources(self) -> List[RasterSource]:
        return list(self._sources)

    def source_metadata(self, key: Union[int, str, os.PathLike]) -> RasterMetadata:
        """
        Metadata of a source, looked up by position or by path.

        Raises:
            IndexError: If the position is out of range
            KeyError: If no source was opened from the path
        """
        if isinstance(key, int):
            if key < 0 or key >= len(self._sources):
                raise IndexError(f"Source index {key} out of range ({len(self._sources)} sources)")
            return self._sources[key].metadata
        resolved = str(Path(key).resolve())
        for source_key, source in zip(self._source_keys, self._sources):
            if source_key == resolved:
                return source.metadata
        raise KeyError(f"The given file was not found among the sources: {key}")

    @property
    def target_metadata(self) -> RasterMetadata:
        if self._target_metadata is None:
            raise RuntimeError("The computation is not prepared.")
        return self._target_metadata

    def source_offset(self, index: int) -> tuple:
        """(column, row) of source `index`'s origin in the target grid."""
        if not self._source_offsets:
            raise RuntimeError("The computation is not prepared.")
        return self._source_offsets[index]

    def _on_prepare(self) -> None:
        metadata = [source.metadata for source in self._sources]
        first = metadata[0]

        for md in metadata[1:]:
            if not math.isclose(abs(md.pixel_size_x), abs(first.pixel_size_x), rel_tol=1e-9):
                raise ValueError("Horizontal pixel sizes differ.")
            if not math.isclose(abs(md.pixel_size_y), abs(first.pixel_size_y), rel_tol=1e-9):
                raise ValueError("Vertical pixel sizes differ.")

        crs = self._resolve_crs(metadata)

        pixel_x = abs(first.pixel_size_x)
        pixel_y = abs(first.pixel_size_y)
        origin_x = min(md.origin_x for md in metadata)
        origin_y = max(md.origin_y for md in metadata)
        end_x = max(md.origin_x + md.extent_x for md in metadata)
        end_y = min(md.origin_y - md.extent_y for md in metadata)

        self._target_metadata = RasterMetadata(
            origin_x=origin_x,
            origin_y=origin_y,
            pixel_size_x=first.pixel_size_x,
            pixel_size_y=first.pixel_size_y,
            raster_size_x=int(round((end_x - origin_x) / pixel_x)),
            raster_size_y=int(round((origin_y - end_y) / pixel_y)),
            crs=crs,
        )
        self._source_offsets = [
            (
                int(round((md.origin_x - origin_x) / pixel_x)),
                int(round((origin_y - md.origin_y) / pixel_y)),
            )
            for md in metadata
        ]
        logger.debug(f"{type(self).__name__} target grid: {self._target_metadata}")

    def _resolve_bands(self, bands: Optional[Sequence[int]]) -> List[int]:
        """
        Band to read from each source.

        By default a source listed k times is read from bands 1..k in order
        of appearance.
        """
        if bands is None:
            seen: Dict[Any, int] = {}
            resolved = []
            for key in self._source_keys:
                seen[key] = seen.get(key, 0) + 1
                resolved.append(seen[key])
        else:
            if len(bands) != self.source_count:
                raise ValueError(f"{len(bands)} bands given for {self.source_count} sources.")
            resolved = [int(band) for band in bands]

        for index, (source, band) in enumerate(zip(self._sources, resolved)):
            if band < 1 or band > source.band_count:
                raise ValueError(f"Band {band} of source #{index} ({source.name}) does not exist.")
        return resolved

    def _resolve_crs(self, metadata: Sequence[RasterMetadata]) -> CRS:
        if self.spatial_reference is not None:
            if isinstance(self.spatial_reference, CRS):
                return self.spatial_reference
            try:
                return CRS.from_user_input(self.spatial_reference)
            except Exception as e:
                raise ValueError(f"Invalid spatial reference {self.spatial_reference!r}: {e}") from e

        references = [md.crs for md in metadata if md.crs is not None]
        if not references:
            raise ValueError(
                "No spatial reference system is given for the sources; set spatial_reference."
            )
        for crs in references[1:]:
            if crs != references[0]:
                raise ValueError("Spatial reference systems for the sources differ.")
        return references[0]

    def close(self) -> None:
        """Close the sources this operation opened itself."""
        for source in self._owned:
            source.close()
        self._owned = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class Creation:
    """
    Mixin owning the output raster of a transformation.

    The target is written to `target_path` with `target_format`, or kept
    in memory when no path is given. Ownership passes to the caller through
    target(); until then the operation closes it in close().

    Attributes:
        target_path: Output file, None for an in-memory target
        target_format: rasterio driver name ("GTiff" by default)
        create_options: Driver creation options (e.g. {"compress": "lzw"})
        nodata_value: Nodata value of the target
        target_dtype: Data type of the target samples
    """

    def _init_creation(self, target_path: Optional[Union[str, os.PathLike]],
                       target_dtype=np.float32, nodata_value: float = DEFAULT_NODATA) -> None:
        self.target_path = Path(target_path) if target_path is not None else None
        self.target_format = "GTiff" if target_path is not None else MEMORY_DRIVER
        self.create_options: Dict[str, Any] = {}
        self.nodata_value = nodata_value
        self.target_dtype = np.dtype(target_dtype)
        self._target: Optional[RasterSource] = None
        self._target_owned = False

    def target(self) -> RasterSource:
        """
        Hand over the output raster.

        The caller becomes responsible for closing it.

        Raises:
            RuntimeError: If the operation was not executed
        """
        if not self._is_executed or self._target is None:
            raise RuntimeError("The computation is not executed.")
        self._target_owned = False
        return self._target

    def _open_target(self) -> RasterSource:
        self._release_target()
        sink = create_raster(
            self.target_path,
            self.target_metadata,
            self.target_dtype,
            self.nodata_value,
            driver=self.target_format,
            options=self.create_options,
        )
        logger.debug(f"Created target {sink.name} ({self.target_metadata.raster_size_x}x"
                     f"{self.target_metadata.raster_size_y}, {self.target_dtype.name})")
        return sink

    def _commit_target(self, sink: RasterSource) -> None:
        if isinstance(sink, RasterFile):
            # Reopen the finished file for reading so it can feed the next operation
            sink.close()
            sink = RasterFile(sink.path)
        self._target = sink
        self._target_owned = True

    def _abandon_target(self, sink: RasterSource) -> None:
        sink.close()
        if isinstance(sink, RasterFile) and sink.path.exists():
            logger.warning(f"Removing incomplete target {sink.path}")
            sink.path.unlink()

    def _release_target(self) -> None:
        if self._target is not None and self._target_owned:
            self._target.close()
        self._target = None
        self._target_owned = False

    def close(self) -> None:
        self._release_target()
        super().close()
