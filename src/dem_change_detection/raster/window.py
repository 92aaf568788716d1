"""
Windowed source accessor

A Window is a read-only view over a strip of rows of one raster source,
positioned in the coordinate system of the operation's target grid. Queries
are relative to a movable centre and never fault: anything outside the
buffered strip reads as nodata.
"""

from __future__ import annotations

import math
from typing import Any

import numpy as np


def cast_nodata(nodata: Any, dtype) -> Any:
    """
    Convert a nodata value to the value it takes once stored in `dtype`.

    A float32 raster stores -1e10 as -9999998976.0, so comparisons against
    sample values must use the stored representation. Returns None when
    the value is not representable in an integer dtype.
    """
    if nodata is None:
        return None
    dtype = np.dtype(dtype)
    if np.issubdtype(dtype, np.integer):
        if not math.isfinite(nodata) or nodata != int(nodata):
            return None
        info = np.iinfo(dtype)
        if not info.min <= nodata <= info.max:
            return None
        return int(nodata)
    if np.issubdtype(dtype, np.floating):
        return np.array(nodata, dtype=dtype).item()
    return nodata


class Window:
    """
    Bounds-checked view over a buffered raster strip.

    Coordinates (offset, centre) are expressed in the target grid of the
    operation owning the window, so a window of a source that is shifted
    relative to the target already accounts for the shift.

    Attributes:
        buffer: 2D array of shape (size_y, size_x)
        nodata: Sentinel marking missing samples (NaN is always missing)
        offset_x: Target column of buffer column 0
        offset_y: Target row of buffer row 0
        center_x: Target column queries are relative to
        center_y: Target row queries are relative to
    """

    __slots__ = ("buffer", "nodata", "offset_x", "offset_y", "center_x", "center_y",
                 "size_x", "size_y")

    def __init__(
        self,
        buffer: np.ndarray,
        nodata: Any,
        offset_x: int = 0,
        offset_y: int = 0,
        center_x: int = 0,
        center_y: int = 0,
    ):
        if buffer.ndim != 2:
            raise ValueError(f"Window buffer must be 2D, got shape {buffer.shape}")
        self.buffer = buffer
        self.size_y, self.size_x = buffer.shape
        # NaN never compares equal, so a NaN sentinel is caught by the self-inequality test below
        nodata = cast_nodata(nodata, buffer.dtype)
        self.nodata = nodata if nodata is not None else math.nan
        self.offset_x = offset_x
        self.offset_y = offset_y
        self.center_x = center_x
        self.center_y = center_y

    @classmethod
    def empty(cls, nodata: Any, offset_x: int = 0, offset_y: int = 0,
              dtype=np.float32) -> "Window":
        """Zero-size window; has_data is False everywhere."""
        return cls(np.empty((0, 0), dtype=dtype), nodata, offset_x, offset_y)

    def _position(self, i: int, j: int):
        col = self.center_x - self.offset_x + i
        row = self.center_y - self.offset_y + j
        if col < 0 or row < 0 or col >= self.size_x or row >= self.size_y:
            return None
        return row, col

    def has_data(self, i: int = 0, j: int = 0) -> bool:
        """True if (center_x + i, center_y + j) is buffered and not nodata."""
        pos = self._position(i, j)
        if pos is None:
            return False
        value = self.buffer.item(pos)
        return not (value == self.nodata or value != value)

    def data(self, i: int = 0, j: int = 0) -> Any:
        """Sample at (center_x + i, center_y + j), or the nodata sentinel if out of bounds."""
        pos = self._position(i, j)
        if pos is None:
            return self.nodata
        return self.buffer.item(pos)

    def __repr__(self) -> str:
        return (
            f"Window(size={self.size_x}x{self.size_y}, offset=({self.offset_x}, {self.offset_y}), "
            f"center=({self.center_x}, {self.center_y}), nodata={self.nodata})"
        )
