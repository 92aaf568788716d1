"""
Weighted matrix (convolution) transformation and the blur kernels used to
smooth canopy height models.
"""

from __future__ import annotations

import os
from typing import List, Optional, Union

import numpy as np

from ..raster.io import SourceLike
from ..raster.operation import ProgressCallback
from ..raster.sweepline import SweepLineTransformation
from ..raster.window import Window


class MatrixTransformation(SweepLineTransformation):
    """
    Weighted mean of the valid cells in the (2r+1)x(2r+1) window.

    Nodata cells stay nodata; nodata neighbours are left out of both the
    weighted sum and the weight total. The matrix is all ones by default,
    i.e. a plain mean filter.

    Example:
        blur = MatrixTransformation(chm, window_range=1)
        blur.set_matrix(0, 0, 4)
        blur.execute()
        smoothed = blur.target()
    """

    def __init__(
        self,
        source: SourceLike,
        target_path: Optional[Union[str, os.PathLike]] = None,
        window_range: int = 1,
        progress: Optional[ProgressCallback] = None,
    ):
        super().__init__([source], target_path, window_range, None, progress)
        size = 2 * window_range + 1
        self.matrix = np.ones((size, size), dtype=np.float64)
        self.computation = self._convolve

    def get_matrix(self, i: int, j: int) -> float:
        return float(self.matrix[self._matrix_position(i, j)])

    def set_matrix(self, i: int, j: int, value: float) -> None:
        """
        Set the weight at horizontal offset `i` and vertical offset `j`.

        Raises:
            IndexError: If the offset is outside the window range
        """
        self.matrix[self._matrix_position(i, j)] = value

    def _matrix_position(self, i: int, j: int):
        r = self.window_range
        if abs(i) > r or abs(j) > r:
            raise IndexError(f"Matrix offset ({i}, {j}) is outside the range {r}.")
        return (j + r, i + r)

    def _convolve(self, x: int, y: int, sources: List[Window]):
        source = sources[0]
        if not source.has_data():
            return None

        r = self.window_range
        value = 0.0
        weights = 0.0
        for i in range(-r, r + 1):
            for j in range(-r, r + 1):
                if source.has_data(i, j):
                    weight = self.matrix[j + r, i + r]
                    value += source.data(i, j) * weight
                    weights += weight

        if weights == 0:
            return None
        return value / weights


def _symmetric(transformation: MatrixTransformation, weights) -> MatrixTransformation:
    # weights maps (|i|, |j|) to the value of all mirrored positions
    r = transformation.window_range
    for i in range(-r, r + 1):
        for j in range(-r, r + 1):
            transformation.set_matrix(i, j, weights[(abs(i), abs(j))])
    return transformation


def blur_3x3_middle_4(source: SourceLike, target_path=None,
                      progress: Optional[ProgressCallback] = None) -> MatrixTransformation:
    """3x3 blur: centre 4, sides 2, corners 1."""
    return _symmetric(
        MatrixTransformation(source, target_path, 1, progress),
        {(0, 0): 4, (0, 1): 2, (1, 0): 2, (1, 1): 1},
    )


def blur_3x3_middle_12(source: SourceLike, target_path=None,
                       progress: Optional[ProgressCallback] = None) -> MatrixTransformation:
    """3x3 blur: centre 12, sides 3, corners 1."""
    return _symmetric(
        MatrixTransformation(source, target_path, 1, progress),
        {(0, 0): 12, (0, 1): 3, (1, 0): 3, (1, 1): 1},
    )


def blur_5x5_middle_36(source: SourceLike, target_path=None,
                       progress: Optional[ProgressCallback] = None) -> MatrixTransformation:
    """5x5 Gaussian-like blur (binomial weights, centre 36)."""
    return _symmetric(
        MatrixTransformation(source, target_path, 2, progress),
        {
            (0, 0): 36, (0, 1): 24, (1, 0): 24, (0, 2): 6, (2, 0): 6,
            (1, 1): 16, (1, 2): 4, (2, 1): 4, (2, 2): 1,
        },
    )


BLUR_KERNELS = {
    "3x3_middle_4": blur_3x3_middle_4,
    "3x3_middle_12": blur_3x3_middle_12,
    "5x5_middle_36": blur_5x5_middle_36,
}
