"""
Raster metadata

Georeferencing description of a raster grid: origin, pixel size, size in
cells and spatial reference. Used to compare sources and to allocate
output grids.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from rasterio.crs import CRS
from rasterio.transform import Affine


@dataclass(frozen=True)
class RasterMetadata:
    """
    Immutable georeferencing of a north-up raster grid.

    Attributes:
        origin_x: World X of the upper-left corner
        origin_y: World Y of the upper-left corner
        pixel_size_x: Cell width (positive)
        pixel_size_y: Cell height (conventionally negative)
        raster_size_x: Number of columns
        raster_size_y: Number of rows
        crs: Spatial reference, None when unknown
    """

    origin_x: float
    origin_y: float
    pixel_size_x: float
    pixel_size_y: float
    raster_size_x: int
    raster_size_y: int
    crs: Optional[CRS] = None

    @property
    def extent_x(self) -> float:
        return self.raster_size_x * abs(self.pixel_size_x)

    @property
    def extent_y(self) -> float:
        return self.raster_size_y * abs(self.pixel_size_y)

    @property
    def shape(self) -> Tuple[int, int]:
        """(rows, columns), the numpy shape of one band."""
        return (self.raster_size_y, self.raster_size_x)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(min_x, min_y, max_x, max_y) in world coordinates."""
        return (
            self.origin_x,
            self.origin_y - self.extent_y,
            self.origin_x + self.extent_x,
            self.origin_y,
        )

    @property
    def transform(self) -> Affine:
        return Affine(self.pixel_size_x, 0.0, self.origin_x, 0.0, self.pixel_size_y, self.origin_y)

    def geo_transform(self) -> Tuple[float, float, float, float, float, float]:
        """GDAL-ordered geo-transform coefficients."""
        return (self.origin_x, self.pixel_size_x, 0.0, self.origin_y, 0.0, self.pixel_size_y)

    def pixel_to_world(self, col: float, row: float) -> Tuple[float, float]:
        """World coordinates of the centre of cell (col, row)."""
        return (
            self.origin_x + (col + 0.5) * self.pixel_size_x,
            self.origin_y + (row + 0.5) * self.pixel_size_y,
        )

    def with_crs(self, crs: Optional[CRS]) -> "RasterMetadata":
        return RasterMetadata(
            self.origin_x, self.origin_y,
            self.pixel_size_x, self.pixel_size_y,
            self.raster_size_x, self.raster_size_y,
            crs,
        )

    @classmethod
    def from_transform(cls, transform: Affine, width: int, height: int,
                       crs: Optional[CRS] = None) -> "RasterMetadata":
        """
        Build metadata from an affine transform.

        Raises:
            ValueError: If the transform is rotated or sheared
        """
        if transform.b != 0 or transform.d != 0:
            raise ValueError("Rotated or sheared rasters are not supported.")
        return cls(
            origin_x=float(transform.c),
            origin_y=float(transform.f),
            pixel_size_x=float(transform.a),
            pixel_size_y=float(transform.e),
            raster_size_x=int(width),
            raster_size_y=int(height),
            crs=crs,
        )

    @classmethod
    def from_dataset(cls, dataset) -> "RasterMetadata":
        """Build metadata from an open rasterio dataset."""
        return cls.from_transform(dataset.transform, dataset.width, dataset.height, dataset.crs)

    def __str__(self) -> str:
        return (
            f"origin=({self.origin_x:.3f}, {self.origin_y:.3f}) "
            f"pixel=({self.pixel_size_x}, {self.pixel_size_y}) "
            f"size={self.raster_size_x}x{self.raster_size_y} "
            f"crs={self.crs.to_string() if self.crs else None}"
        )
