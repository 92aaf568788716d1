"""
Export utilities for change detection results.

Provides functions to export results to:
- Raster formats (GeoTIFF) for grid-based outputs
- GeoJSON point layers (seed points, cluster centres)

These outputs are compatible with QGIS and similar GIS software.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Optional, Union

import numpy as np
from shapely.geometry import Point, mapping

from .logging import setup_logger

if TYPE_CHECKING:
    from ..raster.metadata import RasterMetadata

logger = setup_logger(__name__)


def export_raster_to_geotiff(
    array: np.ndarray,
    output_path: Union[str, Path],
    metadata: "RasterMetadata",
    *,
    crs: Optional[str] = None,
    nodata: float = -9999.0,
) -> str:
    """
    Export a 2D array on the grid described by `metadata` to a GeoTIFF file.

    NaN cells are written as `nodata`.

    Args:
        array: (rows, cols) array
        output_path: Path for output GeoTIFF file
        metadata: Grid georeferencing; its shape must match the array
        crs: Coordinate reference system overriding metadata.crs
        nodata: NoData value for missing cells

    Returns:
        Path to created file
    """
    import rasterio

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    raster = np.asarray(array)
    if raster.shape != metadata.shape:
        raise ValueError(f"array shape {raster.shape} does not match the grid {metadata.shape}")
    if np.issubdtype(raster.dtype, np.floating):
        raster = np.where(np.isnan(raster), nodata, raster).astype(np.float32)

    height, width = raster.shape
    with rasterio.open(
        str(output_path),
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=1,
        dtype=raster.dtype,
        crs=crs if crs is not None else metadata.crs,
        transform=metadata.transform,
        nodata=nodata,
        compress="lzw",
    ) as dst:
        dst.write(raster, 1)

    logger.info(f"Exported raster ({width}x{height}) to {output_path}")
    return str(output_path)


def export_points_to_geojson(
    points: np.ndarray,
    output_path: Union[str, Path],
    *,
    properties: Optional[Dict[str, np.ndarray]] = None,
    crs: Optional[str] = None,
) -> str:
    """
    Export points to a GeoJSON FeatureCollection.

    Args:
        points: (N, 2) or (N, 3) array of world coordinates
        output_path: Path for output file
        properties: Optional per-point attribute arrays of length N
        crs: Optional CRS string (e.g. "EPSG:28992"), stored as a named CRS

    Returns:
        Path to created file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    points = np.asarray(points, dtype=np.float64)
    if points.size == 0:
        points = points.reshape(0, 2)
    if points.ndim != 2 or points.shape[1] not in (2, 3):
        raise ValueError(f"points must be (N, 2) or (N, 3), got {points.shape}")
    properties = properties or {}
    for name, values in properties.items():
        if len(values) != len(points):
            raise ValueError(f"property '{name}' has {len(values)} values for {len(points)} points")

    features = []
    for i, coords in enumerate(points):
        features.append({
            "type": "Feature",
            "geometry": mapping(Point(*coords)),
            "properties": {name: np.asarray(values)[i].item() for name, values in properties.items()},
        })

    collection = {"type": "FeatureCollection", "features": features}
    if crs:
        collection["crs"] = {"type": "name", "properties": {"name": crs}}

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(collection, f)

    logger.info(f"Exported {len(features):,} points to {output_path}")
    return str(output_path)
