"""
Cluster rasters

Burns cluster maps and cluster pairings into integer label rasters and
rebuilds cluster maps from such rasters.

Labels are a random permutation of 0..n-1 drawn with a fixed seed, so
neighbouring clusters get visually distinct labels while the output stays
reproducible.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional, Union

import numpy as np

from ..raster.io import RasterSource, SourceLike, create_raster, open_source
from ..raster.metadata import RasterMetadata
from ..utils.logging import setup_logger
from .cluster_map import ClusterMap
from .distance import PairingResult

logger = setup_logger(__name__)

LABEL_NODATA = -1
LONELY_A_LABEL = -2
LONELY_B_LABEL = -3


def _burn(labels: np.ndarray, cluster_map: ClusterMap, index: int, label: int) -> None:
    points = cluster_map.points(index)
    xs = np.fromiter((p.x for p in points), dtype=np.int64, count=len(points))
    ys = np.fromiter((p.y for p in points), dtype=np.int64, count=len(points))
    rows, cols = labels.shape
    if xs.min() < 0 or ys.min() < 0 or xs.max() >= cols or ys.max() >= rows:
        raise ValueError(f"Cluster {index} has points outside the {cols}x{rows} grid.")
    labels[ys, xs] = label


def cluster_labels(cluster_map: ClusterMap, shape, seed: Optional[int] = 42) -> np.ndarray:
    """
    Label array of a cluster map.

    Args:
        cluster_map: Clusters to burn
        shape: (rows, cols) of the output
        seed: Seed of the label permutation

    Returns:
        int32 array, LABEL_NODATA outside clusters
    """
    labels = np.full(shape, LABEL_NODATA, dtype=np.int32)
    indexes = cluster_map.cluster_indexes()
    ids = np.random.default_rng(seed).permutation(len(indexes))
    for label, index in zip(ids, indexes):
        _burn(labels, cluster_map, index, int(label))
    return labels


def pair_labels(pairing: PairingResult, cluster_map_a: ClusterMap, cluster_map_b: ClusterMap,
                shape, seed: Optional[int] = 0) -> np.ndarray:
    """
    Label array of a cluster pairing.

    Both clusters of a pair share one label; lonely A clusters are labelled
    LONELY_A_LABEL and lonely B clusters LONELY_B_LABEL. B clusters are
    burnt after A clusters and win where the two overlap.
    """
    labels = np.full(shape, LABEL_NODATA, dtype=np.int32)
    ids = np.random.default_rng(seed).permutation(len(pairing.closest))
    for label, (a, b) in zip(ids, sorted(pairing.closest)):
        _burn(labels, cluster_map_a, a, int(label))
        _burn(labels, cluster_map_b, b, int(label))
    for a in pairing.lonely_a:
        _burn(labels, cluster_map_a, a, LONELY_A_LABEL)
    for b in pairing.lonely_b:
        _burn(labels, cluster_map_b, b, LONELY_B_LABEL)
    return labels


def _write_labels(labels: np.ndarray, path: Optional[Union[str, os.PathLike]],
                  metadata: RasterMetadata, driver: str,
                  options: Optional[Dict[str, Any]]) -> RasterSource:
    if metadata.shape != labels.shape:
        raise ValueError(f"Label shape {labels.shape} does not match the grid {metadata.shape}.")
    target = create_raster(path, metadata, np.int32, LABEL_NODATA, driver=driver, options=options)
    try:
        target.write_rows(1, 0, labels)
    except Exception:
        target.close()
        raise
    if path is not None:
        target.close()
        logger.info(f"Wrote {int(labels.max(initial=-1)) + 1} cluster labels to {path}")
    return target


def write_cluster_map(
    cluster_map: ClusterMap,
    path: Optional[Union[str, os.PathLike]],
    metadata: RasterMetadata,
    seed: Optional[int] = 42,
    *,
    driver: str = "GTiff",
    options: Optional[Dict[str, Any]] = None,
) -> RasterSource:
    """
    Write a cluster map as an int32 label raster (nodata -1).

    Returns:
        The written raster; for a file target it is already closed, an
        in-memory target (path None) can be read directly
    """
    labels = cluster_labels(cluster_map, metadata.shape, seed)
    return _write_labels(labels, path, metadata, driver, options)


def write_cluster_pairs(
    pairing: PairingResult,
    cluster_map_a: ClusterMap,
    cluster_map_b: ClusterMap,
    path: Optional[Union[str, os.PathLike]],
    metadata: RasterMetadata,
    seed: Optional[int] = 0,
    *,
    driver: str = "GTiff",
    options: Optional[Dict[str, Any]] = None,
) -> RasterSource:
    """Write a cluster pairing as an int32 label raster (see pair_labels)."""
    labels = pair_labels(pairing, cluster_map_a, cluster_map_b, metadata.shape, seed)
    return _write_labels(labels, path, metadata, driver, options)


def read_cluster_map(source: SourceLike, elevation: Optional[SourceLike] = None) -> ClusterMap:
    """
    Rebuild a cluster map from a label raster.

    Every distinct non-negative label becomes one cluster; clusters are
    created in ascending label order, points in row-major order. Negative
    labels and nodata cells belong to no cluster.

    Args:
        source: Label raster
        elevation: Optional raster on the same grid giving the point z values
    """
    raster, owned = open_source(source)
    try:
        labels = raster.read(1)
        nodata = raster.nodata(1)
        size_y, size_x = labels.shape
    finally:
        if owned:
            raster.close()

    heights = None
    if elevation is not None:
        elevation_raster, elevation_owned = open_source(elevation)
        try:
            heights = elevation_raster.read(1)
        finally:
            if elevation_owned:
                elevation_raster.close()
        if heights.shape != labels.shape:
            raise ValueError(f"Elevation shape {heights.shape} does not match labels {labels.shape}.")

    valid = labels >= 0
    if nodata is not None:
        valid &= labels != nodata
    ys, xs = np.nonzero(valid)
    values = labels[ys, xs]
    order = np.argsort(values, kind="stable")
    ys, xs, values = ys[order], xs[order], values[order]

    cluster_map = ClusterMap(size_x, size_y)
    current_label = None
    current_index = None
    for x, y, label in zip(xs.tolist(), ys.tolist(), values.tolist()):
        z = float(heights[y, x]) if heights is not None else 0.0
        if label != current_label:
            current_label = label
            current_index = cluster_map.create_cluster(x, y, z)
        else:
            cluster_map.add_point(current_index, x, y, z)
    logger.debug(f"Read {len(cluster_map)} clusters from {raster.name}")
    return cluster_map
