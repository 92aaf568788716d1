"""
Unit tests for seed point collection, tree crown segmentation and the
removal of deformed clusters.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from rasterio.crs import CRS

from dem_change_detection.clustering import (
    ClusterMap,
    ClusterPoint,
    SeedPointCollection,
    TreeCrownSegmentation,
    remove_deformed_clusters,
)
from dem_change_detection.raster import MemoryRaster, RasterMetadata

N = -9999.0


def make_raster(data, nodata=N):
    data = np.asarray(data, dtype=np.float32)
    rows, cols = data.shape
    metadata = RasterMetadata(0.0, 0.0, 1.0, -1.0, cols, rows, CRS.from_epsg(28992))
    return MemoryRaster(data, metadata, nodata=nodata)


def cones(shape, peaks, top=10.0, slope=0.4):
    """Canopy of cone shaped crowns: the highest cone wins at every cell."""
    rows, cols = np.indices(shape)
    heights = np.full(shape, -np.inf)
    for x, y in peaks:
        heights = np.maximum(heights, top - slope * np.hypot(cols - x, rows - y))
    return heights.astype(np.float32)


class TestSeedPointCollection:
    """Test suite for SeedPointCollection."""

    def test_peaks_are_seeds(self):
        """Only the cone tops are local maxima."""
        raster = make_raster(cones((5, 12), [(2, 2), (9, 2)]))

        collection = SeedPointCollection(raster, window_range=2)
        collection.execute()

        assert [(p.x, p.y) for p in collection.seed_points] == [(2, 2), (9, 2)]
        assert collection.seed_points[0].z == pytest.approx(10.0)

    def test_nodata_cells_are_skipped(self):
        data = np.full((3, 3), N, dtype=np.float32)
        data[1, 1] = 4.0

        collection = SeedPointCollection(make_raster(data), window_range=1)
        collection.execute()

        assert [(p.x, p.y) for p in collection.seed_points] == [(1, 1)]

    def test_plateau_cells_are_all_seeds(self):
        """Equal neighbours do not suppress a seed point."""
        collection = SeedPointCollection(make_raster(np.ones((2, 2))), window_range=1)
        collection.execute()

        assert len(collection.seed_points) == 4


class TestTreeCrownSegmentation:
    """Test suite for TreeCrownSegmentation."""

    def test_two_cones_two_clusters(self):
        raster = make_raster(cones((5, 12), [(2, 2), (9, 2)]))
        collection = SeedPointCollection(raster, window_range=2)
        collection.execute()

        segmentation = TreeCrownSegmentation(raster, collection.seed_points)
        segmentation.execute()
        clusters = segmentation.cluster_map()

        assert len(clusters) == 2
        left = clusters.cluster_index(2, 2)
        right = clusters.cluster_index(9, 2)
        assert left != right
        assert clusters.cluster_index(1, 2) == left
        assert clusters.cluster_index(3, 2) == left
        assert clusters.cluster_index(8, 2) == right
        assert clusters.cluster_index(10, 2) == right
        assert sum(clusters.cluster_size(i) for i in clusters) == 60
        assert clusters.seed_point(left).z == pytest.approx(10.0)

    def test_steep_crown_stays_single_point(self):
        """Growing stops after a pass that admits nothing."""
        raster = make_raster(cones((5, 5), [(2, 2)], slope=3.0))

        segmentation = TreeCrownSegmentation(raster, [ClusterPoint(2, 2, 0.0)])
        segmentation.execute()

        assert segmentation.cluster_map().cluster_size(0) == 1

    def test_nodata_cells_not_admitted(self):
        data = np.full((3, 3), 5.0, dtype=np.float32)
        data[0, 0] = N

        segmentation = TreeCrownSegmentation(make_raster(data), [ClusterPoint(1, 1, 0.0)])
        segmentation.execute()
        clusters = segmentation.cluster_map()

        assert clusters.cluster_size(0) == 8
        assert (0, 0) not in clusters

    def test_invalid_increment(self):
        with pytest.raises(ValueError):
            TreeCrownSegmentation(make_raster(np.ones((2, 2))), [], vertical_increment=0)

    def test_cluster_map_before_execute(self):
        with pytest.raises(RuntimeError):
            TreeCrownSegmentation(make_raster(np.ones((2, 2))), []).cluster_map()


class TestRemoveDeformedClusters:
    """Test suite for remove_deformed_clusters."""

    def test_shapes(self):
        clusters = ClusterMap()
        line = clusters.create_cluster(0, 0)
        for x in range(1, 5):
            clusters.add_point(line, x, 0)

        block = clusters.create_cluster(10, 10)
        for y in range(10, 13):
            for x in range(10, 13):
                if (x, y) != (10, 10):
                    clusters.add_point(block, x, y)

        sparse = clusters.create_cluster(20, 20)
        for x, y in [(24, 20), (20, 24), (24, 24)]:
            clusters.add_point(sparse, x, y)

        single = clusters.create_cluster(30, 30)

        removed = remove_deformed_clusters(clusters)

        assert removed == 2
        assert clusters.cluster_indexes() == [block, single]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
