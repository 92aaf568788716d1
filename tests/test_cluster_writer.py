"""
Unit tests for burning cluster maps and pairings into label rasters.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from rasterio.crs import CRS

from dem_change_detection.clustering import (
    LABEL_NODATA,
    LONELY_A_LABEL,
    LONELY_B_LABEL,
    ClusterMap,
    PairingResult,
    cluster_labels,
    pair_labels,
    read_cluster_map,
    write_cluster_map,
    write_cluster_pairs,
)
from dem_change_detection.raster import MemoryRaster, RasterMetadata


@pytest.fixture
def metadata():
    return RasterMetadata(1000.0, 2000.0, 1.0, -1.0, 10, 8, CRS.from_epsg(28992))


@pytest.fixture
def clusters():
    cluster_map = ClusterMap(10, 8)
    first = cluster_map.create_cluster(0, 0)
    cluster_map.add_point(first, 1, 0)
    cluster_map.add_point(first, 0, 1)
    second = cluster_map.create_cluster(5, 5)
    cluster_map.add_point(second, 6, 5)
    cluster_map.create_cluster(9, 7)
    return cluster_map


def partition(cluster_map):
    return {frozenset((p.x, p.y) for p in cluster_map.points(i)) for i in cluster_map}


class TestClusterLabels:
    """Test suite for cluster_labels."""

    def test_labels_are_permutation(self, clusters):
        labels = cluster_labels(clusters, (8, 10))

        assert labels.dtype == np.int32
        assert set(np.unique(labels).tolist()) == {LABEL_NODATA, 0, 1, 2}
        assert labels[0, 0] == labels[0, 1] == labels[1, 0]
        assert labels[5, 5] == labels[5, 6]

    def test_deterministic_with_seed(self, clusters):
        first = cluster_labels(clusters, (8, 10), seed=3)
        second = cluster_labels(clusters, (8, 10), seed=3)

        np.testing.assert_array_equal(first, second)

    def test_point_outside_grid(self):
        cluster_map = ClusterMap()
        cluster_map.create_cluster(12, 0)

        with pytest.raises(ValueError):
            cluster_labels(cluster_map, (8, 10))


class TestRoundTrip:
    """Writing and reading back a cluster map keeps the partition."""

    def test_memory(self, clusters, metadata):
        target = write_cluster_map(clusters, None, metadata)

        restored = read_cluster_map(target)

        assert partition(restored) == partition(clusters)
        assert target.nodata(1) == LABEL_NODATA

    def test_file(self, clusters, metadata, tmp_path):
        path = tmp_path / "clusters.tif"

        write_cluster_map(clusters, path, metadata)
        restored = read_cluster_map(path)

        assert path.exists()
        assert partition(restored) == partition(clusters)

    def test_elevation(self, clusters, metadata):
        heights = np.arange(80, dtype=np.float32).reshape(8, 10)
        target = write_cluster_map(clusters, None, metadata)

        restored = read_cluster_map(target, elevation=MemoryRaster(heights, metadata))

        for index in restored:
            for point in restored.points(index):
                assert point.z == heights[point.y, point.x]

    def test_negative_labels_are_ignored(self, metadata):
        labels = np.full((8, 10), LABEL_NODATA, dtype=np.int32)
        labels[0, 0] = LONELY_A_LABEL
        labels[1, 1] = 4

        restored = read_cluster_map(MemoryRaster(labels, metadata, nodata=LABEL_NODATA))

        assert len(restored) == 1
        assert (1, 1) in restored

    def test_shape_mismatch(self, clusters):
        small = RasterMetadata(0.0, 0.0, 1.0, -1.0, 4, 4, CRS.from_epsg(28992))
        with pytest.raises(ValueError):
            write_cluster_map(clusters, None, small)


class TestPairLabels:
    """Test suite for pair labels."""

    def test_pairs_share_labels(self, clusters):
        map_b = ClusterMap(10, 8)
        partner = map_b.create_cluster(3, 3)
        lonely = map_b.create_cluster(7, 1)
        pairing = PairingResult({(0, partner): 2.0}, lonely_a=[1, 2], lonely_b=[lonely])

        labels = pair_labels(pairing, clusters, map_b, (8, 10))

        assert labels[0, 0] == labels[3, 3] == 0
        assert labels[5, 5] == LONELY_A_LABEL
        assert labels[7, 9] == LONELY_A_LABEL
        assert labels[1, 7] == LONELY_B_LABEL
        assert labels[4, 4] == LABEL_NODATA

    def test_write_pairs(self, clusters, metadata, tmp_path):
        map_b = clusters.copy()
        pairing = PairingResult({(0, 0): 0.0, (1, 1): 0.0, (2, 2): 0.0}, lonely_a=[], lonely_b=[])
        path = tmp_path / "pairs.tif"

        write_cluster_pairs(pairing, clusters, map_b, path, metadata)

        assert partition(read_cluster_map(path)) == partition(clusters)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
