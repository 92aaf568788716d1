"""
Unit tests for ClusterMap.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from dem_change_detection.clustering import ClusterMap, ClusterPoint


def assert_invariants(clusters):
    """Every point is owned once, clusters are non-empty, lookups agree."""
    owned = {}
    for index in clusters.cluster_indexes():
        points = clusters.points(index)
        assert points, f"cluster {index} is empty"
        for p in points:
            key = (p.x, p.y)
            assert key not in owned
            owned[key] = index
            assert clusters.cluster_index(p.x, p.y) == index
    assert sum(clusters.cluster_size(i) for i in clusters.cluster_indexes()) == len(owned)


def square(clusters, x0, y0, size, z=1.0):
    index = clusters.create_cluster(x0, y0, z)
    for y in range(y0, y0 + size):
        for x in range(x0, x0 + size):
            if (x, y) != (x0, y0):
                clusters.add_point(index, x, y, z)
    return index


class TestClusterMapBasics:
    """Creation, lookup and geometry queries."""

    def test_create_and_add(self):
        clusters = ClusterMap()
        a = clusters.create_cluster(3, 4, 12.5)
        clusters.add_point(a, 4, 4, 12.1)

        assert a == 0
        assert len(clusters) == 1
        assert (4, 4) in clusters
        assert (5, 4) not in clusters
        assert clusters.cluster_size(a) == 2
        assert clusters.center_2d(a) == (3.5, 4.0)
        assert clusters.seed_point(a) == ClusterPoint(3, 4, 12.5)
        assert_invariants(clusters)

    def test_indexes_increase_and_are_not_reused(self):
        clusters = ClusterMap()
        a = clusters.create_cluster(0, 0)
        b = clusters.create_cluster(5, 5)
        clusters.remove_cluster(a)
        c = clusters.create_cluster(0, 0)

        assert (a, b, c) == (0, 1, 2)
        assert clusters.cluster_indexes() == [1, 2]
        assert list(clusters) == [1, 2]

    def test_lookup_errors(self):
        clusters = ClusterMap()
        a = clusters.create_cluster(0, 0)

        with pytest.raises(KeyError):
            clusters.cluster_index(1, 1)
        assert clusters.get(1, 1) is None
        assert clusters.get(0, 0) == a
        with pytest.raises(IndexError):
            clusters.points(99)
        with pytest.raises(IndexError):
            clusters.add_point(99, 1, 1)

    def test_ownership_errors(self):
        clusters = ClusterMap()
        a = clusters.create_cluster(0, 0)
        b = clusters.create_cluster(2, 2)

        with pytest.raises(ValueError):
            clusters.create_cluster(0, 0)
        with pytest.raises(IndexError):
            clusters.add_point(a, 0, 0)
        with pytest.raises(ValueError):
            clusters.add_point(a, 2, 2)
        with pytest.raises(IndexError):
            clusters.remove_point(b, 0, 0)
        assert_invariants(clusters)

    def test_center_and_extremes(self):
        clusters = ClusterMap()
        a = clusters.create_cluster(0, 0, 1.0)
        clusters.add_point(a, 2, 0, 5.0)
        clusters.add_point(a, 1, 3, 5.0)
        clusters.add_point(a, 1, 1, -2.0)

        assert clusters.center_2d(a) == (1.0, 1.0)
        assert clusters.center_3d(a) == pytest.approx((1.0, 1.0, 2.25))
        # First of equal heights wins
        assert clusters.highest_point(a) == ClusterPoint(2, 0, 5.0)
        assert clusters.lowest_point(a) == ClusterPoint(1, 1, -2.0)

    def test_points_hold_integer_grid_coordinates(self):
        clusters = ClusterMap()
        a = clusters.create_cluster(np.int64(3), 4.0, 1.5)
        clusters.add_point(a, np.int32(4), np.int16(4), 2.5)

        for point in clusters.points(a):
            assert type(point.x) is int
            assert type(point.y) is int
        assert clusters.seed_point(a) == ClusterPoint(3, 4, 1.5)

    def test_bounding_box(self):
        clusters = ClusterMap()
        a = clusters.create_cluster(1, 2)
        clusters.add_point(a, 4, 3)
        clusters.add_point(a, 2, 6)

        corners = [(p.x, p.y) for p in clusters.bounding_box(a)]

        assert corners == [(1, 2), (1, 6), (4, 6), (4, 2)]

    def test_neighbors(self):
        clusters = ClusterMap()
        a = clusters.create_cluster(0, 0)
        clusters.add_point(a, 1, 0)

        neighbors = clusters.neighbors(a)

        assert len(neighbors) == 10
        assert (0, 0) not in neighbors
        assert (2, 1) in neighbors
        assert (-1, -1) in neighbors


class TestClusterMapMutation:
    """Removal, merging and bulk operations."""

    def test_removing_last_point_removes_cluster(self):
        clusters = ClusterMap()
        a = clusters.create_cluster(0, 0)
        clusters.add_point(a, 1, 0)

        clusters.remove_point(a, 0, 0)
        assert clusters.cluster_size(a) == 1
        clusters.remove_point(a, 1, 0)

        assert len(clusters) == 0
        assert (1, 0) not in clusters
        with pytest.raises(IndexError):
            clusters.seed_point(a)

    def test_merge_keeps_one_index_and_sums_sizes(self):
        clusters = ClusterMap()
        small = square(clusters, 0, 0, 2)
        large = square(clusters, 5, 5, 3)

        survivor = clusters.merge_clusters(small, large)

        assert survivor == large
        assert clusters.cluster_indexes() == [large]
        assert clusters.cluster_size(large) == 13
        assert clusters.cluster_index(0, 0) == large
        assert_invariants(clusters)

    def test_merge_equal_sizes_keeps_first(self):
        clusters = ClusterMap()
        a = square(clusters, 0, 0, 2)
        b = square(clusters, 5, 5, 2)

        assert clusters.merge_clusters(b, a) == b
        assert clusters.merge_clusters(b, b) == b
        with pytest.raises(IndexError):
            clusters.merge_clusters(b, a)

    def test_merge_property_random(self):
        """Random merges always keep the invariants and the point count."""
        rng = np.random.default_rng(7)
        clusters = ClusterMap()
        for k in range(20):
            square(clusters, 4 * k, 0, int(rng.integers(1, 4)))
        total = sum(clusters.cluster_size(i) for i in clusters)

        while len(clusters) > 1:
            a, b = rng.choice(clusters.cluster_indexes(), size=2, replace=False)
            size = clusters.cluster_size(int(a)) + clusters.cluster_size(int(b))
            survivor = clusters.merge_clusters(int(a), int(b))
            assert survivor in (a, b)
            assert clusters.cluster_size(survivor) == size
            assert_invariants(clusters)

        assert sum(clusters.cluster_size(i) for i in clusters) == total

    def test_remove_small_clusters(self):
        clusters = ClusterMap()
        square(clusters, 0, 0, 1)
        keep = square(clusters, 5, 5, 4)
        square(clusters, 20, 20, 3)

        assert clusters.remove_small_clusters(10) == 2
        assert clusters.cluster_indexes() == [keep]
        assert_invariants(clusters)

    def test_shuffle_keeps_points(self):
        clusters = ClusterMap()
        a = square(clusters, 0, 0, 5)
        before = set(clusters.points(a))

        clusters.shuffle(seed=3)

        assert set(clusters.points(a)) == before
        assert_invariants(clusters)

    def test_copy_is_independent(self):
        clusters = ClusterMap(10, 10)
        a = square(clusters, 0, 0, 2)
        copy = clusters.copy()

        copy.remove_cluster(a)

        assert len(clusters) == 1
        assert len(copy) == 0
        assert copy.size_x == 10


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
