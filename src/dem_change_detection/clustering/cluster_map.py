"""
Cluster map

Partition of integer grid points into disjoint, indexed clusters. Each
cluster keeps its member points with their elevation in insertion order,
and the map keeps the inverse point -> cluster lookup so membership tests
are O(1).
"""

from __future__ import annotations

import copy
from typing import Dict, Iterator, List, NamedTuple, Optional, Set, Tuple

import numpy as np

# Cluster indexes are 32-bit unsigned in the label rasters they are written to
MAX_CLUSTER_INDEX = 2 ** 32 - 1

_NEIGHBOR_OFFSETS = tuple(
    (i, j) for i in (-1, 0, 1) for j in (-1, 0, 1) if (i, j) != (0, 0)
)


class ClusterPoint(NamedTuple):
    """Grid point (x = column, y = row) with elevation z."""

    x: int
    y: int
    z: float = 0.0


class ClusterMap:
    """
    Indexed, disjoint clusters of grid points.

    Invariants:
    - a grid point belongs to at most one cluster
    - every cluster has at least one point; removing the last point
      removes the cluster
    - indexes are assigned increasingly from 0 and never reused

    Args:
        size_x: Optional number of columns of the grid the map belongs to
        size_y: Optional number of rows of the grid the map belongs to

    Example:
        clusters = ClusterMap()
        a = clusters.create_cluster(3, 4, 12.5)
        clusters.add_point(a, 4, 4, 12.1)
        clusters.center_2d(a)  # (3.5, 4.0)
    """

    def __init__(self, size_x: Optional[int] = None, size_y: Optional[int] = None):
        self.size_x = size_x
        self.size_y = size_y
        self._clusters: Dict[int, Dict[Tuple[int, int], ClusterPoint]] = {}
        self._point_index: Dict[Tuple[int, int], int] = {}
        self._seed_points: Dict[int, ClusterPoint] = {}
        self._next_index = 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._clusters)

    def __contains__(self, point: Tuple[int, int]) -> bool:
        return (int(point[0]), int(point[1])) in self._point_index

    def __iter__(self) -> Iterator[int]:
        return iter(self.cluster_indexes())

    def cluster_indexes(self) -> List[int]:
        """Indexes of the existing clusters in ascending order."""
        return sorted(self._clusters)

    def cluster_index(self, x: int, y: int) -> int:
        """
        Index of the cluster owning (x, y).

        Raises:
            KeyError: If the point belongs to no cluster
        """
        try:
            return self._point_index[(x, y)]
        except KeyError:
            raise KeyError(f"Point ({x}, {y}) belongs to no cluster.") from None

    def get(self, x: int, y: int, default: Optional[int] = None) -> Optional[int]:
        """Index of the cluster owning (x, y), or `default`."""
        return self._point_index.get((x, y), default)

    def cluster_size(self, index: int) -> int:
        return len(self._members(index))

    def points(self, index: int) -> List[ClusterPoint]:
        """Member points of a cluster in their current order."""
        return list(self._members(index).values())

    def seed_point(self, index: int) -> ClusterPoint:
        self._members(index)
        return self._seed_points[index]

    def neighbors(self, index: int) -> Set[Tuple[int, int]]:
        """
        Grid points 8-adjacent to the cluster but not part of it.

        The returned points may be free or owned by another cluster.
        """
        members = self._members(index)
        result: Set[Tuple[int, int]] = set()
        for (x, y) in members:
            for i, j in _NEIGHBOR_OFFSETS:
                point = (x + i, y + j)
                if point not in members:
                    result.add(point)
        return result

    def center_2d(self, index: int) -> Tuple[float, float]:
        """Mean (x, y) of the member points."""
        members = self._members(index)
        n = len(members)
        sum_x = sum(p.x for p in members.values())
        sum_y = sum(p.y for p in members.values())
        return (sum_x / n, sum_y / n)

    def center_3d(self, index: int) -> Tuple[float, float, float]:
        """Mean (x, y, z) of the member points."""
        members = self._members(index)
        n = len(members)
        x, y = self.center_2d(index)
        return (x, y, sum(p.z for p in members.values()) / n)

    def highest_point(self, index: int) -> ClusterPoint:
        """Member with the largest elevation, the first one on ties."""
        best = None
        for point in self._members(index).values():
            if best is None or point.z > best.z:
                best = point
        return best

    def lowest_point(self, index: int) -> ClusterPoint:
        """Member with the smallest elevation, the first one on ties."""
        best = None
        for point in self._members(index).values():
            if best is None or point.z < best.z:
                best = point
        return best

    def bounding_box(self, index: int) -> List[ClusterPoint]:
        """
        Corners of the axis-aligned bounding rectangle of a cluster.

        Returns:
            [(min_x, min_y), (min_x, max_y), (max_x, max_y), (max_x, min_y)]
        """
        members = self._members(index)
        xs = [p[0] for p in members]
        ys = [p[1] for p in members]
        min_x, max_x, min_y, max_y = min(xs), max(xs), min(ys), max(ys)
        return [
            ClusterPoint(min_x, min_y),
            ClusterPoint(min_x, max_y),
            ClusterPoint(max_x, max_y),
            ClusterPoint(max_x, min_y),
        ]

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def create_cluster(self, x: int, y: int, z: float = 0.0) -> int:
        """
        Create a singleton cluster and return its index.

        Raises:
            ValueError: If the point already belongs to a cluster
            OverflowError: If the index space is exhausted
        """
        key = (int(x), int(y))
        if key in self._point_index:
            raise ValueError(
                f"Point {key} already belongs to cluster {self._point_index[key]}."
            )
        if self._next_index > MAX_CLUSTER_INDEX:
            raise OverflowError("No more cluster indexes are available.")

        index = self._next_index
        self._next_index += 1
        point = ClusterPoint(key[0], key[1], float(z))
        self._clusters[index] = {key: point}
        self._seed_points[index] = point
        self._point_index[key] = index
        return index

    def add_point(self, index: int, x: int, y: int, z: float = 0.0) -> None:
        """
        Add a point to an existing cluster.

        Raises:
            IndexError: If the cluster does not exist or already has the point
            ValueError: If the point belongs to another cluster
        """
        members = self._members(index)
        key = (int(x), int(y))
        if key in members:
            raise IndexError(f"Point {key} is already in cluster {index}.")
        owner = self._point_index.get(key)
        if owner is not None:
            raise ValueError(f"Point {key} already belongs to cluster {owner}.")
        members[key] = ClusterPoint(key[0], key[1], float(z))
        self._point_index[key] = index

    def remove_point(self, index: int, x: int, y: int) -> None:
        """
        Remove a point from a cluster; an emptied cluster is removed.

        Raises:
            IndexError: If the cluster does not exist or has no such point
        """
        members = self._members(index)
        key = (int(x), int(y))
        if key not in members:
            raise IndexError(f"Point {key} is not in cluster {index}.")
        del members[key]
        del self._point_index[key]
        if not members:
            del self._clusters[index]
            del self._seed_points[index]

    def remove_cluster(self, index: int) -> None:
        """Remove a cluster with all its points."""
        members = self._members(index)
        for key in members:
            del self._point_index[key]
        del self._clusters[index]
        del self._seed_points[index]

    def merge_clusters(self, a: int, b: int) -> int:
        """
        Merge two clusters, folding the smaller into the larger.

        On equal sizes `a` survives. Merging a cluster with itself is a
        no-op.

        Returns:
            Index of the surviving cluster

        Raises:
            IndexError: If either cluster does not exist
        """
        members_a = self._members(a)
        members_b = self._members(b)
        if a == b:
            return a

        if len(members_b) > len(members_a):
            a, b = b, a
            members_a, members_b = members_b, members_a

        for key, point in members_b.items():
            members_a[key] = point
            self._point_index[key] = a
        del self._clusters[b]
        del self._seed_points[b]
        return a

    def remove_small_clusters(self, threshold: int) -> int:
        """
        Remove every cluster with fewer than `threshold` points.

        Returns:
            Number of removed clusters
        """
        small = [index for index, members in self._clusters.items() if len(members) < threshold]
        for index in small:
            self.remove_cluster(index)
        return len(small)

    def shuffle(self, seed: Optional[int] = None) -> None:
        """Randomize the point order of every cluster in place."""
        rng = np.random.default_rng(seed)
        for index in self.cluster_indexes():
            members = self._clusters[index]
            keys = list(members)
            order = rng.permutation(len(keys))
            self._clusters[index] = {keys[i]: members[keys[i]] for i in order}

    def copy(self) -> "ClusterMap":
        return copy.deepcopy(self)

    # ------------------------------------------------------------------

    def _members(self, index: int) -> Dict[Tuple[int, int], ClusterPoint]:
        try:
            return self._clusters[index]
        except KeyError:
            raise IndexError(f"Cluster {index} does not exist.") from None

    def __repr__(self) -> str:
        return f"ClusterMap({len(self._clusters)} clusters, {len(self._point_index)} points)"
