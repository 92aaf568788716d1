"""
Distance based cluster pairing

Matches the clusters of two epochs (cluster maps A and B) one-to-one by
repeated nearest-neighbour search with conflict resolution:

1. every unpaired A cluster proposes to its nearest unclaimed B cluster
   within the maximum distance
2. a B cluster receiving several proposals keeps the closest one (equal
   distances: the lowest A index); the others retry in the next pass
3. passes repeat until one completes without conflict

The distance between two clusters is supplied by the strategy:
- CentroidDistance: distance of the 2D cluster centres
- HausdorffDistance: symmetric Hausdorff distance of the member points,
  pruned by the centroid distance
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np
from scipy.spatial.distance import directed_hausdorff

from ..raster.operation import Operation, ProgressCallback
from ..utils.logging import setup_logger
from .cluster_map import ClusterMap

logger = setup_logger(__name__)

PairKey = Tuple[int, int]
DistanceFunction = Callable[[int, int], Optional[float]]


@dataclass(frozen=True)
class PairingResult:
    """
    Outcome of a cluster pairing.

    Attributes:
        closest: (A index, B index) -> distance; each index appears once at most
        lonely_a: Ascending A indexes without pair
        lonely_b: Ascending B indexes without pair
        passes: Number of matching passes performed
    """

    closest: Dict[PairKey, float]
    lonely_a: List[int]
    lonely_b: List[int]
    passes: int = field(default=0, compare=False)

    @property
    def pair_count(self) -> int:
        return len(self.closest)

    def partner_of_a(self, index_a: int) -> Optional[int]:
        for a, b in self.closest:
            if a == index_a:
                return b
        return None

    def partner_of_b(self, index_b: int) -> Optional[int]:
        for a, b in self.closest:
            if b == index_b:
                return a
        return None


def pair_clusters(
    indexes_a: Iterable[int],
    indexes_b: Iterable[int],
    distance: DistanceFunction,
    maximum_distance: float,
    on_pass: Optional[Callable[[int, int], None]] = None,
) -> PairingResult:
    """
    Conflict-free nearest-neighbour pairing of two index sets.

    Args:
        indexes_a: Cluster indexes of epoch A
        indexes_b: Cluster indexes of epoch B
        distance: distance(a, b) -> float, or None if (a, b) is not a candidate
        maximum_distance: Candidates farther than this are ignored
        on_pass: Optional callback (pass number, pairs so far) after each pass

    Returns:
        PairingResult
    """
    indexes_a = sorted(indexes_a)
    indexes_b = sorted(indexes_b)
    closest: Dict[PairKey, float] = {}
    paired_a = set()
    claimed_b = set()

    passes = 0
    has_conflict = True
    while has_conflict:
        has_conflict = False
        passes += 1

        # b -> [(a, distance)] candidates of this pass
        candidates: Dict[int, List[Tuple[int, float]]] = {}
        for a in indexes_a:
            if a in paired_a:
                continue
            best_b = None
            best_distance = math.inf
            for b in indexes_b:
                if b in claimed_b:
                    continue
                d = distance(a, b)
                if d is not None and d < best_distance:
                    best_b = b
                    best_distance = d
            if best_b is not None and best_distance <= maximum_distance:
                candidates.setdefault(best_b, []).append((a, best_distance))

        for b, proposals in candidates.items():
            if len(proposals) > 1:
                has_conflict = True
            # Candidates are in ascending A order, min() keeps the first of equal distances
            a, d = min(proposals, key=lambda proposal: proposal[1])
            closest[(a, b)] = d
            paired_a.add(a)
            claimed_b.add(b)

        if on_pass is not None:
            on_pass(passes, len(closest))

    lonely_a = [a for a in indexes_a if a not in paired_a]
    lonely_b = [b for b in indexes_b if b not in claimed_b]
    return PairingResult(closest=closest, lonely_a=lonely_a, lonely_b=lonely_b, passes=passes)


class DistanceCalculation(Operation):
    """
    Base class of the cluster pairing strategies.

    The cluster maps are copied, so the caller's maps are never modified.
    Subclasses implement distance(); _prepare_distances() may precompute
    state before pairing.

    Args:
        cluster_map_a: Clusters of epoch A
        cluster_map_b: Clusters of epoch B
        maximum_distance: Pairing cutoff (grid units)
        progress: Optional progress callback
    """

    default_maximum_distance = 10.0
    method_name = "distance"

    def __init__(
        self,
        cluster_map_a: ClusterMap,
        cluster_map_b: ClusterMap,
        maximum_distance: Optional[float] = None,
        progress: Optional[ProgressCallback] = None,
    ):
        super().__init__(progress)
        self.cluster_map_a = cluster_map_a.copy()
        self.cluster_map_b = cluster_map_b.copy()
        self.maximum_distance = (
            maximum_distance if maximum_distance is not None else self.default_maximum_distance
        )
        self._result: Optional[PairingResult] = None

    def distance(self, index_a: int, index_b: int) -> Optional[float]:
        raise NotImplementedError

    def _on_prepare(self) -> None:
        if self.maximum_distance < 0:
            raise ValueError(f"Maximum distance must be non-negative, got {self.maximum_distance}.")

    def _prepare_distances(self) -> None:
        pass

    def _on_execute(self) -> None:
        start_time = time.time()
        self._report(0.0, f"Performing {self.method_name} distance based cluster pairing.")
        self._prepare_distances()

        def on_pass(passes: int, pairs: int) -> None:
            logger.debug(f"Pairing pass {passes}: {pairs} pairs")
            # Cooperative cancellation between passes
            self._report(0.75, f"Pairing pass {passes} finished.")

        result = pair_clusters(
            self.cluster_map_a.cluster_indexes(),
            self.cluster_map_b.cluster_indexes(),
            self.distance,
            self.maximum_distance,
            on_pass=on_pass,
        )
        self._report(0.8, "Cluster map pairs calculated.")
        self._report(0.9, "Lonely A clusters calculated.")
        self._report(1.0, "Lonely B clusters calculated.")
        self._result = result

        if result.pair_count == 0:
            logger.warning(
                f"No cluster pairs within {self.maximum_distance} "
                f"({len(result.lonely_a)} A / {len(result.lonely_b)} B clusters)"
            )
        logger.info(
            f"{self.method_name.capitalize()} pairing: {result.pair_count} pairs, "
            f"{len(result.lonely_a)} lonely A, {len(result.lonely_b)} lonely B "
            f"in {result.passes} passes ({time.time() - start_time:.2f}s)"
        )

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def result(self) -> PairingResult:
        """
        Raises:
            RuntimeError: If the pairing was not executed
        """
        self._require_executed()
        return self._result

    def closest(self) -> Dict[PairKey, float]:
        return self.result().closest

    def lonely_a(self) -> List[int]:
        return self.result().lonely_a

    def lonely_b(self) -> List[int]:
        return self.result().lonely_b

    def closest_cluster(self, index_a: int) -> Optional[int]:
        """B cluster paired with A cluster `index_a`, None if lonely."""
        return self.result().partner_of_a(index_a)


class CentroidDistance(DistanceCalculation):
    """Pairing by the distance of the 2D cluster centres."""

    default_maximum_distance = 10.0
    method_name = "centroid"

    def _prepare_distances(self) -> None:
        self._centers_a = {i: self.cluster_map_a.center_2d(i) for i in self.cluster_map_a.cluster_indexes()}
        self._centers_b = {i: self.cluster_map_b.center_2d(i) for i in self.cluster_map_b.cluster_indexes()}

    def distance(self, index_a: int, index_b: int) -> Optional[float]:
        ax, ay = self._centers_a[index_a]
        bx, by = self._centers_b[index_b]
        return math.hypot(ax - bx, ay - by)


class HausdorffDistance(DistanceCalculation):
    """
    Pairing by the symmetric Hausdorff distance of the member points.

    Pairs whose centres are at least `maximum_distance` apart are not
    candidates. For the others both directed distances are computed with
    scipy's early-break algorithm, which needs randomly ordered points: the
    cluster maps are shuffled before the computation.

    Args:
        seed: Seed of the shuffle, for reproducible runs
    """

    default_maximum_distance = 16.0
    method_name = "hausdorff"

    def __init__(
        self,
        cluster_map_a: ClusterMap,
        cluster_map_b: ClusterMap,
        maximum_distance: Optional[float] = None,
        progress: Optional[ProgressCallback] = None,
        seed: Optional[int] = None,
    ):
        super().__init__(cluster_map_a, cluster_map_b, maximum_distance, progress)
        self.seed = seed
        self._distances_ab: Dict[PairKey, float] = {}
        self._distances_ba: Dict[PairKey, float] = {}

    def _prepare_distances(self) -> None:
        self.cluster_map_a.shuffle(self.seed)
        self.cluster_map_b.shuffle(None if self.seed is None else self.seed + 1)

        points_a = {i: self._coordinates(self.cluster_map_a, i) for i in self.cluster_map_a.cluster_indexes()}
        points_b = {i: self._coordinates(self.cluster_map_b, i) for i in self.cluster_map_b.cluster_indexes()}
        centers_a = {i: self.cluster_map_a.center_2d(i) for i in points_a}
        centers_b = {i: self.cluster_map_b.center_2d(i) for i in points_b}

        self._distances_ab = {}
        self._distances_ba = {}
        for n, (a, pa) in enumerate(points_a.items()):
            ax, ay = centers_a[a]
            for b, pb in points_b.items():
                bx, by = centers_b[b]
                if math.hypot(ax - bx, ay - by) >= self.maximum_distance:
                    continue
                # scipy shuffles the points again; seed=0 keeps that shuffle deterministic
                self._distances_ab[(a, b)] = directed_hausdorff(pa, pb, seed=0)[0]
                self._distances_ba[(a, b)] = directed_hausdorff(pb, pa, seed=0)[0]
            self._report(0.7 * (n + 1) / max(1, len(points_a)), "Hausdorff distances calculated.")
        logger.debug(f"Computed {len(self._distances_ab)} Hausdorff candidate distances")

    @staticmethod
    def _coordinates(cluster_map: ClusterMap, index: int) -> np.ndarray:
        return np.array([(p.x, p.y) for p in cluster_map.points(index)], dtype=float)

    def distance(self, index_a: int, index_b: int) -> Optional[float]:
        key = (index_a, index_b)
        if key not in self._distances_ab:
            return None
        return max(self._distances_ab[key], self._distances_ba[key])

    def distances(self) -> Dict[PairKey, float]:
        """Directed A -> B Hausdorff distances of every candidate pair."""
        self._require_executed()
        return dict(self._distances_ab)
