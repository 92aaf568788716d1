"""
Volume and height differences of paired clusters.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from ..clustering.cluster_map import ClusterMap
from ..clustering.distance import PairingResult
from ..raster.operation import Operation, ProgressCallback
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

PairKey = Tuple[int, int]


def cluster_volume(cluster_map: ClusterMap, index: int, cell_area: float) -> float:
    """Volume under a cluster: sum of the point heights times the cell area."""
    return sum(point.z for point in cluster_map.points(index)) * cell_area


class VolumeDifference(Operation):
    """
    Volume change of the paired clusters of two epochs.

    Attributes (after execute):
        full_volume_a: Summed |volume| of every A cluster, paired or lonely
        full_volume_b: Summed |volume| of every B cluster, paired or lonely
        lonely_volume_a: Volume per lonely A cluster
        lonely_volume_b: Volume per lonely B cluster
        differences: (a, b) -> volume(b) - volume(a) per pair

    Args:
        cluster_map_a: Clusters of epoch A (z = height above ground)
        cluster_map_b: Clusters of epoch B
        pairing: Pairing of the two maps
        cell_area: Ground area of one cell
        progress: Optional progress callback
    """

    def __init__(
        self,
        cluster_map_a: ClusterMap,
        cluster_map_b: ClusterMap,
        pairing: PairingResult,
        cell_area: float = 1.0,
        progress: Optional[ProgressCallback] = None,
    ):
        super().__init__(progress)
        self.cluster_map_a = cluster_map_a
        self.cluster_map_b = cluster_map_b
        self.pairing = pairing
        self.cell_area = cell_area
        self.full_volume_a = 0.0
        self.full_volume_b = 0.0
        self.lonely_volume_a: Dict[int, float] = {}
        self.lonely_volume_b: Dict[int, float] = {}
        self.differences: Dict[PairKey, float] = {}

    def _on_prepare(self) -> None:
        if self.cell_area <= 0:
            raise ValueError(f"Cell area must be positive, got {self.cell_area}.")

    def _on_execute(self) -> None:
        self.lonely_volume_a = {
            a: cluster_volume(self.cluster_map_a, a, self.cell_area) for a in self.pairing.lonely_a
        }
        self.lonely_volume_b = {
            b: cluster_volume(self.cluster_map_b, b, self.cell_area) for b in self.pairing.lonely_b
        }
        self.full_volume_a = sum(abs(v) for v in self.lonely_volume_a.values())
        self.full_volume_b = sum(abs(v) for v in self.lonely_volume_b.values())
        self._report(0.5, "Lonely cluster volumes calculated.")

        self.differences = {}
        for a, b in sorted(self.pairing.closest):
            volume_a = cluster_volume(self.cluster_map_a, a, self.cell_area)
            volume_b = cluster_volume(self.cluster_map_b, b, self.cell_area)
            self.full_volume_a += abs(volume_a)
            self.full_volume_b += abs(volume_b)
            self.differences[(a, b)] = volume_b - volume_a
        self._report(1.0, "Cluster pair volumes calculated.")

        logger.info(
            f"Volume A: {self.full_volume_a:.2f}, volume B: {self.full_volume_b:.2f}, "
            f"difference: {self.full_volume_b - self.full_volume_a:.2f}"
        )

    @property
    def total_difference(self) -> float:
        self._require_executed()
        return self.full_volume_b - self.full_volume_a


class HeightDifference(Operation):
    """
    Height change of the paired clusters: z of the highest B point minus z
    of the highest A point, per pair.
    """

    def __init__(
        self,
        cluster_map_a: ClusterMap,
        cluster_map_b: ClusterMap,
        pairing: PairingResult,
        progress: Optional[ProgressCallback] = None,
    ):
        super().__init__(progress)
        self.cluster_map_a = cluster_map_a
        self.cluster_map_b = cluster_map_b
        self.pairing = pairing
        self.differences: Dict[PairKey, float] = {}

    def _on_execute(self) -> None:
        self.differences = {
            (a, b): self.cluster_map_b.highest_point(b).z - self.cluster_map_a.highest_point(a).z
            for a, b in sorted(self.pairing.closest)
        }
        self._report(1.0, "Cluster pair height differences calculated.")
        if self.differences:
            mean = sum(self.differences.values()) / len(self.differences)
            logger.info(f"Mean height difference of {len(self.differences)} pairs: {mean:.2f}")
