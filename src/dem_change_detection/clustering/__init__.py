"""
Clustering Module

Grouping of raster cells into clusters and matching them across epochs:
- ClusterMap: indexed, disjoint clusters of grid points
- Morphological erosion/dilation of clusters
- Seed point collection and tree crown segmentation
- Agglomerative (hierarchical) clustering of elevation models
- Centroid and Hausdorff distance based cluster pairing
- Label raster writers/readers
"""

from .cluster_map import ClusterMap, ClusterPoint, MAX_CLUSTER_INDEX
from .distance import (
    PairingResult,
    pair_clusters,
    DistanceCalculation,
    CentroidDistance,
    HausdorffDistance,
)
from .morphology import MorphologyClusterFilter, MorphologyMethod
from .segmentation import SeedPointCollection, TreeCrownSegmentation, remove_deformed_clusters
from .hierarchical import HierarchicalClustering
from .writer import (
    LABEL_NODATA,
    LONELY_A_LABEL,
    LONELY_B_LABEL,
    cluster_labels,
    pair_labels,
    write_cluster_map,
    write_cluster_pairs,
    read_cluster_map,
)

__all__ = [
    "ClusterMap",
    "ClusterPoint",
    "MAX_CLUSTER_INDEX",
    "PairingResult",
    "pair_clusters",
    "DistanceCalculation",
    "CentroidDistance",
    "HausdorffDistance",
    "MorphologyClusterFilter",
    "MorphologyMethod",
    "SeedPointCollection",
    "TreeCrownSegmentation",
    "remove_deformed_clusters",
    "HierarchicalClustering",
    "LABEL_NODATA",
    "LONELY_A_LABEL",
    "LONELY_B_LABEL",
    "cluster_labels",
    "pair_labels",
    "write_cluster_map",
    "write_cluster_pairs",
    "read_cluster_map",
]
