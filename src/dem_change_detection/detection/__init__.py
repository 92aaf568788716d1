"""
Detection Module

Tree crown change detection between two epochs of elevation models:
- PreProcess: canopy height model, filtering, segmentation and cluster morphology
- PostProcess: cluster pairing, volume/height differences and output rasters
- run_change_detection: the complete two-epoch workflow

and building change detection from two surface models:
- BuildingChangeDetection: changeset, noise, sieve, dilation and majority filtering
- run_building_change_detection: the complete building workflow
"""

from .difference import VolumeDifference, HeightDifference, cluster_volume
from .preprocess import PreProcess
from .postprocess import ChangeDetectionResult, PostProcess, average_height_changes
from .workflow import preprocess_epoch, run_change_detection
from .buildings import BuildingChangeDetection, BuildingChangeResult, run_building_change_detection

__all__ = [
    "VolumeDifference",
    "HeightDifference",
    "cluster_volume",
    "PreProcess",
    "ChangeDetectionResult",
    "PostProcess",
    "average_height_changes",
    "preprocess_epoch",
    "run_change_detection",
    "BuildingChangeDetection",
    "BuildingChangeResult",
    "run_building_change_detection",
]
