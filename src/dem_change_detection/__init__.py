"""
DEM Change Detection Package

A Python package for detecting tree crown changes between two epochs of
raster elevation models (DTM/DSM pairs).
A sweep-line engine streams raster rows through windowed computations, tree
crowns are segmented into cluster maps, and the clusters of both epochs are
paired by centroid or Hausdorff distance to report volume and height change.
"""

__version__ = "0.1.0"

from .raster import *
from .filters import *
from .clustering import *
from .detection import *
from .acceleration import *
from .utils import *

__all__ = [
    "raster",
    "filters",
    "clustering",
    "detection",
    "acceleration",
    "utils",
]
