"""
Filters Module

Raster filters built on the sweep-line engine:
- Difference of two elevation models, optionally restricted to filter layers
- Neighbourhood filters (noise, majority, morphology, thresholding, hole filling)
- Weighted matrix transformation and blur kernels
- Sieving of small connected regions
"""

from .comparison import Difference, FilteredDifference
from .neighborhood import (
    NoiseFilter,
    MajorityFilter,
    MorphologyFilter,
    EliminateNonTrees,
    InterpolateNoData,
)
from .matrix import (
    MatrixTransformation,
    blur_3x3_middle_4,
    blur_3x3_middle_12,
    blur_5x5_middle_36,
    BLUR_KERNELS,
)
from .cluster_filter import ClusterFilter

__all__ = [
    "Difference",
    "FilteredDifference",
    "NoiseFilter",
    "MajorityFilter",
    "MorphologyFilter",
    "EliminateNonTrees",
    "InterpolateNoData",
    "MatrixTransformation",
    "blur_3x3_middle_4",
    "blur_3x3_middle_12",
    "blur_5x5_middle_36",
    "BLUR_KERNELS",
    "ClusterFilter",
]
