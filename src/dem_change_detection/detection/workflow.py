"""
End-to-end change detection of two epochs.
"""

from __future__ import annotations

import math
import os
import time
from pathlib import Path
from typing import Optional, Tuple, Union

from ..acceleration.parallel_executor import ParallelExecutor
from ..clustering.cluster_map import ClusterMap
from ..raster.io import SourceLike
from ..raster.metadata import RasterMetadata
from ..utils.config import AppConfig
from ..utils.logging import logging_progress, setup_logger
from .postprocess import ChangeDetectionResult, PostProcess
from .preprocess import PreProcess

logger = setup_logger(__name__)

PathLike = Union[str, os.PathLike]
EpochJob = Tuple[str, SourceLike, SourceLike]


def preprocess_epoch(
    job: EpochJob,
    output_dir: Optional[PathLike] = None,
    config: Optional[AppConfig] = None,
) -> Tuple[ClusterMap, RasterMetadata]:
    """
    Preprocess one epoch.

    Module level so it can be pickled into worker processes.

    Args:
        job: (prefix, dtm, dsm)
        output_dir: Output directory
        config: Application configuration

    Returns:
        (cluster map, grid of the cluster coordinates)
    """
    prefix, dtm, dsm = job
    operation = PreProcess(
        prefix, dtm, dsm, output_dir, config,
        progress=logging_progress(logger, step=0.25),
    )
    operation.execute()
    return operation.cluster_map(), operation.metadata


def _check_grids(metadata_a: RasterMetadata, metadata_b: RasterMetadata) -> None:
    same = (
        metadata_a.shape == metadata_b.shape
        and math.isclose(metadata_a.origin_x, metadata_b.origin_x, abs_tol=1e-6)
        and math.isclose(metadata_a.origin_y, metadata_b.origin_y, abs_tol=1e-6)
        and math.isclose(metadata_a.pixel_size_x, metadata_b.pixel_size_x, rel_tol=1e-9)
        and math.isclose(metadata_a.pixel_size_y, metadata_b.pixel_size_y, rel_tol=1e-9)
    )
    if not same:
        raise ValueError(
            f"Epochs A and B are on different grids ({metadata_a} vs {metadata_b})."
        )


def run_change_detection(
    dtm_a: PathLike,
    dsm_a: PathLike,
    dtm_b: PathLike,
    dsm_b: PathLike,
    output_dir: Optional[PathLike] = None,
    config: Optional[AppConfig] = None,
) -> ChangeDetectionResult:
    """
    Detect tree crown changes between two epochs.

    Both epochs are preprocessed into cluster maps (in parallel when
    config.parallel.enabled), which are then paired and compared.

    Args:
        dtm_a: Terrain model of epoch A
        dsm_a: Surface model of epoch A
        dtm_b: Terrain model of epoch B
        dsm_b: Surface model of epoch B
        output_dir: Output directory (default: config.paths.output_dir)
        config: Application configuration (defaults when None)

    Returns:
        ChangeDetectionResult

    Raises:
        ValueError: If the epochs are on different grids
        RuntimeError: If the preprocessing of an epoch fails
    """
    config = config if config is not None else AppConfig()
    output_dir = Path(output_dir if output_dir is not None else config.paths.output_dir)
    start_time = time.time()

    jobs = [("A", str(dtm_a), str(dsm_a)), ("B", str(dtm_b), str(dsm_b))]
    n_workers = config.parallel.n_workers if config.parallel.enabled else 1
    executor = ParallelExecutor(n_workers=n_workers)
    (map_a, metadata_a), (map_b, metadata_b) = executor.map_jobs(
        jobs,
        preprocess_epoch,
        {"output_dir": output_dir, "config": config},
    )
    _check_grids(metadata_a, metadata_b)

    post = PostProcess(
        map_a, map_b, str(dsm_a), str(dsm_b), metadata_a, output_dir, config,
        progress=logging_progress(logger, step=0.25),
    )
    post.execute()
    result = post.result()

    logger.info(f"Change detection finished in {time.time() - start_time:.1f}s")
    return result
