"""
Complete DEM change detection workflow

Preprocesses two epochs of terrain (DTM) and surface (DSM) models into tree
crown clusters, pairs the clusters and reports volume and height change.
"""

import sys
import argparse
import logging
from pathlib import Path

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from dem_change_detection.detection import run_change_detection
from dem_change_detection.utils.config import load_config, AppConfig
from dem_change_detection.utils.logging import setup_logger


def main():
    """
    Main function to run the DEM change detection workflow.
    """
    parser = argparse.ArgumentParser(description="DEM Change Detection Workflow")
    parser.add_argument("--dtm-a", type=str, required=True, help="Terrain model of epoch A")
    parser.add_argument("--dsm-a", type=str, required=True, help="Surface model of epoch A")
    parser.add_argument("--dtm-b", type=str, required=True, help="Terrain model of epoch B")
    parser.add_argument("--dsm-b", type=str, required=True, help="Surface model of epoch B")
    parser.add_argument(
        "--output-dir",
        type=str,
        default=None,
        help="Output directory (defaults to paths.output_dir of the configuration)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file (defaults to config/default.yaml)",
    )
    parser.add_argument(
        "--method",
        choices=["centroid", "hausdorff"],
        default=None,
        help="Cluster pairing method (overrides pairing.method)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of worker processes for the epoch preprocessing (1 = sequential)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Keep intermediate rasters and export seed points / cluster centres as GeoJSON",
    )
    args = parser.parse_args()

    # Load configuration
    cfg: AppConfig = load_config(args.config)
    if args.method:
        cfg.pairing.method = args.method
    if args.workers is not None:
        cfg.parallel.n_workers = args.workers
        cfg.parallel.enabled = args.workers > 1
    if args.debug:
        cfg.debug = True

    # Setup logging from config
    log_level = getattr(logging, cfg.logging.level.upper(), logging.INFO)
    logger = setup_logger(__name__, level=log_level, log_file=cfg.logging.file)

    logger.info("DEM Change Detection Workflow")
    logger.info("=============================")

    for name in ("dtm_a", "dsm_a", "dtm_b", "dsm_b"):
        path = Path(getattr(args, name))
        if not path.exists():
            logger.error(f"Input raster {path} does not exist.")
            return 1

    try:
        result = run_change_detection(
            args.dtm_a, args.dsm_a, args.dtm_b, args.dsm_b,
            output_dir=args.output_dir,
            config=cfg,
        )
    except Exception as e:
        logger.error(f"Change detection workflow failed: {e}", exc_info=True)
        return 1

    logger.info("Summary")
    logger.info(f"  Clusters A / B: {result.cluster_count_a} / {result.cluster_count_b}")
    logger.info(f"  Pairs: {result.pairing.pair_count}")
    logger.info(f"  Lonely A / B: {len(result.pairing.lonely_a)} / {len(result.pairing.lonely_b)}")
    logger.info(f"  Volume change: {result.volume_difference:.2f}")
    for name, path in result.files.items():
        logger.info(f"  Output ({name}): {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
