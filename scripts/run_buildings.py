"""
Building change detection workflow

Compares the surface models (DSM) of two epochs and writes the cleaned
raster of significant height changes (construction > 0, demolition < 0).
"""

import sys
import argparse
import logging
from pathlib import Path

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from dem_change_detection.detection import run_building_change_detection
from dem_change_detection.utils.config import load_config, AppConfig
from dem_change_detection.utils.logging import setup_logger


def main():
    """
    Main function to run the building change detection workflow.
    """
    parser = argparse.ArgumentParser(description="Building Change Detection Workflow")
    parser.add_argument("--dsm-a", type=str, required=True, help="Surface model of epoch A")
    parser.add_argument("--dsm-b", type=str, required=True, help="Surface model of epoch B")
    parser.add_argument("--filter-a", type=str, default=None, help="Filter layer of epoch A (e.g. building footprints)")
    parser.add_argument("--filter-b", type=str, default=None, help="Filter layer of epoch B")
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
        "--size-threshold",
        type=int,
        default=None,
        help="Smallest change region kept, in cells (overrides buildings.cluster_size_threshold)",
    )
    parser.add_argument("--debug", action="store_true", help="Keep intermediate rasters")
    args = parser.parse_args()

    cfg: AppConfig = load_config(args.config)
    if args.size_threshold is not None:
        cfg.buildings.cluster_size_threshold = args.size_threshold
    if args.debug:
        cfg.debug = True

    log_level = getattr(logging, cfg.logging.level.upper(), logging.INFO)
    logger = setup_logger(__name__, level=log_level, log_file=cfg.logging.file)

    logger.info("Building Change Detection Workflow")
    logger.info("==================================")

    if (args.filter_a is None) != (args.filter_b is None):
        logger.error("Give filter layers for both epochs or for neither.")
        return 1
    for name in ("dsm_a", "dsm_b", "filter_a", "filter_b"):
        value = getattr(args, name)
        if value is not None and not Path(value).exists():
            logger.error(f"Input raster {value} does not exist.")
            return 1

    try:
        result = run_building_change_detection(
            args.dsm_a, args.dsm_b,
            output_dir=args.output_dir,
            config=cfg,
            filter_a=args.filter_a,
            filter_b=args.filter_b,
        )
    except Exception as e:
        logger.error(f"Building change detection failed: {e}", exc_info=True)
        return 1

    logger.info("Summary")
    logger.info(f"  Changed cells: {result.changed_cells}")
    logger.info(f"  Raised / lowered: {result.raised_cells} / {result.lowered_cells}")
    for name, path in result.files.items():
        logger.info(f"  Output ({name}): {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
