"""
Utility Functions Module

This module provides common utility functions used across the dem change detection project.
- Configuration loading
- Logging and progress tracking
- Export utilities for GeoTIFF and GeoJSON
"""

from .logging import setup_logger, logging_progress
from .config import AppConfig, load_config
from .export import export_raster_to_geotiff, export_points_to_geojson

__all__ = [
    "setup_logger",
    "logging_progress",
    "AppConfig",
    "load_config",
    "export_raster_to_geotiff",
    "export_points_to_geojson",
]
