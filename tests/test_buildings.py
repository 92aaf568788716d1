"""
Tests for the building change detection on synthetic two-epoch surface
models: one building constructed, one demolished, plus small changes
that the filters must remove.
"""

import sys
from pathlib import Path

import numpy as np
import pytest
import rasterio

sys.path.append(str(Path(__file__).parent.parent / "src"))

from rasterio.crs import CRS

from dem_change_detection.detection import (
    BuildingChangeDetection,
    run_building_change_detection,
)
from dem_change_detection.raster import MemoryRaster, OperationAborted, RasterMetadata
from dem_change_detection.utils.config import AppConfig
from dem_change_detection.utils.export import export_raster_to_geotiff

GROUND = 2.0
NEW = (slice(5, 30), slice(5, 30))          # 25 x 25 building raised by 10 m
DEMOLISHED = (slice(35, 57), slice(35, 57))  # 22 x 22 building lowered by 8 m
SHED = (slice(5, 8), slice(45, 48))          # 3 x 3 change below the size threshold
SPIKE = (50, 10)                             # single noisy cell


@pytest.fixture
def grid():
    return RasterMetadata(150000.0, 450000.0, 1.0, -1.0, 60, 60, CRS.from_epsg(28992))


@pytest.fixture
def surfaces(grid):
    dsm_a = np.full(grid.shape, GROUND, dtype=np.float32)
    dsm_a[DEMOLISHED] += 8.0

    dsm_b = np.full(grid.shape, GROUND, dtype=np.float32)
    dsm_b[NEW] += 10.0
    dsm_b[SHED] += 5.0
    dsm_b[SPIKE] += 3.0
    return dsm_a, dsm_b


def memory(data, grid, nodata=-9999.0):
    return MemoryRaster(data, grid, nodata=nodata)


def valid_values(raster):
    values = raster.read(1)
    return values, values != raster.nodata(1)


class TestBuildingChangeDetection:
    """Test suite for BuildingChangeDetection."""

    def test_construction_and_demolition(self, surfaces, grid):
        """Test that both buildings are detected with their sign and the noise is gone."""
        dsm_a, dsm_b = surfaces
        detection = BuildingChangeDetection(memory(dsm_a, grid), memory(dsm_b, grid))
        detection.execute()
        result = detection.result()

        with detection.target() as changes:
            values, valid = valid_values(changes)

        assert np.all(valid[NEW])
        assert np.allclose(values[NEW], 10.0)
        assert np.all(valid[DEMOLISHED])
        assert np.allclose(values[DEMOLISHED], -8.0)
        assert not np.any(valid[SHED])
        assert not valid[SPIKE]
        assert not valid[0, 59]
        assert set(np.unique(values[valid]).tolist()) == {-8.0, 10.0}

        assert result.raised_cells >= 25 * 25
        assert result.lowered_cells >= 22 * 22
        assert result.changed_cells == result.raised_cells + result.lowered_cells
        assert result.files == {}

    def test_filter_layers_restrict_comparison(self, surfaces, grid):
        """Test that changes outside both filter layers are not reported."""
        dsm_a, dsm_b = surfaces
        footprint_b = np.zeros(grid.shape, dtype=np.uint8)
        footprint_b[3:32, 3:32] = 1
        footprint_a = np.zeros(grid.shape, dtype=np.uint8)

        detection = BuildingChangeDetection(
            memory(dsm_a, grid), memory(dsm_b, grid),
            filter_a=memory(footprint_a, grid, nodata=0),
            filter_b=memory(footprint_b, grid, nodata=0),
        )
        detection.execute()
        result = detection.result()

        with detection.target() as changes:
            values, valid = valid_values(changes)

        assert np.allclose(values[NEW], 10.0)
        assert not np.any(valid[DEMOLISHED])
        assert result.lowered_cells == 0
        assert result.raised_cells >= 25 * 25

    def test_size_threshold_from_config(self, surfaces, grid):
        """Test that a lower size threshold keeps the small change."""
        dsm_a, dsm_b = surfaces
        config = AppConfig()
        config.buildings.cluster_size_threshold = 4

        detection = BuildingChangeDetection(memory(dsm_a, grid), memory(dsm_b, grid), config=config)
        detection.execute()

        with detection.target() as changes:
            values, valid = valid_values(changes)

        assert valid[6, 46]
        assert values[6, 46] == pytest.approx(5.0)

    def test_writes_outputs(self, surfaces, grid, tmp_path):
        dsm_a, dsm_b = surfaces
        config = AppConfig()
        config.debug = True

        detection = BuildingChangeDetection(
            memory(dsm_a, grid), memory(dsm_b, grid), tmp_path / "out", config
        )
        detection.execute()
        detection.target().close()
        result = detection.result()

        out = tmp_path / "out"
        assert result.files["changes"] == out / "building_changes.tif"
        for name in ("changeset", "noise", "cluster", "dilation", "majority_1"):
            assert (out / f"buildings_{name}.tif").exists()
        with rasterio.open(result.files["changes"]) as src:
            assert src.crs == CRS.from_epsg(28992)
            values = src.read(1)
            assert values[17, 17] == pytest.approx(10.0)
            assert values[45, 45] == pytest.approx(-8.0)

    def test_target_handed_over_once(self, surfaces, grid):
        dsm_a, dsm_b = surfaces
        detection = BuildingChangeDetection(memory(dsm_a, grid), memory(dsm_b, grid))
        detection.execute()
        detection.target().close()

        with pytest.raises(RuntimeError):
            detection.target()

    def test_progress_and_abort(self, surfaces, grid):
        dsm_a, dsm_b = surfaces
        messages = []

        def progress(complete, message):
            messages.append(message)
            return not message.startswith("Cluster filtering")

        detection = BuildingChangeDetection(memory(dsm_a, grid), memory(dsm_b, grid), progress=progress)

        with pytest.raises(OperationAborted):
            detection.execute()
        assert "Creating changeset" in messages
        assert "Noise filtering" in messages
        assert not detection.is_executed

    def test_single_filter_layer_rejected(self, surfaces, grid):
        dsm_a, dsm_b = surfaces
        with pytest.raises(ValueError, match="both epochs"):
            BuildingChangeDetection(
                memory(dsm_a, grid), memory(dsm_b, grid), filter_a=memory(dsm_a, grid)
            )

    def test_invalid_majority_ranges(self, surfaces, grid):
        dsm_a, dsm_b = surfaces
        config = AppConfig()
        config.buildings.majority_ranges = []

        detection = BuildingChangeDetection(memory(dsm_a, grid), memory(dsm_b, grid), config=config)
        with pytest.raises(ValueError, match="Majority"):
            detection.execute()

    def test_result_before_execute(self, surfaces, grid):
        dsm_a, dsm_b = surfaces
        detection = BuildingChangeDetection(memory(dsm_a, grid), memory(dsm_b, grid))

        with pytest.raises(RuntimeError):
            detection.result()


class TestRunBuildingChangeDetection:
    """Test suite for the file based building workflow."""

    def test_files_in_files_out(self, surfaces, grid, tmp_path):
        dsm_a, dsm_b = surfaces
        path_a = export_raster_to_geotiff(dsm_a, tmp_path / "dsm_a.tif", grid)
        path_b = export_raster_to_geotiff(dsm_b, tmp_path / "dsm_b.tif", grid)

        result = run_building_change_detection(path_a, path_b, tmp_path / "out")

        assert result.raised_cells >= 25 * 25
        assert result.lowered_cells >= 22 * 22
        with rasterio.open(result.files["changes"]) as src:
            assert src.read(1)[17, 17] == pytest.approx(10.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
