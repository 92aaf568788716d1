"""
Unit tests for the whole-raster (dataset) operations.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from rasterio.crs import CRS

from dem_change_detection.raster import (
    DatasetCalculation,
    DatasetTransformation,
    MemoryRaster,
    RasterMetadata,
)

NODATA = -9999.0


def make_raster(data, nodata=NODATA):
    data = np.asarray(data, dtype=np.float32)
    rows, cols = data.shape
    metadata = RasterMetadata(0.0, 0.0, 1.0, -1.0, cols, rows, CRS.from_epsg(28992))
    return MemoryRaster(data, metadata, nodata=nodata)


class TestDatasetCalculation:
    """Test suite for DatasetCalculation."""

    def test_computation_sees_whole_raster(self):
        """Test that the computation gets the grid size and random access."""
        data = np.arange(12, dtype=np.float32).reshape(3, 4)
        data[0, 0] = NODATA
        seen = {}

        def compute(size_x, size_y):
            seen["size"] = (size_x, size_y)
            seen["total"] = sum(
                operation.source_data(0, x, y)
                for y in range(size_y) for x in range(size_x)
                if operation.has_source_data(0, x, y)
            )

        operation = DatasetCalculation([make_raster(data)], compute)
        operation.execute()

        assert seen["size"] == (4, 3)
        assert seen["total"] == sum(range(1, 12))

    def test_out_of_bounds_reads_nodata(self):
        """Test that reads outside the source report nodata."""
        results = {}

        def compute(size_x, size_y):
            results["inside"] = operation.has_source_data(0, 1, 1)
            results["outside"] = operation.has_source_data(0, 5, 1)
            results["value"] = operation.source_data(0, -1, 0)

        operation = DatasetCalculation([make_raster(np.ones((2, 2)))], compute)
        operation.execute()

        assert results["inside"]
        assert not results["outside"]
        assert results["value"] == NODATA

    def test_progress_messages(self):
        """Test the reported loading and computation steps."""
        messages = []
        operation = DatasetCalculation(
            [make_raster(np.ones((2, 2))), make_raster(np.zeros((2, 2)))],
            lambda size_x, size_y: None,
            lambda complete, message: messages.append((complete, message)),
        )
        operation.execute()

        assert messages[0] == (pytest.approx(1 / 3), "Done reading source #1")
        assert messages[1] == (pytest.approx(2 / 3), "Done reading source #2")
        assert messages[-1] == (1.0, "Computation performed")

    def test_missing_computation(self):
        with pytest.raises(ValueError, match="Computation is not given"):
            DatasetCalculation([make_raster(np.ones((2, 2)))]).prepare()


class TestDatasetTransformation:
    """Test suite for DatasetTransformation."""

    def test_target_prefilled_with_nodata(self):
        """Test that untouched target cells stay nodata."""
        data = np.arange(4, dtype=np.float32).reshape(2, 2)

        def compute(size_x, size_y):
            for y in range(size_y):
                for x in range(size_x):
                    if x == y:
                        operation.set_target_data(x, y, 2 * operation.source_data(0, x, y))
            assert operation.has_target_data(0, 0)
            assert not operation.has_target_data(1, 0)

        operation = DatasetTransformation([make_raster(data)], None, compute, nodata_value=-1.0)
        operation.execute()
        result = operation.target().read(1)

        np.testing.assert_array_equal(result, [[0.0, -1.0], [-1.0, 6.0]])

    def test_file_target_and_progress(self, tmp_path):
        """Test a file target and the final progress steps."""
        messages = []
        path = tmp_path / "dataset.tif"

        def compute(size_x, size_y):
            operation.set_target_data(0, 0, 42.0)

        operation = DatasetTransformation(
            [make_raster(np.ones((2, 2)))], path, compute,
            lambda complete, message: messages.append(message),
        )
        operation.execute()
        target = operation.target()

        assert path.exists()
        assert target.read(1)[0, 0] == 42.0
        assert messages[-2:] == ["Computation performed", "Target written"]
        target.close()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
