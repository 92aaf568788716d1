"""
Unit tests for the windowed source accessor.
"""

import math
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from dem_change_detection.raster import Window, cast_nodata


class TestWindow:
    """Test suite for Window."""

    def test_centre_relative_queries(self):
        """Test that queries are relative to the centre."""
        buffer = np.arange(9, dtype=np.float32).reshape(3, 3)
        window = Window(buffer, -1.0, center_x=1, center_y=1)

        assert window.data() == 4.0
        assert window.data(-1, -1) == 0.0
        assert window.data(1, 0) == 5.0
        assert window.data(0, 1) == 7.0
        assert window.has_data(1, 1)

    def test_out_of_bounds_reads_nodata(self):
        """Test that queries outside the buffer never fault."""
        buffer = np.ones((3, 3), dtype=np.float32)
        window = Window(buffer, -1.0, center_x=1, center_y=1)

        assert not window.has_data(2, 0)
        assert window.data(2, 0) == -1.0
        assert not window.has_data(0, -2)
        assert window.data(-5, 5) == -1.0

    def test_offsets_in_target_grid(self):
        """Test that offsets shift the buffer within the target grid."""
        buffer = np.arange(6, dtype=np.float64).reshape(2, 3)
        window = Window(buffer, -1.0, offset_x=5, offset_y=10, center_x=6, center_y=11)

        assert window.data() == 4.0
        assert window.data(-1, -1) == 0.0
        assert not window.has_data(-2, 0)

        window.center_x = 4
        assert not window.has_data()
        assert window.has_data(1, 0)

    def test_nodata_detection(self):
        """Test that nodata samples are reported as missing."""
        buffer = np.array([[1.0, -9999.0]], dtype=np.float32)
        window = Window(buffer, -9999.0)

        assert window.has_data(0, 0)
        assert not window.has_data(1, 0)
        assert window.data(1, 0) == -9999.0

    def test_float32_nodata_is_cast(self):
        """Test that a float32 buffer matches a float64 nodata value."""
        buffer = np.array([[-1e10, 3.0]], dtype=np.float32)
        window = Window(buffer, -1e10)

        assert not window.has_data(0, 0)
        assert window.has_data(1, 0)

    def test_nan_is_always_missing(self):
        """Test that NaN is missing with or without a nodata value."""
        buffer = np.array([[np.nan, 2.0]])

        assert not Window(buffer, None).has_data(0, 0)
        assert not Window(buffer, -9999.0).has_data(0, 0)
        assert math.isnan(Window(buffer, None).nodata)

    def test_empty_window(self):
        """Test that an empty window has no data anywhere."""
        window = Window.empty(-1.0, 3, 4)

        assert not window.has_data()
        assert window.data(1, 1) == -1.0

    def test_buffer_must_be_2d(self):
        """Test that a 1D buffer is rejected."""
        with pytest.raises(ValueError):
            Window(np.zeros(3), 0.0)


class TestCastNodata:
    """Test suite for cast_nodata."""

    def test_integer_types(self):
        """Test nodata conversion for integer data types."""
        assert cast_nodata(255, np.uint8) == 255
        assert cast_nodata(-1, np.int32) == -1
        assert cast_nodata(-1e10, np.int32) is None
        assert cast_nodata(1.5, np.int16) is None
        assert cast_nodata(float("nan"), np.int16) is None

    def test_float_types(self):
        """Test nodata conversion for float data types."""
        assert cast_nodata(-1e10, np.float64) == -1e10
        assert cast_nodata(-1e10, np.float32) == float(np.float32(-1e10))
        assert cast_nodata(None, np.float32) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
