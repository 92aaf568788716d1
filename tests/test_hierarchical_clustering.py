"""
Unit tests for the agglomerative clustering of elevation models.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from rasterio.crs import CRS

from dem_change_detection.clustering import LABEL_NODATA, HierarchicalClustering
from dem_change_detection.raster import MemoryRaster, OperationAborted, RasterMetadata

N = -9999.0


def make_raster(data, nodata=N):
    data = np.asarray(data, dtype=np.float32)
    rows, cols = data.shape
    metadata = RasterMetadata(0.0, 0.0, 1.0, -1.0, cols, rows, CRS.from_epsg(28992))
    return MemoryRaster(data, metadata, nodata=nodata)


def run(data, **kwargs):
    clustering = HierarchicalClustering(make_raster(data), **kwargs)
    clustering.execute()
    return clustering, clustering.target().read(1)


class TestHierarchicalClustering:
    """Test suite for HierarchicalClustering."""

    def test_height_step_separates_plateaus(self):
        """Test that two plateaus split by a height step form two clusters."""
        data = np.ones((6, 6), dtype=np.float32)
        data[:, 3:] = 5.0

        clustering, labels = run(data)
        clusters = clustering.cluster_map()

        assert len(clusters) == 2
        assert labels.dtype == np.int32
        left, right = labels[0, 0], labels[0, 5]
        assert left != right
        assert np.all(labels[:, :3] == left)
        assert np.all(labels[:, 3:] == right)
        assert clusters.cluster_size(int(left)) == 18
        assert clusters.cluster_size(int(right)) == 18

    def test_small_clusters_are_pruned(self):
        """Test that clusters below the minimum size are left as nodata."""
        data = np.full((6, 6), N, dtype=np.float32)
        data[:4, :4] = 2.0
        data[5, 4:] = 10.0

        clustering, labels = run(data, minimum_size=4)

        assert len(clustering.cluster_map()) == 1
        assert np.all(labels[:4, :4] == labels[0, 0])
        assert labels[0, 0] != LABEL_NODATA
        assert np.all(labels[5, 4:] == LABEL_NODATA)
        assert clustering.target().nodata(1) == LABEL_NODATA

    def test_minimum_size_one_keeps_everything(self):
        data = np.full((6, 6), N, dtype=np.float32)
        data[:4, :4] = 2.0
        data[5, 4:] = 10.0

        clustering, labels = run(data, minimum_size=1)

        assert len(clustering.cluster_map()) == 2
        assert labels[5, 4] == labels[5, 5] != LABEL_NODATA

    def test_gentle_slope_forms_one_cluster(self):
        """Test that merging chains through steps below the threshold."""
        data = np.tile(np.arange(8, dtype=np.float32) * 0.4, (3, 1))

        clustering, labels = run(data, threshold=0.5)

        assert len(clustering.cluster_map()) == 1
        assert np.all(labels == labels[0, 0])

    def test_nodata_gap_separates_clusters(self):
        data = np.ones((4, 7), dtype=np.float32)
        data[:, 3] = N

        clustering, labels = run(data)

        assert len(clustering.cluster_map()) == 2
        assert np.all(labels[:, 3] == LABEL_NODATA)
        assert labels[0, 0] != labels[0, 6]

    def test_anti_diagonal_contact_is_not_merged(self):
        """Test that only right, down and down-right neighbours are merged."""
        data = np.full((2, 2), N, dtype=np.float32)
        data[0, 1] = 1.0
        data[1, 0] = 1.0

        clustering, labels = run(data, minimum_size=1)

        assert len(clustering.cluster_map()) == 2
        assert labels[0, 1] != labels[1, 0]

    def test_main_diagonal_contact_is_merged(self):
        data = np.full((2, 2), N, dtype=np.float32)
        data[0, 0] = 1.0
        data[1, 1] = 1.2

        clustering, labels = run(data, minimum_size=1)

        assert len(clustering.cluster_map()) == 1
        assert labels[0, 0] == labels[1, 1]

    def test_stops_after_pass_without_change(self):
        data = np.ones((5, 5), dtype=np.float32)

        clustering, _ = run(data)

        assert clustering.iterations == 2

    def test_iteration_limit(self):
        data = np.ones((5, 5), dtype=np.float32)

        clustering, _ = run(data, max_iterations=0)

        assert clustering.max_iterations == 1
        assert clustering.iterations == 1
        assert len(clustering.cluster_map()) == 1

    def test_progress_is_monotonic(self):
        data = np.ones((4, 4), dtype=np.float32)
        reports = []
        clustering = HierarchicalClustering(
            make_raster(data), progress=lambda complete, message: reports.append((complete, message))
        )
        clustering.execute()

        values = [complete for complete, _ in reports]
        assert values == sorted(values)
        assert values[-1] == pytest.approx(1.0)
        messages = [message for _, message in reports]
        assert "Cluster map created" in messages
        assert "Clustering completed" in messages
        assert "Small clusters removed" in messages

    def test_abort_from_progress(self):
        data = np.ones((4, 4), dtype=np.float32)
        clustering = HierarchicalClustering(
            make_raster(data),
            progress=lambda complete, message: message != "Clustering completed",
        )

        with pytest.raises(OperationAborted):
            clustering.execute()

    def test_cluster_map_requires_execution(self):
        clustering = HierarchicalClustering(make_raster(np.ones((2, 2))))

        with pytest.raises(RuntimeError):
            clustering.cluster_map()

    def test_threshold_must_be_positive(self):
        with pytest.raises(ValueError):
            HierarchicalClustering(make_raster(np.ones((2, 2))), threshold=0.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
