"""
Test the metric registry and confusion-matrix metrics
"""
import numpy as np
import pytest

from metrics import registry
from metrics.fw_iou import Metric as FWIoUMetric
from metrics.miou import Metric as MIoUMetric
from metrics.miou_all import Metric as AllClassMIoUMetric
from metrics.pixel_accuracy import Metric as PixelAccuracyMetric


@pytest.fixture
def matrix():
    # rows = ground truth, columns = prediction
    return np.array([
        [4, 0, 0],
        [0, 3, 1],
        [0, 1, 1],
    ], dtype=np.uint64)


class TestRegistry:

    def test_discovers_plugins(self):
        assert set(registry) == {"miou", "miou_all_classes", "pixel_accuracy", "fw_iou"}

    def test_confusion_module_not_registered(self):
        assert "confusion" not in registry

    def test_build(self):
        metrics = registry.build(["miou", "unknown"])
        assert len(metrics) == 1
        assert isinstance(metrics[0], MIoUMetric)

    def test_evaluate(self, matrix):
        results = registry.evaluate(matrix)
        assert list(results) == ["fw_iou", "miou", "miou_all_classes", "pixel_accuracy"]
        assert all(isinstance(v, float) for v in results.values())


class TestMetrics:

    def test_miou(self, matrix):
        # class 1: 3 / 5, class 2: 1 / 3
        assert MIoUMetric()(matrix) == pytest.approx((3 / 5 + 1 / 3) / 2)

    def test_miou_all_classes(self, matrix):
        assert AllClassMIoUMetric()(matrix) == pytest.approx((1.0 + 3 / 5 + 1 / 3) / 3)

    def test_pixel_accuracy(self, matrix):
        assert PixelAccuracyMetric()(matrix) == pytest.approx(8 / 10)

    def test_fw_iou(self, matrix):
        # class 1 holds 4 of 6 non-background ground-truth pixels
        expected = (4 * 3 / 5 + 2 * 1 / 3) / 6
        assert FWIoUMetric()(matrix) == pytest.approx(expected)

    def test_empty_matrix_is_undefined(self):
        empty = np.zeros((3, 3), dtype=np.uint64)
        assert np.isnan(MIoUMetric()(empty))
        assert np.isnan(PixelAccuracyMetric()(empty))
        assert np.isnan(FWIoUMetric()(empty))


if __name__ == "__main__":
    pytest.main([__file__])
