import numpy as np

from metrics.confusion import class_iou


class Metric:
    """Frequency-weighted IoU over non-background classes.

    Each class IoU is weighted by the share of ground-truth pixels the class
    holds among classes 1..N-1.
    """

    name = "fw_iou"

    def __call__(self, matrix: np.ndarray) -> float:
        frequencies = matrix[1:, :].sum(axis=1).astype(np.float64)
        total = frequencies.sum()
        if total == 0:
            return float("nan")

        weighted = 0.0
        for offset, frequency in enumerate(frequencies):
            if frequency == 0:
                continue
            weighted += frequency * class_iou(matrix, offset + 1)
        return weighted / total
