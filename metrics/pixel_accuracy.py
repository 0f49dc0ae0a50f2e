import numpy as np


class Metric:
    name = "pixel_accuracy"

    def __call__(self, matrix: np.ndarray) -> float:
        total = float(matrix.sum())
        if total == 0:
            return float("nan")
        return float(np.trace(matrix)) / total
