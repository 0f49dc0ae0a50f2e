import numpy as np

from metrics.confusion import compute_miou


class Metric:
    name = "miou"

    def __call__(self, matrix: np.ndarray) -> float:
        # background (class 0) excluded, unseen classes dropped from the mean
        return compute_miou(matrix)
