"""
metrics.confusion: Confusion-matrix accumulation and mean IoU

Rows of the matrix are ground-truth classes, columns are predicted classes.
Class 0 is background and never enters the mIoU average.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

import numpy as np

from segmentation.remap import UNMAPPED, LabelRemapper


def class_iou(matrix: np.ndarray, class_id: int) -> float:
    """
    IoU of one class: TP / (row sum + column sum - TP).

    Returns NaN when the class appears in neither ground truth nor prediction.
    """
    numerator = float(matrix[class_id, class_id])
    denominator = float(matrix[class_id, :].sum()) + float(matrix[:, class_id].sum()) - numerator
    if denominator == 0:
        return float("nan")
    return numerator / denominator


def compute_miou(matrix: np.ndarray, first_class: int = 1) -> float:
    """
    Mean IoU over classes first_class..N-1 of a confusion matrix.

    Classes with a zero denominator are left out of the average rather than
    counted as 0.

    Args:
        matrix: Square (N, N) count matrix, rows = ground truth
        first_class: Lowest class id in the average; 1 leaves out background

    Returns:
        mIoU in [0, 1], or NaN when no class has a defined IoU
    """
    num_classes = matrix.shape[0]
    effective = num_classes - first_class
    total = 0.0
    for c in range(first_class, num_classes):
        iou = class_iou(matrix, c)
        if np.isnan(iou):
            effective -= 1
            continue
        total += iou
    if effective <= 0:
        return float("nan")
    return total / effective


@dataclass(frozen=True)
class ImageUpdate:
    """What one `update` call contributed."""

    matrix: np.ndarray
    ground_truth_ids: FrozenSet[int]
    predicted_ids: FrozenSet[int]
    skipped_pixels: int

    @property
    def miou(self) -> float:
        return compute_miou(self.matrix)


class ConfusionMatrixAccumulator:
    """Running confusion matrix for one evaluation run."""

    def __init__(self, num_classes: int, remapper: LabelRemapper):
        if num_classes < 1:
            raise ValueError("num_classes must be >= 1")
        self.num_classes = num_classes
        self.remapper = remapper
        self._matrix = np.zeros((num_classes, num_classes), dtype=np.uint64)
        self.num_images = 0

    @property
    def matrix(self) -> np.ndarray:
        view = self._matrix.view()
        view.flags.writeable = False
        return view

    def reset(self) -> None:
        self._matrix[...] = 0
        self.num_images = 0

    def update(self, ground_truth: np.ndarray, predicted: np.ndarray) -> ImageUpdate:
        """
        Add one image to the matrix.

        Args:
            ground_truth: Raw ground-truth label ids (H, W)
            predicted: Predicted class ids (H, W) at the same resolution

        Returns:
            ImageUpdate with this image's own matrix and observed ids
        """
        ground_truth = np.asarray(ground_truth)
        predicted = np.asarray(predicted)
        if ground_truth.shape != predicted.shape:
            raise ValueError(
                f"Ground truth {ground_truth.shape} and prediction {predicted.shape} differ in shape"
            )
        if not np.issubdtype(predicted.dtype, np.integer):
            raise ValueError(f"Predicted class ids must be integers, got {predicted.dtype}")

        gt = self.remapper.remap_image(ground_truth).ravel().astype(np.int64)
        pred = predicted.ravel().astype(np.int64)
        if pred.size and (pred.min() < 0 or pred.max() >= self.num_classes):
            raise ValueError(
                f"Predicted class ids must lie in [0, {self.num_classes}), "
                f"got [{pred.min()}, {pred.max()}]"
            )

        valid = (gt < self.num_classes) & (gt != UNMAPPED)
        n = self.num_classes
        counts = np.bincount(gt[valid] * n + pred[valid], minlength=n * n)
        image_matrix = counts.reshape(n, n).astype(np.uint64)

        self._matrix += image_matrix
        self.num_images += 1

        return ImageUpdate(
            matrix=image_matrix,
            ground_truth_ids=frozenset(int(i) for i in np.unique(gt[valid])),
            predicted_ids=frozenset(int(i) for i in np.unique(pred)),
            skipped_pixels=int(valid.size - valid.sum()),
        )

    def compute_miou(self) -> float:
        """mIoU over the running matrix, recomputed from scratch."""
        return compute_miou(self._matrix)

    def class_ious(self, labels: Optional[list] = None) -> Dict:
        """
        Per-class IoU for classes 1..N-1 (NaN where undefined).

        Keys are class labels when `labels` is given, class ids otherwise.
        """
        result = {}
        for c in range(1, self.num_classes):
            key = labels[c] if labels and c < len(labels) else c
            result[key] = class_iou(self._matrix, c)
        return result
