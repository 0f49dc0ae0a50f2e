"""
Shared fixtures: repository root on sys.path and a network-free engine
"""
import sys
from pathlib import Path

import numpy as np
import pytest
import torch

sys.path.insert(0, str(Path(__file__).parent.parent))

from segmentation.inference import InferenceEngine  # noqa: E402


class StubEngine(InferenceEngine):
    """Engine that always predicts the same coarse grid."""

    def __init__(self, grid, num_classes, labels=None, max_batch_size=2):
        super().__init__(num_classes, max_batch_size=max_batch_size, device="cpu")
        self.grid = torch.as_tensor(np.asarray(grid), dtype=torch.long)
        self._labels = labels
        self.calls = 0

    @property
    def class_labels(self):
        return list(self._labels) if self._labels else None

    def _forward(self, batch):
        self.calls += 1
        one_hot = torch.nn.functional.one_hot(self.grid, self.num_classes)  # (h, w, C)
        scores = one_hot.permute(2, 0, 1).float()
        return scores.unsqueeze(0).repeat(batch.size(0), 1, 1, 1)


@pytest.fixture
def stub_engine():
    """Factory for StubEngine instances."""
    return StubEngine


@pytest.fixture
def write_rgb():
    """Write a solid RGB image and return its path."""
    def _write(path: Path, width: int, height: int, color=(100, 150, 200)):
        from PIL import Image
        pixels = np.zeros((height, width, 3), dtype=np.uint8)
        pixels[...] = color
        Image.fromarray(pixels).save(path)
        return path
    return _write


@pytest.fixture
def write_labels():
    """Write an 8-bit label image from a 2D integer array and return its path."""
    def _write(path: Path, labels):
        from PIL import Image
        Image.fromarray(np.asarray(labels, dtype=np.uint8)).save(path)
        return path
    return _write
