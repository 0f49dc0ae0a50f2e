"""
segmentation.buffers: Class-index grids and the double-buffered slot pool
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

import numpy as np
import torch


@dataclass
class ClassGrid:
    """Per-cell class ids of one inference call, shape (height, width)."""

    cells: torch.Tensor

    def __post_init__(self):
        if self.cells.dim() != 2:
            raise ValueError(f"ClassGrid cells must be 2D, got shape {tuple(self.cells.shape)}")
        if self.cells.dtype.is_floating_point:
            raise ValueError("ClassGrid cells must hold integer class ids")

    @classmethod
    def from_scores(cls, scores: torch.Tensor) -> "ClassGrid":
        """
        Argmax a class-score tensor into a grid.

        Args:
            scores: Tensor of shape (C, h, w) or (1, C, h, w)
        """
        if scores.dim() == 4:
            if scores.size(0) != 1:
                raise ValueError("from_scores expects a single image, use one grid per batch item")
            scores = scores[0]
        if scores.dim() != 3:
            raise ValueError(f"Class scores must be (C, h, w), got shape {tuple(scores.shape)}")
        return cls(scores.argmax(dim=0))

    @classmethod
    def from_array(cls, cells, device: str = "cpu") -> "ClassGrid":
        return cls(torch.as_tensor(np.asarray(cells), dtype=torch.long, device=device))

    @property
    def width(self) -> int:
        return int(self.cells.size(1))

    @property
    def height(self) -> int:
        return int(self.cells.size(0))

    @property
    def device(self) -> torch.device:
        return self.cells.device

    def to_numpy(self) -> np.ndarray:
        return self.cells.cpu().numpy()


class GridSlot:
    """
    One reusable grid buffer.

    A slot holds the grid of one image until every consumer it was
    published to has released it.
    """

    def __init__(self, index: int):
        self.index = index
        self.grid: Optional[ClassGrid] = None
        self._pending: Set[str] = set()
        self._event = None

    @property
    def ready(self) -> bool:
        """True when no consumer still needs the slot contents."""
        return not self._pending

    @property
    def pending(self) -> Set[str]:
        return set(self._pending)

    def publish(self, grid: ClassGrid, consumers: Iterable[str]) -> None:
        if not self.ready:
            raise RuntimeError(
                f"Grid slot {self.index} still in use by {sorted(self._pending)}"
            )
        self.grid = grid
        self._pending = set(consumers)
        if grid.device.type == "cuda":
            self._event = torch.cuda.Event()
            self._event.record(torch.cuda.current_stream(grid.device))
        else:
            self._event = None

    def synchronize(self) -> None:
        """Block until work queued on the grid's stream has finished."""
        if self._event is not None:
            self._event.synchronize()

    def release(self, consumer: str) -> None:
        if consumer not in self._pending:
            raise RuntimeError(f"{consumer!r} is not a pending consumer of grid slot {self.index}")
        self._pending.discard(consumer)
        if self.ready:
            self.grid = None
            self._event = None


class GridBufferPool:
    """Fixed set of grid slots handed out round-robin."""

    def __init__(self, num_slots: int = 2):
        if num_slots < 1:
            raise ValueError("GridBufferPool needs at least one slot")
        self.slots: List[GridSlot] = [GridSlot(i) for i in range(num_slots)]
        self._next = 0

    def acquire(self) -> GridSlot:
        """
        Return the next slot in turn.

        Raises:
            RuntimeError: if that slot's consumers have not completed
        """
        slot = self.slots[self._next]
        if not slot.ready:
            raise RuntimeError(
                f"Grid slot {slot.index} reused before {sorted(slot.pending)} completed"
            )
        self._next = (self._next + 1) % len(self.slots)
        logging.debug("Acquired grid slot %d", slot.index)
        return slot
