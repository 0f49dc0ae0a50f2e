"""
segmentation.palette: Per-class labels, overlay colors and alpha handling
"""
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np
import torch


Color = Tuple[float, float, float, float]

_RECORD_SPLIT = re.compile(r"[,\s]+")


@dataclass(frozen=True)
class ClassDefinition:
    """Snapshot of a single class entry."""

    id: int
    label: str
    color: Color
    alpha_explicit: bool = False


def synthesize_colors(num_classes: int) -> np.ndarray:
    """
    Generate a deterministic palette with a distinct color for every class id.

    Bits of the class id are spread over the high bits of the three channels
    (the PASCAL VOC scheme), so class 0 is black and neighbouring ids differ
    strongly.

    Args:
        num_classes: Number of colors to generate

    Returns:
        Array of shape (num_classes, 4) with opaque RGBA values in [0, 255]
    """
    colors = np.zeros((num_classes, 4), dtype=np.float32)
    for class_id in range(num_classes):
        r = g = b = 0
        c = class_id
        for bit in range(8):
            r |= ((c >> 0) & 1) << (7 - bit)
            g |= ((c >> 1) & 1) << (7 - bit)
            b |= ((c >> 2) & 1) << (7 - bit)
            c >>= 3
        colors[class_id] = (r, g, b, 255)
    return colors


def load_class_labels(path: Union[str, Path]) -> Optional[List[str]]:
    """Read one label per line; line index is the class id. Returns None if unreadable."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = [line.strip() for line in f.read().splitlines()]
    except OSError as err:
        logging.error("Failed to read class labels from %s: %s", path, err)
        return None

    # drop trailing blank lines only, inner blanks keep their class id
    while lines and not lines[-1]:
        lines.pop()
    return [label if label else f"class_{idx}" for idx, label in enumerate(lines)]


def load_class_colors(path: Union[str, Path]) -> Optional[List[Optional[Tuple[Color, bool]]]]:
    """
    Read one `r,g,b[,a]` record per line; line index is the class id.

    Returns:
        List of (color, alpha_explicit) per line, with None for blank or
        malformed lines, or None if the file cannot be read
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except OSError as err:
        logging.warning("Failed to read class colors from %s: %s", path, err)
        return None

    records: List[Optional[Tuple[Color, bool]]] = []
    for line_no, line in enumerate(lines, start=1):
        fields = [field for field in _RECORD_SPLIT.split(line.strip()) if field]
        if not fields:
            records.append(None)
            continue
        try:
            values = [float(field) for field in fields]
        except ValueError:
            logging.error("Malformed color record on line %d of %s: %r", line_no, path, line)
            records.append(None)
            continue
        if len(values) not in (3, 4) or not all(0.0 <= v <= 255.0 for v in values):
            logging.error("Invalid color record on line %d of %s: %r", line_no, path, line)
            records.append(None)
            continue
        alpha_explicit = len(values) == 4
        if not alpha_explicit:
            values.append(255.0)
        records.append((tuple(values), alpha_explicit))

    while records and records[-1] is None:
        records.pop()
    return records


class ClassPalette:
    """
    Labels, RGBA overlay colors and alpha flags for a fixed set of classes.

    The number of classes is fixed at construction. Colors are kept in a
    single (num_classes, 4) table and only exposed through accessors.
    """

    def __init__(
        self,
        labels: List[str],
        colors: Optional[np.ndarray] = None,
        alpha_explicit: Optional[List[bool]] = None,
    ):
        """
        Args:
            labels: Class labels, index is the class id
            colors: Optional (num_classes, 4) RGBA table; synthesized if None
            alpha_explicit: Optional per-class flags for explicitly set alpha
        """
        if not labels:
            raise ValueError("ClassPalette requires at least one class label")

        self._labels = list(labels)
        num_classes = len(self._labels)

        if colors is None:
            self._colors = synthesize_colors(num_classes)
        else:
            colors = np.asarray(colors, dtype=np.float32)
            if colors.shape != (num_classes, 4):
                raise ValueError(
                    f"Color table must have shape ({num_classes}, 4), got {colors.shape}"
                )
            if colors.min() < 0.0 or colors.max() > 255.0:
                raise ValueError("Color components must lie in [0, 255]")
            self._colors = colors.copy()

        if alpha_explicit is None:
            self._alpha_explicit = np.zeros(num_classes, dtype=bool)
        else:
            if len(alpha_explicit) != num_classes:
                raise ValueError("alpha_explicit must have one flag per class")
            self._alpha_explicit = np.asarray(alpha_explicit, dtype=bool).copy()

    @classmethod
    def from_files(
        cls,
        labels_path: Optional[Union[str, Path]],
        colors_path: Optional[Union[str, Path]] = None,
        num_classes: Optional[int] = None,
    ) -> "ClassPalette":
        """
        Build a palette from a label file and an optional color file.

        Args:
            labels_path: Text file with one class label per line
            colors_path: Optional text file with one `r,g,b[,a]` record per line
            num_classes: Class count of the model, if already known

        Returns:
            ClassPalette with exactly num_classes entries (or as many as the
            label file lists when num_classes is None)
        """
        labels = load_class_labels(labels_path) if labels_path else None

        if labels is None:
            if num_classes is None:
                raise ValueError("Cannot build a palette without labels or a class count")
            if labels_path:
                logging.error("Using generic class labels for %d classes", num_classes)
            labels = [f"class_{idx}" for idx in range(num_classes)]
        elif num_classes is not None:
            if len(labels) < num_classes:
                logging.warning(
                    "Label file %s lists %d labels for %d classes; padding",
                    labels_path, len(labels), num_classes,
                )
                labels += [f"class_{idx}" for idx in range(len(labels), num_classes)]
            elif len(labels) > num_classes:
                logging.warning(
                    "Label file %s lists %d labels for %d classes; truncating",
                    labels_path, len(labels), num_classes,
                )
                labels = labels[:num_classes]

        palette = cls(labels)
        logging.info("Loaded %d class labels", palette.num_classes)

        if colors_path is None:
            logging.info("No class color file given, using synthesized colors")
        else:
            palette.load_colors(colors_path)
        return palette

    def load_colors(self, colors_path: Union[str, Path]) -> bool:
        """
        Apply a color file on top of the current colors.

        Records that state an alpha mark their class alpha-explicit. Returns
        False, keeping the current colors, if the file cannot be read.
        """
        records = load_class_colors(colors_path)
        if records is None:
            logging.warning("Keeping synthesized colors")
            return False

        for class_id, record in enumerate(records):
            if record is None:
                continue
            if class_id >= self.num_classes:
                logging.warning(
                    "Color file %s has more records than classes (%d); ignoring the rest",
                    colors_path, self.num_classes,
                )
                break
            (r, g, b, a), alpha_explicit = record
            self._colors[class_id] = (r, g, b, a)
            self._alpha_explicit[class_id] = alpha_explicit
        logging.info("Loaded class colors from %s", colors_path)
        return True

    @property
    def num_classes(self) -> int:
        return len(self._labels)

    @property
    def labels(self) -> List[str]:
        return list(self._labels)

    @property
    def definitions(self) -> List[ClassDefinition]:
        return [
            ClassDefinition(
                id=idx,
                label=self._labels[idx],
                color=self.get_class_color(idx),
                alpha_explicit=bool(self._alpha_explicit[idx]),
            )
            for idx in range(self.num_classes)
        ]

    def _check_id(self, class_id: int) -> None:
        if not 0 <= class_id < self.num_classes:
            raise IndexError(f"Class id {class_id} out of range [0, {self.num_classes})")

    def get_class_color(self, class_id: int) -> Color:
        self._check_id(class_id)
        r, g, b, a = self._colors[class_id]
        return (float(r), float(g), float(b), float(a))

    def get_class_label(self, class_id: int) -> str:
        self._check_id(class_id)
        return self._labels[class_id]

    def is_alpha_explicit(self, class_id: int) -> bool:
        self._check_id(class_id)
        return bool(self._alpha_explicit[class_id])

    def find_class_id(self, label: Optional[str]) -> int:
        """Return the id of the first class with this label, or -1."""
        if label is None:
            return -1
        try:
            return self._labels.index(label)
        except ValueError:
            return -1

    def set_class_color(
        self,
        class_id: int,
        r: float,
        g: float,
        b: float,
        a: float = 255.0,
    ) -> bool:
        """
        Set a class color and mark its alpha as explicitly set.

        Returns:
            False (and leaves the palette untouched) if the id or a component
            is out of range
        """
        if not 0 <= class_id < self.num_classes:
            logging.error(
                "set_class_color: class id %d out of range (%d classes)", class_id, self.num_classes
            )
            return False
        if not all(0.0 <= v <= 255.0 for v in (r, g, b, a)):
            logging.error("set_class_color: components must lie in [0, 255], got %s", (r, g, b, a))
            return False

        self._colors[class_id] = (r, g, b, a)
        self._alpha_explicit[class_id] = True
        return True

    def set_global_alpha(self, alpha: float, explicit_exempt: bool = True) -> bool:
        """
        Set the alpha of every class color.

        Args:
            alpha: New alpha in [0, 255]
            explicit_exempt: Skip classes whose alpha was set explicitly
        """
        if not 0.0 <= alpha <= 255.0:
            logging.error("set_global_alpha: alpha must lie in [0, 255], got %s", alpha)
            return False

        if explicit_exempt:
            self._colors[~self._alpha_explicit, 3] = alpha
        else:
            self._colors[:, 3] = alpha
        return True

    def color_table(self, device: Union[str, torch.device] = "cpu") -> torch.Tensor:
        """Copy of the color table as a (num_classes, 4) float32 tensor on `device`."""
        return torch.tensor(self._colors, dtype=torch.float32, device=device)

    def __len__(self) -> int:
        return self.num_classes

    def __repr__(self) -> str:
        return f"ClassPalette(num_classes={self.num_classes})"
