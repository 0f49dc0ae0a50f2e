"""
segmentation.remap: Ground-truth label id to model class id lookup
"""
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np


# Returned for raw ids outside the declared domain. Never a valid target, so
# accumulators drop it even with 256 classes.
UNMAPPED = 255

# Raw Cityscapes labelIds (cityscapesScripts helpers/labels.py) onto the
# 21-class road-scene model. Unused and ignored labels collapse to 0, as do
# two-wheelers, which the model has no class for.
CITYSCAPES_LABEL_TO_MODEL: Mapping[int, int] = MappingProxyType({
    0: 0,    # unlabeled
    1: 0,    # ego vehicle
    2: 0,    # rectification border
    3: 0,    # out of roi
    4: 0,    # static
    5: 1,    # dynamic
    6: 2,    # ground
    7: 3,    # road
    8: 4,    # sidewalk
    9: 5,    # parking
    10: 0,   # rail track
    11: 6,   # building
    12: 7,   # wall
    13: 8,   # fence
    14: 9,   # guard rail
    15: 10,  # bridge
    16: 10,  # tunnel
    17: 11,  # pole
    18: 0,   # polegroup
    19: 12,  # traffic light
    20: 13,  # traffic sign
    21: 14,  # vegetation
    22: 15,  # terrain
    23: 16,  # sky
    24: 17,  # person
    25: 0,   # rider
    26: 18,  # car
    27: 19,  # truck
    28: 19,  # bus
    29: 0,   # caravan
    30: 0,   # trailer
    31: 0,   # train
    32: 0,   # motorcycle
    33: 0,   # bicycle
})

# The 19 evaluated Cityscapes labelIds onto their trainIds, the class order of
# the public Cityscapes checkpoints (SegFormer and most others). Ignored labels
# are outside the domain and never enter the confusion matrix.
CITYSCAPES_LABEL_TO_TRAIN_ID: Mapping[int, int] = MappingProxyType({
    7: 0,    # road
    8: 1,    # sidewalk
    11: 2,   # building
    12: 3,   # wall
    13: 4,   # fence
    17: 5,   # pole
    19: 6,   # traffic light
    20: 7,   # traffic sign
    21: 8,   # vegetation
    22: 9,   # terrain
    23: 10,  # sky
    24: 11,  # person
    25: 12,  # rider
    26: 13,  # car
    27: 14,  # truck
    28: 15,  # bus
    31: 16,  # train
    32: 17,  # motorcycle
    33: 18,  # bicycle
})


@dataclass(frozen=True)
class BuiltinTable:
    """A shipped remap table and the model class layout it targets."""

    name: str
    table: Mapping[int, int]
    domain: Tuple[int, ...]
    num_classes: int
    # model class id -> label the model must report for it
    anchors: Mapping[int, str]

    def matches(self, num_classes: int, labels: Optional[Sequence[str]] = None) -> bool:
        """
        True if a model with this class count and label order is the target.

        Without labels only the class count can be checked.
        """
        if num_classes != self.num_classes:
            return False
        if not labels:
            return True
        return all(
            class_id < len(labels) and normalize_label(labels[class_id]) == label
            for class_id, label in self.anchors.items()
        )


BUILTIN_TABLES: Mapping[str, BuiltinTable] = MappingProxyType({
    "cityscapes-21": BuiltinTable(
        name="cityscapes-21",
        table=CITYSCAPES_LABEL_TO_MODEL,
        domain=tuple(range(34)),
        num_classes=21,
        anchors=MappingProxyType({3: "road", 4: "sidewalk", 17: "person", 18: "car"}),
    ),
    "cityscapes-trainid": BuiltinTable(
        name="cityscapes-trainid",
        table=CITYSCAPES_LABEL_TO_TRAIN_ID,
        domain=tuple(sorted(CITYSCAPES_LABEL_TO_TRAIN_ID)),
        num_classes=19,
        anchors=MappingProxyType({0: "road", 1: "sidewalk", 11: "person", 13: "car"}),
    ),
})


def normalize_label(label: str) -> str:
    return " ".join(label.lower().replace("_", " ").replace("-", " ").split())


class LabelRemapper:
    """
    Immutable raw-label to model-class table.

    The table must cover every id of its declared domain. Ids outside the
    domain resolve to UNMAPPED so the accumulator can drop them.
    """

    def __init__(self, table: Mapping[int, int], domain: Optional[Iterable[int]] = None):
        """
        Args:
            table: Mapping raw label id -> model class id
            domain: Raw ids the table must cover; defaults to 0..max(table)
        """
        if not table:
            raise ValueError("Remap table must not be empty")

        entries = {}
        for raw_id, class_id in table.items():
            raw_id, class_id = int(raw_id), int(class_id)
            if raw_id < 0:
                raise ValueError(f"Raw label id must be non-negative, got {raw_id}")
            if not 0 <= class_id < UNMAPPED:
                raise ValueError(
                    f"Raw label {raw_id} maps to {class_id}, expected a class id in [0, {UNMAPPED})"
                )
            entries[raw_id] = class_id

        declared = sorted({int(i) for i in domain}) if domain is not None else list(range(max(entries) + 1))
        missing = [raw_id for raw_id in declared if raw_id not in entries]
        if missing:
            raise ValueError(f"Remap table does not cover raw label ids {missing}")
        extra = sorted(set(entries) - set(declared))
        if extra:
            logging.warning("Remap entries outside the declared domain are ignored: %s", extra)
            for raw_id in extra:
                del entries[raw_id]

        self._table: Mapping[int, int] = MappingProxyType(entries)
        self._domain = tuple(declared)

        self._lut = np.full(max(max(declared) + 1, 256), UNMAPPED, dtype=np.uint8)
        for raw_id, class_id in entries.items():
            self._lut[raw_id] = class_id

    @classmethod
    def builtin(cls, name: str) -> "LabelRemapper":
        """Remapper for one of BUILTIN_TABLES."""
        try:
            entry = BUILTIN_TABLES[name]
        except KeyError:
            raise ValueError(
                f"Unknown remap table {name!r}, choose one of {sorted(BUILTIN_TABLES)}"
            ) from None
        return cls(entry.table, domain=entry.domain)

    @classmethod
    def cityscapes(cls) -> "LabelRemapper":
        return cls.builtin("cityscapes-21")

    @classmethod
    def cityscapes_train_ids(cls) -> "LabelRemapper":
        return cls.builtin("cityscapes-trainid")

    @classmethod
    def from_config(
        cls,
        mapping: Mapping[Union[str, int], Union[str, int]],
        domain: Optional[Iterable[int]] = None,
    ) -> "LabelRemapper":
        """Build from a YAML/JSON mapping whose keys may be strings."""
        try:
            table = {int(raw_id): int(class_id) for raw_id, class_id in mapping.items()}
        except (TypeError, ValueError) as err:
            raise ValueError(f"Remap config must map integer ids to integer ids: {err}") from err
        return cls(table, domain=domain)

    @property
    def table(self) -> Mapping[int, int]:
        return self._table

    @property
    def domain(self) -> tuple:
        return self._domain

    def remap(self, raw_id: int) -> int:
        """Model class id for a raw label id, UNMAPPED outside the domain."""
        return self._table.get(int(raw_id), UNMAPPED)

    def remap_image(self, labels: np.ndarray) -> np.ndarray:
        """
        Remap an integer label image.

        Args:
            labels: Integer array of raw label ids, any shape

        Returns:
            uint8 array of the same shape with model class ids or UNMAPPED
        """
        labels = np.asarray(labels)
        if not np.issubdtype(labels.dtype, np.integer):
            raise ValueError(f"Label image must have an integer dtype, got {labels.dtype}")
        if labels.dtype == np.uint8:
            return self._lut[labels]

        out_of_range = (labels < 0) | (labels >= self._lut.size)
        safe = np.where(out_of_range, 0, labels)
        remapped = self._lut[safe]
        remapped[out_of_range] = UNMAPPED
        return remapped

    def unreachable_ids(self, num_classes: int) -> List[int]:
        """Raw ids in the domain whose class id is not below `num_classes`."""
        return [raw_id for raw_id, class_id in sorted(self._table.items()) if class_id >= num_classes]

    def __len__(self) -> int:
        return len(self._table)

    def __repr__(self) -> str:
        return f"LabelRemapper(domain=0..{max(self._domain)}, entries={len(self)})"
