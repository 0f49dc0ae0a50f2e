"""
segmentation: Class palettes, label remapping, class grids and overlay compositing
"""

from .buffers import ClassGrid, GridBufferPool, GridSlot
from .overlay import OverlayCompositor
from .palette import ClassDefinition, ClassPalette, synthesize_colors
from .remap import (
    BUILTIN_TABLES,
    CITYSCAPES_LABEL_TO_MODEL,
    CITYSCAPES_LABEL_TO_TRAIN_ID,
    UNMAPPED,
    LabelRemapper,
)

__all__ = [
    'ClassGrid',
    'GridBufferPool',
    'GridSlot',
    'OverlayCompositor',
    'ClassDefinition',
    'ClassPalette',
    'synthesize_colors',
    'BUILTIN_TABLES',
    'CITYSCAPES_LABEL_TO_MODEL',
    'CITYSCAPES_LABEL_TO_TRAIN_ID',
    'UNMAPPED',
    'LabelRemapper',
]
