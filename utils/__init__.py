"""
utils: Logging, image I/O, statistics and reporting for segmentation evaluation
"""

from .image_io import (
    ground_truth_name,
    load_image_rgba,
    load_label_image,
    pair_with_ground_truth,
    save_class_id_image,
    save_image_rgba,
)
from .logging_setup import configure_logger
from .stats import compute_basic_stats, compute_confidence_interval, summarise_per_image

__all__ = [
    'ground_truth_name',
    'load_image_rgba',
    'load_label_image',
    'pair_with_ground_truth',
    'save_class_id_image',
    'save_image_rgba',
    'configure_logger',
    'compute_basic_stats',
    'compute_confidence_interval',
    'summarise_per_image',
]
