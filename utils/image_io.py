"""
utils.image_io: Image loading/saving and source/ground-truth pairing
"""
import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np
import torch
import torchvision.transforms as T
from PIL import Image


# Source images are named <prefix>leftImg8bit.png; the last 15 characters
# are replaced to get the ground-truth file name.
SOURCE_SUFFIX_LENGTH = 15
GROUND_TRUTH_SUFFIX = "gtFine_labelIds.png"

# Output name prefixes for written artefacts
OVERLAY_PREFIX = "networkOut_"
PREDICTION_MAP_PREFIX = "pred_"
GROUND_TRUTH_MAP_PREFIX = "gt_"

_to_tensor = T.PILToTensor()


def load_image_rgba(path: Union[str, Path]) -> np.ndarray:
    """
    Load an image as an RGBA float buffer.

    Args:
        path: Path to image file

    Returns:
        float32 array of shape (H, W, 4) with values in [0, 255]
    """
    try:
        with Image.open(path) as img:
            if img.mode != 'RGBA':
                img = img.convert('RGBA')
            tensor = _to_tensor(img)  # (4, H, W) uint8
    except Exception as e:
        logging.error("Failed to load image %s: %s", path, e)
        raise
    return tensor.permute(1, 2, 0).to(torch.float32).numpy()


def load_label_image(path: Union[str, Path]) -> np.ndarray:
    """
    Load a single-channel label image.

    Palette and 16-bit images keep their stored indices; RGB images are
    converted to grayscale.

    Returns:
        Integer array of shape (H, W)
    """
    try:
        with Image.open(path) as img:
            if img.mode not in ('L', 'P', 'I', 'I;16'):
                logging.warning("Ground truth %s has mode %s, converting to grayscale", path, img.mode)
                img = img.convert('L')
            labels = np.array(img)
    except Exception as e:
        logging.error("Failed to load ground truth %s: %s", path, e)
        raise
    return labels


def save_image_rgba(image: Union[np.ndarray, torch.Tensor], path: Union[str, Path]) -> None:
    """Save an (H, W, 4) float buffer in [0, 255] as an RGBA image."""
    if isinstance(image, torch.Tensor):
        image = image.detach().cpu().numpy()
    pixels = np.clip(np.rint(image), 0, 255).astype(np.uint8)
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(pixels).save(path)


def save_class_id_image(class_ids: Union[np.ndarray, torch.Tensor], path: Union[str, Path]) -> None:
    """
    Save class ids as an indexed PNG that keeps the raw ids.

    The palette shows id i as gray level (i * 8) mod 256.
    """
    if isinstance(class_ids, torch.Tensor):
        class_ids = class_ids.detach().cpu().numpy()
    ids = np.ascontiguousarray(class_ids, dtype=np.uint8)
    img = Image.frombytes('P', (ids.shape[1], ids.shape[0]), ids.tobytes())
    gray = [(i * 8) % 256 for i in range(256)]
    img.putpalette([level for g in gray for level in (g, g, g)])
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    img.save(path)


def ground_truth_name(image_name: str) -> Optional[str]:
    """
    Ground-truth file name paired with a source image name.

    `aachen_000000_000019_leftImg8bit.png` ->
    `aachen_000000_000019_gtFine_labelIds.png`. Names shorter than the
    suffix yield None.
    """
    if len(image_name) < SOURCE_SUFFIX_LENGTH:
        return None
    return image_name[:-SOURCE_SUFFIX_LENGTH] + GROUND_TRUTH_SUFFIX


def pair_with_ground_truth(image_dir: Path, ground_truth_dir: Path) -> List[Tuple[Path, Path]]:
    """
    Pair every file in `image_dir` with its ground truth in `ground_truth_dir`.

    The listing is not recursive. Existence of the ground-truth file is not
    checked here; a missing file surfaces when it is loaded.

    Returns:
        Sorted list of (image_path, ground_truth_path) tuples
    """
    image_dir = Path(image_dir)
    ground_truth_dir = Path(ground_truth_dir)
    if not image_dir.is_dir():
        raise FileNotFoundError(f"Image directory not found: {image_dir}")
    if not ground_truth_dir.is_dir():
        raise FileNotFoundError(f"Ground truth directory not found: {ground_truth_dir}")

    pairs: List[Tuple[Path, Path]] = []
    skipped = 0
    for image_path in sorted(p for p in image_dir.iterdir() if p.is_file()):
        gt_name = ground_truth_name(image_path.name)
        if gt_name is None:
            skipped += 1
            logging.debug("Skipping %s: name too short to derive a ground truth", image_path.name)
            continue
        pairs.append((image_path, ground_truth_dir / gt_name))

    logging.info("Paired %d images with ground truth (%d skipped)", len(pairs), skipped)
    return pairs
