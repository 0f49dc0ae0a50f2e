"""
segmentation.inference: Inference engines producing coarse class-score maps

Engines take an RGBA float image (H, W, 4) with values in [0, 255] and
return class scores at the model's own, usually reduced, resolution.
"""
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import torch

from .buffers import ClassGrid


SEGFORMER_MODEL_MAP: Dict[str, str] = {
    "segformer-b0": "nvidia/segformer-b0-finetuned-cityscapes-768-768",
    "segformer-b1": "nvidia/segformer-b1-finetuned-cityscapes-1024-1024",
    "segformer-b2": "nvidia/segformer-b2-finetuned-cityscapes-1024-1024",
    "segformer-b3": "nvidia/segformer-b3-finetuned-cityscapes-1024-1024",
    "segformer-b4": "nvidia/segformer-b4-finetuned-cityscapes-1024-1024",
    "segformer-b5": "nvidia/segformer-b5-finetuned-cityscapes-1024-1024",
}
DEFAULT_SEGFORMER_MODEL = "segformer-b0"

# ImageNet statistics on the [0, 255] scale
IMAGENET_MEAN = (0.485 * 255, 0.456 * 255, 0.406 * 255)
IMAGENET_STD = (0.229 * 255, 0.224 * 255, 0.225 * 255)


def resolve_device(device: Optional[str]) -> str:
    if device in (None, "auto"):
        return "cuda" if torch.cuda.is_available() else "cpu"
    return device


def _check_image(image: np.ndarray) -> np.ndarray:
    image = np.asarray(image, dtype=np.float32)
    if image.ndim != 3 or image.shape[2] != 4:
        raise ValueError(f"Input image must have shape (H, W, 4), got {image.shape}")
    if image.shape[0] <= 0 or image.shape[1] <= 0:
        raise ValueError("Input image is empty")
    return image


class InferenceEngine:
    """
    Base class for segmentation engines.

    Subclasses implement `_forward` on a normalised (B, 3, H, W) batch and
    return (B, C, h, w) scores.
    """

    def __init__(self, num_classes: int, max_batch_size: int = 1, device: Optional[str] = None):
        if num_classes < 1:
            raise ValueError("Engine must expose at least one class")
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        self.num_classes = num_classes
        self.max_batch_size = max_batch_size
        self.device = resolve_device(device)

    @property
    def class_labels(self) -> Optional[List[str]]:
        """Class labels shipped with the model, if any."""
        return None

    def preprocess(self, images: Sequence[np.ndarray]) -> torch.Tensor:
        """Drop alpha, normalise with ImageNet statistics, stack to (B, 3, H, W)."""
        batch = []
        for image in images:
            rgb = torch.from_numpy(np.array(image[..., :3], dtype=np.float32)).permute(2, 0, 1)
            batch.append(rgb)
        batch_tensor = torch.stack(batch).to(self.device)
        mean = torch.tensor(IMAGENET_MEAN, device=self.device).view(1, 3, 1, 1)
        std = torch.tensor(IMAGENET_STD, device=self.device).view(1, 3, 1, 1)
        return (batch_tensor - mean) / std

    def _forward(self, batch: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError

    def scores_batch(self, images: Sequence[np.ndarray]) -> torch.Tensor:
        """
        Run the model on up to `max_batch_size` images of one size.

        Returns:
            Scores of shape (B, num_classes, h, w) on the engine device
        """
        if not images:
            raise ValueError("No images given")
        if len(images) > self.max_batch_size:
            raise ValueError(
                f"Batch of {len(images)} exceeds max_batch_size={self.max_batch_size}"
            )
        checked = [_check_image(image) for image in images]
        if len({image.shape for image in checked}) != 1:
            raise ValueError("All images of a batch must share one size")

        with torch.no_grad():
            scores = self._forward(self.preprocess(checked))

        if scores.dim() != 4 or scores.size(1) != self.num_classes:
            raise RuntimeError(
                f"Model returned scores of shape {tuple(scores.shape)}, "
                f"expected (B, {self.num_classes}, h, w)"
            )
        return scores

    def scores(self, image: np.ndarray) -> torch.Tensor:
        """Class scores (num_classes, h, w) for one image."""
        return self.scores_batch([image])[0]

    def classify(self, image: np.ndarray) -> ClassGrid:
        """Argmax of the class scores as a ClassGrid."""
        return ClassGrid.from_scores(self.scores(image))


class SegFormerEngine(InferenceEngine):
    """SegFormer from HuggingFace transformers; scores come out at 1/4 resolution."""

    def __init__(
        self,
        model_name: str = DEFAULT_SEGFORMER_MODEL,
        device: Optional[str] = None,
        max_batch_size: int = 2,
        cache_dir: Optional[Path] = None,
    ):
        """
        Args:
            model_name: Key of SEGFORMER_MODEL_MAP or a HuggingFace model identifier
            device: 'cuda', 'cpu' or None/'auto' to auto-detect
            max_batch_size: Largest batch accepted by scores_batch
            cache_dir: Optional directory to cache downloaded models
        """
        try:
            from transformers import SegformerForSemanticSegmentation
        except ModuleNotFoundError as exc:  # pragma: no cover - import guard
            raise ModuleNotFoundError(
                "SegFormerEngine requires the 'transformers' package."
                " Install via 'pip install transformers'."
            ) from exc

        model_id = SEGFORMER_MODEL_MAP.get(model_name, model_name)
        logging.info("Initializing SegFormer (%s)...", model_id)

        try:
            logging.debug("Attempting to load %s from cache...", model_id)
            model = SegformerForSemanticSegmentation.from_pretrained(
                model_id, cache_dir=cache_dir, local_files_only=True
            )
        except OSError as e:
            logging.debug("Cache miss (%s). Downloading model...", e)
            model = SegformerForSemanticSegmentation.from_pretrained(model_id, cache_dir=cache_dir)

        super().__init__(model.config.num_labels, max_batch_size=max_batch_size, device=device)
        self.model = model.to(self.device)
        self.model.eval()
        self._labels = [model.config.id2label[i] for i in range(self.num_classes)]
        logging.info("Model loaded with %d classes on %s", self.num_classes, self.device)

    @property
    def class_labels(self) -> Optional[List[str]]:
        return list(self._labels)

    def _forward(self, batch: torch.Tensor) -> torch.Tensor:
        return self.model(pixel_values=batch).logits


class TorchScriptEngine(InferenceEngine):
    """Any TorchScript model mapping (B, 3, H, W) to (B, C, h, w) scores."""

    def __init__(
        self,
        model_path: Union[str, Path],
        device: Optional[str] = None,
        max_batch_size: int = 2,
        num_classes: Optional[int] = None,
    ):
        device = resolve_device(device)
        model_path = Path(model_path)
        if not model_path.exists():
            raise FileNotFoundError(f"TorchScript model not found: {model_path}")

        logging.info("Loading TorchScript model %s on %s...", model_path, device)
        model = torch.jit.load(str(model_path), map_location=device)
        model.eval()

        if num_classes is None:
            num_classes = int(getattr(model, "num_classes", 0))
        if not num_classes:
            raise ValueError(
                "TorchScript model does not expose 'num_classes'; pass num_classes explicitly"
            )
        super().__init__(num_classes, max_batch_size=max_batch_size, device=device)
        self.model = model

    def _forward(self, batch: torch.Tensor) -> torch.Tensor:
        output = self.model(batch)
        if isinstance(output, dict):
            output = output["out"]
        return output


def build_engine(
    engine: str,
    model: Optional[str] = None,
    device: Optional[str] = None,
    max_batch_size: int = 2,
    num_classes: Optional[int] = None,
    cache_dir: Optional[Path] = None,
) -> InferenceEngine:
    """Instantiate an engine by name ('segformer' or 'torchscript')."""
    if engine == "segformer":
        return SegFormerEngine(
            model_name=model or DEFAULT_SEGFORMER_MODEL,
            device=device,
            max_batch_size=max_batch_size,
            cache_dir=cache_dir,
        )
    if engine == "torchscript":
        if not model:
            raise ValueError("The torchscript engine requires a model path")
        return TorchScriptEngine(model, device=device, max_batch_size=max_batch_size, num_classes=num_classes)
    raise ValueError(f"Unsupported engine: {engine}. Choose 'segformer' or 'torchscript'.")
