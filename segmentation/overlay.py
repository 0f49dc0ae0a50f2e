"""
segmentation.overlay: Full-resolution overlays from coarse class grids
"""
from typing import Optional, Tuple, Union

import numpy as np
import torch

from .buffers import ClassGrid
from .palette import ClassPalette


ArrayLike = Union[np.ndarray, torch.Tensor]


def nearest_indices(
    grid_size: int,
    size: int,
    device: Union[str, torch.device] = "cpu",
) -> torch.Tensor:
    """Cell index for every output coordinate: floor(i * grid_size / size)."""
    return torch.div(
        torch.arange(size, device=device, dtype=torch.long) * grid_size,
        size,
        rounding_mode="floor",
    )


def _as_tensor(image: ArrayLike, device: torch.device) -> torch.Tensor:
    if isinstance(image, np.ndarray):
        image = torch.from_numpy(np.array(image, dtype=np.float32))
    return image.to(device=device, dtype=torch.float32)


class OverlayCompositor:
    """
    Upsample class grids to image resolution and render them.

    Upsampling is nearest neighbour with integer floor division so that no
    pixel takes a class from a neighbouring cell.
    """

    def __init__(self, palette: ClassPalette):
        self.palette = palette

    def upsample(self, grid: ClassGrid, width: int, height: int) -> torch.Tensor:
        """
        Nearest-neighbour upsampling of a class grid.

        Args:
            grid: Coarse class grid
            width: Output width in pixels
            height: Output height in pixels

        Returns:
            Long tensor of shape (height, width) on the grid's device
        """
        if width <= 0 or height <= 0:
            raise ValueError(f"Output dimensions must be positive, got {width}x{height}")
        if grid.width <= 0 or grid.height <= 0:
            raise ValueError("Class grid is empty")

        xs = nearest_indices(grid.width, width, grid.device)
        ys = nearest_indices(grid.height, height, grid.device)
        return grid.cells.long()[ys[:, None], xs[None, :]]

    def _check_ids(self, class_map: torch.Tensor) -> None:
        if class_map.numel() and (class_map.min() < 0 or class_map.max() >= self.palette.num_classes):
            raise ValueError(
                f"Class ids must lie in [0, {self.palette.num_classes}), "
                f"got [{int(class_map.min())}, {int(class_map.max())}]"
            )

    @staticmethod
    def _check_dest(dest: Optional[torch.Tensor], shape: Tuple[int, ...]) -> None:
        if dest is not None and tuple(dest.shape) != shape:
            raise ValueError(f"Destination buffer must have shape {shape}, got {tuple(dest.shape)}")

    def overlay(
        self,
        source: ArrayLike,
        grid: ClassGrid,
        ignore_class: Optional[str] = "void",
        dest: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        """
        Alpha-blend the class colors over the source image.

        Pixels whose class is `ignore_class` are copied from the source
        unchanged. All other pixels get
        `color.rgb * a / 255 + source.rgb * (1 - a / 255)` with alpha 255.

        Args:
            source: RGBA image of shape (H, W, 4) with values in [0, 255]
            grid: Coarse class grid
            ignore_class: Label of the class to leave untouched, or None
            dest: Optional pre-allocated (H, W, 4) float32 tensor

        Returns:
            The (H, W, 4) float32 overlay (``dest`` if given)
        """
        if source is None:
            raise ValueError("Source image is not allocated")
        src = _as_tensor(source, grid.device)
        if src.dim() != 3 or src.size(2) != 4:
            raise ValueError(f"Source image must have shape (H, W, 4), got {tuple(src.shape)}")
        height, width = int(src.size(0)), int(src.size(1))
        self._check_dest(dest, (height, width, 4))

        class_map = self.upsample(grid, width, height)
        self._check_ids(class_map)

        colors = self.palette.color_table(grid.device)[class_map]
        alpha = colors[..., 3:4] / 255.0
        blended = torch.empty_like(src)
        blended[..., :3] = colors[..., :3] * alpha + src[..., :3] * (1.0 - alpha)
        blended[..., 3] = 255.0

        ignore_id = self.palette.find_class_id(ignore_class)
        if ignore_id >= 0:
            keep = (class_map == ignore_id).unsqueeze(-1)
            blended = torch.where(keep, src, blended)

        if dest is None:
            return blended
        dest.copy_(blended)
        return dest

    def forward_result(
        self,
        grid: ClassGrid,
        width: int,
        height: int,
        dest: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        """
        Upsample a grid to a full-resolution 8-bit class-id image.

        Args:
            grid: Coarse class grid
            width: Output width in pixels
            height: Output height in pixels
            dest: Optional pre-allocated (height, width) uint8 tensor

        Returns:
            uint8 tensor of shape (height, width)
        """
        self._check_dest(dest, (height, width))
        class_map = self.upsample(grid, width, height)
        self._check_ids(class_map)
        if self.palette.num_classes > 256:
            raise ValueError("8-bit class-id output supports at most 256 classes")

        ids = class_map.to(torch.uint8)
        if dest is None:
            return ids
        dest.copy_(ids)
        return dest

    def draw_in_color(
        self,
        class_map: ArrayLike,
        dest: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        """Colorize a full-resolution class-id map with the palette colors (RGBA)."""
        if isinstance(class_map, np.ndarray):
            class_map = torch.from_numpy(np.array(class_map, dtype=np.int64))
        if class_map.dim() != 2:
            raise ValueError(f"Class map must be 2D, got shape {tuple(class_map.shape)}")
        class_map = class_map.long()
        self._check_ids(class_map)
        self._check_dest(dest, (*class_map.shape, 4))

        colored = self.palette.color_table(class_map.device)[class_map]
        if dest is None:
            return colored
        dest.copy_(colored)
        return dest
