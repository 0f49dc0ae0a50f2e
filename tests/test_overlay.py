"""
Test grid upsampling, overlay blending and class-id output
"""
import numpy as np
import pytest
import torch

from segmentation.buffers import ClassGrid
from segmentation.overlay import OverlayCompositor, nearest_indices
from segmentation.palette import ClassPalette


@pytest.fixture
def compositor():
    palette = ClassPalette(["void", "road", "car"])
    palette.set_class_color(1, 255, 0, 0, 255)
    palette.set_class_color(2, 0, 0, 255, 0)
    return OverlayCompositor(palette)


@pytest.fixture
def source():
    rng = np.random.default_rng(0)
    image = rng.integers(0, 256, size=(4, 4, 4)).astype(np.float32)
    image[..., 3] = 77.0
    return image


class TestUpsample:

    def test_nearest_indices(self):
        assert nearest_indices(2, 4).tolist() == [0, 0, 1, 1]
        assert nearest_indices(3, 7).tolist() == [0, 0, 0, 1, 1, 2, 2]

    def test_quadrants(self, compositor):
        grid = ClassGrid.from_array([[1, 1], [2, 2]])
        expected = [[1, 1, 1, 1], [1, 1, 1, 1], [2, 2, 2, 2], [2, 2, 2, 2]]
        assert compositor.upsample(grid, 4, 4).tolist() == expected

    def test_columns(self, compositor):
        grid = ClassGrid.from_array([[0, 1]])
        assert compositor.upsample(grid, 4, 2).tolist() == [[0, 0, 1, 1], [0, 0, 1, 1]]

    def test_invalid_dimensions(self, compositor):
        grid = ClassGrid.from_array([[1]])
        with pytest.raises(ValueError):
            compositor.upsample(grid, 0, 4)
        with pytest.raises(ValueError):
            compositor.upsample(grid, 4, -1)


class TestOverlay:

    def test_ignore_class_is_bit_exact(self, compositor, source):
        grid = ClassGrid.from_array([[0, 0], [0, 0]])
        out = compositor.overlay(source, grid, ignore_class="void")
        assert torch.equal(out, torch.from_numpy(source))

    def test_opaque_color_replaces_source(self, compositor, source):
        grid = ClassGrid.from_array([[1, 1], [1, 1]])
        out = compositor.overlay(source, grid, ignore_class="void")
        assert torch.all(out[..., 0] == 255.0)
        assert torch.all(out[..., 1:3] == 0.0)
        assert torch.all(out[..., 3] == 255.0)

    def test_transparent_color_keeps_rgb(self, compositor, source):
        grid = ClassGrid.from_array([[2, 2], [2, 2]])
        out = compositor.overlay(source, grid, ignore_class="void")
        assert torch.allclose(out[..., :3], torch.from_numpy(source[..., :3]))
        assert torch.all(out[..., 3] == 255.0)

    def test_partial_alpha_blend(self, compositor):
        compositor.palette.set_class_color(1, 200, 100, 0, 102)
        image = np.full((2, 2, 4), 50.0, dtype=np.float32)
        out = compositor.overlay(image, ClassGrid.from_array([[1]]), ignore_class=None)
        a = 102 / 255.0
        expected = torch.tensor([200 * a + 50 * (1 - a), 100 * a + 50 * (1 - a), 50 * (1 - a), 255.0])
        assert torch.allclose(out[0, 0], expected, atol=1e-4)

    def test_no_ignore_class_blends_void(self, compositor, source):
        grid = ClassGrid.from_array([[0]])
        out = compositor.overlay(source, grid, ignore_class=None)
        assert torch.all(out[..., 3] == 255.0)

    def test_writes_into_dest(self, compositor, source):
        dest = torch.zeros(4, 4, 4)
        out = compositor.overlay(source, ClassGrid.from_array([[1]]), dest=dest)
        assert out is dest
        assert torch.all(dest[..., 0] == 255.0)

    def test_errors(self, compositor, source):
        with pytest.raises(ValueError):
            compositor.overlay(None, ClassGrid.from_array([[1]]))
        with pytest.raises(ValueError):
            compositor.overlay(source[..., :3], ClassGrid.from_array([[1]]))
        with pytest.raises(ValueError):
            compositor.overlay(source, ClassGrid.from_array([[5]]))
        with pytest.raises(ValueError):
            compositor.overlay(source, ClassGrid.from_array([[1]]), dest=torch.zeros(2, 2, 4))


class TestForwardResult:

    def test_class_ids(self, compositor):
        grid = ClassGrid.from_array([[1, 2], [0, 1]])
        out = compositor.forward_result(grid, 4, 2)
        assert out.dtype == torch.uint8
        assert out.tolist() == [[1, 1, 2, 2], [0, 0, 1, 1]]

    def test_dest(self, compositor):
        dest = torch.zeros(2, 2, dtype=torch.uint8)
        compositor.forward_result(ClassGrid.from_array([[2]]), 2, 2, dest=dest)
        assert dest.tolist() == [[2, 2], [2, 2]]

    def test_out_of_range_id(self, compositor):
        with pytest.raises(ValueError):
            compositor.forward_result(ClassGrid.from_array([[3]]), 2, 2)


class TestDrawInColor:

    def test_colors(self, compositor):
        colored = compositor.draw_in_color(np.array([[1, 2]]))
        assert colored[0, 0].tolist() == [255.0, 0.0, 0.0, 255.0]
        assert colored[0, 1].tolist() == [0.0, 0.0, 255.0, 0.0]

    def test_rejects_non_2d(self, compositor):
        with pytest.raises(ValueError):
            compositor.draw_in_color(np.zeros((2, 2, 2), dtype=np.int64))


if __name__ == "__main__":
    pytest.main([__file__])
