"""
Test class palette loading and color handling
"""
import logging

import numpy as np
import pytest
import torch

from segmentation.palette import (
    ClassPalette,
    load_class_colors,
    load_class_labels,
    synthesize_colors,
)


@pytest.fixture
def palette():
    return ClassPalette(["void", "road", "car"])


class TestSynthesizeColors:

    def test_shape_and_opacity(self):
        colors = synthesize_colors(21)
        assert colors.shape == (21, 4)
        assert np.all(colors[:, 3] == 255)

    def test_background_black_and_distinct(self):
        colors = synthesize_colors(21)
        assert tuple(colors[0, :3]) == (0, 0, 0)
        assert len({tuple(c) for c in colors[:, :3]}) == 21

    def test_voc_scheme(self):
        colors = synthesize_colors(3)
        assert tuple(colors[1, :3]) == (128, 0, 0)
        assert tuple(colors[2, :3]) == (0, 128, 0)


class TestFileLoading:

    def test_labels_one_per_line(self, tmp_path):
        path = tmp_path / "labels.txt"
        path.write_text("void\nroad\n\ncar\n\n")
        assert load_class_labels(path) == ["void", "road", "class_2", "car"]

    def test_missing_labels_file(self, tmp_path, caplog):
        with caplog.at_level(logging.ERROR):
            assert load_class_labels(tmp_path / "missing.txt") is None
        assert "Failed to read class labels" in caplog.text

    def test_colors_with_and_without_alpha(self, tmp_path):
        path = tmp_path / "colors.txt"
        path.write_text("0,0,0\n128 64 128 200\nnot a color\n1,2,3\n")
        records = load_class_colors(path)
        assert records[0] == ((0.0, 0.0, 0.0, 255.0), False)
        assert records[1] == ((128.0, 64.0, 128.0, 200.0), True)
        assert records[2] is None

    def test_color_out_of_range_rejected(self, tmp_path):
        path = tmp_path / "colors.txt"
        path.write_text("300,0,0\n")
        assert load_class_colors(path) == []


class TestFromFiles:

    def test_pads_to_model_class_count(self, tmp_path):
        path = tmp_path / "labels.txt"
        path.write_text("void\nroad\n")
        palette = ClassPalette.from_files(path, num_classes=4)
        assert palette.num_classes == 4
        assert palette.get_class_label(3) == "class_3"

    def test_truncates_to_model_class_count(self, tmp_path):
        path = tmp_path / "labels.txt"
        path.write_text("a\nb\nc\nd\n")
        assert ClassPalette.from_files(path, num_classes=2).labels == ["a", "b"]

    def test_missing_labels_fall_back_to_generic(self, tmp_path):
        palette = ClassPalette.from_files(tmp_path / "missing.txt", num_classes=3)
        assert palette.labels == ["class_0", "class_1", "class_2"]

    def test_no_labels_and_no_count(self):
        with pytest.raises(ValueError):
            ClassPalette.from_files(None)

    def test_color_file_marks_alpha_explicit(self, tmp_path):
        labels = tmp_path / "labels.txt"
        labels.write_text("void\nroad\ncar\n")
        colors = tmp_path / "colors.txt"
        colors.write_text("0,0,0\n128,64,128,200\n")
        palette = ClassPalette.from_files(labels, colors)

        assert palette.get_class_color(1) == (128.0, 64.0, 128.0, 200.0)
        assert palette.is_alpha_explicit(1)
        assert not palette.is_alpha_explicit(0)
        # class without a record keeps its synthesized color
        assert palette.get_class_color(2) == (0.0, 128.0, 0.0, 255.0)

    def test_unreadable_color_file_keeps_colors(self, palette, tmp_path):
        before = palette.color_table().clone()
        assert palette.load_colors(tmp_path / "missing.txt") is False
        assert torch.equal(palette.color_table(), before)


class TestClassPalette:

    def test_accessors(self, palette):
        assert palette.num_classes == 3
        assert len(palette) == 3
        assert palette.get_class_label(2) == "car"
        assert palette.find_class_id("road") == 1
        assert palette.find_class_id("bus") == -1
        assert palette.find_class_id(None) == -1

    def test_out_of_range_accessors(self, palette):
        with pytest.raises(IndexError):
            palette.get_class_color(3)
        with pytest.raises(IndexError):
            palette.get_class_label(-1)

    def test_set_class_color(self, palette):
        assert palette.set_class_color(2, 10, 20, 30, 40)
        assert palette.get_class_color(2) == (10.0, 20.0, 30.0, 40.0)
        assert palette.is_alpha_explicit(2)

    def test_set_class_color_out_of_range_is_noop(self, palette, caplog):
        before = palette.color_table().clone()
        with caplog.at_level(logging.ERROR):
            assert palette.set_class_color(3, 1, 2, 3) is False
        assert torch.equal(palette.color_table(), before)
        assert "out of range" in caplog.text

    def test_global_alpha_respects_explicit(self, palette):
        palette.set_class_color(1, 1, 2, 3, 200)
        palette.set_global_alpha(120)
        assert palette.get_class_color(0)[3] == 120
        assert palette.get_class_color(1)[3] == 200
        assert palette.get_class_color(2)[3] == 120

    def test_global_alpha_overrides_all(self, palette):
        palette.set_class_color(1, 1, 2, 3, 200)
        palette.set_global_alpha(50, explicit_exempt=False)
        assert all(d.color[3] == 50 for d in palette.definitions)

    def test_global_alpha_out_of_range(self, palette):
        assert palette.set_global_alpha(300) is False
        assert palette.get_class_color(1)[3] == 255

    def test_definitions(self, palette):
        definitions = palette.definitions
        assert [d.id for d in definitions] == [0, 1, 2]
        assert definitions[1].label == "road"

    def test_color_table(self, palette):
        table = palette.color_table()
        assert table.shape == (3, 4)
        assert table.dtype == torch.float32

    def test_invalid_construction(self):
        with pytest.raises(ValueError):
            ClassPalette([])
        with pytest.raises(ValueError):
            ClassPalette(["a", "b"], colors=np.zeros((3, 4)))


if __name__ == "__main__":
    pytest.main([__file__])
