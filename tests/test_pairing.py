"""
Test image loading and source/ground-truth pairing
"""
import numpy as np
import pytest
import torch
from PIL import Image

from utils.image_io import (
    ground_truth_name,
    load_image_rgba,
    load_label_image,
    pair_with_ground_truth,
    save_class_id_image,
    save_image_rgba,
)


class TestGroundTruthName:

    def test_cityscapes_name(self):
        assert ground_truth_name("aachen_000000_000019_leftImg8bit.png") == \
            "aachen_000000_000019_gtFine_labelIds.png"

    def test_exact_suffix_length(self):
        assert ground_truth_name("leftImg8bit.png") == "gtFine_labelIds.png"

    def test_short_name(self):
        assert ground_truth_name("short.png") is None


class TestPairing:

    def test_pairs_sorted(self, tmp_path):
        images = tmp_path / "images"
        gt = tmp_path / "gt"
        images.mkdir()
        gt.mkdir()
        (images / "b_000001_leftImg8bit.png").touch()
        (images / "a_000001_leftImg8bit.png").touch()
        (images / "x.png").touch()
        (images / "nested").mkdir()

        pairs = pair_with_ground_truth(images, gt)

        assert [p[0].name for p in pairs] == ["a_000001_leftImg8bit.png", "b_000001_leftImg8bit.png"]
        assert pairs[0][1] == gt / "a_000001_gtFine_labelIds.png"

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            pair_with_ground_truth(tmp_path / "missing", tmp_path)
        with pytest.raises(FileNotFoundError):
            pair_with_ground_truth(tmp_path, tmp_path / "missing")


class TestImageIO:

    def test_load_rgb_as_rgba(self, tmp_path, write_rgb):
        path = write_rgb(tmp_path / "img.png", 5, 3, color=(10, 20, 30))
        image = load_image_rgba(path)
        assert image.shape == (3, 5, 4)
        assert image.dtype == np.float32
        assert image[0, 0].tolist() == [10.0, 20.0, 30.0, 255.0]

    def test_load_missing_image(self, tmp_path):
        with pytest.raises(OSError):
            load_image_rgba(tmp_path / "missing.png")

    def test_load_label_image(self, tmp_path, write_labels):
        labels = np.array([[0, 7], [26, 33]], dtype=np.uint8)
        path = write_labels(tmp_path / "gt.png", labels)
        np.testing.assert_array_equal(load_label_image(path), labels)

    def test_load_rgb_label_image_converted(self, tmp_path, write_rgb):
        path = write_rgb(tmp_path / "gt.png", 2, 2, color=(7, 7, 7))
        labels = load_label_image(path)
        assert labels.shape == (2, 2)
        assert np.all(labels == 7)

    def test_save_rgba(self, tmp_path):
        image = torch.full((2, 3, 4), 127.6)
        path = tmp_path / "out" / "overlay.png"
        save_image_rgba(image, path)
        with Image.open(path) as img:
            assert img.mode == "RGBA"
            assert img.size == (3, 2)
            assert img.getpixel((0, 0)) == (128, 128, 128, 128)

    def test_save_class_ids_keeps_indices(self, tmp_path):
        ids = np.array([[0, 1], [2, 40]], dtype=np.uint8)
        path = tmp_path / "pred.png"
        save_class_id_image(ids, path)
        np.testing.assert_array_equal(load_label_image(path), ids)
        with Image.open(path) as img:
            assert img.convert("L").getpixel((1, 0)) == 8
            assert img.convert("L").getpixel((1, 1)) == (40 * 8) % 256


if __name__ == "__main__":
    pytest.main([__file__])
