import os
import sys
import unittest
from unittest.mock import patch

import numpy as np
from PIL import Image

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from image_enhancer import (
    ImageEnhancer,
    adaptive_threshold,
    binarize,
    gamma_curve,
    sigmoid_contrast,
    to_grayscale,
    unsharp_mask,
    upscale,
)


def _receipt_image(width=30, height=20):
    arr = np.full((height, width, 3), 235, dtype=np.uint8)
    arr[8:12, 5:25] = 20  # 文字の代わりの黒い帯
    return Image.fromarray(arr)


def test_grayscale_uses_luminance_weights():
    img = Image.fromarray(np.array([[[255, 0, 0], [0, 255, 0], [0, 0, 255]]], dtype=np.uint8))
    gray = to_grayscale(img)
    np.testing.assert_allclose(gray[0], [0.299 * 255, 0.587 * 255, 0.114 * 255])


def test_upscale_doubles_size():
    assert upscale(_receipt_image(), 2.0).size == (60, 40)


def test_adaptive_threshold_tolerates_uneven_lighting():
    gray = np.full((40, 40), 220.0)
    gray[:, :20] = 90.0  # 暗い左半分
    gray[20, 3] = 30.0   # 暗い領域の文字
    out = adaptive_threshold(gray, window=15, offset=15, min_threshold=50)
    assert out[20, 3] == 0
    assert out[20, 2] == 255   # 暗くても背景は白
    assert out[20, 35] == 255


def test_adaptive_threshold_floor():
    assert adaptive_threshold(np.full((5, 5), 40.0)).max() == 0
    assert adaptive_threshold(np.full((5, 5), 60.0)).min() == 255


def test_sigmoid_and_binarize():
    assert sigmoid_contrast(np.array([128.0]))[0] == 127.5
    np.testing.assert_array_equal(binarize(np.array([100.0, 141.0]), 140), [0, 255])


def test_unsharp_mask_keeps_flat_regions():
    np.testing.assert_allclose(unsharp_mask(np.full((5, 5), 100.0), 1.5), 100.0)


def test_gamma_endpoints():
    np.testing.assert_allclose(gamma_curve(np.array([0.0, 255.0]), 1.5), [0.0, 255.0])


class TestImageEnhancer(unittest.TestCase):
    """画像補正クラスのテスト"""

    def test_all_methods_render_upscaled_grayscale(self):
        renderings = ImageEnhancer().enhance(_receipt_image())

        self.assertEqual([r.method for r in renderings], ["standard", "high-contrast", "denoised"])
        for r in renderings:
            self.assertEqual(r.image.size, (60, 40))
            self.assertEqual(r.image.mode, "L")

    def test_binarized_methods_are_two_level(self):
        renderings = ImageEnhancer().enhance(_receipt_image())
        for r in renderings[:2]:
            values = set(np.unique(np.asarray(r.image)).tolist())
            self.assertTrue(values <= {0, 255}, r.method)
            self.assertIn(0, values, r.method)  # 文字が残っている

    def test_configured_methods_only(self):
        renderings = ImageEnhancer({"methods": ["denoised"], "scale": 1.0}).enhance(_receipt_image())
        self.assertEqual([r.method for r in renderings], ["denoised"])
        self.assertEqual(renderings[0].image.size, (30, 20))

    @patch('image_enhancer.to_grayscale', side_effect=ValueError("unsupported pixel format"))
    def test_falls_back_to_original_when_every_method_fails(self, _):
        source = _receipt_image()
        renderings = ImageEnhancer().enhance(source)

        self.assertEqual(len(renderings), 1)
        self.assertEqual(renderings[0].method, "original")
        self.assertIs(renderings[0].image, source)

    @patch('image_enhancer.sigmoid_contrast', side_effect=ValueError("boom"))
    def test_one_failing_method_is_skipped(self, _):
        renderings = ImageEnhancer().enhance(_receipt_image())
        self.assertEqual([r.method for r in renderings], ["standard", "denoised"])


if __name__ == '__main__':
    unittest.main()
