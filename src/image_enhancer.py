"""
OCR前処理（画像補正）
1枚の画像から認識しやすい複数のレンダリングを作る
- standard: 輝度グレースケール + 適応的二値化（ムラのある照明向け）
- high-contrast: 急峻なシグモイド + 固定しきい値（薄い感熱紙向け）
- denoised: ガウシアン + アンシャープマスク + ガンマ（スマホ撮影のノイズ向け）
"""

import logging
from typing import Dict, List, Optional

import cv2
import numpy as np
from PIL import Image

from ocr_models import EnhancedRendering


logger = logging.getLogger(__name__)

LUMINANCE_WEIGHTS = (0.299, 0.587, 0.114)
GAUSSIAN_3X3 = np.array([1.0, 2.0, 1.0]) / 4.0  # 外積で [1,2,1]/16 相当


def to_grayscale(image: Image.Image) -> np.ndarray:
    """輝度加重のグレースケール (float64, 0-255)"""
    rgb = np.asarray(image.convert("RGB"), dtype=np.float64)
    r, g, b = LUMINANCE_WEIGHTS
    return rgb[..., 0] * r + rgb[..., 1] * g + rgb[..., 2] * b


def upscale(image: Image.Image, scale: float) -> Image.Image:
    if scale == 1:
        return image
    arr = np.asarray(image.convert("RGB"))
    h, w = arr.shape[:2]
    size = (max(1, int(round(w * scale))), max(1, int(round(h * scale))))
    resized = cv2.resize(arr, size, interpolation=cv2.INTER_CUBIC)
    return Image.fromarray(resized)


def adaptive_threshold(gray: np.ndarray, window: int = 15, offset: float = 15,
                       min_threshold: float = 50) -> np.ndarray:
    """局所平均 - offset を基準に二値化（画像外の画素は平均に含めない）"""
    h, w = gray.shape
    half = window // 2
    integral = np.zeros((h + 1, w + 1), dtype=np.float64)
    integral[1:, 1:] = gray.cumsum(axis=0).cumsum(axis=1)

    rows = np.arange(h)
    cols = np.arange(w)
    y0 = np.clip(rows - half, 0, h)
    y1 = np.clip(rows + half + 1, 0, h)
    x0 = np.clip(cols - half, 0, w)
    x1 = np.clip(cols + half + 1, 0, w)

    total = (integral[np.ix_(y1, x1)] - integral[np.ix_(y0, x1)]
             - integral[np.ix_(y1, x0)] + integral[np.ix_(y0, x0)])
    count = np.outer(y1 - y0, x1 - x0)
    mean = total / count
    threshold = np.maximum(mean - offset, min_threshold)
    return np.where(gray > threshold, 255, 0).astype(np.uint8)


def sigmoid_contrast(gray: np.ndarray, contrast: float = 3.0) -> np.ndarray:
    return 255.0 / (1.0 + np.exp(-contrast * (gray - 128.0) / 128.0))


def binarize(gray: np.ndarray, threshold: float) -> np.ndarray:
    return np.where(gray > threshold, 255, 0).astype(np.uint8)


def unsharp_mask(gray: np.ndarray, amount: float = 1.5) -> np.ndarray:
    blurred = cv2.sepFilter2D(gray, cv2.CV_64F, GAUSSIAN_3X3, GAUSSIAN_3X3,
                              borderType=cv2.BORDER_REPLICATE)
    return np.clip(gray + amount * (gray - blurred), 0, 255)


def gamma_curve(gray: np.ndarray, gamma: float = 1.5) -> np.ndarray:
    return 255.0 * np.power(gray / 255.0, 1.0 / gamma)


class ImageEnhancer:
    """画像補正クラス"""

    def __init__(self, config: Optional[Dict] = None):
        cfg = config or {}
        self.scale = float(cfg.get("scale", 2.0))
        self.methods = list(cfg.get("methods", ["standard", "high-contrast", "denoised"]))
        self.window = int(cfg.get("window", 15))
        self.offset = float(cfg.get("offset", 15))
        self.min_threshold = float(cfg.get("min_threshold", 50))
        self.contrast = float(cfg.get("contrast", 3.0))
        self.binary_threshold = float(cfg.get("binary_threshold", 140))
        self.unsharp_amount = float(cfg.get("unsharp_amount", 1.5))
        self.gamma = float(cfg.get("gamma", 1.5))
        self._renderers = {
            "standard": self._standard,
            "high-contrast": self._high_contrast,
            "denoised": self._denoised,
        }

    def enhance(self, image: Image.Image) -> List[EnhancedRendering]:
        """補正済みレンダリングを返す（全滅時は元画像のみ）"""
        renderings: List[EnhancedRendering] = []
        try:
            scaled = upscale(image, self.scale)
        except Exception as e:
            logger.warning("upscale failed, using source size: %s", e)
            scaled = image

        for method in self.methods:
            renderer = self._renderers.get(method)
            if renderer is None:
                logger.warning("unknown enhancement method '%s' skipped", method)
                continue
            try:
                out = renderer(scaled)
            except Exception as e:
                logger.warning("enhancement '%s' failed: %s", method, e)
                continue
            renderings.append(EnhancedRendering(image=Image.fromarray(out), method=method))

        if not renderings:
            logger.warning("all enhancement methods failed; falling back to the original image")
            renderings.append(EnhancedRendering(image=image, method="original"))
        return renderings

    def _standard(self, image: Image.Image) -> np.ndarray:
        gray = to_grayscale(image)
        return adaptive_threshold(gray, self.window, self.offset, self.min_threshold)

    def _high_contrast(self, image: Image.Image) -> np.ndarray:
        gray = to_grayscale(image)
        return binarize(sigmoid_contrast(gray, self.contrast), self.binary_threshold)

    def _denoised(self, image: Image.Image) -> np.ndarray:
        gray = to_grayscale(image)
        sharpened = unsharp_mask(gray, self.unsharp_amount)
        return np.clip(gamma_curve(sharpened, self.gamma), 0, 255).astype(np.uint8)
