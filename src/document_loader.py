"""
ドキュメント受付と読み込み戦略
受付チェック（形式・サイズ）の後、戦略リストを順に試して最初に成功した認識結果を使う
画像: 補正画像 → 元画像
PDF : 埋め込みテキスト → 1ページ目をラスタライズして補正 → ラスタ元画像 → 短い埋め込みテキスト
"""

import logging
import os
from io import BytesIO
from typing import Callable, Dict, List, Optional, Tuple

import pdfplumber
from pdf2image import convert_from_bytes
from PIL import Image

from errors import AllRenderingsFailed, DocumentTooLarge, RasterizationFailed, UnsupportedMediaType
from image_enhancer import ImageEnhancer
from ocr_models import EnhancedRendering, SourceDocument, Transcript
from recognition_adapter import RecognitionAdapter


logger = logging.getLogger(__name__)

IMAGE_MEDIA_TYPES = {
    "image/jpeg", "image/jpg", "image/png", "image/gif", "image/bmp", "image/webp",
    "image/tiff", "image/tif", "image/svg+xml", "image/x-icon", "image/vnd.microsoft.icon",
    "image/avif", "image/heic", "image/heif",
}
PDF_MEDIA_TYPE = "application/pdf"

EXTENSION_MEDIA_TYPES = {
    ".jpg": "image/jpeg", ".jpeg": "image/jpeg", ".png": "image/png", ".gif": "image/gif",
    ".bmp": "image/bmp", ".webp": "image/webp", ".tif": "image/tiff", ".tiff": "image/tiff",
    ".svg": "image/svg+xml", ".ico": "image/x-icon", ".avif": "image/avif",
    ".heic": "image/heic", ".heif": "image/heif", ".pdf": PDF_MEDIA_TYPE,
}

EMBEDDED_TEXT_CONFIDENCE = 0.95


def resolve_media_type(document: SourceDocument) -> Optional[str]:
    """宣言されたMIMEタイプ、無ければ拡張子から判定"""
    declared = (document.media_type or "").strip().lower()
    if declared in IMAGE_MEDIA_TYPES or declared == PDF_MEDIA_TYPE:
        return declared
    if declared and declared != "application/octet-stream":
        return None
    ext = os.path.splitext(document.filename or "")[1].lower()
    return EXTENSION_MEDIA_TYPES.get(ext)


def validate_document(document: SourceDocument, max_bytes: int) -> str:
    """受付チェック。問題があれば処理前に例外"""
    media_type = resolve_media_type(document)
    if media_type is None:
        raise UnsupportedMediaType(document.media_type, document.filename)
    if document.size > max_bytes:
        raise DocumentTooLarge(document.size, max_bytes)
    return media_type


def decode_image(content: bytes) -> Image.Image:
    image = Image.open(BytesIO(content))
    image.load()
    return image


class PdfPageRasterizer:
    """PDFの埋め込みテキスト抽出と1ページ目のラスタライズ"""

    def extract_embedded_text(self, content: bytes) -> Optional[str]:
        with pdfplumber.open(BytesIO(content)) as pdf:
            if not pdf.pages:
                return None
            return pdf.pages[0].extract_text()

    def rasterize_first_page(self, content: bytes, scale: float = 2.0) -> Image.Image:
        try:
            images = convert_from_bytes(content, dpi=int(72 * scale), first_page=1, last_page=1)
        except Exception as e:
            raise RasterizationFailed(f"could not rasterize first page: {e}") from e
        if not images:
            raise RasterizationFailed("document has no pages")
        return images[0]


class _StrategyFailed(Exception):
    pass


class DocumentLoader:
    """読み込み戦略を順に試す"""

    def __init__(self, enhancer: ImageEnhancer, recognizer: RecognitionAdapter,
                 rasterizer=None, pdf_config: Optional[Dict] = None):
        self.enhancer = enhancer
        self.recognizer = recognizer
        self.rasterizer = rasterizer or PdfPageRasterizer()
        cfg = pdf_config or {}
        self.pdf_scale = float(cfg.get("scale", 2.0))
        self.min_embedded_text = int(cfg.get("min_embedded_text", 50))

    def strategies(self, document: SourceDocument, media_type: str) -> List[Tuple[str, Callable[[], List[Transcript]]]]:
        state: Dict = {}
        if media_type == PDF_MEDIA_TYPE:
            return [
                ("embedded-text", lambda: self._embedded_text(document, state, strict=True)),
                ("rasterized-enhanced", lambda: self._enhanced(self._rasterized(document, state))),
                ("rasterized-original", lambda: self._original(self._rasterized(document, state))),
                ("embedded-text-short", lambda: self._embedded_text(document, state, strict=False)),
            ]
        return [
            ("enhanced", lambda: self._enhanced(self._decoded(document, state))),
            ("original", lambda: self._original(self._decoded(document, state))),
        ]

    def load(self, document: SourceDocument, media_type: str) -> List[Transcript]:
        attempts: List[str] = []
        blank: List[Transcript] = []
        for name, run in self.strategies(document, media_type):
            try:
                transcripts = run()
            except (_StrategyFailed, RasterizationFailed) as e:
                logger.warning("strategy '%s' unavailable: %s", name, e)
                attempts.append(f"{name}: {e}")
                continue
            usable = [t for t in transcripts if t.text and t.text.strip()]
            if usable:
                logger.info("strategy '%s' produced %d transcript(s)", name, len(usable))
                return usable
            blank.extend(transcripts)
            attempts.append(f"{name}: no text recognized")

        # 認識自体は成功したが文字が無い場合はそのまま返す（低信頼度の結果になる）
        if blank:
            return blank
        raise AllRenderingsFailed(attempts)

    def _decoded(self, document: SourceDocument, state: Dict) -> Image.Image:
        if "image" not in state:
            try:
                state["image"] = decode_image(document.content)
            except Exception as e:
                state["image"] = e
        if isinstance(state["image"], Exception):
            raise _StrategyFailed(f"image could not be decoded: {state['image']}")
        return state["image"]

    def _rasterized(self, document: SourceDocument, state: Dict) -> Image.Image:
        if "raster" not in state:
            try:
                state["raster"] = self.rasterizer.rasterize_first_page(document.content, self.pdf_scale)
            except Exception as e:
                state["raster"] = e
        if isinstance(state["raster"], Exception):
            raise RasterizationFailed(str(state["raster"]))
        return state["raster"]

    def _embedded_text(self, document: SourceDocument, state: Dict, strict: bool) -> List[Transcript]:
        if "text" not in state:
            try:
                state["text"] = self.rasterizer.extract_embedded_text(document.content) or ""
            except Exception as e:
                logger.warning("embedded text extraction failed: %s", e)
                state["text"] = ""
        text = state["text"]
        visible = len("".join(text.split()))
        if strict and visible <= self.min_embedded_text:
            raise _StrategyFailed(f"only {visible} characters of embedded text")
        if not visible:
            raise _StrategyFailed("no embedded text")
        return [Transcript(text=text, engine_confidence=EMBEDDED_TEXT_CONFIDENCE, method="embedded-text")]

    def _enhanced(self, image: Image.Image) -> List[Transcript]:
        renderings = self.enhancer.enhance(image)
        transcripts = self.recognizer.recognize_all(renderings)
        if not transcripts:
            raise _StrategyFailed("recognition failed for every enhanced rendering")
        return transcripts

    def _original(self, image: Image.Image) -> List[Transcript]:
        transcripts = self.recognizer.recognize_all([EnhancedRendering(image=image, method="original")])
        if not transcripts:
            raise _StrategyFailed("recognition failed for the original image")
        return transcripts
