import os
import sys
import unittest
from io import BytesIO
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from document_loader import DocumentLoader, PdfPageRasterizer, resolve_media_type, validate_document
from errors import AllRenderingsFailed, DocumentTooLarge, RasterizationFailed, UnsupportedMediaType
from image_enhancer import ImageEnhancer
from ocr_models import SourceDocument
from recognition_adapter import RecognitionAdapter


LONG_TEXT = "INVOICE\nBilled By: Sharma Electronics\nInvoice Date: 12/03/2024\nGrand Total: Rs. 1,250.00"


def _png_bytes(size=(40, 20)):
    buf = BytesIO()
    Image.new("RGB", size, "white").save(buf, format="PNG")
    return buf.getvalue()


def test_resolve_media_type():
    assert resolve_media_type(SourceDocument(b"x", "image/png")) == "image/png"
    assert resolve_media_type(SourceDocument(b"x", "IMAGE/JPEG")) == "image/jpeg"
    assert resolve_media_type(SourceDocument(b"x", "", filename="scan.JPG")) == "image/jpeg"
    assert resolve_media_type(SourceDocument(b"x", "application/octet-stream", filename="a.pdf")) == "application/pdf"
    assert resolve_media_type(SourceDocument(b"x", "text/plain", filename="a.png")) is None
    assert resolve_media_type(SourceDocument(b"x", "", filename="notes.txt")) is None


def test_validate_document_rejects_before_processing():
    with pytest.raises(UnsupportedMediaType):
        validate_document(SourceDocument(b"hello", "text/plain"), max_bytes=100)
    with pytest.raises(DocumentTooLarge) as exc:
        validate_document(SourceDocument(b"x" * 11, "image/png"), max_bytes=10)
    assert exc.value.limit == 10
    assert validate_document(SourceDocument(b"x" * 10, "image/png"), max_bytes=10) == "image/png"


class TestDocumentLoader(unittest.TestCase):
    """読み込み戦略の順序とフォールバック"""

    def setUp(self):
        self.engine = MagicMock()
        self.engine.recognize.return_value = {"text": "Total: Rs. 99.00", "confidence": 70}
        self.rasterizer = MagicMock()
        self.loader = DocumentLoader(
            ImageEnhancer({"scale": 1.0}),
            RecognitionAdapter(self.engine),
            self.rasterizer,
            {"scale": 2.0, "min_embedded_text": 50},
        )

    def test_image_uses_enhanced_renderings(self):
        doc = SourceDocument(_png_bytes(), "image/png")
        transcripts = self.loader.load(doc, "image/png")

        self.assertEqual([t.method for t in transcripts], ["standard", "high-contrast", "denoised"])
        self.rasterizer.rasterize_first_page.assert_not_called()

    def test_image_falls_back_to_original_when_enhanced_recognition_fails(self):
        self.engine.recognize.side_effect = [
            RuntimeError("a"), RuntimeError("b"), RuntimeError("c"),
            {"text": "Total 10.00", "confidence": 40},
        ]
        transcripts = self.loader.load(SourceDocument(_png_bytes(), "image/png"), "image/png")

        self.assertEqual([t.method for t in transcripts], ["original"])

    def test_undecodable_image_fails_every_path(self):
        with self.assertRaises(AllRenderingsFailed) as ctx:
            self.loader.load(SourceDocument(b"not an image", "image/png"), "image/png")
        self.assertEqual(len(ctx.exception.attempts), 2)
        self.engine.recognize.assert_not_called()

    def test_blank_recognition_is_returned_instead_of_failing(self):
        self.engine.recognize.return_value = {"text": "   ", "confidence": 10}
        transcripts = self.loader.load(SourceDocument(_png_bytes(), "image/png"), "image/png")
        self.assertTrue(transcripts)
        self.assertTrue(all(not t.text.strip() for t in transcripts))

    def test_pdf_embedded_text_is_tried_first(self):
        self.rasterizer.extract_embedded_text.return_value = LONG_TEXT
        transcripts = self.loader.load(SourceDocument(b"%PDF", "application/pdf"), "application/pdf")

        self.assertEqual(len(transcripts), 1)
        self.assertEqual(transcripts[0].method, "embedded-text")
        self.assertAlmostEqual(transcripts[0].engine_confidence, 0.95)
        self.rasterizer.rasterize_first_page.assert_not_called()
        self.engine.recognize.assert_not_called()

    def test_pdf_with_little_text_is_rasterized(self):
        self.rasterizer.extract_embedded_text.return_value = "short"
        self.rasterizer.rasterize_first_page.return_value = Image.new("RGB", (40, 20), "white")
        transcripts = self.loader.load(SourceDocument(b"%PDF", "application/pdf"), "application/pdf")

        self.assertEqual(transcripts[0].method, "standard")
        self.rasterizer.rasterize_first_page.assert_called_once_with(b"%PDF", 2.0)

    def test_pdf_rasterization_failure_falls_back_to_short_embedded_text(self):
        self.rasterizer.extract_embedded_text.return_value = "short"
        self.rasterizer.rasterize_first_page.side_effect = RasterizationFailed("no poppler")
        transcripts = self.loader.load(SourceDocument(b"%PDF", "application/pdf"), "application/pdf")

        self.assertEqual(transcripts[0].method, "embedded-text")
        self.assertEqual(transcripts[0].text, "short")
        self.assertEqual(self.rasterizer.rasterize_first_page.call_count, 1)

    def test_pdf_with_nothing_usable(self):
        self.rasterizer.extract_embedded_text.side_effect = RuntimeError("corrupt")
        self.rasterizer.rasterize_first_page.side_effect = RasterizationFailed("corrupt")
        with self.assertRaises(AllRenderingsFailed) as ctx:
            self.loader.load(SourceDocument(b"%PDF", "application/pdf"), "application/pdf")
        self.assertEqual(len(ctx.exception.attempts), 4)


class TestPdfPageRasterizer(unittest.TestCase):

    @patch('document_loader.convert_from_bytes')
    def test_rasterize_uses_scale_as_dpi(self, mock_convert):
        page = Image.new("RGB", (10, 10))
        mock_convert.return_value = [page]
        self.assertIs(PdfPageRasterizer().rasterize_first_page(b"%PDF", 2.0), page)
        mock_convert.assert_called_once_with(b"%PDF", dpi=144, first_page=1, last_page=1)

    @patch('document_loader.convert_from_bytes', side_effect=Exception("poppler missing"))
    def test_rasterize_failure_is_typed(self, _):
        with self.assertRaises(RasterizationFailed):
            PdfPageRasterizer().rasterize_first_page(b"%PDF")

    @patch('document_loader.pdfplumber')
    def test_embedded_text_reads_first_page(self, mock_pdfplumber):
        page = MagicMock()
        page.extract_text.return_value = "hello"
        pdf = MagicMock()
        pdf.pages = [page]
        mock_pdfplumber.open.return_value.__enter__.return_value = pdf

        self.assertEqual(PdfPageRasterizer().extract_embedded_text(b"%PDF"), "hello")


if __name__ == '__main__':
    unittest.main()
