"""
抽出パイプラインの例外定義
呼び出し元まで届くのは受付時の拒否と AllRenderingsFailed のみ
"""


class ExtractionError(Exception):
    """Base class for pipeline errors."""


class DocumentRejected(ExtractionError):
    """Raised by intake before any processing starts."""


class UnsupportedMediaType(DocumentRejected):
    def __init__(self, media_type: str, filename: str = None):
        self.media_type = media_type
        self.filename = filename
        super().__init__(
            f"Unsupported file type: {media_type or 'unknown'}. "
            "Upload an image (JPG, PNG, GIF, BMP, WebP, TIFF, SVG, ICO, AVIF, HEIC) or a PDF."
        )


class DocumentTooLarge(DocumentRejected):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"File size {size} bytes exceeds the {limit} byte limit")


class RecognitionUnavailable(ExtractionError):
    """One rendering could not be recognized; the rendering is excluded."""

    def __init__(self, method: str, cause: Exception = None):
        self.method = method
        self.cause = cause
        super().__init__(f"recognition failed for rendering '{method}': {cause}")


class RasterizationFailed(ExtractionError):
    """A paginated document could not be turned into a raster image."""


class AllRenderingsFailed(ExtractionError):
    """No loading strategy produced a usable transcript."""

    def __init__(self, attempts: list = None):
        self.attempts = list(attempts or [])
        detail = "; ".join(self.attempts) if self.attempts else "no strategy ran"
        super().__init__(f"every rendering path failed ({detail})")
