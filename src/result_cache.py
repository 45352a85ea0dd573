import hashlib
import logging
import threading
from typing import Dict, Optional

from ocr_models import ProcessingResult, SourceDocument


logger = logging.getLogger(__name__)


def fallback_digest(document: SourceDocument) -> str:
    """ファイル名・サイズ・更新時刻・形式からの32bitハッシュ（sha256が使えない場合）"""
    base = f"{document.filename or ''}-{document.size}-{document.modified_at or 0}-{document.media_type or ''}"
    h = 0
    for ch in base:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return f"fallback-{abs(h):x}"


def content_digest(document: SourceDocument) -> str:
    try:
        return hashlib.sha256(document.content).hexdigest()
    except (TypeError, ValueError) as e:
        logger.warning("sha256 unavailable for %s, using fallback digest: %s", document.filename, e)
        return fallback_digest(document)


class ResultCache:
    """処理結果のメモリキャッシュ（同一内容の再処理を避ける）"""

    def __init__(self):
        self._entries: Dict[str, ProcessingResult] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[ProcessingResult]:
        with self._lock:
            result = self._entries.get(key)
            if result is None:
                self.misses += 1
            else:
                self.hits += 1
            return result

    def put(self, key: str, result: ProcessingResult) -> None:
        with self._lock:
            self._entries[key] = result

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
