"""
文字認識エンジンのアダプタ
エンジン契約: recognize(image) -> {"text": str, "confidence": 0..100}
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

import pytesseract

from errors import RecognitionUnavailable
from ocr_models import EnhancedRendering, Transcript


logger = logging.getLogger(__name__)


class TesseractEngine:
    """pytesseract を使う既定の認識エンジン"""

    def __init__(self, config: str = "--oem 1 --psm 6", lang: str = "eng"):
        self.config = config
        self.lang = lang

    def recognize(self, image) -> Dict:
        data = pytesseract.image_to_data(
            image, lang=self.lang, config=self.config, output_type=pytesseract.Output.DICT
        )
        confs = [float(c) for c in data.get("conf", []) if float(c) > 0]
        avg = sum(confs) / len(confs) if confs else 0.0
        return {"text": words_to_text(data), "confidence": avg}


def words_to_text(data: Dict) -> str:
    """image_to_data の単語を (block, par, line) ごとに行へまとめる"""
    words = data.get("text", [])
    zeros = [0] * len(words)
    keys = zip(data.get("block_num", zeros), data.get("par_num", zeros), data.get("line_num", zeros))
    lines: Dict[tuple, List[str]] = {}
    for key, word in zip(keys, words):
        word = str(word or "").strip()
        if word:
            lines.setdefault(key, []).append(word)
    return "\n".join(" ".join(ws) for ws in lines.values())


def normalize_confidence(raw) -> float:
    """0-100 のエンジン信頼度を 0-1 に丸める"""
    try:
        value = float(raw) / 100.0
    except (TypeError, ValueError):
        return 0.0
    return min(1.0, max(0.0, value))


class RecognitionAdapter:
    def __init__(self, engine, max_workers: int = 1):
        self.engine = engine
        self.max_workers = max(1, int(max_workers or 1))

    def recognize_one(self, rendering: EnhancedRendering) -> Transcript:
        try:
            result = self.engine.recognize(rendering.image) or {}
        except Exception as e:
            raise RecognitionUnavailable(rendering.method, e) from e
        text = result.get("text") or ""
        return Transcript(
            text=text,
            engine_confidence=normalize_confidence(result.get("confidence", 0)),
            method=rendering.method,
        )

    def recognize_all(self, renderings: List[EnhancedRendering]) -> List[Transcript]:
        """各レンダリングを認識。失敗したものは除外（順序はレンダリング順）"""
        if self.max_workers > 1 and len(renderings) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                outcomes = list(pool.map(self._safe_recognize, renderings))
        else:
            outcomes = [self._safe_recognize(r) for r in renderings]
        return [t for t in outcomes if t is not None]

    def _safe_recognize(self, rendering: EnhancedRendering) -> Optional[Transcript]:
        try:
            transcript = self.recognize_one(rendering)
        except RecognitionUnavailable as e:
            logger.warning("%s", e)
            return None
        logger.debug("recognized %d chars from '%s' (conf=%.2f)",
                     len(transcript.text), rendering.method, transcript.engine_confidence)
        return transcript
