import logging
import re
from typing import List, Optional, Tuple

from ocr_models import Transcript


logger = logging.getLogger(__name__)

LENGTH_BONUS_STEPS = ((100, 0.1), (300, 0.1))
CURRENCY_BONUS = 0.05
DIGIT_GROUP_BONUS = 0.05
MIN_DIGIT_GROUPS = 4
KEYWORD_BONUS = 0.02
DOMAIN_KEYWORDS = ("total", "amount", "date", "bill", "receipt", "invoice")
CURRENCY_RE = re.compile(r"₹|\brs\b|\binr\b|\$|€|£", re.IGNORECASE)
DIGIT_GROUP_RE = re.compile(r"\d+")

# 同点時の優先度（小さいほど優先）
METHOD_PRIORITY = {"embedded-text": 0, "standard": 1, "high-contrast": 2, "denoised": 3, "original": 4}


def score_transcript(transcript: Transcript) -> Tuple[float, List[str]]:
    """認識結果のスコアと内訳"""
    text = transcript.text or ""
    reasons = [f"engine={transcript.engine_confidence:.2f}"]
    score = transcript.engine_confidence

    for min_len, bonus in LENGTH_BONUS_STEPS:
        if len(text) > min_len:
            score += bonus
            reasons.append(f"len>{min_len}")

    if CURRENCY_RE.search(text):
        score += CURRENCY_BONUS
        reasons.append("currency")

    if len(DIGIT_GROUP_RE.findall(text)) >= MIN_DIGIT_GROUPS:
        score += DIGIT_GROUP_BONUS
        reasons.append("digits")

    lower = text.lower()
    hits = [kw for kw in DOMAIN_KEYWORDS if kw in lower]
    if hits:
        score += KEYWORD_BONUS * len(hits)
        reasons.append("keywords=" + ",".join(hits))
    return score, reasons


def select_best(transcripts: List[Transcript]) -> Optional[Transcript]:
    if not transcripts:
        return None
    ranked = []
    for t in transcripts:
        score, reasons = score_transcript(t)
        logger.debug("rendering '%s' score=%.3f (%s)", t.method, score, " ".join(reasons))
        # スコア降順 → 文字数降順 → 手法優先度
        ranked.append(((-round(score, 9), -len(t.text or ""), METHOD_PRIORITY.get(t.method, 99)), t))
    ranked.sort(key=lambda x: x[0])
    best = ranked[0][1]
    logger.info("selected rendering '%s' out of %d", best.method, len(transcripts))
    return best
