import logging
import re
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from field_extractors import CategoryVote, parse_amount
from ocr_models import FieldCandidate


logger = logging.getLogger(__name__)

# 金額の順位付け
AMOUNT_POSITION_WEIGHT = 0.1  # 後ろにあるほど合計欄らしい
AMOUNT_TYPICAL_RANGE = (Decimal("10"), Decimal("100000"))
AMOUNT_TYPICAL_BONUS = 0.05
AMOUNT_SMALL_LIMIT = Decimal("10")
AMOUNT_SMALL_PENALTY = 0.2
AMOUNT_TWO_DECIMALS_BONUS = 0.02
AMOUNT_FREQUENCY_STEP = 0.05
AMOUNT_FREQUENCY_CAP = 0.1

# 日付の順位付け
DATE_RECENT_DAYS = 365
DATE_RECENT_BONUS = 0.1
DATE_VERY_RECENT_DAYS = 30
DATE_VERY_RECENT_BONUS = 0.05

# 加盟店の順位付け
MERCHANT_TOP_POSITION = 0.3
MERCHANT_TOP_BONUS = 0.1
MERCHANT_HEAD_POSITION = 0.1
MERCHANT_HEAD_BONUS = 0.05
MERCHANT_PROPER_CASE_BONUS = 0.05
MERCHANT_GOOD_LENGTH = (5, 25)
MERCHANT_GOOD_LENGTH_BONUS = 0.03
MERCHANT_SHORT_LIMIT = 3
MERCHANT_SHORT_PENALTY = 0.2
MERCHANT_LONG_LIMIT = 40
MERCHANT_LONG_PENALTY = 0.1
MERCHANT_BUSINESS_BONUS = 0.02
BUSINESS_WORDS = ("restaurant", "store", "shop", "mart", "cafe", "hotel", "services")

_NUMBER_TOKEN = re.compile(r"(?<![\w,])(?<!\d\.)\d[\d,]*(?:\.\d+)?(?![\w])")


def count_amount_occurrences(text: str, value: Decimal) -> int:
    """テキスト中で同じ金額を表す数値の出現回数"""
    count = 0
    for token in _NUMBER_TOKEN.findall(text or ""):
        parsed = parse_amount(token.rstrip(".,"))
        if parsed is not None and parsed == value:
            count += 1
    return count


def amount_frequency_bonus(occurrences: int) -> float:
    return min(AMOUNT_FREQUENCY_CAP, AMOUNT_FREQUENCY_STEP * max(0, occurrences - 1))


def score_amount(candidate: FieldCandidate, text_length: int) -> Tuple[float, List[str]]:
    reasons: List[str] = []
    score = candidate.confidence
    value: Decimal = candidate.value

    if text_length > 0:
        position = candidate.source_offset / text_length
        score += position * AMOUNT_POSITION_WEIGHT
        reasons.append(f"position={position:.2f}")

    low, high = AMOUNT_TYPICAL_RANGE
    if low <= value <= high:
        score += AMOUNT_TYPICAL_BONUS
        reasons.append("typical")
    if value < AMOUNT_SMALL_LIMIT:
        score -= AMOUNT_SMALL_PENALTY
        reasons.append("small")
    if value.as_tuple().exponent == -2:
        score += AMOUNT_TWO_DECIMALS_BONUS
        reasons.append("2dp")
    return score, reasons


def select_amount(candidates: List[FieldCandidate], text: str) -> Optional[FieldCandidate]:
    """同額の候補をまとめ、順位付けして1つ選ぶ"""
    if not candidates:
        return None
    groups: Dict[Decimal, List[FieldCandidate]] = {}
    for c in candidates:
        groups.setdefault(c.value, []).append(c)

    ranked = []
    for value, members in groups.items():
        scored = [(score_amount(c, len(text)), c) for c in members]
        (rank, reasons), best = max(scored, key=lambda x: (x[0][0], x[1].source_offset))
        latest = max(c.source_offset for c in members)
        ranked.append(((rank, latest, value), best, reasons, members))

    ranked.sort(key=lambda x: x[0], reverse=True)
    (_, _, value), best, reasons, members = ranked[0]

    # 報告する信頼度は位置に依存させない（出現回数に対して単調）
    intrinsic = max(c.confidence for c in members)
    occurrences = count_amount_occurrences(text, value)
    confidence = min(1.0, intrinsic + amount_frequency_bonus(occurrences))
    reasoning = f"{best.reasoning}; appears {occurrences}x; {' '.join(reasons)}"
    logger.debug("amount winner %s (conf=%.2f) out of %d values", value, confidence, len(groups))
    return FieldCandidate(value=best.value, confidence=confidence, matched_span=best.matched_span,
                          source_offset=best.source_offset, reasoning=reasoning)


def _dedupe(candidates: List[FieldCandidate], key=lambda c: c.value) -> List[FieldCandidate]:
    """同じ値の候補は信頼度最大・最も前方のものを残す"""
    best: Dict = {}
    for c in candidates:
        k = key(c)
        cur = best.get(k)
        if cur is None or (c.confidence, -c.source_offset) > (cur.confidence, -cur.source_offset):
            best[k] = c
    return list(best.values())


def score_date(candidate: FieldCandidate, today: date) -> Tuple[float, int]:
    distance = abs((candidate.value - today).days)
    score = candidate.confidence
    if distance <= DATE_RECENT_DAYS:
        score += DATE_RECENT_BONUS
    if distance <= DATE_VERY_RECENT_DAYS:
        score += DATE_VERY_RECENT_BONUS
    return score, distance


def select_date(candidates: List[FieldCandidate], today: date) -> Optional[FieldCandidate]:
    if not candidates:
        return None
    ranked = []
    for c in _dedupe(candidates):
        score, distance = score_date(c, today)
        ranked.append(((-score, distance, c.source_offset), c))
    ranked.sort(key=lambda x: x[0])
    return ranked[0][1]


def _is_proper_case(name: str) -> bool:
    words = [w for w in name.split() if w[:1].isalpha()]
    return bool(words) and all(w[0].isupper() for w in words) and not name.isupper()


def score_merchant(candidate: FieldCandidate, text_length: int) -> Tuple[float, List[str]]:
    reasons: List[str] = []
    name: str = candidate.value
    score = candidate.confidence

    position = candidate.source_offset / text_length if text_length else 0.0
    if position < MERCHANT_TOP_POSITION:
        score += MERCHANT_TOP_BONUS
        reasons.append("top")
    if position < MERCHANT_HEAD_POSITION:
        score += MERCHANT_HEAD_BONUS
        reasons.append("head")
    if _is_proper_case(name):
        score += MERCHANT_PROPER_CASE_BONUS
        reasons.append("proper-case")
    low, high = MERCHANT_GOOD_LENGTH
    if low <= len(name) <= high:
        score += MERCHANT_GOOD_LENGTH_BONUS
    if len(name) < MERCHANT_SHORT_LIMIT:
        score -= MERCHANT_SHORT_PENALTY
        reasons.append("short")
    if len(name) > MERCHANT_LONG_LIMIT:
        score -= MERCHANT_LONG_PENALTY
        reasons.append("long")
    lower = name.lower()
    if any(w in lower for w in BUSINESS_WORDS):
        score += MERCHANT_BUSINESS_BONUS
        reasons.append("business-word")
    return score, reasons


def select_merchant(candidates: List[FieldCandidate], text: str) -> Optional[FieldCandidate]:
    if not candidates:
        return None
    ranked = []
    for c in _dedupe(candidates, key=lambda c: c.value.lower()):
        score, reasons = score_merchant(c, len(text))
        ranked.append(((-score, c.source_offset, c.value), c, reasons))
    ranked.sort(key=lambda x: x[0])
    _, best, reasons = ranked[0]
    if reasons:
        return FieldCandidate(value=best.value, confidence=best.confidence, matched_span=best.matched_span,
                              source_offset=best.source_offset,
                              reasoning=f"{best.reasoning}; {' '.join(reasons)}")
    return best


def select_transaction_id(candidates: List[FieldCandidate]) -> Optional[FieldCandidate]:
    if not candidates:
        return None
    ranked = sorted(_dedupe(candidates), key=lambda c: (-c.confidence, -len(c.value), c.source_offset))
    return ranked[0]


def select_category(votes: List[CategoryVote]) -> Optional[FieldCandidate]:
    """投票数 → 一致文字数 → カテゴリ名 の順で決定"""
    if not votes:
        return None
    ranked = sorted(votes, key=lambda v: (-v.score, -v.matched_chars, v.candidate.value))
    return ranked[0].candidate
