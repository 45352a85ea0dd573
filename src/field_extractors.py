"""
フィールド抽出
認識テキストから各フィールドの候補 (FieldCandidate) を列挙する。
候補が無い場合は空リストを返し、例外にはしない。順位付けは candidate_selector が行う。
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from ocr_models import FieldCandidate, MerchantKnowledgeEntry, PlatformPatternSet
from ocr_patterns import (
    CATEGORY_KNOWLEDGE,
    CURRENCY_MARKERS,
    EXPENSE_KEYWORDS,
    FALLBACK_TRANSACTION_ID_PATTERNS,
    INCOME_KEYWORDS,
    MERCHANT_KNOWLEDGE,
    PAYMENT_METHODS,
    PLATFORM_PAYMENT_METHOD,
    find_merchant_knowledge,
    keyword_in,
    matched_keywords,
)


logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^\w\s₹$€£.,/\-:()\[\]@#&']")
_HSPACE = re.compile(r"[^\S\n]+")

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

OUT_OF_WINDOW_FACTOR = 0.05
HEADER_LINES = 5
HEADER_CONFIDENCE = 0.7
BRAND_LINE_CONFIDENCE = 0.95

LEGAL_SUFFIX_RE = re.compile(
    r"[ \t,]+(?:pvt\.?[ \t]*ltd\.?|private[ \t]+limited|limited|ltd\.?|inc\.?|corporation|corp\.?"
    r"|llp|llc|co\.|company)[ \t.]*$",
    re.IGNORECASE,
)
HEADER_LINE_RE = re.compile(r"^[A-Za-z][A-Za-z &.'-]{2,39}$")

MERCHANT_DENYLIST = {
    "date", "time", "amount", "total", "bill", "receipt", "invoice", "address", "phone",
    "email", "gst", "gstin", "tax", "thank", "thanks", "visit", "welcome", "please",
    "customer", "copy", "duplicate", "cashier", "change", "subtotal", "qty", "price",
}
STOP_WORDS = {
    "the", "and", "or", "of", "for", "to", "in", "on", "at", "by", "with", "from",
    "a", "an", "is", "your", "you", "our", "we",
}


def normalize_transcript(text: str) -> str:
    """レシートで使う記号以外を空白に置換し、行構造は保ったまま整形"""
    if not text:
        return ""
    cleaned = _UNSAFE_CHARS.sub(" ", text.replace("\r\n", "\n").replace("\r", "\n"))
    lines = [_HSPACE.sub(" ", line).strip() for line in cleaned.split("\n")]
    return "\n".join(line for line in lines if line)


@lru_cache(maxsize=None)
def _compile(pattern: str, flags: int = re.IGNORECASE | re.MULTILINE):
    return re.compile(pattern, flags)


def _iter_matches(text: str, patterns, flags: int = re.IGNORECASE | re.MULTILINE):
    for index, (pattern, confidence) in enumerate(patterns):
        for m in _compile(pattern, flags).finditer(text):
            if m.lastindex is None:
                continue
            yield index, confidence, m


# ---------------------------------------------------------------------------
# 金額
# ---------------------------------------------------------------------------

def parse_amount(raw: str) -> Optional[Decimal]:
    try:
        return Decimal(raw.replace(",", "").strip())
    except (InvalidOperation, AttributeError):
        return None


SUSPICIOUS_AMOUNT_RE = re.compile(r"[0.]+|1{4,}|9{4,}")


def is_suspicious_amount(raw: str) -> bool:
    """読み取った文字列そのものが全桁ゼロ、または 1111 / 9999 のような埋め草"""
    return SUSPICIOUS_AMOUNT_RE.fullmatch((raw or "").replace(",", "").strip()) is not None


def extract_amounts(text: str, patterns: PlatformPatternSet,
                    min_amount: Decimal = Decimal("0.01"),
                    max_amount: Decimal = Decimal("10000000")) -> List[FieldCandidate]:
    candidates: List[FieldCandidate] = []
    for index, confidence, m in _iter_matches(text, patterns.amount):
        raw = m.group(1)
        value = parse_amount(raw)
        if value is None:
            continue
        if value < min_amount or value > max_amount:
            logger.debug("amount %s rejected: outside [%s, %s]", raw, min_amount, max_amount)
            continue
        if is_suspicious_amount(raw):
            logger.debug("amount %s rejected: suspicious digit pattern", raw)
            continue
        candidates.append(FieldCandidate(
            value=value,
            confidence=confidence,
            matched_span=m.group(0).strip(),
            source_offset=m.start(1),
            reasoning=f"{patterns.name} amount pattern #{index + 1} matched '{m.group(0).strip()}'",
        ))
    return candidates


# ---------------------------------------------------------------------------
# 日付
# ---------------------------------------------------------------------------

def _expand_year(year: int) -> int:
    if year >= 100:
        return year
    return 2000 + year if year < 50 else 1900 + year


def parse_date(raw: str) -> Optional[date]:
    """DD/MM/YYYY, DD-MM-YY, YYYY-MM-DD, DD Month YYYY を解釈（不正な日付は None）"""
    s = raw.strip().lower()
    try:
        m = re.fullmatch(r"(\d{4})-(\d{2})-(\d{2})", s)
        if m:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        m = re.fullmatch(r"(\d{1,2})[-/.](\d{1,2})[-/.](\d{2}|\d{4})", s)
        if m:
            return date(_expand_year(int(m.group(3))), int(m.group(2)), int(m.group(1)))
        m = re.fullmatch(r"(\d{1,2})[\s-]+([a-z]+)[\s,-]+(\d{4})", s)
        if m:
            month = MONTHS.get(m.group(2)[:3])
            if month is None:
                return None
            return date(int(m.group(3)), month, int(m.group(1)))
    except ValueError:
        return None
    return None


def in_date_window(value: date, today: date, days_past: int = 365, days_future: int = 30) -> bool:
    return today - timedelta(days=days_past) <= value <= today + timedelta(days=days_future)


def extract_dates(text: str, patterns: PlatformPatternSet, today: date,
                  days_past: int = 365, days_future: int = 30) -> List[FieldCandidate]:
    candidates: List[FieldCandidate] = []
    for index, confidence, m in _iter_matches(text, patterns.date):
        value = parse_date(m.group(1))
        if value is None:
            logger.debug("date '%s' skipped: not a calendar date", m.group(1))
            continue
        reasoning = f"{patterns.name} date pattern #{index + 1} matched '{m.group(1)}'"
        if not in_date_window(value, today, days_past, days_future):
            confidence = confidence * OUT_OF_WINDOW_FACTOR
            reasoning += " (outside plausibility window)"
        candidates.append(FieldCandidate(
            value=value,
            confidence=confidence,
            matched_span=m.group(0).strip(),
            source_offset=m.start(1),
            reasoning=reasoning,
        ))
    return candidates


# ---------------------------------------------------------------------------
# 加盟店
# ---------------------------------------------------------------------------

def clean_merchant_name(raw: str) -> str:
    name = re.sub(r"\s+", " ", raw or "").strip(" \t.-&'")
    previous = None
    while previous != name:
        previous = name
        name = LEGAL_SUFFIX_RE.sub("", name).strip(" \t.-&',")
    return name


def is_valid_merchant(name: str) -> bool:
    if not name or len(name) < 2 or len(name) > 50:
        return False
    if not re.search(r"[A-Za-z]", name):
        return False
    words = re.findall(r"[a-z]+", name.lower())
    if any(w in MERCHANT_DENYLIST for w in words):
        return False
    return not all(w in STOP_WORDS for w in words)


def _merchant_candidate(raw: str, confidence: float, offset: int, span: str,
                        reasoning: str) -> Optional[FieldCandidate]:
    name = clean_merchant_name(raw)
    if not is_valid_merchant(name):
        return None
    return FieldCandidate(value=name, confidence=confidence, matched_span=span.strip(),
                          source_offset=offset, reasoning=reasoning)


def _iter_lines(text: str):
    offset = 0
    for line in text.split("\n"):
        yield offset, line
        offset += len(line) + 1


def extract_merchants(text: str, patterns: PlatformPatternSet) -> List[FieldCandidate]:
    candidates: List[FieldCandidate] = []
    for index, confidence, m in _iter_matches(text, patterns.merchant):
        c = _merchant_candidate(m.group(1), confidence, m.start(1), m.group(0),
                                f"{patterns.name} merchant pattern #{index + 1} matched '{m.group(0).strip()}'")
        if c:
            candidates.append(c)

    brands = [e for e in MERCHANT_KNOWLEDGE if e.category != "Digital Payment"]
    for line_no, (offset, line) in enumerate(_iter_lines(text)):
        stripped = line.strip()
        if not stripped:
            continue
        line_lower = stripped.lower()
        # 既知ブランドを含む行は行全体を店名とみなす
        for entry in brands:
            hits = matched_keywords(entry, line_lower)
            if not hits:
                continue
            c = _merchant_candidate(stripped, BRAND_LINE_CONFIDENCE, offset, stripped,
                                    f"line mentions known merchant '{hits[0]}'")
            if c is None:
                c = FieldCandidate(value=hits[0].title(), confidence=BRAND_LINE_CONFIDENCE * 0.9,
                                   matched_span=stripped, source_offset=offset,
                                   reasoning=f"known merchant keyword '{hits[0]}'")
            candidates.append(c)
            break
        if line_no < HEADER_LINES and HEADER_LINE_RE.match(stripped):
            c = _merchant_candidate(stripped, HEADER_CONFIDENCE, offset, stripped,
                                    f"header line {line_no + 1} looks like a business name")
            if c:
                candidates.append(c)
    return candidates


# ---------------------------------------------------------------------------
# 取引ID・決済手段・通貨
# ---------------------------------------------------------------------------

MIN_TRANSACTION_ID_LENGTH = 6


def extract_transaction_ids(text: str, patterns: PlatformPatternSet) -> List[FieldCandidate]:
    candidates: List[FieldCandidate] = []
    for index, confidence, m in _iter_matches(text, patterns.transaction_id):
        value = m.group(1).strip("-_")
        if len(value) < MIN_TRANSACTION_ID_LENGTH or not re.search(r"\d", value):
            continue
        candidates.append(FieldCandidate(
            value=value, confidence=confidence, matched_span=m.group(0).strip(),
            source_offset=m.start(1),
            reasoning=f"{patterns.name} labeled id pattern #{index + 1} matched '{m.group(0).strip()}'",
        ))
    if candidates:
        return candidates

    # ラベルが無い場合の汎用パターン
    for index, confidence, m in _iter_matches(text, FALLBACK_TRANSACTION_ID_PATTERNS, flags=re.MULTILINE):
        value = m.group(1)
        if len(value) < MIN_TRANSACTION_ID_LENGTH:
            continue
        candidates.append(FieldCandidate(
            value=value, confidence=confidence, matched_span=value, source_offset=m.start(1),
            reasoning=f"unlabeled id shape #{index + 1} matched '{value}'",
        ))
    return candidates


def extract_payment_method(text: str, platform: Optional[str] = None) -> Optional[FieldCandidate]:
    if platform and platform in PLATFORM_PAYMENT_METHOD:
        return FieldCandidate(value=PLATFORM_PAYMENT_METHOD[platform], confidence=0.9,
                              matched_span=platform, source_offset=0,
                              reasoning=f"payment platform '{platform}' detected")
    text_lower = text.lower()
    for method, keywords in PAYMENT_METHODS:
        for kw in keywords:
            if keyword_in(kw, text_lower):
                return FieldCandidate(value=method, confidence=0.7, matched_span=kw,
                                      source_offset=text_lower.find(kw),
                                      reasoning=f"payment keyword '{kw}' found")
    return None


def extract_currency(text: str) -> Optional[FieldCandidate]:
    best: Optional[Tuple[int, str, str]] = None
    for code, marker in CURRENCY_MARKERS:
        m = _compile(marker).search(text)
        if m and (best is None or m.start() < best[0]):
            best = (m.start(), code, m.group(0))
    if best is None:
        return None
    offset, code, span = best
    return FieldCandidate(value=code, confidence=0.9, matched_span=span, source_offset=offset,
                          reasoning=f"currency marker '{span}'")


# ---------------------------------------------------------------------------
# カテゴリ・収支区分
# ---------------------------------------------------------------------------

MERCHANT_HIT_WEIGHT = 2
TEXT_HIT_WEIGHT = 1


@dataclass(frozen=True)
class CategoryVote:
    candidate: FieldCandidate
    score: int  # 重み付きキーワード数
    matched_chars: int  # 一致キーワードの合計文字数（同点時に使用）


def extract_categories(text: str, merchant: Optional[str] = None) -> List[CategoryVote]:
    """ナレッジのキーワード一致で投票（店名での一致は2倍）"""
    text_lower = text.lower()
    merchant_lower = (merchant or "").lower()
    votes: Dict[str, Dict] = {}

    def vote(entry: MerchantKnowledgeEntry, weight: int, hits: List[str], source: str):
        v = votes.setdefault(entry.category, {"score": 0, "chars": 0, "hits": [], "known": False, "offset": None})
        v["score"] += weight * len(hits)
        v["chars"] += sum(len(h) for h in hits)
        v["hits"].extend(f"{h}({source})" for h in hits)
        if entry in MERCHANT_KNOWLEDGE:
            v["known"] = True
        if source == "text":
            offsets = [text_lower.find(h) for h in hits if text_lower.find(h) >= 0]
            if offsets and (v["offset"] is None or min(offsets) < v["offset"]):
                v["offset"] = min(offsets)

    for entry in MERCHANT_KNOWLEDGE + CATEGORY_KNOWLEDGE:
        if merchant_lower:
            hits = matched_keywords(entry, merchant_lower)
            if hits:
                vote(entry, MERCHANT_HIT_WEIGHT, hits, "merchant")
        hits = matched_keywords(entry, text_lower)
        if hits:
            vote(entry, TEXT_HIT_WEIGHT, hits, "text")

    # OCRの誤読で一致しなかった店名は類似度で補う
    if merchant and not any(v["known"] for v in votes.values()):
        entry = find_merchant_knowledge(merchant)
        if entry is not None:
            vote(entry, MERCHANT_HIT_WEIGHT, [entry.match_keywords[0]], "fuzzy")

    results = []
    for category, v in votes.items():
        confidence = 0.9 if v["known"] else min(0.8, 0.5 + 0.1 * v["score"])
        candidate = FieldCandidate(
            value=category,
            confidence=confidence,
            matched_span=", ".join(v["hits"]),
            source_offset=v["offset"] if v["offset"] is not None else 0,
            reasoning=f"keyword vote {v['score']} ({', '.join(v['hits'])})",
        )
        results.append(CategoryVote(candidate=candidate, score=v["score"], matched_chars=v["chars"]))
    return results


def extract_type(text: str, has_other_evidence: bool = False) -> Optional[FieldCandidate]:
    """収入/支出のキーワード投票。根拠が無ければ None"""
    text_lower = text.lower()
    income = [kw for kw in INCOME_KEYWORDS if keyword_in(kw, text_lower)]
    expense = [kw for kw in EXPENSE_KEYWORDS if keyword_in(kw, text_lower)]
    if len(income) > len(expense):
        return FieldCandidate(value="income", confidence=min(0.9, 0.6 + 0.1 * (len(income) - len(expense))),
                              matched_span=", ".join(income), source_offset=0,
                              reasoning=f"income keywords: {', '.join(income)}")
    if expense:
        return FieldCandidate(value="expense", confidence=min(0.9, 0.6 + 0.1 * (len(expense) - len(income))),
                              matched_span=", ".join(expense), source_offset=0,
                              reasoning=f"expense keywords: {', '.join(expense)}")
    if has_other_evidence:
        return FieldCandidate(value="expense", confidence=0.5, matched_span="", source_offset=0,
                              reasoning="no type keywords; transactional document defaults to expense")
    return None
