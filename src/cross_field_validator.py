"""
抽出結果の検証
各フィールドの妥当性と、フィールド間の整合性（店名↔カテゴリ、金額↔店名）をチェックする
"""

import logging
import re
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from candidate_selector import count_amount_occurrences
from field_extractors import in_date_window
from ocr_models import ExtractedTransactionData, MerchantKnowledgeEntry, ValidationResult
from ocr_patterns import CATEGORY_HINT_KEYWORDS, KNOWN_TRANSACTION_ID_SHAPES, find_merchant_knowledge, keyword_in


logger = logging.getLogger(__name__)

REASONABLE_AMOUNT = (Decimal("1"), Decimal("1000000"))

# カテゴリごとの一般的な金額帯
CATEGORY_TYPICAL_AMOUNTS: Dict[str, Tuple[Decimal, Decimal]] = {
    "Food & Dining": (Decimal("50"), Decimal("5000")),
    "Transportation": (Decimal("20"), Decimal("10000")),
    "Shopping": (Decimal("100"), Decimal("100000")),
    "Utilities": (Decimal("100"), Decimal("20000")),
    "Entertainment": (Decimal("100"), Decimal("5000")),
    "Healthcare": (Decimal("50"), Decimal("50000")),
    "Groceries": (Decimal("50"), Decimal("20000")),
    "Digital Payment": (Decimal("10"), Decimal("100000")),
}

GENERIC_MERCHANT_WORDS = {"store", "shop", "restaurant", "cafe", "mart", "services", "the", "and", "general"}

MERCHANT_CATEGORY_CONSISTENT = 0.9
MERCHANT_CATEGORY_MISMATCH = 0.3
AMOUNT_MERCHANT_IN_RANGE = 0.8
AMOUNT_MERCHANT_OUT_OF_RANGE = 0.4


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class CrossFieldValidator:
    """抽出結果検証クラス"""

    def __init__(self, today: date, days_past: int = 365, days_future: int = 30):
        self.today = today
        self.days_past = days_past
        self.days_future = days_future

    def validate(self, data: ExtractedTransactionData) -> List[ValidationResult]:
        """全チェックを実行（存在するフィールドのみ）"""
        entry = find_merchant_knowledge(data.merchant)
        text = data.raw_text or ""
        results: List[ValidationResult] = []

        if data.amount is not None:
            results.append(self.validate_amount(data.amount, entry, text))
        if data.date is not None:
            results.append(self.validate_date(data.date, data.category))
        if data.merchant is not None:
            results.append(self.validate_merchant(data.merchant, entry, data.amount))
        if data.category is not None:
            results.append(self.validate_category(data.category, entry, data.amount, text))
        if data.transaction_id is not None:
            results.append(self.validate_transaction_id(data.transaction_id))

        # フィールド間の整合性
        if entry is not None and data.category is not None:
            results.append(self.check_merchant_category(data.merchant, data.category, entry))
        if entry is not None and data.amount is not None:
            results.append(self.check_amount_merchant(data.amount, data.merchant, entry))

        for r in results:
            logger.debug("validation %s valid=%s conf=%.2f (%s)", r.field, r.is_valid, r.confidence, r.reasoning)
        return results

    def validate_amount(self, amount: Decimal, entry: Optional[MerchantKnowledgeEntry],
                        text: str) -> ValidationResult:
        """金額をチェック"""
        confidence = 0.5
        reasons: List[str] = []
        suggestions: List[str] = []
        corrected = None

        # 1. 妥当な範囲か
        low, high = REASONABLE_AMOUNT
        if low <= amount <= high:
            confidence += 0.3
            reasons.append("amount within reasonable range")
        else:
            confidence -= 0.2
            suggestions.append("Verify amount - seems unusually high or low")

        # 2. 店の一般的な金額帯か
        if entry is not None:
            if entry.amount_in_range(amount):
                confidence += 0.3
                reasons.append(f"typical for {entry.category}")
            else:
                confidence -= 0.1
                lo, hi = entry.typical_amount_range
                suggestions.append(f"Typical {entry.category} amount is {lo}-{hi}")

        # 3. テキスト中の出現回数
        occurrences = count_amount_occurrences(text, amount)
        if occurrences > 1:
            confidence += min(0.4, 0.2 * (occurrences - 1))
            reasons.append(f"appears {occurrences} times")

        # 4. 小数点以下の桁数
        if amount.as_tuple().exponent >= -2:
            confidence += 0.1
        else:
            confidence -= 0.1
            corrected = amount.quantize(Decimal("0.01"))
            suggestions.append(f"Round to {corrected}")

        confidence = _clamp(confidence)
        return ValidationResult(field="amount", is_valid=confidence > 0.5, confidence=confidence,
                                suggestions=tuple(suggestions), reasoning="; ".join(reasons),
                                corrected_value=corrected)

    def validate_date(self, value: date, category: Optional[str] = None) -> ValidationResult:
        """日付をチェック"""
        confidence = 0.5
        reasons: List[str] = []
        suggestions: List[str] = []

        if in_date_window(value, self.today, self.days_past, self.days_future):
            confidence += 0.4
            reasons.append("date within plausible window")
        else:
            confidence -= 0.3
            if value < self.today:
                suggestions.append("Date seems too old - verify the year")
            else:
                suggestions.append("Date is in the future - verify the date")

        if abs((value - self.today).days) <= 30:
            confidence += 0.2
            reasons.append("recent")

        # 週末の外食はよくある
        if value.weekday() >= 5 and category == "Food & Dining":
            confidence += 0.1
            reasons.append("weekend dining")

        confidence = _clamp(confidence)
        return ValidationResult(field="date", is_valid=confidence > 0.5, confidence=confidence,
                                suggestions=tuple(suggestions), reasoning="; ".join(reasons))

    def validate_merchant(self, merchant: str, entry: Optional[MerchantKnowledgeEntry],
                          amount: Optional[Decimal] = None) -> ValidationResult:
        """店名をチェック"""
        confidence = 0.5
        reasons: List[str] = []
        suggestions: List[str] = []
        corrected = None

        if 3 <= len(merchant) <= 50:
            confidence += 0.2
            reasons.append("reasonable length")
        elif len(merchant) > 50:
            corrected = merchant[:50].rstrip()
            suggestions.append("Merchant name is too long - truncated")

        if entry is not None:
            confidence += 0.3
            reasons.append(f"known merchant ({entry.category})")
            if amount is not None and entry.amount_in_range(amount):
                confidence += 0.2
                reasons.append("amount consistent with merchant")

        words = re.findall(r"[a-z]+", merchant.lower())
        if words and all(w in GENERIC_MERCHANT_WORDS for w in words):
            confidence -= 0.3
            suggestions.append("Merchant name seems generic - check the receipt header")

        confidence = _clamp(confidence)
        return ValidationResult(field="merchant", is_valid=confidence > 0.5, confidence=confidence,
                                suggestions=tuple(suggestions), reasoning="; ".join(reasons),
                                corrected_value=corrected)

    def validate_category(self, category: str, entry: Optional[MerchantKnowledgeEntry],
                          amount: Optional[Decimal], text: str) -> ValidationResult:
        """カテゴリをチェック"""
        confidence = 0.5
        reasons: List[str] = []
        suggestions: List[str] = []
        corrected = None

        if entry is not None:
            if entry.category == category:
                confidence += 0.4
                reasons.append("matches merchant knowledge")
            else:
                confidence -= 0.2
                corrected = entry.category
                suggestions.append(f"Consider '{entry.category}'")

        typical = CATEGORY_TYPICAL_AMOUNTS.get(category)
        if amount is not None and typical and typical[0] <= amount <= typical[1]:
            confidence += 0.2
            reasons.append("typical amount for category")

        text_lower = text.lower()
        hits = [kw for kw in CATEGORY_HINT_KEYWORDS.get(category, ()) if keyword_in(kw, text_lower)]
        if hits:
            confidence += min(0.3, 0.1 * len(hits))
            reasons.append("keywords: " + ", ".join(hits))

        confidence = _clamp(confidence)
        return ValidationResult(field="category", is_valid=confidence > 0.5, confidence=confidence,
                                suggestions=tuple(suggestions), reasoning="; ".join(reasons),
                                corrected_value=corrected)

    def validate_transaction_id(self, transaction_id: str) -> ValidationResult:
        """取引IDをチェック"""
        if len(transaction_id) < 6:
            return ValidationResult(field="transaction_id", is_valid=False, confidence=0.2,
                                    suggestions=("Transaction ID seems too short",),
                                    reasoning="shorter than 6 characters")
        confidence = 0.5
        reasons: List[str] = []
        suggestions: List[str] = []

        if any(re.match(shape, transaction_id) for shape in KNOWN_TRANSACTION_ID_SHAPES):
            confidence += 0.4
            reasons.append("matches a known id format")
        else:
            confidence -= 0.1
            suggestions.append("Transaction ID format is unusual")

        if 8 <= len(transaction_id) <= 20:
            confidence += 0.2
            reasons.append("typical length")

        if re.search(r"(.)\1{4,}", transaction_id):
            confidence -= 0.2
            suggestions.append("Transaction ID has repeated characters - possible OCR error")

        confidence = _clamp(confidence)
        return ValidationResult(field="transaction_id", is_valid=confidence > 0.5, confidence=confidence,
                                suggestions=tuple(suggestions), reasoning="; ".join(reasons))

    def check_merchant_category(self, merchant: str, category: str,
                                entry: MerchantKnowledgeEntry) -> ValidationResult:
        if entry.category == category:
            return ValidationResult(field="merchant-category", is_valid=True,
                                    confidence=MERCHANT_CATEGORY_CONSISTENT,
                                    reasoning=f"{merchant} is a known {category} merchant")
        return ValidationResult(field="merchant-category", is_valid=False,
                                confidence=MERCHANT_CATEGORY_MISMATCH,
                                suggestions=(f"{merchant} is usually categorized as '{entry.category}'",),
                                reasoning=f"category '{category}' disagrees with merchant knowledge",
                                corrected_value=entry.category)

    def check_amount_merchant(self, amount: Decimal, merchant: str,
                              entry: MerchantKnowledgeEntry) -> ValidationResult:
        low, high = entry.typical_amount_range
        if entry.amount_in_range(amount):
            return ValidationResult(field="amount-merchant", is_valid=True,
                                    confidence=AMOUNT_MERCHANT_IN_RANGE,
                                    reasoning=f"{amount} is within {merchant}'s typical range {low}-{high}")
        return ValidationResult(field="amount-merchant", is_valid=False,
                                confidence=AMOUNT_MERCHANT_OUT_OF_RANGE,
                                suggestions=(f"Amount is unusual for {merchant} (typical {low}-{high})",),
                                reasoning=f"{amount} is outside {merchant}'s typical range {low}-{high}")
