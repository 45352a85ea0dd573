import logging
from typing import Dict, Iterable, Optional

from ocr_models import ExtractedTransactionData, ValidationResult


logger = logging.getLogger(__name__)

FIELD_WEIGHTS = {
    "amount": 0.30,
    "date": 0.25,
    "merchant": 0.20,
    "category": 0.15,
    "transaction_id": 0.10,
}
EXTRACTOR_SHARE = 0.5
VALIDATOR_SHARE = 0.5

FIELD_COMPONENT_WEIGHT = 0.7
RECOGNITION_WEIGHT = 0.1

FIELD_COUNT_STEP = 0.02
FIELD_COUNT_CAP = 0.1

LONG_TRANSACTION_ID = 8
LONG_TRANSACTION_ID_BONUS = 0.1
PAYMENT_METHOD_BONUS = 0.05
CURRENCY_BONUS = 0.05
STRONG_VALIDATION_THRESHOLD = 0.8
STRONG_VALIDATION_STEP = 0.02
STRONG_VALIDATION_CAP = 0.1


def blended_field_confidence(data: ExtractedTransactionData,
                             validations: Iterable[ValidationResult]) -> Dict[str, float]:
    """抽出時の信頼度と検証結果を半々で合成（検証が無ければ抽出時の値のみ）"""
    by_field = {v.field: v for v in validations}
    blended: Dict[str, float] = {}
    for name in FIELD_WEIGHTS:
        if getattr(data, name) is None:
            continue
        extractor = data.field_confidence.get(name, 0.0)
        validation = by_field.get(name)
        if validation is None:
            blended[name] = extractor
        else:
            blended[name] = EXTRACTOR_SHARE * extractor + VALIDATOR_SHARE * validation.confidence
    return blended


def quality_bonus(data: ExtractedTransactionData, validations: Iterable[ValidationResult]) -> float:
    bonus = 0.0
    if data.transaction_id and len(data.transaction_id) >= LONG_TRANSACTION_ID:
        bonus += LONG_TRANSACTION_ID_BONUS
    if data.payment_method:
        bonus += PAYMENT_METHOD_BONUS
    if data.currency:
        bonus += CURRENCY_BONUS
    strong = sum(1 for v in validations if v.confidence > STRONG_VALIDATION_THRESHOLD)
    bonus += min(STRONG_VALIDATION_CAP, STRONG_VALIDATION_STEP * strong)
    return bonus


def aggregate_confidence(data: ExtractedTransactionData, validations: Iterable[ValidationResult],
                         recognition_confidence: Optional[float] = 0.0) -> float:
    """文書全体の信頼度 (0-1)"""
    validations = list(validations)
    blended = blended_field_confidence(data, validations)
    # 抽出できたフィールドの重みで加重平均（欠損フィールドは0扱いにしない）
    total_weight = sum(FIELD_WEIGHTS[name] for name in blended)
    field_component = 0.0
    if total_weight > 0:
        field_component = sum(FIELD_WEIGHTS[name] * conf for name, conf in blended.items()) / total_weight

    count_bonus = min(FIELD_COUNT_CAP, FIELD_COUNT_STEP * len(data.populated_fields()))
    recognition = max(0.0, min(1.0, recognition_confidence or 0.0))

    overall = (FIELD_COMPONENT_WEIGHT * field_component
               + RECOGNITION_WEIGHT * recognition
               + count_bonus
               + quality_bonus(data, validations))
    overall = max(0.0, min(1.0, overall))
    logger.debug("confidence fields=%.3f recognition=%.2f count_bonus=%.2f -> %.3f",
                 field_component, recognition, count_bonus, overall)
    return overall
