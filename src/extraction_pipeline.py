"""
レシート・請求書の項目抽出パイプライン
受付 → キャッシュ確認 → 読み込み戦略（補正・認識）→ 最良テキスト選択 → 項目抽出 → 検証 → 信頼度集計
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Optional

from candidate_selector import select_amount, select_category, select_date, select_merchant, select_transaction_id
from config_loader import load_extraction_config, merge_config
from cross_field_validator import CrossFieldValidator
from confidence_aggregator import aggregate_confidence
from document_loader import DocumentLoader, validate_document
from errors import AllRenderingsFailed
from field_extractors import (
    extract_amounts,
    extract_categories,
    extract_currency,
    extract_dates,
    extract_merchants,
    extract_payment_method,
    extract_transaction_ids,
    extract_type,
    normalize_transcript,
)
from image_enhancer import ImageEnhancer
from ocr_models import ExtractedTransactionData, ProcessingResult, SourceDocument, Transcript
from ocr_patterns import detect_payment_platform, get_pattern_set
from recognition_adapter import RecognitionAdapter, TesseractEngine
from rendering_selector import select_best
from result_cache import ResultCache, content_digest


logger = logging.getLogger(__name__)


class ExtractionPipeline:
    def __init__(self, engine=None, rasterizer=None, cache: Optional[ResultCache] = None,
                 config: Optional[Dict] = None, clock: Callable[[], date] = date.today):
        self.config = merge_config(config) if config is not None else load_extraction_config()
        limits = self.config["limits"]
        self.max_bytes = int(limits["max_bytes"])
        self.min_amount = Decimal(str(limits["min_amount"]))
        self.max_amount = Decimal(str(limits["max_amount"]))
        self.days_past = int(self.config["dates"]["days_past"])
        self.days_future = int(self.config["dates"]["days_future"])

        self.recognizer = RecognitionAdapter(engine or TesseractEngine(),
                                             max_workers=self.config["recognition"].get("max_workers", 1))
        self.enhancer = ImageEnhancer(self.config["enhancement"])
        self.loader = DocumentLoader(self.enhancer, self.recognizer, rasterizer, self.config["pdf"])
        self.cache = cache if cache is not None else ResultCache()
        self.clock = clock

    def process(self, document: SourceDocument) -> ProcessingResult:
        """ドキュメントを処理（同一内容ならキャッシュを返す）"""
        media_type = validate_document(document, self.max_bytes)
        key = content_digest(document)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info("cache hit for %s (%s)", document.filename or "document", key[:12])
            return cached

        transcripts = self.loader.load(document, media_type)
        best = select_best(transcripts)
        if best is None:
            raise AllRenderingsFailed(["no transcript selected"])

        result = self.extract(best)
        self.cache.put(key, result)
        return result

    def extract(self, transcript: Transcript) -> ProcessingResult:
        """選ばれた認識テキストから項目を抽出・検証"""
        text = normalize_transcript(transcript.text)
        logger.debug("transcript (%s):\n%s", transcript.method, text)
        today = self.clock()

        platform = detect_payment_platform(text)
        patterns = get_pattern_set(platform)
        if platform:
            logger.info("payment platform detected: %s", platform)

        amount = select_amount(extract_amounts(text, patterns, self.min_amount, self.max_amount), text)
        txn_date = select_date(extract_dates(text, patterns, today, self.days_past, self.days_future), today)
        merchant = select_merchant(extract_merchants(text, patterns), text)
        category = select_category(extract_categories(text, merchant.value if merchant else None))
        transaction_id = select_transaction_id(extract_transaction_ids(text, patterns))
        payment_method = extract_payment_method(text, platform)
        currency = extract_currency(text)
        txn_type = extract_type(text, has_other_evidence=amount is not None or category is not None)

        selected = {
            "amount": amount,
            "date": txn_date,
            "merchant": merchant,
            "category": category,
            "type": txn_type,
            "payment_method": payment_method,
            "transaction_id": transaction_id,
            "currency": currency,
        }
        populated = {name: c for name, c in selected.items() if c is not None}
        for name, c in populated.items():
            logger.info("%s=%s (conf=%.2f): %s", name, c.value, c.confidence, c.reasoning)

        data = ExtractedTransactionData(
            raw_text=transcript.text,
            field_confidence={name: c.confidence for name, c in populated.items()},
            field_reasoning={name: c.reasoning for name, c in populated.items()},
            **{name: c.value for name, c in populated.items()},
        )

        validator = CrossFieldValidator(today, self.days_past, self.days_future)
        validations = validator.validate(data)
        confidence = aggregate_confidence(data, validations, transcript.engine_confidence)
        logger.info("extracted %d field(s) from '%s' rendering, confidence=%.2f",
                    len(populated), transcript.method, confidence)

        return ProcessingResult(
            data=data,
            confidence=confidence,
            selected_rendering_method=transcript.method,
            validation_results=tuple(validations),
        )
