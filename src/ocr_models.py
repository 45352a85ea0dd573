from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class SourceDocument:
    content: bytes
    media_type: str
    filename: Optional[str] = None
    modified_at: Optional[float] = None  # epoch seconds, only used for the fallback digest

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class EnhancedRendering:
    image: Any  # PIL.Image.Image
    method: str  # standard|high-contrast|denoised|original


@dataclass(frozen=True)
class Transcript:
    text: str
    engine_confidence: float  # 0..1
    method: str


@dataclass(frozen=True)
class FieldCandidate:
    value: Any
    confidence: float
    matched_span: str
    source_offset: int
    reasoning: str


@dataclass(frozen=True)
class ExtractedTransactionData:
    amount: Optional[Decimal] = None
    date: Optional[date] = None
    merchant: Optional[str] = None
    category: Optional[str] = None
    type: Optional[str] = None  # income|expense
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    currency: Optional[str] = None
    raw_text: str = ""
    field_confidence: Mapping[str, float] = field(default_factory=dict)
    field_reasoning: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # キャッシュ共有されるので読み取り専用にする
        object.__setattr__(self, "field_confidence", MappingProxyType(dict(self.field_confidence)))
        object.__setattr__(self, "field_reasoning", MappingProxyType(dict(self.field_reasoning)))

    def populated_fields(self) -> List[str]:
        names = ["amount", "date", "merchant", "category", "type",
                 "payment_method", "transaction_id", "currency"]
        return [n for n in names if getattr(self, n) is not None]


@dataclass(frozen=True)
class ValidationResult:
    field: str  # "amount" or "merchant-category" for cross checks
    is_valid: bool
    confidence: float
    suggestions: Tuple[str, ...] = ()
    reasoning: str = ""
    corrected_value: Any = None

    def to_dict(self) -> Dict:
        out = {
            "field": self.field,
            "is_valid": self.is_valid,
            "confidence": round(self.confidence, 4),
            "suggestions": list(self.suggestions),
            "reasoning": self.reasoning,
        }
        if self.corrected_value is not None:
            out["corrected_value"] = _jsonable(self.corrected_value)
        return out


@dataclass(frozen=True)
class ProcessingResult:
    data: ExtractedTransactionData
    confidence: float
    selected_rendering_method: str
    validation_results: Tuple[ValidationResult, ...] = ()

    def to_dict(self) -> Dict:
        d = self.data
        return {
            "amount": _jsonable(d.amount),
            "date": _jsonable(d.date),
            "merchant": d.merchant,
            "category": d.category,
            "type": d.type,
            "payment_method": d.payment_method,
            "transaction_id": d.transaction_id,
            "currency": d.currency,
            "raw_text": d.raw_text,
            "field_confidence": {k: round(v, 4) for k, v in sorted(d.field_confidence.items())},
            "field_reasoning": dict(sorted(d.field_reasoning.items())),
            "confidence": round(self.confidence, 4),
            "selected_rendering_method": self.selected_rendering_method,
            "validation_results": [v.to_dict() for v in self.validation_results],
        }


@dataclass(frozen=True)
class MerchantKnowledgeEntry:
    match_keywords: Tuple[str, ...]
    category: str
    type: str
    typical_amount_range: Tuple[Decimal, Decimal]

    def amount_in_range(self, amount: Decimal) -> bool:
        low, high = self.typical_amount_range
        return low <= amount <= high


@dataclass(frozen=True)
class PlatformPatternSet:
    name: str
    amount: Tuple[Tuple[str, float], ...] = ()
    date: Tuple[Tuple[str, float], ...] = ()
    merchant: Tuple[Tuple[str, float], ...] = ()
    transaction_id: Tuple[Tuple[str, float], ...] = ()


def _jsonable(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value
