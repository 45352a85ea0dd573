"""
レシート抽出パターン定義
フィールド別の正規表現と加盟店ナレッジ。決済プラットフォームごとに専用パターンを持ち、
検出できない場合は汎用パターンを使う。
"""

import re
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from rapidfuzz.distance import JaroWinkler

from ocr_models import MerchantKnowledgeEntry, PlatformPatternSet


CUR = r"(?:\brs\.?|₹|\binr)"
NUM = r"(?<!\d)(?<!\d[.,])(\d{1,3}(?:,\d{2,3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)(?!\d)(?!,\d)"
DMY = r"\d{1,2}[-/.]\d{1,2}[-/.]\d{4}"
DMY_SHORT = r"\d{1,2}[-/.]\d{1,2}[-/.]\d{2}(?!\d)"
MONTH = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
NAME = r"([A-Za-z][A-Za-z &.'-]{1,49})"

GENERIC_PATTERNS = PlatformPatternSet(
    name="general",
    amount=(
        (rf"\b(?:grand\s*total|net\s*total|final\s*amount|total\s*amount|amount\s*payable)\s*:?\s*{CUR}?\s*{NUM}", 0.95),
        (rf"(?<!sub)(?<!sub )\b(?:total|amount)\s*:?\s*{CUR}\s*{NUM}", 0.9),
        (rf"\b(?:you\s*paid|amount\s*transferred|sent)\s*:?\s*{CUR}?\s*{NUM}", 0.88),
        (rf"\b(?:transaction\s*amount|transfer\s*amount)\s*:?\s*{CUR}?\s*{NUM}", 0.87),
        (rf"\b(?:amount\s*paid|bill\s*amount|invoice\s*amount|paid)\s*:?\s*{CUR}?\s*{NUM}", 0.85),
        (rf"{CUR}\s*{NUM}\s*(?:only|paid|/-)", 0.8),
        (rf"\b(?:due|balance)\s*:?\s*{CUR}?\s*{NUM}", 0.75),
        (rf"(?<!sub)(?<!sub )\b(?:total|amount)\s*:?\s*{NUM}", 0.72),
        (rf"{CUR}\s*{NUM}", 0.7),
        (rf"\bsub\s*total\s*:?\s*{CUR}?\s*{NUM}", 0.6),
        (rf"{NUM}\s*{CUR}(?![a-z])", 0.6),
        (rf"^[ \t]*{NUM}[ \t]*(?:only|/-)?[ \t]*$", 0.5),
    ),
    date=(
        (rf"\b(?:bill|invoice|transaction|txn)\s*date\s*:?\s*({DMY}|{DMY_SHORT})", 0.95),
        (rf"\b(?:date|dated|on)\s*:?\s*({DMY}|{DMY_SHORT})", 0.9),
        (rf"\b(\d{{1,2}}[\s-]+{MONTH}[\s,-]+\d{{4}})", 0.85),
        (r"\b(\d{4}-\d{2}-\d{2})\b", 0.85),
        (rf"\b({DMY})", 0.8),
        (rf"\b({DMY_SHORT})", 0.6),
    ),
    merchant=(
        (rf"\b(?:bill|invoice|receipt)\s*from\s*:?[ \t]*{NAME}", 0.95),
        (rf"\b(?:merchant|vendor|store|shop|business)\s*(?:name)?\s*:[ \t]*{NAME}", 0.9),
        (rf"\b(?:sold|billed)\s*by\s*:?[ \t]*{NAME}", 0.85),
        (r"^[ \t]*([A-Za-z][A-Za-z &.'-]*?)[ \t]+(?:pvt\.?[ \t]*ltd\.?|private[ \t]+limited|limited|ltd\.?|inc\.?|corporation|corp\.?)(?![A-Za-z])", 0.88),
        (r"^[ \t]*([A-Za-z][A-Za-z &.'-]*?)[ \t]+(?:llp|llc|co\.|company)(?![A-Za-z])", 0.85),
        (r"^[ \t]*([A-Z][A-Za-z &.'-]{2,30})[ \t]*\n[ \t]*(?:address|addr|phone|ph|tel|email|gst)", 0.6),
    ),
    transaction_id=(
        (r"\b(?:transaction\s*id|txn\s*id|ref\s*no|order\s*id|payment\s*id|invoice\s*no)\s*[:.#]?\s*([A-Za-z0-9_-]+)", 0.9),
        (r"\b(?:utr|rrn)\s*(?:no)?\s*[:.#]?\s*([A-Za-z0-9]+)", 0.9),
        (r"\bid\s*:?\s*([A-Za-z0-9]{8,})", 0.75),
    ),
)

PLATFORM_PATTERNS: Dict[str, PlatformPatternSet] = {
    "paytm": PlatformPatternSet(
        name="paytm",
        amount=(
            (rf"₹\s*{NUM}\s*(?:paid|sent|transferred)", 0.9),
            (rf"paytm[^\n]*?{CUR}\s*{NUM}", 0.85),
        ),
        date=((rf"\b(\d{{1,2}}\s+{MONTH}\s+\d{{4}}),?\s+\d{{1,2}}:\d{{2}}", 0.9),),
        merchant=((rf"\b(?:paid\s*to|sent\s*to)\s*:?[ \t]*{NAME}", 0.92),),
        transaction_id=((r"\b(?:transaction\s*id|txn\s*id|order\s*id)\s*:?\s*([A-Za-z0-9]+)", 0.92),),
    ),
    "razorpay": PlatformPatternSet(
        name="razorpay",
        amount=((rf"razorpay[^\n]*?{CUR}\s*{NUM}", 0.85),),
        merchant=((rf"\b(?:payment\s*to|business)\s*:?[ \t]*{NAME}", 0.9),),
        transaction_id=((r"\b(?:payment\s*id|transaction\s*id|order\s*id)\s*:?\s*([A-Za-z0-9_-]+)", 0.92),),
    ),
    "upi": PlatformPatternSet(
        name="upi",
        amount=(
            (rf"\b(?:sent|paid|transferred)\s*{CUR}\s*{NUM}", 0.88),
            (rf"\bupi[^\n]*?{CUR}\s*{NUM}", 0.8),
        ),
        merchant=(
            (rf"\b(?:recipient|payee)\s*:?[ \t]*{NAME}", 0.9),
            (r"\b(?:sent\s*to|to)[ \t]+([A-Za-z][A-Za-z &.'-]{1,49}?)(?:[ \t]+via|[ \t]+using|[ \t]*$)", 0.85),
        ),
        transaction_id=((r"\b(?:utr|rrn|ref\s*no|upi\s*ref(?:erence)?(?:\s*no)?|transaction\s*ref)\s*[:.#]?\s*([A-Za-z0-9]+)", 0.92),),
    ),
}

# ラベルなしの取引ID (大文字小文字を区別)
FALLBACK_TRANSACTION_ID_PATTERNS = (
    (r"\b((?:TXN|UPI|PAY|ORD)[A-Z0-9]{6,15})\b", 0.8),
    (r"\b([A-Z]{2,4}[0-9]{6,12})\b", 0.65),
    (r"\b([0-9]{12,16})\b", 0.6),
    (r"\b((?=[A-Z0-9]*[0-9])(?=[A-Z0-9]*[A-Z])[A-Z0-9]{8,20})\b", 0.55),
)

# 検証時に「既知の形式」とみなす取引ID
KNOWN_TRANSACTION_ID_SHAPES = (
    r"^[A-Z0-9]{10,20}$",
    r"^TXN[A-Z0-9]{8,15}$",
    r"^UPI[A-Z0-9]{8,15}$",
    r"^[0-9]{12,16}$",
)

PLATFORM_MARKERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("paytm", ("paytm",)),
    ("razorpay", ("razorpay",)),
    ("upi", ("upi", "unified payments")),
    ("phonepe", ("phonepe",)),
    ("googlepay", ("googlepay", "google pay", "gpay")),
    ("amazonpay", ("amazon pay",)),
    ("mobikwik", ("mobikwik",)),
    ("freecharge", ("freecharge",)),
)

PAYMENT_METHODS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Paytm", ("paytm",)),
    ("Razorpay", ("razorpay",)),
    ("UPI", ("upi", "unified payments")),
    ("PhonePe", ("phonepe",)),
    ("Google Pay", ("googlepay", "google pay", "gpay")),
    ("Amazon Pay", ("amazon pay",)),
    ("MobiKwik", ("mobikwik",)),
    ("Freecharge", ("freecharge",)),
    ("Card", ("card", "visa", "mastercard", "rupay")),
    ("Cash", ("cash",)),
    ("Net Banking", ("net banking", "netbanking")),
    ("Wallet", ("wallet",)),
)

PLATFORM_PAYMENT_METHOD = {
    "paytm": "Paytm",
    "razorpay": "Razorpay",
    "upi": "UPI",
    "phonepe": "PhonePe",
    "googlepay": "Google Pay",
    "amazonpay": "Amazon Pay",
    "mobikwik": "MobiKwik",
    "freecharge": "Freecharge",
}

CURRENCY_MARKERS: Tuple[Tuple[str, str], ...] = (
    ("INR", r"₹|\brs\b\.?|\binr\b|\brupees?\b"),
    ("USD", r"\$|\busd\b"),
    ("EUR", r"€|\beur\b"),
    ("GBP", r"£|\bgbp\b"),
)

INCOME_KEYWORDS = ("received", "credit", "credited", "refund", "cashback", "salary", "bonus",
                   "income", "deposit", "dividend", "interest")
EXPENSE_KEYWORDS = ("paid", "debit", "debited", "purchase", "bill", "invoice", "total",
                    "payment", "sent", "order")

# 加盟店ナレッジ (想定金額レンジ付き)
MERCHANT_KNOWLEDGE: Tuple[MerchantKnowledgeEntry, ...] = (
    MerchantKnowledgeEntry(("zomato",), "Food & Dining", "expense", (Decimal("50"), Decimal("2000"))),
    MerchantKnowledgeEntry(("swiggy",), "Food & Dining", "expense", (Decimal("50"), Decimal("2000"))),
    MerchantKnowledgeEntry(("dominos", "domino's"), "Food & Dining", "expense", (Decimal("100"), Decimal("3000"))),
    MerchantKnowledgeEntry(("uber",), "Transportation", "expense", (Decimal("30"), Decimal("1000"))),
    MerchantKnowledgeEntry(("ola",), "Transportation", "expense", (Decimal("30"), Decimal("1000"))),
    MerchantKnowledgeEntry(("irctc",), "Transportation", "expense", (Decimal("100"), Decimal("20000"))),
    MerchantKnowledgeEntry(("makemytrip", "goibibo"), "Transportation", "expense", (Decimal("500"), Decimal("200000"))),
    MerchantKnowledgeEntry(("amazon",), "Shopping", "expense", (Decimal("100"), Decimal("50000"))),
    MerchantKnowledgeEntry(("flipkart",), "Shopping", "expense", (Decimal("100"), Decimal("50000"))),
    MerchantKnowledgeEntry(("myntra",), "Shopping", "expense", (Decimal("100"), Decimal("50000"))),
    MerchantKnowledgeEntry(("bigbasket", "grofers", "blinkit"), "Groceries", "expense", (Decimal("50"), Decimal("10000"))),
    MerchantKnowledgeEntry(("bookmyshow",), "Entertainment", "expense", (Decimal("100"), Decimal("5000"))),
    MerchantKnowledgeEntry(("netflix", "spotify"), "Entertainment", "expense", (Decimal("50"), Decimal("1500"))),
    MerchantKnowledgeEntry(("airtel", "jio", "vodafone", "bsnl"), "Utilities", "expense", (Decimal("10"), Decimal("5000"))),
    MerchantKnowledgeEntry(("apollo", "medplus", "pharmeasy"), "Healthcare", "expense", (Decimal("20"), Decimal("20000"))),
    MerchantKnowledgeEntry(("paytm",), "Digital Payment", "expense", (Decimal("10"), Decimal("100000"))),
    MerchantKnowledgeEntry(("razorpay",), "Digital Payment", "expense", (Decimal("10"), Decimal("100000"))),
)

_ANY_AMOUNT = (Decimal("0.01"), Decimal("10000000"))

# カテゴリ判定用の汎用キーワード
CATEGORY_KNOWLEDGE: Tuple[MerchantKnowledgeEntry, ...] = (
    MerchantKnowledgeEntry(("food", "restaurant", "cafe", "dining", "meal", "kitchen", "pizza", "biryani"),
                           "Food & Dining", "expense", _ANY_AMOUNT),
    MerchantKnowledgeEntry(("taxi", "cab", "fuel", "petrol", "diesel", "metro", "bus", "train", "travel", "flight"),
                           "Transportation", "expense", _ANY_AMOUNT),
    MerchantKnowledgeEntry(("shopping", "mall", "store", "purchase", "fashion", "apparel"),
                           "Shopping", "expense", _ANY_AMOUNT),
    MerchantKnowledgeEntry(("electricity", "water", "gas", "internet", "mobile", "recharge", "broadband", "utility"),
                           "Utilities", "expense", _ANY_AMOUNT),
    MerchantKnowledgeEntry(("movie", "cinema", "theatre", "game", "entertainment", "streaming"),
                           "Entertainment", "expense", _ANY_AMOUNT),
    MerchantKnowledgeEntry(("hospital", "doctor", "medicine", "pharmacy", "medical", "health", "clinic"),
                           "Healthcare", "expense", _ANY_AMOUNT),
    MerchantKnowledgeEntry(("grocery", "groceries", "vegetables", "fruits", "supermarket", "provisions"),
                           "Groceries", "expense", _ANY_AMOUNT),
)

CATEGORY_HINT_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "Food & Dining": ("food", "restaurant", "cafe", "dining", "meal", "eat"),
    "Transportation": ("transport", "taxi", "uber", "ola", "fuel", "travel"),
    "Shopping": ("shop", "store", "purchase", "buy", "mall"),
    "Utilities": ("bill", "electricity", "water", "gas", "internet"),
    "Entertainment": ("movie", "game", "entertainment", "fun"),
    "Healthcare": ("medical", "doctor", "hospital", "pharmacy"),
    "Groceries": ("grocery", "vegetables", "fruits", "supermarket"),
}

FUZZY_MERCHANT_THRESHOLD = 0.9


def get_pattern_set(platform: Optional[str]) -> PlatformPatternSet:
    """プラットフォーム別パターン (汎用パターンを後ろに連結)"""
    specific = PLATFORM_PATTERNS.get(platform or "")
    if specific is None:
        return GENERIC_PATTERNS
    return PlatformPatternSet(
        name=specific.name,
        amount=specific.amount + GENERIC_PATTERNS.amount,
        date=specific.date + GENERIC_PATTERNS.date,
        merchant=specific.merchant + GENERIC_PATTERNS.merchant,
        transaction_id=specific.transaction_id + GENERIC_PATTERNS.transaction_id,
    )


def detect_payment_platform(text: str) -> Optional[str]:
    text_lower = (text or "").lower()
    for platform, markers in PLATFORM_MARKERS:
        if any(keyword_in(marker, text_lower) for marker in markers):
            return platform
    return None


def keyword_in(keyword: str, text_lower: str) -> bool:
    return re.search(r"(?<![a-z0-9])" + re.escape(keyword) + r"(?![a-z0-9])", text_lower) is not None


def matched_keywords(entry: MerchantKnowledgeEntry, text_lower: str) -> List[str]:
    return [kw for kw in entry.match_keywords if keyword_in(kw, text_lower)]


def find_merchant_knowledge(merchant: Optional[str]) -> Optional[MerchantKnowledgeEntry]:
    """加盟店名からナレッジを検索（完全一致 → 類似度）"""
    if not merchant:
        return None
    merchant_lower = merchant.lower()
    for entry in MERCHANT_KNOWLEDGE:
        if matched_keywords(entry, merchant_lower):
            return entry

    # OCRの誤読に備えて単語ごとに類似度をみる
    words = [w for w in re.split(r"[^a-z0-9']+", merchant_lower) if len(w) >= 4]
    best: Tuple[float, Optional[MerchantKnowledgeEntry]] = (0.0, None)
    for entry in MERCHANT_KNOWLEDGE:
        for kw in entry.match_keywords:
            if len(kw) < 4:
                continue
            for w in words:
                sim = JaroWinkler.normalized_similarity(w, kw)
                if sim >= FUZZY_MERCHANT_THRESHOLD and sim > best[0]:
                    best = (sim, entry)
    return best[1]
