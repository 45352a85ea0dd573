import os
import sys
from datetime import date
from decimal import Decimal

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from candidate_selector import select_category, select_merchant
from field_extractors import (
    clean_merchant_name,
    extract_amounts,
    extract_categories,
    extract_currency,
    extract_dates,
    extract_merchants,
    extract_payment_method,
    extract_transaction_ids,
    extract_type,
    is_suspicious_amount,
    normalize_transcript,
    parse_date,
)
from ocr_patterns import GENERIC_PATTERNS, get_pattern_set


RECEIPT = "RECEIPT\nZomato Foods Pvt Ltd\nDate: 12/03/2024\nTotal: Rs. 450.00\nTXN1234567890"


def test_normalize_keeps_lines_and_drops_noise():
    raw = "  RECEIPT ~~\r\n\r\nZomato*Foods   Pvt Ltd\n\nTotal:  Rs. 450.00 |"
    assert normalize_transcript(raw) == "RECEIPT\nZomato Foods Pvt Ltd\nTotal: Rs. 450.00"
    assert normalize_transcript("") == ""


def test_amount_grand_total_is_most_specific():
    text = "Item 1 120.00\nGrand Total: Rs. 450.00"
    cands = extract_amounts(text, GENERIC_PATTERNS)
    best = max(cands, key=lambda c: c.confidence)
    assert best.value == Decimal("450.00")
    assert best.confidence == 0.95


def test_amount_out_of_range_is_rejected():
    assert extract_amounts("Total: Rs. 20000000.00\nAmount: Rs. 0.00", GENERIC_PATTERNS) == []


def test_amount_filler_strings_are_suspicious():
    """1111 や 9999 のような埋め草だけを除外し、実在しうる金額は残す"""
    assert extract_amounts("Total: Rs. 1111", GENERIC_PATTERNS) == []
    assert is_suspicious_amount("0.00")
    assert is_suspicious_amount("9,999")
    assert not is_suspicious_amount("0.50")
    assert not is_suspicious_amount("1111.00")
    assert not is_suspicious_amount("2222")


def test_amount_with_repeated_digits_is_kept():
    cands = extract_amounts("Grand Total: Rs. 5,555.00", GENERIC_PATTERNS)
    assert {c.value for c in cands} == {Decimal("5555.00")}


def test_amount_indian_digit_grouping():
    cands = extract_amounts("Total: Rs. 1,23,456.50", GENERIC_PATTERNS)
    assert {c.value for c in cands} == {Decimal("123456.50")}


def test_parse_date_forms():
    assert parse_date("12/03/2024") == date(2024, 3, 12)
    assert parse_date("12-03-2024") == date(2024, 3, 12)
    assert parse_date("2024-03-12") == date(2024, 3, 12)
    assert parse_date("12 March, 2024") == date(2024, 3, 12)
    assert parse_date("05-11-49") == date(2049, 11, 5)
    assert parse_date("05-11-50") == date(1950, 11, 5)
    assert parse_date("31/02/2024") is None


def test_invalid_calendar_date_is_skipped():
    assert extract_dates("Date: 31/02/2024", GENERIC_PATTERNS, date(2024, 3, 20)) == []


def test_date_outside_window_stays_reportable_with_low_confidence():
    cands = extract_dates("Date: 12/03/2024", GENERIC_PATTERNS, date(2026, 10, 19))
    assert cands
    assert all(c.value == date(2024, 3, 12) for c in cands)
    assert all(c.confidence < 0.1 for c in cands)
    assert "outside plausibility window" in cands[0].reasoning


def test_date_inside_window_keeps_pattern_confidence():
    cands = extract_dates("Date: 12/03/2024", GENERIC_PATTERNS, date(2024, 3, 20))
    assert max(c.confidence for c in cands) == 0.9


def test_merchant_legal_suffix_and_header_do_not_merge_lines():
    cands = extract_merchants(RECEIPT, GENERIC_PATTERNS)
    values = {c.value for c in cands}
    assert "Zomato Foods" in values
    assert not any("RECEIPT" in v for v in values)
    assert select_merchant(cands, RECEIPT).value == "Zomato Foods"


def test_merchant_label_form():
    cands = extract_merchants("Billed By: Sharma Electronics\nGSTIN 29ABCDE", GENERIC_PATTERNS)
    assert "Sharma Electronics" in {c.value for c in cands}


def test_merchant_denylist_rejects_footer_text():
    assert extract_merchants("thank you for your visit", GENERIC_PATTERNS) == []


def test_clean_merchant_name_strips_suffix():
    assert clean_merchant_name("Acme Traders Pvt. Ltd.") == "Acme Traders"
    assert clean_merchant_name("Blue Sky Inc") == "Blue Sky"


def test_platform_patterns_are_tried():
    patterns = get_pattern_set("paytm")
    text = "Paid to Sharma Store\n₹ 250 paid"
    merchants = extract_merchants(text, patterns)
    assert "Sharma Store" in {c.value for c in merchants}
    amounts = extract_amounts(text, patterns)
    assert max(c.confidence for c in amounts) == 0.9
    assert {c.value for c in amounts} == {Decimal("250")}


def test_labeled_transaction_id_wins_over_fallback():
    cands = extract_transaction_ids("Txn ID: ABC123456\nTXN9999999999", GENERIC_PATTERNS)
    assert {c.value for c in cands} == {"ABC123456"}


def test_transaction_id_length_floor():
    assert extract_transaction_ids("Ref No: AB12", GENERIC_PATTERNS) == []


def test_unlabeled_transaction_id_fallback():
    cands = extract_transaction_ids(RECEIPT, GENERIC_PATTERNS)
    assert "TXN1234567890" in {c.value for c in cands}
    assert max(c.confidence for c in cands) == 0.8


def test_currency_detection_without_default():
    assert extract_currency("Total $12.50").value == "USD"
    assert extract_currency("Total: Rs. 450").value == "INR"
    assert extract_currency("Total 450") is None


def test_payment_method():
    assert extract_payment_method("Paid using UPI", platform="upi").value == "UPI"
    card = extract_payment_method("Paid by Card ending 1234")
    assert card.value == "Card"
    assert card.confidence == 0.7
    assert extract_payment_method("cashback credited") is None


def test_category_from_merchant_keyword():
    votes = extract_categories("Swiggy order\nTotal 320", merchant="Swiggy")
    assert select_category(votes).value == "Food & Dining"


def test_category_tie_broken_by_matched_characters():
    votes = extract_categories("cab and biryani")
    assert select_category(votes).value == "Food & Dining"


def test_category_fuzzy_merchant_lookup():
    votes = extract_categories("Zomat0 Foods", merchant="Zomat0 Foods")
    assert select_category(votes).value == "Food & Dining"


def test_no_category_without_keywords():
    assert extract_categories("thank you for your visit") == []


def test_type_vote():
    assert extract_type("Refund received to your account").value == "income"
    assert extract_type("Total paid 450").value == "expense"
    assert extract_type("thank you for your visit") is None
    assert extract_type("hello 450", has_other_evidence=True).value == "expense"


def test_receipt_word_is_not_income_evidence():
    assert extract_type(RECEIPT).value == "expense"
