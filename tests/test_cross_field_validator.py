import os
import sys
import unittest
from datetime import date
from decimal import Decimal

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from cross_field_validator import CrossFieldValidator
from ocr_models import ExtractedTransactionData
from ocr_patterns import find_merchant_knowledge


class TestCrossFieldValidator(unittest.TestCase):
    """抽出結果検証のテスト"""

    def setUp(self):
        self.validator = CrossFieldValidator(today=date(2024, 3, 20))
        self.zomato = find_merchant_knowledge("Zomato")

    def test_amount_repeated_and_in_merchant_range(self):
        r = self.validator.validate_amount(Decimal("450.00"), self.zomato, "Total 450.00\nPaid 450.00")
        self.assertTrue(r.is_valid)
        self.assertEqual(r.confidence, 1.0)
        self.assertIn("appears 2 times", r.reasoning)

    def test_amount_outside_merchant_range(self):
        r = self.validator.validate_amount(Decimal("5000.00"), self.zomato, "5000.00")
        self.assertAlmostEqual(r.confidence, 0.8)
        self.assertTrue(any("Typical Food & Dining" in s for s in r.suggestions))

    def test_amount_with_too_many_decimals_is_corrected(self):
        r = self.validator.validate_amount(Decimal("12.346"), None, "")
        self.assertAlmostEqual(r.confidence, 0.7)
        self.assertEqual(r.corrected_value, Decimal("12.35"))

    def test_amount_unreasonable(self):
        r = self.validator.validate_amount(Decimal("5000000"), None, "")
        self.assertAlmostEqual(r.confidence, 0.4)
        self.assertFalse(r.is_valid)

    def test_old_date(self):
        r = self.validator.validate_date(date(2022, 1, 1))
        self.assertFalse(r.is_valid)
        self.assertAlmostEqual(r.confidence, 0.2)
        self.assertIn("too old", r.suggestions[0])

    def test_future_date(self):
        r = self.validator.validate_date(date(2024, 6, 1))
        self.assertIn("future", r.suggestions[0])

    def test_recent_weekend_dining(self):
        r = self.validator.validate_date(date(2024, 3, 16), "Food & Dining")  # 土曜日
        self.assertEqual(r.confidence, 1.0)
        self.assertIn("weekend dining", r.reasoning)

    def test_merchant_known_and_consistent(self):
        r = self.validator.validate_merchant("Zomato Foods", self.zomato, Decimal("450"))
        self.assertEqual(r.confidence, 1.0)

    def test_merchant_generic_words(self):
        r = self.validator.validate_merchant("The Store", None)
        self.assertAlmostEqual(r.confidence, 0.4)
        self.assertFalse(r.is_valid)

    def test_merchant_too_long_is_truncated(self):
        r = self.validator.validate_merchant("A" * 60, None)
        self.assertEqual(r.corrected_value, "A" * 50)

    def test_category_disagrees_with_merchant(self):
        uber = find_merchant_knowledge("Uber")
        r = self.validator.validate_category("Food & Dining", uber, None, "")
        self.assertAlmostEqual(r.confidence, 0.3)
        self.assertEqual(r.corrected_value, "Transportation")
        self.assertIn("Consider 'Transportation'", r.suggestions)

    def test_category_keywords_capped(self):
        text = "food restaurant cafe dining meal"
        r = self.validator.validate_category("Food & Dining", None, None, text)
        self.assertAlmostEqual(r.confidence, 0.8)

    def test_transaction_id_rules(self):
        self.assertEqual(self.validator.validate_transaction_id("AB12").confidence, 0.2)
        self.assertFalse(self.validator.validate_transaction_id("AB12").is_valid)
        self.assertEqual(self.validator.validate_transaction_id("TXN1234567890").confidence, 1.0)
        self.assertAlmostEqual(self.validator.validate_transaction_id("abc-def-ghi").confidence, 0.6)
        self.assertAlmostEqual(self.validator.validate_transaction_id("TXN00000000").confidence, 0.9)

    def test_cross_checks_flag_mismatch(self):
        data = ExtractedTransactionData(amount=Decimal("5000"), merchant="Uber", category="Food & Dining",
                                        raw_text="Uber 5000")
        results = {r.field: r for r in self.validator.validate(data)}

        self.assertFalse(results["merchant-category"].is_valid)
        self.assertAlmostEqual(results["merchant-category"].confidence, 0.3)
        self.assertEqual(results["merchant-category"].corrected_value, "Transportation")
        self.assertFalse(results["amount-merchant"].is_valid)
        self.assertAlmostEqual(results["amount-merchant"].confidence, 0.4)

    def test_cross_checks_consistent(self):
        data = ExtractedTransactionData(amount=Decimal("450.00"), merchant="Zomato Foods",
                                        category="Food & Dining", raw_text="Zomato Foods 450.00")
        results = {r.field: r for r in self.validator.validate(data)}

        self.assertAlmostEqual(results["merchant-category"].confidence, 0.9)
        self.assertAlmostEqual(results["amount-merchant"].confidence, 0.8)

    def test_nothing_to_validate(self):
        self.assertEqual(self.validator.validate(ExtractedTransactionData(raw_text="thank you")), [])


if __name__ == '__main__':
    unittest.main()
