"""Tests for the exchange rate cache."""
import math
import os
import sys
import unittest
from datetime import date

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from coopledger.exceptions import InvalidRateError
from coopledger.rates import RateCache, validate_rate


class TestValidateRate(unittest.TestCase):

    def test_accepts_numbers_and_comma_decimals(self):
        self.assertEqual(validate_rate(40), 40.0)
        self.assertEqual(validate_rate("36,50"), 36.5)
        self.assertEqual(validate_rate(" 41.2 "), 41.2)

    def test_rejects_non_positive_and_garbage(self):
        for bad in (0, -1, "0", "", "abc", None, True, math.nan, math.inf):
            with self.subTest(value=bad):
                with self.assertRaises(InvalidRateError):
                    validate_rate(bad)


class TestRateCache(unittest.TestCase):

    def setUp(self):
        self.rates = RateCache({"2024-01-01": 40})

    def test_usd_value_uses_rate_of_the_date(self):
        self.assertAlmostEqual(self.rates.usd_value(2000, "2024-01-01"), 50.0)

    def test_missing_rate_counts_as_zero_and_warns(self):
        """A date without a rate degrades to 0 USD and is logged."""
        with self.assertLogs('coopledger.rates', level='WARNING') as logs:
            value = self.rates.usd_value(1000, "2024-05-05")
        self.assertEqual(value, 0.0)
        self.assertIn("2024-05-05", logs.output[0])
        self.assertFalse(self.rates.is_convertible("2024-05-05"))

    def test_set_rate_normalises_date_and_overwrites(self):
        self.rates.set_rate(date(2024, 1, 1), "45,5")
        self.assertEqual(self.rates.get("2024-01-01"), 45.5)
        self.assertEqual(len(self.rates), 1)

    def test_set_rate_rejects_invalid_rate(self):
        with self.assertRaises(InvalidRateError):
            self.rates.set_rate("2024-01-02", 0)
        self.assertNotIn("2024-01-02", self.rates)

    def test_rate_change_does_not_affect_other_dates(self):
        """Recording today's rate leaves older conversions untouched."""
        before = self.rates.usd_value(2000, "2024-01-01")
        self.rates.set_rate("2024-02-01", 80)
        self.assertEqual(self.rates.usd_value(2000, "2024-01-01"), before)

    def test_copy_is_independent(self):
        clone = self.rates.copy()
        clone.set_rate("2024-03-01", 50)
        self.assertNotIn("2024-03-01", self.rates)
        self.assertNotEqual(clone, self.rates)


if __name__ == '__main__':
    unittest.main()
