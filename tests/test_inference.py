import datetime as dt
import unittest

from sheet_shaper.inference import (
    default_operation,
    default_preserve_chars,
    detect_value_type,
    infer_column_type,
    infer_filter_kind,
    infer_type,
)
from sheet_shaper.table import Table


class InferTypeTests(unittest.TestCase):
    def test_zip_codes(self):
        self.assertEqual(infer_type(["12345", "90210", "10001-1234"]), "zipcode")

    def test_distinctive_shapes(self):
        self.assertEqual(infer_type(["a@b.com", "x.y@corp.org"]), "email")
        self.assertEqual(infer_type(["(555) 123-4567", "555.123.4567", "555-123-4567"]), "phone")
        self.assertEqual(infer_type(["123-45-6789", "987-65-4321"]), "ssn")
        self.assertEqual(infer_type(["$1,200.00", "$5", "$30.50"]), "currency")
        self.assertEqual(infer_type(["2024-01-05", "2024-02-10"]), "date")
        self.assertEqual(infer_type(["1", "2.5", "-3"]), "number")

    def test_threshold_is_sixty_percent(self):
        self.assertEqual(infer_type(["a@b.com", "c@d.org", "x", "y", "z"]), "text")
        self.assertEqual(infer_type(["a@b.com", "c@d.org", "e@f.net", "x", "y"]), "email")

    def test_empty_sample_is_auto(self):
        self.assertEqual(infer_type([]), "auto")
        self.assertEqual(infer_type(["", "   "]), "auto")

    def test_free_text_is_text(self):
        self.assertEqual(infer_type(["apple", "pear", "plum"]), "text")

    def test_sample_is_capped(self):
        values = [f"user{i}@example.com" for i in range(100)] + ["nope"] * 300
        self.assertEqual(infer_type(values), "email")

    def test_column_cells_are_read_as_text(self):
        table = Table(columns=("Zip",), rows=({"Zip": 12345}, {"Zip": 90210}, {"Zip": ""}))
        self.assertEqual(infer_column_type(table, "Zip"), "zipcode")


class ValueShapeTests(unittest.TestCase):
    def test_detect_value_type(self):
        self.assertEqual(detect_value_type("a@b.co"), "email")
        self.assertEqual(detect_value_type("$5.00"), "currency")
        self.assertEqual(detect_value_type("555-123-4567"), "phone")
        self.assertEqual(detect_value_type("12345"), "zipcode")
        self.assertIsNone(detect_value_type("5.00"))
        self.assertIsNone(detect_value_type("hello"))

    def test_preserve_chars_follow_type(self):
        self.assertEqual(default_preserve_chars("phone"), "()-. ")
        self.assertEqual(default_preserve_chars("email"), "@._-")
        self.assertEqual(default_preserve_chars("text", "#"), "#")


class FilterKindTests(unittest.TestCase):
    def test_kinds(self):
        self.assertEqual(infer_filter_kind(["yes", "no", "Y"]), "boolean")
        self.assertEqual(infer_filter_kind(["1", "2", "3.5"]), "number")
        self.assertEqual(infer_filter_kind(["$10", "$20"]), "number")
        self.assertEqual(infer_filter_kind(["2024-01-01", dt.date(2024, 2, 1)]), "date")
        self.assertEqual(infer_filter_kind(["apple", "pear"]), "string")
        self.assertEqual(infer_filter_kind(["", None]), "unknown")

    def test_default_operations(self):
        self.assertEqual(default_operation("string"), "contains")
        self.assertEqual(default_operation("number"), "equals")
        self.assertEqual(default_operation("date"), "dateRange")
        self.assertEqual(default_operation("boolean"), "isTrue")
        self.assertEqual(default_operation("unknown"), "equals")


if __name__ == "__main__":
    unittest.main()
