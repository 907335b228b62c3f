import datetime as dt
import itertools
import unittest

from sheet_shaper.filters import (
    FilterPredicate,
    apply_filters,
    evaluate,
    parse_filter_expression,
    prune_filters,
)

ROWS = [
    {"Name": "Alice", "Age": "30", "Active": "yes", "Joined": "2024-01-15", "Score": 88},
    {"Name": "bob", "Age": "41", "Active": "no", "Joined": "2023-06-01", "Score": 72.5},
    {"Name": "Cy", "Age": "n/a", "Active": "", "Joined": "soon", "Score": ""},
    {"Name": "Dee", "Age": "25", "Active": "TRUE", "Joined": dt.date(2024, 3, 1), "Score": 95},
]


def names(rows):
    return [row["Name"] for row in rows]


class EvaluateTests(unittest.TestCase):
    def check(self, column, operator, value=None):
        return names(apply_filters(ROWS, [FilterPredicate(column, operator, value)]))

    def test_equality_is_numeric_when_possible(self):
        self.assertEqual(self.check("Age", "equals", 30), ["Alice"])
        self.assertEqual(self.check("Score", "equals", "88.0"), ["Alice"])
        self.assertEqual(self.check("Name", "equals", "BOB"), ["bob"])
        self.assertEqual(self.check("Name", "notEquals", "bob"), ["Alice", "Cy", "Dee"])

    def test_string_operators_ignore_case(self):
        self.assertEqual(self.check("Name", "contains", "LI"), ["Alice"])
        self.assertEqual(self.check("Name", "notContains", "e"), ["bob", "Cy"])
        self.assertEqual(self.check("Name", "startsWith", "d"), ["Dee"])
        self.assertEqual(self.check("Name", "endsWith", "Y"), ["Cy"])

    def test_numeric_comparisons_reject_non_numbers(self):
        self.assertEqual(self.check("Age", "greaterThan", 28), ["Alice", "bob"])
        self.assertEqual(self.check("Age", "lessThan", "28"), ["Dee"])
        self.assertEqual(self.check("Score", "between", [80, 100]), ["Alice", "Dee"])

    def test_open_ranges_admit_everything(self):
        self.assertEqual(self.check("Score", "between", [None, 100]), names(ROWS))
        self.assertEqual(self.check("Joined", "dateRange", {"from": "2024-01-01", "to": None}), names(ROWS))
        self.assertEqual(self.check("Joined", "before"), names(ROWS))

    def test_membership(self):
        self.assertEqual(self.check("Name", "in", ["alice", "DEE"]), ["Alice", "Dee"])
        self.assertEqual(self.check("Name", "in", "cy"), ["Cy"])
        self.assertEqual(self.check("Name", "notIn", ["alice", "bob"]), ["Cy", "Dee"])

    def test_truthiness(self):
        self.assertEqual(self.check("Active", "isTrue"), ["Alice", "Dee"])
        self.assertEqual(self.check("Active", "isFalse"), ["bob", "Cy"])
        self.assertTrue(evaluate(FilterPredicate("x", "isTrue"), {"x": "maybe"}))
        self.assertTrue(evaluate(FilterPredicate("x", "isTrue"), {"x": 1}))

    def test_dates(self):
        self.assertEqual(
            self.check("Joined", "dateRange", {"from": "2024-01-01", "to": "2024-12-31"}), ["Alice", "Dee"]
        )
        self.assertEqual(self.check("Joined", "before", "2024-01-01"), ["bob"])
        self.assertEqual(self.check("Joined", "after", "2024-02-01"), ["Dee"])

    def test_missing_cell_never_matches(self):
        self.assertFalse(evaluate(FilterPredicate("Missing", "notEquals", "x"), {"Name": "Alice"}))
        self.assertFalse(evaluate(FilterPredicate("Name", "isFalse"), {"Name": None}))

    def test_unknown_operator_is_rejected(self):
        with self.assertRaises(ValueError):
            FilterPredicate("Name", "like", "A%")


class CompositionTests(unittest.TestCase):
    def test_filter_order_does_not_matter(self):
        predicates = [
            FilterPredicate("Age", "greaterThan", 20),
            FilterPredicate("Name", "notContains", "bob"),
            FilterPredicate("Active", "isTrue"),
        ]
        expected = names(apply_filters(ROWS, predicates))
        for order in itertools.permutations(predicates):
            self.assertEqual(names(apply_filters(ROWS, list(order))), expected)
        self.assertEqual(expected, ["Alice", "Dee"])

    def test_no_filters_admits_all_rows(self):
        self.assertEqual(apply_filters(ROWS, []), ROWS)

    def test_prune_keeps_only_known_columns(self):
        predicates = [FilterPredicate("Name", "contains", "a"), FilterPredicate("Age", "equals", 1)]
        self.assertEqual(prune_filters(predicates, ["Name"]), (predicates[0],))

    def test_round_trip_through_dict(self):
        predicate = FilterPredicate("Age", "between", [1, 2])
        self.assertEqual(FilterPredicate.from_dict(predicate.to_dict()), predicate)


class ParseExpressionTests(unittest.TestCase):
    def test_scalar_and_bare_operators(self):
        self.assertEqual(parse_filter_expression("Name:contains:al"), FilterPredicate("Name", "contains", "al"))
        self.assertEqual(parse_filter_expression("Active:isTrue"), FilterPredicate("Active", "isTrue", None))
        self.assertEqual(parse_filter_expression("Url:equals:http://x"), FilterPredicate("Url", "equals", "http://x"))

    def test_list_and_range_operands(self):
        self.assertEqual(parse_filter_expression("Name:in:a, b").value, ["a", "b"])
        self.assertEqual(parse_filter_expression("Age:between:10..20").value, ["10", "20"])
        self.assertEqual(
            parse_filter_expression("Joined:dateRange:2024-01-01..").value, {"from": "2024-01-01", "to": None}
        )

    def test_malformed_expressions(self):
        with self.assertRaises(ValueError):
            parse_filter_expression("NameOnly")
        with self.assertRaises(ValueError):
            parse_filter_expression("Name:fuzzy:x")


if __name__ == "__main__":
    unittest.main()
