import datetime as dt
import io
import json
import unittest

import openpyxl

from sheet_shaper.errors import ExportError
from sheet_shaper.exporter import SHEET_TITLE, export_filename, export_table, project, to_grid
from sheet_shaper.loader import load_grid
from sheet_shaper.table import Table, materialize


def make_table():
    return Table(
        columns=("Name", "Joined", "Score", "Note"),
        rows=(
            {"Name": "Alice", "Joined": dt.date(2024, 1, 15), "Score": 88, "Note": "=SUM(A1:A2)"},
            {"Name": "Bob, Jr.", "Joined": "", "Score": 72.5, "Note": 'said "hi"\nthen left'},
        ),
    )


class ProjectTests(unittest.TestCase):
    def test_selection_order_and_display_names(self):
        headers, rows = project(make_table(), ["Score", "Name"], {"Name": "Full Name", "Joined": "Since"})
        self.assertEqual(headers, ["Score", "Full Name"])
        self.assertEqual(rows, [[88, "Alice"], [72.5, "Bob, Jr."]])

    def test_blank_display_name_falls_back_to_key(self):
        grid = to_grid(make_table(), ["Name"], {"Name": ""})
        self.assertEqual(grid[0], ["Name"])

    def test_unknown_column(self):
        with self.assertRaises(ExportError):
            project(make_table(), ["Name", "Ghost"])


class CsvExportTests(unittest.TestCase):
    def test_round_trip_through_loader(self):
        blob = export_table(make_table(), ["Name", "Score"], {"Score": "Points"}, "csv")

        loaded = load_grid(("out.csv", blob))
        table = materialize(loaded.rows, 0)

        self.assertEqual(table.columns, ("Name", "Points"))
        self.assertEqual(table.rows[1]["Name"], "Bob, Jr.")
        self.assertEqual(table.rows[1]["Points"], "72.5")

    def test_quoting(self):
        text = export_table(make_table(), ["Note"], None, "csv").decode("utf-8")
        self.assertEqual(text, 'Note\n=SUM(A1:A2)\n"said ""hi""\nthen left"\n')

    def test_cells_are_rendered_as_text(self):
        text = export_table(make_table(), ["Joined", "Score"], None, "csv").decode("utf-8")
        self.assertEqual(text.splitlines(), ["Joined,Score", "2024-01-15,88", ",72.5"])


class XlsxExportTests(unittest.TestCase):
    def test_workbook_layout(self):
        blob = export_table(make_table(), None, {"Name": "Who"}, "xlsx")
        workbook = openpyxl.load_workbook(io.BytesIO(blob))
        ws = workbook.active

        self.assertEqual(ws.title, SHEET_TITLE)
        self.assertEqual(ws.freeze_panes, "A2")
        self.assertEqual([cell.value for cell in ws[1]], ["Who", "Joined", "Score", "Note"])
        self.assertTrue(ws["A1"].font.bold)
        self.assertEqual(ws["C2"].value, 88)
        self.assertEqual(ws["B2"].value.date(), dt.date(2024, 1, 15))

    def test_formula_like_text_stays_text(self):
        blob = export_table(make_table(), ["Note"], None, "xlsx")
        ws = openpyxl.load_workbook(io.BytesIO(blob)).active
        self.assertEqual(ws["A2"].value, "=SUM(A1:A2)")
        self.assertEqual(ws["A2"].data_type, "s")


class JsonExportTests(unittest.TestCase):
    def test_records_use_display_names(self):
        blob = export_table(make_table(), ["Name", "Joined"], {"Joined": "Since"}, "json")
        records = json.loads(blob)
        self.assertEqual(records[0], {"Name": "Alice", "Since": "2024-01-15"})
        self.assertEqual(records[1], {"Name": "Bob, Jr.", "Since": ""})

    def test_duplicate_names_are_rejected(self):
        with self.assertRaises(ExportError):
            export_table(make_table(), ["Name", "Note"], {"Note": "Name"}, "json")


class ExportErrorsTests(unittest.TestCase):
    def test_unknown_format(self):
        with self.assertRaises(ExportError):
            export_table(make_table(), fmt="parquet")

    def test_table_is_not_modified(self):
        table = make_table()
        before = [dict(row) for row in table.rows]
        export_table(table, ["Name"], {"Name": "N"}, "xlsx")
        self.assertEqual([dict(row) for row in table.rows], before)


class FilenameTests(unittest.TestCase):
    def test_export_filename(self):
        self.assertEqual(export_filename("data.xlsx", "csv"), "data_processed.csv")
        self.assertEqual(export_filename("reports/q1.final.csv", "json"), "q1.final_processed.json")
        self.assertEqual(export_filename("", "xlsx"), "export_processed.xlsx")


if __name__ == "__main__":
    unittest.main()
