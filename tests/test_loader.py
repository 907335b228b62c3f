import datetime as dt
import io
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from openpyxl import Workbook

from sheet_shaper.errors import EmptySourceError, LoadError
from sheet_shaper.loader import clean_rows, load_grid, load_preview, normalize_cell


def workbook_bytes(*sheets):
    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets:
        ws = workbook.create_sheet(title)
        for row in rows:
            ws.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class TextLoaderTests(unittest.TestCase):
    def test_csv_cells_stay_strings_and_blank_rows_are_dropped(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "people.csv"
            path.write_text("name,zip\nAlice,12345\n,\n\nBob,90210\n", encoding="utf-8")

            loaded = load_grid(path)

        self.assertEqual(loaded.detected_format, "csv")
        self.assertEqual(loaded.delimiter, ",")
        self.assertEqual(loaded.rows, [["name", "zip"], ["Alice", "12345"], ["Bob", "90210"]])
        self.assertEqual(loaded.source_name, "people.csv")

    def test_tab_delimiter_is_sniffed(self):
        loaded = load_grid(("data.tsv", b"a\tb\tc\n1\t2\t3\n4\t5\t6\n"))
        self.assertEqual(loaded.delimiter, "\t")
        self.assertEqual(loaded.rows[1], ["1", "2", "3"])

    def test_byte_order_mark_is_stripped(self):
        loaded = load_grid(("bom.csv", b"\xef\xbb\xbfname,age\nAl,1\nBo,2\n"))
        self.assertEqual(loaded.rows[0][0], "name")

    def test_latin1_bytes_decode_without_error(self):
        loaded = load_grid(("latin.csv", "city,code\nMünchen,80331\nKöln,50667\n".encode("latin-1")))
        self.assertEqual(len(loaded.rows), 3)
        self.assertEqual(loaded.rows[1][1], "80331")

    def test_empty_text_raises_empty_source(self):
        with self.assertRaises(EmptySourceError):
            load_grid(("empty.csv", b""))

    def test_preview_is_prefix_of_full_load(self):
        lines = ["title,,", "", "a,b,c"] + [f"{i},{i * 2},{i * 3}" for i in range(40)]
        raw = "\n".join(lines).encode("utf-8")

        preview = load_preview(("big.csv", raw), rows=15)
        full = load_grid(("big.csv", raw))

        self.assertEqual(len(preview.rows), 15)
        self.assertEqual(preview.rows, full.rows[:15])


class WorkbookLoaderTests(unittest.TestCase):
    def test_xlsx_keeps_typed_cells(self):
        raw = workbook_bytes(
            ("Data", [["Name", "Age", "Joined"], ["Alice", 30, dt.datetime(2024, 1, 5)], [None, None, None], ["Bob", 41.5, None]])
        )

        loaded = load_grid(("team.xlsx", raw))

        self.assertEqual(loaded.sheet_name, "Data")
        self.assertEqual(loaded.rows[0], ["Name", "Age", "Joined"])
        self.assertEqual(loaded.rows[1][1], 30)
        self.assertIsInstance(loaded.rows[1][2], dt.datetime)
        self.assertEqual(loaded.rows[2], ["Bob", 41.5, ""])
        self.assertEqual(loaded.row_count, 3)

    def test_first_sheet_is_used_with_warning_when_several_exist(self):
        raw = workbook_bytes(("First", [["a", "b"], [1, 2]]), ("Second", [["c", "d"], [3, 4]]))

        loaded = load_grid(("multi.xlsx", raw))

        self.assertEqual(loaded.sheet_name, "First")
        self.assertEqual(loaded.sheet_names, ["First", "Second"])
        self.assertTrue(any("Multiple sheets" in warning for warning in loaded.warnings))

    def test_named_sheet_is_loaded(self):
        raw = workbook_bytes(("First", [["a", "b"], [1, 2]]), ("Second", [["c", "d"], [3, 4]]))
        loaded = load_grid(("multi.xlsx", raw), sheet_name="Second")
        self.assertEqual(loaded.rows[0], ["c", "d"])
        self.assertEqual(loaded.warnings, [])

    def test_unknown_sheet_raises_load_error(self):
        raw = workbook_bytes(("Only", [["a"]]))
        with self.assertRaisesRegex(LoadError, "not found"):
            load_grid(("one.xlsx", raw), sheet_name="Missing")

    def test_corrupt_workbook_raises_load_error_with_cause(self):
        with self.assertRaises(LoadError) as ctx:
            load_grid(("broken.xlsx", b"this is not a zip archive"))
        self.assertIsNotNone(ctx.exception.cause)
        self.assertIs(ctx.exception.__cause__, ctx.exception.cause)

    def test_sheet_with_only_blank_rows_is_empty(self):
        raw = workbook_bytes(("Blank", [[None, None], ["", "  "]]))
        with self.assertRaises(EmptySourceError):
            load_grid(("blank.xlsx", raw))

    def test_missing_legacy_reader_is_reported_as_load_error(self):
        with mock.patch("sheet_shaper.loader.pd.ExcelFile", side_effect=ImportError("no xlrd")):
            with self.assertRaisesRegex(LoadError, r"\.xls files require xlrd"):
                load_grid(("old.xls", b"\xd0\xcf\x11\xe0"))


class SourceHandlingTests(unittest.TestCase):
    def test_unsupported_extension_raises_load_error(self):
        with self.assertRaisesRegex(LoadError, "Unsupported file format"):
            load_grid(("notes.docx", b"whatever"))

    def test_missing_path_raises_load_error(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(LoadError):
                load_grid(Path(tmpdir) / "nope.csv")

    def test_pdf_text_table_becomes_grid(self):
        text = "Quarterly summary\nName  Age  City\nAlice  30  Paris\nBob  41  Rome\n"
        with mock.patch("sheet_shaper.loader.read_pdf_text", return_value=text):
            loaded = load_grid(("report.pdf", b"%PDF-1.4"))

        self.assertEqual(loaded.detected_format, "pdf")
        self.assertEqual(loaded.sheet_name, "Table 1")
        self.assertEqual(loaded.rows, [["Name", "Age", "City"], ["Alice", "30", "Paris"], ["Bob", "41", "Rome"]])

    def test_pdf_without_tables_falls_back_to_lines(self):
        with mock.patch("sheet_shaper.loader.read_pdf_text", return_value="Hello world\n\nSecond line\n"):
            loaded = load_grid(("memo.pdf", b"%PDF-1.4"))

        self.assertEqual(loaded.rows, [["Hello world"], ["Second line"]])
        self.assertTrue(loaded.warnings)

    def test_unreadable_pdf_raises_load_error(self):
        with mock.patch("sheet_shaper.loader.read_pdf_text", side_effect=ValueError("bad xref")):
            with self.assertRaisesRegex(LoadError, "Could not read PDF"):
                load_grid(("bad.pdf", b"junk"))


class CellCleaningTests(unittest.TestCase):
    def test_normalize_cell_maps_missing_values_to_empty_string(self):
        self.assertEqual(normalize_cell(None), "")
        self.assertEqual(normalize_cell(float("nan")), "")
        self.assertEqual(normalize_cell(dt.time(9, 30)), "09:30:00")
        self.assertIs(normalize_cell(True), True)

    def test_clean_rows_respects_limit(self):
        rows = clean_rows([["a"], [None], ["b"], ["c"]], limit=2)
        self.assertEqual(rows, [["a"], ["b"]])


if __name__ == "__main__":
    unittest.main()
