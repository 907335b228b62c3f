from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from sheet_shaper import __version__

ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "sheet_shaper.cli"]
FIXED_STAMP = "20260301T010203Z"

REPORT_CSV = (
    "Q1 Report,,,\n"
    "Name,Age,Email,Zip\n"
    "Alice,30,alice@example.com,12345-6789\n"
    "Bob,41,bob@example.com,90210\n"
)


def run_cli(*args: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    merged_env = dict(os.environ)
    merged_env["SHEET_SHAPER_OUTPUT_STAMP"] = FIXED_STAMP
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        env=merged_env,
    )


class CliTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmp.name)
        self.report = self.tmpdir / "report.csv"
        self.report.write_text(REPORT_CSV, encoding="utf-8")
        self.store = self.tmpdir / "presets.json"

    def tearDown(self):
        self._tmp.cleanup()


class VersionTests(CliTestCase):
    def test_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(proc.stdout.strip(), __version__)

    def test_bad_arguments_return_exit_1(self):
        proc = run_cli("transform")
        self.assertEqual(proc.returncode, 1)
        proc = run_cli("explode")
        self.assertEqual(proc.returncode, 1)


class InspectTests(CliTestCase):
    def test_inspect_json_detects_header_and_types(self):
        proc = run_cli("inspect", str(self.report), "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)

        self.assertEqual(payload["contract"]["name"], "sheet_shaper.inspect")
        self.assertEqual(payload["header_row"], 1)
        self.assertTrue(payload["header_detected"])
        self.assertEqual(payload["delimiter"], ",")
        self.assertEqual(payload["row_count"], 4)
        types = {column["key"]: column["semantic_type"] for column in payload["columns"]}
        self.assertEqual(types, {"Name": "text", "Age": "number", "Email": "email", "Zip": "zipcode"})
        kinds = {column["key"]: column["filter_kind"] for column in payload["columns"]}
        self.assertEqual(kinds["Age"], "number")
        self.assertEqual(kinds["Name"], "string")
        self.assertEqual(payload["run_summary"]["metrics"]["data_rows"], 2)

    def test_inspect_human_output_goes_to_stderr(self):
        proc = run_cli("inspect", str(self.report))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(proc.stdout, "")
        self.assertIn("Header row: 1 (detected)", proc.stderr)
        self.assertIn("- Email: email", proc.stderr)

    def test_header_override(self):
        proc = run_cli("inspect", str(self.report), "--header-row", "0", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertFalse(payload["header_detected"])
        self.assertEqual(payload["columns"][0]["key"], "Q1 Report")

    def test_header_out_of_range_returns_exit_3(self):
        proc = run_cli("inspect", str(self.report), "--header-row", "99")
        self.assertEqual(proc.returncode, 3)
        self.assertIn("out of bounds", proc.stderr)

    def test_missing_file_returns_exit_1(self):
        proc = run_cli("inspect", str(self.tmpdir / "nope.csv"))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("File not found", proc.stderr)

    def test_unsupported_file_returns_exit_2(self):
        notes = self.tmpdir / "notes.docx"
        notes.write_bytes(b"not a sheet")
        proc = run_cli("inspect", str(notes))
        self.assertEqual(proc.returncode, 2)
        self.assertIn("Unsupported file format", proc.stderr)


class TransformTests(CliTestCase):
    def test_select_rename_filter_to_csv(self):
        output = self.tmpdir / "out.csv"
        proc = run_cli(
            "transform",
            str(self.report),
            "--select", "Name",
            "--select", "Email",
            "--rename", "Name=Full Name",
            "--filter", "Age:greaterThan:35",
            "--format", "csv",
            "-o", str(output),
            "--json",
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(output.read_text(encoding="utf-8"), "Full Name,Email\nBob,bob@example.com\n")

        payload = json.loads(proc.stdout)
        self.assertEqual(payload["contract"]["name"], "sheet_shaper.transform_summary")
        self.assertEqual([column["name"] for column in payload["columns"]], ["Full Name", "Email"])
        metrics = payload["run_summary"]["metrics"]
        self.assertEqual(metrics["rows_in"], 2)
        self.assertEqual(metrics["rows_out"], 1)
        self.assertEqual(metrics["dropped_rows"], 1)
        self.assertEqual(metrics["columns_exported"], 2)
        self.assertEqual(payload["run_summary"]["output_file"], str(output))

    def test_zip_plus_four_is_kept_by_default(self):
        output = self.tmpdir / "out.csv"
        proc = run_cli("transform", str(self.report), "--select", "Zip", "--format", "csv", "-o", str(output))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(output.read_text(encoding="utf-8"), "Zip\n12345-6789\n90210\n")

    def test_options_file_turns_on_zip_sanitizing(self):
        options = self.tmpdir / "options.json"
        options.write_text(json.dumps({"sanitizeZipCodes": True}), encoding="utf-8")
        output = self.tmpdir / "out.csv"
        proc = run_cli(
            "transform", str(self.report), "--options", str(options),
            "--select", "Zip", "--format", "csv", "-o", str(output),
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(output.read_text(encoding="utf-8"), "Zip\n12345\n90210\n")

    def test_preset_from_store(self):
        output = self.tmpdir / "out.csv"
        proc = run_cli(
            "transform", str(self.report), "--preset", "Standard Format", "--store", str(self.store),
            "--select", "Zip", "--format", "csv", "-o", str(output),
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(output.read_text(encoding="utf-8"), "Zip\n12345\n90210\n")

    def test_xlsx_is_the_default_format(self):
        output = self.tmpdir / "out.xlsx"
        proc = run_cli("transform", str(self.report), "-o", str(output), "-q")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertTrue(output.read_bytes().startswith(b"PK"))
        self.assertNotIn("sheet-shaper transform", proc.stderr)

    def test_refuses_to_overwrite(self):
        output = self.tmpdir / "out.csv"
        output.write_text("keep me", encoding="utf-8")
        proc = run_cli("transform", str(self.report), "--format", "csv", "-o", str(output))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Refusing to overwrite", proc.stderr)
        self.assertEqual(output.read_text(encoding="utf-8"), "keep me")

    def test_bad_inputs_return_exit_1(self):
        output = self.tmpdir / "out.csv"
        for extra in (
            ["--filter", "Name:fuzzy:x"],
            ["--type", "Age=colour"],
            ["--select", "Ghost"],
            ["--rename", "NoEquals"],
            ["--preset", "missing", "--store", str(self.store)],
        ):
            proc = run_cli("transform", str(self.report), "--format", "csv", "-o", str(output), *extra)
            self.assertEqual(proc.returncode, 1, (extra, proc.stderr))
            self.assertFalse(output.exists())

    def test_header_out_of_range_returns_exit_3(self):
        output = self.tmpdir / "out.csv"
        proc = run_cli("transform", str(self.report), "--header-row", "99", "--format", "csv", "-o", str(output))
        self.assertEqual(proc.returncode, 3)
        self.assertFalse(output.exists())


class PresetCommandTests(CliTestCase):
    def test_list_save_show_delete(self):
        proc = run_cli("presets", "list", "--store", str(self.store), "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["contract"]["name"], "sheet_shaper.presets")
        self.assertEqual([record["id"] for record in payload["presets"]], ["default-1", "default-2"])

        proc = run_cli(
            "presets", "save", "Mine", "--select", "Name", "--type", "Zip=zipcode",
            "--id", "mine", "--store", str(self.store),
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Preset saved: mine", proc.stderr)

        proc = run_cli("presets", "show", "mine", "--store", str(self.store), "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        record = json.loads(proc.stdout)["presets"][0]
        self.assertEqual(
            record["columnSelections"],
            {
                "Name": {"selected": True, "semanticType": None},
                "Zip": {"selected": False, "semanticType": "zipcode"},
            },
        )

        proc = run_cli("presets", "list", "--store", str(self.store))
        self.assertIn("mine\tMine", proc.stdout)

        proc = run_cli("presets", "delete", "mine", "--store", str(self.store))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Preset deleted: mine", proc.stderr)
        proc = run_cli("presets", "show", "mine", "--store", str(self.store))
        self.assertEqual(proc.returncode, 1)

    def test_save_rejects_unknown_type(self):
        proc = run_cli("presets", "save", "Bad", "--type", "Zip=colour", "--store", str(self.store))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Unknown semantic type", proc.stderr)


if __name__ == "__main__":
    unittest.main()
