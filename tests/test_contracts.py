from __future__ import annotations

import unittest
from pathlib import Path

from sheet_shaper import __version__
from sheet_shaper.contracts import CONTRACT_VERSIONS, build_contract, build_run_summary, utc_now_iso, wrap_payload


class ContractTests(unittest.TestCase):
    def test_every_contract_is_versioned(self):
        for name, version in CONTRACT_VERSIONS.items():
            self.assertEqual(build_contract(name), {"name": name, "version": version})

    def test_unknown_contract_is_rejected(self):
        with self.assertRaises(KeyError):
            build_contract("sheet_shaper.nope")

    def test_run_summary_counts_warnings(self):
        summary = build_run_summary(
            command="transform",
            input_path=Path("in.csv"),
            output_path="out.xlsx",
            metrics={"rows_in": 3},
            warnings=["one", "two"],
        )
        self.assertEqual(summary["tool"], "sheet-shaper")
        self.assertEqual(summary["input_file"], "in.csv")
        self.assertEqual(summary["output_file"], "out.xlsx")
        self.assertEqual(summary["warnings_count"], 2)
        self.assertEqual(summary["metrics"], {"rows_in": 3})
        self.assertEqual(summary["status"], "ok")

    def test_run_summary_defaults(self):
        summary = build_run_summary(command="inspect", input_path=None)
        self.assertIsNone(summary["input_file"])
        self.assertIsNone(summary["output_file"])
        self.assertEqual(summary["warnings"], [])
        self.assertEqual(summary["metrics"], {})

    def test_wrap_payload_stamps_versions(self):
        summary = build_run_summary(command="inspect", input_path="x.csv")
        payload = wrap_payload("sheet_shaper.inspect", {"header_row": 2}, summary)
        self.assertEqual(payload["contract"]["name"], "sheet_shaper.inspect")
        self.assertEqual(payload["schema_version"], payload["contract"]["version"])
        self.assertEqual(payload["tool_version"], __version__)
        self.assertEqual(payload["header_row"], 2)
        self.assertIs(payload["run_summary"], summary)

    def test_timestamps_are_utc_zulu(self):
        stamp = utc_now_iso()
        self.assertTrue(stamp.endswith("Z"))
        self.assertNotIn(".", stamp)


if __name__ == "__main__":
    unittest.main()
