from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from openpyxl import Workbook

from listing_intake.loader import cell_text, decode_bytes, detect_delimiter, load_table

ROOT = Path(__file__).resolve().parents[1]
SAMPLE_CSV = ROOT / "sample-data" / "locations_sample.csv"


class LoaderTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.tmpdir = Path(self._tmp.name)

    def write_bytes(self, name: str, data: bytes) -> Path:
        path = self.tmpdir / name
        path.write_bytes(data)
        return path


class TextLoaderTests(LoaderTestCase):
    def test_sample_csv(self):
        table = load_table(SAMPLE_CSV)
        self.assertEqual(table.detected_format, "csv")
        self.assertEqual(table.delimiter, ",")
        self.assertEqual(table.headers[0], "Store Code")
        self.assertEqual(len(table.rows), 3)
        self.assertEqual(table.rows[1]["Monday Hours"], "06:00-12:00, 13:00-18:00")
        self.assertEqual(table.rows[2]["Store Code"], "")
        self.assertEqual(table.summary()["rows"], 3)
        self.assertEqual(table.summary()["columns"], 13)

    def test_cells_stay_text(self):
        path = self.write_bytes("codes.csv", b"Store Code,Zip\n007,01010\n")
        table = load_table(path)
        self.assertEqual(table.rows, [{"Store Code": "007", "Zip": "01010"}])

    def test_utf8_bom_is_stripped(self):
        path = self.write_bytes("bom.csv", "\ufeffStore Code,City\nA1,Wien\n".encode("utf-8"))
        table = load_table(path)
        self.assertEqual(table.headers, ["Store Code", "City"])
        self.assertEqual(table.detected_encoding, "utf-8")
        self.assertEqual(table.warnings, [])

    def test_non_utf8_falls_back_with_warning(self):
        text = "Store Code,Business Name,City\n" + "".join(
            f"A{i},Café Müller Bäckerei Größe,Zürich\n" for i in range(20)
        )
        path = self.write_bytes("latin.csv", text.encode("latin-1"))
        table = load_table(path)
        self.assertNotEqual(table.detected_encoding, "utf-8")
        self.assertEqual(len(table.warnings), 1)
        self.assertEqual(len(table.rows), 20)

    def test_semicolon_delimiter(self):
        path = self.write_bytes("semi.csv", b"Store Code;City;Country\nA1;Wien;AT\nA2;Graz;AT\n")
        table = load_table(path)
        self.assertEqual(table.delimiter, ";")
        self.assertEqual(table.rows[1]["City"], "Graz")

    def test_blank_rows_are_dropped(self):
        path = self.write_bytes("blank.csv", b"Store Code,City\nA1,Wien\n,\nA2,Graz\n")
        self.assertEqual(len(load_table(path).rows), 2)

    def test_tsv(self):
        path = self.write_bytes("tabs.tsv", b"Store Code\tCity\nA1\tWien\n")
        self.assertEqual(load_table(path).delimiter, "\t")


class WorkbookLoaderTests(LoaderTestCase):
    def make_workbook(self) -> Path:
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "Locations"
        sheet.append(["Store Code", "Zip", "Lat", "Website"])
        sheet.append(["VIE-1", 1010, 48.2, None])
        sheet.append(["VIE-2", 1060, 48.19, "https://example.com"])
        notes = workbook.create_sheet("Notes")
        notes.append(["Comment"])
        notes.append(["ignore me"])
        path = self.tmpdir / "locations.xlsx"
        workbook.save(path)
        return path

    def test_first_sheet_is_default_with_warning(self):
        table = load_table(self.make_workbook())
        self.assertEqual(table.sheet_name, "Locations")
        self.assertEqual(table.sheet_names, ["Locations", "Notes"])
        self.assertEqual(len(table.warnings), 1)
        self.assertEqual(table.rows[0]["Zip"], "1010")
        self.assertEqual(table.rows[0]["Lat"], "48.2")
        self.assertEqual(table.rows[0]["Website"], "")

    def test_named_sheet(self):
        table = load_table(self.make_workbook(), sheet_name="Notes")
        self.assertEqual(table.headers, ["Comment"])
        self.assertEqual(table.warnings, [])

    def test_unknown_sheet(self):
        with self.assertRaises(ValueError):
            load_table(self.make_workbook(), sheet_name="Missing")


class JsonLoaderTests(LoaderTestCase):
    def test_businesses_key_and_nested_values(self):
        payload = {
            "businesses": [
                {"storeCode": "A1", "moreHours": [{"hoursTypeId": "BRUNCH"}], "temporarilyClosed": True},
                {"storeCode": "A2"},
            ]
        }
        path = self.write_bytes("export.json", json.dumps(payload).encode("utf-8"))
        table = load_table(path)
        self.assertEqual(table.detected_format, "json")
        self.assertEqual(json.loads(table.rows[0]["moreHours"]), [{"hoursTypeId": "BRUNCH"}])
        self.assertEqual(table.rows[0]["temporarilyClosed"], "true")
        self.assertEqual(table.rows[1]["moreHours"], "")

    def test_jsonl_skips_bad_lines(self):
        path = self.write_bytes("rows.jsonl", b'{"storeCode": "A1"}\nnot json\n{"storeCode": "A2"}\n')
        table = load_table(path)
        self.assertEqual([row["storeCode"] for row in table.rows], ["A1", "A2"])
        self.assertEqual(len(table.warnings), 1)

    def test_invalid_json(self):
        path = self.write_bytes("broken.json", b"{not json")
        with self.assertRaises(ValueError):
            load_table(path)


class LoaderErrorTests(LoaderTestCase):
    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_table(self.tmpdir / "nope.csv")

    def test_unsupported_format(self):
        path = self.write_bytes("notes.pdf", b"%PDF")
        with self.assertRaises(ValueError):
            load_table(path)


class HelperTests(unittest.TestCase):
    def test_cell_text(self):
        self.assertEqual(cell_text(None), "")
        self.assertEqual(cell_text(float("nan")), "")
        self.assertEqual(cell_text(1010.0), "1010")
        self.assertEqual(cell_text(48.2), "48.2")
        self.assertEqual(cell_text(False), "false")
        self.assertEqual(cell_text("  padded "), "padded")

    def test_decode_bytes_prefers_utf8(self):
        text, encoding, warnings = decode_bytes("Zürich".encode("utf-8"))
        self.assertEqual((text, encoding, warnings), ("Zürich", "utf-8", []))

    def test_detect_delimiter_fallback(self):
        self.assertEqual(detect_delimiter(""), ",")
        self.assertEqual(detect_delimiter("a|b|c\n1|2|3\n"), "|")


if __name__ == "__main__":
    unittest.main()
