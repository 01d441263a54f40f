from __future__ import annotations

import unittest

from listing_intake.column_mapper import map_columns
from listing_intake.column_validator import dms_to_decimal, validate_column, validate_columns


class DayHoursColumnTests(unittest.TestCase):
    def test_and_instead_of_comma(self):
        result = validate_column("mondayHours", ["09:00-12:00 and 13:00-18:00", "09:00-17:00"])
        self.assertFalse(result.is_valid)
        self.assertEqual(result.severity, "error")
        self.assertEqual(result.message, 'Uses "and" instead of comma')
        self.assertEqual(result.invalid_count, 1)
        result = validate_column("mondayHours", ["9:00-17:00 and 18:00-20:00"])
        self.assertEqual(result.message, 'Uses "and" instead of comma')

    def test_day_names_point_to_combined_column(self):
        result = validate_column("mondayHours", ["Monday: 09:00-17:00"])
        self.assertEqual(result.severity, "error")
        self.assertTrue(result.message.startswith("Column contains day names"))

    def test_wrong_dash(self):
        result = validate_column("tuesdayHours", ["09:00–17:00"])
        self.assertEqual(result.message, "Uses wrong dash character")

    def test_counts_invalid_values(self):
        result = validate_column("fridayHours", ["9 to 5", "09:00-17:00", "noon"])
        self.assertEqual(result.message, "2 of 3 values have invalid format")
        self.assertEqual(result.invalid_samples, ["9 to 5", "noon"])

    def test_valid_and_closed_values_pass(self):
        self.assertIsNone(validate_column("mondayHours", ["09:00-17:00", "x", "closed", "", None]))

    def test_empty_column_is_ignored(self):
        self.assertIsNone(validate_column("mondayHours", ["", "  ", None]))


class CoordinateColumnTests(unittest.TestCase):
    def test_dms_values_are_rejected_with_conversion(self):
        result = validate_column("latitude", ["5°17'18.3\"N"])
        self.assertEqual(result.severity, "error")
        self.assertEqual(result.message, "Uses DMS format (degrees/minutes/seconds)")
        self.assertIn("5.288417", result.details)

    def test_dms_to_decimal(self):
        self.assertEqual(dms_to_decimal("5°17'18.3\"N"), 5.288417)
        self.assertEqual(dms_to_decimal("3°58'56.6\"W"), -3.982389)
        self.assertIsNone(dms_to_decimal("north"))

    def test_comma_decimal_is_a_warning(self):
        result = validate_column("latitude", ["52,385983"])
        self.assertEqual(result.severity, "warning")
        self.assertIn("52.385983", result.details)

    def test_thousand_separators(self):
        result = validate_column("longitude", ["1,234,567"])
        self.assertEqual(result.severity, "error")
        self.assertTrue(result.message.startswith("Contains multiple commas"))

    def test_out_of_range(self):
        result = validate_column("latitude", ["48.2", "91.5"])
        self.assertEqual(result.message, "Values out of valid range")
        self.assertEqual(result.invalid_samples, ["91.5"])

    def test_non_numeric(self):
        result = validate_column("longitude", ["16.36E"])
        self.assertEqual(result.severity, "error")

    def test_negative_decimal_passes(self):
        self.assertIsNone(validate_column("longitude", ["-3.982389", "16.3655"]))


class OtherColumnTests(unittest.TestCase):
    def test_angle_bracket_urls_warn(self):
        result = validate_column("website", ["<https://www.example.com>"])
        self.assertEqual(result.severity, "warning")
        self.assertEqual(result.message, "URLs wrapped in angle brackets")

    def test_phone_with_unusual_characters_warns(self):
        result = validate_column("primaryPhone", ["+43 1 236 2933", "call #5"])
        self.assertEqual(result.severity, "warning")
        self.assertEqual(result.invalid_count, 1)

    def test_placeholder_labels_warn(self):
        result = validate_column("labels", ["e.g. flagship, downtown"])
        self.assertEqual(result.severity, "warning")

    def test_too_many_labels(self):
        result = validate_column("labels", [",".join(f"l{i}" for i in range(11))])
        self.assertEqual(result.message, "Too many labels (max 10)")

    def test_html_breaks_in_categories(self):
        result = validate_column("additionalCategories", ["Bakery<br/>Cafe"])
        self.assertEqual(result.severity, "error")

    def test_special_hours(self):
        self.assertIsNone(validate_column("specialHours", ["2025-12-25: x, 2025-12-31: 10:00-15:00"]))
        result = validate_column("specialHours", ["Christmas closed"])
        self.assertEqual(result.message, "1 invalid special hours entries")

    def test_dates_warn(self):
        result = validate_column("openingDate", ["15/03/2025"])
        self.assertEqual(result.severity, "warning")

    def test_fields_without_checks(self):
        self.assertIsNone(validate_column("city", ["anything at all"]))


class ValidateColumnsTests(unittest.TestCase):
    def test_issues_keyed_by_source_header(self):
        mappings = map_columns(["Store Code", "Monday Hours", "Lat", "Notes"])
        rows = [
            {"Store Code": "A1", "Monday Hours": "09:00-12:00 and 13:00-18:00", "Lat": "48.2", "Notes": "x"},
            {"Store Code": "A2", "Monday Hours": "09:00-17:00", "Lat": "48.3", "Notes": ""},
        ]
        issues = validate_columns(mappings, rows)
        self.assertEqual(list(issues), ["Monday Hours"])

    def test_split_hours_joined_with_and(self):
        mappings = map_columns(["Monday Hours"])
        issues = validate_columns(mappings, [{"Monday Hours": "9:00-17:00 and 18:00-20:00"}])
        result = issues["Monday Hours"]
        self.assertEqual(result.severity, "error")
        self.assertEqual(result.message, 'Uses "and" instead of comma')
        self.assertEqual(result.invalid_samples, ["9:00-17:00 and 18:00-20:00"])

    def test_dms_latitude_suggests_decimal(self):
        mappings = map_columns(["Lat"])
        issues = validate_columns(mappings, [{"Lat": "5°17'18.3\"N"}])
        result = issues["Lat"]
        self.assertEqual(result.severity, "error")
        self.assertEqual(result.message, "Uses DMS format (degrees/minutes/seconds)")
        self.assertIn("5.288417", result.details)


if __name__ == "__main__":
    unittest.main()
