from __future__ import annotations

import itertools
import unittest

from listing_intake.column_mapper import (
    map_columns,
    missing_required,
    remap,
    resolve_header,
    unmapped_headers,
)
from listing_intake.errors import UnknownFieldError

SAMPLE_HEADERS = [
    "Store Code",
    "Business Name",
    "Street",
    "Zip",
    "City",
    "Country",
    "Category",
    "Phone",
    "Website",
    "Monday Hours",
    "Lat",
    "Lng",
    "Notes",
]


def targets(mappings):
    return {mapping.source_header: mapping.target_field for mapping in mappings}


class ResolveHeaderTests(unittest.TestCase):
    def test_exact_field_names_ignore_case_and_separators(self):
        self.assertEqual(resolve_header("store_code"), ("storeCode", "exact_field_name"))
        self.assertEqual(resolve_header("MONDAY HOURS"), ("mondayHours", "exact_field_name"))

    def test_numbered_address_lines(self):
        self.assertEqual(resolve_header("Address 2")[0], "addressLine2")
        self.assertEqual(resolve_header("addr3")[0], "addressLine3")
        self.assertEqual(resolve_header("Address")[0], "addressLine1")

    def test_bare_address_abbreviations_default_to_first_line(self):
        self.assertEqual(resolve_header("Addr"), ("addressLine1", "address_line_number"))
        self.assertEqual(resolve_header("Addre")[0], "addressLine1")
        mapped = [(m.source_header, m.target_field) for m in map_columns(["Addr", "City"])]
        self.assertEqual(mapped, [("Addr", "addressLine1"), ("City", "city")])

    def test_phone_family(self):
        self.assertEqual(resolve_header("Phone")[0], "primaryPhone")
        self.assertEqual(resolve_header("Phone 1")[0], "primaryPhone")
        self.assertEqual(resolve_header("Phone 2")[0], "additionalPhones")
        self.assertEqual(resolve_header("Other Phone")[0], "additionalPhones")

    def test_name_family_keeps_description_apart(self):
        self.assertEqual(resolve_header("Business Name")[0], "businessName")
        self.assertEqual(resolve_header("About the business")[0], "fromTheBusiness")

    def test_postal_code_never_becomes_store_code(self):
        self.assertEqual(resolve_header("Zip")[0], "postalCode")
        self.assertEqual(resolve_header("Postal Code")[0], "postalCode")
        self.assertEqual(resolve_header("Zip Code")[0], "postalCode")

    def test_aliases(self):
        self.assertEqual(resolve_header("Lat")[0], "latitude")
        self.assertEqual(resolve_header("Lng")[0], "longitude")
        self.assertEqual(resolve_header("Facebook")[0], "url_facebook")
        self.assertEqual(resolve_header("Holiday Hours")[0], "specialHours")

    def test_unknown_and_blank_headers(self):
        self.assertEqual(resolve_header("Notes"), (None, None))
        self.assertEqual(resolve_header("   "), (None, None))
        self.assertEqual(resolve_header(None), (None, None))


class MapColumnsTests(unittest.TestCase):
    def test_sample_headers(self):
        mapped = targets(map_columns(SAMPLE_HEADERS))
        self.assertEqual(mapped["Store Code"], "storeCode")
        self.assertEqual(mapped["Street"], "addressLine1")
        self.assertEqual(mapped["Zip"], "postalCode")
        self.assertEqual(mapped["Category"], "primaryCategory")
        self.assertEqual(mapped["Phone"], "primaryPhone")
        self.assertIsNone(mapped["Notes"])

    def test_required_flags_and_missing_required(self):
        mappings = map_columns(SAMPLE_HEADERS)
        required = {m.source_header for m in mappings if m.is_required}
        self.assertEqual(required, {"Store Code", "Business Name", "Street", "Country", "Category"})
        self.assertEqual(missing_required(mappings), [])
        partial = map_columns(["Store Code", "Business Name"])
        self.assertEqual(missing_required(partial), ["addressLine1", "country", "primaryCategory"])
        self.assertEqual(missing_required(partial, merge=True), [])

    def test_each_target_claimed_at_most_once(self):
        mappings = map_columns(["Phone", "Telephone", "Tel"])
        claimed = [m.target_field for m in mappings if m.target_field]
        self.assertEqual(claimed, ["primaryPhone"])
        winner = next(m for m in mappings if m.target_field)
        self.assertEqual(winner.source_header, "Phone")
        for loser in mappings:
            if loser is not winner:
                self.assertEqual(loser.displaced_by, "Phone")

    def test_result_does_not_depend_on_header_order(self):
        headers = ["Phone", "Telephone", "Store Code", "Code", "Address", "Street"]
        expected = targets(map_columns(headers))
        for permutation in itertools.permutations(headers):
            self.assertEqual(targets(map_columns(list(permutation))), expected)
        self.assertEqual(expected["Store Code"], "storeCode")
        self.assertIsNone(expected["Code"])
        self.assertEqual(expected["Address"], "addressLine1")
        self.assertIsNone(expected["Street"])

    def test_deterministic(self):
        first = [m.to_dict() for m in map_columns(SAMPLE_HEADERS)]
        second = [m.to_dict() for m in map_columns(SAMPLE_HEADERS)]
        self.assertEqual(first, second)

    def test_combined_opening_hours_column_is_flagged(self):
        mapping = map_columns(["Opening Hours"])[0]
        self.assertTrue(mapping.is_combined_hours)


class RemapTests(unittest.TestCase):
    def test_manual_override_wins_and_displaces(self):
        mappings = remap(map_columns(["Phone", "Notes"]), "Notes", "primaryPhone")
        mapped = targets(mappings)
        self.assertEqual(mapped["Notes"], "primaryPhone")
        self.assertIsNone(mapped["Phone"])
        self.assertEqual(unmapped_headers(mappings), ["Phone"])

    def test_unmap(self):
        mappings = remap(map_columns(SAMPLE_HEADERS), "Website", None)
        self.assertIsNone(targets(mappings)["Website"])

    def test_unknown_target_rejected(self):
        with self.assertRaises(UnknownFieldError):
            remap(map_columns(["Notes"]), "Notes", "faxNumber")

    def test_status_is_not_mappable(self):
        with self.assertRaises(UnknownFieldError):
            remap(map_columns(["Notes"]), "Notes", "status")

    def test_unknown_header_rejected(self):
        with self.assertRaises(KeyError):
            remap(map_columns(["Notes"]), "Missing", "city")


if __name__ == "__main__":
    unittest.main()
