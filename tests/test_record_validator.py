from __future__ import annotations

import unittest

from listing_intake.record_validator import (
    AUTO_STORE_CODE_MESSAGE,
    CRITICAL,
    MINOR,
    completeness_score,
    is_exportable,
    prepare_for_validation,
    quality_warnings,
    resolve_status,
    validate_record,
)


def valid_record(**overrides):
    record = {
        "storeCode": "VIE-0042",
        "businessName": "Cafe Central",
        "addressLine1": "Herrengasse 14",
        "country": "AT",
        "primaryCategory": "Cafe",
    }
    record.update(overrides)
    return record


class ValidateRecordTests(unittest.TestCase):
    def test_minimal_record_is_valid(self):
        result = validate_record(valid_record())
        self.assertTrue(result.is_valid)
        self.assertEqual(result.errors, [])

    def test_auto_generated_store_code_gives_one_critical_error(self):
        result = validate_record(valid_record(storeCode="STORE001234"))
        self.assertFalse(result.is_valid)
        self.assertEqual(len(result.critical), 1)
        issue = result.critical[0]
        self.assertEqual(issue.field, "storeCode")
        self.assertEqual(issue.message, AUTO_STORE_CODE_MESSAGE)
        self.assertEqual(resolve_status(valid_record(storeCode="STORE001234")), "pending")

    def test_missing_required_fields_are_all_reported(self):
        result = validate_record({})
        fields = [issue.field for issue in result.critical]
        self.assertEqual(fields, ["storeCode", "businessName", "addressLine1", "country", "primaryCategory"])
        messages = {issue.field: issue.message for issue in result.errors}
        self.assertEqual(messages["addressLine1"], "Street address is required")
        self.assertEqual(messages["country"], "Country is required (minimum 2 characters)")

    def test_whitespace_only_address(self):
        result = validate_record(valid_record(addressLine1="   "))
        self.assertEqual(
            [(issue.field, issue.message) for issue in result.errors],
            [("addressLine1", "Address cannot contain only whitespaces")],
        )
        self.assertEqual(result.errors[0].severity, CRITICAL)

    def test_country_too_short(self):
        result = validate_record(valid_record(country="A"))
        self.assertEqual(result.critical[0].message, "Country is required (minimum 2 characters)")

    def test_format_errors_are_minor_and_carry_suggestions(self):
        result = validate_record(valid_record(mondayHours="9 to 5", website="not a url", latitude=123.0))
        by_field = {issue.field: issue for issue in result.errors}
        self.assertEqual(by_field["mondayHours"].message, "Invalid Monday hours format")
        self.assertIn("09:00-17:00", by_field["mondayHours"].suggestion)
        self.assertEqual(by_field["website"].message, "Invalid website URL format")
        self.assertEqual(by_field["latitude"].message, "Latitude must be less than or equal to 90")
        self.assertTrue(all(issue.severity == MINOR for issue in result.errors))
        self.assertFalse(result.blocks)

    def test_max_length(self):
        result = validate_record(valid_record(businessName="x" * 301))
        self.assertEqual(result.critical[0].message, "Business Name must be 300 characters or less")

    def test_structured_fields(self):
        result = validate_record(
            valid_record(
                moreHours=[{"hoursTypeId": "BRUNCH", "sundayHours": "10:00-14:00"}, {"hoursTypeId": "NAP"}],
                customServices=[{"serviceName": ""}],
                socialMediaUrls=[{"name": "url_facebook", "url": "https://example.com/page"}],
            )
        )
        fields = sorted(issue.field for issue in result.errors)
        self.assertEqual(
            fields,
            ["customServices.0.serviceName", "moreHours.1.hoursTypeId", "socialMediaUrls.0.url"],
        )

    def test_repeated_validation_gives_the_same_result(self):
        record = valid_record(storeCode="STORE000009", mondayHours="9 to 5", latitude="north")
        first = validate_record(record).to_dict()
        self.assertEqual(validate_record(record).to_dict(), first)
        self.assertEqual(validate_record(prepare_for_validation(record)).to_dict(), first)

    def test_never_raises_on_malformed_input(self):
        result = validate_record(valid_record(latitude="north", temporarilyClosed="maybe", labels={"a": 1}))
        self.assertEqual(len(result.errors), 3)


class PrepareForValidationTests(unittest.TestCase):
    def test_coerces_persisted_values(self):
        prepared = prepare_for_validation(
            valid_record(
                latitude="48.21",
                temporarilyClosed="yes",
                website="",
                moreHours='[{"hoursTypeId": "BRUNCH"}]',
                longitude=float("nan"),
            )
        )
        self.assertEqual(prepared["latitude"], 48.21)
        self.assertIs(prepared["temporarilyClosed"], True)
        self.assertIsNone(prepared["website"])
        self.assertEqual(prepared["moreHours"], [{"hoursTypeId": "BRUNCH"}])
        self.assertIsNone(prepared["longitude"])

    def test_missing_boolean_becomes_false(self):
        self.assertIs(prepare_for_validation(valid_record())["temporarilyClosed"], False)


class QualityAndScoreTests(unittest.TestCase):
    def test_quality_warnings(self):
        fields = [issue.field for issue in quality_warnings(valid_record())]
        self.assertEqual(fields, ["coordinates", "hours", "primaryPhone", "website"])
        full = valid_record(
            latitude=48.2, longitude=16.3, mondayHours="09:00-17:00", primaryPhone="+43 1", website="example.com"
        )
        self.assertEqual(quality_warnings(full), [])

    def test_completeness_score(self):
        self.assertEqual(completeness_score({}), 0)
        self.assertEqual(completeness_score(valid_record()), 60)
        self.assertEqual(completeness_score(valid_record(storeCode="STORE000001")), 48)
        full = valid_record(
            primaryPhone="+43 1",
            website="example.com",
            city="Vienna",
            postalCode="1010",
            latitude=48.2,
            longitude=16.3,
            mondayHours="09:00-17:00",
            fromTheBusiness="Since 1876",
            additionalCategories="Bakery",
        )
        self.assertEqual(completeness_score(full), 100)


class ExportabilityTests(unittest.TestCase):
    def test_only_active_synced_valid_records_export(self):
        self.assertTrue(is_exportable(valid_record(status="active")))
        self.assertFalse(is_exportable(valid_record(status="pending")))
        self.assertFalse(is_exportable(valid_record(status="active", is_async=True)))
        self.assertFalse(is_exportable(valid_record(status="active", storeCode="STORE000001")))
        self.assertTrue(is_exportable(valid_record(status="active", mondayHours="bad")))


if __name__ == "__main__":
    unittest.main()
