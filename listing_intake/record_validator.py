"""
Per-record validation against the schema registry.

Every field is checked independently and every failure is collected, so one
run reports the full list of problems. Issues whose root field is one of the
critical fields block export; the rest are minor.
"""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Mapping

from listing_intake.schema import (
    CRITICAL_FIELDS,
    ESSENTIAL_FIELDS,
    HOURS_FIELDS,
    JSON_FIELDS,
    MORE_HOURS_TYPES,
    SCHEMA_FIELDS,
    SOCIAL_PLATFORMS,
    SchemaField,
    get_rule,
    is_system_generated_store_code,
)

CRITICAL = "critical"
MINOR = "minor"

AUTO_STORE_CODE_MESSAGE = "Store code is auto-generated and must be replaced with a real store code"
SERVICE_NAME_MAX = 140
TRUE_STRINGS = {"true", "1", "yes"}
FALSE_STRINGS = {"false", "0", "no"}

REQUIRED_MESSAGES = {
    "storeCode": "Store code is required",
    "businessName": "Business name is required",
    "addressLine1": "Street address is required",
    "country": "Country is required (minimum 2 characters)",
    "primaryCategory": "Primary category is required (minimum 2 characters)",
}

FORMAT_MESSAGES = {
    "non_blank": "Address cannot contain only whitespaces",
    "single_url": "Invalid {label} URL format",
}

SUGGESTIONS = {
    "storeCode": "Use a unique identifier with no spaces or special characters (max 64 chars). Example: 'VIE-0042'",
    "businessName": "Use the business's real-world name exactly as shown on the storefront (max 300 chars)",
    "addressLine1": "Enter the street address and house number (max 80 chars)",
    "country": "Use a 2-letter country code (AT, US, GB) or the full country name",
    "primaryCategory": "Use the exact Google Business category name for this location",
    "additionalCategories": "Separate multiple categories with commas (max 10 categories)",
    "website": "Use full URL format: https://www.example.com",
    "primaryPhone": "Use format with country code: +43-1-236-2933 or local: 01 236 2933",
    "additionalPhones": "Separate phone numbers with commas: +43 1 236 2933, +43 664 123456",
    "openingDate": "Use the ISO date format YYYY-MM-DD, for example 2025-03-15",
    "labels": "Use at most 10 comma-separated labels of up to 50 characters",
    "specialHours": "Use 'YYYY-MM-DD: HH:MM-HH:MM' or 'YYYY-MM-DD: x', separated by commas",
    "latitude": "Must be between -90 and 90 degrees",
    "longitude": "Must be between -180 and 180 degrees",
    "moreHours": "Each entry needs a known hoursTypeId and day hours in HH:MM-HH:MM format",
    "customServices": f"Each service needs a serviceName of 1 to {SERVICE_NAME_MAX} characters",
    "socialMediaUrls": "Each entry needs a url_* platform name and a profile URL on that network",
}
SUGGESTIONS.update({name: "Use format: '09:00-17:00' or '09:00-12:00,13:00-17:00' or 'x' for closed" for name in HOURS_FIELDS})
DEFAULT_SUGGESTION = "Please check the format and requirements for this field"


@dataclass
class ValidationIssue:
    field: str
    message: str
    suggestion: str = DEFAULT_SUGGESTION
    severity: str = MINOR

    @property
    def root_field(self) -> str:
        return self.field.split(".", 1)[0]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)

    @property
    def critical(self) -> list[ValidationIssue]:
        return [issue for issue in self.errors if issue.severity == CRITICAL]

    @property
    def minor(self) -> list[ValidationIssue]:
        return [issue for issue in self.errors if issue.severity != CRITICAL]

    @property
    def blocks(self) -> bool:
        return bool(self.critical)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "critical": [issue.to_dict() for issue in self.critical],
            "minor": [issue.to_dict() for issue in self.minor],
        }


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and value == "":
        return True
    if isinstance(value, (list, tuple, dict)) and not value:
        return True
    return False


def _issue(field_path: str, message: str) -> ValidationIssue:
    root = field_path.split(".", 1)[0]
    return ValidationIssue(
        field=field_path,
        message=message,
        suggestion=SUGGESTIONS.get(root, DEFAULT_SUGGESTION),
        severity=CRITICAL if root in CRITICAL_FIELDS else MINOR,
    )


def _format_message(schema_field: SchemaField) -> str:
    rule = get_rule(schema_field.format_rule)
    if schema_field.name in HOURS_FIELDS:
        return f"Invalid {schema_field.label.split()[0]} hours format"
    template = FORMAT_MESSAGES.get(rule.name)
    if template:
        return template.format(label=schema_field.label.lower().removesuffix(" url"))
    return rule.message


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(int(value)) if float(value).is_integer() else str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()[:10]
    if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        return ", ".join(value)
    return None


def _check_text(schema_field: SchemaField, value: Any) -> list[ValidationIssue]:
    name = schema_field.name
    text = _as_text(value)
    if text is None:
        return [_issue(name, f"{schema_field.label} must be text")]

    issues: list[ValidationIssue] = []
    if schema_field.min_length and len(text) < schema_field.min_length:
        issues.append(_issue(name, REQUIRED_MESSAGES.get(name, f"{schema_field.label} is too short")))
    if schema_field.max_length and len(text) > schema_field.max_length:
        issues.append(_issue(name, f"{schema_field.label} must be {schema_field.max_length} characters or less"))
    if schema_field.format_rule and text and not get_rule(schema_field.format_rule).matches(text):
        issues.append(_issue(name, _format_message(schema_field)))
    return issues


def _check_number(schema_field: SchemaField, value: Any) -> list[ValidationIssue]:
    name = schema_field.name
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return [_issue(name, f"{schema_field.label} must be a number")]
    if math.isinf(value):
        return [_issue(name, f"{schema_field.label} must be a finite number")]
    if schema_field.minimum is not None and value < schema_field.minimum:
        return [_issue(name, f"{schema_field.label} must be greater than or equal to {schema_field.minimum:g}")]
    if schema_field.maximum is not None and value > schema_field.maximum:
        return [_issue(name, f"{schema_field.label} must be less than or equal to {schema_field.maximum:g}")]
    return []


def _check_more_hours(items: list[Any]) -> list[ValidationIssue]:
    rule = get_rule("day_hours")
    issues: list[ValidationIssue] = []
    for index, item in enumerate(items):
        path = f"moreHours.{index}"
        if not isinstance(item, Mapping):
            issues.append(_issue(path, "Expected an object"))
            continue
        if item.get("hoursTypeId") not in MORE_HOURS_TYPES:
            issues.append(_issue(f"{path}.hoursTypeId", f"hoursTypeId must be one of {', '.join(MORE_HOURS_TYPES)}"))
        for day_field in HOURS_FIELDS:
            hours = item.get(day_field)
            if is_empty(hours):
                continue
            if not isinstance(hours, str) or not rule.matches(hours):
                issues.append(_issue(f"{path}.{day_field}", "Invalid hours format"))
    return issues


def _check_custom_services(items: list[Any]) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for index, item in enumerate(items):
        path = f"customServices.{index}"
        if not isinstance(item, Mapping):
            issues.append(_issue(path, "Expected an object"))
            continue
        service_name = item.get("serviceName")
        if not isinstance(service_name, str) or not service_name:
            issues.append(_issue(f"{path}.serviceName", "Service name is required"))
        elif len(service_name) > SERVICE_NAME_MAX:
            issues.append(_issue(f"{path}.serviceName", f"Service name must be {SERVICE_NAME_MAX} characters or less"))
        for optional in ("serviceDescription", "serviceCategoryId"):
            if item.get(optional) is not None and not isinstance(item.get(optional), str):
                issues.append(_issue(f"{path}.{optional}", "Expected text or null"))
    return issues


def _check_social_urls(items: list[Any]) -> list[ValidationIssue]:
    rule = get_rule("social_url")
    issues: list[ValidationIssue] = []
    for index, item in enumerate(items):
        path = f"socialMediaUrls.{index}"
        if not isinstance(item, Mapping):
            issues.append(_issue(path, "Expected an object"))
            continue
        if item.get("name") not in SOCIAL_PLATFORMS:
            issues.append(_issue(f"{path}.name", f"name must be one of {', '.join(SOCIAL_PLATFORMS)}"))
        url = item.get("url")
        if is_empty(url):
            continue
        if not isinstance(url, str) or not rule.matches(url):
            issues.append(_issue(f"{path}.url", rule.message))
    return issues


STRUCTURED_CHECKS = {
    "moreHours": _check_more_hours,
    "customServices": _check_custom_services,
    "socialMediaUrls": _check_social_urls,
}


def _check_field(schema_field: SchemaField, value: Any) -> list[ValidationIssue]:
    name = schema_field.name
    if is_empty(value):
        if schema_field.required:
            return [_issue(name, REQUIRED_MESSAGES.get(name, f"{schema_field.label} is required"))]
        return []

    if schema_field.kind == "number":
        return _check_number(schema_field, value)
    if schema_field.kind == "boolean":
        return [] if isinstance(value, bool) else [_issue(name, f"{schema_field.label} must be true or false")]
    if schema_field.kind == "enum":
        if value in schema_field.choices:
            return []
        return [_issue(name, f"{schema_field.label} must be one of {', '.join(schema_field.choices)}")]
    if name in STRUCTURED_CHECKS:
        if not isinstance(value, list):
            return [_issue(name, f"{schema_field.label} must be a list")]
        return STRUCTURED_CHECKS[name](value)
    return _check_text(schema_field, value)


def validate_record(record: Mapping[str, Any]) -> ValidationResult:
    """Validate one business record; never raises on malformed input."""
    errors: list[ValidationIssue] = []
    for schema_field in SCHEMA_FIELDS:
        errors.extend(_check_field(schema_field, record.get(schema_field.name)))

    store_code = record.get("storeCode")
    if isinstance(store_code, str) and is_system_generated_store_code(store_code):
        errors.append(_issue("storeCode", AUTO_STORE_CODE_MESSAGE))

    return ValidationResult(is_valid=not errors, errors=errors)


def quality_warnings(record: Mapping[str, Any]) -> list[ValidationIssue]:
    warnings: list[ValidationIssue] = []
    if is_empty(record.get("latitude")) or is_empty(record.get("longitude")):
        warnings.append(
            ValidationIssue("coordinates", "Missing coordinates", "Add latitude and longitude in decimal degrees")
        )
    if all(is_empty(record.get(name)) for name in HOURS_FIELDS):
        warnings.append(
            ValidationIssue("hours", "No opening hours set", "Add hours for at least one day, or 'x' for closed days")
        )
    if is_empty(record.get("primaryPhone")):
        warnings.append(ValidationIssue("primaryPhone", "Missing primary phone", SUGGESTIONS["primaryPhone"]))
    if is_empty(record.get("website")):
        warnings.append(ValidationIssue("website", "Missing website", SUGGESTIONS["website"]))
    return warnings


_SCORED_OPTIONAL = (
    ("primaryPhone",),
    ("website",),
    ("city",),
    ("postalCode",),
    ("latitude", "longitude"),
    HOURS_FIELDS,
    ("fromTheBusiness",),
    ("additionalCategories",),
)
_ESSENTIAL_WEIGHT = 60
_OPTIONAL_WEIGHT = 40


def completeness_score(record: Mapping[str, Any]) -> int:
    """Score 0..100: essentials (real store code included) weigh 60, useful optional data 40."""
    essentials = [not is_empty(record.get(name)) for name in ESSENTIAL_FIELDS]
    store_code = record.get("storeCode")
    essentials.append(not is_empty(store_code) and not is_system_generated_store_code(store_code))

    optional_hits = 0
    for names in _SCORED_OPTIONAL:
        if names is HOURS_FIELDS:
            optional_hits += any(not is_empty(record.get(name)) for name in names)
        else:
            optional_hits += all(not is_empty(record.get(name)) for name in names)

    score = _ESSENTIAL_WEIGHT * sum(essentials) / len(essentials)
    score += _OPTIONAL_WEIGHT * optional_hits / len(_SCORED_OPTIONAL)
    return int(round(score))


def resolve_status(record: Mapping[str, Any]) -> str:
    return "pending" if validate_record(record).blocks else "active"


def is_exportable(record: Mapping[str, Any]) -> bool:
    if record.get("status") != "active":
        return False
    if record.get("is_async") is True:
        return False
    return not validate_record(prepare_for_validation(record)).blocks


def _coerce_number(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return value
    return value


def _coerce_boolean(value: Any) -> Any:
    if value is None:
        return False
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS or lowered == "":
            return False
    if isinstance(value, int) and not isinstance(value, bool) and value in (0, 1):
        return bool(value)
    return value


def _coerce_json_list(value: Any) -> Any:
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return value
        return parsed if isinstance(parsed, list) else value
    return value


def prepare_for_validation(record: Mapping[str, Any]) -> dict[str, Any]:
    """Coerce a persisted record into the shape the validator expects."""
    prepared: dict[str, Any] = {}
    for schema_field in SCHEMA_FIELDS:
        name = schema_field.name
        value = record.get(name)
        if isinstance(value, float) and math.isnan(value):
            value = None
        if isinstance(value, str) and value == "" and not schema_field.required:
            value = None
        if schema_field.kind == "number":
            value = _coerce_number(value)
        elif schema_field.kind == "boolean":
            value = _coerce_boolean(value)
        elif name in JSON_FIELDS:
            value = _coerce_json_list(value)
        prepared[name] = value
    return prepared
