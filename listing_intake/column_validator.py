"""
Column-level checks run at the mapping stage, before any row is transformed.

Each check looks at every non-empty cell of one mapped column and reports the
first systematic problem it finds, so an operator can fix the source sheet or
the mapping before committing the import.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Iterable, Mapping, Sequence

from listing_intake.column_mapper import ColumnMapping
from listing_intake.schema import COORDINATE_FIELDS, HOURS_FIELDS, get_field, get_rule

DAY_NAME_RE = re.compile(r"monday|tuesday|wednesday|thursday|friday|saturday|sunday", re.IGNORECASE)
WRONG_DASH_RE = re.compile(r"[–—]")
AND_RE = re.compile(r"\band\b", re.IGNORECASE)
DMS_RE = re.compile(r"[°'\"′″]|[NSEW]$", re.IGNORECASE)
DMS_PARTS_RE = re.compile(
    r"^\s*(?P<deg>-?\d+(?:\.\d+)?)\s*°?\s*"
    r"(?:(?P<min>\d+(?:\.\d+)?)\s*['′]\s*)?"
    r"(?:(?P<sec>\d+(?:\.\d+)?)\s*(?:\"|″|'')\s*)?"
    r"(?P<hemi>[NSEW])?\s*$",
    re.IGNORECASE,
)
NON_NUMERIC_RE = re.compile(r"[^0-9.]")
PLACEHOLDER_RE = re.compile(r"^e\.g\.|^example|^sample|^placeholder", re.IGNORECASE)
HTML_BREAK_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)

URL_COLUMN_FIELDS = ("website", "logoPhoto", "coverPhoto", "menuURL")
MAX_LIST_ITEMS = 10
MAX_ITEM_LENGTH = 50
SAMPLE_LIMIT = 3


@dataclass
class ColumnValidationResult:
    is_valid: bool
    severity: str
    message: str
    details: str = ""
    invalid_samples: list[str] = field(default_factory=list)
    invalid_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _error(message: str, details: str, samples: Sequence[str], count: int) -> ColumnValidationResult:
    return ColumnValidationResult(False, "error", message, details, list(samples), count)


def _warning(message: str, details: str, samples: Sequence[str], count: int) -> ColumnValidationResult:
    return ColumnValidationResult(False, "warning", message, details, list(samples), count)


def _clip(text: str, width: int) -> str:
    return text[:width]


def dms_to_decimal(value: str) -> float | None:
    """Convert ``5°17'18.3"N`` style coordinates to signed decimal degrees."""
    match = DMS_PARTS_RE.match(str(value).replace("’", "'").replace("”", '"'))
    if not match:
        return None
    degrees = float(match.group("deg"))
    minutes = float(match.group("min") or 0)
    seconds = float(match.group("sec") or 0)
    if minutes >= 60 or seconds >= 60:
        return None
    decimal = abs(degrees) + minutes / 60 + seconds / 3600
    hemisphere = (match.group("hemi") or "").upper()
    if degrees < 0 or hemisphere in {"S", "W"}:
        decimal = -decimal
    return round(decimal, 6)


def _check_day_hours(values: list[str], field_name: str) -> ColumnValidationResult | None:
    rule = get_rule("day_hours")
    invalid: list[str] = []
    for value in values:
        if value.lower() == "closed":
            continue
        if DAY_NAME_RE.search(value):
            return _error(
                f'Column contains day names (e.g., "{_clip(value, 50)}...")',
                'This looks like a combined "Opening hours" column. Use one column per day '
                '(Monday Hours, Tuesday Hours, ...) with values such as "09:00-17:00", '
                '"09:00-12:00, 14:00-18:00" or "x" for closed.',
                [_clip(value, 80)],
                len(values),
            )
        if WRONG_DASH_RE.search(value):
            return _error(
                "Uses wrong dash character",
                'Hours contain an en-dash or em-dash instead of "-". Use a regular hyphen: "09:00-17:00".',
                [_clip(value, 80)],
                sum(1 for item in values if WRONG_DASH_RE.search(item)),
            )
        if AND_RE.search(value):
            return _error(
                'Uses "and" instead of comma',
                'Separate time periods with a comma: "09:00-12:00, 14:00-18:00" '
                'instead of "09:00-12:00 and 14:00-18:00".',
                [_clip(value, 80)],
                sum(1 for item in values if AND_RE.search(item)),
            )
        if not rule.matches(value):
            invalid.append(value)

    if invalid:
        return _error(
            f"{len(invalid)} of {len(values)} values have invalid format",
            f'Expected format for {get_field(field_name).label}: "09:00-17:00", '
            '"09:00-12:00, 14:00-18:00" or "x" for closed.',
            [_clip(item, 60) for item in invalid[:SAMPLE_LIMIT]],
            len(invalid),
        )
    return None


def _check_special_hours(values: list[str], field_name: str) -> ColumnValidationResult | None:
    rule = get_rule("special_hours")
    invalid = [value for value in values if value.lower() != "x" and not rule.matches(value)]
    if invalid:
        return _error(
            f"{len(invalid)} invalid special hours entries",
            'Expected format: "2025-12-25: x" (closed) or "2025-12-25: 10:00-15:00". '
            f'Found: "{_clip(invalid[0], 50)}"',
            invalid[:SAMPLE_LIMIT],
            len(invalid),
        )
    return None


def _check_coordinates(values: list[str], field_name: str) -> ColumnValidationResult | None:
    schema_field = get_field(field_name)
    low, high = schema_field.minimum, schema_field.maximum
    unparseable: list[str] = []

    for value in values:
        if DMS_RE.search(value):
            dms_values = [item for item in values if DMS_RE.search(item)]
            converted = dms_to_decimal(value)
            suggestion = (
                f'"{value}" should be "{converted}".' if converted is not None
                else 'Example: "5°17\'18.3"N" should be "5.288417".'
            )
            return _error(
                "Uses DMS format (degrees/minutes/seconds)",
                f'Coordinates like "{value}" are in degrees/minutes/seconds. Decimal degrees are '
                f"required: {suggestion} Convert the column before importing.",
                dms_values[:SAMPLE_LIMIT],
                len(dms_values),
            )

        if "," in value:
            if value.count(",") > 1:
                return _error(
                    "Contains multiple commas (likely thousand separators)",
                    f'Values like "{value}" appear to use thousand separators. Coordinates should be '
                    'decimal numbers like "52.385983".',
                    [value],
                    sum(1 for item in values if item.count(",") > 1),
                )
            return _warning(
                "Uses comma as decimal separator",
                f'Value "{value}" uses a comma. Use a period as decimal separator: "{value.replace(",", ".", 1)}"',
                [value],
                sum(1 for item in values if "," in item),
            )

        if NON_NUMERIC_RE.search(value.removeprefix("-")):
            return _error(
                "Contains non-numeric characters",
                f'Value "{value}" contains invalid characters. Coordinates must be decimal numbers like '
                '"52.385983" or "-3.982389" (negative for South/West).',
                [value],
                sum(1 for item in values if NON_NUMERIC_RE.search(item.removeprefix("-"))),
            )

        try:
            number = float(value)
        except ValueError:
            unparseable.append(value)
            continue

        if number < low or number > high:
            out_of_range = [item for item in values if _outside(item, low, high)]
            return _error(
                "Values out of valid range",
                f"{schema_field.label} must be between {low:g} and {high:g}. "
                f'Found "{value}" which is outside the valid range.',
                out_of_range[:SAMPLE_LIMIT],
                len(out_of_range),
            )

    if unparseable:
        return _error(
            f"{len(unparseable)} invalid {field_name} values",
            'Coordinates must be decimal numbers like "52.385983" or "-3.982389". '
            f'Found: "{unparseable[0]}"',
            unparseable[:SAMPLE_LIMIT],
            len(unparseable),
        )
    return None


def _outside(value: str, low: float, high: float) -> bool:
    try:
        number = float(value)
    except ValueError:
        return False
    return number < low or number > high


def _check_urls(values: list[str], field_name: str) -> ColumnValidationResult | None:
    rule = get_rule("single_url")
    invalid: list[str] = []
    for value in values:
        if value.startswith("<") and value.endswith(">"):
            return _warning(
                "URLs wrapped in angle brackets",
                f'URLs like "{value}" carry extra < > characters. They are stripped on import; '
                f'the clean value is "{value[1:-1]}".',
                [value],
                sum(1 for item in values if item.startswith("<")),
            )
        if not rule.matches(value):
            invalid.append(value)

    if invalid:
        return _warning(
            f"{len(invalid)} potentially invalid URLs",
            f'Some URLs may have formatting issues. Sample: "{_clip(invalid[0], 60)}"',
            invalid[:SAMPLE_LIMIT],
            len(invalid),
        )
    return None


def _check_phones(values: list[str], field_name: str) -> ColumnValidationResult | None:
    rule = get_rule("phone")
    invalid = [value for value in values if not rule.matches(value)]
    if invalid:
        return _warning(
            f"{len(invalid)} phone numbers with unusual characters",
            f'Expected format: "+49 123 456789" or "(030) 123-456". Found: "{invalid[0]}"',
            invalid[:SAMPLE_LIMIT],
            len(invalid),
        )
    return None


def _check_labels(values: list[str], field_name: str) -> ColumnValidationResult | None:
    for value in values:
        if PLACEHOLDER_RE.search(value):
            return _warning(
                "Contains example/placeholder text",
                f'Value "{_clip(value, 50)}..." looks like placeholder text, not real labels. '
                "Remove it or replace it with real values.",
                [_clip(value, 60)],
                sum(1 for item in values if PLACEHOLDER_RE.search(item)),
            )
        labels = value.split(",")
        if len(labels) > MAX_LIST_ITEMS:
            return _error(
                f"Too many labels (max {MAX_LIST_ITEMS})",
                f"Found {len(labels)} labels. At most {MAX_LIST_ITEMS} comma-separated labels are allowed.",
                [_clip(value, 60)],
                sum(1 for item in values if len(item.split(",")) > MAX_LIST_ITEMS),
            )
        long_labels = [label.strip() for label in labels if len(label.strip()) > MAX_ITEM_LENGTH]
        if long_labels:
            return _error(
                f"Labels exceed {MAX_ITEM_LENGTH} character limit",
                f'Each label must be {MAX_ITEM_LENGTH} characters or less. Found: "{_clip(long_labels[0], 55)}..."',
                long_labels[:2],
                sum(
                    1 for item in values
                    if any(len(label.strip()) > MAX_ITEM_LENGTH for label in item.split(","))
                ),
            )
    return None


def _split_categories(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _check_additional_categories(values: list[str], field_name: str) -> ColumnValidationResult | None:
    for value in values:
        if HTML_BREAK_RE.search(value):
            return _error(
                "Contains HTML line breaks (<br/>)",
                f'Separate categories with commas, not <br/> tags. Found: "{_clip(value, 60)}..."',
                [_clip(value, 80)],
                sum(1 for item in values if HTML_BREAK_RE.search(item)),
            )
        categories = _split_categories(value)
        if len(categories) > MAX_LIST_ITEMS:
            return _error(
                f"Too many categories (max {MAX_LIST_ITEMS})",
                f"Found {len(categories)} additional categories. At most {MAX_LIST_ITEMS} are allowed.",
                [_clip(value, 60)],
                sum(1 for item in values if len(_split_categories(item)) > MAX_LIST_ITEMS),
            )
        long_items = [item for item in categories if len(item) > MAX_ITEM_LENGTH]
        if long_items:
            return _error(
                f"Categories exceed {MAX_ITEM_LENGTH} character limit",
                f'Each category must be {MAX_ITEM_LENGTH} characters or less. Found: "{_clip(long_items[0], 55)}..."',
                long_items[:2],
                sum(
                    1 for item in values
                    if any(len(category) > MAX_ITEM_LENGTH for category in _split_categories(item))
                ),
            )
    return None


def _check_dates(values: list[str], field_name: str) -> ColumnValidationResult | None:
    rule = get_rule("iso_date")
    invalid = [value for value in values if not rule.matches(value)]
    if invalid:
        return _warning(
            f"{len(invalid)} dates not in YYYY-MM-DD format",
            f'Expected format: "2025-03-15". Found: "{invalid[0]}". Dates are converted during import '
            "when the format is recognisable.",
            invalid[:SAMPLE_LIMIT],
            len(invalid),
        )
    return None


COLUMN_CHECKS: dict[str, Callable[[list[str], str], ColumnValidationResult | None]] = {
    **{name: _check_day_hours for name in HOURS_FIELDS},
    **{name: _check_coordinates for name in COORDINATE_FIELDS},
    **{name: _check_urls for name in URL_COLUMN_FIELDS},
    "primaryPhone": _check_phones,
    "specialHours": _check_special_hours,
    "labels": _check_labels,
    "additionalCategories": _check_additional_categories,
    "openingDate": _check_dates,
}


def validate_column(field_name: str, values: Iterable[Any]) -> ColumnValidationResult | None:
    """Return the first systematic issue in a column, or None when it looks fine."""
    check = COLUMN_CHECKS.get(field_name)
    if check is None:
        return None
    non_empty = [str(value).strip() for value in values if value is not None and str(value).strip()]
    if not non_empty:
        return None
    return check(non_empty, field_name)


def validate_columns(
    mappings: Iterable[ColumnMapping],
    rows: Sequence[Mapping[str, Any]],
) -> dict[str, ColumnValidationResult]:
    issues: dict[str, ColumnValidationResult] = {}
    for mapping in mappings:
        if not mapping.target_field:
            continue
        result = validate_column(mapping.target_field, (row.get(mapping.source_header) for row in rows))
        if result is not None:
            issues[mapping.source_header] = result
    return issues
