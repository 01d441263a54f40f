"""
Schema registry for business-location records.

Every field a listing can carry is declared once here, together with the named
format rule it must satisfy. The record validator and the pre-import column
validator both read their patterns from FORMAT_RULES so the two never drift.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable

from listing_intake.errors import UnknownFieldError

KINDS = ("string", "number", "boolean", "date", "enum", "list")

# Character classes shared by the URL grammars.
_HOST_CHARS = r"\-A-ÿ0-9ŠĐČĆŽšđčćž@:%._+~#="
_TLD_CHARS = r"A-ÿ0-9ŠĐČĆŽšđčćž()"
_PATH_CHARS = r"\-A-ÿ0-9ŠĐČĆŽšđčćž()@:%_+.~#?&/="
_URL = rf"(?:https?://)?(?:www\.)?[{_HOST_CHARS}]{{1,256}}\.[{_TLD_CHARS}]{{1,6}}\b(?:[{_PATH_CHARS}]*)"

_PHONE_CHARS = r"0-9a-zA-Z \u00a0()./\u2013\-"
_PHONE_ITEM = rf"\(?[+]?[{_PHONE_CHARS}]*"

_PERIOD = r"\d{1,2}:\d{2} ?- ?\d{1,2}:\d{2}"
_SPECIAL_ENTRY = rf"\d{{4}}-\d{{2}}-\d{{2}}: ?(?:{_PERIOD}|x)"

SOCIAL_PLATFORMS = (
    "url_facebook",
    "url_instagram",
    "url_linkedin",
    "url_pinterest",
    "url_tiktok",
    "url_twitter",
    "url_youtube",
)

MORE_HOURS_TYPES = (
    "ACCESS",
    "BRUNCH",
    "DELIVERY",
    "DRIVE_THROUGH",
    "HAPPY_HOUR",
    "KITCHEN",
    "ONLINE_SERVICE_HOURS",
    "PICKUP",
    "SENIOR_HOURS",
    "TAKEOUT",
)

STATUS_VALUES = ("active", "pending")

SYSTEM_STORE_CODE_RE = re.compile(r"^STORE\d{6}$")


@dataclass(frozen=True)
class FormatRule:
    name: str
    pattern: re.Pattern
    message: str
    description: str
    example: str = ""

    def matches(self, text: str) -> bool:
        return bool(self.pattern.fullmatch(text))


@dataclass(frozen=True)
class SchemaField:
    name: str
    kind: str
    group: str
    label: str
    required: bool = False
    max_length: int | None = None
    min_length: int | None = None
    format_rule: str | None = None
    minimum: float | None = None
    maximum: float | None = None
    choices: tuple[str, ...] = field(default_factory=tuple)


def _rule(name: str, pattern: str, message: str, description: str, example: str = "", flags: int = 0) -> FormatRule:
    return FormatRule(name, re.compile(pattern, flags), message, description, example)


FORMAT_RULES: dict[str, FormatRule] = {
    rule.name: rule
    for rule in (
        _rule(
            "non_blank",
            r"(?s).*\S.*",
            "Value cannot contain only whitespace",
            "At least one non-whitespace character.",
            "Hauptstrasse 12",
        ),
        _rule(
            "day_hours",
            rf"x|(?:{_PERIOD}, ?)*{_PERIOD}",
            "Invalid opening hours format",
            "One or more HH:MM-HH:MM periods separated by commas, or 'x' for closed.",
            "09:00-12:00, 13:00-17:00",
            re.IGNORECASE,
        ),
        _rule(
            "special_hours",
            rf"x|{_SPECIAL_ENTRY}(?:, ?{_SPECIAL_ENTRY})*",
            "Invalid special hours format",
            "Comma-separated 'YYYY-MM-DD: HH:MM-HH:MM' or 'YYYY-MM-DD: x' entries.",
            "2025-12-25: x, 2025-12-31: 10:00-15:00",
        ),
        _rule(
            "single_url",
            rf"{_URL}\s*",
            "Invalid URL format",
            "A single web address, scheme optional.",
            "https://www.example.com",
        ),
        _rule(
            "multiple_urls",
            rf"{_URL}(?:\s*,\s*{_URL})*",
            "Invalid URLs format",
            "One or more web addresses separated by commas.",
            "https://a.example.com, https://b.example.com",
        ),
        _rule(
            "social_url",
            rf"(?:https?://)?(?:www\.)?(?:facebook|instagram|linkedin|pinterest|tiktok|twitter|x|youtube)\.com\b"
            rf"(?:[{_PATH_CHARS}]*\s*)",
            "Invalid social media URL format",
            "A profile URL on a supported social network domain.",
            "https://www.instagram.com/example",
        ),
        _rule(
            "phone",
            _PHONE_ITEM,
            "Invalid phone number format",
            "Digits, letters, spaces, brackets, dots, slashes and hyphens, optional leading '+'.",
            "+43-1-236-2933",
        ),
        _rule(
            "phone_list",
            rf"(?:{_PHONE_ITEM}, ?)*{_PHONE_ITEM}",
            "Invalid additional phones format",
            "Phone numbers separated by commas.",
            "+43 1 236 2933, +43 664 123456",
        ),
        _rule(
            "adwords_phone",
            rf"[+]?[{_PHONE_CHARS}]*",
            "Invalid adwords phone format",
            "A phone number used for ad extensions.",
            "+43 1 236 2933",
        ),
        _rule(
            "iso_date",
            r"\d{4}-(?:0[1-9]|1[012])-(?:0[1-9]|[12]\d|3[01])",
            "Invalid date format (YYYY-MM-DD)",
            "Calendar date in ISO format.",
            "2025-03-15",
        ),
        _rule(
            "category_list",
            r"(?:[^,]*,){0,9}[^,]*",
            "Invalid additional categories format (max 10 categories)",
            "Up to 10 categories separated by commas.",
            "Bakery, Cafe",
        ),
        _rule(
            "label_list",
            r"(?:[^,]{1,50},){0,9}[^,]{1,50}",
            "Invalid labels format (max 10 labels, 50 chars each)",
            "Up to 10 labels separated by commas, 50 characters each.",
            "flagship, downtown",
        ),
    )
}


def _text(name: str, group: str, label: str, **kwargs) -> SchemaField:
    return SchemaField(name=name, kind="string", group=group, label=label, **kwargs)


_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

SCHEMA_FIELDS: tuple[SchemaField, ...] = (
    _text("storeCode", "identity", "Store Code", required=True, min_length=1, max_length=64),
    _text("businessName", "identity", "Business Name", required=True, min_length=1, max_length=300),
    _text("addressLine1", "address", "Address Line 1", required=True, min_length=1, max_length=80, format_rule="non_blank"),
    _text("addressLine2", "address", "Address Line 2", max_length=80),
    _text("addressLine3", "address", "Address Line 3", max_length=80),
    _text("addressLine4", "address", "Address Line 4", max_length=80),
    _text("addressLine5", "address", "Address Line 5", max_length=80),
    _text("postalCode", "address", "Postal Code", max_length=80),
    _text("district", "address", "District", max_length=80),
    _text("city", "address", "City", max_length=80),
    _text("state", "address", "State", max_length=80),
    _text("country", "address", "Country", required=True, min_length=2),
    SchemaField("latitude", "number", "address", "Latitude", minimum=-90, maximum=90),
    SchemaField("longitude", "number", "address", "Longitude", minimum=-180, maximum=180),
    _text("primaryCategory", "categories", "Primary Category", required=True, min_length=2),
    SchemaField("additionalCategories", "list", "categories", "Additional Categories", format_rule="category_list"),
    _text("website", "contact", "Website", max_length=2083, format_rule="single_url"),
    _text("primaryPhone", "contact", "Primary Phone", format_rule="phone"),
    _text("additionalPhones", "contact", "Additional Phones", format_rule="phone_list"),
    _text("adwords", "contact", "AdWords ID", format_rule="adwords_phone"),
    SchemaField("openingDate", "date", "profile", "Opening Date", format_rule="iso_date"),
    _text("fromTheBusiness", "profile", "Description", max_length=750),
    SchemaField("labels", "list", "profile", "Labels", format_rule="label_list"),
    *(
        _text(f"{day}Hours", "hours", f"{day.capitalize()} Hours", format_rule="day_hours")
        for day in _DAYS
    ),
    _text("specialHours", "hours", "Special Hours", format_rule="special_hours"),
    SchemaField("moreHours", "list", "hours", "More Hours"),
    SchemaField("temporarilyClosed", "boolean", "status", "Temporarily Closed"),
    SchemaField("status", "enum", "status", "Status", choices=STATUS_VALUES),
    _text("logoPhoto", "media", "Logo Photo", format_rule="single_url"),
    _text("coverPhoto", "media", "Cover Photo", format_rule="single_url"),
    _text("otherPhotos", "media", "Other Photos", format_rule="multiple_urls"),
    _text("appointmentURL", "service_urls", "Appointment URL", format_rule="multiple_urls"),
    _text("menuURL", "service_urls", "Menu URL", max_length=2083, format_rule="single_url"),
    _text("reservationsURL", "service_urls", "Reservations URL", format_rule="multiple_urls"),
    _text("orderAheadURL", "service_urls", "Order Ahead URL", format_rule="multiple_urls"),
    SchemaField("customServices", "list", "services", "Custom Services"),
    SchemaField("socialMediaUrls", "list", "services", "Social Media URLs"),
)

_BY_NAME: dict[str, SchemaField] = {item.name: item for item in SCHEMA_FIELDS}

ESSENTIAL_FIELDS = ("businessName", "addressLine1", "country", "primaryCategory")
CRITICAL_FIELDS = ("storeCode",) + ESSENTIAL_FIELDS
REQUIRED_FIELDS = tuple(item.name for item in SCHEMA_FIELDS if item.required)
HOURS_FIELDS = tuple(f"{day}Hours" for day in _DAYS)
COORDINATE_FIELDS = ("latitude", "longitude")
TRACKABLE_FIELDS = tuple(item.name for item in SCHEMA_FIELDS)

# List-kind fields whose items are objects, persisted as JSON. The other list
# kinds (additionalCategories, labels) are stored as comma-separated text.
JSON_FIELDS = ("moreHours", "customServices", "socialMediaUrls")


def get_field(name: str) -> SchemaField:
    try:
        return _BY_NAME[name]
    except KeyError:
        raise UnknownFieldError(name) from None


def find_field(name: str) -> SchemaField | None:
    return _BY_NAME.get(name)


def fields_in_group(group: str) -> list[SchemaField]:
    return [item for item in SCHEMA_FIELDS if item.group == group]


def field_names() -> list[str]:
    return [item.name for item in SCHEMA_FIELDS]


def groups() -> list[str]:
    return list(dict.fromkeys(item.group for item in SCHEMA_FIELDS))


def get_rule(name: str) -> FormatRule:
    return FORMAT_RULES[name]


def rule_for_field(name: str) -> FormatRule | None:
    schema_field = get_field(name)
    if schema_field.format_rule is None:
        return None
    return FORMAT_RULES[schema_field.format_rule]


def is_system_generated_store_code(code: object) -> bool:
    if code is None:
        return False
    return bool(SYSTEM_STORE_CODE_RE.fullmatch(str(code).strip()))


def generate_placeholder_store_code(existing: Iterable[str]) -> str:
    """Return the next free STOREnnnnnn code not present in ``existing``."""
    taken = {str(code) for code in existing if code}
    highest = 0
    for code in taken:
        if SYSTEM_STORE_CODE_RE.fullmatch(code):
            highest = max(highest, int(code[5:]))
    counter = highest + 1
    while f"STORE{counter:06d}" in taken:
        counter += 1
    if counter > 999_999:
        raise ValueError("Placeholder store code space exhausted")
    return f"STORE{counter:06d}"
