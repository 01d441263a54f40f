"""
Heuristic mapping of raw spreadsheet headers onto the listing schema.

Each header runs through STRATEGIES in priority order; the first strategy that
names a target wins. When several headers land on the same target, the one with
the best match key keeps it and the rest become unmapped, so the outcome only
depends on the set of headers, never on their order.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable, Iterable

from listing_intake.errors import UnknownFieldError
from listing_intake.schema import REQUIRED_FIELDS, SOCIAL_PLATFORMS, field_names

logger = logging.getLogger(__name__)

COMPACT_RE = re.compile(r"[\s_\-]")
DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
ADDITIONAL_QUALIFIERS = ("additional", "other", "secondary", "alternate", "alt")
NUMBERED_ADDRESS_RE = re.compile(r"^(?:addressline|address|addr|al)(\d)$")
LATER_ADDRESS_LINE_RE = re.compile(r"(?:addressline|address|addr|al)[2345]")
LATER_ADDRESS_LINES = ("addressLine2", "addressLine3", "addressLine4", "addressLine5")
NUMBERED_PHONE_RE = re.compile(r"phone\d+")
FIRST_PHONE_RE = re.compile(r"phone1(?!\d)")
SHORT_ALIAS_LENGTH = 2
MIN_CONTAINED_HEADER_LENGTH = 4

COMBINED_HOURS_HEADERS = {
    "opening hours",
    "openinghours",
    "business hours",
    "hours of operation",
    "store hours",
    "operating hours",
}

# Ordered most specific first; table order is match precedence.
ALIAS_TABLE: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("storeCode", ("store code", "storecode", "code", "store_code")),
    ("businessName", ("business name", "name", "company name", "business", "company")),
    ("primaryCategory", ("primary category", "category", "business category", "type", "industry")),
    ("addressLine5", ("address line 5", "address5", "addr5", "al5")),
    ("addressLine4", ("address line 4", "address4", "addr4", "al4")),
    ("addressLine3", ("address line 3", "address3", "addr3", "al3")),
    ("addressLine2", ("address line 2", "address2", "addr2", "al2")),
    ("addressLine1", ("address line 1", "address1", "addr1", "al1", "street address", "street", "address")),
    ("postalCode", ("postal code", "postcode", "zip code", "zipcode", "zip")),
    ("city", ("city", "town")),
    ("state", ("state", "region", "province", "area")),
    ("country", ("country",)),
    ("district", ("district", "neighborhood")),
    ("primaryPhone", ("primary phone", "phone", "telephone", "tel", "mobile", "contact")),
    ("additionalPhones", ("additional phones", "other phones", "secondary phone")),
    ("appointmentURL", ("appointment url", "appointment", "booking url", "booking")),
    ("menuURL", ("menu url", "menu")),
    ("reservationsURL", ("reservation url", "reservations url", "reservations")),
    ("orderAheadURL", ("order ahead url", "order url", "order ahead")),
    ("website", ("website", "web", "site url", "site")),
    ("url_facebook", ("facebook url", "facebook", "fb url", "fb")),
    ("url_instagram", ("instagram url", "instagram", "ig url", "ig")),
    ("url_linkedin", ("linkedin url", "linkedin")),
    ("url_pinterest", ("pinterest url", "pinterest")),
    ("url_tiktok", ("tiktok url", "tiktok", "tik tok")),
    ("url_twitter", ("twitter url", "twitter", "x url", "x")),
    ("url_youtube", ("youtube url", "youtube", "yt url", "yt")),
    ("fromTheBusiness", ("from the business", "description", "desc", "about", "summary")),
    ("latitude", ("latitude", "lat")),
    ("longitude", ("longitude", "lng", "lon")),
    ("additionalCategories", ("additional categories", "secondary categories", "other categories")),
    ("mondayHours", ("monday hours", "monday", "mon hours", "mon")),
    ("tuesdayHours", ("tuesday hours", "tuesday", "tue hours", "tue")),
    ("wednesdayHours", ("wednesday hours", "wednesday", "wed hours", "wed")),
    ("thursdayHours", ("thursday hours", "thursday", "thu hours", "thu")),
    ("fridayHours", ("friday hours", "friday", "fri hours", "fri")),
    ("saturdayHours", ("saturday hours", "saturday", "sat hours", "sat")),
    ("sundayHours", ("sunday hours", "sunday", "sun hours", "sun")),
    ("specialHours", ("special hours", "holiday hours")),
    ("temporarilyClosed", ("temporarily closed", "temp closed", "closed")),
    ("openingDate", ("opening date", "open date", "established")),
    ("labels", ("labels", "tags")),
    ("adwords", ("adwords", "google ads")),
    ("logoPhoto", ("logo photo", "logo image", "logo")),
    ("coverPhoto", ("cover photo", "main image", "cover")),
    ("otherPhotos", ("other photos", "photos", "images")),
    ("customServices", ("custom services", "services")),
    ("moreHours", ("more hours", "additional hours")),
)

# status is derived on import, never taken from a column.
MAPPABLE_TARGETS: tuple[str, ...] = tuple(name for name in field_names() if name != "status") + SOCIAL_PLATFORMS


@dataclass(frozen=True)
class NormalizedHeader:
    original: str
    normal: str
    compact: str


@dataclass
class ColumnMapping:
    source_header: str
    target_field: str | None
    is_required: bool = False
    is_combined_hours: bool = False
    strategy: str | None = None
    displaced_by: str | None = None

    @property
    def is_mapped(self) -> bool:
        return self.target_field is not None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def compact_text(value: str) -> str:
    return COMPACT_RE.sub("", value.lower().strip())


def normalize_header(header: Any) -> NormalizedHeader:
    original = "" if header is None else str(header)
    normal = original.lower().strip()
    return NormalizedHeader(original=original, normal=normal, compact=COMPACT_RE.sub("", normal))


def detect_combined_opening_hours_column(header: str) -> bool:
    return str(header).lower().strip() in COMBINED_HOURS_HEADERS


def _has_additional_qualifier(compact: str) -> bool:
    if any(word in compact for word in ADDITIONAL_QUALIFIERS):
        return True
    return bool(NUMBERED_PHONE_RE.search(compact)) and not FIRST_PHONE_RE.search(compact)


# ── Strategies ────────────────────────────────────────────────────────────────

def match_exact_field_name(header: NormalizedHeader) -> str | None:
    for target in MAPPABLE_TARGETS:
        if header.compact == compact_text(target):
            return target
    return None


def match_address_line_number(header: NormalizedHeader) -> str | None:
    compact = header.compact
    if not compact.startswith(("address", "addr", "al", "street")):
        return None
    numbered = NUMBERED_ADDRESS_RE.match(compact)
    if numbered and numbered.group(1) in "12345":
        return f"addressLine{numbered.group(1)}"
    if compact in {"address", "addr", "streetaddress", "addressline"}:
        return "addressLine1"
    return None


def match_phone_family(header: NormalizedHeader) -> str | None:
    compact = header.compact
    if not any(word in compact for word in ("phone", "telephone", "tel")):
        return None
    if _has_additional_qualifier(compact):
        return "additionalPhones"
    if "primary" in compact or compact in {"phone", "telephone", "tel", "mobile", "contact"}:
        return "primaryPhone"
    return None


def match_name_family(header: NormalizedHeader) -> str | None:
    compact = header.compact
    if "business" not in compact:
        return None
    if any(word in compact for word in ("from", "description", "about")):
        return "fromTheBusiness"
    if "name" in compact or compact in {"business", "businessname", "companyname"}:
        return "businessName"
    return None


def _guard_rejects(target: str, compact: str) -> bool:
    if target == "storeCode":
        if any(word in compact for word in ("postal", "postcode", "zip")):
            return True
        if "hour" in compact and any(day in compact for day in DAY_NAMES):
            return True
    if target == "addressLine1" and LATER_ADDRESS_LINE_RE.search(compact):
        return True
    if target in LATER_ADDRESS_LINES and not any(char.isdigit() for char in compact):
        return True
    if target == "primaryPhone" and _has_additional_qualifier(compact):
        return True
    if target == "additionalPhones" and not _has_additional_qualifier(compact):
        return True
    if target == "businessName" and any(word in compact for word in ("from", "description", "about", "summary")):
        return True
    if target == "fromTheBusiness" and "name" in compact and "from" not in compact:
        return True
    return False


def _alias_equals(header: NormalizedHeader, alias: str) -> bool:
    return header.normal == alias or header.compact == compact_text(alias)


def _alias_overlaps(header: NormalizedHeader, alias: str) -> bool:
    alias_compact = compact_text(alias)
    if len(alias_compact) <= SHORT_ALIAS_LENGTH:
        return False
    if alias in header.normal or alias_compact in header.compact:
        return True
    # Abbreviated headers only count when they lead the alias ("post" → "postcode").
    return len(header.compact) >= MIN_CONTAINED_HEADER_LENGTH and alias_compact.startswith(header.compact)


def _first_alias(header: NormalizedHeader, predicate: Callable[[NormalizedHeader, str], bool]) -> str | None:
    for target, aliases in ALIAS_TABLE:
        if _guard_rejects(target, header.compact):
            continue
        if any(predicate(header, alias) for alias in aliases):
            return target
    return None


def match_alias_exact(header: NormalizedHeader) -> str | None:
    return _first_alias(header, _alias_equals)


def match_alias_substring(header: NormalizedHeader) -> str | None:
    return _first_alias(header, _alias_overlaps)


STRATEGIES: tuple[tuple[str, Callable[[NormalizedHeader], str | None]], ...] = (
    ("exact_field_name", match_exact_field_name),
    ("address_line_number", match_address_line_number),
    ("phone_family", match_phone_family),
    ("name_family", match_name_family),
    ("alias_exact", match_alias_exact),
    ("alias_substring", match_alias_substring),
)
STRATEGY_RANK = {name: rank for rank, (name, _) in enumerate(STRATEGIES)}
MANUAL_STRATEGY = "manual"


def resolve_header(header: Any) -> tuple[str | None, str | None]:
    """Return ``(target, strategy)`` for one header, or ``(None, None)``."""
    normalized = normalize_header(header)
    if not normalized.compact:
        return None, None
    for name, strategy in STRATEGIES:
        target = strategy(normalized)
        if target:
            return target, name
    return None, None


def _alias_rank(header: NormalizedHeader, target: str) -> int:
    for name, aliases in ALIAS_TABLE:
        if name != target:
            continue
        for index, alias in enumerate(aliases):
            if _alias_equals(header, alias) or _alias_overlaps(header, alias):
                return index
    return 0


def _claim_key(mapping: ColumnMapping) -> tuple:
    header = normalize_header(mapping.source_header)
    rank = -1 if mapping.strategy == MANUAL_STRATEGY else STRATEGY_RANK.get(mapping.strategy or "", len(STRATEGIES))
    return (rank, _alias_rank(header, mapping.target_field or ""), header.compact, header.normal, header.original)


def _resolve_collisions(mappings: list[ColumnMapping]) -> list[ColumnMapping]:
    claims: dict[str, list[int]] = {}
    for index, mapping in enumerate(mappings):
        if mapping.target_field:
            claims.setdefault(mapping.target_field, []).append(index)

    resolved = list(mappings)
    for target, indices in claims.items():
        if len(indices) < 2:
            continue
        ranked = sorted(indices, key=lambda i: _claim_key(mappings[i]))
        winner = mappings[ranked[0]]
        for loser in ranked[1:]:
            logger.debug(
                "Header %r lost target %s to %r", mappings[loser].source_header, target, winner.source_header
            )
            resolved[loser] = replace(
                mappings[loser],
                target_field=None,
                is_required=False,
                strategy=None,
                displaced_by=winner.source_header,
            )
    return resolved


def map_columns(headers: Iterable[Any]) -> list[ColumnMapping]:
    mappings: list[ColumnMapping] = []
    for header in headers:
        target, strategy = resolve_header(header)
        source = "" if header is None else str(header)
        mappings.append(
            ColumnMapping(
                source_header=source,
                target_field=target,
                is_required=target in REQUIRED_FIELDS,
                is_combined_hours=detect_combined_opening_hours_column(source),
                strategy=strategy,
            )
        )
    return _resolve_collisions(mappings)


def remap(mappings: list[ColumnMapping], header: str, target: str | None) -> list[ColumnMapping]:
    """Apply an operator correction; the corrected header outranks automatic claims."""
    if target is not None and target not in MAPPABLE_TARGETS:
        raise UnknownFieldError(target)
    if not any(mapping.source_header == header for mapping in mappings):
        raise KeyError(f"No column named {header!r}")

    updated: list[ColumnMapping] = []
    for mapping in mappings:
        if mapping.source_header == header:
            if target and mapping.is_combined_hours and target.endswith("Hours") and target not in {"specialHours", "moreHours"}:
                logger.warning("Combined opening-hours column %r mapped to single day field %s", header, target)
            updated.append(
                replace(
                    mapping,
                    target_field=target,
                    is_required=target in REQUIRED_FIELDS,
                    strategy=MANUAL_STRATEGY if target else None,
                    displaced_by=None,
                )
            )
        elif target and mapping.target_field == target:
            updated.append(replace(mapping, target_field=None, is_required=False, strategy=None, displaced_by=header))
        else:
            updated.append(mapping)
    return _resolve_collisions(updated)


def mapped_targets(mappings: Iterable[ColumnMapping]) -> list[str]:
    return [mapping.target_field for mapping in mappings if mapping.target_field]


def unmapped_headers(mappings: Iterable[ColumnMapping]) -> list[str]:
    return [mapping.source_header for mapping in mappings if not mapping.target_field]


def missing_required(mappings: Iterable[ColumnMapping], merge: bool = False) -> list[str]:
    present = set(mapped_targets(mappings))
    needed = ("storeCode",) if merge else REQUIRED_FIELDS
    return [name for name in needed if name not in present]
