import re
import unicodedata
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .models import NameParts


SIZE_ABBREVIATIONS = {
    "GT": "Giant",
    "LG": "Large",
    "MD": "Medium",
    "SM": "Small",
    "MDL": "Medium-Large",
    "ML": "Medium-Large",
    "XL": "Extra Large",
    "XXL": "Extra Extra Large",
    "SMD": "Small-Medium",
}

# Longest first so a 2-letter code never wins over the 3-letter token it sits in.
SIZE_ORDER = sorted(SIZE_ABBREVIATIONS, key=len, reverse=True)

_LOT_PARENTHETICAL = re.compile(r"\s*\([^)]*(?:\b(?:LOT|PCS?)\b|\+)[^)]*\)\s*$", re.IGNORECASE)
_LOT_BARE = re.compile(r"\s*\b\d+\+?\s*(?:LOT|PCS?)\s*$", re.IGNORECASE)
_GENDER = re.compile(r"[-\s]?\b(FEMALE|MALE)\b[-\s]*$", re.IGNORECASE)


def collapse_spaces(s: str) -> str:
    return re.sub(r"\s+", " ", s or "").strip()


def clean_item_name(name: str) -> str:
    """Reduce a raw catalog name to the form used for category carry and search keys.

    Lot annotations are dropped, then everything from the first hyphen on.
    This is a coarser cut than :func:`normalize_name`, which only removes known
    size and gender tokens for display.
    """
    if not name:
        return ""
    s = name.strip()
    s = _LOT_PARENTHETICAL.sub("", s)
    s = _LOT_BARE.sub("", s)
    if "-" in s:
        s = s.split("-", 1)[0].strip()
    return collapse_spaces(s)


def search_key(cleaned: str) -> str:
    if not cleaned:
        return ""
    return re.sub(r"[^\w\s-]", "", cleaned.upper()).strip()


def normalize_name(raw_name: str) -> NameParts:
    if not raw_name:
        return NameParts(display_name=raw_name or "")

    display = re.sub(r"[-\s]+$", "", raw_name).strip()
    size: Optional[str] = None
    gender: Optional[str] = None

    for abbr in SIZE_ORDER:
        pattern = re.compile(rf"[-\s]?\b{abbr}\b", re.IGNORECASE)
        m = pattern.search(display)
        if m:
            size = SIZE_ABBREVIATIONS[abbr]
            display = (display[: m.start()] + display[m.end():]).strip()
            break

    display = re.sub(r"[-\s]+$", "", display)
    m = _GENDER.search(display)
    if m:
        gender = m.group(1).capitalize()
        display = display[: m.start()]

    display = re.sub(r"-+", " ", display)
    display = collapse_spaces(display)
    return NameParts(display_name=display, size=size, gender=gender)


def slugify_for_handle(s: str) -> str:
    if not s:
        return ""
    s = unicodedata.normalize('NFKD', s)
    s = s.encode('ascii', 'ignore').decode('ascii')
    s = re.sub(r"[^a-zA-Z0-9]+", "-", s)
    s = s.strip('-').lower()
    return s


def format_price(value: Decimal) -> str:
    return "$" + str(Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
