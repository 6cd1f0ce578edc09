"""Parse registry age strings ("18 Years", "6 Months", "Adult") into years."""
import re
from typing import NamedTuple, Optional

EMPTY_TOKENS = {"", "n/a", "na", "not applicable", "not specified"}
_NUMBER = re.compile(r"(\d+(?:\.\d+)?)")


class AgeBounds(NamedTuple):
    min_years: Optional[float]
    max_years: Optional[float]


def parse_age_to_years(raw: str | None) -> Optional[float]:
    if not raw:
        return None
    normalized = raw.strip().lower()
    if normalized in EMPTY_TOKENS:
        return None

    match = _NUMBER.search(normalized)
    if not match:
        return None
    value = float(match.group(1))

    if "month" in normalized:
        return round(value / 12, 2)
    if "week" in normalized:
        return round(value / 52, 2)
    if "day" in normalized:
        return round(value / 365, 2)
    return value


def _keyword_min(raw: str | None) -> Optional[float]:
    if not raw:
        return None
    normalized = raw.strip().lower()
    if "older adult" in normalized:
        return 65
    if "adult" in normalized:
        return 18
    if "child" in normalized or "pediatric" in normalized:
        return 0
    return None


def _keyword_max(raw: str | None) -> Optional[float]:
    if not raw:
        return None
    normalized = raw.strip().lower()
    if "child" in normalized or "pediatric" in normalized:
        return 17
    if "adult" in normalized:
        return 64
    return None


def normalize_age_bounds(raw_min: str | None, raw_max: str | None) -> AgeBounds:
    min_years = parse_age_to_years(raw_min)
    if min_years is None:
        min_years = _keyword_min(raw_min)
    max_years = parse_age_to_years(raw_max)
    if max_years is None:
        max_years = _keyword_max(raw_max)
    return AgeBounds(min_years, max_years)


def format_age_range(raw_min: str | None, raw_max: str | None) -> str:
    if raw_min and raw_max:
        return f"{raw_min} - {raw_max}"
    if raw_min:
        return f"{raw_min}+"
    if raw_max:
        return f"Up to {raw_max}"
    return "Not specified"
