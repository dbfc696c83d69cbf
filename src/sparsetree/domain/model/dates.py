"""Year extraction from genealogical date strings and lifespan formatting."""

from __future__ import annotations

import re
from typing import Final

_FORMAL_YEAR: Final[re.Pattern[str]] = re.compile(r"^([+-]\d{1,4})")
_BC_YEAR: Final[re.Pattern[str]] = re.compile(r"(\d+)\s*B\.?C\.?", re.IGNORECASE)
_FOUR_DIGIT_YEAR: Final[re.Pattern[str]] = re.compile(r"\b(\d{4})\b")


def parse_year(value: str | None) -> int | None:
    """Extract a year from a GEDCOM-X formal date (``+1847-03``) or a free-text date.

    Years before the common era are negative (``"500 BC"`` -> ``-500``).
    """

    if not value:
        return None
    text = value.strip()
    formal = _FORMAL_YEAR.match(text)
    if formal:
        return int(formal.group(1))
    bc = _BC_YEAR.search(text)
    if bc:
        return -int(bc.group(1))
    four_digit = _FOUR_DIGIT_YEAR.search(text)
    if four_digit:
        return int(four_digit.group(1))
    return None


def build_lifespan(birth_year: int | None, death_year: int | None) -> str:
    if birth_year is None and death_year is None:
        return ""
    birth = "" if birth_year is None else str(birth_year)
    death = "" if death_year is None else str(death_year)
    return f"{birth}-{death}"
