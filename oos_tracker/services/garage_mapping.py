from __future__ import annotations

import re

from .normalizer import clean_text, normalize_for_match

"""Garage mapping rules.

Rules are evaluated in order on case/space-normalized copies of the inputs;
the first match wins:

1. reason mentions ACCIDENT -> Honda Body Shop (any garage, any make)
2. reason is VEHICLE SERVICING / TECHNICAL REPAIRS and the garage is a DOMASCO
   site -> brand service center picked by make (Honda Service Center otherwise)
3. anything else keeps the original garage name ("Unknown" when blank)
"""

__all__ = [
    "ACCIDENT_GARAGE",
    "DEFAULT_SERVICE_GARAGE",
    "UNKNOWN_GARAGE",
    "MAKE_SERVICE_CENTERS",
    "map_garage",
]

ACCIDENT_GARAGE = "Honda Body Shop"
DEFAULT_SERVICE_GARAGE = "Honda Service Center"
UNKNOWN_GARAGE = "Unknown"

_ACCIDENT = re.compile(r"ACCIDENT")
_SERVICE_REASON = re.compile(r"VEHICLE SERVICING|TECHNICAL REPAIRS")
_DOMASCO = re.compile(r"DOMASCO")

# make pattern -> service center (order matters)
MAKE_SERVICE_CENTERS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"GAC\b"), "GAC Service Center"),
    (re.compile(r"CMC\b"), "CMC Service Center"),
    (re.compile(r"KING\s*LONG|KINGLONG"), "FAMCO"),
    (re.compile(r"VOLVO"), "Volvo Service Center"),
)


def map_garage(garage_original: str, oos_reason: str, make: str) -> str:
    garage = normalize_for_match(garage_original)
    reason = normalize_for_match(oos_reason)
    brand = normalize_for_match(make)

    if _ACCIDENT.search(reason):
        return ACCIDENT_GARAGE

    if _SERVICE_REASON.search(reason) and _DOMASCO.search(garage):
        for pattern, center in MAKE_SERVICE_CENTERS:
            if pattern.search(brand):
                return center
        return DEFAULT_SERVICE_GARAGE

    return clean_text(garage_original) or UNKNOWN_GARAGE
