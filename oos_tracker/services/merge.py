from __future__ import annotations

import hashlib
import json
import uuid
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any

from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import DEFAULT_JOIN_KEY_GUESSES, FALLBACK_ID_STRATEGIES
from ..models.error_record import ErrorRecord
from ..models.merged_record import MergedRecord
from .garage_mapping import map_garage
from .normalizer import (
    clean_text,
    coerce_day_count,
    derive_days_in_garage,
    normalize_for_match,
    parse_flexible_date,
    utc_now,
)

"""Join & merge engine.

Builds the grouping -> location index from the location sheet and produces
one MergedRecord per out-of-service row:

1. locate the GROUPING / LOCATION columns of the location sheet
2. index every location row with a non-empty grouping (last write wins)
3. resolve the alias table against the OOS headers (once per import)
4. derive days in garage, location, mapped garage and the stable id per row

Also hosts the legacy positional merge (6 unlabeled OOS columns paired with
the location file by row index).
"""

__all__ = [
    "FIELD_ALIASES",
    "LEGACY_OOS_COLUMNS",
    "LocationColumns",
    "IdAllocator",
    "resolve_aliases",
    "guess_join_key",
    "locate_location_columns",
    "build_location_index",
    "merge_records",
    "merge_positional",
]

# logical field -> acceptable headers, first present wins
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "agreement": ("AGREEMENT_NO", "Agreement"),
    "unit": ("UNIT_NO", "Unit"),
    "license": ("LICENSE_NO", "License"),
    "make": ("MAKE", "Make"),
    "model": ("MODEL", "Model"),
    "oos_reason": ("OOS_REASON", "OUT_OF_SERVICE_REASON", "STATUS_DESC"),
    "garage": ("GARAGE_NAME", "Garage"),
    "remarks": ("REMARKS", "Remarks"),
    "actual_days": ("ACTUAL_DAYS_IN_GARAGE",),
    "check_out_date": ("CHECK_OUT_DATE",),
    "current_date": ("CURRENT_DATE",),
}

LEGACY_OOS_COLUMNS = ("id", "license", "model", "reason", "garage", "days")

ProgressCallback = Callable[[], None]


@dataclass(frozen=True)
class LocationColumns:
    grouping: str
    location: str


def resolve_aliases(
    headers: Sequence[str], aliases: Mapping[str, Sequence[str]] = FIELD_ALIASES
) -> dict[str, str | None]:
    """Map each logical field to the header that carries it (None when absent).

    Exact header names are tried first, then a case-insensitive match.
    """
    present = set(headers)
    by_upper: dict[str, str] = {}
    for h in headers:
        by_upper.setdefault(h.strip().upper(), h)

    resolved: dict[str, str | None] = {}
    for field_name, candidates in aliases.items():
        hit = next((c for c in candidates if c in present), None)
        if hit is None:
            hit = next((by_upper[c.upper()] for c in candidates if c.upper() in by_upper), None)
        resolved[field_name] = hit
    return resolved


def guess_join_key(
    headers: Sequence[str], guesses: Sequence[str] = DEFAULT_JOIN_KEY_GUESSES
) -> str | None:
    """First preferred header present (case-insensitive), else the first header."""
    if not headers:
        return None
    by_upper: dict[str, str] = {}
    for h in headers:
        by_upper.setdefault(h.strip().upper(), h)
    for guess in guesses:
        if guess.upper() in by_upper:
            return by_upper[guess.upper()]
    return headers[0]


def _find_column(headers: Sequence[str], name: str, position: int) -> str:
    for h in headers:
        if normalize_for_match(h) == name:
            return h
    for h in headers:
        if name in normalize_for_match(h):
            return h
    if headers:
        return headers[position] if position < len(headers) else headers[0]
    return name.title()


def locate_location_columns(headers: Sequence[str]) -> LocationColumns:
    return LocationColumns(
        grouping=_find_column(headers, "GROUPING", 0),
        location=_find_column(headers, "LOCATION", 1),
    )


def build_location_index(loc_rows: Sequence[Mapping[str, Any]]) -> dict[str, str]:
    """grouping value (trimmed) -> location name."""
    if not loc_rows:
        return {}
    columns = locate_location_columns(list(loc_rows[0].keys()))
    index: dict[str, str] = {}
    for row in loc_rows:
        key = clean_text(row.get(columns.grouping))
        if not key:
            continue
        index[key] = clean_text(row.get(columns.location))
    return index


def _json_safe(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class IdAllocator:
    """Assigns record ids: license, unit, agreement, else a fallback id.

    Fallback strategies:
        random: ROW_<index>_<random suffix>. Not stable across imports, so the
            history of an unidentified vehicle restarts on every import.
        hash: ROW_<digest of the raw row>. Stable while the row content is
            unchanged; repeated identical rows get a -2, -3 ... suffix.
    """

    def __init__(self, strategy: str = "random") -> None:
        if strategy not in FALLBACK_ID_STRATEGIES:
            raise ValueError(f"unknown fallback id strategy: {strategy}")
        self.strategy = strategy
        self._digests: Counter[str] = Counter()

    def allocate(self, index: int, license: str, unit: str, agreement: str, raw: Mapping[str, Any]) -> str:
        natural = license or unit or agreement
        if natural:
            return natural
        if self.strategy == "random":
            return f"ROW_{index}_{uuid.uuid4().hex[:7]}"
        payload = json.dumps(raw, sort_keys=True, default=str, ensure_ascii=False)
        digest = hashlib.sha1(payload.encode("utf-8")).hexdigest()[:12]
        self._digests[digest] += 1
        seen = self._digests[digest]
        return f"ROW_{digest}" if seen == 1 else f"ROW_{digest}-{seen}"


def _report(error_log: ErrorLogBuffer | None, source_name: str, kind: str, row: int, error_type: str, message: str) -> None:
    if error_log is not None:
        error_log.append(ErrorRecord.create(source_name, kind, row, error_type, message))


def merge_records(
    oos_rows: Sequence[Mapping[str, Any]],
    loc_rows: Sequence[Mapping[str, Any]],
    join_key: str | None,
    *,
    fallback_id: str = "random",
    now: datetime | None = None,
    error_log: ErrorLogBuffer | None = None,
    source_name: str = "",
    progress: ProgressCallback | None = None,
) -> list[MergedRecord]:
    """Join OOS rows with the location sheet and derive every computed field.

    Args:
        oos_rows: RawRows of the out-of-service sheet
        loc_rows: RawRows of the location sheet
        join_key: OOS header whose trimmed value is looked up in the location index
        fallback_id: Id strategy for rows without license / unit / agreement
        now: Reference "today" for rows without CURRENT_DATE (default: now, UTC)
        error_log: Optional buffer receiving row-level issues
        source_name: OOS file name used in issue records
        progress: Called once per processed row

    Returns:
        MergedRecords in input order; [] when either input is empty or no join key is set
    """
    if not oos_rows or not loc_rows or not join_key:
        return []

    now = now or utc_now()
    index = build_location_index(loc_rows)
    columns = resolve_aliases(list(oos_rows[0].keys()))
    ids = IdAllocator(fallback_id)

    def pick(row: Mapping[str, Any], field_name: str) -> Any:
        header = columns[field_name]
        return row.get(header, "") if header else ""

    records: list[MergedRecord] = []
    for i, row in enumerate(oos_rows):
        text = {name: clean_text(pick(row, name)) for name in (
            "agreement", "unit", "license", "make", "model", "oos_reason", "garage", "remarks",
        )}
        check_out = pick(row, "check_out_date")
        actual_days = pick(row, "actual_days")
        if (
            coerce_day_count(actual_days) is None
            and clean_text(check_out)
            and parse_flexible_date(check_out) is None
        ):
            # 行番号: ヘッダ = 1 行目
            _report(error_log, source_name, "oos", i + 2, "UNPARSEABLE_DATE",
                    f"CHECK_OUT_DATE not recognized: {clean_text(check_out)!r}")

        raw = {k: _json_safe(v) for k, v in row.items()}
        records.append(
            MergedRecord(
                id=ids.allocate(i, text["license"], text["unit"], text["agreement"], raw),
                agreement=text["agreement"],
                unit=text["unit"],
                license=text["license"],
                make=text["make"],
                model=text["model"],
                oos_reason=text["oos_reason"],
                garage_original=text["garage"],
                garage_mapped=map_garage(text["garage"], text["oos_reason"], text["make"]),
                days_in_garage=derive_days_in_garage(
                    actual_days, check_out, pick(row, "current_date"), now
                ),
                remarks=text["remarks"],
                location=index.get(clean_text(row.get(join_key, "")), ""),
                raw=raw,
            )
        )
        if progress is not None:
            progress()
    return records


def merge_positional(
    oos_cells: Sequence[Sequence[Any]],
    loc_cells: Sequence[Sequence[Any]],
    *,
    fallback_id: str = "random",
    error_log: ErrorLogBuffer | None = None,
    source_name: str = "",
) -> list[MergedRecord]:
    """Legacy import: 6 unlabeled OOS columns, location paired by row index.

    OOS columns are [id, license, model, reason, garage, days]; the location
    value is column 2 of the location row with the same index. Rows of any
    other width are skipped and reported, blank rows silently. The model text
    doubles as make for the garage mapping rules since the layout has no make
    column.
    """
    if not oos_cells:
        return []
    ids = IdAllocator(fallback_id)
    records: list[MergedRecord] = []
    for i, cells in enumerate(oos_cells):
        if not any(clean_text(c) for c in cells):
            continue
        if len(cells) != len(LEGACY_OOS_COLUMNS):
            _report(error_log, source_name, "oos", i + 1, "MALFORMED_ROW",
                    f"expected {len(LEGACY_OOS_COLUMNS)} columns, got {len(cells)}")
            continue
        values = dict(zip(LEGACY_OOS_COLUMNS, cells, strict=True))
        ident = clean_text(values["id"])
        license = clean_text(values["license"])
        model = clean_text(values["model"])
        reason = clean_text(values["reason"])
        garage = clean_text(values["garage"])
        loc_row = loc_cells[i] if i < len(loc_cells) else ()
        location = clean_text(loc_row[1]) if len(loc_row) > 1 else ""
        raw = {k: _json_safe(v) for k, v in values.items()}
        records.append(
            MergedRecord(
                id=ident or ids.allocate(i, license, "", "", raw),
                license=license,
                model=model,
                oos_reason=reason,
                garage_original=garage,
                garage_mapped=map_garage(garage, reason, model),
                days_in_garage=coerce_day_count(values["days"]) or 0,
                location=location,
                raw=raw,
            )
        )
    return records
