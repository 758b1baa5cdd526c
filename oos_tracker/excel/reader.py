from __future__ import annotations

import csv
import io
import logging
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

"""Sheet reader for uploaded OOS / location files.

The first row of the first worksheet (or of the CSV text) is the header row;
every following row becomes one RawRow (header -> cell value).

- Missing cells become "" so downstream string handling stays total
- No type inference: CSV cells stay strings, workbook cells keep the type
  openpyxl yields (int / float / datetime / str)
- Entirely empty rows are skipped
"""

__all__ = [
    "ParseError",
    "RawRow",
    "SUPPORTED_FORMATS",
    "guess_format",
    "read_sheet",
    "read_sheet_file",
    "read_positional_rows",
]

logger = logging.getLogger(__name__)

RawRow = dict[str, Any]

SUPPORTED_FORMATS = {"csv", "xlsx", "xlsm"}


class ParseError(Exception):
    """Raised when file content cannot be decoded as the declared tabular format."""


def guess_format(name: str | Path) -> str:
    """Return the tabular format implied by a file name suffix (lower-case, no dot)."""
    suffix = Path(name).suffix.lower().lstrip(".")
    if suffix not in SUPPORTED_FORMATS:
        raise ParseError(f"unsupported file type: {Path(name).name}")
    return suffix


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        # Excel の CSV 保存 (cp1252 等) を想定
        logger.warning("csv is not valid UTF-8; decoding as latin-1")
        return data.decode("latin-1")


def _read_frame(data: bytes, fmt: str, *, skip_blank_lines: bool = True) -> pd.DataFrame:
    fmt = fmt.lower().lstrip(".")
    if fmt not in SUPPORTED_FORMATS:
        raise ParseError(f"unsupported format: {fmt}")

    if fmt == "csv":
        text = _decode_text(data)
        if not text.strip():
            return pd.DataFrame()
        try:
            width = max((len(r) for r in csv.reader(io.StringIO(text))), default=0)
            # 列数は最長行に合わせる。短い行の不足分は NaN で埋まる
            return pd.read_csv(
                io.StringIO(text),
                header=None,
                names=list(range(width)),
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=skip_blank_lines,
            )
        except (csv.Error, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise ParseError(f"cannot parse csv: {e}") from e

    try:
        return pd.read_excel(
            io.BytesIO(data), sheet_name=0, header=None, dtype=object, engine="openpyxl"
        )
    except Exception as e:  # openpyxl / zipfile raise a wide range of errors on bad input
        raise ParseError(f"cannot read {fmt} workbook: {e}") from e


def _cell(value: Any) -> Any:
    if value is None or value is pd.NaT:
        return ""
    if isinstance(value, pd.Timestamp):
        return "" if pd.isna(value) else value.to_pydatetime()
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and np.isnan(value):
        return ""
    return value


def _frame_cells(df: pd.DataFrame) -> list[list[Any]]:
    return [[_cell(v) for v in raw] for raw in df.itertuples(index=False, name=None)]


def _build_header(cells: list[Any]) -> list[str]:
    headers: list[str] = []
    seen: dict[str, int] = {}
    for idx, cell in enumerate(cells):
        name = str(cell).strip() if cell != "" else ""
        if not name:
            name = f"__EMPTY_{idx}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 0
        headers.append(name)
    return headers


def _is_blank(cells: list[Any]) -> bool:
    return all(c == "" or (isinstance(c, str) and not c.strip()) for c in cells)


def read_sheet(data: bytes, fmt: str) -> list[RawRow]:
    """Decode tabular bytes into RawRows using the first row as header.

    Args:
        data: Raw file content
        fmt: Declared format ("csv", "xlsx" or "xlsm")

    Returns:
        One dict per non-empty data row, keyed by header name

    Raises:
        ParseError: If the content cannot be decoded as ``fmt``
    """
    cells = _frame_cells(_read_frame(data, fmt))
    if not cells:
        return []
    headers = _build_header(cells[0])
    rows: list[RawRow] = []
    for raw in cells[1:]:
        if _is_blank(raw):
            continue
        padded = raw + [""] * (len(headers) - len(raw))
        rows.append(dict(zip(headers, padded, strict=False)))
    logger.debug("read %d rows with %d columns", len(rows), len(headers))
    return rows


def read_sheet_file(path: Path, fmt: str | None = None) -> list[RawRow]:
    """Read a file from disk, inferring the format from its suffix when not given."""
    fmt = fmt or guess_format(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ParseError(f"cannot read file {path}: {e}") from e
    return read_sheet(data, fmt)


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, float) and np.isnan(value))


def read_positional_rows(data: bytes, fmt: str) -> list[list[Any]]:
    """Read header-less rows of cells for the legacy positional import.

    Each row keeps its own width: trailing missing cells are cut, so rows
    with too few or too many fields can be told apart. Interior blank rows
    are kept (pairing is by row index); trailing blank rows are dropped.
    """
    df = _read_frame(data, fmt, skip_blank_lines=False)

    cells: list[list[Any]] = []
    for raw in df.itertuples(index=False, name=None):
        row = list(raw)
        while row and _is_missing(row[-1]):
            row.pop()
        cells.append([_cell(v) for v in row])
    while cells and _is_blank(cells[-1]):
        cells.pop()
    return cells
