#!/usr/bin/env python3
"""Sample dataset generation for manual testing of the OOS tracker.

Generates a pair of Excel files:
- oos.xlsx: out-of-service rows (LICENSE_NO, UNIT_NO, MAKE, MODEL, OOS_REASON,
  GARAGE_NAME, REMARKS, ACTUAL_DAYS_IN_GARAGE, CHECK_OUT_DATE, CURRENT_DATE)
- location.xlsx: GROUPING / LOCATION rows keyed by license number

Roughly 80% of the vehicles get a location row so unlocated records show up too.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

MAKES = ["GAC", "CMC", "KING LONG", "VOLVO", "TOYOTA", "NISSAN"]
MODELS = ["GS3", "Veryca", "Kingo", "XC60", "Hiace", "Sunny"]
REASONS = ["Accident Damage", "Vehicle Servicing", "Technical Repairs", "Tyres", "Body Work"]
GARAGES = ["DOMASCO MAIN", "DOMASCO AL QUOZ", "ABC Garage", "Fast Fix Motors", ""]
REMARKS = ["Waiting parts", "Ready for collection", "", "READY", "Under inspection"]
LOCATIONS = ["Yard A", "Yard B", "Airport", "Downtown Branch"]


def generate_oos_rows(rows: int, seed: int = 42) -> pd.DataFrame:
    """Generate synthetic OOS rows.

    Args:
        rows: Number of vehicles
        seed: Random seed for reproducible data

    Returns:
        DataFrame with the OOS sheet columns
    """
    rng = np.random.default_rng(seed)
    current = pd.Timestamp.today().normalize()
    check_out = current - pd.to_timedelta(rng.integers(0, 60, rows), unit="D")

    data: dict[str, list[Any]] = {
        "LICENSE_NO": [f"D {10000 + i}" for i in range(rows)],
        "UNIT_NO": [f"U{i + 1:05d}" for i in range(rows)],
        "AGREEMENT_NO": [f"AG-{rng.integers(100000, 999999)}" for _ in range(rows)],
        "MAKE": rng.choice(MAKES, rows).tolist(),
        "MODEL": rng.choice(MODELS, rows).tolist(),
        "OOS_REASON": rng.choice(REASONS, rows).tolist(),
        "GARAGE_NAME": rng.choice(GARAGES, rows).tolist(),
        "REMARKS": rng.choice(REMARKS, rows).tolist(),
        "CHECK_OUT_DATE": check_out.to_pydatetime().tolist(),
        "CURRENT_DATE": [current.to_pydatetime()] * rows,
    }
    # 一部の行だけ明示的な日数を持つ
    actual = rng.integers(0, 45, rows).astype(object)
    actual[rng.random(rows) < 0.5] = ""
    data["ACTUAL_DAYS_IN_GARAGE"] = actual.tolist()
    return pd.DataFrame(data)


def generate_location_rows(oos: pd.DataFrame, coverage: float = 0.8, seed: int = 42) -> pd.DataFrame:
    rng = np.random.default_rng(seed + 1)
    picked = oos["LICENSE_NO"][rng.random(len(oos)) < coverage]
    return pd.DataFrame(
        {
            "GROUPING": picked.tolist(),
            "LOCATION": rng.choice(LOCATIONS, len(picked)).tolist(),
        }
    )


def create_sample_files(output_dir: Path, rows: int, seed: int = 42) -> tuple[Path, Path]:
    """Write oos.xlsx and location.xlsx under ``output_dir``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    oos = generate_oos_rows(rows, seed)
    loc = generate_location_rows(oos, seed=seed)

    oos_path = output_dir / "oos.xlsx"
    loc_path = output_dir / "location.xlsx"
    with pd.ExcelWriter(oos_path, engine="openpyxl") as writer:
        oos.to_excel(writer, sheet_name="OOS", index=False)
    with pd.ExcelWriter(loc_path, engine="openpyxl") as writer:
        loc.to_excel(writer, sheet_name="Location", index=False)

    print(f"Created OOS file: {oos_path} ({len(oos)} rows)")
    print(f"Created location file: {loc_path} ({len(loc)} rows)")
    return oos_path, loc_path


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate sample OOS / location Excel files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s data/
  %(prog)s data/ --rows 5000 --seed 7
  oos-tracker import data/oos.xlsx data/location.xlsx
        """,
    )
    parser.add_argument("output_dir", type=Path, help="Directory for the generated files")
    parser.add_argument("--rows", type=int, default=200, help="Number of vehicles (default: 200)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1

    try:
        create_sample_files(args.output_dir, args.rows, args.seed)
    except OSError as e:
        print(f"Error generating dataset: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
