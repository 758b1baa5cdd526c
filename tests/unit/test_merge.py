from __future__ import annotations

from datetime import datetime

import pytest

from oos_tracker.logging.error_log import ErrorLogBuffer
from oos_tracker.services.merge import (
    IdAllocator,
    build_location_index,
    guess_join_key,
    locate_location_columns,
    merge_positional,
    merge_records,
    resolve_aliases,
)

NOW = datetime(2024, 3, 31, 12, 0, 0)


def test_location_is_joined_on_grouping():
    oos = [{"Grouping": "G1", "LICENSE_NO": "D 1"}]
    loc = [{"Grouping": "G1", "Location": "Warehouse A"}]
    [record] = merge_records(oos, loc, "Grouping", now=NOW)
    assert record.location == "Warehouse A"


def test_join_value_is_trimmed_and_missing_location_is_empty():
    oos = [{"Grouping": " G1 ", "LICENSE_NO": "D 1"}, {"Grouping": "G9", "LICENSE_NO": "D 2"}]
    loc = [{"Grouping": "G1", "Location": "Warehouse A"}]
    records = merge_records(oos, loc, "Grouping", now=NOW)
    assert [r.location for r in records] == ["Warehouse A", ""]


def test_merge_preconditions_return_empty():
    oos = [{"Grouping": "G1"}]
    loc = [{"Grouping": "G1", "Location": "A"}]
    assert merge_records([], loc, "Grouping") == []
    assert merge_records(oos, [], "Grouping") == []
    assert merge_records(oos, loc, None) == []
    assert merge_records(oos, loc, "") == []


def test_full_rows_derive_every_field(oos_rows, loc_rows):
    records = merge_records(oos_rows, loc_rows, "Grouping", fallback_id="hash", now=NOW)
    first, second, third = records

    assert first.id == "D 12345"
    assert first.garage_mapped == "Honda Body Shop"
    assert first.garage_original == "ABC Garage"
    assert first.days_in_garage == 12
    assert first.location == "Warehouse A"
    assert first.status.value == "Ready"

    assert second.garage_mapped == "GAC Service Center"
    assert second.days_in_garage == 40
    assert second.location == "Yard B"
    assert second.status.value == "InProgress"

    # license が空なので unit が id
    assert third.id == "U003"
    assert third.garage_mapped == "Honda Service Center"
    assert third.days_in_garage == 0
    assert third.location == ""


def test_raw_copy_is_json_safe(oos_rows, loc_rows):
    records = merge_records(oos_rows, loc_rows, "Grouping", now=NOW)
    assert records[1].raw["CHECK_OUT_DATE"] == "2024-02-20T00:00:00"
    assert records[1].raw["Grouping"] == "G2"


def test_progress_callback_called_per_row(oos_rows, loc_rows):
    calls = []
    merge_records(oos_rows, loc_rows, "Grouping", now=NOW, progress=lambda: calls.append(1))
    assert len(calls) == len(oos_rows)


def test_days_never_negative():
    oos = [
        {"LICENSE_NO": "A", "ACTUAL_DAYS_IN_GARAGE": -4, "CHECK_OUT_DATE": "", "CURRENT_DATE": ""},
        {
            "LICENSE_NO": "B",
            "ACTUAL_DAYS_IN_GARAGE": "",
            "CHECK_OUT_DATE": datetime(2024, 5, 1),
            "CURRENT_DATE": datetime(2024, 4, 1),
        },
    ]
    loc = [{"GROUPING": "A", "LOCATION": "X"}]
    records = merge_records(oos, loc, "LICENSE_NO", now=NOW)
    assert [r.days_in_garage for r in records] == [0, 0]


def test_unparseable_check_out_date_is_reported(tmp_path):
    log = ErrorLogBuffer(tmp_path)
    oos = [{"LICENSE_NO": "A", "CHECK_OUT_DATE": "sometime soon"}]
    loc = [{"GROUPING": "A", "LOCATION": "X"}]
    [record] = merge_records(oos, loc, "LICENSE_NO", now=NOW, error_log=log, source_name="oos.xlsx")
    assert record.days_in_garage == 0
    [issue] = log.records
    assert issue.error_type == "UNPARSEABLE_DATE"
    assert issue.row == 2
    assert issue.file == "oos.xlsx"


def test_resolve_aliases_prefers_exact_then_case_insensitive():
    headers = ["license", "OUT_OF_SERVICE_REASON", "STATUS_DESC", "Garage"]
    resolved = resolve_aliases(headers)
    assert resolved["license"] == "license"
    assert resolved["oos_reason"] == "OUT_OF_SERVICE_REASON"
    assert resolved["garage"] == "Garage"
    assert resolved["make"] is None


def test_alias_fallback_to_status_desc():
    oos = [{"LICENSE_NO": "A", "STATUS_DESC": "Accident"}]
    loc = [{"GROUPING": "A", "LOCATION": "X"}]
    [record] = merge_records(oos, loc, "LICENSE_NO", now=NOW)
    assert record.oos_reason == "Accident"
    assert record.garage_mapped == "Honda Body Shop"


def test_guess_join_key():
    assert guess_join_key(["UNIT_NO", "grouping", "LICENSE_NO"]) == "grouping"
    assert guess_join_key(["UNIT_NO", "LICENSE_NO"]) == "LICENSE_NO"
    assert guess_join_key(["Foo", "Bar"]) == "Foo"
    assert guess_join_key([]) is None


def test_locate_location_columns():
    cols = locate_location_columns(["Vehicle Grouping", "Current Location"])
    assert (cols.grouping, cols.location) == ("Vehicle Grouping", "Current Location")
    cols = locate_location_columns(["key", "where"])
    assert (cols.grouping, cols.location) == ("key", "where")


def test_location_index_last_write_wins_and_skips_blank_keys():
    index = build_location_index(
        [
            {"GROUPING": "G1", "LOCATION": "Old"},
            {"GROUPING": "", "LOCATION": "Nowhere"},
            {"GROUPING": "G1", "LOCATION": "New"},
        ]
    )
    assert index == {"G1": "New"}


def test_id_priority_license_unit_agreement():
    ids = IdAllocator("hash")
    assert ids.allocate(0, "L", "U", "A", {}) == "L"
    assert ids.allocate(0, "", "U", "A", {}) == "U"
    assert ids.allocate(0, "", "", "A", {}) == "A"


def test_random_fallback_id_format():
    ident = IdAllocator("random").allocate(4, "", "", "", {"x": 1})
    assert ident.startswith("ROW_4_")
    assert len(ident) == len("ROW_4_") + 7


def test_hash_fallback_id_is_stable_and_disambiguated():
    raw = {"MAKE": "Toyota", "MODEL": "Yaris"}
    first = IdAllocator("hash")
    a1, a2 = first.allocate(0, "", "", "", raw), first.allocate(1, "", "", "", raw)
    second = IdAllocator("hash")
    assert second.allocate(7, "", "", "", raw) == a1
    assert a2 == f"{a1}-2"


def test_unknown_fallback_strategy_rejected():
    with pytest.raises(ValueError):
        IdAllocator("sequential")


def test_positional_merge_pairs_by_index(tmp_path):
    log = ErrorLogBuffer(tmp_path)
    oos = [
        ["V1", "D 1", "GAC GS3", "Vehicle Servicing", "DOMASCO", "3"],
        ["V2", "D 2", "Sunny", "Accident", "ABC", "x"],
        ["V3", "D 3", "short row"],
    ]
    loc = [["V1", "Yard A"], ["V2", "Yard B"]]
    records = merge_positional(oos, loc, error_log=log, source_name="legacy.csv")
    assert [r.id for r in records] == ["V1", "V2"]
    assert records[0].location == "Yard A"
    assert records[0].garage_mapped == "GAC Service Center"
    assert records[0].days_in_garage == 3
    assert records[1].garage_mapped == "Honda Body Shop"
    assert records[1].days_in_garage == 0
    [issue] = log.records
    assert issue.error_type == "MALFORMED_ROW"
    assert issue.row == 3


def test_positional_merge_without_id_uses_allocator():
    records = merge_positional([["", "D 9", "Yaris", "Tyres", "Shop", "1"]], [], fallback_id="hash")
    assert records[0].id == "D 9"
    assert records[0].location == ""
