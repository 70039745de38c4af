from datetime import date, datetime, time

from worksheet.formatting import (
    format_age,
    format_dob,
    format_phone,
    format_sex,
    format_time,
    time_to_minutes,
)
from worksheet.identity import normalize_name


def test_format_time_strips_one_leading_zero():
    assert format_time("09:00 AM") == "9:00 AM"
    assert format_time("09:00") == "9:00"
    assert format_time("10:20 AM") == "10:20 AM"


def test_format_time_passes_through_non_strings():
    assert format_time(None) is None
    assert format_time("") == ""
    assert format_time(42) == 42


def test_format_time_renders_clock_cells():
    assert format_time(time(13, 5)) == "1:05 PM"
    assert format_time(datetime(2024, 3, 15, 0, 40)) == "12:40 AM"


def test_format_sex_and_age():
    assert format_sex("female") == "F"
    assert format_sex("m") == "M"
    assert format_sex("") == ""
    assert format_age("45 Y") == "45"
    assert format_age("45 Years") == "45 Years"
    assert format_age(None) is None


def test_format_dob_spreadsheet_serial():
    assert format_dob(45000) == "03/15/2023"
    assert format_dob(25569) == "01/01/1970"


def test_format_dob_strings_and_cells():
    assert format_dob("1980-05-02") == "05/02/1980"
    assert format_dob("May 2, 1980") == "05/02/1980"
    assert format_dob(date(1999, 12, 31)) == "12/31/1999"
    assert format_dob(datetime(2001, 1, 9, 8, 30)) == "01/09/2001"


def test_format_dob_unparseable_and_empty():
    assert format_dob("unknown") == "unknown"
    assert format_dob("") == ""
    assert format_dob(None) == ""


def test_format_phone():
    assert format_phone("5551234567") == "(555) 123-4567"
    assert format_phone("555.123.4567") == "(555) 123-4567"
    assert format_phone(5551234567) == "(555) 123-4567"
    assert format_phone("555-123-4567x1") == "555-123-4567x1"
    assert format_phone("12345") == "12345"


def test_time_to_minutes():
    assert time_to_minutes("12:00 AM") == 0
    assert time_to_minutes("12:20 PM") == 740
    assert time_to_minutes("8:00am") == 480
    assert time_to_minutes("08:40 AM") == 520
    assert time_to_minutes("2:40PM") == 880
    assert time_to_minutes("garbage") == 9999
    assert time_to_minutes(None) == 9999


def test_normalize_name():
    assert normalize_name("Smith, John A") == "SMITH,JOHN"
    assert normalize_name("smith,john") == "SMITH,JOHN"
    assert normalize_name("Van Der Berg,  Anna Marie") == "VANDERBERG,ANNA"
    assert normalize_name("John Smith") == "JOHNSMITH"
    assert normalize_name("Doe,") == "DOE,"


def test_normalize_name_never_raises():
    assert normalize_name(None) == ""
    assert normalize_name("") == ""
    assert normalize_name(12) == ""


def test_normalize_name_idempotent():
    for raw in ("Smith, John A", "doe , jane", "John Smith", "O'Neil,Pat"):
        once = normalize_name(raw)
        assert normalize_name(once) == once
