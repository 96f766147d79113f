import json

import pytest

from studytogether.utils.course_import import (
    parse_course_file,
    parse_day_of_week,
    parse_time,
    parse_weeks,
)


@pytest.mark.parametrize("value,expected", [
    (1, 1), ("7", 7), ("Monday", 1), ("wed", 3), ("FRI", 5), ("周日", 7), ("星期二", 2),
])
def test_parse_day_of_week(value, expected):
    assert parse_day_of_week(value) == expected


@pytest.mark.parametrize("value", [0, 8, "funday", "", None, True])
def test_parse_day_of_week_rejects_unknown(value):
    with pytest.raises(ValueError):
        parse_day_of_week(value)


@pytest.mark.parametrize("value,expected", [
    ("8:30", "08:30"), ("08:30", "08:30"), ("8：30", "08:30"), ("830", "08:30"), ("1415", "14:15"), (" 9:05 ", "09:05"),
])
def test_parse_time(value, expected):
    assert parse_time(value) == expected


@pytest.mark.parametrize("value", ["", "abc", "25:00", "9:75", "12345"])
def test_parse_time_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_time(value)


def test_parse_weeks():
    assert parse_weeks("1-4") == [1, 2, 3, 4]
    assert parse_weeks("1,3,5-7") == [1, 3, 5, 6, 7]
    assert parse_weeks([3, 1, 3]) == [1, 3]
    assert parse_weeks(None) == []
    assert parse_weeks([]) == []


@pytest.mark.parametrize("value", ["odd weeks", "16-1", "0", "0-4", ",", [0, 2], [-3, 2]])
def test_parse_weeks_rejects_reversed_or_non_positive(value):
    with pytest.raises(ValueError):
        parse_weeks(value)


def test_parse_csv_with_aliases():
    csv = (
        "name,code,teacher,dayOfWeek,startTime,endTime,weeks,credits\n"
        "Algorithms,CS201,Dr. Li,Mon,8:00,9:40,1-16,3\n"
        "Reading group,,,,,,,\n"
    ).encode("utf-8")
    rows = parse_course_file(csv, "timetable.csv")
    assert rows[0]["name"] == "Algorithms"
    assert rows[0]["instructor"] == "Dr. Li"
    assert rows[0]["day_of_week"] == "Mon"
    assert rows[0]["start_time"] == "8:00"
    assert rows[0]["credits"] == 3.0
    assert rows[1]["code"] is None
    assert rows[1]["credits"] is None


def test_parse_json_object_or_array():
    data = [{"name": "Physics", "day": 2, "start": "10:00", "end": "11:30"}]
    rows = parse_course_file(json.dumps(data).encode(), "t.json")
    assert rows[0]["day_of_week"] == 2
    rows = parse_course_file(json.dumps({"courses": data}).encode(), "t.JSON")
    assert rows[0]["end_time"] == "11:30"


def test_unsupported_extension():
    with pytest.raises(ValueError):
        parse_course_file(b"", "timetable.xlsx")
