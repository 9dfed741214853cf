from datetime import datetime

import pytest

from booking_engine.core.errors import ValidationError
from booking_engine.services.slots.timemath import (
    DaySpan,
    booking_day_spans,
    date_range,
    end_date_for,
    format_ts,
    minutes_to_time,
    overnight_end_date,
    parse_ts,
    round_up_to_step,
    time_to_minutes,
)


def test_time_to_minutes():
    assert time_to_minutes("00:00") == 0
    assert time_to_minutes("09:30") == 570
    assert time_to_minutes("23:45") == 1425
    assert time_to_minutes("24:00") == 1440


@pytest.mark.parametrize("value", ["9:30", "12:60", "24:15", "25:00", "", None, "10-00"])
def test_time_to_minutes_rejects_malformed(value):
    with pytest.raises(ValidationError):
        time_to_minutes(value)


def test_minutes_to_time_pads_and_does_not_wrap():
    assert minutes_to_time(0) == "00:00"
    assert minutes_to_time(615) == "10:15"
    assert minutes_to_time(1440) == "24:00"


def test_date_range_is_inclusive():
    assert date_range("2024-06-01", "2024-06-03") == ["2024-06-01", "2024-06-02", "2024-06-03"]
    assert date_range("2024-06-01", "2024-06-01") == ["2024-06-01"]


def test_date_range_crosses_month_end():
    assert date_range("2024-02-28", "2024-03-01") == ["2024-02-28", "2024-02-29", "2024-03-01"]


def test_reversed_date_range_is_empty():
    assert date_range("2024-06-03", "2024-06-01") == []


def test_overnight_end_date():
    assert overnight_end_date("2024-06-01", 2) == "2024-06-03"
    assert overnight_end_date("2024-12-31", 1) == "2025-01-01"
    assert end_date_for("2024-06-01", "hours", 3) == "2024-06-01"
    assert end_date_for("2024-06-01", "overnights", 2) == "2024-06-03"


def test_round_up_to_step():
    assert round_up_to_step(600, 15) == 600
    assert round_up_to_step(601, 15) == 615
    assert round_up_to_step(0, 15) == 0


def test_hourly_booking_is_one_span():
    assert booking_day_spans("2024-06-01", 600, 660, "hours", 1) == [DaySpan("2024-06-01", 600, 660)]


def test_hourly_booking_end_must_follow_start():
    with pytest.raises(ValidationError):
        booking_day_spans("2024-06-01", 660, 600, "hours", 1)


def test_overnight_booking_spans():
    spans = booking_day_spans("2024-06-01", 840, 600, "overnights", 2)

    assert spans == [
        DaySpan("2024-06-01", 840, 1440),
        DaySpan("2024-06-02", 0, 1440),
        DaySpan("2024-06-03", 0, 600),
    ]


def test_overnight_booking_ending_at_midnight_has_no_last_day_span():
    spans = booking_day_spans("2024-06-01", 840, 0, "overnights", 1)

    assert spans == [DaySpan("2024-06-01", 840, 1440)]


def test_timestamps():
    dt = datetime(2030, 6, 10, 10, 5, 30)

    assert format_ts(dt) == "2030-06-10 10:05:30"
    assert parse_ts("2030-06-10 10:05:30") == dt
    assert parse_ts("2030-06-10T10:05:30Z") == dt
