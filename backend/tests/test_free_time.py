import itertools
import random

import pytest

from studytogether.utils.free_time import (
    TimeInterval,
    compute_day_free_time,
    compute_weekly_free_time,
    group_by_day,
    merge_busy,
    minutes_to_time,
    time_to_minutes,
)


def iv(start, end):
    return TimeInterval(start, end)


def spans(slots):
    return [(time_to_minutes(s.start_time), time_to_minutes(s.end_time)) for s in slots]


def test_gap_of_exactly_min_is_kept():
    slots = compute_day_free_time([iv(480, 570)], [iv(600, 660)])
    assert [(s.start_time, s.end_time, s.duration_minutes) for s in slots] == [
        ("09:30", "10:00", 30),
        ("11:00", "22:00", 660),
    ]


def test_overlapping_busy_blocks_merge():
    slots = compute_day_free_time([iv(480, 600)], [iv(540, 660)])
    assert [(s.start_time, s.end_time, s.duration_minutes) for s in slots] == [("11:00", "22:00", 660)]


def test_empty_schedules_free_all_day():
    slots = compute_day_free_time([], [])
    assert len(slots) == 1
    assert slots[0].to_dict() == {"startTime": "08:00", "endTime": "22:00", "duration": 840}


def test_sliver_below_minimum_is_dropped():
    # 29 minute gap between 09:00 and 09:29
    slots = compute_day_free_time([iv(480, 540)], [iv(569, 1320)])
    assert slots == []
    slots = compute_day_free_time([iv(480, 540)], [iv(570, 1320)])
    assert spans(slots) == [(540, 570)]


def test_one_sided_schedule_gives_its_complement():
    slots = compute_day_free_time([iv(600, 720), iv(900, 960)], [])
    assert spans(slots) == [(480, 600), (720, 900), (960, 1320)]


def test_touching_intervals_merge_without_zero_length_gap():
    slots = compute_day_free_time([iv(480, 600)], [iv(600, 700)], min_slot_minutes=0)
    assert spans(slots) == [(700, 1320)]


def test_overlap_within_one_persons_schedule():
    slots = compute_day_free_time([iv(540, 660), iv(600, 630), iv(620, 700)], [])
    assert spans(slots) == [(480, 540), (700, 1320)]


def test_busy_time_outside_window_is_ignored_or_clipped():
    slots = compute_day_free_time([iv(360, 420), iv(450, 510)], [iv(1300, 1400)])
    assert spans(slots) == [(510, 1300)]


def test_custom_window():
    slots = compute_day_free_time([iv(600, 660)], [], day_start=540, day_end=720, min_slot_minutes=45)
    assert spans(slots) == [(540, 600), (660, 720)]


def test_empty_window_has_no_slots():
    assert compute_day_free_time([], [], day_start=600, day_end=600, min_slot_minutes=0) == []


@pytest.mark.parametrize("kwargs", [
    {"day_start": 700, "day_end": 600},
    {"day_start": -1},
    {"day_end": 1441},
    {"min_slot_minutes": -5},
])
def test_invalid_window_rejected(kwargs):
    with pytest.raises(ValueError):
        compute_day_free_time([], [], **kwargs)


@pytest.mark.parametrize("start,end", [(600, 600), (700, 600), (-10, 30), (1400, 1500)])
def test_malformed_interval_rejected(start, end):
    with pytest.raises(ValueError):
        TimeInterval(start, end)


def _random_schedule(rng):
    out = []
    for _ in range(rng.randint(0, 6)):
        start = rng.randrange(0, 1430)
        out.append(iv(start, rng.randint(start + 1, min(1440, start + 240))))
    return out


def test_properties_on_random_schedules():
    rng = random.Random(1234)
    for _ in range(200):
        a, b = _random_schedule(rng), _random_schedule(rng)
        day_start = rng.choice([0, 420, 480])
        day_end = rng.choice([1200, 1320, 1440])
        min_slot = rng.choice([0, 15, 30, 60])
        slots = compute_day_free_time(a, b, day_start, day_end, min_slot)

        assert slots == compute_day_free_time(a, b, day_start, day_end, min_slot)
        assert slots == compute_day_free_time(b, a, day_start, day_end, min_slot)

        got = spans(slots)
        for start, end in got:
            assert day_start <= start < end <= day_end
            assert end - start >= min_slot
        for (_, end1), (start2, _) in zip(got, got[1:]):
            assert end1 < start2

        # with no minimum, free + busy tile the window exactly
        all_free = spans(compute_day_free_time(a, b, day_start, day_end, 0))
        busy = merge_busy(a + b, day_start, day_end)
        pieces = sorted(all_free + busy)
        if day_start < day_end:
            assert pieces[0][0] == day_start
            assert pieces[-1][1] == day_end
            for (_, end1), (start2, _) in zip(pieces, pieces[1:]):
                assert end1 == start2


def test_weekly_aggregation_and_json_shape():
    week_a = {1: [iv(480, 570)], 3: [iv(480, 1320)]}
    week_b = {1: [iv(600, 660)]}
    weekly = compute_weekly_free_time(week_a, week_b)
    out = weekly.to_dict()

    assert sorted(out["weeklyFreeTime"]) == [str(d) for d in range(1, 8)]
    monday = out["weeklyFreeTime"]["1"]
    assert monday["dayName"] == "Monday"
    assert monday["totalFreeTime"] == 690
    assert monday["freeTimeSlots"][0] == {"startTime": "09:30", "endTime": "10:00", "duration": 30}
    assert out["weeklyFreeTime"]["3"]["freeTimeSlots"] == []

    stats = out["statistics"]
    assert stats["totalWeeklyFreeTime"] == 690 + 5 * 840
    assert stats["averageDailyFreeTime"] == pytest.approx((690 + 5 * 840) / 7)
    assert stats["totalFreeSlots"] == 2 + 5
    assert [day for day, _ in weekly.iter_slots()] == [1, 1, 2, 4, 5, 6, 7]


def test_time_conversions():
    assert time_to_minutes("08:05") == 485
    assert time_to_minutes("24:00") == 1440
    assert minutes_to_time(0) == "00:00"
    assert minutes_to_time(1440) == "24:00"
    assert all(time_to_minutes(minutes_to_time(m)) == m for m in range(0, 1441, 7))
    for bad in ["8am", "12:60", "25:00", "24:01", ""]:
        with pytest.raises(ValueError):
            time_to_minutes(bad)


def test_group_by_day_skips_bad_rows(caplog):
    rows = [
        (1, "08:00", "09:00"),
        (1, "10:00", "10:00"),
        (2, "11:00", "09:00"),
        (9, "08:00", "09:00"),
        (3, "nope", "09:00"),
        (3, "13:00", "14:30"),
    ]
    with caplog.at_level("WARNING", logger="studytogether.free_time"):
        grouped = group_by_day(rows)
    assert grouped == {1: [iv(480, 540)], 3: [iv(780, 870)]}
    assert len([r for r in caplog.records if "skipping" in r.getMessage()]) == 4


def test_order_of_input_does_not_matter():
    a = [iv(900, 960), iv(480, 540), iv(700, 800)]
    expected = compute_day_free_time(a, [])
    for perm in itertools.permutations(a):
        assert compute_day_free_time(list(perm), []) == expected
