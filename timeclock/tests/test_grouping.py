"""
Tests for assigning punches to (employee, work day) buckets
"""
from datetime import date, datetime, timedelta

from timeclock.services.attendance_machine_service import Punch, ShiftPlan, group_punches
from timeclock.utils.datetime_utils import combine_date_time

WORK_DAY = date(2024, 3, 4)
NEXT_DAY = WORK_DAY + timedelta(days=1)
EMPLOYEE_ID = 7
MAPPINGS = {("DEV-01", "100"): EMPLOYEE_ID}


def at(day: date, hhmm: str) -> datetime:
    return combine_date_time(day, hhmm, 420)


def make_punch(instant: datetime, epoch: int, user_code: str = "100") -> Punch:
    return Punch(device_code="DEV-01", device_user_code=user_code, occurred_at=instant, epoch=epoch)


def plan(day: date, start: str, end: str) -> ShiftPlan:
    return ShiftPlan(employee_id=EMPLOYEE_ID, work_date=day, planned_start=start, planned_end=end)


def test_overnight_punches_group_on_shift_start_day(rules):
    schedules = {(EMPLOYEE_ID, WORK_DAY): plan(WORK_DAY, "22:00", "06:00")}
    punches = [make_punch(at(WORK_DAY, "23:30"), 1), make_punch(at(NEXT_DAY, "05:30"), 2)]

    groups, skipped = group_punches(punches, MAPPINGS, schedules, rules)

    assert skipped == 0
    assert list(groups) == [(EMPLOYEE_ID, WORK_DAY)]
    assert [p.epoch for p in groups[(EMPLOYEE_ID, WORK_DAY)]] == [1, 2]


def test_todays_window_wins_over_yesterdays(rules):
    schedules = {
        (EMPLOYEE_ID, WORK_DAY): plan(WORK_DAY, "22:00", "06:00"),
        (EMPLOYEE_ID, NEXT_DAY): plan(NEXT_DAY, "05:00", "14:00"),
    }
    # 05:30 sits in both the overnight window and the next morning's window
    punches = [make_punch(at(NEXT_DAY, "05:30"), 1)]

    groups, _ = group_punches(punches, MAPPINGS, schedules, rules)

    assert list(groups) == [(EMPLOYEE_ID, NEXT_DAY)]


def test_without_schedule_punch_stays_on_its_calendar_day(rules):
    punches = [make_punch(at(NEXT_DAY, "02:00"), 1)]

    groups, _ = group_punches(punches, MAPPINGS, {}, rules)

    assert list(groups) == [(EMPLOYEE_ID, NEXT_DAY)]


def test_punch_outside_both_windows_stays_on_its_calendar_day(rules):
    schedules = {(EMPLOYEE_ID, WORK_DAY): plan(WORK_DAY, "08:00", "17:00")}
    punches = [make_punch(at(NEXT_DAY, "03:00"), 1)]

    groups, _ = group_punches(punches, MAPPINGS, schedules, rules)

    assert list(groups) == [(EMPLOYEE_ID, NEXT_DAY)]


def test_unmapped_punches_are_counted_not_grouped(rules):
    punches = [
        make_punch(at(WORK_DAY, "08:00"), 1),
        make_punch(at(WORK_DAY, "08:01"), 2, user_code="999"),
        make_punch(at(WORK_DAY, "17:00"), 3, user_code="999"),
    ]

    groups, skipped = group_punches(punches, MAPPINGS, {}, rules)

    assert skipped == 2
    assert sum(len(bucket) for bucket in groups.values()) == 1


def test_bucket_is_ordered_by_time_then_epoch(rules):
    punches = [
        make_punch(at(WORK_DAY, "17:00"), 1),
        make_punch(at(WORK_DAY, "08:00"), 3),
        make_punch(at(WORK_DAY, "08:00"), 2),
    ]

    groups, _ = group_punches(punches, MAPPINGS, {}, rules)

    assert [p.epoch for p in groups[(EMPLOYEE_ID, WORK_DAY)]] == [2, 3, 1]
