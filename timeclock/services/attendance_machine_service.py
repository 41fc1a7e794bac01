"""
Attendance reconciliation engine for time-clock punches.

Turns raw device punches into one attendance record per employee per work day:
shift windows are resolved (overnight shifts roll into the next calendar day),
punches are grouped into (employee, work_date) buckets, each bucket is
reconciled against its schedule, and the result is upserted together with
CHECK_IN / CHECK_OUT audit rows.

Two entry points share the same planning and persistence code:
- process_attendance_machine_events(): drains everything past the watermark.
- reprocess_events_for_pairs(): explicit device/user pairs and/or time range,
  never touches the watermark.

Records with is_adjusted=True are never modified by either entry point.

The watermark is a single global cursor, so only one batch loop may run at a
time. The engine does not detect concurrent runs; callers hold the run lock.
"""
import enum
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from timeclock.core.config import settings
from timeclock.core.constants import WATERMARK_STATE_KEY
from timeclock.models.attendance import (
    AttendanceEvent,
    AttendanceEventType,
    AttendanceRecord,
    AttendanceSource,
    AttendanceStatus,
    CheckInStatus,
    CheckOutStatus,
)
from timeclock.models.attendance_machine import AttendanceDeviceUserMapping, AttendanceMachineEvent
from timeclock.models.system_state import SystemState
from timeclock.models.work_schedule import WorkSchedule
from timeclock.utils.datetime_utils import combine_date_time, ensure_utc, get_work_date, now_utc
from timeclock.utils.json_serializer import sanitize_for_json

logger = logging.getLogger(__name__)

PairKey = Tuple[str, str]
GroupKey = Tuple[int, date]

# OR-of-AND filters per query; keeps SQLite under its expression depth limit
_PAIR_QUERY_CHUNK = 200

# Stored punches this far either side of a batch are reconciled alongside it
_HISTORY_PADDING = timedelta(days=2)


# --- Value types ---


@dataclass(frozen=True)
class ReconcileRules:
    checkin_buffer_minutes: int = 60
    auto_checkout_after_hours: int = 8
    next_shift_buffer_hours: int = 2
    offset_minutes: Optional[int] = None  # None = settings.APP_TIME_ZONE_OFFSET_MINUTES

    @classmethod
    def from_settings(cls) -> "ReconcileRules":
        return cls(
            checkin_buffer_minutes=settings.CHECKIN_BUFFER_MINUTES,
            auto_checkout_after_hours=settings.AUTO_CHECKOUT_AFTER_HOURS,
            next_shift_buffer_hours=settings.NEXT_SHIFT_BUFFER_HOURS,
            offset_minutes=settings.APP_TIME_ZONE_OFFSET_MINUTES,
        )


@dataclass(frozen=True)
class Punch:
    """A raw device punch, detached from the ORM session."""
    device_code: str
    device_user_code: str
    occurred_at: datetime
    epoch: int
    epoch_ms: Optional[int] = None

    @classmethod
    def from_row(cls, row: AttendanceMachineEvent) -> "Punch":
        return cls(
            device_code=row.device_code,
            device_user_code=row.device_user_code,
            occurred_at=ensure_utc(row.occurred_at),
            epoch=int(row.epoch),
            epoch_ms=int(row.epoch_ms) if row.epoch_ms is not None else None,
        )

    @property
    def pair(self) -> PairKey:
        return (self.device_code, self.device_user_code)

    def audit_meta(self, occurred_at: datetime) -> dict:
        return sanitize_for_json({
            "device_code": self.device_code,
            "device_user_code": self.device_user_code,
            "epoch": self.epoch,
            "epoch_ms": self.epoch_ms,
            "occurred_at": ensure_utc(occurred_at),
        })


@dataclass(frozen=True)
class ShiftPlan:
    """Planned shift for one employee on one calendar day."""
    employee_id: int
    work_date: date
    planned_start: str
    planned_end: str
    break_minutes: int = 0
    late_grace_minutes: int = 0
    early_grace_minutes: int = 0
    schedule_id: Optional[int] = None

    @classmethod
    def from_row(cls, row: WorkSchedule) -> "ShiftPlan":
        return cls(
            employee_id=row.employee_id,
            work_date=row.work_date,
            planned_start=row.planned_start,
            planned_end=row.planned_end,
            break_minutes=row.planned_break_minutes or 0,
            late_grace_minutes=row.planned_late_grace_minutes or 0,
            early_grace_minutes=row.planned_early_grace_minutes or 0,
            schedule_id=row.id,
        )


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        """Closed interval: both boundaries count as inside."""
        return self.start <= instant <= self.end


@dataclass(frozen=True)
class ShiftSummary:
    planned_minutes: int
    actual_minutes: int
    late_minutes: int
    early_leave_minutes: int
    overtime_minutes: int
    check_in_status: Optional[CheckInStatus]
    check_out_status: Optional[CheckOutStatus]


@dataclass
class ReconciledDay:
    """Derived attendance for one (employee, work_date) bucket."""
    employee_id: int
    work_date: date
    status: AttendanceStatus
    schedule_id: Optional[int] = None
    check_in_at: Optional[datetime] = None
    check_out_at: Optional[datetime] = None
    check_in_status: Optional[CheckInStatus] = None
    check_out_status: Optional[CheckOutStatus] = None
    planned_minutes: int = 0
    work_minutes: int = 0
    break_minutes: int = 0
    late_minutes: int = 0
    early_leave_minutes: int = 0
    overtime_minutes: int = 0
    forced_auto_checkout: bool = False
    check_in_punch: Optional[Punch] = None
    check_out_punch: Optional[Punch] = None


@dataclass
class BatchPlan:
    """Output of the pure planning step; persisted by apply_plan()."""
    days: List[ReconciledDay]
    group_count: int
    event_count: int
    skipped_no_mapping: int
    next_watermark: Optional[int]


@dataclass
class ApplyResult:
    written: int = 0
    skipped_adjusted: int = 0


@dataclass
class ProcessResult:
    batches: int = 0
    last_epoch: int = 0
    events: int = 0
    processed_groups: int = 0
    records_written: int = 0
    skipped_no_mapping: int = 0
    skipped_adjusted: int = 0


@dataclass
class ReprocessResult:
    events: int = 0
    processed: int = 0
    records_written: int = 0
    skipped_no_mapping: int = 0
    skipped_adjusted: int = 0


class BatchPhase(str, enum.Enum):
    IDLE = "IDLE"
    FETCHING = "FETCHING"
    PROCESSING = "PROCESSING"
    PERSISTING = "PERSISTING"
    DONE = "DONE"


_PHASE_TRANSITIONS = {
    BatchPhase.IDLE: {BatchPhase.FETCHING},
    BatchPhase.FETCHING: {BatchPhase.PROCESSING, BatchPhase.DONE},
    BatchPhase.PROCESSING: {BatchPhase.PERSISTING},
    BatchPhase.PERSISTING: {BatchPhase.FETCHING},
    BatchPhase.DONE: set(),
}


def _advance(current: BatchPhase, target: BatchPhase) -> BatchPhase:
    if target not in _PHASE_TRANSITIONS[current]:
        raise RuntimeError(f"Illegal batch phase transition {current.value} -> {target.value}")
    logger.debug("batch phase %s -> %s", current.value, target.value)
    return target


# --- Shift window resolution ---


def resolve_shift_window(
    work_date: date,
    start_time: str,
    end_time: str,
    offset_minutes: Optional[int] = None,
) -> TimeWindow:
    """
    Absolute [start, end] of a planned shift.

    Both times are anchored on work_date in the organisation clock; an end at
    or before the start means the shift finishes on the following day.
    """
    start = combine_date_time(work_date, start_time, offset_minutes)
    end = combine_date_time(work_date, end_time, offset_minutes)
    if end <= start:
        end = end + timedelta(hours=24)
    return TimeWindow(start=start, end=end)


def resolve_check_in_window(
    work_date: date,
    start_time: str,
    end_time: str,
    rules: Optional[ReconcileRules] = None,
) -> TimeWindow:
    """Shift window opened `checkin_buffer_minutes` early; punches inside may check in for that day."""
    rules = rules or ReconcileRules.from_settings()
    shift = resolve_shift_window(work_date, start_time, end_time, rules.offset_minutes)
    return TimeWindow(
        start=shift.start - timedelta(minutes=rules.checkin_buffer_minutes),
        end=shift.end,
    )


def diff_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, rounded half up, never negative."""
    seconds = (end - start).total_seconds()
    return max(0, int(math.floor(seconds / 60 + 0.5)))


# --- Grouping ---


def assign_work_date(
    punch: Punch,
    employee_id: int,
    schedule_map: Dict[GroupKey, ShiftPlan],
    rules: ReconcileRules,
) -> date:
    """
    Work day a punch belongs to.

    Today's check-in window wins; otherwise yesterday's (so the morning end of
    an overnight shift lands on the day the shift started); otherwise the
    punch's own calendar day with no shift.
    """
    day = get_work_date(punch.occurred_at, rules.offset_minutes)
    for candidate in (day, day - timedelta(days=1)):
        plan = schedule_map.get((employee_id, candidate))
        if plan is None:
            continue
        window = resolve_check_in_window(plan.work_date, plan.planned_start, plan.planned_end, rules)
        if window.contains(punch.occurred_at):
            return candidate
    return day


def group_punches(
    punches: Iterable[Punch],
    mapping_map: Dict[PairKey, int],
    schedule_map: Dict[GroupKey, ShiftPlan],
    rules: Optional[ReconcileRules] = None,
) -> Tuple[Dict[GroupKey, List[Punch]], int]:
    """
    Bucket punches by (employee_id, work_date).

    Returns (groups, skipped_no_mapping). Punches inside a group are ordered by
    occurred_at, then epoch.
    """
    rules = rules or ReconcileRules.from_settings()
    groups: Dict[GroupKey, List[Punch]] = {}
    skipped_no_mapping = 0

    for punch in punches:
        employee_id = mapping_map.get(punch.pair)
        if employee_id is None:
            skipped_no_mapping += 1
            continue
        work_date = assign_work_date(punch, employee_id, schedule_map, rules)
        groups.setdefault((employee_id, work_date), []).append(punch)

    for bucket in groups.values():
        bucket.sort(key=lambda p: (p.occurred_at, p.epoch))
    return groups, skipped_no_mapping


# --- Reconciliation ---


def summarize_shift(
    plan: ShiftPlan,
    check_in_at: Optional[datetime],
    check_out_at: Optional[datetime],
    rules: Optional[ReconcileRules] = None,
) -> ShiftSummary:
    """Minute counts and per-punch statuses of a day against its shift and grace periods."""
    rules = rules or ReconcileRules.from_settings()
    window = resolve_shift_window(plan.work_date, plan.planned_start, plan.planned_end, rules.offset_minutes)
    late_boundary = window.start + timedelta(minutes=plan.late_grace_minutes)
    early_boundary = window.end - timedelta(minutes=plan.early_grace_minutes)

    planned_minutes = max(0, diff_minutes(window.start, window.end) - plan.break_minutes)
    actual_minutes = 0
    if check_in_at and check_out_at:
        actual_minutes = max(0, diff_minutes(check_in_at, check_out_at) - plan.break_minutes)

    late_minutes = diff_minutes(late_boundary, check_in_at) if check_in_at and check_in_at > late_boundary else 0
    early_leave_minutes = (
        diff_minutes(check_out_at, early_boundary) if check_out_at and check_out_at < early_boundary else 0
    )
    overtime_minutes = diff_minutes(window.end, check_out_at) if check_out_at and check_out_at > window.end else 0

    check_in_status = None
    if check_in_at:
        check_in_status = CheckInStatus.LATE if late_minutes > 0 else CheckInStatus.ON_TIME

    check_out_status = None
    if check_out_at:
        if overtime_minutes > 0:
            check_out_status = CheckOutStatus.OVERTIME
        elif early_leave_minutes > 0:
            check_out_status = CheckOutStatus.EARLY
        else:
            check_out_status = CheckOutStatus.ON_TIME

    return ShiftSummary(
        planned_minutes=planned_minutes,
        actual_minutes=actual_minutes,
        late_minutes=late_minutes,
        early_leave_minutes=early_leave_minutes,
        overtime_minutes=overtime_minutes,
        check_in_status=check_in_status,
        check_out_status=check_out_status,
    )


def resolve_status(
    late_minutes: int,
    early_leave_minutes: int,
    overtime_minutes: int,
    has_check_out: bool,
    forced_auto_checkout: bool = False,
) -> AttendanceStatus:
    """Aggregate day status; overtime covering lateness (with no early leave) nets to PRESENT."""
    if not has_check_out:
        return AttendanceStatus.INCOMPLETE
    if forced_auto_checkout:
        return AttendanceStatus.NON_COMPLIANT

    if late_minutes > 0 and early_leave_minutes > 0:
        status = AttendanceStatus.LATE_AND_EARLY
    elif late_minutes > 0:
        status = AttendanceStatus.LATE
    elif early_leave_minutes > 0:
        status = AttendanceStatus.EARLY_LEAVE
    elif overtime_minutes > 0:
        status = AttendanceStatus.OVERTIME
    else:
        status = AttendanceStatus.PRESENT

    if late_minutes > 0 and overtime_minutes >= late_minutes and early_leave_minutes == 0:
        status = AttendanceStatus.PRESENT
    return status


def compute_checkout_cutoff(
    plan: ShiftPlan,
    next_plan: Optional[ShiftPlan],
    rules: Optional[ReconcileRules] = None,
) -> datetime:
    """Latest instant a punch may still close this shift."""
    rules = rules or ReconcileRules.from_settings()
    window = resolve_shift_window(plan.work_date, plan.planned_start, plan.planned_end, rules.offset_minutes)
    cutoff = window.end + timedelta(hours=rules.auto_checkout_after_hours)
    if next_plan is not None:
        next_start = combine_date_time(next_plan.work_date, next_plan.planned_start, rules.offset_minutes)
        by_next_shift = next_start - timedelta(hours=rules.next_shift_buffer_hours)
        if by_next_shift < cutoff:
            cutoff = by_next_shift
    return cutoff


def _reconcile_without_shift(employee_id: int, work_date: date, punches: Sequence[Punch]) -> ReconciledDay:
    first = min(punches, key=lambda p: p.occurred_at)
    last = max(punches, key=lambda p: p.occurred_at)
    has_out = last.occurred_at != first.occurred_at
    return ReconciledDay(
        employee_id=employee_id,
        work_date=work_date,
        status=AttendanceStatus.NO_SHIFT,
        check_in_at=first.occurred_at,
        check_out_at=last.occurred_at if has_out else None,
        check_in_punch=first,
        check_out_punch=last if has_out else None,
    )


def reconcile_group(
    employee_id: int,
    work_date: date,
    punches: Sequence[Punch],
    plan: Optional[ShiftPlan],
    next_plan: Optional[ShiftPlan] = None,
    now: Optional[datetime] = None,
    rules: Optional[ReconcileRules] = None,
) -> Optional[ReconciledDay]:
    """
    Derive one day's attendance from its punches.

    Returns None when the bucket cannot be decided yet (no check-in candidate
    and the shift is still open); the existing record is then left as is.
    `now` also counts as evidence that the checkout cutoff has passed.
    """
    if not punches:
        return None
    rules = rules or ReconcileRules.from_settings()

    if plan is None:
        return _reconcile_without_shift(employee_id, work_date, punches)

    latest = max(punches, key=lambda p: p.occurred_at)
    check_in_window = resolve_check_in_window(plan.work_date, plan.planned_start, plan.planned_end, rules)
    candidates = [p for p in punches if check_in_window.contains(p.occurred_at)]

    if not candidates:
        if latest.occurred_at >= check_in_window.end:
            return ReconciledDay(
                employee_id=employee_id,
                work_date=work_date,
                status=AttendanceStatus.ABSENT,
                schedule_id=plan.schedule_id,
                check_in_status=CheckInStatus.MISSED,
                check_out_status=CheckOutStatus.MISSED,
            )
        return None

    check_in_punch = min(candidates, key=lambda p: p.occurred_at)
    check_in_at = check_in_punch.occurred_at

    cutoff = compute_checkout_cutoff(plan, next_plan, rules)
    checkout_candidates = [p for p in punches if check_in_at <= p.occurred_at <= cutoff]
    last_candidate = max(checkout_candidates, key=lambda p: p.occurred_at) if checkout_candidates else None

    check_out_at = last_candidate.occurred_at if last_candidate else None
    if check_out_at is not None and check_out_at == check_in_at:
        check_out_at = None

    reference = latest.occurred_at
    if now is not None and ensure_utc(now) > reference:
        reference = ensure_utc(now)
    forced = False
    if check_out_at is None and reference >= cutoff:
        check_out_at = cutoff
        forced = True

    summary = summarize_shift(plan, check_in_at, check_out_at, rules)
    if forced:
        check_out_status = CheckOutStatus.MISSED
    elif check_out_at is not None:
        check_out_status = summary.check_out_status
    else:
        check_out_status = CheckOutStatus.PENDING

    status = resolve_status(
        summary.late_minutes,
        summary.early_leave_minutes,
        summary.overtime_minutes,
        has_check_out=check_out_at is not None,
        forced_auto_checkout=forced,
    )

    return ReconciledDay(
        employee_id=employee_id,
        work_date=work_date,
        status=status,
        schedule_id=plan.schedule_id,
        check_in_at=check_in_at,
        check_out_at=check_out_at,
        check_in_status=summary.check_in_status,
        check_out_status=check_out_status,
        planned_minutes=summary.planned_minutes,
        work_minutes=summary.actual_minutes,
        break_minutes=plan.break_minutes,
        late_minutes=summary.late_minutes,
        early_leave_minutes=summary.early_leave_minutes,
        overtime_minutes=summary.overtime_minutes,
        forced_auto_checkout=forced,
        check_in_punch=check_in_punch,
        check_out_punch=(last_candidate or latest) if check_out_at is not None else None,
    )


def plan_batch(
    watermark: Optional[int],
    punches: Sequence[Punch],
    mapping_map: Dict[PairKey, int],
    schedule_map: Dict[GroupKey, ShiftPlan],
    now: Optional[datetime] = None,
    rules: Optional[ReconcileRules] = None,
    history: Sequence[Punch] = (),
) -> BatchPlan:
    """
    Pure step: (watermark, events, mappings, schedules) -> days to persist + next watermark.

    Buckets touched by `punches` are reconciled over every punch they own in
    `punches` + `history`, so a check-out arriving in a later batch than its
    check-in still closes the same day. The day before each employee's
    earliest touched day is reconciled again as well, so a day stored as
    INCOMPLETE gets its forced checkout once `now` passes the cutoff.

    Pass watermark=None for range reprocessing; next_watermark is then None too.
    """
    rules = rules or ReconcileRules.from_settings()
    groups, skipped_no_mapping = group_punches(punches, mapping_map, schedule_map, rules)
    if history:
        seen = {p.epoch for p in punches}
        merged = list(punches) + [p for p in history if p.epoch not in seen]
        context, _ = group_punches(merged, mapping_map, schedule_map, rules)
        earliest: Dict[int, date] = {}
        for employee_id, work_date in groups:
            if employee_id not in earliest or work_date < earliest[employee_id]:
                earliest[employee_id] = work_date
        keys = set(groups)
        for employee_id, work_date in earliest.items():
            previous = (employee_id, work_date - timedelta(days=1))
            if previous in context:
                keys.add(previous)
        groups = {key: context[key] for key in keys}

    days: List[ReconciledDay] = []
    for (employee_id, work_date) in sorted(groups):
        plan = schedule_map.get((employee_id, work_date))
        next_plan = schedule_map.get((employee_id, work_date + timedelta(days=1)))
        day = reconcile_group(employee_id, work_date, groups[(employee_id, work_date)], plan, next_plan, now, rules)
        if day is not None:
            days.append(day)

    next_watermark = None
    if watermark is not None:
        next_watermark = max([watermark] + [p.epoch for p in punches])

    return BatchPlan(
        days=days,
        group_count=len(groups),
        event_count=len(punches),
        skipped_no_mapping=skipped_no_mapping,
        next_watermark=next_watermark,
    )


# --- Lookups ---


def _pair_filter(pairs: Sequence[PairKey], device_col, user_col):
    return or_(*[and_(device_col == device, user_col == user) for device, user in pairs])


def load_active_mappings(db: Session, pairs: Iterable[PairKey]) -> Dict[PairKey, int]:
    """(device_code, device_user_code) -> employee_id for active mappings only."""
    unique_pairs = sorted(set(pairs))
    mapping_map: Dict[PairKey, int] = {}
    for i in range(0, len(unique_pairs), _PAIR_QUERY_CHUNK):
        chunk = unique_pairs[i:i + _PAIR_QUERY_CHUNK]
        rows = (
            db.query(AttendanceDeviceUserMapping)
            .filter(
                AttendanceDeviceUserMapping.is_active.is_(True),
                _pair_filter(
                    chunk,
                    AttendanceDeviceUserMapping.device_code,
                    AttendanceDeviceUserMapping.device_user_code,
                ),
            )
            .all()
        )
        for row in rows:
            mapping_map[(row.device_code, row.device_user_code)] = row.employee_id
    return mapping_map


def load_schedules(
    db: Session,
    punches: Sequence[Punch],
    mapping_map: Dict[PairKey, int],
    rules: Optional[ReconcileRules] = None,
) -> Dict[GroupKey, ShiftPlan]:
    """
    Schedules of every mapped employee over the batch's day span, padded by one
    day each side (previous-day overnight shifts, next-day cutoffs).
    """
    rules = rules or ReconcileRules.from_settings()
    employee_ids: Set[int] = set()
    days: Set[date] = set()
    for punch in punches:
        employee_id = mapping_map.get(punch.pair)
        if employee_id is None:
            continue
        employee_ids.add(employee_id)
        days.add(get_work_date(punch.occurred_at, rules.offset_minutes))

    if not employee_ids:
        return {}

    first_day = min(days) - timedelta(days=1)
    last_day = max(days) + timedelta(days=1)
    rows = (
        db.query(WorkSchedule)
        .filter(
            WorkSchedule.employee_id.in_(sorted(employee_ids)),
            WorkSchedule.work_date >= first_day,
            WorkSchedule.work_date <= last_day,
        )
        .all()
    )
    return {(row.employee_id, row.work_date): ShiftPlan.from_row(row) for row in rows}


def fetch_events_after(db: Session, watermark: int, limit: int) -> List[Punch]:
    rows = (
        db.query(AttendanceMachineEvent)
        .filter(AttendanceMachineEvent.epoch > watermark)
        .order_by(AttendanceMachineEvent.epoch.asc())
        .limit(limit)
        .all()
    )
    return [Punch.from_row(row) for row in rows]


def fetch_events_in_scope(
    db: Session,
    pairs: Optional[Sequence[PairKey]],
    from_at: Optional[datetime],
    to_at: Optional[datetime],
) -> List[Punch]:
    """Punches for the given pairs (all pairs when None) with occurred_at in [from_at, to_at]."""
    query = db.query(AttendanceMachineEvent)
    if from_at is not None:
        query = query.filter(AttendanceMachineEvent.occurred_at >= ensure_utc(from_at))
    if to_at is not None:
        query = query.filter(AttendanceMachineEvent.occurred_at <= ensure_utc(to_at))
    query = query.order_by(AttendanceMachineEvent.occurred_at.asc(), AttendanceMachineEvent.epoch.asc())

    if pairs is None:
        return [Punch.from_row(row) for row in query.all()]

    unique_pairs = sorted(set(pairs))
    punches: List[Punch] = []
    for i in range(0, len(unique_pairs), _PAIR_QUERY_CHUNK):
        chunk = unique_pairs[i:i + _PAIR_QUERY_CHUNK]
        rows = query.filter(
            _pair_filter(chunk, AttendanceMachineEvent.device_code, AttendanceMachineEvent.device_user_code)
        ).all()
        punches.extend(Punch.from_row(row) for row in rows)
    punches.sort(key=lambda p: (p.occurred_at, p.epoch))
    return punches


def load_history(
    db: Session,
    punches: Sequence[Punch],
    mapping_map: Dict[PairKey, int],
) -> Tuple[List[Punch], Dict[PairKey, int]]:
    """
    Stored punches of the batch's employees around the batch's time span.

    Every active pair of those employees is included (an employee may punch
    on several devices). Returns (history, mapping_map extended with those pairs).
    """
    mapped = [p for p in punches if p.pair in mapping_map]
    if not mapped:
        return [], mapping_map

    employee_ids = sorted({mapping_map[p.pair] for p in mapped})
    rows = (
        db.query(AttendanceDeviceUserMapping)
        .filter(
            AttendanceDeviceUserMapping.is_active.is_(True),
            AttendanceDeviceUserMapping.employee_id.in_(employee_ids),
        )
        .all()
    )
    full_map = dict(mapping_map)
    for row in rows:
        full_map[(row.device_code, row.device_user_code)] = row.employee_id

    pairs = [pair for pair, employee_id in full_map.items() if employee_id in employee_ids]
    from_at = min(p.occurred_at for p in mapped) - _HISTORY_PADDING
    to_at = max(p.occurred_at for p in mapped) + _HISTORY_PADDING
    return fetch_events_in_scope(db, pairs, from_at, to_at), full_map


# --- Watermark ---


def read_watermark(db: Session) -> int:
    """Highest committed epoch. Missing or unreadable state reads as 0 (full, idempotent replay)."""
    state = db.get(SystemState, WATERMARK_STATE_KEY)
    if state is None or state.value is None or not state.value.strip():
        return 0
    try:
        value = int(state.value.strip())
    except ValueError:
        logger.warning(
            "Watermark %s has unparseable value %r; reprocessing from epoch 0",
            WATERMARK_STATE_KEY, state.value,
        )
        return 0
    if value < 0:
        logger.warning("Watermark %s is negative (%s); reprocessing from epoch 0", WATERMARK_STATE_KEY, value)
        return 0
    return value


def write_watermark(db: Session, value: int) -> None:
    """Stage the watermark update; the caller commits."""
    state = db.get(SystemState, WATERMARK_STATE_KEY)
    if state is None:
        db.add(SystemState(key=WATERMARK_STATE_KEY, value=str(value)))
    elif state.value != str(value):
        state.value = str(value)


# --- Persistence ---


def _same(current, new) -> bool:
    if isinstance(current, datetime) or isinstance(new, datetime):
        return ensure_utc(current) == ensure_utc(new)
    return current == new


def _assign(obj, attr: str, value) -> None:
    # Unchanged attributes are left alone so a replay issues no UPDATE
    if not _same(getattr(obj, attr), value):
        setattr(obj, attr, value)


def _record_values(day: ReconciledDay) -> dict:
    if day.status == AttendanceStatus.ABSENT:
        return {
            "schedule_id": day.schedule_id,
            "status": day.status,
            "check_in_status": day.check_in_status,
            "check_out_status": day.check_out_status,
            "source": AttendanceSource.DEVICE,
        }
    return {
        "schedule_id": day.schedule_id,
        "check_in_at": day.check_in_at,
        "check_out_at": day.check_out_at,
        "status": day.status,
        "check_in_status": day.check_in_status,
        "check_out_status": day.check_out_status,
        "planned_minutes": day.planned_minutes,
        "work_minutes": day.work_minutes,
        "break_minutes": day.break_minutes,
        "late_minutes": day.late_minutes,
        "early_leave_minutes": day.early_leave_minutes,
        "overtime_minutes": day.overtime_minutes,
        "forced_auto_checkout": day.forced_auto_checkout,
        "source": AttendanceSource.DEVICE,
    }


def _upsert_audit_event(
    db: Session,
    record: AttendanceRecord,
    event_type: AttendanceEventType,
    occurred_at: datetime,
    punch: Punch,
    source: AttendanceSource,
) -> None:
    event = (
        db.query(AttendanceEvent)
        .filter(
            AttendanceEvent.employee_id == record.employee_id,
            AttendanceEvent.work_date == record.work_date,
            AttendanceEvent.event_type == event_type,
        )
        .first()
    )
    if event is None:
        event = AttendanceEvent(
            employee_id=record.employee_id,
            work_date=record.work_date,
            event_type=event_type,
        )
        db.add(event)
    _assign(event, "record_id", record.id)
    _assign(event, "occurred_at", occurred_at)
    _assign(event, "source", source)
    _assign(event, "meta_json", punch.audit_meta(occurred_at))


def _drop_audit_event(db: Session, record: AttendanceRecord, event_type: AttendanceEventType) -> None:
    db.query(AttendanceEvent).filter(
        AttendanceEvent.employee_id == record.employee_id,
        AttendanceEvent.work_date == record.work_date,
        AttendanceEvent.event_type == event_type,
    ).delete(synchronize_session=False)


def apply_day(db: Session, day: ReconciledDay) -> bool:
    """
    Stage one reconciled day: keyed upsert of the record plus its audit rows.

    Returns False (and stages nothing) when the existing record is adjusted.
    The caller commits.
    """
    record = (
        db.query(AttendanceRecord)
        .filter(
            AttendanceRecord.employee_id == day.employee_id,
            AttendanceRecord.work_date == day.work_date,
        )
        .first()
    )
    if record is not None and record.is_adjusted:
        return False

    if record is None:
        record = AttendanceRecord(employee_id=day.employee_id, work_date=day.work_date, is_adjusted=False)
        db.add(record)
    for attr, value in _record_values(day).items():
        _assign(record, attr, value)
    db.flush()

    if day.status == AttendanceStatus.ABSENT:
        return True

    if day.check_in_at is not None and day.check_in_punch is not None:
        _upsert_audit_event(
            db, record, AttendanceEventType.CHECK_IN, day.check_in_at, day.check_in_punch, AttendanceSource.DEVICE
        )
    if day.check_out_at is not None and day.check_out_punch is not None:
        source = AttendanceSource.MANUAL if day.forced_auto_checkout else AttendanceSource.DEVICE
        _upsert_audit_event(
            db, record, AttendanceEventType.CHECK_OUT, day.check_out_at, day.check_out_punch, source
        )
    else:
        _drop_audit_event(db, record, AttendanceEventType.CHECK_OUT)
    return True


def apply_plan(db: Session, plan: BatchPlan) -> ApplyResult:
    """
    Persist every day of a plan, one commit per (employee, work_date).

    A failure rolls back the current day and propagates; days already
    committed are safe to re-apply because every write is keyed.
    """
    result = ApplyResult()
    for day in plan.days:
        try:
            written = apply_day(db, day)
            db.commit()
        except Exception:
            db.rollback()
            logger.error(
                "Failed to persist attendance for employee_id=%s work_date=%s",
                day.employee_id, day.work_date, exc_info=True,
            )
            raise
        if written:
            result.written += 1
        else:
            result.skipped_adjusted += 1
            logger.debug(
                "Skipping adjusted attendance record employee_id=%s work_date=%s",
                day.employee_id, day.work_date,
            )
    return result


# --- Entry points ---


def process_attendance_machine_events(
    db: Session,
    batch_size: Optional[int] = None,
    now: Optional[datetime] = None,
    rules: Optional[ReconcileRules] = None,
) -> ProcessResult:
    """
    Drain every punch past the watermark, batch by batch.

    The watermark advances only after a batch's records are committed; if
    persistence fails the exception propagates and the next run replays the
    same batch.
    """
    batch_size = batch_size or settings.ATTENDANCE_BATCH_SIZE
    rules = rules or ReconcileRules.from_settings()
    now = ensure_utc(now) if now is not None else now_utc()

    phase = BatchPhase.IDLE
    watermark = read_watermark(db)
    result = ProcessResult(last_epoch=watermark)
    logger.info("Attendance machine processing started: watermark=%s batch_size=%s", watermark, batch_size)

    while True:
        phase = _advance(phase, BatchPhase.FETCHING)
        punches = fetch_events_after(db, watermark, batch_size)
        if not punches:
            phase = _advance(phase, BatchPhase.DONE)
            break

        phase = _advance(phase, BatchPhase.PROCESSING)
        mapping_map = load_active_mappings(db, (p.pair for p in punches))
        history, mapping_map = load_history(db, punches, mapping_map)
        schedule_map = load_schedules(db, list(punches) + history, mapping_map, rules)
        plan = plan_batch(watermark, punches, mapping_map, schedule_map, now, rules, history=history)

        phase = _advance(phase, BatchPhase.PERSISTING)
        applied = apply_plan(db, plan)
        write_watermark(db, plan.next_watermark)
        db.commit()

        result.batches += 1
        result.events += plan.event_count
        result.processed_groups += plan.group_count
        result.records_written += applied.written
        result.skipped_no_mapping += plan.skipped_no_mapping
        result.skipped_adjusted += applied.skipped_adjusted
        logger.info(
            "Attendance batch committed: epochs (%s, %s] events=%s groups=%s written=%s "
            "skipped_no_mapping=%s skipped_adjusted=%s",
            watermark, plan.next_watermark, plan.event_count, plan.group_count,
            applied.written, plan.skipped_no_mapping, applied.skipped_adjusted,
        )
        watermark = plan.next_watermark
        result.last_epoch = watermark

    logger.info(
        "Attendance machine processing done: batches=%s last_epoch=%s skipped_no_mapping=%s",
        result.batches, result.last_epoch, result.skipped_no_mapping,
    )
    return result


def reprocess_events_for_pairs(
    db: Session,
    pairs: Optional[Sequence[PairKey]] = None,
    from_at: Optional[datetime] = None,
    to_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
    rules: Optional[ReconcileRules] = None,
) -> ReprocessResult:
    """
    Re-run reconciliation over an explicit scope without touching the watermark.

    `pairs` limits the device users; `from_at`/`to_at` bound occurred_at
    (inclusive). At least one of them must be given.
    """
    if not pairs and from_at is None and to_at is None:
        raise ValueError("pairs or a time range is required")
    if from_at is not None and to_at is not None and ensure_utc(from_at) > ensure_utc(to_at):
        raise ValueError("from must be less than or equal to to")

    rules = rules or ReconcileRules.from_settings()
    now = ensure_utc(now) if now is not None else now_utc()

    punches = fetch_events_in_scope(db, list(pairs) if pairs else None, from_at, to_at)
    result = ReprocessResult(events=len(punches))
    if not punches:
        return result

    mapping_map = load_active_mappings(db, (p.pair for p in punches))
    history, mapping_map = load_history(db, punches, mapping_map)
    schedule_map = load_schedules(db, list(punches) + history, mapping_map, rules)
    plan = plan_batch(None, punches, mapping_map, schedule_map, now, rules, history=history)
    applied = apply_plan(db, plan)

    result.processed = plan.group_count
    result.records_written = applied.written
    result.skipped_no_mapping = plan.skipped_no_mapping
    result.skipped_adjusted = applied.skipped_adjusted
    logger.info(
        "Attendance reprocess done: pairs=%s from=%s to=%s events=%s groups=%s written=%s",
        len(pairs) if pairs else "all", from_at, to_at, result.events, result.processed, result.records_written,
    )
    return result
