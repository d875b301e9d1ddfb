from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction
from django.db.models import F, Max

from apps.core.academics.models import AcademyClass, Student, weekday_key
from apps.core.academics.services import require_schedule_days
from apps.core.closures.models import AcademyClosure

from .models import ATTENDANCE_EVENTS, TuitionFee, TuitionSession, statuses_accepting


logger = logging.getLogger(__name__)


def _horizon_days() -> int:
    return int(getattr(settings, 'TUITION_GENERATION_HORIZON_DAYS', 100))


def _alignment_window_days() -> int:
    return int(getattr(settings, 'TUITION_ALIGNMENT_WINDOW_DAYS', 7))


def _alignment_candidate_limit() -> int:
    return int(getattr(settings, 'TUITION_ALIGNMENT_CANDIDATE_LIMIT', 5))


def _default_sessions_per_month() -> int:
    return int(getattr(settings, 'TUITION_DEFAULT_SESSIONS_PER_MONTH', 8))


def _to_decimal(value) -> Decimal:
    return Decimal(str(value or '0'))


def _quantize(value) -> Decimal:
    return _to_decimal(value).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


class SessionTargetUnreachable(ValidationError):
    def __init__(self, *, target: int, horizon_days: int, achieved: int):
        self.target = target
        self.horizon_days = horizon_days
        self.achieved = achieved
        super().__init__(
            f"Cannot reach the target of {target} sessions: only {achieved} billable sessions "
            f"fall within {horizon_days} days. Check for excessive closures or a misconfigured "
            'weekly schedule.'
        )


@dataclass(frozen=True)
class GeneratedSession:
    date: date
    day_of_week: str
    status: str
    closure_id: int | None = None
    closure_reason: str | None = None


@dataclass(frozen=True)
class SessionGenerationResult:
    sessions: tuple[GeneratedSession, ...]
    period_end_date: date
    closure_days: int
    billable_count: int
    per_session_fee: Decimal
    calculated_amount: Decimal


# --- Session date generation ---


def _classify_day(current: date, closures_by_date) -> GeneratedSession:
    closure = closures_by_date.get(current)
    if closure is not None:
        return GeneratedSession(
            date=current,
            day_of_week=weekday_key(current),
            status=TuitionSession.STATUS_CLOSURE,
            closure_id=closure.id,
            closure_reason=closure.reason or None,
        )
    return GeneratedSession(
        date=current,
        day_of_week=weekday_key(current),
        status=TuitionSession.STATUS_SCHEDULED,
    )


def walk_session_dates(
    *,
    schedule_days,
    start_date: date,
    target_count: int,
    closures_by_date,
    horizon_days: int,
) -> list[GeneratedSession]:
    """Walk calendar days from start_date until target_count billable days are found.

    Closed meeting days are emitted with closure status but are not counted.
    Raises SessionTargetUnreachable when horizon_days run out first.
    """
    day_set = set(schedule_days)
    sessions = []
    billable = 0
    current = start_date

    for _ in range(horizon_days):
        if billable >= target_count:
            break
        if weekday_key(current) in day_set:
            entry = _classify_day(current, closures_by_date)
            sessions.append(entry)
            if entry.status == TuitionSession.STATUS_SCHEDULED:
                billable += 1
        current += timedelta(days=1)

    if billable < target_count:
        raise SessionTargetUnreachable(target=target_count, horizon_days=horizon_days, achieved=billable)
    return sessions


def closure_map_for_class(academy_class: AcademyClass, start_date: date, end_date: date) -> dict:
    closures_by_date = {}
    for closure in AcademyClosure.objects.affecting_class(academy_class, start_date, end_date):
        closures_by_date.setdefault(closure.closure_date, closure)
    return closures_by_date


def compute_per_session_fee(*, monthly_fee, sessions_per_month) -> Decimal:
    if not sessions_per_month or sessions_per_month <= 0:
        return Decimal('0.00')
    per_session = _to_decimal(monthly_fee) / Decimal(sessions_per_month)
    return _quantize(per_session.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def _build_result(*, sessions, period_end_date, per_session_fee) -> SessionGenerationResult:
    billable = sum(1 for entry in sessions if entry.status == TuitionSession.STATUS_SCHEDULED)
    closure_days = sum(1 for entry in sessions if entry.status == TuitionSession.STATUS_CLOSURE)
    return SessionGenerationResult(
        sessions=tuple(sessions),
        period_end_date=period_end_date,
        closure_days=closure_days,
        billable_count=billable,
        per_session_fee=per_session_fee,
        calculated_amount=_quantize(Decimal(billable) * per_session_fee),
    )


def generate_session_dates(
    *,
    academy_class: AcademyClass,
    period_start_date: date,
    target_session_count: int,
    align_end_date: bool = False,
) -> SessionGenerationResult:
    if target_session_count is None or target_session_count <= 0:
        raise ValidationError('Target session count must be greater than zero.')

    schedule_days = require_schedule_days(academy_class)
    horizon = _horizon_days()
    closures_by_date = closure_map_for_class(
        academy_class,
        period_start_date,
        period_start_date + timedelta(days=horizon),
    )

    sessions = walk_session_dates(
        schedule_days=schedule_days,
        start_date=period_start_date,
        target_count=target_session_count,
        closures_by_date=closures_by_date,
        horizon_days=horizon,
    )

    sessions_per_month = academy_class.sessions_per_month
    if sessions_per_month is None:
        sessions_per_month = target_session_count
    per_session_fee = compute_per_session_fee(
        monthly_fee=academy_class.monthly_fee,
        sessions_per_month=sessions_per_month,
    )

    period_end_date = sessions[-1].date
    if align_end_date:
        period_end_date = align_end_date_with_same_schedule_classes(
            academy_class=academy_class,
            calculated_end_date=period_end_date,
        )

    return _build_result(sessions=sessions, period_end_date=period_end_date, per_session_fee=per_session_fee)


def generate_session_dates_for_range(
    *,
    academy_class: AcademyClass,
    start_date: date,
    end_date: date,
) -> SessionGenerationResult:
    if end_date < start_date:
        raise ValidationError('End date cannot be before start date.')

    schedule_days = require_schedule_days(academy_class)
    closures_by_date = closure_map_for_class(academy_class, start_date, end_date)

    sessions = []
    current = start_date
    while current <= end_date:
        if weekday_key(current) in schedule_days:
            sessions.append(_classify_day(current, closures_by_date))
        current += timedelta(days=1)

    sessions_per_month = academy_class.sessions_per_month
    if sessions_per_month is None:
        sessions_per_month = _default_sessions_per_month()
    per_session_fee = compute_per_session_fee(
        monthly_fee=academy_class.monthly_fee,
        sessions_per_month=sessions_per_month,
    )

    period_end_date = sessions[-1].date if sessions else end_date
    return _build_result(sessions=sessions, period_end_date=period_end_date, per_session_fee=per_session_fee)


def align_end_date_with_same_schedule_classes(*, academy_class: AcademyClass, calculated_end_date: date) -> date:
    """Snap calculated_end_date to a recent period end of a class meeting on the same weekdays."""
    day_set = academy_class.schedule_days()
    if not day_set:
        return calculated_end_date

    sibling_ids = list(
        AcademyClass.objects.for_academy(academy_class.academy)
        .active()
        .exclude(pk=academy_class.pk)
        .filter(schedules__day_of_week__in=day_set)
        .order_by()
        .values_list('id', flat=True)
        .distinct()
    )
    if not sibling_ids:
        return calculated_end_date

    recent_end_dates = (
        TuitionFee.objects.filter(
            academy_class_id__in=sibling_ids,
            period_end_date__isnull=False,
        )
        .order_by('-period_end_date')
        .values_list('period_end_date', flat=True)[:_alignment_candidate_limit()]
    )

    window = _alignment_window_days()
    for end_date in recent_end_dates:
        if abs((calculated_end_date - end_date).days) <= window:
            return end_date
    return calculated_end_date


# --- Period planning helpers ---


def latest_period_end_for_class(*, academy_class: AcademyClass, billing_year: int, billing_month: int):
    records = (
        TuitionFee.objects.filter(academy_class=academy_class, period_end_date__isnull=False)
        .order_by('-period_end_date')
        .values('period_end_date', 'year', 'month')[:10]
    )
    for record in records:
        if (record['year'], record['month']) < (billing_year, billing_month):
            return record['period_end_date']
    return None


def next_class_day_after(after_date: date, schedule_days) -> date:
    day_set = set(schedule_days)
    current = after_date + timedelta(days=1)
    for _ in range(14):
        if weekday_key(current) in day_set:
            return current
        current += timedelta(days=1)
    return after_date + timedelta(days=1)


def compute_auto_start_date(*, academy_class: AcademyClass, billing_year: int, billing_month: int):
    previous_end_date = latest_period_end_for_class(
        academy_class=academy_class,
        billing_year=billing_year,
        billing_month=billing_month,
    )
    if previous_end_date is None:
        return {
            'start_date': date(billing_year, billing_month, 1),
            'previous_end_date': None,
        }

    schedule_days = academy_class.schedule_days()
    if not schedule_days:
        start_date = previous_end_date + timedelta(days=1)
    else:
        start_date = next_class_day_after(previous_end_date, schedule_days)

    return {
        'start_date': start_date,
        'previous_end_date': previous_end_date,
    }


# --- Amount recalculation ---


def calculate_tuition_amount(*, statuses, per_session_fee, carryover_from_prev) -> tuple[int, Decimal]:
    billable_count = sum(1 for status in statuses if status not in TuitionSession.NON_BILLABLE_STATUSES)
    effective = max(0, billable_count - (carryover_from_prev or 0))
    return billable_count, _quantize(Decimal(effective) * _to_decimal(per_session_fee))


@transaction.atomic
def recalculate_tuition_amount(*, tuition_fee: TuitionFee) -> TuitionFee:
    fee = TuitionFee.objects.select_for_update().get(pk=tuition_fee.pk)
    statuses = list(fee.sessions.values_list('status', flat=True))

    billable_count, amount = calculate_tuition_amount(
        statuses=statuses,
        per_session_fee=fee.per_session_fee,
        carryover_from_prev=fee.carryover_from_prev,
    )

    if fee.sessions_count != billable_count or fee.amount != amount:
        fee.sessions_count = billable_count
        fee.amount = amount
        fee.save(update_fields=['sessions_count', 'amount', 'updated_at'])
    return fee


def _recalculate_many(tuition_fee_ids) -> None:
    for tuition_fee in TuitionFee.objects.filter(pk__in=set(tuition_fee_ids)).order_by('pk'):
        recalculate_tuition_amount(tuition_fee=tuition_fee)


# --- Session lifecycle ---


def get_sessions_for_tuition(*, tuition_fee: TuitionFee):
    return list(tuition_fee.sessions.select_related('closure').order_by('session_number'))


def create_sessions_for_tuition(*, tuition_fee: TuitionFee, sessions) -> list[TuitionSession]:
    rows = [
        TuitionSession(
            tuition_fee=tuition_fee,
            session_number=index,
            session_date=entry.date,
            status=(
                TuitionSession.STATUS_CLOSURE
                if entry.status == TuitionSession.STATUS_CLOSURE
                else TuitionSession.STATUS_SCHEDULED
            ),
            closure_id=entry.closure_id,
        )
        for index, entry in enumerate(sessions, start=1)
    ]
    return TuitionSession.objects.bulk_create(rows)


def _transition(session: TuitionSession, event: str, *, note=None) -> TuitionSession:
    session = TuitionSession.objects.select_for_update().get(pk=session.pk)
    previous = session.status
    session.apply_event(event)
    update_fields = ['status', 'updated_at']
    if note is not None:
        session.note = note[:255]
        update_fields.append('note')
    session.save(update_fields=update_fields)
    logger.info(
        'Tuition session %s (fee %s) %s -> %s',
        session.pk,
        session.tuition_fee_id,
        previous,
        session.status,
    )
    return session


@transaction.atomic
def cancel_session(*, session: TuitionSession) -> TuitionSession:
    session = _transition(session, TuitionSession.EVENT_CANCEL)
    recalculate_tuition_amount(tuition_fee=session.tuition_fee)
    return session


@transaction.atomic
def mark_carryover(*, session: TuitionSession, reason: str) -> TuitionSession:
    reason = (reason or '').strip()
    session = _transition(session, TuitionSession.EVENT_CARRY_OVER, note=reason or None)
    TuitionFee.objects.filter(pk=session.tuition_fee_id).update(carryover_to_next=F('carryover_to_next') + 1)
    recalculate_tuition_amount(tuition_fee=session.tuition_fee)
    return session


@transaction.atomic
def record_session_attendance(*, session: TuitionSession, status: str) -> TuitionSession:
    event = ATTENDANCE_EVENTS.get(status)
    if event is None:
        raise ValidationError(f"'{status}' is not an attendance status.")
    session = _transition(session, event)
    recalculate_tuition_amount(tuition_fee=session.tuition_fee)
    return session


@transaction.atomic
def add_replacement_session(
    *,
    tuition_fee: TuitionFee,
    session_date: date,
    original_session: TuitionSession,
) -> TuitionSession:
    if original_session.tuition_fee_id != tuition_fee.pk:
        raise ValidationError('Replaced session must belong to the same tuition fee.')

    # Serialises session numbering for this fee.
    TuitionFee.objects.select_for_update().get(pk=tuition_fee.pk)
    current_max = tuition_fee.sessions.aggregate(value=Max('session_number'))['value'] or 0

    replacement = TuitionSession.objects.create(
        tuition_fee=tuition_fee,
        session_number=current_max + 1,
        session_date=session_date,
        status=TuitionSession.STATUS_SCHEDULED,
        original_session=original_session,
    )
    logger.info(
        'Added replacement session #%s on %s for session %s (fee %s)',
        replacement.session_number,
        session_date,
        original_session.pk,
        tuition_fee.pk,
    )
    recalculate_tuition_amount(tuition_fee=tuition_fee)
    return replacement


# --- Closure propagation ---


def _sessions_in_closure_scope(closure: AcademyClosure):
    sessions = TuitionSession.objects.filter(
        session_date=closure.closure_date,
        tuition_fee__academy_id=closure.academy_id,
    )
    if closure.closure_type == AcademyClosure.TYPE_CLASS:
        sessions = sessions.filter(tuition_fee__academy_class_id=closure.academy_class_id)
    elif closure.closure_type == AcademyClosure.TYPE_TEACHER:
        sessions = sessions.filter(
            tuition_fee__academy_class__teacher_id=closure.teacher_id,
            tuition_fee__academy_class__schedules__day_of_week=weekday_key(closure.closure_date),
        )
    return sessions


@transaction.atomic
def apply_closure_to_sessions(*, closure: AcademyClosure) -> int:
    affected = list(
        _sessions_in_closure_scope(closure)
        .filter(status__in=statuses_accepting(TuitionSession.EVENT_CLOSE))
        .values_list('id', 'tuition_fee_id')
        .distinct()
    )
    if not affected:
        return 0

    session_ids = [session_id for session_id, _ in affected]
    TuitionSession.objects.filter(pk__in=session_ids).update(
        status=TuitionSession.STATUS_CLOSURE,
        closure=closure,
    )
    _recalculate_many(fee_id for _, fee_id in affected)

    logger.info('Closure %s on %s moved %s sessions to closure', closure.pk, closure.closure_date, len(session_ids))
    return len(session_ids)


@transaction.atomic
def restore_sessions_from_closure(*, closure: AcademyClosure) -> int:
    affected = list(
        TuitionSession.objects.filter(
            closure=closure,
            status__in=statuses_accepting(TuitionSession.EVENT_REOPEN),
        ).values_list('id', 'tuition_fee_id')
    )
    if not affected:
        return 0

    session_ids = [session_id for session_id, _ in affected]
    TuitionSession.objects.filter(pk__in=session_ids).update(
        status=TuitionSession.STATUS_SCHEDULED,
        closure=None,
    )
    _recalculate_many(fee_id for _, fee_id in affected)

    logger.info('Closure %s withdrawn, restored %s sessions', closure.pk, len(session_ids))
    return len(session_ids)


# --- Bulk materialization ---


def _create_fee_with_sessions(
    *,
    academy_class: AcademyClass,
    student: Student,
    year: int,
    month: int,
    period_start_date: date,
    period_end_date: date,
    sessions,
    per_session_fee,
    note: str = '',
) -> TuitionFee:
    billable_count = sum(1 for entry in sessions if entry.status == TuitionSession.STATUS_SCHEDULED)

    # Savepoint: a failed session insert rolls the fee row back with it.
    with transaction.atomic():
        tuition_fee = TuitionFee.objects.create(
            academy=academy_class.academy,
            academy_class=academy_class,
            student=student,
            year=year,
            month=month,
            amount=_quantize(Decimal(billable_count) * _to_decimal(per_session_fee)),
            sessions_count=billable_count,
            per_session_fee=per_session_fee,
            period_start_date=period_start_date,
            period_end_date=period_end_date,
            payment_status=TuitionFee.PAYMENT_UNPAID,
            student_name_snapshot=student.name,
            class_name_snapshot=academy_class.name,
            note=note[:255],
        )
        create_sessions_for_tuition(tuition_fee=tuition_fee, sessions=sessions)
    return tuition_fee


def save_tuition_fees_with_sessions(
    *,
    academy_class: AcademyClass,
    student_ids,
    result: SessionGenerationResult,
    period_start_date: date,
):
    year = period_start_date.year
    month = period_start_date.month
    student_ids = list(dict.fromkeys(student_ids))

    students = {
        student.id: student
        for student in Student.objects.for_academy(academy_class.academy).filter(id__in=student_ids)
    }
    unknown = [student_id for student_id in student_ids if student_id not in students]
    if unknown:
        raise ValidationError(f"Unknown students for academy {academy_class.academy.code}: {unknown}")

    existing_student_ids = set(
        TuitionFee.objects.filter(
            academy_class=academy_class,
            year=year,
            month=month,
            student_id__in=student_ids,
        ).values_list('student_id', flat=True)
    )

    created = 0
    skipped = 0
    for student_id in student_ids:
        if student_id in existing_student_ids:
            skipped += 1
            continue

        try:
            _create_fee_with_sessions(
                academy_class=academy_class,
                student=students[student_id],
                year=year,
                month=month,
                period_start_date=period_start_date,
                period_end_date=result.period_end_date,
                sessions=result.sessions,
                per_session_fee=result.per_session_fee,
            )
        except (DatabaseError, ValidationError):
            logger.exception(
                'Could not create tuition for student %s in class %s (%s-%02d)',
                student_id,
                academy_class.pk,
                year,
                month,
            )
            skipped += 1
            continue

        created += 1

    logger.info(
        'Tuition materialized for class %s %s-%02d: %s created, %s skipped',
        academy_class.pk,
        year,
        month,
        created,
        skipped,
    )
    return {
        'created': created,
        'skipped': skipped,
    }


# --- Per-student plans ---

PLAN_STATUS_EXCLUDED = 'excluded'


@dataclass(frozen=True)
class StudentTuitionPlan:
    student_id: int
    student_name: str
    academy_class_id: int
    class_name: str
    year: int
    month: int
    start_date: date
    end_date: date
    sessions: tuple[GeneratedSession, ...]
    per_session_fee: Decimal

    @property
    def billable_count(self) -> int:
        return sum(1 for entry in self.sessions if entry.status == TuitionSession.STATUS_SCHEDULED)

    @property
    def closure_days(self) -> int:
        return sum(1 for entry in self.sessions if entry.status == TuitionSession.STATUS_CLOSURE)

    @property
    def total_amount(self) -> Decimal:
        return _quantize(Decimal(self.billable_count) * self.per_session_fee)

    @property
    def note(self) -> str:
        return f"{self.year}-{self.month:02d}, {self.class_name}, {self.billable_count} sessions"


def generate_student_plan(
    *,
    student: Student,
    academy_class: AcademyClass,
    billing_year: int,
    billing_month: int,
    start_date: date,
    end_date: date | None = None,
) -> StudentTuitionPlan:
    """Build an editable session plan for one student.

    With end_date every meeting day in [start_date, end_date] is planned;
    without it the class sessions_per_month (or the default) is the target.
    """
    if student.academy_id != academy_class.academy_id:
        raise ValidationError('Student must belong to the class academy.')

    if end_date is not None:
        result = generate_session_dates_for_range(
            academy_class=academy_class,
            start_date=start_date,
            end_date=end_date,
        )
    else:
        result = generate_session_dates(
            academy_class=academy_class,
            period_start_date=start_date,
            target_session_count=academy_class.sessions_per_month or _default_sessions_per_month(),
        )

    return StudentTuitionPlan(
        student_id=student.id,
        student_name=student.name,
        academy_class_id=academy_class.id,
        class_name=academy_class.name,
        year=billing_year,
        month=billing_month,
        start_date=start_date,
        end_date=result.period_end_date,
        sessions=result.sessions,
        per_session_fee=result.per_session_fee,
    )


def exclude_plan_sessions(plan: StudentTuitionPlan, dates) -> StudentTuitionPlan:
    excluded = set(dates)
    unknown = excluded - {entry.date for entry in plan.sessions}
    if unknown:
        raise ValidationError(f"Dates are not part of the plan: {sorted(unknown)}")

    return replace(
        plan,
        sessions=tuple(
            replace(entry, status=PLAN_STATUS_EXCLUDED) if entry.date in excluded else entry
            for entry in plan.sessions
        ),
    )


def save_student_plan(*, plan: StudentTuitionPlan):
    """Persist a plan, dropping excluded entries. Returns created/skipped counts."""
    exists = TuitionFee.objects.filter(
        academy_class_id=plan.academy_class_id,
        student_id=plan.student_id,
        year=plan.year,
        month=plan.month,
    ).exists()
    if exists:
        return {'created': 0, 'skipped': 1}

    academy_class = AcademyClass.objects.select_related('academy').get(pk=plan.academy_class_id)
    student = Student.objects.for_academy(academy_class.academy).get(pk=plan.student_id)

    try:
        tuition_fee = _create_fee_with_sessions(
            academy_class=academy_class,
            student=student,
            year=plan.year,
            month=plan.month,
            period_start_date=plan.start_date,
            period_end_date=plan.end_date,
            sessions=[entry for entry in plan.sessions if entry.status != PLAN_STATUS_EXCLUDED],
            per_session_fee=plan.per_session_fee,
            note=plan.note,
        )
    except (DatabaseError, ValidationError):
        logger.exception(
            'Could not save tuition plan for student %s in class %s (%s-%02d)',
            plan.student_id,
            plan.academy_class_id,
            plan.year,
            plan.month,
        )
        return {'created': 0, 'skipped': 1}

    logger.info('Saved tuition plan %s for student %s: %s', tuition_fee.pk, plan.student_id, plan.note)
    return {'created': 1, 'skipped': 0}
