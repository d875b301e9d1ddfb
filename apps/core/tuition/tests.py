from datetime import date, time
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.contrib import admin
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.test import RequestFactory, TestCase, override_settings

from apps.core.academics.models import AcademyClass, ClassEnrollment, ClassSchedule, Student, Teacher
from apps.core.academies.models import Academy
from apps.core.closures.models import AcademyClosure

from . import services
from .admin import TuitionFeeAdmin, TuitionSessionAdmin
from .models import TuitionFee, TuitionSession
from .services import (
    SessionTargetUnreachable,
    add_replacement_session,
    align_end_date_with_same_schedule_classes,
    calculate_tuition_amount,
    cancel_session,
    compute_auto_start_date,
    compute_per_session_fee,
    exclude_plan_sessions,
    generate_session_dates,
    generate_session_dates_for_range,
    generate_student_plan,
    get_sessions_for_tuition,
    latest_period_end_for_class,
    mark_carryover,
    next_class_day_after,
    recalculate_tuition_amount,
    record_session_attendance,
    save_student_plan,
    save_tuition_fees_with_sessions,
    walk_session_dates,
)


# 2026-03-02 is a Monday.
MONDAY = date(2026, 3, 2)


class TuitionBaseTestCase(TestCase):
    def setUp(self):
        self.academy = Academy.objects.create(name='Bright Math Academy', code='bright_math')
        self.teacher = Teacher.objects.create(academy=self.academy, name='Kim Jiwon')

        self.math_class = self.create_class('Math A', days=('monday', 'wednesday'), teacher=self.teacher)

        self.students = [
            Student.objects.create(academy=self.academy, name=name)
            for name in ('Alice Park', 'Ben Lee', 'Chloe Choi')
        ]
        for student in self.students:
            ClassEnrollment.objects.create(academy_class=self.math_class, student=student)

    def create_class(self, name, *, days, teacher=None, monthly_fee='200000', sessions_per_month=8, is_active=True):
        academy_class = AcademyClass.objects.create(
            academy=self.academy,
            name=name,
            teacher=teacher,
            monthly_fee=Decimal(monthly_fee),
            sessions_per_month=sessions_per_month,
            is_active=is_active,
        )
        for day in days:
            ClassSchedule.objects.create(
                academy_class=academy_class,
                day_of_week=day,
                start_time=time(16, 0),
                end_time=time(17, 30),
            )
        return academy_class

    def generate(self, target=4, academy_class=None, start=MONDAY):
        return generate_session_dates(
            academy_class=academy_class or self.math_class,
            period_start_date=start,
            target_session_count=target,
        )

    def materialize(self, result=None, students=None, academy_class=None, start=MONDAY):
        return save_tuition_fees_with_sessions(
            academy_class=academy_class or self.math_class,
            student_ids=[student.id for student in (students or self.students)],
            result=result or self.generate(academy_class=academy_class, start=start),
            period_start_date=start,
        )

    def fee_for(self, student, academy_class=None):
        return TuitionFee.objects.get(academy_class=academy_class or self.math_class, student=student)


class SessionGenerationTests(TuitionBaseTestCase):
    def test_mon_wed_schedule_without_closures(self):
        result = self.generate()

        self.assertEqual(
            [entry.date for entry in result.sessions],
            [date(2026, 3, 2), date(2026, 3, 4), date(2026, 3, 9), date(2026, 3, 11)],
        )
        self.assertEqual([entry.day_of_week for entry in result.sessions], ['monday', 'wednesday'] * 2)
        self.assertTrue(all(entry.status == TuitionSession.STATUS_SCHEDULED for entry in result.sessions))
        self.assertEqual(result.billable_count, 4)
        self.assertEqual(result.closure_days, 0)
        self.assertEqual(result.period_end_date, date(2026, 3, 11))

    def test_closure_on_second_wednesday_extends_period(self):
        closure = AcademyClosure.objects.create(
            academy=self.academy,
            closure_date=date(2026, 3, 11),
            closure_type=AcademyClosure.TYPE_GLOBAL,
            reason='Facility inspection',
        )

        result = self.generate()

        self.assertEqual(len(result.sessions), 5)
        closed = [entry for entry in result.sessions if entry.status == TuitionSession.STATUS_CLOSURE]
        self.assertEqual(len(closed), 1)
        self.assertEqual(closed[0].date, date(2026, 3, 11))
        self.assertEqual(closed[0].closure_id, closure.id)
        self.assertEqual(closed[0].closure_reason, 'Facility inspection')
        self.assertEqual(result.billable_count, 4)
        self.assertEqual(result.closure_days, 1)
        self.assertEqual(result.period_end_date, date(2026, 3, 16))

    def test_fee_estimate_uses_monthly_fee_over_sessions_per_month(self):
        AcademyClosure.objects.create(
            academy=self.academy,
            closure_date=date(2026, 3, 11),
            closure_type=AcademyClosure.TYPE_GLOBAL,
        )

        result = self.generate()

        self.assertEqual(result.per_session_fee, Decimal('25000'))
        self.assertEqual(result.calculated_amount, Decimal('100000'))

    def test_other_class_closure_is_ignored(self):
        other_class = self.create_class('Science B', days=('monday',))
        AcademyClosure.objects.create(
            academy=self.academy,
            closure_date=date(2026, 3, 4),
            closure_type=AcademyClosure.TYPE_CLASS,
            academy_class=other_class,
        )

        result = self.generate()

        self.assertEqual(result.closure_days, 0)

    def test_teacher_closure_applies_to_teacher_classes(self):
        AcademyClosure.objects.create(
            academy=self.academy,
            closure_date=date(2026, 3, 4),
            closure_type=AcademyClosure.TYPE_TEACHER,
            teacher=self.teacher,
        )

        result = self.generate()

        self.assertEqual(result.closure_days, 1)
        self.assertEqual(result.sessions[1].status, TuitionSession.STATUS_CLOSURE)

    def test_missing_schedule_is_a_configuration_error(self):
        unscheduled = self.create_class('Unscheduled', days=())

        with self.assertRaises(ValidationError) as ctx:
            self.generate(academy_class=unscheduled)

        self.assertNotIsInstance(ctx.exception, SessionTargetUnreachable)
        self.assertIn('No weekly schedule', ctx.exception.messages[0])

    def test_non_positive_target_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.generate(target=0)

    def test_empty_day_set_exhausts_horizon(self):
        with self.assertRaises(SessionTargetUnreachable) as ctx:
            walk_session_dates(
                schedule_days=set(),
                start_date=MONDAY,
                target_count=4,
                closures_by_date={},
                horizon_days=100,
            )

        error = ctx.exception
        self.assertEqual(error.target, 4)
        self.assertEqual(error.horizon_days, 100)
        self.assertEqual(error.achieved, 0)
        self.assertIn('4', error.messages[0])
        self.assertIn('100', error.messages[0])

    @override_settings(TUITION_GENERATION_HORIZON_DAYS=14)
    def test_closures_within_horizon_report_achieved_count(self):
        for closure_date in (date(2026, 3, 4), date(2026, 3, 9)):
            AcademyClosure.objects.create(academy=self.academy, closure_date=closure_date)

        with self.assertRaises(SessionTargetUnreachable) as ctx:
            self.generate()

        self.assertEqual(ctx.exception.horizon_days, 14)
        self.assertEqual(ctx.exception.achieved, 2)

    def test_walk_returns_exactly_target_billable_entries(self):
        closures = {date(2026, 3, 9): AcademyClosure(id=99, closure_date=date(2026, 3, 9))}

        for target in (1, 3, 8):
            sessions = walk_session_dates(
                schedule_days={'monday', 'wednesday', 'friday'},
                start_date=MONDAY,
                target_count=target,
                closures_by_date=closures,
                horizon_days=100,
            )
            scheduled = [entry for entry in sessions if entry.status == TuitionSession.STATUS_SCHEDULED]
            self.assertEqual(len(scheduled), target)
            self.assertEqual(sessions[-1].status, TuitionSession.STATUS_SCHEDULED)

    def test_per_session_fee_falls_back_to_target_when_unset(self):
        self.math_class.sessions_per_month = None
        self.math_class.monthly_fee = Decimal('100000')
        self.math_class.save()

        result = self.generate(target=4)

        self.assertEqual(result.per_session_fee, Decimal('25000'))

    def test_compute_per_session_fee_rounds_half_up(self):
        self.assertEqual(compute_per_session_fee(monthly_fee=Decimal('100000'), sessions_per_month=3), Decimal('33333'))
        self.assertEqual(compute_per_session_fee(monthly_fee=Decimal('50'), sessions_per_month=4), Decimal('13'))
        self.assertEqual(compute_per_session_fee(monthly_fee=Decimal('50000'), sessions_per_month=0), Decimal('0'))

    def test_range_generation_includes_every_meeting_day(self):
        AcademyClosure.objects.create(academy=self.academy, closure_date=date(2026, 3, 9))

        result = generate_session_dates_for_range(
            academy_class=self.math_class,
            start_date=date(2026, 3, 1),
            end_date=date(2026, 3, 31),
        )

        self.assertEqual(len(result.sessions), 9)
        self.assertEqual(result.closure_days, 1)
        self.assertEqual(result.billable_count, 8)
        self.assertEqual(result.period_end_date, date(2026, 3, 30))
        self.assertEqual(result.calculated_amount, Decimal('200000'))

    def test_range_generation_without_meeting_days_keeps_end_date(self):
        result = generate_session_dates_for_range(
            academy_class=self.math_class,
            start_date=date(2026, 3, 5),
            end_date=date(2026, 3, 8),
        )

        self.assertEqual(result.sessions, ())
        self.assertEqual(result.period_end_date, date(2026, 3, 8))


class EndDateAlignmentTests(TuitionBaseTestCase):
    def _period_ending(self, academy_class, end_date, month=3):
        student = Student.objects.create(academy=self.academy, name=f'Sibling {end_date}')
        return TuitionFee.objects.create(
            academy=self.academy,
            academy_class=academy_class,
            student=student,
            year=2026,
            month=month,
            period_start_date=date(2026, month, 1),
            period_end_date=end_date,
        )

    def test_aligns_with_same_weekday_class_within_window(self):
        sibling = self.create_class('Math B', days=('wednesday', 'friday'))
        self._period_ending(sibling, date(2026, 3, 13))

        aligned = align_end_date_with_same_schedule_classes(
            academy_class=self.math_class,
            calculated_end_date=date(2026, 3, 11),
        )

        self.assertEqual(aligned, date(2026, 3, 13))

    def test_keeps_date_outside_window(self):
        sibling = self.create_class('Math B', days=('monday',))
        self._period_ending(sibling, date(2026, 3, 19))

        aligned = align_end_date_with_same_schedule_classes(
            academy_class=self.math_class,
            calculated_end_date=date(2026, 3, 11),
        )

        self.assertEqual(aligned, date(2026, 3, 11))

    def test_ignores_classes_on_other_days_and_inactive_classes(self):
        other_days = self.create_class('English', days=('tuesday',))
        inactive = self.create_class('Old Math', days=('monday',), is_active=False)
        self._period_ending(other_days, date(2026, 3, 12))
        self._period_ending(inactive, date(2026, 3, 12))

        aligned = align_end_date_with_same_schedule_classes(
            academy_class=self.math_class,
            calculated_end_date=date(2026, 3, 11),
        )

        self.assertEqual(aligned, date(2026, 3, 11))

    def test_picks_most_recent_match_first(self):
        sibling = self.create_class('Math B', days=('monday',))
        self._period_ending(sibling, date(2026, 3, 9))
        self._period_ending(sibling, date(2026, 3, 16))

        aligned = align_end_date_with_same_schedule_classes(
            academy_class=self.math_class,
            calculated_end_date=date(2026, 3, 11),
        )

        self.assertEqual(aligned, date(2026, 3, 16))

    @override_settings(TUITION_ALIGNMENT_WINDOW_DAYS=1)
    def test_window_is_configurable(self):
        sibling = self.create_class('Math B', days=('monday',))
        self._period_ending(sibling, date(2026, 3, 13))

        aligned = align_end_date_with_same_schedule_classes(
            academy_class=self.math_class,
            calculated_end_date=date(2026, 3, 11),
        )

        self.assertEqual(aligned, date(2026, 3, 11))

    def test_generation_can_align_end_date(self):
        sibling = self.create_class('Math B', days=('wednesday',))
        self._period_ending(sibling, date(2026, 3, 12))

        result = generate_session_dates(
            academy_class=self.math_class,
            period_start_date=MONDAY,
            target_session_count=4,
            align_end_date=True,
        )

        self.assertEqual(result.period_end_date, date(2026, 3, 12))
        self.assertEqual(result.sessions[-1].date, date(2026, 3, 11))


class PeriodPlanningTests(TuitionBaseTestCase):
    def test_auto_start_defaults_to_first_of_month(self):
        plan = compute_auto_start_date(academy_class=self.math_class, billing_year=2026, billing_month=3)

        self.assertEqual(plan, {'start_date': date(2026, 3, 1), 'previous_end_date': None})

    def test_auto_start_follows_previous_period(self):
        self.materialize()

        plan = compute_auto_start_date(academy_class=self.math_class, billing_year=2026, billing_month=4)

        self.assertEqual(plan['previous_end_date'], date(2026, 3, 11))
        self.assertEqual(plan['start_date'], date(2026, 3, 16))

    def test_latest_period_end_ignores_same_or_later_months(self):
        self.materialize()

        self.assertIsNone(
            latest_period_end_for_class(academy_class=self.math_class, billing_year=2026, billing_month=3)
        )

    def test_next_class_day_after(self):
        self.assertEqual(next_class_day_after(date(2026, 3, 4), {'monday'}), date(2026, 3, 9))
        self.assertEqual(next_class_day_after(date(2026, 3, 4), set()), date(2026, 3, 5))


class RecalculationTests(TuitionBaseTestCase):
    def test_amount_formula(self):
        statuses = ['scheduled', 'attended', 'absent', 'makeup', 'closure', 'cancelled', 'carryover']

        self.assertEqual(
            calculate_tuition_amount(statuses=statuses, per_session_fee=Decimal('25000'), carryover_from_prev=0),
            (4, Decimal('100000')),
        )
        self.assertEqual(
            calculate_tuition_amount(statuses=statuses, per_session_fee=Decimal('25000'), carryover_from_prev=1),
            (4, Decimal('75000')),
        )
        self.assertEqual(
            calculate_tuition_amount(statuses=statuses, per_session_fee=Decimal('25000'), carryover_from_prev=9),
            (4, Decimal('0')),
        )

    def test_recalculation_is_idempotent(self):
        self.materialize()
        fee = self.fee_for(self.students[0])

        first = recalculate_tuition_amount(tuition_fee=fee)
        second = recalculate_tuition_amount(tuition_fee=fee)

        self.assertEqual(first.amount, Decimal('100000'))
        self.assertEqual(first.amount, second.amount)
        self.assertEqual(first.sessions_count, second.sessions_count)

    def test_recalculation_applies_previous_carryover(self):
        self.materialize()
        fee = self.fee_for(self.students[0])
        fee.carryover_from_prev = 1
        fee.save(update_fields=['carryover_from_prev'])

        fee = recalculate_tuition_amount(tuition_fee=fee)

        self.assertEqual(fee.sessions_count, 4)
        self.assertEqual(fee.amount, Decimal('75000'))


class MaterializationTests(TuitionBaseTestCase):
    def test_materialize_is_idempotent(self):
        result = self.generate()

        self.assertEqual(self.materialize(result), {'created': 3, 'skipped': 0})
        self.assertEqual(self.materialize(result), {'created': 0, 'skipped': 3})
        self.assertEqual(TuitionFee.objects.count(), 3)

    def test_materialized_rows_carry_estimate_and_numbered_sessions(self):
        AcademyClosure.objects.create(academy=self.academy, closure_date=date(2026, 3, 11))
        result = self.generate()

        self.materialize(result)

        fee = self.fee_for(self.students[0])
        self.assertEqual((fee.year, fee.month), (2026, 3))
        self.assertEqual(fee.period_start_date, MONDAY)
        self.assertEqual(fee.period_end_date, date(2026, 3, 16))
        self.assertEqual(fee.sessions_count, 4)
        self.assertEqual(fee.per_session_fee, Decimal('25000'))
        self.assertEqual(fee.amount, Decimal('100000'))
        self.assertEqual(fee.payment_status, TuitionFee.PAYMENT_UNPAID)
        self.assertEqual(fee.student_name_snapshot, 'Alice Park')
        self.assertEqual(fee.class_name_snapshot, 'Math A')

        sessions = get_sessions_for_tuition(tuition_fee=fee)
        self.assertEqual([session.session_number for session in sessions], [1, 2, 3, 4, 5])
        self.assertEqual(sessions[3].status, TuitionSession.STATUS_CLOSURE)
        self.assertIsNotNone(sessions[3].closure_id)

        self.assertEqual(recalculate_tuition_amount(tuition_fee=fee).amount, fee.amount)

    def test_duplicate_student_ids_are_collapsed(self):
        summary = save_tuition_fees_with_sessions(
            academy_class=self.math_class,
            student_ids=[self.students[0].id, self.students[0].id],
            result=self.generate(),
            period_start_date=MONDAY,
        )

        self.assertEqual(summary, {'created': 1, 'skipped': 0})

    def test_unknown_student_aborts_before_writing(self):
        other_academy = Academy.objects.create(name='Other Academy')
        outsider = Student.objects.create(academy=other_academy, name='Outsider')

        with self.assertRaises(ValidationError):
            self.materialize(students=[self.students[0], outsider])

        self.assertFalse(TuitionFee.objects.exists())

    def test_session_failure_leaves_no_orphan_period(self):
        original = services.create_sessions_for_tuition
        failing_student = self.students[1]

        def flaky(*, tuition_fee, sessions):
            if tuition_fee.student_id == failing_student.id:
                raise DatabaseError('session insert failed')
            return original(tuition_fee=tuition_fee, sessions=sessions)

        with patch('apps.core.tuition.services.create_sessions_for_tuition', side_effect=flaky):
            with self.assertLogs('apps.core.tuition.services', level='ERROR'):
                summary = self.materialize()

        self.assertEqual(summary, {'created': 2, 'skipped': 1})
        self.assertFalse(TuitionFee.objects.filter(student=failing_student).exists())
        self.assertEqual(TuitionSession.objects.count(), 8)


class SessionLifecycleTests(TuitionBaseTestCase):
    def setUp(self):
        super().setUp()
        self.materialize()
        self.fee = self.fee_for(self.students[0])
        self.sessions = get_sessions_for_tuition(tuition_fee=self.fee)

    def test_cancel_session_recalculates(self):
        cancel_session(session=self.sessions[0])

        self.fee.refresh_from_db()
        self.assertEqual(self.fee.sessions_count, 3)
        self.assertEqual(self.fee.amount, Decimal('75000'))

    def test_cancelled_session_cannot_be_cancelled_or_reopened(self):
        session = cancel_session(session=self.sessions[0])

        with self.assertRaises(ValidationError):
            cancel_session(session=session)
        with self.assertRaises(ValidationError):
            session.apply_event(TuitionSession.EVENT_REOPEN)

    def test_mark_carryover_counts_towards_next_period(self):
        session = mark_carryover(session=self.sessions[1], reason='  Makeup not possible  ')

        self.fee.refresh_from_db()
        self.assertEqual(session.status, TuitionSession.STATUS_CARRYOVER)
        self.assertEqual(session.note, 'Makeup not possible')
        self.assertEqual(self.fee.carryover_to_next, 1)
        self.assertEqual(self.fee.amount, Decimal('75000'))

    def test_absent_session_can_be_carried_over(self):
        record_session_attendance(session=self.sessions[0], status=TuitionSession.STATUS_ABSENT)

        mark_carryover(session=self.sessions[0], reason='No makeup slot')

        self.fee.refresh_from_db()
        self.assertEqual(self.fee.sessions_count, 3)

    def test_blank_carryover_reason_keeps_existing_note(self):
        TuitionSession.objects.filter(pk=self.sessions[1].pk).update(note='Parent called')

        session = mark_carryover(session=self.sessions[1], reason='   ')

        session.refresh_from_db()
        self.assertEqual(session.status, TuitionSession.STATUS_CARRYOVER)
        self.assertEqual(session.note, 'Parent called')

    def test_attendance_states_stay_billable(self):
        record_session_attendance(session=self.sessions[0], status=TuitionSession.STATUS_ATTENDED)
        record_session_attendance(session=self.sessions[1], status=TuitionSession.STATUS_ABSENT)
        session = record_session_attendance(session=self.sessions[1], status=TuitionSession.STATUS_MAKEUP)

        self.fee.refresh_from_db()
        self.assertEqual(session.status, TuitionSession.STATUS_MAKEUP)
        self.assertEqual(self.fee.sessions_count, 4)
        self.assertEqual(self.fee.amount, Decimal('100000'))

    def test_unknown_attendance_status_is_rejected(self):
        with self.assertRaises(ValidationError):
            record_session_attendance(session=self.sessions[0], status=TuitionSession.STATUS_CANCELLED)

    def test_replacement_session_is_appended(self):
        cancel_session(session=self.sessions[2])

        replacement = add_replacement_session(
            tuition_fee=self.fee,
            session_date=date(2026, 3, 13),
            original_session=self.sessions[2],
        )

        self.fee.refresh_from_db()
        self.assertEqual(replacement.session_number, 5)
        self.assertEqual(replacement.status, TuitionSession.STATUS_SCHEDULED)
        self.assertEqual(replacement.original_session_id, self.sessions[2].id)
        self.assertEqual(self.fee.sessions_count, 4)
        self.assertEqual(self.fee.amount, Decimal('100000'))

    def test_replacement_does_not_touch_replaced_session(self):
        add_replacement_session(
            tuition_fee=self.fee,
            session_date=date(2026, 3, 13),
            original_session=self.sessions[2],
        )

        self.sessions[2].refresh_from_db()
        self.fee.refresh_from_db()
        self.assertEqual(self.sessions[2].status, TuitionSession.STATUS_SCHEDULED)
        self.assertEqual(self.fee.sessions_count, 5)

    def test_replacement_requires_session_of_same_fee(self):
        other_fee = self.fee_for(self.students[1])
        foreign_session = get_sessions_for_tuition(tuition_fee=other_fee)[0]

        with self.assertRaises(ValidationError):
            add_replacement_session(
                tuition_fee=self.fee,
                session_date=date(2026, 3, 13),
                original_session=foreign_session,
            )


class GenerateTuitionCommandTests(TuitionBaseTestCase):
    def test_dry_run_prints_plan_without_saving(self):
        out = StringIO()

        call_command('generate_tuition', str(self.math_class.id), '--start', '2026-03-02', '--count', '4', '--dry-run', stdout=out)

        self.assertIn('2026-03-11', out.getvalue())
        self.assertIn('4 billable', out.getvalue())
        self.assertFalse(TuitionFee.objects.exists())

    def test_bills_class_roster(self):
        out = StringIO()

        call_command('generate_tuition', str(self.math_class.id), '--year', '2026', '--month', '3', stdout=out)

        self.assertIn('Tuition created: 3, skipped: 0', out.getvalue())
        fee = self.fee_for(self.students[0])
        self.assertEqual(fee.period_start_date, date(2026, 3, 1))
        self.assertEqual(fee.sessions.count(), 8)

    def test_unreachable_target_is_reported(self):
        with self.assertRaises(CommandError):
            call_command('generate_tuition', str(self.math_class.id), '--start', '2026-03-02', '--count', '40', stdout=StringIO())

    def test_unknown_class(self):
        with self.assertRaises(CommandError):
            call_command('generate_tuition', '9999', '--start', '2026-03-02', stdout=StringIO())


class StudentPlanTests(TuitionBaseTestCase):
    def setUp(self):
        super().setUp()
        self.student = self.students[0]

    def plan(self, **kwargs):
        options = {
            'student': self.student,
            'academy_class': self.math_class,
            'billing_year': 2026,
            'billing_month': 3,
            'start_date': MONDAY,
        }
        options.update(kwargs)
        return generate_student_plan(**options)

    def test_plan_without_end_date_uses_sessions_per_month(self):
        plan = self.plan()

        self.assertEqual(len(plan.sessions), 8)
        self.assertEqual(plan.end_date, date(2026, 3, 25))
        self.assertEqual(plan.total_amount, Decimal('200000'))
        self.assertEqual(plan.note, '2026-03, Math A, 8 sessions')

    def test_plan_with_end_date_covers_every_meeting_day(self):
        AcademyClosure.objects.create(academy=self.academy, closure_date=date(2026, 3, 11))

        plan = self.plan(end_date=date(2026, 3, 18))

        self.assertEqual(
            [entry.date for entry in plan.sessions],
            [date(2026, 3, d) for d in (2, 4, 9, 11, 16, 18)],
        )
        self.assertEqual(plan.closure_days, 1)
        self.assertEqual(plan.billable_count, 5)
        self.assertEqual(plan.end_date, date(2026, 3, 18))

    def test_saving_adjusted_plan_drops_excluded_sessions(self):
        AcademyClosure.objects.create(academy=self.academy, closure_date=date(2026, 3, 11))
        plan = exclude_plan_sessions(self.plan(end_date=date(2026, 3, 18)), [date(2026, 3, 16)])

        self.assertEqual(save_student_plan(plan=plan), {'created': 1, 'skipped': 0})

        fee = self.fee_for(self.student)
        self.assertEqual(fee.sessions_count, 4)
        self.assertEqual(fee.amount, Decimal('100000'))
        self.assertEqual(fee.note, '2026-03, Math A, 4 sessions')
        sessions = get_sessions_for_tuition(tuition_fee=fee)
        self.assertEqual([session.session_number for session in sessions], [1, 2, 3, 4, 5])
        self.assertNotIn(date(2026, 3, 16), [session.session_date for session in sessions])
        self.assertEqual(sessions[3].status, TuitionSession.STATUS_CLOSURE)
        self.assertEqual(recalculate_tuition_amount(tuition_fee=fee).amount, fee.amount)

        self.assertEqual(save_student_plan(plan=plan), {'created': 0, 'skipped': 1})

    def test_billing_month_comes_from_plan_not_start_date(self):
        plan = self.plan(start_date=date(2026, 2, 25), end_date=date(2026, 3, 11))

        save_student_plan(plan=plan)

        fee = self.fee_for(self.student)
        self.assertEqual((fee.year, fee.month), (2026, 3))
        self.assertEqual(fee.period_start_date, date(2026, 2, 25))

    def test_excluding_unknown_date_is_rejected(self):
        with self.assertRaises(ValidationError):
            exclude_plan_sessions(self.plan(), [date(2026, 3, 3)])

    def test_student_from_other_academy_is_rejected(self):
        outsider = Student.objects.create(academy=Academy.objects.create(name='Other Academy'), name='Outsider')

        with self.assertRaises(ValidationError):
            self.plan(student=outsider)

    def test_failed_save_leaves_no_fee(self):
        plan = self.plan()

        with patch('apps.core.tuition.services.create_sessions_for_tuition', side_effect=DatabaseError('boom')):
            with self.assertLogs('apps.core.tuition.services', level='ERROR'):
                summary = save_student_plan(plan=plan)

        self.assertEqual(summary, {'created': 0, 'skipped': 1})
        self.assertFalse(TuitionFee.objects.exists())


class TuitionAdminTests(TuitionBaseTestCase):
    def setUp(self):
        super().setUp()
        self.materialize()
        self.fee = self.fee_for(self.students[0])
        self.request = RequestFactory().post('/admin/tuition/tuitionfee/')
        self.request.user = get_user_model().objects.create_superuser(
            username='admin',
            email='admin@example.com',
            password='pass12345',
        )

    def test_saving_fee_recalculates_amount(self):
        model_admin = TuitionFeeAdmin(TuitionFee, admin.site)
        self.fee.carryover_from_prev = 2

        model_admin.save_model(self.request, self.fee, form=None, change=True)

        self.assertEqual(self.fee.amount, Decimal('50000'))
        self.fee.refresh_from_db()
        self.assertEqual(self.fee.amount, Decimal('50000'))

    def test_derived_fee_fields_are_read_only(self):
        readonly = TuitionFeeAdmin(TuitionFee, admin.site).get_readonly_fields(self.request, self.fee)

        self.assertIn('amount', readonly)
        self.assertIn('sessions_count', readonly)

    def test_session_date_is_read_only(self):
        session = get_sessions_for_tuition(tuition_fee=self.fee)[0]

        readonly = TuitionSessionAdmin(TuitionSession, admin.site).get_readonly_fields(self.request, session)

        self.assertIn('session_date', readonly)
        self.assertIn('status', readonly)
