from datetime import date
from decimal import Decimal

from django.core.exceptions import ValidationError

from apps.core.academics.models import ClassEnrollment, Student, Teacher
from apps.core.academies.models import Academy
from apps.core.tuition.models import TuitionFee, TuitionSession
from apps.core.tuition.services import (
    apply_closure_to_sessions,
    cancel_session,
    get_sessions_for_tuition,
    record_session_attendance,
    restore_sessions_from_closure,
)
from apps.core.tuition.tests import MONDAY, TuitionBaseTestCase

from .models import AcademyClosure
from .services import closures_for_month, create_closures, delete_closure, update_closure


class ClosureBaseTestCase(TuitionBaseTestCase):
    def setUp(self):
        super().setUp()
        self.other_teacher = Teacher.objects.create(academy=self.academy, name='Lee Minho')
        self.english_class = self.create_class('English A', days=('monday', 'thursday'), teacher=self.other_teacher)
        self.english_student = Student.objects.create(academy=self.academy, name='Dana Jung')
        ClassEnrollment.objects.create(academy_class=self.english_class, student=self.english_student)

        self.materialize()
        self.materialize(academy_class=self.english_class, students=[self.english_student])

    def statuses_on(self, session_date):
        return sorted(
            TuitionSession.objects.filter(session_date=session_date).values_list('status', flat=True)
        )

    def amounts(self):
        return dict(TuitionFee.objects.values_list('id', 'amount'))


class ClosurePropagationTests(ClosureBaseTestCase):
    def test_global_closure_round_trip_restores_state(self):
        alice_fee = self.fee_for(self.students[0])
        attended = get_sessions_for_tuition(tuition_fee=alice_fee)[2]
        record_session_attendance(session=attended, status=TuitionSession.STATUS_ATTENDED)

        before_statuses = dict(TuitionSession.objects.values_list('id', 'status'))
        before_amounts = self.amounts()

        closure = create_closures(
            academy=self.academy,
            dates=[date(2026, 3, 9)],
            closure_type=AcademyClosure.TYPE_GLOBAL,
            reason='Snow day',
        )[0]

        # Two math sessions still scheduled on 3/9 plus the English session.
        self.assertEqual(closure.affected_sessions, 3)
        attended.refresh_from_db()
        self.assertEqual(attended.status, TuitionSession.STATUS_ATTENDED)
        self.assertEqual(self.fee_for(self.students[1]).amount, Decimal('75000'))
        self.assertEqual(self.fee_for(self.students[0]).amount, Decimal('100000'))

        restored = delete_closure(closure=closure)

        self.assertEqual(restored, 3)
        self.assertEqual(dict(TuitionSession.objects.values_list('id', 'status')), before_statuses)
        self.assertEqual(self.amounts(), before_amounts)
        self.assertFalse(TuitionSession.objects.filter(closure__isnull=False).exists())

    def test_apply_and_restore_are_idempotent(self):
        closure = AcademyClosure.objects.create(academy=self.academy, closure_date=date(2026, 3, 4))

        self.assertEqual(apply_closure_to_sessions(closure=closure), 3)
        after_first = self.amounts()
        self.assertEqual(apply_closure_to_sessions(closure=closure), 0)
        self.assertEqual(self.amounts(), after_first)

        self.assertEqual(restore_sessions_from_closure(closure=closure), 3)
        self.assertEqual(restore_sessions_from_closure(closure=closure), 0)

    def test_class_closure_only_affects_that_class(self):
        closure = create_closures(
            academy=self.academy,
            dates=[date(2026, 3, 2)],
            closure_type=AcademyClosure.TYPE_CLASS,
            academy_classes=[self.english_class],
        )[0]

        self.assertEqual(closure.affected_sessions, 1)
        self.assertEqual(
            self.statuses_on(date(2026, 3, 2)),
            ['closure', 'scheduled', 'scheduled', 'scheduled'],
        )

    def test_teacher_closure_affects_teacher_classes_only(self):
        closure = create_closures(
            academy=self.academy,
            dates=[date(2026, 3, 2)],
            closure_type=AcademyClosure.TYPE_TEACHER,
            teacher=self.teacher,
        )[0]

        self.assertEqual(closure.affected_sessions, 3)
        english_fee = self.fee_for(self.english_student, academy_class=self.english_class)
        self.assertEqual(get_sessions_for_tuition(tuition_fee=english_fee)[0].status, TuitionSession.STATUS_SCHEDULED)

    def test_cancelled_sessions_are_left_alone(self):
        session = get_sessions_for_tuition(tuition_fee=self.fee_for(self.students[0]))[1]
        cancel_session(session=session)
        closure = AcademyClosure.objects.create(academy=self.academy, closure_date=session.session_date)

        apply_closure_to_sessions(closure=closure)
        restore_sessions_from_closure(closure=closure)

        session.refresh_from_db()
        self.assertEqual(session.status, TuitionSession.STATUS_CANCELLED)
        self.assertIsNone(session.closure_id)

    def test_closure_in_another_academy_is_ignored(self):
        elsewhere = Academy.objects.create(name='Elsewhere Academy')
        closure = AcademyClosure.objects.create(academy=elsewhere, closure_date=MONDAY)

        self.assertEqual(apply_closure_to_sessions(closure=closure), 0)

    def test_withdrawing_closure_restores_generated_closure_sessions(self):
        closure = AcademyClosure.objects.create(academy=self.academy, closure_date=date(2026, 4, 1))
        result = self.generate(start=date(2026, 4, 1))
        self.assertEqual(result.closure_days, 1)
        self.materialize(result=result, start=date(2026, 4, 1))
        april_fee = TuitionFee.objects.get(student=self.students[0], month=4)
        self.assertEqual(april_fee.amount, Decimal('100000'))

        delete_closure(closure=closure)

        april_fee.refresh_from_db()
        self.assertEqual(april_fee.sessions_count, 5)
        self.assertEqual(april_fee.amount, Decimal('125000'))


    def test_each_class_is_billed_on_its_own_schedule(self):
        english_fee = self.fee_for(self.english_student, academy_class=self.english_class)

        self.assertEqual(
            [session.session_date for session in get_sessions_for_tuition(tuition_fee=english_fee)],
            [date(2026, 3, 2), date(2026, 3, 5), date(2026, 3, 9), date(2026, 3, 12)],
        )

    def test_deleting_teacher_restores_their_closed_sessions(self):
        create_closures(
            academy=self.academy,
            dates=[date(2026, 3, 2)],
            closure_type=AcademyClosure.TYPE_TEACHER,
            teacher=self.teacher,
        )
        self.assertEqual(self.fee_for(self.students[0]).amount, Decimal('75000'))

        self.teacher.delete()

        self.assertFalse(AcademyClosure.objects.exists())
        self.assertEqual(self.statuses_on(date(2026, 3, 2)), ['scheduled'] * 4)
        self.assertEqual(self.fee_for(self.students[0]).amount, Decimal('100000'))


class ClosureWorkflowTests(ClosureBaseTestCase):
    def test_class_closure_creates_one_row_per_date_and_class(self):
        closures = create_closures(
            academy=self.academy,
            dates=[date(2026, 3, 9), date(2026, 3, 2)],
            closure_type=AcademyClosure.TYPE_CLASS,
            academy_classes=[self.math_class, self.english_class],
        )

        self.assertEqual(len(closures), 4)
        self.assertEqual(closures[0].closure_date, date(2026, 3, 2))

    def test_class_closure_requires_class(self):
        with self.assertRaises(ValidationError):
            create_closures(
                academy=self.academy,
                dates=[date(2026, 3, 2)],
                closure_type=AcademyClosure.TYPE_CLASS,
            )

    def test_teacher_closure_requires_teacher(self):
        with self.assertRaises(ValidationError):
            create_closures(
                academy=self.academy,
                dates=[date(2026, 3, 2)],
                closure_type=AcademyClosure.TYPE_TEACHER,
            )
        self.assertFalse(AcademyClosure.objects.exists())

    def test_global_closure_cannot_reference_class(self):
        closure = AcademyClosure(
            academy=self.academy,
            closure_date=MONDAY,
            closure_type=AcademyClosure.TYPE_GLOBAL,
            academy_class=self.math_class,
        )

        with self.assertRaises(ValidationError):
            closure.full_clean()

    def test_dates_are_required(self):
        with self.assertRaises(ValidationError):
            create_closures(academy=self.academy, dates=[], closure_type=AcademyClosure.TYPE_GLOBAL)

    def test_update_closure_changes_metadata_only(self):
        closure = AcademyClosure.objects.create(academy=self.academy, closure_date=MONDAY, reason='Old')

        update_closure(closure=closure, reason='  Heating failure ', is_emergency=True)

        closure.refresh_from_db()
        self.assertEqual(closure.reason, 'Heating failure')
        self.assertTrue(closure.is_emergency)
        self.assertEqual(closure.title, 'Academy closed: Heating failure')

    def test_closures_for_month_filters(self):
        AcademyClosure.objects.create(academy=self.academy, closure_date=date(2026, 3, 31))
        AcademyClosure.objects.create(academy=self.academy, closure_date=date(2026, 4, 1))
        AcademyClosure.objects.create(
            academy=self.academy,
            closure_date=date(2026, 3, 5),
            closure_type=AcademyClosure.TYPE_CLASS,
            academy_class=self.english_class,
        )

        march = closures_for_month(academy=self.academy, year=2026, month=3)
        class_only = closures_for_month(
            academy=self.academy,
            year=2026,
            month=3,
            closure_type=AcademyClosure.TYPE_CLASS,
        )

        self.assertEqual([closure.closure_date for closure in march], [date(2026, 3, 5), date(2026, 3, 31)])
        self.assertEqual([closure.academy_class_id for closure in class_only], [self.english_class.id])

    def test_affecting_class_lookup(self):
        global_closure = AcademyClosure.objects.create(academy=self.academy, closure_date=date(2026, 3, 3))
        AcademyClosure.objects.create(
            academy=self.academy,
            closure_date=date(2026, 3, 4),
            closure_type=AcademyClosure.TYPE_TEACHER,
            teacher=self.other_teacher,
        )

        closures = AcademyClosure.objects.affecting_class(self.math_class, date(2026, 3, 1), date(2026, 3, 31))

        self.assertEqual(list(closures), [global_closure])
