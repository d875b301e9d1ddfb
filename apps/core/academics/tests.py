from datetime import date, time
from decimal import Decimal
from io import StringIO

from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.db import IntegrityError, transaction
from django.test import TestCase

from apps.core.academics.models import (
    AcademyClass,
    ClassEnrollment,
    ClassSchedule,
    Student,
    Teacher,
    weekday_key,
)
from apps.core.academics.services import active_roster_student_ids, get_class_schedules, require_schedule_days
from apps.core.academies.models import Academy


class AcademyClassModelTests(TestCase):
    def setUp(self):
        self.academy = Academy.objects.create(name='Bright Math Academy', code='bright_math')
        self.other_academy = Academy.objects.create(name='North Star Academy')
        self.academy_class = AcademyClass.objects.create(
            academy=self.academy,
            name='Math A',
            monthly_fee=Decimal('200000'),
            sessions_per_month=8,
        )

    def test_academy_code_is_generated_from_name(self):
        self.assertEqual(self.other_academy.code, 'north_star_academy')
        duplicate = Academy.objects.create(name='North Star Academy')
        self.assertEqual(duplicate.code, 'north_star_academy_1')

    def test_weekday_key(self):
        self.assertEqual(weekday_key(date(2026, 3, 2)), 'monday')
        self.assertEqual(weekday_key(date(2026, 3, 8)), 'sunday')

    def test_class_name_is_unique_per_academy(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                AcademyClass.objects.create(academy=self.academy, name='Math A')

        AcademyClass.objects.create(academy=self.other_academy, name='Math A')

    def test_negative_monthly_fee_is_rejected(self):
        self.academy_class.monthly_fee = Decimal('-1')
        with self.assertRaises(ValidationError):
            self.academy_class.full_clean()

    def test_teacher_from_other_academy_is_rejected(self):
        outsider = Teacher.objects.create(academy=self.other_academy, name='Outsider')
        self.academy_class.teacher = outsider
        with self.assertRaises(ValidationError):
            self.academy_class.full_clean()

    def test_schedule_end_must_follow_start(self):
        schedule = ClassSchedule(
            academy_class=self.academy_class,
            day_of_week='monday',
            start_time=time(16, 0),
            end_time=time(16, 0),
        )
        with self.assertRaises(ValidationError):
            schedule.full_clean()

    def test_enrollment_requires_same_academy(self):
        student = Student.objects.create(academy=self.other_academy, name='Eve Han')
        enrollment = ClassEnrollment(academy_class=self.academy_class, student=student)
        with self.assertRaises(ValidationError):
            enrollment.full_clean()


class ScheduleServiceTests(TestCase):
    def setUp(self):
        self.academy = Academy.objects.create(name='Bright Math Academy', code='bright_math')
        self.academy_class = AcademyClass.objects.create(
            academy=self.academy,
            name='Math A',
            monthly_fee=Decimal('200000'),
        )

    def test_require_schedule_days_without_schedule(self):
        with self.assertRaisesMessage(ValidationError, "No weekly schedule is configured for class 'Math A'"):
            require_schedule_days(self.academy_class)

    def test_schedule_days_are_deduplicated(self):
        for start_hour in (14, 18):
            ClassSchedule.objects.create(
                academy_class=self.academy_class,
                day_of_week='tuesday',
                start_time=time(start_hour, 0),
                end_time=time(start_hour + 1, 0),
            )

        self.assertEqual(require_schedule_days(self.academy_class), {'tuesday'})
        self.assertEqual(len(get_class_schedules(self.academy_class)), 2)

    def test_active_roster_skips_inactive_enrollments_and_students(self):
        alice = Student.objects.create(academy=self.academy, name='Alice Park')
        ben = Student.objects.create(academy=self.academy, name='Ben Lee')
        chloe = Student.objects.create(academy=self.academy, name='Chloe Choi', is_active=False)
        dana = Student.objects.create(academy=self.academy, name='Dana Jung')

        ClassEnrollment.objects.create(academy_class=self.academy_class, student=ben)
        ClassEnrollment.objects.create(academy_class=self.academy_class, student=alice)
        ClassEnrollment.objects.create(academy_class=self.academy_class, student=chloe)
        ClassEnrollment.objects.create(academy_class=self.academy_class, student=dana, is_active=False)

        self.assertEqual(active_roster_student_ids(self.academy_class), [alice.id, ben.id])


class SeedAcademyCommandTests(TestCase):
    def test_seed_creates_scheduled_classes_with_roster(self):
        out = StringIO()

        call_command('seed_academy', classes=2, students=3, seed=7, stdout=out)

        academy = Academy.objects.get()
        classes = AcademyClass.objects.for_academy(academy)
        self.assertEqual(classes.count(), 2)
        self.assertEqual(Teacher.objects.for_academy(academy).count(), 1)
        self.assertEqual(Student.objects.for_academy(academy).count(), 6)
        self.assertEqual(ClassEnrollment.objects.filter(academy_class__academy=academy).count(), 6)
        for academy_class in classes:
            self.assertEqual(len(academy_class.schedule_days()), 2)
            self.assertEqual(academy_class.sessions_per_month, 8)
        self.assertIn('Academy seeding complete!', out.getvalue())
