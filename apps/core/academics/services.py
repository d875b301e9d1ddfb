from __future__ import annotations

from django.core.exceptions import ValidationError

from .models import AcademyClass, ClassSchedule


def get_class_schedules(academy_class: AcademyClass):
    return list(
        ClassSchedule.objects.filter(academy_class=academy_class).order_by('day_of_week', 'start_time')
    )


def require_schedule_days(academy_class: AcademyClass) -> set:
    days = academy_class.schedule_days()
    if not days:
        raise ValidationError(
            f"No weekly schedule is configured for class '{academy_class.name}'. "
            'Add at least one schedule entry before generating sessions.'
        )
    return days


def active_roster_student_ids(academy_class: AcademyClass) -> list:
    return list(
        academy_class.enrollments.filter(
            is_active=True,
            student__is_active=True,
        ).order_by('student__name', 'student_id').values_list('student_id', flat=True)
    )
