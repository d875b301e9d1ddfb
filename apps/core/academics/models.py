from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models

from apps.core.academies.models import Academy
from apps.core.utils.managers import AcademyManager


DAY_CHOICES = (
    ('monday', 'Monday'),
    ('tuesday', 'Tuesday'),
    ('wednesday', 'Wednesday'),
    ('thursday', 'Thursday'),
    ('friday', 'Friday'),
    ('saturday', 'Saturday'),
    ('sunday', 'Sunday'),
)

# Indexed by date.weekday().
WEEKDAY_ORDER = [day for day, _ in DAY_CHOICES]


def weekday_key(target_date) -> str:
    return WEEKDAY_ORDER[target_date.weekday()]


class Teacher(models.Model):
    academy = models.ForeignKey(
        Academy,
        on_delete=models.CASCADE,
        related_name='teachers',
    )
    objects = AcademyManager()

    name = models.CharField(max_length=120)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name', 'id']
        indexes = [
            models.Index(fields=['academy', 'is_active']),
        ]

    def __str__(self):
        return self.name


class AcademyClass(models.Model):
    academy = models.ForeignKey(
        Academy,
        on_delete=models.CASCADE,
        related_name='classes',
    )
    objects = AcademyManager()

    name = models.CharField(max_length=120)
    teacher = models.ForeignKey(
        Teacher,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='classes',
    )
    monthly_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    sessions_per_month = models.PositiveIntegerField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name', 'id']
        verbose_name_plural = 'classes'
        constraints = [
            models.UniqueConstraint(
                fields=['academy', 'name'],
                name='unique_class_name_per_academy',
            ),
        ]
        indexes = [
            models.Index(fields=['academy', 'is_active']),
        ]

    def clean(self):
        super().clean()
        if self.name:
            self.name = self.name.strip()
        if not self.name:
            raise ValidationError({'name': 'Class name is required.'})
        if self.monthly_fee is None or self.monthly_fee < 0:
            raise ValidationError({'monthly_fee': 'Monthly fee must be zero or greater.'})
        if self.teacher_id and self.teacher.academy_id != self.academy_id:
            raise ValidationError({'teacher': 'Teacher must belong to selected academy.'})

    def schedule_days(self) -> set:
        return set(self.schedules.values_list('day_of_week', flat=True))

    def __str__(self):
        return f"{self.name} ({self.academy.code})"


class ClassSchedule(models.Model):
    academy_class = models.ForeignKey(
        AcademyClass,
        on_delete=models.CASCADE,
        related_name='schedules',
    )
    day_of_week = models.CharField(max_length=10, choices=DAY_CHOICES)
    start_time = models.TimeField()
    end_time = models.TimeField()

    class Meta:
        ordering = ['academy_class', 'day_of_week', 'start_time']
        constraints = [
            models.UniqueConstraint(
                fields=['academy_class', 'day_of_week', 'start_time'],
                name='unique_class_schedule_slot',
            ),
        ]

    def clean(self):
        super().clean()
        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValidationError({'end_time': 'End time must be after start time.'})

    def __str__(self):
        return f"{self.academy_class.name} {self.get_day_of_week_display()} {self.start_time}-{self.end_time}"


class Student(models.Model):
    academy = models.ForeignKey(
        Academy,
        on_delete=models.CASCADE,
        related_name='students',
    )
    objects = AcademyManager()

    name = models.CharField(max_length=120)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name', 'id']
        indexes = [
            models.Index(fields=['academy', 'is_active']),
        ]

    def __str__(self):
        return self.name


class ClassEnrollment(models.Model):
    academy_class = models.ForeignKey(
        AcademyClass,
        on_delete=models.CASCADE,
        related_name='enrollments',
    )
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='enrollments',
    )
    is_active = models.BooleanField(default=True)
    enrolled_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['academy_class', 'student__name']
        constraints = [
            models.UniqueConstraint(
                fields=['academy_class', 'student'],
                name='unique_student_per_class',
            ),
        ]

    def clean(self):
        super().clean()
        if self.student_id and self.academy_class_id and self.student.academy_id != self.academy_class.academy_id:
            raise ValidationError({'student': 'Student must belong to the class academy.'})

    def __str__(self):
        return f"{self.student.name} in {self.academy_class.name}"
