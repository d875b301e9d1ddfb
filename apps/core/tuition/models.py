from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q

from apps.core.academics.models import AcademyClass, Student
from apps.core.academies.models import Academy
from apps.core.closures.models import AcademyClosure
from apps.core.utils.managers import AcademyManager


class TuitionFee(models.Model):
    PAYMENT_UNPAID = 'unpaid'
    PAYMENT_PARTIAL = 'partial'
    PAYMENT_PAID = 'paid'
    PAYMENT_STATUS_CHOICES = (
        (PAYMENT_UNPAID, 'Unpaid'),
        (PAYMENT_PARTIAL, 'Partially paid'),
        (PAYMENT_PAID, 'Paid'),
    )

    academy = models.ForeignKey(
        Academy,
        on_delete=models.CASCADE,
        related_name='tuition_fees',
    )
    objects = AcademyManager()

    academy_class = models.ForeignKey(
        AcademyClass,
        on_delete=models.PROTECT,
        related_name='tuition_fees',
    )
    student = models.ForeignKey(
        Student,
        on_delete=models.PROTECT,
        related_name='tuition_fees',
    )
    year = models.PositiveIntegerField()
    month = models.PositiveSmallIntegerField()
    period_start_date = models.DateField(null=True, blank=True)
    period_end_date = models.DateField(null=True, blank=True)

    # Derived from the session set; written by recalculate_tuition_amount.
    sessions_count = models.PositiveIntegerField(default=0)
    per_session_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    carryover_from_prev = models.PositiveIntegerField(default=0)
    carryover_to_next = models.PositiveIntegerField(default=0)
    payment_status = models.CharField(max_length=10, choices=PAYMENT_STATUS_CHOICES, default=PAYMENT_UNPAID)
    student_name_snapshot = models.CharField(max_length=120, blank=True)
    class_name_snapshot = models.CharField(max_length=120, blank=True)
    note = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-year', '-month', 'class_name_snapshot', 'student_name_snapshot', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['academy_class', 'student', 'year', 'month'],
                name='unique_tuition_fee_per_class_student_month',
            ),
            models.CheckConstraint(
                condition=Q(month__gte=1) & Q(month__lte=12),
                name='tuition_fee_month_range',
            ),
        ]
        indexes = [
            models.Index(fields=['academy', 'year', 'month']),
            models.Index(fields=['academy_class', 'period_end_date']),
        ]

    def clean(self):
        super().clean()
        if self.academy_class_id and self.academy_class.academy_id != self.academy_id:
            raise ValidationError({'academy_class': 'Class must belong to selected academy.'})
        if self.student_id and self.student.academy_id != self.academy_id:
            raise ValidationError({'student': 'Student must belong to selected academy.'})
        if self.period_start_date and self.period_end_date and self.period_end_date < self.period_start_date:
            raise ValidationError({'period_end_date': 'Period end date cannot be before start date.'})

    def __str__(self):
        return f"{self.student_name_snapshot or self.student_id} - {self.class_name_snapshot} {self.year}-{self.month:02d}"


class TuitionSession(models.Model):
    STATUS_SCHEDULED = 'scheduled'
    STATUS_CLOSURE = 'closure'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CARRYOVER = 'carryover'
    STATUS_ATTENDED = 'attended'
    STATUS_ABSENT = 'absent'
    STATUS_MAKEUP = 'makeup'
    STATUS_CHOICES = (
        (STATUS_SCHEDULED, 'Scheduled'),
        (STATUS_CLOSURE, 'Closure'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_CARRYOVER, 'Carried over'),
        (STATUS_ATTENDED, 'Attended'),
        (STATUS_ABSENT, 'Absent'),
        (STATUS_MAKEUP, 'Makeup'),
    )

    EVENT_CLOSE = 'close'
    EVENT_REOPEN = 'reopen'
    EVENT_CANCEL = 'cancel'
    EVENT_CARRY_OVER = 'carry_over'
    EVENT_ATTEND = 'attend'
    EVENT_MARK_ABSENT = 'mark_absent'
    EVENT_MAKEUP = 'makeup'

    NON_BILLABLE_STATUSES = frozenset({STATUS_CARRYOVER, STATUS_CANCELLED, STATUS_CLOSURE})
    ATTENDANCE_STATUSES = frozenset({STATUS_ATTENDED, STATUS_ABSENT, STATUS_MAKEUP})

    tuition_fee = models.ForeignKey(
        TuitionFee,
        on_delete=models.CASCADE,
        related_name='sessions',
    )
    session_number = models.PositiveIntegerField()
    session_date = models.DateField()
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_SCHEDULED)
    closure = models.ForeignKey(
        AcademyClosure,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='sessions',
    )
    original_session = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='replacements',
    )
    note = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['tuition_fee', 'session_number']
        constraints = [
            models.UniqueConstraint(
                fields=['tuition_fee', 'session_number'],
                name='unique_session_number_per_tuition_fee',
            ),
        ]
        indexes = [
            models.Index(fields=['session_date', 'status']),
            models.Index(fields=['closure', 'status']),
        ]

    @property
    def is_billable(self) -> bool:
        return self.status not in self.NON_BILLABLE_STATUSES

    def apply_event(self, event: str) -> str:
        target = SESSION_TRANSITIONS.get((self.status, event))
        if target is None:
            raise ValidationError(
                f"Session #{self.session_number} cannot '{event}' from status '{self.status}'."
            )
        self.status = target
        return target

    def __str__(self):
        return f"#{self.session_number} {self.session_date} ({self.status})"


_S = TuitionSession

SESSION_TRANSITIONS = {
    (_S.STATUS_SCHEDULED, _S.EVENT_CLOSE): _S.STATUS_CLOSURE,
    (_S.STATUS_CLOSURE, _S.EVENT_REOPEN): _S.STATUS_SCHEDULED,
    (_S.STATUS_SCHEDULED, _S.EVENT_CANCEL): _S.STATUS_CANCELLED,
    (_S.STATUS_SCHEDULED, _S.EVENT_CARRY_OVER): _S.STATUS_CARRYOVER,
    (_S.STATUS_ABSENT, _S.EVENT_CARRY_OVER): _S.STATUS_CARRYOVER,
}

ATTENDANCE_EVENTS = {
    _S.STATUS_ATTENDED: _S.EVENT_ATTEND,
    _S.STATUS_ABSENT: _S.EVENT_MARK_ABSENT,
    _S.STATUS_MAKEUP: _S.EVENT_MAKEUP,
}

# Attendance can be recorded on a scheduled session and corrected afterwards.
for _source in (_S.STATUS_SCHEDULED, *_S.ATTENDANCE_STATUSES):
    for _target, _event in ATTENDANCE_EVENTS.items():
        if _source != _target:
            SESSION_TRANSITIONS[(_source, _event)] = _target

del _S, _source, _target, _event


def statuses_accepting(event: str) -> list:
    return sorted(source for source, name in SESSION_TRANSITIONS if name == event)
