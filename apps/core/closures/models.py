from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q

from apps.core.academics.models import AcademyClass, Teacher
from apps.core.academies.models import Academy
from apps.core.utils.managers import AcademyQuerySet


class AcademyClosureQuerySet(AcademyQuerySet):
    def affecting_class(self, academy_class, start_date, end_date):
        """Closures in [start_date, end_date] that apply to academy_class.

        Global closures of the class academy, closures declared for the class
        itself, and closures declared for the class teacher all apply.
        """
        scope = Q(closure_type=AcademyClosure.TYPE_GLOBAL) | Q(
            closure_type=AcademyClosure.TYPE_CLASS,
            academy_class=academy_class,
        )
        if academy_class.teacher_id:
            scope |= Q(closure_type=AcademyClosure.TYPE_TEACHER, teacher_id=academy_class.teacher_id)

        return self.filter(
            scope,
            academy_id=academy_class.academy_id,
            closure_date__gte=start_date,
            closure_date__lte=end_date,
        ).order_by('closure_date', 'id')


class AcademyClosure(models.Model):
    TYPE_GLOBAL = 'global'
    TYPE_CLASS = 'class'
    TYPE_TEACHER = 'teacher'
    TYPE_CHOICES = (
        (TYPE_GLOBAL, 'Whole academy'),
        (TYPE_CLASS, 'Single class'),
        (TYPE_TEACHER, 'Teacher'),
    )

    academy = models.ForeignKey(
        Academy,
        on_delete=models.CASCADE,
        related_name='closures',
    )
    objects = AcademyClosureQuerySet.as_manager()

    closure_date = models.DateField()
    closure_type = models.CharField(max_length=10, choices=TYPE_CHOICES, default=TYPE_GLOBAL)
    academy_class = models.ForeignKey(
        AcademyClass,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='closures',
    )
    teacher = models.ForeignKey(
        Teacher,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='closures',
    )
    reason = models.CharField(max_length=255, blank=True)
    is_emergency = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['closure_date', 'id']
        indexes = [
            models.Index(fields=['academy', 'closure_date']),
            models.Index(fields=['academy', 'closure_type', 'closure_date']),
        ]

    def clean(self):
        super().clean()

        if self.reason:
            self.reason = self.reason.strip()

        if self.closure_type == self.TYPE_CLASS:
            if not self.academy_class_id:
                raise ValidationError({'academy_class': 'Class closures require a class.'})
            if self.academy_class.academy_id != self.academy_id:
                raise ValidationError({'academy_class': 'Class must belong to selected academy.'})
        elif self.academy_class_id:
            raise ValidationError({'academy_class': 'Only class closures can reference a class.'})

        if self.closure_type == self.TYPE_TEACHER:
            if not self.teacher_id:
                raise ValidationError({'teacher': 'Teacher closures require a teacher.'})
            if self.teacher.academy_id != self.academy_id:
                raise ValidationError({'teacher': 'Teacher must belong to selected academy.'})
        elif self.teacher_id:
            raise ValidationError({'teacher': 'Only teacher closures can reference a teacher.'})

    @property
    def title(self) -> str:
        if self.closure_type == self.TYPE_CLASS and self.academy_class_id:
            label = f"{self.academy_class.name} closed"
        elif self.closure_type == self.TYPE_TEACHER and self.teacher_id:
            label = f"{self.teacher.name} closed"
        else:
            label = 'Academy closed'
        return f"{label}: {self.reason}" if self.reason else label

    def __str__(self):
        return f"{self.closure_date} {self.title}"
