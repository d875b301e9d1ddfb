from __future__ import annotations

import calendar
import logging
from datetime import date

from django.core.exceptions import ValidationError
from django.db import transaction

from apps.core.tuition.services import apply_closure_to_sessions, restore_sessions_from_closure

from .models import AcademyClosure


logger = logging.getLogger(__name__)


def closures_for_month(*, academy, year: int, month: int, closure_type=None, academy_class=None, teacher=None):
    last_day = calendar.monthrange(year, month)[1]
    closures = AcademyClosure.objects.for_academy(academy).filter(
        closure_date__range=(date(year, month, 1), date(year, month, last_day)),
    )
    if closure_type:
        closures = closures.filter(closure_type=closure_type)
    if academy_class is not None:
        closures = closures.filter(academy_class=academy_class)
    if teacher is not None:
        closures = closures.filter(teacher=teacher)
    return closures.select_related('academy_class', 'teacher').order_by('closure_date', 'id')


@transaction.atomic
def create_closures(
    *,
    academy,
    dates,
    closure_type: str,
    reason: str = '',
    academy_classes=None,
    teacher=None,
    is_emergency: bool = False,
):
    if not dates:
        raise ValidationError('At least one closure date is required.')

    if closure_type == AcademyClosure.TYPE_CLASS:
        targets = list(academy_classes or [])
        if not targets:
            raise ValidationError('Select at least one class for a class closure.')
    else:
        targets = [None]

    created = []
    for closure_date in sorted(set(dates)):
        for academy_class in targets:
            closure = AcademyClosure(
                academy=academy,
                closure_date=closure_date,
                closure_type=closure_type,
                academy_class=academy_class,
                teacher=teacher if closure_type == AcademyClosure.TYPE_TEACHER else None,
                reason=(reason or '')[:255],
                is_emergency=is_emergency,
            )
            closure.full_clean()
            closure.save()

            closure.affected_sessions = apply_closure_to_sessions(closure=closure)
            logger.info(
                'Created closure %s (%s) on %s affecting %s sessions',
                closure.pk,
                closure.closure_type,
                closure.closure_date,
                closure.affected_sessions,
            )
            created.append(closure)

    return created


def update_closure(*, closure: AcademyClosure, reason=None, is_emergency=None) -> AcademyClosure:
    updates = []
    if reason is not None:
        closure.reason = reason.strip()[:255]
        updates.append('reason')
    if is_emergency is not None:
        closure.is_emergency = is_emergency
        updates.append('is_emergency')
    if updates:
        closure.save(update_fields=updates)
    return closure


@transaction.atomic
def delete_closure(*, closure: AcademyClosure) -> int:
    restored = restore_sessions_from_closure(closure=closure)
    closure_id = closure.pk
    closure.delete()
    logger.info('Deleted closure %s, restored %s sessions', closure_id, restored)
    return restored
