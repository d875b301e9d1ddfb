from django.db.models.signals import pre_delete
from django.dispatch import receiver

from apps.core.tuition.services import restore_sessions_from_closure

from .models import AcademyClosure


@receiver(pre_delete, sender=AcademyClosure)
def restore_sessions_before_closure_delete(sender, instance: AcademyClosure, **kwargs):
    # Cascades from Teacher, AcademyClass or Academy bypass delete_closure.
    restore_sessions_from_closure(closure=instance)
