from django.apps import AppConfig


class TuitionConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core.tuition'
    label = 'tuition'
