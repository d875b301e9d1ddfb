from django.apps import AppConfig


class AcademiesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core.academies'
    label = 'academies'
