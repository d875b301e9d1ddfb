from django.apps import AppConfig


class ClosuresConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core.closures'
    label = 'closures'

    def ready(self):
        from . import signals  # noqa: F401
