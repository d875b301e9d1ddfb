from django.db import models


class AcademyQuerySet(models.QuerySet):
    def for_academy(self, academy):
        return self.filter(academy=academy)

    def active(self):
        return self.filter(is_active=True)


class AcademyManager(models.Manager.from_queryset(AcademyQuerySet)):
    pass
