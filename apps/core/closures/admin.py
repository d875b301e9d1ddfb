from django.contrib import admin

from apps.core.tuition.services import apply_closure_to_sessions

from .models import AcademyClosure
from .services import delete_closure


@admin.register(AcademyClosure)
class AcademyClosureAdmin(admin.ModelAdmin):
    list_display = ('closure_date', 'closure_type', 'academy_class', 'teacher', 'reason', 'is_emergency', 'academy')
    list_filter = ('academy', 'closure_type', 'is_emergency')
    search_fields = ('reason', 'academy_class__name', 'teacher__name')
    date_hierarchy = 'closure_date'

    def get_readonly_fields(self, request, obj=None):
        # Scope changes would strand sessions that point at this closure.
        if obj is not None:
            return ('academy', 'closure_date', 'closure_type', 'academy_class', 'teacher')
        return ()

    def save_model(self, request, obj, form, change):
        super().save_model(request, obj, form, change)
        if not change:
            apply_closure_to_sessions(closure=obj)

    def delete_model(self, request, obj):
        delete_closure(closure=obj)

    def delete_queryset(self, request, queryset):
        for closure in queryset:
            delete_closure(closure=closure)
