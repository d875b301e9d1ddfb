from django.contrib import admin

from .models import TuitionFee, TuitionSession
from .services import recalculate_tuition_amount


class TuitionSessionInline(admin.TabularInline):
    model = TuitionSession
    fk_name = 'tuition_fee'
    extra = 0
    can_delete = False
    fields = ('session_number', 'session_date', 'status', 'closure', 'original_session', 'note')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(TuitionFee)
class TuitionFeeAdmin(admin.ModelAdmin):
    list_display = (
        'student_name_snapshot',
        'class_name_snapshot',
        'year',
        'month',
        'period_start_date',
        'period_end_date',
        'sessions_count',
        'per_session_fee',
        'amount',
        'payment_status',
    )
    list_filter = ('academy', 'year', 'month', 'payment_status')
    search_fields = ('student_name_snapshot', 'class_name_snapshot')
    readonly_fields = ('sessions_count', 'amount', 'carryover_to_next', 'created_at', 'updated_at')
    inlines = [TuitionSessionInline]

    def save_model(self, request, obj, form, change):
        super().save_model(request, obj, form, change)
        # Carryover and per-session fee edits change the billed amount.
        recalculate_tuition_amount(tuition_fee=obj)
        obj.refresh_from_db(fields=['sessions_count', 'amount', 'updated_at'])


@admin.register(TuitionSession)
class TuitionSessionAdmin(admin.ModelAdmin):
    list_display = ('tuition_fee', 'session_number', 'session_date', 'status', 'closure')
    list_filter = ('status', 'session_date')
    search_fields = ('tuition_fee__student_name_snapshot', 'tuition_fee__class_name_snapshot')
    readonly_fields = ('tuition_fee', 'session_number', 'session_date', 'status', 'closure', 'original_session')
