from django.contrib import admin

from apps.core.academies.models import Academy

from .models import AcademyClass, ClassEnrollment, ClassSchedule, Student, Teacher


@admin.register(Academy)
class AcademyAdmin(admin.ModelAdmin):
    list_display = ('name', 'code', 'timezone', 'is_active')
    search_fields = ('name', 'code')


class ClassScheduleInline(admin.TabularInline):
    model = ClassSchedule
    extra = 0


@admin.register(AcademyClass)
class AcademyClassAdmin(admin.ModelAdmin):
    list_display = ('name', 'academy', 'teacher', 'monthly_fee', 'sessions_per_month', 'is_active')
    list_filter = ('academy', 'is_active')
    search_fields = ('name',)
    inlines = [ClassScheduleInline]


@admin.register(Teacher)
class TeacherAdmin(admin.ModelAdmin):
    list_display = ('name', 'academy', 'is_active')
    list_filter = ('academy', 'is_active')
    search_fields = ('name',)


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('name', 'academy', 'is_active')
    list_filter = ('academy', 'is_active')
    search_fields = ('name',)


@admin.register(ClassEnrollment)
class ClassEnrollmentAdmin(admin.ModelAdmin):
    list_display = ('student', 'academy_class', 'is_active', 'enrolled_at')
    list_filter = ('academy_class__academy', 'is_active')
    search_fields = ('student__name', 'academy_class__name')
