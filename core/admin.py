from django.contrib import admin

from unfold.admin import ModelAdmin

from .models import AcademicYear, Term, SchoolSettings


@admin.register(AcademicYear)
class AcademicYearAdmin(ModelAdmin):
    list_display = ('name', 'start_date', 'end_date', 'is_current')
    list_filter = ('is_current',)


@admin.register(Term)
class TermAdmin(ModelAdmin):
    list_display = ('name', 'academic_year', 'term_number', 'final_weightage', 'is_current')
    list_filter = ('academic_year', 'is_current')


@admin.register(SchoolSettings)
class SchoolSettingsAdmin(ModelAdmin):
    list_display = ('display_name', 'motto')
