from django.contrib import admin

from unfold.admin import ModelAdmin

from .models import Student


@admin.register(Student)
class StudentAdmin(ModelAdmin):
    list_display = ('admission_number', 'full_name', 'current_class', 'section', 'roll_number', 'status')
    list_filter = ('current_class', 'section', 'status')
    search_fields = ('admission_number', 'first_name', 'last_name')
