from django.contrib import admin

from unfold.admin import ModelAdmin, TabularInline

from .models import Class, Section, Subject, ClassSubject


class SectionInline(TabularInline):
    model = Section
    extra = 0


class ClassSubjectInline(TabularInline):
    model = ClassSubject
    extra = 0
    autocomplete_fields = ('subject',)


@admin.register(Class)
class ClassAdmin(ModelAdmin):
    list_display = ('name', 'level_number', 'is_active')
    list_filter = ('is_active',)
    search_fields = ('name',)
    inlines = [SectionInline, ClassSubjectInline]


@admin.register(Subject)
class SubjectAdmin(ModelAdmin):
    list_display = ('name', 'short_name', 'is_active')
    list_filter = ('is_active',)
    search_fields = ('name', 'short_name')
