from django.contrib import admin, messages

from unfold.admin import ModelAdmin, TabularInline

from .models import (
    AssessmentComponent, Exam, GradeBand, GradingComponent, GradingScheme,
    GradingSystem, MarkAuditLog, MarkEntry,
)


@admin.register(AssessmentComponent)
class AssessmentComponentAdmin(ModelAdmin):
    list_display = ('name', 'abbreviation', 'default_max_marks', 'is_internal', 'is_active')
    list_filter = ('is_internal', 'is_active')
    search_fields = ('name', 'abbreviation')


@admin.register(Exam)
class ExamAdmin(ModelAdmin):
    list_display = ('name', 'term', 'exam_type', 'start_date', 'is_locked')
    list_filter = ('term', 'exam_type', 'is_locked')
    filter_horizontal = ('classes',)
    search_fields = ('name',)


# Scoring fields are frozen once marks exist; change them with a new scheme version
SCORING_FIELDS = ('max_marks', 'weightage_percent')


class GradingComponentInline(TabularInline):
    model = GradingComponent
    extra = 0
    can_delete = False
    fields = ('assessment', 'name', 'abbreviation', 'max_marks', 'weightage_percent', 'is_locked')
    readonly_fields = ('is_locked',)

    def get_readonly_fields(self, request, obj=None):
        readonly = tuple(super().get_readonly_fields(request, obj))
        if obj is not None and (not obj.is_active or obj.has_marks):
            readonly += SCORING_FIELDS
        return readonly

    def has_add_permission(self, request, obj=None):
        if obj is not None and (not obj.is_active or obj.has_marks):
            return False
        return super().has_add_permission(request, obj)


@admin.register(GradingScheme)
class GradingSchemeAdmin(ModelAdmin):
    list_display = ('subject', 'class_assigned', 'term', 'version', 'is_active', 'total_weightage')
    list_filter = ('is_active', 'term', 'class_assigned')
    search_fields = ('subject__name', 'class_assigned__name')
    inlines = [GradingComponentInline]
    actions = ['create_new_version']

    def change_view(self, request, object_id, form_url='', extra_context=None):
        scheme = self.get_object(request, object_id)
        if scheme is not None and scheme.is_active and scheme.has_marks:
            messages.info(
                request,
                'Marks have been entered for this scheme, so max marks and weightages are '
                'read-only. Use "Supersede with a new version" to change them.'
            )
        return super().change_view(request, object_id, form_url, extra_context)

    @admin.action(description='Supersede with a new version')
    def create_new_version(self, request, queryset):
        for scheme in queryset.filter(is_active=True):
            scheme.supersede(request.user)
        messages.success(request, 'New scheme versions created.')


@admin.register(GradingComponent)
class GradingComponentAdmin(ModelAdmin):
    list_display = ('name', 'scheme', 'max_marks', 'weightage_percent', 'is_locked', 'locked_by')
    list_filter = ('is_locked',)
    search_fields = ('name', 'scheme__subject__name')
    readonly_fields = ('locked_at', 'locked_by')

    def get_readonly_fields(self, request, obj=None):
        readonly = tuple(super().get_readonly_fields(request, obj))
        if obj is not None and (not obj.scheme.is_active or obj.mark_entries.exists()):
            readonly += SCORING_FIELDS
        return readonly

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.mark_entries.exists():
            return False
        return super().has_delete_permission(request, obj)


@admin.register(MarkEntry)
class MarkEntryAdmin(ModelAdmin):
    list_display = ('student', 'component', 'marks_obtained', 'attendance', 'entered_by', 'updated_at')
    list_filter = ('attendance',)
    search_fields = ('student__first_name', 'student__last_name', 'student__admission_number')
    raw_id_fields = ('student', 'component')


@admin.register(MarkAuditLog)
class MarkAuditLogAdmin(ModelAdmin):
    list_display = ('created_at', 'action', 'student', 'component', 'old_marks', 'new_marks', 'user')
    list_filter = ('action',)
    readonly_fields = [f.name for f in MarkAuditLog._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


class GradeBandInline(TabularInline):
    model = GradeBand
    extra = 0


@admin.register(GradingSystem)
class GradingSystemAdmin(ModelAdmin):
    list_display = ('name', 'is_default', 'is_active')
    list_filter = ('is_default', 'is_active')
    inlines = [GradeBandInline]
