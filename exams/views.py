import logging

from django.http import HttpResponse, JsonResponse
from django.views.decorators.http import require_GET, require_POST

from core.permissions import (
    admin_required, can_enter_marks, get_client_ip, get_user_agent,
    ratelimit, teacher_or_admin_required,
)
from results.exceptions import ValidationError
from results.export import PDF_CONTENT_TYPE, XLSX_CONTENT_TYPE, safe_filename
from results.http import json_errors, parse_json_body
from results.selection import as_id

from . import import_export, services

logger = logging.getLogger(__name__)


def _param_id(params, name, required=True):
    value = params.get(name)
    if value in (None, ''):
        if required:
            raise ValidationError(f"'{name}' is required.", field=name)
        return None
    return as_id(value, name)


def _sheet_ids(params):
    """class_id, subject_id, exam_id and optional section_id of a marks sheet."""
    return (
        _param_id(params, 'class_id'),
        _param_id(params, 'subject_id'),
        _param_id(params, 'exam_id'),
        _param_id(params, 'section_id', required=False),
    )


def _file_response(content, content_type, filename):
    response = HttpResponse(content, content_type=content_type)
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response


# ============ Marks Entry ============

@require_GET
@teacher_or_admin_required
@json_errors
def marks(request):
    """Existing marks of a class (or section) for one subject and exam."""
    class_id, subject_id, exam_id, section_id = _sheet_ids(request.GET)

    sheet = services.marks_sheet(class_id, subject_id, exam_id, section_id)
    sheet['can_edit'] = can_enter_marks(request.user, class_id, subject_id)
    return JsonResponse(sheet)


@require_POST
@teacher_or_admin_required
@ratelimit(key='user', rate='200/h')
@json_errors
def marks_save(request):
    """
    Save a batch of marks with audit logging.

    Rate limited to 200 requests/hour per user. The batch is stored whole or
    not at all; the error body names the offending student and component.
    """
    data = parse_json_body(request)
    counts = services.save_marks(
        data.get('entries'),
        request.user,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return JsonResponse({'success': True, **counts})


# ============ Import / Export ============

@require_GET
@teacher_or_admin_required
@json_errors
def marks_export(request):
    """Download the marks sheet as an Excel workbook, ready for import."""
    class_id, subject_id, exam_id, section_id = _sheet_ids(request.GET)
    title, content = import_export.marks_sheet_workbook(class_id, subject_id, exam_id, section_id)
    return _file_response(content, XLSX_CONTENT_TYPE, safe_filename(f"marks_{title}", 'xlsx'))


@require_GET
@teacher_or_admin_required
@json_errors
def marks_export_pdf(request):
    """Download the marks sheet as a printable PDF."""
    class_id, subject_id, exam_id, section_id = _sheet_ids(request.GET)
    title, content = import_export.marks_sheet_pdf(
        class_id, subject_id, exam_id, section_id, orientation=request.GET.get('orientation')
    )
    return _file_response(content, PDF_CONTENT_TYPE, safe_filename(f"marks_{title}", 'pdf'))


@require_POST
@teacher_or_admin_required
@ratelimit(key='user', rate='30/h')
@json_errors
def marks_import(request):
    """
    Import an exported marks sheet (multipart form: file plus the sheet ids).

    The whole file is stored or none of it; the error body names the
    offending row, student or component.
    """
    class_id, subject_id, exam_id, section_id = _sheet_ids(request.POST)
    counts = import_export.import_marks_workbook(
        request.FILES.get('file'),
        class_id, subject_id, exam_id, request.user,
        section_id=section_id,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return JsonResponse({'success': True, **counts})


# ============ Locking ============

@require_POST
@admin_required
@json_errors
def component_lock(request, component_id):
    component = services.lock_component(component_id, request.user)
    return JsonResponse({'component_id': component.pk, 'is_locked': component.is_locked})


@require_POST
@admin_required
@json_errors
def component_unlock(request, component_id):
    component = services.unlock_component(component_id, request.user)
    return JsonResponse({'component_id': component.pk, 'is_locked': component.is_locked})


@require_POST
@admin_required
@json_errors
def exam_lock_toggle(request, exam_id):
    is_locked = services.toggle_exam_lock(exam_id, request.user)
    return JsonResponse({'exam_id': exam_id, 'is_locked': is_locked})
