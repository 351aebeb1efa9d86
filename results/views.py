import logging

from django.http import HttpResponse, JsonResponse
from django.views.decorators.http import require_GET, require_POST

from core.permissions import teacher_or_admin_required

from .exceptions import ValidationError
from .export import (
    PDF_CONTENT_TYPE, XLSX_CONTENT_TYPE,
    export_html_pdf, safe_filename, summary_pdf, summary_workbook,
)
from .http import json_errors, parse_json_body
from .schemes import (
    ExamSelector, class_exam_subjects, resolve_components, resolve_term_components,
)
from .selection import as_id
from .services import SummaryRequest, build_summary
from .tasks import email_result_summary

logger = logging.getLogger(__name__)


def _component_dict(component):
    return {
        'component_id': component.component_id,
        'subject_id': component.subject_id,
        'term_id': component.term_id,
        'name': component.name,
        'abbreviation': component.abbreviation,
        'max_marks': str(component.max_marks),
        'weightage': str(component.weightage_percent),
        'is_locked': component.is_locked,
    }


def _required_id(request, name):
    value = request.GET.get(name)
    if value in (None, ''):
        raise ValidationError(f"'{name}' is required.", field=name)
    return as_id(value, name)


def _file_response(content, content_type, filename):
    response = HttpResponse(content, content_type=content_type)
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response


# ============ Component pickers ============

@require_GET
@teacher_or_admin_required
@json_errors
def components(request):
    """Components of one subject for the term of an exam."""
    class_id = _required_id(request, 'class_id')
    subject_id = _required_id(request, 'subject_id')
    exam_id = _required_id(request, 'exam_id')
    resolved = resolve_components(class_id, subject_id, ExamSelector(exam_id))
    return JsonResponse({'components': [_component_dict(c) for c in resolved]})


@require_GET
@teacher_or_admin_required
@json_errors
def term_wise_components(request):
    """Every active component of a class-subject, grouped by term."""
    class_id = _required_id(request, 'class_id')
    subject_id = _required_id(request, 'subject_id')
    grouped = resolve_term_components(class_id, subject_id)
    return JsonResponse({
        'terms': [
            {
                'term_id': term.pk,
                'term_name': term.name,
                'academic_year': term.academic_year.name,
                'final_weightage': str(term.final_weightage) if term.final_weightage is not None else None,
                'components': [_component_dict(c) for c in term_components],
            }
            for term, term_components in grouped
        ]
    })


@require_GET
@teacher_or_admin_required
def class_exam_subject_list(request):
    return JsonResponse({'classes': class_exam_subjects()})


# ============ Summaries ============

def _summary_from_request(request, final):
    data = parse_json_body(request)
    return data, build_summary(SummaryRequest.from_payload(data, final=final))


@require_POST
@teacher_or_admin_required
@json_errors
def report_summary(request):
    """Classwise result for a single exam."""
    _, summary = _summary_from_request(request, final=False)
    return JsonResponse(summary.to_dict())


@require_POST
@teacher_or_admin_required
@json_errors
def final_summary(request):
    """Final result combining several terms by their shares."""
    _, summary = _summary_from_request(request, final=True)
    return JsonResponse(summary.to_dict())


def _summary_pdf_response(request, final):
    data, summary = _summary_from_request(request, final=final)
    pdf = summary_pdf(
        summary,
        data.get('orientation'),
        header_html=data.get('header_html') or '',
        footer_html=data.get('footer_html') or '',
    )
    return _file_response(pdf, PDF_CONTENT_TYPE, safe_filename(data.get('fileName'), 'pdf'))


@require_POST
@teacher_or_admin_required
@json_errors
def report_summary_pdf(request):
    return _summary_pdf_response(request, final=False)


@require_POST
@teacher_or_admin_required
@json_errors
def final_summary_pdf(request):
    return _summary_pdf_response(request, final=True)


def _summary_xlsx_response(request, final):
    data, summary = _summary_from_request(request, final=final)
    return _file_response(
        summary_workbook(summary), XLSX_CONTENT_TYPE, safe_filename(data.get('fileName'), 'xlsx')
    )


@require_POST
@teacher_or_admin_required
@json_errors
def report_summary_xlsx(request):
    return _summary_xlsx_response(request, final=False)


@require_POST
@teacher_or_admin_required
@json_errors
def final_summary_xlsx(request):
    return _summary_xlsx_response(request, final=True)


@require_POST
@teacher_or_admin_required
@json_errors
def email_summary(request):
    """
    Queue a summary PDF to be emailed. The request is validated and the summary
    built once up front so bad requests fail here rather than in the worker.
    """
    data = parse_json_body(request)
    final = bool(data.get('final'))
    recipient = (data.get('recipient') or request.user.email or '').strip()
    if not recipient:
        raise ValidationError("'recipient' is required.", field='recipient')
    summary = build_summary(SummaryRequest.from_payload(data, final=final))

    task = email_result_summary.delay(data, recipient, final=final)
    logger.info(f"{request.user} queued {summary.title} for {recipient}")
    return JsonResponse({'queued': True, 'task_id': task.id, 'recipient': recipient}, status=202)


@require_POST
@teacher_or_admin_required
@json_errors
def export_pdf(request):
    """PDF of report HTML rendered by the client: {html, filters, fileName, orientation}."""
    data = parse_json_body(request)
    pdf = export_html_pdf(data.get('html'), data.get('orientation'))
    logger.info(f"{request.user} exported client report PDF with filters {data.get('filters')}")
    return _file_response(pdf, PDF_CONTENT_TYPE, safe_filename(data.get('fileName'), 'pdf'))
