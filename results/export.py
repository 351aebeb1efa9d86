"""
PDF and Excel renditions of a formatted result summary.
"""
import logging
import re
from io import BytesIO

import openpyxl
from django.conf import settings
from django.template.loader import render_to_string
from django.utils import timezone
from django.utils.safestring import mark_safe
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from core.models import SchoolSettings

from . import config
from .exceptions import ValidationError
from .selection import Orientation

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = 'application/pdf'
XLSX_CONTENT_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def parse_orientation(value):
    orientation = (value or config.PDF_DEFAULT_ORIENTATION).strip().lower()
    if orientation not in Orientation.values:
        raise ValidationError(f"Unknown orientation '{orientation}'.", field='orientation')
    return orientation


def safe_filename(name, extension, default='result_summary'):
    """Strip a user-supplied file name down to [A-Za-z0-9_.-] and set its extension."""
    stem = re.sub(r'\.(pdf|xlsx)$', '', (name or '').strip(), flags=re.IGNORECASE)
    stem = re.sub(r'[^A-Za-z0-9_.-]+', '_', stem).strip('._') or default
    return f"{stem}.{extension}"


def _data_only_fetcher(url, *args, **kwargs):
    from weasyprint import default_url_fetcher

    # Request-supplied HTML may only embed inline (data:) resources
    if not url.startswith('data:'):
        raise ValueError(f"External resource blocked in PDF export: {url}")
    return default_url_fetcher(url, *args, **kwargs)


def _page_css(orientation):
    from weasyprint import CSS

    return CSS(string=f"@page {{ size: A4 {orientation}; margin: 12mm 10mm; }}")


def html_to_pdf(html_string, orientation, untrusted=False):
    """Render an HTML document to PDF bytes."""
    from weasyprint import HTML, default_url_fetcher

    html = HTML(
        string=html_string,
        base_url=str(settings.BASE_DIR),
        url_fetcher=_data_only_fetcher if untrusted else default_url_fetcher,
    )
    pdf_buffer = BytesIO()
    try:
        html.write_pdf(pdf_buffer, stylesheets=[_page_css(orientation)])
    except Exception as e:
        logger.error(f"Failed to generate PDF: {e}", exc_info=True)
        raise
    return pdf_buffer.getvalue()


def render_summary_html(summary, orientation, header_html='', footer_html=''):
    context = {
        'title': summary.title,
        'report': summary.report,
        'filters': summary.prefs.to_filters(),
        'school': SchoolSettings.load(),
        'orientation': orientation,
        'header_html': mark_safe(header_html or ''),
        'footer_html': mark_safe(footer_html or ''),
        'generated_date': timezone.now(),
    }
    return render_to_string(config.PDF_TEMPLATE, context)


def summary_pdf(summary, orientation=None, header_html='', footer_html=''):
    """The summary's report table as a paginated PDF."""
    orientation = parse_orientation(orientation)
    html_string = render_summary_html(summary, orientation, header_html, footer_html)
    # Header/footer markup comes from the request
    pdf = html_to_pdf(html_string, orientation, untrusted=bool(header_html or footer_html))
    logger.info(f"Rendered PDF for {summary.title} ({len(pdf)} bytes)")
    return pdf


def export_html_pdf(html, orientation=None):
    """PDF of a client-rendered HTML report."""
    if not isinstance(html, str) or not html.strip():
        raise ValidationError("'html' must be a non-empty string.", field='html')
    return html_to_pdf(html, parse_orientation(orientation), untrusted=True)


def summary_workbook(summary):
    """The summary's report table as an .xlsx workbook (bytes)."""
    report = summary.report
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Results"

    # Styles
    title_font = Font(bold=True, size=13)
    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(
        start_color=config.EXCEL_HEADER_COLOR, end_color=config.EXCEL_HEADER_COLOR, fill_type="solid"
    )
    summary_font = Font(bold=True)
    thin_border = Border(
        left=Side(style='thin'),
        right=Side(style='thin'),
        top=Side(style='thin'),
        bottom=Side(style='thin')
    )
    centered = Alignment(horizontal='center', vertical='center', wrap_text=True)

    last_column = len(report.columns) + 2
    ws.cell(row=1, column=1, value=summary.title).font = title_font
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=max(last_column, 2))

    # Subject group row, then column row
    for col, label in ((1, "Roll No"), (2, "Student Name")):
        ws.merge_cells(start_row=2, start_column=col, end_row=3, end_column=col)
        ws.cell(row=2, column=col, value=label)
    col = 3
    for group in report.header_groups:
        label = f"{group.label} ({group.weightage})" if group.weightage else group.label
        ws.cell(row=2, column=col, value=label)
        if group.span > 1:
            ws.merge_cells(start_row=2, start_column=col, end_row=2, end_column=col + group.span - 1)
        col += group.span
    for col, column in enumerate(report.columns, 3):
        label = f"{column.label} ({column.weightage})" if column.weightage else column.label
        ws.cell(row=3, column=col, value=label)

    for row in (2, 3):
        for col in range(1, last_column + 1):
            cell = ws.cell(row=row, column=col)
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = centered
            cell.border = thin_border

    # Data rows; cells stay text so they read exactly as formatted
    rows = list(report.rows)
    if report.summary_row is not None:
        rows.append(report.summary_row)
    for row_number, row in enumerate(rows, 4):
        values = [row.roll_number, row.name] + list(row.cells)
        for col, value in enumerate(values, 1):
            cell = ws.cell(row=row_number, column=col, value=value)
            cell.border = thin_border
            if col > 2:
                cell.alignment = Alignment(horizontal='center')
            if row is report.summary_row:
                cell.font = summary_font

    # Adjust column widths
    ws.column_dimensions['A'].width = 9
    ws.column_dimensions['B'].width = 28
    for col in range(3, last_column + 1):
        ws.column_dimensions[get_column_letter(col)].width = 14
    ws.freeze_panes = 'C4'

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
