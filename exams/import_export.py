"""
Marks sheets as Excel workbooks and PDFs, and bulk marks import from an
exported workbook.

An exported workbook carries a hidden metadata sheet naming the class,
section, subject, exam and component ids it was made for. An import is only
accepted for the same marks sheet and the same component list, and goes
through save_marks, so it is validated, lock-checked and stored whole or not
at all.
"""
import logging
from decimal import Decimal, InvalidOperation
from io import BytesIO
from zipfile import BadZipFile

import openpyxl
from django.template.loader import render_to_string
from django.utils import timezone
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from core.models import SchoolSettings
from core.permissions import can_enter_marks
from results import config
from results.exceptions import ForbiddenError, ValidationError
from results.export import html_to_pdf, parse_orientation
from results.selection import as_id
from results.types import ATTENDANCE_CODES, PRESENT

from . import services

logger = logging.getLogger(__name__)

MARKS_SHEET = "Marks"
METADATA_SHEET = "_metadata"
FIRST_DATA_ROW = 2
# Admission No, Roll No, Student Name
FIXED_COLUMNS = 3


def marks_sheet_title(sheet):
    class_name = sheet['class']['name']
    if sheet['section']:
        class_name = f"{class_name} {sheet['section']['name']}"
    return f"{sheet['subject']['name']} - {class_name} - {sheet['exam']['name']}"


def _component_header(component):
    return f"{component['abbreviation'] or component['name']} (/{component['max_marks']})"


def _stored(student, component):
    return student['marks'][str(component['component_id'])]


def _display(mark):
    """A stored entry as sheet text: the attendance code, the marks, or blank."""
    if mark['attendance'] != PRESENT:
        return mark['attendance']
    return mark['marks_obtained'] or ''


# ============ Export ============

def marks_sheet_workbook(class_id, subject_id, exam_id, section_id=None):
    """
    The marks entry grid as an .xlsx workbook, pre-filled with stored marks.

    Returns (title, workbook bytes).
    """
    sheet = services.marks_sheet(class_id, subject_id, exam_id, section_id)
    components = sheet['components']

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = MARKS_SHEET

    # Styles
    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(
        start_color=config.EXCEL_HEADER_COLOR, end_color=config.EXCEL_HEADER_COLOR, fill_type="solid"
    )
    thin_border = Border(
        left=Side(style='thin'),
        right=Side(style='thin'),
        top=Side(style='thin'),
        bottom=Side(style='thin')
    )

    headers = ["Admission No", "Roll No", "Student Name"] + [_component_header(c) for c in components]
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal='center', wrap_text=True)
        cell.border = thin_border

    for row, student in enumerate(sheet['students'], FIRST_DATA_ROW):
        ws.cell(row=row, column=1, value=student['admission_number']).border = thin_border
        ws.cell(row=row, column=2, value=student['roll_number']).border = thin_border
        ws.cell(row=row, column=3, value=student['name']).border = thin_border

        for col, component in enumerate(components, FIXED_COLUMNS + 1):
            mark = _stored(student, component)
            cell = ws.cell(row=row, column=col)
            cell.border = thin_border
            cell.alignment = Alignment(horizontal='center')
            if mark['attendance'] != PRESENT:
                cell.value = mark['attendance']
            elif mark['marks_obtained'] is not None:
                cell.value = float(mark['marks_obtained'])

    # Adjust column widths
    ws.column_dimensions['A'].width = 15
    ws.column_dimensions['B'].width = 9
    ws.column_dimensions['C'].width = 28
    for col in range(FIXED_COLUMNS + 1, len(headers) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 14
    ws.freeze_panes = 'D2'

    # Metadata sheet for import validation
    meta_ws = wb.create_sheet(METADATA_SHEET)
    meta_ws.cell(row=1, column=1, value="class_id")
    meta_ws.cell(row=1, column=2, value=sheet['class']['class_id'])
    meta_ws.cell(row=2, column=1, value="subject_id")
    meta_ws.cell(row=2, column=2, value=sheet['subject']['subject_id'])
    meta_ws.cell(row=3, column=1, value="exam_id")
    meta_ws.cell(row=3, column=2, value=sheet['exam']['exam_id'])
    meta_ws.cell(row=4, column=1, value="section_id")
    meta_ws.cell(row=4, column=2, value=sheet['section']['section_id'] if sheet['section'] else "")
    # Component ids in column order
    for col, component in enumerate(components, 1):
        meta_ws.cell(row=5, column=col, value=component['component_id'])
    meta_ws.sheet_state = 'hidden'

    buffer = BytesIO()
    wb.save(buffer)
    return marks_sheet_title(sheet), buffer.getvalue()


def marks_sheet_pdf(class_id, subject_id, exam_id, section_id=None, orientation=None):
    """The marks entry grid as a printable PDF. Returns (title, pdf bytes)."""
    orientation = parse_orientation(orientation)
    sheet = services.marks_sheet(class_id, subject_id, exam_id, section_id)
    title = marks_sheet_title(sheet)
    rows = [
        {
            'roll_number': student['roll_number'],
            'admission_number': student['admission_number'],
            'name': student['name'],
            'cells': [_display(_stored(student, c)) for c in sheet['components']],
        }
        for student in sheet['students']
    ]
    html_string = render_to_string(config.MARKS_SHEET_PDF_TEMPLATE, {
        'title': title,
        'sheet': sheet,
        'rows': rows,
        'school': SchoolSettings.load(),
        'generated_date': timezone.now(),
    })
    return title, html_to_pdf(html_string, orientation)


# ============ Import ============

def _load_workbook(upload):
    if upload is None:
        raise ValidationError('No file uploaded.', field='file')
    if upload.size > config.MAX_IMPORT_FILE_SIZE:
        limit = config.MAX_IMPORT_FILE_SIZE // (1024 * 1024)
        raise ValidationError(f'File too large. Maximum size is {limit} MB.', field='file')
    if not upload.name.lower().endswith('.xlsx'):
        raise ValidationError('Please upload an Excel file (.xlsx).', field='file')
    try:
        return openpyxl.load_workbook(upload, read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError) as e:
        logger.warning(f"Unreadable marks workbook {upload.name}: {e}")
        raise ValidationError('The file could not be read as an Excel workbook.', field='file')


def _read_metadata(wb):
    if METADATA_SHEET not in wb.sheetnames or MARKS_SHEET not in wb.sheetnames:
        raise ValidationError('This workbook is not an exported marks sheet.', field='file')
    rows = list(wb[METADATA_SHEET].iter_rows(values_only=True))
    meta = {}
    for row in rows[:4]:
        if row and row[0]:
            meta[str(row[0])] = row[1] if len(row) > 1 else None
    try:
        ids = {
            key: as_id(meta[key], key) for key in ('class_id', 'subject_id', 'exam_id')
        }
        section = meta.get('section_id')
        ids['section_id'] = as_id(section, 'section_id') if section not in (None, '') else None
        component_ids = [
            as_id(value, 'component_id') for value in (rows[4] if len(rows) > 4 else ())
            if value not in (None, '')
        ]
    except KeyError:
        raise ValidationError('This workbook is not an exported marks sheet.', field='file')
    return ids, component_ids


def _parse_cell(value):
    """(marks, attendance) from a worksheet cell; a known code other than P marks non-attendance."""
    if value is None:
        return None, PRESENT
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None, PRESENT
        code = text.upper()
        if code in ATTENDANCE_CODES:
            return None, code
        return text, PRESENT
    return value, PRESENT


def _unchanged(marks, attendance, stored):
    if attendance != stored['attendance']:
        return False
    if attendance != PRESENT:
        return True
    if marks is None or stored['marks_obtained'] is None:
        return marks is None and stored['marks_obtained'] is None
    try:
        return Decimal(str(marks).strip()) == Decimal(stored['marks_obtained'])
    except InvalidOperation:
        return False


def import_marks_workbook(upload, class_id, subject_id, exam_id, user,
                          section_id=None, ip_address=None, user_agent=''):
    """
    Store the marks of an exported marks sheet.

    Cells equal to the stored entry are skipped; every other cell is sent to
    save_marks as one batch, so a single invalid or locked cell rejects the
    whole file. A cleared cell removes the stored entry.

    Returns the save_marks counts plus rows_processed.
    """
    if not can_enter_marks(user, class_id, subject_id):
        raise ForbiddenError(
            'Not authorized to enter marks for this subject.',
            class_id=class_id, subject_id=subject_id
        )

    wb = _load_workbook(upload)
    try:
        ids, component_ids = _read_metadata(wb)
        expected = {
            'class_id': class_id, 'subject_id': subject_id,
            'exam_id': exam_id, 'section_id': section_id,
        }
        if ids != expected:
            raise ValidationError(
                'This workbook was exported for a different class, section, subject or exam.',
                field='file'
            )

        sheet = services.marks_sheet(class_id, subject_id, exam_id, section_id)
        components = sheet['components']
        if component_ids != [c['component_id'] for c in components]:
            raise ValidationError(
                'The grading scheme has changed since this workbook was exported; export it again.',
                field='file'
            )

        students = {s['admission_number']: s for s in sheet['students']}
        entries = []
        seen = set()
        rows_processed = 0
        unchanged = 0
        for row_number, row in enumerate(
            wb[MARKS_SHEET].iter_rows(min_row=FIRST_DATA_ROW, values_only=True), FIRST_DATA_ROW
        ):
            if not row or row[0] in (None, ''):
                continue
            admission_number = str(row[0]).strip()
            student = students.get(admission_number)
            if student is None:
                raise ValidationError(
                    f"Row {row_number}: admission number '{admission_number}' is not in this class.",
                    row=row_number
                )
            if admission_number in seen:
                raise ValidationError(
                    f"Row {row_number}: admission number '{admission_number}' appears twice.",
                    row=row_number, student_id=student['student_id']
                )
            seen.add(admission_number)
            rows_processed += 1

            for offset, component in enumerate(components):
                index = FIXED_COLUMNS + offset
                marks, attendance = _parse_cell(row[index] if len(row) > index else None)
                if _unchanged(marks, attendance, _stored(student, component)):
                    unchanged += 1
                    continue
                entries.append({
                    'student_id': student['student_id'],
                    'component_id': component['component_id'],
                    'marks_obtained': marks,
                    'attendance': attendance,
                })
    finally:
        wb.close()

    if entries:
        counts = services.save_marks(entries, user, ip_address=ip_address, user_agent=user_agent)
    else:
        counts = {'created': 0, 'updated': 0, 'deleted': 0, 'unchanged': 0}
    counts['unchanged'] += unchanged
    counts['rows_processed'] = rows_processed
    logger.info(f"{user} imported marks for class {class_id}, subject {subject_id}, exam {exam_id}: {counts}")
    return counts
