"""
Mark normalizer: turns stored marks into one entry per (student, component),
each either scored, blank, or exempt.
"""
from decimal import Decimal, InvalidOperation

from .exceptions import ValidationError
from .types import ATTENDANCE_CODES, MARKS_QUANTUM, PRESENT, ZERO, NormalizedEntry


def parse_marks(value, component, student_id=None):
    """
    Validate a marks value against its component. Returns a Decimal or None
    for an empty value. Out-of-range values are rejected, never clamped.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise ValidationError(
            'Marks must be a number.',
            student_id=student_id, component_id=component.component_id
        )
    try:
        marks = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(
            f"'{value}' is not a valid mark.",
            student_id=student_id, component_id=component.component_id
        )
    if not marks.is_finite():
        raise ValidationError(
            'Marks must be a finite number.',
            student_id=student_id, component_id=component.component_id
        )
    if marks < ZERO:
        raise ValidationError(
            'Marks cannot be negative.',
            student_id=student_id, component_id=component.component_id
        )
    if marks > component.max_marks:
        raise ValidationError(
            f'Marks {marks} exceed the maximum of {component.max_marks} for {component.name}.',
            student_id=student_id, component_id=component.component_id
        )
    if marks != marks.quantize(MARKS_QUANTUM):
        raise ValidationError(
            f'Marks {marks} have more than two decimal places.',
            student_id=student_id, component_id=component.component_id
        )
    return marks


def parse_attendance(code, component_id=None, student_id=None):
    code = str(code or PRESENT).strip().upper()
    if code not in ATTENDANCE_CODES:
        raise ValidationError(
            f"Unknown attendance code '{code}'.",
            student_id=student_id, component_id=component_id
        )
    return code


def normalize_entry(entry, component):
    attendance = parse_attendance(entry.attendance, component.component_id, entry.student_id)
    if attendance != PRESENT:
        # Stored marks are ignored for any non-present code
        return NormalizedEntry(entry.student_id, component.component_id, None, attendance)
    marks = parse_marks(entry.marks_obtained, component, entry.student_id)
    return NormalizedEntry(entry.student_id, component.component_id, marks, PRESENT)


def normalize(raw_entries, components, student_ids=None):
    """
    One NormalizedEntry per (student, component), ordered by student then component.

    Missing pairs become a blank present entry. Entries for unknown students or
    for components outside `components` are ignored. When `student_ids` is
    None the students are taken from `raw_entries`.
    """
    by_component = {c.component_id: c for c in components}

    if student_ids is None:
        student_ids = []
        for entry in raw_entries:
            if entry.student_id not in student_ids:
                student_ids.append(entry.student_id)
    wanted_students = set(student_ids)

    found = {}
    for entry in raw_entries:
        component = by_component.get(entry.component_id)
        if component is None or entry.student_id not in wanted_students:
            continue
        key = (entry.student_id, entry.component_id)
        if key in found:
            raise ValidationError(
                'Duplicate mark entry.',
                student_id=entry.student_id, component_id=entry.component_id
            )
        found[key] = normalize_entry(entry, component)

    normalized = []
    for student_id in student_ids:
        for component in components:
            key = (student_id, component.component_id)
            normalized.append(found.get(key) or NormalizedEntry(student_id, component.component_id, None, PRESENT))
    return normalized
