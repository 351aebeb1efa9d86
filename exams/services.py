"""
Marks entry: the only write path for MarkEntry rows, plus component and exam locking.
"""
import logging
from collections import defaultdict

from django.db import transaction

from academics.models import Subject
from core.permissions import can_enter_marks
from results.exceptions import (
    ForbiddenError, LockedStateError, NotFoundError, ValidationError
)
from results.normalizer import parse_attendance, parse_marks
from results.schemes import (
    ExamSelector, get_class_and_section, get_exam, resolve_components, to_component
)
from results.selection import as_id
from results.types import PRESENT
from students.models import Student

from .models import Exam, GradingComponent, MarkAuditLog, MarkEntry

logger = logging.getLogger(__name__)


def _locked_exams(term_ids):
    """Locked exams of the given terms, row-locked for the current transaction."""
    exams = Exam.objects.select_for_update().filter(term_id__in=term_ids, is_locked=True)
    return list(exams.prefetch_related('classes'))


def _exam_blocks(exam, class_id):
    class_ids = {c.pk for c in exam.classes.all()}
    return not class_ids or class_id in class_ids


def _check_active(gc):
    if not gc.scheme.is_active:
        raise ValidationError(
            f"{gc.name} belongs to a superseded grading scheme.",
            component_id=gc.pk, scheme_id=gc.scheme_id
        )


def _parse_entries(entries):
    if not isinstance(entries, list) or not entries:
        raise ValidationError('Submit at least one mark entry.')
    parsed = []
    seen = set()
    for item in entries:
        if not isinstance(item, dict):
            raise ValidationError('Each mark entry must be an object.')
        student_id = as_id(item.get('student_id'), 'student_id')
        component_id = as_id(item.get('component_id'), 'component_id')
        if (student_id, component_id) in seen:
            raise ValidationError(
                'Duplicate mark entry.',
                student_id=student_id, component_id=component_id
            )
        seen.add((student_id, component_id))
        parsed.append((student_id, component_id, item.get('marks_obtained'), item.get('attendance')))
    return parsed


def save_marks(entries, user, ip_address=None, user_agent=''):
    """
    Validate and store a batch of marks.

    Every entry is validated first; the lock state of the components and of
    their term's exams is then read again, under a row lock, immediately
    before writing. Either every entry is stored or none is.

    Args:
        entries: list of {student_id, component_id, marks_obtained, attendance}
        user: the user entering the marks

    Returns:
        dict with created/updated/deleted/unchanged counts
    """
    parsed = _parse_entries(entries)

    component_ids = {component_id for _, component_id, _, _ in parsed}
    grading_components = GradingComponent.objects.select_related('scheme').in_bulk(component_ids)
    for component_id in component_ids:
        if component_id not in grading_components:
            raise NotFoundError(f"Component {component_id} not found.", component_id=component_id)
        _check_active(grading_components[component_id])

    students = Student.objects.in_bulk({student_id for student_id, _, _, _ in parsed})

    checked_pairs = set()
    values = []
    for student_id, component_id, marks, attendance in parsed:
        gc = grading_components[component_id]
        scheme = gc.scheme
        student = students.get(student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found.", student_id=student_id)
        if student.current_class_id != scheme.class_assigned_id:
            raise ValidationError(
                'Student is not in the class this component belongs to.',
                student_id=student_id, component_id=component_id
            )
        pair = (scheme.class_assigned_id, scheme.subject_id)
        if pair not in checked_pairs:
            if not can_enter_marks(user, *pair):
                raise ForbiddenError(
                    'Not authorized to enter marks for this subject.',
                    class_id=pair[0], subject_id=pair[1]
                )
            checked_pairs.add(pair)

        component = to_component(gc, scheme)
        attendance = parse_attendance(attendance, component_id, student_id)
        # Marks are only kept for present students
        marks = parse_marks(marks, component, student_id) if attendance == PRESENT else None
        values.append((student_id, component_id, marks, attendance))

    counts = defaultdict(int)
    with transaction.atomic():
        locked = GradingComponent.objects.select_for_update().select_related('scheme').in_bulk(component_ids)
        for component_id, gc in locked.items():
            _check_active(gc)
            if gc.is_locked:
                raise LockedStateError(
                    f"Marks for {gc.name} are locked.",
                    component_id=component_id
                )

        exams = _locked_exams({gc.scheme.term_id for gc in locked.values()})
        for gc in locked.values():
            for exam in exams:
                if exam.term_id == gc.scheme.term_id and _exam_blocks(exam, gc.scheme.class_assigned_id):
                    raise LockedStateError(
                        f"{exam.name} is locked; marks for this term cannot be changed.",
                        exam_id=exam.pk, component_id=gc.pk
                    )

        existing = {
            (m.student_id, m.component_id): m
            for m in MarkEntry.objects.select_for_update().filter(
                student_id__in=students.keys(), component_id__in=component_ids
            )
        }

        for student_id, component_id, marks, attendance in values:
            entry = existing.get((student_id, component_id))
            blank = marks is None and attendance == PRESENT

            if entry is None:
                if blank:
                    counts['unchanged'] += 1
                    continue
                entry = MarkEntry.objects.create(
                    student_id=student_id,
                    component_id=component_id,
                    marks_obtained=marks,
                    attendance=attendance,
                    entered_by=user,
                )
                _audit(entry, user, 'CREATE', None, '', marks, attendance, ip_address, user_agent)
                counts['created'] += 1
                continue

            old_marks, old_attendance = entry.marks_obtained, entry.attendance
            if blank:
                _audit(None, user, 'DELETE', old_marks, old_attendance, None, '', ip_address, user_agent,
                       student_id=student_id, component_id=component_id)
                entry.delete()
                counts['deleted'] += 1
                continue

            if old_marks == marks and old_attendance == attendance:
                counts['unchanged'] += 1
                continue

            entry.marks_obtained = marks
            entry.attendance = attendance
            entry.entered_by = user
            entry.save(update_fields=['marks_obtained', 'attendance', 'entered_by', 'updated_at'])
            _audit(entry, user, 'UPDATE', old_marks, old_attendance, marks, attendance, ip_address, user_agent)
            counts['updated'] += 1

    result = {key: counts[key] for key in ('created', 'updated', 'deleted', 'unchanged')}
    logger.info(f"{user} saved {len(values)} mark entries: {result}")
    return result


def _audit(entry, user, action, old_marks, old_attendance, new_marks, new_attendance,
           ip_address, user_agent, student_id=None, component_id=None):
    MarkAuditLog.objects.create(
        mark_entry=entry,
        student_id=entry.student_id if entry else student_id,
        component_id=entry.component_id if entry else component_id,
        user=user,
        action=action,
        old_marks=old_marks,
        new_marks=new_marks,
        old_attendance=old_attendance or '',
        new_attendance=new_attendance or '',
        ip_address=ip_address,
        user_agent=user_agent or '',
    )


def marks_sheet(class_id, subject_id, exam_id, section_id=None):
    """
    Components and existing entries for the marks entry grid of one
    class (or section), subject and exam.
    """
    exam = get_exam(exam_id)
    components = resolve_components(class_id, subject_id, ExamSelector(exam_id))
    class_obj, section = get_class_and_section(class_id, section_id)
    subject = Subject.objects.get(pk=subject_id)
    students = list(Student.objects.active().in_class(class_id, section_id))

    stored = defaultdict(dict)
    for entry in MarkEntry.objects.filter(
        student__in=students,
        component_id__in=[c.component_id for c in components]
    ).only('student_id', 'component_id', 'marks_obtained', 'attendance'):
        stored[entry.student_id][entry.component_id] = {
            'marks_obtained': str(entry.marks_obtained) if entry.marks_obtained is not None else None,
            'attendance': entry.attendance,
        }

    return {
        'exam': {'exam_id': exam.pk, 'name': exam.name, 'is_locked': exam.is_locked},
        'class': {'class_id': class_obj.pk, 'name': class_obj.name},
        'section': {'section_id': section.pk, 'name': section.name} if section else None,
        'subject': {'subject_id': subject.pk, 'name': subject.name},
        'components': [
            {
                'component_id': c.component_id,
                'name': c.name,
                'abbreviation': c.abbreviation,
                'max_marks': str(c.max_marks),
                'weightage': str(c.weightage_percent),
                'is_locked': c.is_locked,
            }
            for c in components
        ],
        'students': [
            {
                'student_id': s.pk,
                'admission_number': s.admission_number,
                'roll_number': s.roll_number,
                'name': s.full_name,
                'marks': {
                    str(c.component_id): stored[s.pk].get(
                        c.component_id, {'marks_obtained': None, 'attendance': PRESENT}
                    )
                    for c in components
                },
            }
            for s in students
        ],
    }


def _get_component_for_update(component_id):
    try:
        return GradingComponent.objects.select_for_update().get(pk=component_id)
    except GradingComponent.DoesNotExist:
        raise NotFoundError(f"Component {component_id} not found.", component_id=component_id)


def lock_component(component_id, user):
    with transaction.atomic():
        component = _get_component_for_update(component_id)
        if not component.is_locked:
            component.lock(user)
    logger.info(f"Component {component_id} locked by {user}")
    return component


def unlock_component(component_id, user):
    with transaction.atomic():
        component = _get_component_for_update(component_id)
        if component.is_locked:
            component.unlock()
    logger.info(f"Component {component_id} unlocked by {user}")
    return component


def toggle_exam_lock(exam_id, user):
    """Flip an exam's lock and return its new state."""
    with transaction.atomic():
        try:
            exam = Exam.objects.select_for_update().get(pk=exam_id)
        except Exam.DoesNotExist:
            raise NotFoundError(f"Exam {exam_id} not found.", exam_id=exam_id)
        exam.is_locked = not exam.is_locked
        exam.save(update_fields=['is_locked'])
    logger.info(f"{exam.name} {'locked' if exam.is_locked else 'unlocked'} by {user}")
    return exam.is_locked
