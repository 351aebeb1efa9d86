"""
Result summaries: runs resolver, normalizer, aggregation and formatter for one
class (or section) and serializes the outcome for the views, exports and tasks.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from academics.models import Class, Section, Subject
from core.models import Term
from exams.models import GradingSystem, MarkEntry
from students.models import Student

from .aggregation import aggregate, aggregate_summary
from .exceptions import ConfigurationError, NotFoundError, ValidationError
from .formatting import StudentInfo, SubjectGroup, format_report
from .grading import GradingScale
from .normalizer import normalize
from .schemes import get_class_and_section, get_exam, resolve_selection, resolve_term_shares
from .selection import DisplayPreferences, SubjectSelection, as_id
from .types import RawMarkEntry, SubjectTotals

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SummaryRequest:
    """A validated report request: who, which components, and how to display them."""
    class_id: int
    selections: Tuple[SubjectSelection, ...]
    prefs: DisplayPreferences
    section_id: Optional[int] = None
    exam_id: Optional[int] = None
    term_shares: Optional[dict] = None
    grading_system_id: Optional[int] = None

    @property
    def is_final(self):
        return self.exam_id is None

    @classmethod
    def from_payload(cls, data, final=False):
        """
        Parse a report-summary (single exam) or final-summary (multi-term) body.
        """
        class_id = as_id(data.get('class_id'), 'class_id')
        section_id = data.get('section_id')
        section_id = as_id(section_id, 'section_id') if section_id not in (None, '') else None
        grading_system_id = data.get('grading_system_id')
        grading_system_id = (
            as_id(grading_system_id, 'grading_system_id') if grading_system_id not in (None, '') else None
        )

        items = data.get('subject_components')
        if not isinstance(items, list) or not items:
            raise ValidationError('Select at least one subject.', field='subject_components')

        exam_id = None
        exam_term_id = None
        term_shares = None
        if final:
            term_shares = data.get('term_weights') or None
            if term_shares is not None and not isinstance(term_shares, dict):
                raise ValidationError("'term_weights' must map term ids to shares.", field='term_weights')
        else:
            exam_id = as_id(data.get('exam_id'), 'exam_id')
            exam_term_id = get_exam(exam_id).term_id

        selections = tuple(SubjectSelection.from_payload(item, exam_term_id) for item in items)
        seen = set()
        for selection in selections:
            if selection.subject_id in seen:
                raise ValidationError('Each subject can only be selected once.', subject_id=selection.subject_id)
            seen.add(selection.subject_id)
            if exam_term_id is not None and selection.term_ids != [exam_term_id]:
                raise ValidationError(
                    "Components must belong to the exam's term.",
                    subject_id=selection.subject_id, exam_id=exam_id
                )

        return cls(
            class_id=class_id,
            section_id=section_id,
            exam_id=exam_id,
            selections=selections,
            prefs=DisplayPreferences.from_request(data),
            term_shares=term_shares,
            grading_system_id=grading_system_id,
        )


@dataclass(frozen=True)
class ResultSummary:
    class_obj: Class
    section: Optional[Section]
    exam: object
    terms: Tuple[Term, ...]
    term_shares: dict
    groups: Tuple[SubjectGroup, ...]
    students: Tuple[StudentInfo, ...]
    aggregate: object
    report: object
    prefs: DisplayPreferences

    @property
    def title(self):
        group = f"{self.class_obj.name} {self.section.name}" if self.section else self.class_obj.name
        if self.exam is not None:
            return f"{group} - {self.exam.name} ({self.exam.term.name})"
        return f"{group} - Final Result ({', '.join(t.name for t in self.terms)})"

    def to_dict(self):
        return serialize_summary(self)


def load_grading_scale(grading_system_id=None):
    """The requested grading system, or the school default, as a validated scale."""
    if grading_system_id is not None:
        try:
            system = GradingSystem.objects.prefetch_related('bands').get(pk=grading_system_id, is_active=True)
        except GradingSystem.DoesNotExist:
            raise NotFoundError(
                f"Grading system {grading_system_id} not found.",
                grading_system_id=grading_system_id
            )
    else:
        system = GradingSystem.get_default()
        if system is None:
            raise ConfigurationError('No default grading system is configured.')
    return GradingScale.from_grading_system(system)


def build_summary(request):
    """
    Build the result summary for a SummaryRequest.

    Any ResultsError aborts the whole summary; no partial report is returned.
    """
    class_obj, section = get_class_and_section(request.class_id, request.section_id)
    exam = get_exam(request.exam_id) if request.exam_id is not None else None
    if exam is not None and exam.classes.exists() and not exam.classes.filter(pk=class_obj.pk).exists():
        raise ValidationError(
            f"{exam.name} is not written by {class_obj.name}.",
            exam_id=exam.pk, class_id=class_obj.pk
        )

    resolved = [(selection, resolve_selection(class_obj.pk, selection)) for selection in request.selections]
    components = [c for _, subject_components in resolved for c in subject_components]

    term_ids = sorted({t for selection in request.selections for t in selection.term_ids})
    terms = tuple(Term.objects.filter(pk__in=term_ids).order_by('pk'))
    term_names = {t.pk: t.name for t in terms}
    shares = resolve_term_shares(term_ids, request.term_shares)

    subject_names = dict(
        Subject.objects.filter(pk__in=[s.subject_id for s in request.selections]).values_list('pk', 'name')
    )
    groups = tuple(
        SubjectGroup(
            subject_id=selection.subject_id,
            name=subject_names[selection.subject_id],
            components=tuple(subject_components),
            term_names=term_names,
        )
        for selection, subject_components in resolved
    )

    students = list(Student.objects.active().in_class(class_obj.pk, section.pk if section else None))
    student_ids = [s.pk for s in students]
    raw_entries = [
        RawMarkEntry(student_id, component_id, marks, attendance)
        for student_id, component_id, marks, attendance in MarkEntry.objects.filter(
            student_id__in=student_ids,
            component_id__in=[c.component_id for c in components],
        ).values_list('student_id', 'component_id', 'marks_obtained', 'attendance')
    ]

    normalized = normalize(raw_entries, components, student_ids)
    scale = load_grading_scale(request.grading_system_id) if request.prefs.include_grades else None
    result = aggregate(normalized, components, request.prefs, scale, shares)

    class_totals = OrderedDict((group.subject_id, SubjectTotals()) for group in groups)
    for student_result in result.students:
        for subject_id, subject in student_result.subjects.items():
            class_totals[subject_id] = class_totals[subject_id] + subject.totals
    result = replace(result, summary=aggregate_summary(class_totals, request.prefs, scale))

    infos = tuple(StudentInfo(s.pk, s.roll_number, s.full_name) for s in students)
    report = format_report(result, groups, request.prefs, infos)

    logger.info(
        f"Built {'final' if exam is None else 'classwise'} summary for {class_obj.name}"
        f"{' ' + section.name if section else ''}: {len(students)} students, "
        f"{len(groups)} subjects, {len(components)} components"
    )
    return ResultSummary(
        class_obj=class_obj,
        section=section,
        exam=exam,
        terms=terms,
        term_shares=shares,
        groups=groups,
        students=infos,
        aggregate=result,
        report=report,
        prefs=request.prefs,
    )


def _num(value):
    return str(value) if value is not None else None


def _subject_maps(student_result):
    return (
        {str(sid): _num(s.raw_total) for sid, s in student_result.subjects.items()},
        {str(sid): _num(s.weighted_total) for sid, s in student_result.subjects.items()},
        {str(sid): s.grade for sid, s in student_result.subjects.items()},
    )


def serialize_student(student_result, info, groups):
    """A student's aggregate with numbers as full-precision strings."""
    totals_raw, totals_weighted, grades = _subject_maps(student_result)
    grand = student_result.grand
    components = []
    for group in groups:
        subject = student_result.subjects[group.subject_id]
        for component in group.components:
            result = subject.components[component.component_id]
            components.append({
                'component_id': component.component_id,
                'subject_id': group.subject_id,
                'term_id': component.term_id,
                'attendance': result.attendance,
                'marks_obtained': _num(result.marks),
                'weighted': _num(result.weighted),
            })
    return {
        'student_id': student_result.student_id,
        'roll_number': info.roll_number,
        'name': info.name,
        'components': components,
        'subject_totals_raw': totals_raw,
        'subject_totals_weighted': totals_weighted,
        'subject_grades': grades,
        'term_totals': {
            str(sid): {
                str(tid): {'raw': _num(t.raw_total), 'weighted': _num(t.weighted_total)}
                for tid, t in s.term_breakdown.items()
            }
            for sid, s in student_result.subjects.items()
        },
        'total_raw': _num(grand.total_raw),
        'total_weighted': _num(grand.total_weighted),
        'grand_percent_raw': _num(grand.percentage_raw),
        'grand_percent_weighted': _num(grand.percentage_weighted),
        'total_grade_raw': grand.grade_raw,
        'total_grade_weighted': grand.grade_weighted,
    }


def serialize_class_summary(summary_result):
    totals_raw, totals_weighted, grades = _subject_maps(summary_result)
    grand = summary_result.grand
    return {
        'subject_totals_raw': totals_raw,
        'subject_totals_weighted': totals_weighted,
        'subject_grades': grades,
        'grand_total': _num(grand.total_raw),
        'grand_total_weighted': _num(grand.total_weighted),
        'grand_percent_raw': _num(grand.percentage_raw),
        'grand_percent_weighted': _num(grand.percentage_weighted),
        'grand_total_grade': grand.grade_raw,
        'grand_total_weighted_grade': grand.grade_weighted,
    }


def serialize_groups(groups):
    return [
        {
            'subject_id': group.subject_id,
            'subject_name': group.name,
            'components': [
                {
                    'component_id': c.component_id,
                    'term_id': c.term_id,
                    'term_name': group.term_names.get(c.term_id, ''),
                    'name': c.name,
                    'abbreviation': c.abbreviation,
                    'max_marks': _num(c.max_marks),
                    'weightage': _num(c.weightage_percent),
                }
                for c in group.components
            ],
        }
        for group in groups
    ]


def serialize_summary(summary):
    infos = {s.student_id: s for s in summary.students}
    return {
        'title': summary.title,
        'class_id': summary.class_obj.pk,
        'section_id': summary.section.pk if summary.section else None,
        'exam_id': summary.exam.pk if summary.exam is not None else None,
        'term_shares': {str(k): _num(v) for k, v in summary.term_shares.items()},
        'filters': summary.prefs.to_filters(),
        'students': [
            serialize_student(s, infos[s.student_id], summary.groups)
            for s in summary.aggregate.students
        ],
        'subjectComponentGroups': serialize_groups(summary.groups),
        'summary': serialize_class_summary(summary.aggregate.summary),
        'report': summary.report.to_dict(),
    }
