"""
Report formatter: renders an AggregateResult into a paginated table of strings.

This is the only place where numbers are rounded. It has no side effects; the
output is handed to the JSON views, the PDF template and the Excel export.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple

from .selection import DisplayMode, Rounding
from .types import Component

ROUNDING_MODES = {
    Rounding.NONE: ROUND_HALF_UP,
    Rounding.FLOOR: ROUND_FLOOR,
    Rounding.CEILING: ROUND_CEILING,
}

MISSING_GRADE = '-'


def format_number(value, decimal_points=2, rounding=Rounding.NONE):
    """
    Format a Decimal with a fixed number of decimals.

    'none' rounds half up, 'floor' and 'ceiling' round towards -inf / +inf.
    None formats as an empty string.
    """
    if value is None:
        return ''
    exponent = Decimal(1).scaleb(-decimal_points)
    return str(Decimal(value).quantize(exponent, rounding=ROUNDING_MODES[rounding]))


@dataclass(frozen=True)
class SubjectGroup:
    """A subject's column group: its name and the components shown under it."""
    subject_id: int
    name: str
    components: Tuple[Component, ...]
    term_names: Dict[int, str] = field(default_factory=dict)

    @property
    def term_ids(self):
        seen = []
        for component in self.components:
            if component.term_id not in seen:
                seen.append(component.term_id)
        return seen

    @property
    def total_weightage(self):
        return sum((c.weightage_percent for c in self.components), Decimal('0'))


@dataclass(frozen=True)
class StudentInfo:
    student_id: int
    roll_number: Optional[int]
    name: str


@dataclass(frozen=True)
class Column:
    key: str
    label: str
    kind: str
    subject_id: Optional[int] = None
    term_id: Optional[int] = None
    component_id: Optional[int] = None
    weightage: str = ''


@dataclass(frozen=True)
class HeaderGroup:
    label: str
    span: int
    weightage: str = ''


@dataclass(frozen=True)
class Row:
    student_id: Optional[int]
    roll_number: str
    name: str
    cells: Tuple[str, ...]


@dataclass(frozen=True)
class PaginatedReport:
    header_groups: Tuple[HeaderGroup, ...]
    columns: Tuple[Column, ...]
    pages: Tuple[Tuple[Row, ...], ...]
    summary_row: Optional[Row] = None

    @property
    def rows(self):
        return [row for page in self.pages for row in page]

    def to_dict(self):
        return {
            'header_groups': [
                {'label': g.label, 'span': g.span, 'weightage': g.weightage}
                for g in self.header_groups
            ],
            'columns': [
                {
                    'key': c.key, 'label': c.label, 'kind': c.kind,
                    'subject_id': c.subject_id, 'term_id': c.term_id,
                    'component_id': c.component_id, 'weightage': c.weightage,
                }
                for c in self.columns
            ],
            'pages': [[_row_dict(row) for row in page] for page in self.pages],
            'summary_row': _row_dict(self.summary_row) if self.summary_row else None,
        }


def _row_dict(row):
    return {
        'student_id': row.student_id,
        'roll_number': row.roll_number,
        'name': row.name,
        'cells': list(row.cells),
    }


class _Renderer:
    """Cell rendering for one set of DisplayPreferences."""

    def __init__(self, prefs):
        self.prefs = prefs

    def number(self, value):
        return format_number(value, self.prefs.decimal_points, self.prefs.rounding)

    def pair(self, actual, weighted, missing=''):
        """Render an actual/weighted pair for the current display mode."""
        actual_text = self.number(actual) if actual is not None else missing
        weighted_text = self.number(weighted) if weighted is not None else missing
        mode = self.prefs.display_mode
        if mode == DisplayMode.ACTUAL:
            return actual_text
        if mode == DisplayMode.WEIGHTED:
            return weighted_text
        return f"{actual_text} ({weighted_text})"

    def grade_pair(self, grade_raw, grade_weighted):
        raw = grade_raw or MISSING_GRADE
        weighted = grade_weighted or MISSING_GRADE
        mode = self.prefs.display_mode
        if mode == DisplayMode.ACTUAL:
            return raw
        if mode == DisplayMode.WEIGHTED:
            return weighted
        return f"{raw} ({weighted})"

    def cell(self, column, student_result):
        subject = student_result.subjects.get(column.subject_id) if column.subject_id else None
        grand = student_result.grand

        if column.kind == 'component':
            result = subject.components.get(column.component_id) if subject else None
            if result is None:
                return ''
            if result.exempt:
                # Attendance code replaces any number, whatever the display mode
                return result.attendance
            if result.marks is None:
                return ''
            return self.pair(result.marks, result.weighted)

        if column.kind == 'term_total':
            term = subject.term_breakdown.get(column.term_id) if subject else None
            if term is None:
                return ''
            return self.pair(term.raw_total, term.weighted_total)

        if column.kind == 'subject_total':
            if subject is None:
                return ''
            return self.pair(subject.raw_total, subject.weighted_total)

        if column.kind == 'subject_grade':
            return (subject.grade if subject else None) or MISSING_GRADE

        if column.kind == 'grand_marks':
            return self.pair(grand.total_raw, grand.total_weighted)

        if column.kind == 'grand_percent':
            return self.pair(grand.percentage_raw, grand.percentage_weighted, missing=MISSING_GRADE)

        if column.kind == 'grand_grade':
            return self.grade_pair(grand.grade_raw, grand.grade_weighted)

        raise ValueError(f"Unknown column kind: {column.kind}")


def build_columns(groups, prefs):
    """Header groups and columns for the subject groups and preferences."""
    renderer = _Renderer(prefs)
    multi_term = len({c.term_id for g in groups for c in g.components}) > 1

    header_groups = []
    columns = []
    for group in groups:
        group_columns = []
        for term_id in group.term_ids:
            term_components = [c for c in group.components if c.term_id == term_id]
            term_name = group.term_names.get(term_id, f"T{term_id}")
            for component in term_components:
                label = f"{term_name} {component.label}" if multi_term else component.label
                group_columns.append(Column(
                    key=f"s{group.subject_id}:c{component.component_id}",
                    label=label,
                    kind='component',
                    subject_id=group.subject_id,
                    term_id=term_id,
                    component_id=component.component_id,
                    weightage=renderer.number(component.weightage_percent),
                ))
            if multi_term and prefs.include_term_totals:
                group_columns.append(Column(
                    key=f"s{group.subject_id}:t{term_id}",
                    label=f"{term_name} Total",
                    kind='term_total',
                    subject_id=group.subject_id,
                    term_id=term_id,
                    weightage=renderer.number(
                        sum((c.weightage_percent for c in term_components), Decimal('0'))
                    ),
                ))

        if prefs.include_sum:
            group_columns.append(Column(
                key=f"s{group.subject_id}:total",
                label='Final' if multi_term else 'Total',
                kind='subject_total',
                subject_id=group.subject_id,
                weightage='' if multi_term else renderer.number(group.total_weightage),
            ))
        if prefs.include_grades:
            group_columns.append(Column(
                key=f"s{group.subject_id}:grade",
                label='Grade',
                kind='subject_grade',
                subject_id=group.subject_id,
            ))

        if group_columns:
            header_groups.append(HeaderGroup(
                label=group.name,
                span=len(group_columns),
                weightage='' if multi_term else renderer.number(group.total_weightage),
            ))
            columns.extend(group_columns)

    grand_columns = []
    if prefs.include_sum:
        grand_columns.append(Column(key='grand:marks', label='Marks', kind='grand_marks'))
    if prefs.include_grades:
        grand_columns.append(Column(key='grand:percent', label='%age', kind='grand_percent'))
        grand_columns.append(Column(key='grand:grade', label='Grade', kind='grand_grade'))
    if grand_columns:
        header_groups.append(HeaderGroup(label='Grand Total', span=len(grand_columns)))
        columns.extend(grand_columns)

    return header_groups, columns


def paginate(rows, per_page):
    """Split rows into pages of `per_page`; a page break follows every full page."""
    return tuple(tuple(rows[i:i + per_page]) for i in range(0, len(rows), per_page))


def format_report(aggregate_result, groups, prefs, students=None):
    """
    Render an AggregateResult.

    Args:
        aggregate_result: AggregateResult from the aggregation engine
        groups: SubjectGroup list, in column order
        prefs: DisplayPreferences
        students: StudentInfo list for row labels; rows follow aggregate order

    Returns:
        PaginatedReport
    """
    renderer = _Renderer(prefs)
    header_groups, columns = build_columns(groups, prefs)
    info = {s.student_id: s for s in (students or [])}

    rows = []
    for student_result in aggregate_result.students:
        student = info.get(student_result.student_id)
        rows.append(Row(
            student_id=student_result.student_id,
            roll_number=str(student.roll_number) if student and student.roll_number is not None else '',
            name=student.name if student else str(student_result.student_id),
            cells=tuple(renderer.cell(column, student_result) for column in columns),
        ))

    summary_row = None
    if aggregate_result.summary is not None and (prefs.include_sum or prefs.include_grades):
        summary_row = Row(
            student_id=None,
            roll_number='',
            name='Subject Totals',
            cells=tuple(renderer.cell(column, aggregate_result.summary) for column in columns),
        )

    return PaginatedReport(
        header_groups=tuple(header_groups),
        columns=tuple(columns),
        pages=paginate(rows, prefs.students_per_page),
        summary_row=summary_row,
    )
