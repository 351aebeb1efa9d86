"""
Plain value types passed between the result pipeline stages.

Nothing here touches the database: the scheme resolver converts ORM rows into
these frozen dataclasses and every later stage works on them alone.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

PRESENT = 'P'

ATTENDANCE_CHOICES = [
    ('P', 'Present'),
    ('A', 'Absent'),
    ('L', 'Leave'),
    ('ACT', 'School Activity'),
    ('LA', 'Long Absence'),
    ('ML', 'Medical Leave'),
    ('X', 'Exempted'),
]

ATTENDANCE_CODES = frozenset(code for code, _ in ATTENDANCE_CHOICES)

ZERO = Decimal('0')
HUNDRED = Decimal('100')

# Stored marks carry two decimal places
MARKS_QUANTUM = Decimal('0.01')


@dataclass(frozen=True)
class Component:
    """One scored sub-part of a subject for a term."""
    component_id: int
    subject_id: int
    term_id: int
    name: str
    abbreviation: str
    max_marks: Decimal
    weightage_percent: Decimal
    is_locked: bool = False

    @property
    def label(self):
        return self.abbreviation or self.name


@dataclass(frozen=True)
class RawMarkEntry:
    """A mark as stored by marks entry, before any validation."""
    student_id: int
    component_id: int
    marks_obtained: object = None
    attendance: str = PRESENT


@dataclass(frozen=True)
class NormalizedEntry:
    student_id: int
    component_id: int
    marks: Optional[Decimal]
    attendance: str = PRESENT

    @property
    def exempt(self):
        return self.attendance != PRESENT

    @property
    def blank(self):
        return not self.exempt and self.marks is None


@dataclass(frozen=True)
class ComponentResult:
    component_id: int
    attendance: str
    marks: Optional[Decimal]
    weighted: Optional[Decimal]

    @property
    def exempt(self):
        return self.attendance != PRESENT


@dataclass(frozen=True)
class TermAggregate:
    term_id: int
    raw_total: Decimal
    weighted_total: Decimal
    max_raw: Decimal
    max_weightage: Decimal


@dataclass(frozen=True)
class SubjectTotals:
    """Totals for one subject; the input of the percentage and grade formulas."""
    raw_total: Decimal = ZERO
    weighted_total: Decimal = ZERO
    max_raw: Decimal = ZERO
    max_weightage: Decimal = ZERO

    def __add__(self, other):
        return SubjectTotals(
            raw_total=self.raw_total + other.raw_total,
            weighted_total=self.weighted_total + other.weighted_total,
            max_raw=self.max_raw + other.max_raw,
            max_weightage=self.max_weightage + other.max_weightage,
        )


@dataclass(frozen=True)
class SubjectAggregate:
    subject_id: int
    raw_total: Decimal
    weighted_total: Decimal
    max_raw: Decimal
    max_weightage: Decimal
    percentage_raw: Optional[Decimal]
    percentage_weighted: Optional[Decimal]
    grade: Optional[str]
    components: Dict[int, ComponentResult] = field(default_factory=dict)
    term_breakdown: Dict[int, TermAggregate] = field(default_factory=dict)

    @property
    def totals(self):
        return SubjectTotals(self.raw_total, self.weighted_total, self.max_raw, self.max_weightage)


@dataclass(frozen=True)
class GrandAggregate:
    total_raw: Decimal
    total_weighted: Decimal
    max_raw: Decimal
    max_weightage: Decimal
    percentage_raw: Optional[Decimal]
    percentage_weighted: Optional[Decimal]
    grade_raw: Optional[str]
    grade_weighted: Optional[str]


@dataclass(frozen=True)
class StudentResult:
    student_id: Optional[int]
    subjects: Dict[int, SubjectAggregate]
    grand: GrandAggregate


@dataclass(frozen=True)
class AggregateResult:
    students: List[StudentResult]
    summary: Optional[StudentResult] = None
