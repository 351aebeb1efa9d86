"""
Request-scoped inputs of a result summary: which components of which subjects
to report on, and how to display the numbers.
"""
from dataclasses import dataclass
from typing import Mapping

from django.db import models

from . import config
from .exceptions import ValidationError


class DisplayMode(models.TextChoices):
    ACTUAL = 'actual', 'Actual'
    WEIGHTED = 'weighted', 'Weighted'
    BOTH = 'both', 'Actual (Weighted)'


class Rounding(models.TextChoices):
    NONE = 'none', 'Nearest (half up)'
    FLOOR = 'floor', 'Round down'
    CEILING = 'ceiling', 'Round up'


class Orientation(models.TextChoices):
    PORTRAIT = 'portrait', 'Portrait'
    LANDSCAPE = 'landscape', 'Landscape'


DECIMAL_POINT_CHOICES = (0, 1, 2, 3)


def as_bool(value):
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def as_int(value, field):
    """Parse a whole number from JSON/query input, rejecting floats like 2.5."""
    if isinstance(value, bool):
        raise ValidationError(f"'{field}' must be a whole number.", field=field)
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"'{field}' must be a whole number.", field=field)
    return number


def as_id(value, field):
    number = as_int(value, field)
    if number < 1:
        raise ValidationError(f"'{field}' must be a positive id.", field=field)
    return number


def _pick(data, keys, default):
    for key in keys:
        if key in data and data[key] is not None and data[key] != '':
            return data[key]
    return default


@dataclass(frozen=True)
class DisplayPreferences:
    """How a report renders its numbers. Never affects computed values."""
    display_mode: str = DisplayMode.ACTUAL
    decimal_points: int = 2
    rounding: str = Rounding.NONE
    include_sum: bool = False
    include_grades: bool = False
    students_per_page: int = 20
    include_term_totals: bool = False

    def __post_init__(self):
        if self.display_mode not in DisplayMode.values:
            raise ValidationError(
                f"Unknown display mode '{self.display_mode}'.",
                field='displayMode'
            )
        if self.decimal_points not in DECIMAL_POINT_CHOICES:
            raise ValidationError(
                'Decimal points must be 0, 1, 2 or 3.',
                field='decimalPoints'
            )
        if self.rounding not in Rounding.values:
            raise ValidationError(
                f"Unknown rounding '{self.rounding}'.",
                field='rounding'
            )
        if not 1 <= self.students_per_page <= config.MAX_STUDENTS_PER_PAGE:
            raise ValidationError(
                f'Students per page must be between 1 and {config.MAX_STUDENTS_PER_PAGE}.',
                field='studentsPerPage'
            )

    @classmethod
    def from_request(cls, data):
        """Build preferences from a report request body (camelCase keys, snake_case accepted)."""
        return cls(
            display_mode=str(_pick(data, ('displayMode', 'display_mode'), config.DEFAULT_DISPLAY_MODE)),
            decimal_points=as_int(
                _pick(data, ('decimalPoints', 'decimal_points'), config.DEFAULT_DECIMAL_POINTS),
                'decimalPoints'
            ),
            rounding=str(_pick(data, ('rounding',), config.DEFAULT_ROUNDING)),
            include_sum=as_bool(_pick(data, ('sum', 'include_sum'), False)),
            include_grades=as_bool(_pick(data, ('includeGrades', 'include_grades'), False)),
            students_per_page=as_int(
                _pick(data, ('studentsPerPage', 'students_per_page'), config.DEFAULT_STUDENTS_PER_PAGE),
                'studentsPerPage'
            ),
            include_term_totals=as_bool(_pick(data, ('includeTermTotals', 'include_term_totals'), False)),
        )

    def to_filters(self):
        """Echo of the preferences in the shape the report page sends them."""
        return {
            'displayMode': self.display_mode,
            'decimalPoints': self.decimal_points,
            'rounding': self.rounding,
            'sum': self.include_sum,
            'includeGrades': self.include_grades,
            'studentsPerPage': self.students_per_page,
            'includeTermTotals': self.include_term_totals,
        }


@dataclass(frozen=True)
class SubjectSelection:
    """
    The components picked for one subject, grouped by term.

    A classwise (single exam) report has one term; a final report maps several
    terms to their components. Validated once here so later stages can trust it.
    """
    subject_id: int
    term_component_map: Mapping[int, frozenset]

    def __post_init__(self):
        subject_id = as_id(self.subject_id, 'subject_id')
        if not isinstance(self.term_component_map, Mapping) or not self.term_component_map:
            raise ValidationError(
                'Select at least one term for the subject.',
                subject_id=subject_id
            )

        normalized = {}
        seen = set()
        for term_id, component_ids in self.term_component_map.items():
            term_id = as_id(term_id, 'term_id')
            if isinstance(component_ids, (str, bytes)) or not hasattr(component_ids, '__iter__'):
                raise ValidationError(
                    'Component ids must be given as a list.',
                    subject_id=subject_id, term_id=term_id
                )
            ids = frozenset(as_id(c, 'component_id') for c in component_ids)
            duplicated = ids & seen
            if duplicated:
                raise ValidationError(
                    'A component can only be selected under one term.',
                    subject_id=subject_id, component_id=min(duplicated)
                )
            seen |= ids
            normalized[term_id] = ids

        if not seen:
            raise ValidationError(
                'Select at least one component for the subject.',
                subject_id=subject_id
            )

        object.__setattr__(self, 'subject_id', subject_id)
        object.__setattr__(self, 'term_component_map', dict(sorted(normalized.items())))

    @property
    def term_ids(self):
        return list(self.term_component_map)

    @property
    def component_ids(self):
        return frozenset().union(*self.term_component_map.values())

    @classmethod
    def from_payload(cls, item, exam_term_id=None):
        """
        Accepts {subject_id, component_ids} for a single exam (needs `exam_term_id`)
        or {subject_id, term_component_map: {term_id: [component_id, ...]}}.
        """
        if not isinstance(item, Mapping):
            raise ValidationError('Each subject selection must be an object.')
        subject_id = item.get('subject_id')
        if item.get('term_component_map') is not None:
            term_map = item['term_component_map']
            if not isinstance(term_map, Mapping):
                raise ValidationError(
                    "'term_component_map' must map term ids to component id lists.",
                    subject_id=subject_id
                )
            return cls(subject_id=subject_id, term_component_map=term_map)
        if item.get('component_ids') is not None and exam_term_id is not None:
            return cls(subject_id=subject_id, term_component_map={exam_term_id: item['component_ids']})
        raise ValidationError(
            'Each subject needs component_ids or a term_component_map.',
            subject_id=subject_id
        )
