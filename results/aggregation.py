"""
Aggregation engine: weighted component values, subject and grand totals,
percentages and grades.

All arithmetic is done on Decimal at full precision. Nothing here rounds for
display; that is left to the report formatter, so the same aggregate can be
rendered with any DisplayPreferences.
"""
import logging
from collections import OrderedDict

from .exceptions import ConfigurationError
from .types import (
    ZERO, HUNDRED, PRESENT,
    AggregateResult, ComponentResult, GrandAggregate, NormalizedEntry,
    StudentResult, SubjectAggregate, SubjectTotals, TermAggregate,
)

logger = logging.getLogger(__name__)


def percentage(value, maximum):
    """value / maximum * 100, or None when nothing counted towards the maximum."""
    if not maximum:
        return None
    return value / maximum * HUNDRED


def weighted_value(marks, component):
    return marks / component.max_marks * component.weightage_percent


def group_by_subject(components):
    """Components per subject, keeping first-seen subject order and component order."""
    grouped = OrderedDict()
    for component in components:
        grouped.setdefault(component.subject_id, []).append(component)
    return grouped


def _share_factors(components, term_shares):
    term_ids = sorted({c.term_id for c in components})
    if not term_shares:
        if len(term_ids) > 1:
            raise ConfigurationError(
                'Each term needs an explicit share to combine terms into a final result.',
                term_ids=term_ids
            )
        return {term_id: 1 for term_id in term_ids}

    factors = {}
    for term_id in term_ids:
        if term_id not in term_shares:
            raise ConfigurationError('Term has no share in the final result.', term_id=term_id)
        factors[term_id] = term_shares[term_id] / HUNDRED
    return factors


def _grade(scale, value):
    return scale.grade_for(value) if scale is not None else None


def subject_aggregate(subject_id, totals, scale, components=None, term_breakdown=None):
    """Apply the subject percentage and grade formulas to a set of totals."""
    percentage_weighted = percentage(totals.weighted_total, totals.max_weightage)
    return SubjectAggregate(
        subject_id=subject_id,
        raw_total=totals.raw_total,
        weighted_total=totals.weighted_total,
        max_raw=totals.max_raw,
        max_weightage=totals.max_weightage,
        percentage_raw=percentage(totals.raw_total, totals.max_raw),
        percentage_weighted=percentage_weighted,
        grade=_grade(scale, percentage_weighted),
        components=components or {},
        term_breakdown=term_breakdown or {},
    )


def grand_aggregate(subjects, scale):
    totals = sum((s.totals for s in subjects), SubjectTotals())
    percentage_raw = percentage(totals.raw_total, totals.max_raw)
    percentage_weighted = percentage(totals.weighted_total, totals.max_weightage)
    return GrandAggregate(
        total_raw=totals.raw_total,
        total_weighted=totals.weighted_total,
        max_raw=totals.max_raw,
        max_weightage=totals.max_weightage,
        percentage_raw=percentage_raw,
        percentage_weighted=percentage_weighted,
        grade_raw=_grade(scale, percentage_raw),
        grade_weighted=_grade(scale, percentage_weighted),
    )


def _aggregate_subject(student_id, subject_id, components, entries, factors, scale):
    results = {}
    terms = OrderedDict()

    for component in components:
        entry = entries.get((student_id, component.component_id))
        if entry is None:
            entry = NormalizedEntry(student_id, component.component_id, None, PRESENT)

        if entry.exempt:
            # Out of both numerator and denominator
            results[component.component_id] = ComponentResult(
                component.component_id, entry.attendance, None, None
            )
            continue

        weighted = weighted_value(entry.marks, component) if entry.marks is not None else None
        results[component.component_id] = ComponentResult(
            component.component_id, PRESENT, entry.marks, weighted
        )
        terms[component.term_id] = terms.get(component.term_id, SubjectTotals()) + SubjectTotals(
            raw_total=entry.marks if entry.marks is not None else ZERO,
            weighted_total=weighted if weighted is not None else ZERO,
            max_raw=component.max_marks,
            max_weightage=component.weightage_percent,
        )

    breakdown = OrderedDict()
    totals = SubjectTotals()
    for term_id, term_totals in terms.items():
        breakdown[term_id] = TermAggregate(
            term_id=term_id,
            raw_total=term_totals.raw_total,
            weighted_total=term_totals.weighted_total,
            max_raw=term_totals.max_raw,
            max_weightage=term_totals.max_weightage,
        )
        factor = factors[term_id]
        # Raw marks add up across terms; weighted values are scaled by the term's share
        totals = totals + SubjectTotals(
            raw_total=term_totals.raw_total,
            weighted_total=term_totals.weighted_total * factor,
            max_raw=term_totals.max_raw,
            max_weightage=term_totals.max_weightage * factor,
        )

    return subject_aggregate(subject_id, totals, scale, components=results, term_breakdown=breakdown)


def aggregate(normalized, components, prefs, grading_scale=None, term_shares=None):
    """
    Aggregate normalized entries into one StudentResult per student.

    Args:
        normalized: NormalizedEntry list, one per (student, component)
        components: resolved Component list (may span several subjects and terms)
        prefs: DisplayPreferences; grades need a grading scale when requested
        grading_scale: GradingScale used for subject and grand grades
        term_shares: {term_id: share percent}, required when components span terms

    Returns:
        AggregateResult with students in the order they appear in `normalized`
        and no summary (see aggregate_summary).
    """
    if prefs.include_grades and grading_scale is None:
        raise ConfigurationError('Grades were requested but no grading scale is configured.')

    factors = _share_factors(components, term_shares)
    subjects = group_by_subject(components)

    entries = {}
    student_ids = []
    seen = set()
    for entry in normalized:
        if entry.student_id not in seen:
            seen.add(entry.student_id)
            student_ids.append(entry.student_id)
        entries[(entry.student_id, entry.component_id)] = entry

    students = []
    for student_id in student_ids:
        subject_results = OrderedDict(
            (subject_id, _aggregate_subject(
                student_id, subject_id, subject_components, entries, factors, grading_scale
            ))
            for subject_id, subject_components in subjects.items()
        )
        students.append(StudentResult(
            student_id=student_id,
            subjects=subject_results,
            grand=grand_aggregate(subject_results.values(), grading_scale),
        ))

    logger.debug(f"Aggregated {len(students)} students over {len(subjects)} subjects")
    return AggregateResult(students=students)


def aggregate_summary(subject_totals, prefs, grading_scale=None):
    """
    Summary ("Subject Totals") row from totals supplied by the caller.

    The totals are treated as one virtual student and run through the same
    subject and grand formulas, so class-level percentages and grades come from
    the class totals rather than from any single student.
    """
    if prefs.include_grades and grading_scale is None:
        raise ConfigurationError('Grades were requested but no grading scale is configured.')

    subjects = OrderedDict(
        (subject_id, subject_aggregate(subject_id, totals, grading_scale))
        for subject_id, totals in subject_totals.items()
    )
    return StudentResult(
        student_id=None,
        subjects=subjects,
        grand=grand_aggregate(subjects.values(), grading_scale),
    )
